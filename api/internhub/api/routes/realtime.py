from __future__ import annotations

import asyncio
import contextlib
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from internhub.core.config import get_settings
from internhub.schemas.realtime import (
    INBOUND_EVENT_ADAPTER,
    PingEvent,
    PongEvent,
    RegisteredEvent,
    RegisterEvent,
)
from internhub.services.connections import Channel, ConnectionRegistry, WebSocketChannel

router = APIRouter()
logger = logging.getLogger(__name__)

# Close code sent to a channel that another connection for the same user replaced.
CLOSE_CODE_SUPERSEDED = 4000


@router.websocket("/ws")
async def realtime_channel(websocket: WebSocket) -> None:
    registry: ConnectionRegistry = websocket.app.state.connection_registry
    settings = get_settings()

    await websocket.accept()
    channel = WebSocketChannel(websocket)
    registered_user_id: int | None = None
    heartbeat: asyncio.Task[None] | None = None
    if settings.realtime_ping_interval_seconds > 0:
        heartbeat = asyncio.create_task(_heartbeat(channel, settings.realtime_ping_interval_seconds))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(code=message.get("code", 1000))
            if not channel.is_open:
                # Closed by a newer registration for the same user.
                logger.info("dropping frame on superseded realtime channel user_id=%s", registered_user_id)
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            try:
                event = INBOUND_EVENT_ADAPTER.validate_json(raw)
            except ValidationError as exc:
                logger.info("ignoring malformed realtime frame errors=%s", exc.error_count())
                continue

            if isinstance(event, PingEvent):
                if not await _send_or_stop(channel, PongEvent().model_dump(by_alias=True)):
                    break
                continue

            if isinstance(event, RegisterEvent):
                if registered_user_id is not None and registered_user_id != event.user_id:
                    registry.unregister(registered_user_id, channel)
                replaced = registry.register(event.user_id, channel)
                registered_user_id = event.user_id
                if replaced is not None:
                    await _close_quietly(replaced)
                logger.info("realtime channel registered user_id=%s", event.user_id)
                if not await _send_or_stop(channel, RegisteredEvent(user_id=event.user_id).model_dump(by_alias=True)):
                    break
    except WebSocketDisconnect:
        pass
    finally:
        if heartbeat is not None:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
        if registered_user_id is not None and registry.unregister(registered_user_id, channel):
            logger.info("realtime channel closed user_id=%s", registered_user_id)


async def _heartbeat(channel: WebSocketChannel, interval_seconds: float) -> None:
    ping = PingEvent().model_dump(by_alias=True)
    while channel.is_open:
        await asyncio.sleep(interval_seconds)
        try:
            await channel.send_json(ping)
        except Exception:
            logger.debug("realtime heartbeat stopped", exc_info=True)
            return


async def _send_or_stop(channel: Channel, payload: dict[str, object]) -> bool:
    try:
        await channel.send_json(payload)
    except Exception:
        logger.info("realtime send failed; ending channel loop", exc_info=True)
        return False
    return True


async def _close_quietly(channel: Channel) -> None:
    try:
        await channel.close(code=CLOSE_CODE_SUPERSEDED)
    except Exception:
        logger.debug("closing superseded realtime channel failed", exc_info=True)
