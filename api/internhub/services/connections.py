from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)


class Channel(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class WebSocketChannel:
    """``Channel`` backed by an accepted Starlette websocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_json(self, payload: dict[str, Any]) -> None:
        await self.websocket.send_json(payload)

    async def close(self, code: int = 1000) -> None:
        if self.is_open:
            await self.websocket.close(code=code)


class ConnectionRegistry:
    """Maps a user id to the single live channel it registered.

    A new registration replaces the previous one. ``unregister`` takes the
    channel being torn down so a late close of a replaced channel leaves the
    newer registration alone.
    """

    def __init__(self) -> None:
        self._channels: dict[int, Channel] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._channels)

    def register(self, user_id: int, channel: Channel) -> Channel | None:
        with self._lock:
            previous = self._channels.get(user_id)
            self._channels[user_id] = channel
        if previous is channel:
            return None
        if previous is not None:
            logger.info("realtime channel replaced user_id=%s", user_id)
        return previous

    def unregister(self, user_id: int, channel: Channel) -> bool:
        with self._lock:
            if self._channels.get(user_id) is not channel:
                return False
            del self._channels[user_id]
        return True

    def lookup(self, user_id: int) -> Channel | None:
        return self._channels.get(user_id)

    async def close_all(self) -> None:
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            try:
                await channel.close(code=1001)
            except Exception:  # pragma: no cover - peer already gone
                logger.debug("realtime channel close failed during shutdown", exc_info=True)
