from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import Request
from opentelemetry import trace

from internhub.schemas.conversations import MessageOut
from internhub.schemas.realtime import NewMessageEvent
from internhub.services.connections import ConnectionRegistry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DeliveryDispatcher:
    """Best-effort real-time push of persisted messages.

    Stored messages are the source of truth; a push is only a hint for the
    recipient to refresh, so every failure here ends in ``False`` rather than
    an exception.
    """

    def __init__(self, registry: ConnectionRegistry, *, push_timeout_seconds: float = 5.0) -> None:
        self.registry = registry
        self.push_timeout_seconds = push_timeout_seconds

    async def notify_new_message(
        self,
        *,
        recipient_id: int,
        conversation_id: int,
        message: dict[str, Any],
    ) -> bool:
        with tracer.start_as_current_span("realtime.notify_new_message") as span:
            span.set_attribute("messaging.recipient_id", recipient_id)
            span.set_attribute("messaging.conversation_id", conversation_id)

            channel = self.registry.lookup(recipient_id)
            if channel is None or not channel.is_open:
                span.set_attribute("messaging.delivered", False)
                return False

            event = NewMessageEvent(
                conversation_id=conversation_id,
                message=MessageOut(**message),
            ).model_dump(mode="json", by_alias=True)

            try:
                await asyncio.wait_for(channel.send_json(event), timeout=self.push_timeout_seconds)
            except Exception as exc:
                logger.warning(
                    "realtime push failed recipient_id=%s conversation_id=%s error=%r",
                    recipient_id,
                    conversation_id,
                    exc,
                )
                self.registry.unregister(recipient_id, channel)
                span.set_attribute("messaging.delivered", False)
                return False

            span.set_attribute("messaging.delivered", True)
            return True


def get_dispatcher(request: Request) -> DeliveryDispatcher:
    return request.app.state.dispatcher
