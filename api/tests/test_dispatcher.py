from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from internhub.services.connections import ConnectionRegistry
from internhub.services.dispatcher import DeliveryDispatcher


class RecordingChannel:
    def __init__(self, *, is_open: bool = True, error: Exception | None = None, delay: float = 0.0) -> None:
        self._open = is_open
        self.error = error
        self.delay = delay
        self.sent: list[dict[str, Any]] = []

    @property
    def is_open(self) -> bool:
        return self._open

    async def send_json(self, payload: dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(payload)

    async def close(self, code: int = 1000) -> None:
        self._open = False


def _message(**overrides: Any) -> dict[str, Any]:
    message = {
        "id": 11,
        "conversation_id": 3,
        "sender_id": 1,
        "content": "Hello",
        "is_read": False,
        "created_at": datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
    }
    message.update(overrides)
    return message


def test_notify_pushes_new_message_event_to_open_channel() -> None:
    registry = ConnectionRegistry()
    channel = RecordingChannel()
    registry.register(2, channel)
    dispatcher = DeliveryDispatcher(registry)

    delivered = asyncio.run(dispatcher.notify_new_message(recipient_id=2, conversation_id=3, message=_message()))

    assert delivered is True
    assert channel.sent == [
        {
            "type": "new_message",
            "conversationId": 3,
            "message": {
                "id": 11,
                "conversationId": 3,
                "senderId": 1,
                "content": "Hello",
                "isRead": False,
                "createdAt": "2026-01-05T09:30:00Z",
            },
        }
    ]


def test_notify_without_registration_is_a_noop() -> None:
    dispatcher = DeliveryDispatcher(ConnectionRegistry())

    delivered = asyncio.run(dispatcher.notify_new_message(recipient_id=2, conversation_id=3, message=_message()))

    assert delivered is False


def test_notify_skips_closed_channel() -> None:
    registry = ConnectionRegistry()
    channel = RecordingChannel(is_open=False)
    registry.register(2, channel)

    delivered = asyncio.run(
        DeliveryDispatcher(registry).notify_new_message(recipient_id=2, conversation_id=3, message=_message())
    )

    assert delivered is False
    assert channel.sent == []


def test_failed_push_is_swallowed_and_drops_stale_channel() -> None:
    registry = ConnectionRegistry()
    registry.register(2, RecordingChannel(error=RuntimeError("socket gone")))

    delivered = asyncio.run(
        DeliveryDispatcher(registry).notify_new_message(recipient_id=2, conversation_id=3, message=_message())
    )

    assert delivered is False
    assert registry.lookup(2) is None


def test_slow_push_times_out() -> None:
    registry = ConnectionRegistry()
    registry.register(2, RecordingChannel(delay=1.0))
    dispatcher = DeliveryDispatcher(registry, push_timeout_seconds=0.01)

    delivered = asyncio.run(dispatcher.notify_new_message(recipient_id=2, conversation_id=3, message=_message()))

    assert delivered is False
    assert registry.lookup(2) is None
