from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count
import threading
from typing import Any

from internhub.services.repository import (
    CreatedMessageRecord,
    RepositoryNotFoundError,
    check_participant_pair,
    check_sender_account,
    resolve_recipient_id,
    validate_conversation_role,
    validate_message_content,
    validate_positive_id,
)

_USER_SUMMARY_KEYS = ("id", "email", "name", "phone", "role")


class InMemoryRepository:
    """Process-local repository for development and tests.

    Mirrors ``PostgresRepository``. Every mutation runs under one lock, which
    also serializes conversation creation per (employer, student) pair.
    """

    def __init__(self) -> None:
        self.users: dict[int, dict[str, Any]] = {}
        self.conversations: dict[int, dict[str, Any]] = {}
        self.messages: dict[int, dict[str, Any]] = {}
        self._conversation_by_pair: dict[tuple[int, int], int] = {}
        self._lock = threading.Lock()
        self._user_ids = count(1)
        self._conversation_ids = count(1)
        self._message_ids = count(1)
        self._last_tick: datetime | None = None

    async def close(self) -> None:
        return None

    def add_user(
        self,
        *,
        email: str,
        role: str,
        name: str | None = None,
        phone: str | None = None,
        is_verified: bool = True,
        is_suspended: bool = False,
        is_super_admin: bool = False,
    ) -> dict[str, Any]:
        with self._lock:
            if any(user["email"] == email for user in self.users.values()):
                raise ValueError(f"user with email {email!r} already exists")
            user = {
                "id": next(self._user_ids),
                "email": email,
                "name": name,
                "phone": phone,
                "role": role,
                "is_verified": is_verified,
                "is_suspended": is_suspended,
                "is_super_admin": is_super_admin,
                "created_at": _now(),
            }
            self.users[user["id"]] = user
            return dict(user)

    async def get_or_create_conversation(
        self,
        *,
        employer_id: int,
        student_id: int,
        internship_id: int | None = None,
    ) -> dict[str, Any]:
        validate_positive_id(employer_id, "employer_id")
        validate_positive_id(student_id, "student_id")
        if internship_id is not None:
            validate_positive_id(internship_id, "internship_id")
        check_participant_pair(self.users.get(employer_id), self.users.get(student_id))

        pair = (employer_id, student_id)
        with self._lock:
            existing_id = self._conversation_by_pair.get(pair)
            if existing_id is not None:
                return dict(self.conversations[existing_id])

            now = self._tick()
            conversation = {
                "id": next(self._conversation_ids),
                "employer_id": employer_id,
                "student_id": student_id,
                "internship_id": internship_id,
                "created_at": now,
                "updated_at": now,
            }
            self.conversations[conversation["id"]] = conversation
            self._conversation_by_pair[pair] = conversation["id"]
            return dict(conversation)

    async def get_conversation(self, conversation_id: int) -> dict[str, Any]:
        validate_positive_id(conversation_id, "conversation_id")
        return dict(self._require_conversation(conversation_id))

    async def list_conversations_for_user(self, *, user_id: int, role: str) -> list[dict[str, Any]]:
        validate_positive_id(user_id, "user_id")
        validate_conversation_role(role)
        own_key = "employer_id" if role == "employer" else "student_id"
        other_key = "student_id" if role == "employer" else "employer_id"

        rows = [conversation for conversation in self.conversations.values() if conversation[own_key] == user_id]
        rows.sort(key=lambda conversation: (conversation["updated_at"], conversation["id"]), reverse=True)

        items: list[dict[str, Any]] = []
        for conversation in rows:
            thread = self._thread(conversation["id"])
            item = dict(conversation)
            item["other_user"] = self._user_summary(conversation[other_key])
            item["last_message"] = dict(thread[-1]) if thread else None
            item["unread_count"] = sum(
                1 for message in thread if not message["is_read"] and message["sender_id"] != user_id
            )
            items.append(item)
        return items

    async def create_message(self, *, conversation_id: int, sender_id: int, content: str) -> CreatedMessageRecord:
        validate_positive_id(conversation_id, "conversation_id")
        validate_positive_id(sender_id, "sender_id")
        validate_message_content(content)

        with self._lock:
            conversation = self._require_conversation(conversation_id)
            recipient_id = resolve_recipient_id(conversation, sender_id)
            check_sender_account(self.users.get(sender_id))

            message = {
                "id": next(self._message_ids),
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "content": content,
                "is_read": False,
                "created_at": self._tick(),
            }
            self.messages[message["id"]] = message
            conversation["updated_at"] = message["created_at"]

        return CreatedMessageRecord(
            message=dict(message),
            conversation_id=conversation_id,
            recipient_id=recipient_id,
        )

    async def list_messages(
        self,
        *,
        conversation_id: int,
        after_id: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        validate_positive_id(conversation_id, "conversation_id")
        if after_id is not None:
            validate_positive_id(after_id, "after_id")
        if limit is not None:
            validate_positive_id(limit, "limit")
        self._require_conversation(conversation_id)

        thread = self._thread(conversation_id)
        if after_id is not None:
            thread = [message for message in thread if message["id"] > after_id]
        if limit is not None:
            thread = thread[:limit]
        return [dict(message) for message in thread]

    async def mark_messages_read(self, *, conversation_id: int, user_id: int) -> int:
        validate_positive_id(conversation_id, "conversation_id")
        validate_positive_id(user_id, "user_id")

        with self._lock:
            conversation = self._require_conversation(conversation_id)
            resolve_recipient_id(conversation, user_id)
            updated = 0
            for message in self._thread(conversation_id):
                if message["sender_id"] != user_id and not message["is_read"]:
                    message["is_read"] = True
                    updated += 1
        return updated

    async def get_message(self, message_id: int) -> dict[str, Any]:
        validate_positive_id(message_id, "message_id")
        message = self.messages.get(message_id)
        if message is None:
            raise RepositoryNotFoundError("message not found")
        return dict(message)

    async def delete_message(self, message_id: int) -> bool:
        validate_positive_id(message_id, "message_id")
        with self._lock:
            return self.messages.pop(message_id, None) is not None

    async def delete_conversation(self, conversation_id: int) -> bool:
        validate_positive_id(conversation_id, "conversation_id")
        with self._lock:
            conversation = self.conversations.pop(conversation_id, None)
            if conversation is None:
                return False
            self._conversation_by_pair.pop((conversation["employer_id"], conversation["student_id"]), None)
            for message_id in [m["id"] for m in self.messages.values() if m["conversation_id"] == conversation_id]:
                del self.messages[message_id]
        return True

    async def admin_list_conversations(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        items = [self._admin_conversation(conversation) for conversation in self.conversations.values()]
        items.sort(
            key=lambda item: (item["last_message_at"] or item["updated_at"], item["id"]),
            reverse=True,
        )
        return items[offset : offset + limit]

    async def admin_get_conversation_detail(self, conversation_id: int) -> dict[str, Any]:
        validate_positive_id(conversation_id, "conversation_id")
        conversation = self._admin_conversation(self._require_conversation(conversation_id))
        messages = []
        for message in self._thread(conversation_id):
            item = dict(message)
            item["sender"] = self._user_summary(message["sender_id"])
            messages.append(item)
        return {
            "conversation": conversation,
            "messages": messages,
            "employer": conversation["employer"],
            "student": conversation["student"],
        }

    def _tick(self) -> datetime:
        # Caller holds the lock; timestamps never repeat or go backwards.
        now = _now()
        if self._last_tick is not None and now <= self._last_tick:
            now = self._last_tick + timedelta(microseconds=1)
        self._last_tick = now
        return now

    def _require_conversation(self, conversation_id: int) -> dict[str, Any]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise RepositoryNotFoundError("conversation not found")
        return conversation

    def _thread(self, conversation_id: int) -> list[dict[str, Any]]:
        # dict preserves insertion order, which is creation order here.
        return [message for message in self.messages.values() if message["conversation_id"] == conversation_id]

    def _user_summary(self, user_id: int) -> dict[str, Any] | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        return {key: user[key] for key in _USER_SUMMARY_KEYS}

    def _admin_conversation(self, conversation: dict[str, Any]) -> dict[str, Any]:
        thread = self._thread(conversation["id"])
        item = dict(conversation)
        item["employer"] = self._user_summary(conversation["employer_id"])
        item["student"] = self._user_summary(conversation["student_id"])
        item["message_count"] = len(thread)
        item["last_message_at"] = thread[-1]["created_at"] if thread else None
        return item


def _now() -> datetime:
    return datetime.now(timezone.utc)
