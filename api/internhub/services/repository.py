from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]

from internhub.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""

    reason = "repository_error"

    def to_detail(self) -> dict[str, str]:
        return {"reason": self.reason, "message": str(self)}


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""

    reason = "unavailable"


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""

    reason = "not_found"


class RepositoryConflictError(RepositoryError):
    """Raised when a write collides with existing state."""

    reason = "conflict"


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""

    reason = "forbidden"


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""

    reason = "validation_failed"


@dataclass(slots=True)
class CreatedMessageRecord:
    message: dict[str, Any]
    conversation_id: int
    recipient_id: int


CONVERSATION_ROLES = {"student", "employer"}
# Ids are int4 serial columns.
MAX_RECORD_ID = 2**31 - 1


class MessagingRepository(Protocol):
    async def close(self) -> None: ...

    async def get_or_create_conversation(
        self, *, employer_id: int, student_id: int, internship_id: int | None = None
    ) -> dict[str, Any]: ...

    async def get_conversation(self, conversation_id: int) -> dict[str, Any]: ...

    async def list_conversations_for_user(self, *, user_id: int, role: str) -> list[dict[str, Any]]: ...

    async def create_message(self, *, conversation_id: int, sender_id: int, content: str) -> CreatedMessageRecord: ...

    async def list_messages(
        self, *, conversation_id: int, after_id: int | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]: ...

    async def mark_messages_read(self, *, conversation_id: int, user_id: int) -> int: ...

    async def get_message(self, message_id: int) -> dict[str, Any]: ...

    async def delete_message(self, message_id: int) -> bool: ...

    async def delete_conversation(self, conversation_id: int) -> bool: ...

    async def admin_list_conversations(self, *, limit: int, offset: int) -> list[dict[str, Any]]: ...

    async def admin_get_conversation_detail(self, conversation_id: int) -> dict[str, Any]: ...


def validate_positive_id(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 < value <= MAX_RECORD_ID:
        raise RepositoryValidationError(f"{field_name} must be an integer between 1 and {MAX_RECORD_ID}")
    return value


def validate_message_content(content: Any) -> str:
    if not isinstance(content, str) or not content.strip():
        raise RepositoryValidationError("content must be a non-empty string")
    return content


def validate_conversation_role(role: Any) -> str:
    if role not in CONVERSATION_ROLES:
        raise RepositoryValidationError("role must be one of: employer, student")
    return role


def check_participant_pair(employer: dict[str, Any] | None, student: dict[str, Any] | None) -> None:
    if employer is None:
        raise RepositoryNotFoundError("employer not found")
    if student is None:
        raise RepositoryNotFoundError("student not found")
    if employer["role"] != "employer":
        raise RepositoryValidationError("employer_id must reference an employer account")
    if student["role"] != "student":
        raise RepositoryValidationError("student_id must reference a student account")


def resolve_recipient_id(conversation: dict[str, Any] | asyncpg.Record, sender_id: int) -> int:
    """Return the participant who is not ``sender_id``; reject outsiders."""
    if sender_id == conversation["employer_id"]:
        return conversation["student_id"]
    if sender_id == conversation["student_id"]:
        return conversation["employer_id"]
    raise RepositoryForbiddenError("user is not a participant of this conversation")


def check_sender_account(sender: dict[str, Any] | asyncpg.Record | None) -> None:
    if sender is None:
        raise RepositoryForbiddenError("sender account not found")
    if sender["is_suspended"]:
        raise RepositoryForbiddenError("sender account is suspended")


_USER_COLUMNS = "id, email, name, phone, role, is_verified, is_suspended, is_super_admin, created_at"
_CONVERSATION_COLUMNS = "id, employer_id, student_id, internship_id, created_at, updated_at"
_MESSAGE_COLUMNS = "id, conversation_id, sender_id, content, is_read, created_at"

_ADMIN_CONVERSATION_SELECT = """
    select
      c.id,
      c.employer_id,
      c.student_id,
      c.internship_id,
      c.created_at,
      c.updated_at,
      e.id as employer_user_id,
      e.email as employer_user_email,
      e.name as employer_user_name,
      e.phone as employer_user_phone,
      e.role as employer_user_role,
      s.id as student_user_id,
      s.email as student_user_email,
      s.name as student_user_name,
      s.phone as student_user_phone,
      s.role as student_user_role,
      coalesce(stats.message_count, 0) as message_count,
      stats.last_message_at
    from conversations c
    left join users e on e.id = c.employer_id
    left join users s on s.id = c.student_id
    left join lateral (
      select count(*) as message_count, max(m.created_at) as last_message_at
      from messages m
      where m.conversation_id = c.id
    ) stats on true
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

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

        pool = await self._get_pool()
        user_rows = await pool.fetch(
            f"select {_USER_COLUMNS} from users where id = any($1::int[])",
            [employer_id, student_id],
        )
        users_by_id = {row["id"]: self._user_row_to_dict(row) for row in user_rows}
        check_participant_pair(users_by_id.get(employer_id), users_by_id.get(student_id))

        # The unique (employer_id, student_id) index arbitrates concurrent creators.
        row = await pool.fetchrow(
            f"""
            insert into conversations (employer_id, student_id, internship_id)
            values ($1, $2, $3)
            on conflict (employer_id, student_id) do nothing
            returning {_CONVERSATION_COLUMNS}
            """,
            employer_id,
            student_id,
            internship_id,
        )
        if row is None:
            row = await pool.fetchrow(
                f"""
                select {_CONVERSATION_COLUMNS}
                from conversations
                where employer_id = $1 and student_id = $2
                """,
                employer_id,
                student_id,
            )
        if row is None:
            raise RepositoryConflictError("conversation was removed while being created")
        return self._conversation_row_to_dict(row)

    async def get_conversation(self, conversation_id: int) -> dict[str, Any]:
        validate_positive_id(conversation_id, "conversation_id")
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {_CONVERSATION_COLUMNS} from conversations where id = $1",
            conversation_id,
        )
        if not row:
            raise RepositoryNotFoundError("conversation not found")
        return self._conversation_row_to_dict(row)

    async def list_conversations_for_user(self, *, user_id: int, role: str) -> list[dict[str, Any]]:
        validate_positive_id(user_id, "user_id")
        validate_conversation_role(role)
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              c.id,
              c.employer_id,
              c.student_id,
              c.internship_id,
              c.created_at,
              c.updated_at,
              u.id as other_id,
              u.email as other_email,
              u.name as other_name,
              u.phone as other_phone,
              u.role as other_role,
              lm.id as last_id,
              lm.sender_id as last_sender_id,
              lm.content as last_content,
              lm.is_read as last_is_read,
              lm.created_at as last_created_at,
              coalesce(unread.total, 0) as unread_count
            from conversations c
            left join users u
              on u.id = case when $2::text = 'employer' then c.student_id else c.employer_id end
            left join lateral (
              select m.id, m.sender_id, m.content, m.is_read, m.created_at
              from messages m
              where m.conversation_id = c.id
              order by m.created_at desc, m.id desc
              limit 1
            ) lm on true
            left join lateral (
              select count(*) as total
              from messages m
              where m.conversation_id = c.id
                and m.is_read = false
                and m.sender_id <> $1
            ) unread on true
            where (case when $2::text = 'employer' then c.employer_id else c.student_id end) = $1
            order by c.updated_at desc, c.id desc
            """,
            user_id,
            role,
        )
        items: list[dict[str, Any]] = []
        for row in rows:
            item = self._conversation_row_to_dict(row)
            item["other_user"] = self._user_summary_from_row(row, prefix="other_")
            item["last_message"] = (
                {
                    "id": row["last_id"],
                    "conversation_id": row["id"],
                    "sender_id": row["last_sender_id"],
                    "content": row["last_content"],
                    "is_read": bool(row["last_is_read"]),
                    "created_at": row["last_created_at"],
                }
                if row["last_id"] is not None
                else None
            )
            item["unread_count"] = int(row["unread_count"])
            items.append(item)
        return items

    async def create_message(self, *, conversation_id: int, sender_id: int, content: str) -> CreatedMessageRecord:
        validate_positive_id(conversation_id, "conversation_id")
        validate_positive_id(sender_id, "sender_id")
        validate_message_content(content)

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                # Row lock serializes appends so created_at follows insertion order.
                conversation = await conn.fetchrow(
                    f"select {_CONVERSATION_COLUMNS} from conversations where id = $1 for update",
                    conversation_id,
                )
                if not conversation:
                    raise RepositoryNotFoundError("conversation not found")
                recipient_id = resolve_recipient_id(conversation, sender_id)

                sender = await conn.fetchrow("select id, is_suspended from users where id = $1", sender_id)
                check_sender_account(sender)

                row = await conn.fetchrow(
                    f"""
                    insert into messages (conversation_id, sender_id, content, is_read, created_at)
                    values ($1, $2, $3, false, clock_timestamp())
                    returning {_MESSAGE_COLUMNS}
                    """,
                    conversation_id,
                    sender_id,
                    content,
                )
                await conn.execute(
                    "update conversations set updated_at = $2 where id = $1",
                    conversation_id,
                    row["created_at"],
                )

        return CreatedMessageRecord(
            message=self._message_row_to_dict(row),
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

        pool = await self._get_pool()
        exists = await pool.fetchval("select exists(select 1 from conversations where id = $1)", conversation_id)
        if not exists:
            raise RepositoryNotFoundError("conversation not found")

        rows = await pool.fetch(
            f"""
            select {_MESSAGE_COLUMNS}
            from messages
            where conversation_id = $1
              and ($2::int is null or id > $2::int)
            order by created_at asc, id asc
            limit $3::int
            """,
            conversation_id,
            after_id,
            limit,
        )
        return [self._message_row_to_dict(row) for row in rows]

    async def mark_messages_read(self, *, conversation_id: int, user_id: int) -> int:
        validate_positive_id(conversation_id, "conversation_id")
        validate_positive_id(user_id, "user_id")

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                conversation = await conn.fetchrow(
                    f"select {_CONVERSATION_COLUMNS} from conversations where id = $1",
                    conversation_id,
                )
                if not conversation:
                    raise RepositoryNotFoundError("conversation not found")
                resolve_recipient_id(conversation, user_id)

                status = await conn.execute(
                    """
                    update messages
                    set is_read = true
                    where conversation_id = $1
                      and sender_id <> $2
                      and is_read = false
                    """,
                    conversation_id,
                    user_id,
                )
        return self._affected_rows(status)

    async def get_message(self, message_id: int) -> dict[str, Any]:
        validate_positive_id(message_id, "message_id")
        pool = await self._get_pool()
        row = await pool.fetchrow(f"select {_MESSAGE_COLUMNS} from messages where id = $1", message_id)
        if not row:
            raise RepositoryNotFoundError("message not found")
        return self._message_row_to_dict(row)

    async def delete_message(self, message_id: int) -> bool:
        validate_positive_id(message_id, "message_id")
        pool = await self._get_pool()
        deleted = await pool.fetchval("delete from messages where id = $1 returning id", message_id)
        return deleted is not None

    async def delete_conversation(self, conversation_id: int) -> bool:
        validate_positive_id(conversation_id, "conversation_id")
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("delete from messages where conversation_id = $1", conversation_id)
                deleted = await conn.fetchval(
                    "delete from conversations where id = $1 returning id",
                    conversation_id,
                )
        return deleted is not None

    async def admin_list_conversations(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            {_ADMIN_CONVERSATION_SELECT}
            order by coalesce(stats.last_message_at, c.updated_at) desc, c.id desc
            limit $1
            offset $2
            """,
            limit,
            offset,
        )
        return [self._admin_conversation_row_to_dict(row) for row in rows]

    async def admin_get_conversation_detail(self, conversation_id: int) -> dict[str, Any]:
        validate_positive_id(conversation_id, "conversation_id")
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            {_ADMIN_CONVERSATION_SELECT}
            where c.id = $1
            """,
            conversation_id,
        )
        if not row:
            raise RepositoryNotFoundError("conversation not found")

        message_rows = await pool.fetch(
            """
            select
              m.id,
              m.conversation_id,
              m.sender_id,
              m.content,
              m.is_read,
              m.created_at,
              u.id as sender_user_id,
              u.email as sender_user_email,
              u.name as sender_user_name,
              u.phone as sender_user_phone,
              u.role as sender_user_role
            from messages m
            left join users u on u.id = m.sender_id
            where m.conversation_id = $1
            order by m.created_at asc, m.id asc
            """,
            conversation_id,
        )
        conversation = self._admin_conversation_row_to_dict(row)
        messages = []
        for message_row in message_rows:
            message = self._message_row_to_dict(message_row)
            message["sender"] = self._user_summary_from_row(message_row, prefix="sender_user_")
            messages.append(message)

        return {
            "conversation": conversation,
            "messages": messages,
            "employer": conversation["employer"],
            "student": conversation["student"],
        }

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("IH_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _affected_rows(status: str) -> int:
        # asyncpg returns the command tag, e.g. "UPDATE 3".
        try:
            return int(status.rsplit(" ", maxsplit=1)[-1])
        except (AttributeError, ValueError):
            return 0

    @staticmethod
    def _user_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "email": row["email"],
            "name": row["name"],
            "phone": row["phone"],
            "role": row["role"],
            "is_verified": bool(row["is_verified"]),
            "is_suspended": bool(row["is_suspended"]),
            "is_super_admin": bool(row["is_super_admin"]),
            "created_at": row["created_at"],
        }

    @staticmethod
    def _user_summary_from_row(row: asyncpg.Record, *, prefix: str) -> dict[str, Any] | None:
        if row[f"{prefix}id"] is None:
            return None
        return {
            "id": row[f"{prefix}id"],
            "email": row[f"{prefix}email"],
            "name": row[f"{prefix}name"],
            "phone": row[f"{prefix}phone"],
            "role": row[f"{prefix}role"],
        }

    @staticmethod
    def _conversation_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "employer_id": row["employer_id"],
            "student_id": row["student_id"],
            "internship_id": row["internship_id"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    @staticmethod
    def _message_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "conversation_id": row["conversation_id"],
            "sender_id": row["sender_id"],
            "content": row["content"],
            "is_read": bool(row["is_read"]),
            "created_at": row["created_at"],
        }

    def _admin_conversation_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        item = self._conversation_row_to_dict(row)
        item["employer"] = self._user_summary_from_row(row, prefix="employer_user_")
        item["student"] = self._user_summary_from_row(row, prefix="student_user_")
        item["message_count"] = int(row["message_count"])
        item["last_message_at"] = row["last_message_at"]
        return item


@lru_cache
def get_repository() -> MessagingRepository:
    settings = get_settings()
    if settings.repository_backend == "memory":
        from internhub.services.store import InMemoryRepository

        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
