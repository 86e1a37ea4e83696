from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from internhub.services.repository import (
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
    validate_positive_id,
)
from internhub.services.store import InMemoryRepository


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def people(repo: InMemoryRepository) -> dict[str, dict[str, Any]]:
    return {
        "employer": repo.add_user(email="hr@acme.test", role="employer", name="Acme HR"),
        "student": repo.add_user(email="sam@uni.test", role="student", name="Sam"),
        "other_student": repo.add_user(email="alex@uni.test", role="student", name="Alex"),
        "admin": repo.add_user(email="root@internhub.test", role="admin"),
    }


def _conversation(repo: InMemoryRepository, people: dict[str, dict[str, Any]]) -> dict[str, Any]:
    return asyncio.run(
        repo.get_or_create_conversation(
            employer_id=people["employer"]["id"],
            student_id=people["student"]["id"],
        )
    )


def test_get_or_create_returns_existing_conversation(repo: InMemoryRepository, people) -> None:
    first = asyncio.run(
        repo.get_or_create_conversation(
            employer_id=people["employer"]["id"],
            student_id=people["student"]["id"],
            internship_id=9,
        )
    )
    second = _conversation(repo, people)

    assert second["id"] == first["id"]
    assert second["internship_id"] == 9
    assert len(repo.conversations) == 1


def test_concurrent_get_or_create_yields_one_conversation(repo: InMemoryRepository, people) -> None:
    async def _race() -> list[dict[str, Any]]:
        return await asyncio.gather(
            *[
                repo.get_or_create_conversation(
                    employer_id=people["employer"]["id"],
                    student_id=people["student"]["id"],
                )
                for _ in range(25)
            ]
        )

    results = asyncio.run(_race())

    assert {row["id"] for row in results} == {results[0]["id"]}
    assert len(repo.conversations) == 1


def test_threaded_get_or_create_yields_one_conversation(repo: InMemoryRepository, people) -> None:
    def _create(_: int) -> int:
        row = asyncio.run(
            repo.get_or_create_conversation(
                employer_id=people["employer"]["id"],
                student_id=people["student"]["id"],
            )
        )
        return row["id"]

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = set(pool.map(_create, range(40)))

    assert len(ids) == 1
    assert len(repo.conversations) == 1


def test_get_or_create_validates_participant_roles(repo: InMemoryRepository, people) -> None:
    with pytest.raises(RepositoryValidationError):
        asyncio.run(
            repo.get_or_create_conversation(
                employer_id=people["student"]["id"],
                student_id=people["other_student"]["id"],
            )
        )
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(repo.get_or_create_conversation(employer_id=people["employer"]["id"], student_id=999))
    with pytest.raises(RepositoryValidationError):
        asyncio.run(repo.get_or_create_conversation(employer_id=0, student_id=people["student"]["id"]))


def test_appends_are_listed_in_creation_order(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    senders = [people["employer"]["id"], people["student"]["id"]] * 5

    for index, sender_id in enumerate(senders):
        asyncio.run(
            repo.create_message(conversation_id=conversation["id"], sender_id=sender_id, content=f"message {index}")
        )

    messages = asyncio.run(repo.list_messages(conversation_id=conversation["id"]))

    assert len(messages) == len(senders)
    assert [message["content"] for message in messages] == [f"message {index}" for index in range(10)]
    created = [message["created_at"] for message in messages]
    assert created == sorted(created)


def test_create_message_reports_recipient_and_bumps_conversation(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)

    created = asyncio.run(
        repo.create_message(conversation_id=conversation["id"], sender_id=people["student"]["id"], content="Hi")
    )

    assert created.recipient_id == people["employer"]["id"]
    assert created.message["is_read"] is False
    refreshed = asyncio.run(repo.get_conversation(conversation["id"]))
    assert refreshed["updated_at"] == created.message["created_at"]


def test_create_message_rejects_outsiders_and_blank_content(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)

    with pytest.raises(RepositoryForbiddenError):
        asyncio.run(
            repo.create_message(
                conversation_id=conversation["id"],
                sender_id=people["other_student"]["id"],
                content="let me in",
            )
        )
    with pytest.raises(RepositoryValidationError):
        asyncio.run(
            repo.create_message(conversation_id=conversation["id"], sender_id=people["employer"]["id"], content="  ")
        )
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(repo.create_message(conversation_id=404, sender_id=people["employer"]["id"], content="hello"))

    assert asyncio.run(repo.list_messages(conversation_id=conversation["id"])) == []


def test_suspended_sender_cannot_post(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    repo.users[people["student"]["id"]]["is_suspended"] = True

    with pytest.raises(RepositoryForbiddenError, match="suspended"):
        asyncio.run(
            repo.create_message(conversation_id=conversation["id"], sender_id=people["student"]["id"], content="hey")
        )


def test_mark_read_flips_only_counterpart_messages_and_is_idempotent(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    employer_id = people["employer"]["id"]
    student_id = people["student"]["id"]

    hello = asyncio.run(repo.create_message(conversation_id=conversation["id"], sender_id=employer_id, content="Hello"))
    reply = asyncio.run(repo.create_message(conversation_id=conversation["id"], sender_id=student_id, content="Hi!"))

    assert hello.message["sender_id"] == employer_id
    assert hello.message["is_read"] is False

    assert asyncio.run(repo.mark_messages_read(conversation_id=conversation["id"], user_id=student_id)) == 1
    first_state = [(m["id"], m["is_read"]) for m in asyncio.run(repo.list_messages(conversation_id=conversation["id"]))]
    assert asyncio.run(repo.mark_messages_read(conversation_id=conversation["id"], user_id=student_id)) == 0
    second_state = [(m["id"], m["is_read"]) for m in asyncio.run(repo.list_messages(conversation_id=conversation["id"]))]

    assert first_state == second_state
    assert dict(first_state) == {hello.message["id"]: True, reply.message["id"]: False}

    later = asyncio.run(
        repo.create_message(conversation_id=conversation["id"], sender_id=employer_id, content="Are you free?")
    )
    assert asyncio.run(repo.get_message(later.message["id"]))["is_read"] is False

    asyncio.run(repo.mark_messages_read(conversation_id=conversation["id"], user_id=student_id))
    assert asyncio.run(repo.get_message(later.message["id"]))["is_read"] is True


def test_mark_read_requires_participant(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)

    with pytest.raises(RepositoryForbiddenError):
        asyncio.run(repo.mark_messages_read(conversation_id=conversation["id"], user_id=people["admin"]["id"]))


def test_list_for_user_annotates_counterpart_last_message_and_unread(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    employer_id = people["employer"]["id"]
    student_id = people["student"]["id"]
    asyncio.run(repo.create_message(conversation_id=conversation["id"], sender_id=employer_id, content="one"))
    asyncio.run(repo.create_message(conversation_id=conversation["id"], sender_id=employer_id, content="two"))

    student_view = asyncio.run(repo.list_conversations_for_user(user_id=student_id, role="student"))
    employer_view = asyncio.run(repo.list_conversations_for_user(user_id=employer_id, role="employer"))

    assert len(student_view) == 1
    assert student_view[0]["other_user"]["email"] == "hr@acme.test"
    assert student_view[0]["last_message"]["content"] == "two"
    assert student_view[0]["unread_count"] == 2
    assert employer_view[0]["other_user"]["email"] == "sam@uni.test"
    assert employer_view[0]["unread_count"] == 0

    with pytest.raises(RepositoryValidationError):
        asyncio.run(repo.list_conversations_for_user(user_id=student_id, role="admin"))


def test_list_for_user_orders_by_latest_activity(repo: InMemoryRepository, people) -> None:
    employer_id = people["employer"]["id"]
    first = _conversation(repo, people)
    second = asyncio.run(
        repo.get_or_create_conversation(employer_id=employer_id, student_id=people["other_student"]["id"])
    )
    asyncio.run(repo.create_message(conversation_id=first["id"], sender_id=employer_id, content="bump"))

    rows = asyncio.run(repo.list_conversations_for_user(user_id=employer_id, role="employer"))

    assert [row["id"] for row in rows] == [first["id"], second["id"]]


def test_list_messages_supports_cursor_pagination(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    ids = [
        asyncio.run(
            repo.create_message(
                conversation_id=conversation["id"],
                sender_id=people["employer"]["id"],
                content=f"m{index}",
            )
        ).message["id"]
        for index in range(5)
    ]

    page = asyncio.run(repo.list_messages(conversation_id=conversation["id"], limit=2))
    assert [message["id"] for message in page] == ids[:2]

    next_page = asyncio.run(repo.list_messages(conversation_id=conversation["id"], after_id=page[-1]["id"], limit=2))
    assert [message["id"] for message in next_page] == ids[2:4]

    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(repo.list_messages(conversation_id=999))


def test_delete_conversation_cascades_to_messages(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    message_ids = [
        asyncio.run(
            repo.create_message(conversation_id=conversation["id"], sender_id=people["student"]["id"], content=text)
        ).message["id"]
        for text in ("a", "b")
    ]

    assert asyncio.run(repo.delete_conversation(conversation["id"])) is True
    assert asyncio.run(repo.delete_conversation(conversation["id"])) is False

    listed = asyncio.run(repo.admin_list_conversations(limit=100, offset=0))
    assert conversation["id"] not in {row["id"] for row in listed}
    for message_id in message_ids:
        with pytest.raises(RepositoryNotFoundError):
            asyncio.run(repo.get_message(message_id))

    recreated = _conversation(repo, people)
    assert recreated["id"] != conversation["id"]


def test_delete_single_message_keeps_conversation(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    first = asyncio.run(
        repo.create_message(conversation_id=conversation["id"], sender_id=people["student"]["id"], content="keep")
    )
    second = asyncio.run(
        repo.create_message(conversation_id=conversation["id"], sender_id=people["student"]["id"], content="drop")
    )

    assert asyncio.run(repo.delete_message(second.message["id"])) is True
    assert asyncio.run(repo.delete_message(second.message["id"])) is False

    remaining = asyncio.run(repo.list_messages(conversation_id=conversation["id"]))
    assert [message["id"] for message in remaining] == [first.message["id"]]
    assert asyncio.run(repo.get_conversation(conversation["id"]))["id"] == conversation["id"]


def test_admin_detail_includes_participants_and_senders(repo: InMemoryRepository, people) -> None:
    conversation = _conversation(repo, people)
    asyncio.run(
        repo.create_message(conversation_id=conversation["id"], sender_id=people["employer"]["id"], content="Hello")
    )

    detail = asyncio.run(repo.admin_get_conversation_detail(conversation["id"]))

    assert detail["employer"]["id"] == people["employer"]["id"]
    assert detail["student"]["id"] == people["student"]["id"]
    assert detail["conversation"]["message_count"] == 1
    assert detail["conversation"]["last_message_at"] == detail["messages"][0]["created_at"]
    assert detail["messages"][0]["sender"]["name"] == "Acme HR"


def test_ids_beyond_int4_range_are_rejected(repo: InMemoryRepository, people) -> None:
    too_big = 2**31

    with pytest.raises(RepositoryValidationError):
        asyncio.run(repo.get_or_create_conversation(employer_id=people["employer"]["id"], student_id=too_big))
    with pytest.raises(RepositoryValidationError):
        asyncio.run(repo.get_conversation(too_big))
    with pytest.raises(RepositoryValidationError):
        asyncio.run(repo.delete_message(too_big))

    assert validate_positive_id(2**31 - 1, "conversation_id") == 2**31 - 1
