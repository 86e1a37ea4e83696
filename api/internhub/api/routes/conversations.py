import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from internhub.core.config import Settings, get_settings
from internhub.schemas.conversations import (
    ConversationCreateRequest,
    ConversationOut,
    ConversationRole,
    ConversationSummaryOut,
    MarkReadOut,
    MarkReadRequest,
    MessageCreateRequest,
    MessageOut,
)
from internhub.services.dispatcher import DeliveryDispatcher, get_dispatcher
from internhub.services.repository import (
    CreatedMessageRecord,
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=ConversationOut)
async def get_or_create_conversation(
    payload: ConversationCreateRequest,
    repository=Depends(get_repository),
) -> ConversationOut:
    try:
        row = await repository.get_or_create_conversation(
            employer_id=payload.employer_id,
            student_id=payload.student_id,
            internship_id=payload.internship_id,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return ConversationOut(**row)


@router.get("/user/{user_id}", response_model=list[ConversationSummaryOut])
async def list_user_conversations(
    user_id: int,
    role: ConversationRole = Query(),
    repository=Depends(get_repository),
) -> list[ConversationSummaryOut]:
    try:
        rows = await repository.list_conversations_for_user(user_id=user_id, role=role)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return [ConversationSummaryOut(**row) for row in rows]


@router.get("/{conversation_id}", response_model=ConversationOut)
async def get_conversation(conversation_id: int, repository=Depends(get_repository)) -> ConversationOut:
    try:
        row = await repository.get_conversation(conversation_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return ConversationOut(**row)


@router.get("/{conversation_id}/messages", response_model=list[MessageOut])
async def list_messages(
    conversation_id: int,
    after: int | None = Query(default=None, ge=1),
    limit: int | None = Query(default=None, ge=1),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
) -> list[MessageOut]:
    if limit is not None:
        limit = min(limit, settings.messages_page_max_limit)

    try:
        rows = await repository.list_messages(conversation_id=conversation_id, after_id=after, limit=limit)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return [MessageOut(**row) for row in rows]


@router.post("/{conversation_id}/messages", response_model=MessageOut)
async def send_message(
    conversation_id: int,
    payload: MessageCreateRequest,
    background_tasks: BackgroundTasks,
    repository=Depends(get_repository),
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
) -> MessageOut:
    try:
        created = await repository.create_message(
            conversation_id=conversation_id,
            sender_id=payload.sender_id,
            content=payload.content,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    logger.info(
        "message stored conversation_id=%s message_id=%s",
        created.conversation_id,
        created.message["id"],
    )
    # Push runs after the response is sent; a slow recipient never delays the sender.
    background_tasks.add_task(push_new_message, dispatcher, created)
    return MessageOut(**created.message)


async def push_new_message(dispatcher: DeliveryDispatcher, created: CreatedMessageRecord) -> None:
    delivered = await dispatcher.notify_new_message(
        recipient_id=created.recipient_id,
        conversation_id=created.conversation_id,
        message=created.message,
    )
    logger.info(
        "message push conversation_id=%s message_id=%s delivered=%s",
        created.conversation_id,
        created.message["id"],
        delivered,
    )


@router.post("/{conversation_id}/read", response_model=MarkReadOut)
async def mark_conversation_read(
    conversation_id: int,
    payload: MarkReadRequest,
    repository=Depends(get_repository),
) -> MarkReadOut:
    try:
        updated = await repository.mark_messages_read(conversation_id=conversation_id, user_id=payload.user_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return MarkReadOut(success=True, updated=updated)
