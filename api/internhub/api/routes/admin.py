import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from internhub.core.auth import Principal
from internhub.core.security import get_admin_principal
from internhub.schemas.admin import (
    AdminConversationDetailOut,
    AdminConversationOut,
    AdminDeleteOut,
)
from internhub.schemas.conversations import MessageOut
from internhub.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/conversations", response_model=list[AdminConversationOut])
async def list_all_conversations(
    principal: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[AdminConversationOut]:
    try:
        rows = await repository.admin_list_conversations(limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return [AdminConversationOut(**row) for row in rows]


@router.get("/conversations/{conversation_id}", response_model=AdminConversationDetailOut)
async def get_conversation_detail(
    conversation_id: int,
    principal: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> AdminConversationDetailOut:
    try:
        detail = await repository.admin_get_conversation_detail(conversation_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return AdminConversationDetailOut(**detail)


@router.delete("/conversations/{conversation_id}", response_model=AdminDeleteOut)
async def delete_conversation(
    conversation_id: int,
    principal: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> AdminDeleteOut:
    try:
        deleted = await repository.delete_conversation(conversation_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"reason": "not_found", "message": "conversation not found"},
        )
    logger.info("conversation deleted conversation_id=%s actor=%s", conversation_id, principal.subject)
    return AdminDeleteOut(success=True)


@router.get("/messages/{message_id}", response_model=MessageOut)
async def get_message(
    message_id: int,
    principal: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> MessageOut:
    try:
        row = await repository.get_message(message_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    return MessageOut(**row)


@router.delete("/messages/{message_id}", response_model=AdminDeleteOut)
async def delete_message(
    message_id: int,
    principal: Principal = Depends(get_admin_principal),
    repository=Depends(get_repository),
) -> AdminDeleteOut:
    try:
        deleted = await repository.delete_message(message_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=exc.to_detail()) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"reason": "not_found", "message": "message not found"},
        )
    logger.info("message deleted message_id=%s actor=%s", message_id, principal.subject)
    return AdminDeleteOut(success=True)
