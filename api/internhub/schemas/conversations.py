from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from internhub.services.repository import MAX_RECORD_ID

ConversationRole = Literal["student", "employer"]
UserRole = Literal["student", "employer", "admin"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserSummaryOut(ApiModel):
    id: int
    email: str
    name: str | None = None
    phone: str | None = None
    role: UserRole


class ConversationOut(ApiModel):
    id: int
    employer_id: int
    student_id: int
    internship_id: int | None = None
    created_at: datetime
    updated_at: datetime


class MessageOut(ApiModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    is_read: bool = False
    created_at: datetime


class ConversationSummaryOut(ConversationOut):
    other_user: UserSummaryOut | None = None
    last_message: MessageOut | None = None
    unread_count: int = 0


class ConversationCreateRequest(ApiModel):
    employer_id: int = Field(gt=0, le=MAX_RECORD_ID)
    student_id: int = Field(gt=0, le=MAX_RECORD_ID)
    internship_id: int | None = Field(default=None, gt=0, le=MAX_RECORD_ID)


class MessageCreateRequest(ApiModel):
    sender_id: int = Field(gt=0, le=MAX_RECORD_ID)
    content: str = Field(min_length=1, max_length=10_000)


class MarkReadRequest(ApiModel):
    user_id: int = Field(gt=0, le=MAX_RECORD_ID)


class MarkReadOut(ApiModel):
    success: bool = True
    updated: int = 0
