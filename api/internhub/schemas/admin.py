from datetime import datetime

from internhub.schemas.conversations import ApiModel, ConversationOut, MessageOut, UserSummaryOut


class AdminConversationOut(ConversationOut):
    employer: UserSummaryOut | None = None
    student: UserSummaryOut | None = None
    message_count: int = 0
    last_message_at: datetime | None = None


class AdminMessageOut(MessageOut):
    sender: UserSummaryOut | None = None


class AdminConversationDetailOut(ApiModel):
    conversation: AdminConversationOut
    messages: list[AdminMessageOut]
    employer: UserSummaryOut | None = None
    student: UserSummaryOut | None = None


class AdminDeleteOut(ApiModel):
    success: bool = True
