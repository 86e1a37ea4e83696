from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter

from internhub.schemas.conversations import ApiModel, MessageOut
from internhub.services.repository import MAX_RECORD_ID


class RegisterEvent(ApiModel):
    type: Literal["register"]
    user_id: int = Field(gt=0, le=MAX_RECORD_ID)


class PingEvent(ApiModel):
    type: Literal["ping"] = "ping"


class PongEvent(ApiModel):
    type: Literal["pong"] = "pong"


class RegisteredEvent(ApiModel):
    type: Literal["registered"] = "registered"
    user_id: int


class NewMessageEvent(ApiModel):
    type: Literal["new_message"] = "new_message"
    conversation_id: int
    message: MessageOut


InboundEvent = Annotated[Union[RegisterEvent, PingEvent], Field(discriminator="type")]
INBOUND_EVENT_ADAPTER: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)
