from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pesantren.core.chat_constants import MessageStatus, MESSAGE_MAX_LENGTH, BATCH_STATUS_MAX_IDS
from pesantren.core.roles import Role


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Requests ---

class MessageCreate(CamelModel):
    body: str

    @field_validator("body")
    @classmethod
    def body_length(cls, value: str) -> str:
        # Limits apply to the stripped text
        value = value.strip()
        if not value:
            raise ValueError("Pesan tidak boleh kosong")
        if len(value) > MESSAGE_MAX_LENGTH:
            raise ValueError(f"Pesan terlalu panjang (maksimal {MESSAGE_MAX_LENGTH} karakter)")
        return value


class StatusUpdate(CamelModel):
    status: Literal["delivered", "read"]


class BatchStatusUpdate(CamelModel):
    message_ids: List[str] = Field(..., min_length=1, max_length=BATCH_STATUS_MAX_IDS)
    status: Literal["delivered", "read"]


class ChatCreate(CamelModel):
    participant_id: int


# --- Responses ---

class MessageRead(CamelModel):
    id: str
    chat_id: str
    sender_id: int
    sender_name: Optional[str] = None
    body: str
    created_at: datetime
    status: MessageStatus
    status_timestamp: Dict[str, str] = {}


class MessageEnvelope(CamelModel):
    message: MessageRead


class MessagePage(CamelModel):
    messages: List[MessageRead]
    next_cursor: Optional[str] = None
    has_more: bool = False


class StatusUpdateResult(CamelModel):
    message: MessageRead
    status: MessageStatus
    timestamp: str


class BatchStatusResult(CamelModel):
    success: List[str]
    failed: List[str]


class ChatSummary(CamelModel):
    id: str
    other_participant_id: int
    other_participant_name: str
    other_participant_role: Optional[Role] = None
    last_message: str = ""
    last_message_time: Optional[datetime] = None
    last_message_status: Optional[MessageStatus] = None
    created_at: datetime


class ChatList(CamelModel):
    chats: List[ChatSummary]


class ChatSearchResult(CamelModel):
    chats: List[ChatSummary]
    query: str


class ChatCreated(CamelModel):
    message: str
    chat_id: str


class ChatUser(CamelModel):
    id: int
    name: str
    email: str
    role: Role


class ChatUserList(CamelModel):
    users: List[ChatUser]


class ChatServerStatus(CamelModel):
    status: str
    active_connections: int
