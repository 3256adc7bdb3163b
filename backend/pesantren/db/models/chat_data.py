# backend/pesantren/db/models/chat_data.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index
from pesantren.db.database import Base
from pesantren.db.models.user import get_utc_now
from pesantren.core.chat_constants import MessageStatus
from pesantren.core.push_id import generate_push_id, PUSH_ID_LENGTH


def make_pair_key(user_a: int, user_b: int) -> str:
    """Identity of an unordered participant pair."""
    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


class Chat(Base):
    __tablename__ = "chats"

    id = Column(String(PUSH_ID_LENGTH), primary_key=True, default=generate_push_id)
    participant1_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    participant2_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    participant1_name = Column(String(100), nullable=True)
    participant2_name = Column(String(100), nullable=True)
    # One chat per pair of users
    pair_key = Column(String(50), unique=True, nullable=False)
    last_message = Column(Text, nullable=True)
    last_message_time = Column(DateTime, nullable=True)
    last_message_id = Column(String(PUSH_ID_LENGTH), nullable=True)
    last_message_status = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)

    def other_participant(self, user_id: int):
        """(id, stored name) of the participant who is not user_id."""
        if self.participant1_id == user_id:
            return self.participant2_id, self.participant2_name
        return self.participant1_id, self.participant1_name


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(PUSH_ID_LENGTH), primary_key=True)
    chat_id = Column(String(PUSH_ID_LENGTH), ForeignKey("chats.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_name = Column(String(100), nullable=True)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=get_utc_now)
    status = Column(String(20), nullable=False, default=MessageStatus.SENT.value)
    # {"sent": iso, "delivered": iso, "read": iso}; keys are written once
    status_timestamp = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_chat_messages_chat_created", "chat_id", "created_at", "id"),
    )
