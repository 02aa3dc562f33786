from sqlalchemy import Column, Integer, String, Text, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from database import Base


class ChatMessage(Base):
    """One conversational turn. Rows are append-only and shared between thread forks."""

    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True)  # UUIDv7, time-sortable
    message_type = Column(String(32), nullable=False, index=True)  # user_status | ai_response | mastodon_status | pseudo_message
    json_body = Column(Text, nullable=False)  # role/content/name payload replayed to the LLM
    user_name = Column(String(64), nullable=False, index=True)
    mastodon_status_id = Column(String(32), nullable=True, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    privacy_level = Column(String(16), nullable=False, default="public")  # public | private


class ChatThread(Base):
    __tablename__ = "chat_threads"

    id = Column(String(36), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ChatThreadRel(Base):
    """Membership edge: message `chat_message_id` sits at `sequence_num` inside `thread_id`."""

    __tablename__ = "chat_threads_rel"
    __table_args__ = (
        UniqueConstraint("thread_id", "sequence_num", name="uq_chat_threads_rel_thread_seq"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(36), nullable=False, index=True)
    chat_message_id = Column(String(36), nullable=False, index=True)
    sequence_num = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
