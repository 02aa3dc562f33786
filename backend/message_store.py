"""Append-only store of conversation turns (chat_messages)."""

import os
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from models import ChatMessage, ChatThreadRel
from schemas import ChatMessagePayload

MESSAGE_TYPE_USER = "user_status"
MESSAGE_TYPE_AI = "ai_response"
MESSAGE_TYPE_RECONCILED = "mastodon_status"
MESSAGE_TYPE_PSEUDO = "pseudo_message"

PRIVACY_PUBLIC = "public"
PRIVACY_PRIVATE = "private"

_id_lock = threading.Lock()
_last_id_ms = 0
_id_counter = 0


def generate_id() -> str:
    """UUIDv7 string: 48-bit unix ms, version 7, 12-bit per-ms counter, random tail."""
    global _last_id_ms, _id_counter
    with _id_lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms <= _last_id_ms:
            now_ms = _last_id_ms
            _id_counter += 1
            if _id_counter > 0xFFF:
                now_ms += 1
                _id_counter = 0
        else:
            _id_counter = 0
        _last_id_ms = now_ms
        counter = _id_counter

    tail = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)
    value = (now_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= counter << 64
    value |= 0x2 << 62
    value |= tail
    return str(uuid.UUID(int=value))


def privacy_level_for(visibility: Optional[str]) -> str:
    if visibility in ("direct", "private"):
        return PRIVACY_PRIVATE
    return PRIVACY_PUBLIC


def dump_payload(payload: ChatMessagePayload) -> str:
    return payload.model_dump_json(exclude_none=True)


def load_payload(row: ChatMessage) -> ChatMessagePayload:
    return ChatMessagePayload.model_validate_json(row.json_body)


def create_message(
    db: Session,
    payload: ChatMessagePayload,
    message_type: str,
    privacy_level: str,
    status_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> ChatMessage:
    """Stage a new message in the caller's transaction (flushed, not committed)."""
    row = ChatMessage(
        id=generate_id(),
        message_type=message_type,
        json_body=dump_payload(payload),
        user_name=payload.name or "",
        mastodon_status_id=status_id or None,
        timestamp=timestamp or datetime.now(timezone.utc),
        privacy_level=privacy_level,
    )
    db.add(row)
    db.flush()
    return row


def find_message_by_status_id(db: Session, status_id: str) -> Optional[ChatMessage]:
    if not status_id:
        return None
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.mastodon_status_id == status_id)
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .first()
    )


def get_message(db: Session, message_id: str) -> Optional[ChatMessage]:
    return db.query(ChatMessage).filter(ChatMessage.id == message_id).first()


def attach_status_id(db: Session, message_id: str, status_id: str) -> ChatMessage:
    """Back-fill the post id of a turn saved before it was posted. Only once."""
    row = get_message(db, message_id)
    if row is None:
        raise LookupError(f"message {message_id} not found")
    if row.mastodon_status_id and row.mastodon_status_id != status_id:
        raise ValueError(
            f"message {message_id} already linked to status {row.mastodon_status_id}"
        )
    try:
        row.mastodon_status_id = status_id
        db.commit()
    except Exception:
        db.rollback()
        raise
    return row


def get_recent_messages(db: Session, limit: int, exclude_private: bool = True) -> list[ChatMessage]:
    """Newest-first system-wide turns, leaving out anything from private conversations."""
    if limit <= 0:
        return []
    query = db.query(ChatMessage).filter(ChatMessage.message_type != MESSAGE_TYPE_PSEUDO)
    if exclude_private:
        # Aliased so the subqueries never correlate with the enclosing queries.
        private_msg = aliased(ChatMessage)
        private_rel = aliased(ChatThreadRel)
        private_threads = (
            select(private_rel.thread_id)
            .join(private_msg, private_msg.id == private_rel.chat_message_id)
            .where(private_msg.privacy_level == PRIVACY_PRIVATE)
        )
        private_members = select(ChatThreadRel.chat_message_id).where(
            ChatThreadRel.thread_id.in_(private_threads)
        )
        query = query.filter(
            ChatMessage.privacy_level != PRIVACY_PRIVATE,
            ChatMessage.id.not_in(private_members),
        )
    return (
        query.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
