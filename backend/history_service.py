"""
History compiler: turns stored threads into the message lists handed to the model.
"""

import json
from typing import List

from sqlalchemy.orm import Session

from message_store import MESSAGE_TYPE_PSEUDO, get_recent_messages, load_payload
from models import ChatMessage, ChatThreadRel
from schemas import ChatMessagePayload
from thread_index import get_recent_thread_ids_by_user


def restore_thread(db: Session, thread_id: str, include_pseudo: bool = False) -> List[ChatMessagePayload]:
    """Replayable history of one thread in ``sequence_num`` order."""
    query = (
        db.query(ChatMessage)
        .join(ChatThreadRel, ChatThreadRel.chat_message_id == ChatMessage.id)
        .filter(ChatThreadRel.thread_id == thread_id)
    )
    if not include_pseudo:
        query = query.filter(ChatMessage.message_type != MESSAGE_TYPE_PSEUDO)
    rows = query.order_by(ChatThreadRel.sequence_num.asc()).all()
    return [load_payload(row) for row in rows]


def recent_cross_user_context(db: Session, limit: int = 50) -> List[ChatMessagePayload]:
    # Stored newest first; replayed oldest first.
    rows = get_recent_messages(db, limit, exclude_private=True)
    return [load_payload(row) for row in reversed(rows)]


def build_thread_history(
    db: Session,
    acct: str,
    max_threads: int = 10,
    max_recent_per_account: int = 100,
) -> List[List[ChatMessagePayload]]:
    """Full message lists of the threads most recently shared with ``acct``.

    Unknown accounts have no history and get an empty list.
    """
    if not acct or max_threads <= 0:
        return []
    thread_ids = get_recent_thread_ids_by_user(db, acct, limit=max_recent_per_account)
    return [restore_thread(db, thread_id) for thread_id in thread_ids[:max_threads]]


def _dump_messages(messages: List[ChatMessagePayload]) -> list:
    return [m.to_api() for m in messages]


def build_extra_context(
    db: Session,
    acct: str,
    max_threads: int = 10,
    max_recent_per_account: int = 100,
    recent_limit: int = 50,
) -> str:
    """Auxiliary instruction text: past threads with ``acct`` plus recent public chatter."""
    threads = build_thread_history(db, acct, max_threads, max_recent_per_account)
    recent = recent_cross_user_context(db, recent_limit)

    threads_json = json.dumps([_dump_messages(t) for t in threads], ensure_ascii=False)
    recent_json = json.dumps(_dump_messages(recent), ensure_ascii=False)
    print(f"[history] acct={acct} threads={len(threads)} recent={len(recent)}")
    return (
        f"Recent conversation threads you had with {acct}:\n"
        "<threads>\n"
        f"{threads_json}\n"
        "</threads>\n"
        "\n"
        "Recent exchanges you had with other users:\n"
        "<recent_messages>\n"
        f"{recent_json}\n"
        "</recent_messages>\n"
    )
