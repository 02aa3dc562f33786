"""Thread membership index (chat_threads / chat_threads_rel).

A thread is an ordered list of message ids. Messages are shared between
threads, so forking a conversation copies membership rows, never messages.
Every multi-row mutation here commits once on success and rolls back entirely
on failure.
"""

import threading
import weakref
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import ThreadCloneError
from message_store import MESSAGE_TYPE_PSEUDO, create_message, generate_id
from models import ChatMessage, ChatThread, ChatThreadRel
from schemas import ChatMessagePayload

_locks_guard = threading.Lock()
# Entries vanish once no append holds the lock.
_thread_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def thread_lock(thread_id: str) -> threading.Lock:
    """Lock serializing appends to one thread (max+1 is a read-then-write)."""
    with _locks_guard:
        lock = _thread_locks.get(thread_id)
        if lock is None:
            lock = threading.Lock()
            _thread_locks[thread_id] = lock
        return lock


def create_thread(db: Session) -> ChatThread:
    thread = ChatThread(id=generate_id())
    db.add(thread)
    db.flush()
    return thread


def new_thread(db: Session) -> str:
    """Create an empty thread in its own transaction."""
    try:
        thread = create_thread(db)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return thread.id


def add_thread_rel(db: Session, thread_id: str, message_id: str, sequence_num: int) -> ChatThreadRel:
    rel = ChatThreadRel(thread_id=thread_id, chat_message_id=message_id, sequence_num=sequence_num)
    db.add(rel)
    db.flush()
    return rel


def get_max_sequence_num(db: Session, thread_id: str) -> int:
    value = (
        db.query(func.coalesce(func.max(ChatThreadRel.sequence_num), 0))
        .filter(ChatThreadRel.thread_id == thread_id)
        .scalar()
    )
    return int(value or 0)


def get_thread_rels(db: Session, thread_id: str) -> list[ChatThreadRel]:
    return (
        db.query(ChatThreadRel)
        .filter(ChatThreadRel.thread_id == thread_id)
        .order_by(ChatThreadRel.sequence_num.asc())
        .all()
    )


def thread_exists(db: Session, thread_id: str) -> bool:
    return db.query(ChatThread.id).filter(ChatThread.id == thread_id).first() is not None


def find_threads_containing(db: Session, message_id: str) -> dict[str, list[ChatThreadRel]]:
    """Every thread holding ``message_id``, each with its full rel list in sequence order."""
    thread_ids = [
        row[0]
        for row in db.query(ChatThreadRel.thread_id)
        .filter(ChatThreadRel.chat_message_id == message_id)
        .distinct()
        .all()
    ]
    if not thread_ids:
        return {}
    rels = (
        db.query(ChatThreadRel)
        .filter(ChatThreadRel.thread_id.in_(thread_ids))
        .order_by(ChatThreadRel.thread_id.asc(), ChatThreadRel.sequence_num.asc())
        .all()
    )
    threads: dict[str, list[ChatThreadRel]] = {}
    for rel in rels:
        threads.setdefault(rel.thread_id, []).append(rel)
    return threads


def append_message(
    db: Session,
    thread_id: str,
    payload: ChatMessagePayload,
    message_type: str,
    privacy_level: str,
    status_id: Optional[str] = None,
) -> ChatMessage:
    """Persist a turn and put it at the end of ``thread_id`` in one transaction."""
    with thread_lock(thread_id):
        try:
            seq = get_max_sequence_num(db, thread_id) + 1
            message = create_message(db, payload, message_type, privacy_level, status_id=status_id)
            add_thread_rel(db, thread_id, message.id, seq)
            db.commit()
        except Exception:
            db.rollback()
            raise
    print(f"[store] thread={thread_id} seq={seq} type={message_type} message={message.id}")
    return message


def clone_thread(db: Session, base_rels: list[ChatThreadRel], cutoff_message_id: str) -> str:
    """Copy ``base_rels`` up to and including the cutoff into a new thread.

    Sequence numbers are kept as they are in the source thread. All-or-nothing:
    any failure rolls back the new thread together with its rows.
    """
    if not any(rel.chat_message_id == cutoff_message_id for rel in base_rels):
        raise ThreadCloneError(f"message {cutoff_message_id} is not part of the base thread")

    copied = [(rel.chat_message_id, rel.sequence_num) for rel in base_rels]
    try:
        thread = create_thread(db)
        for message_id, sequence_num in copied:
            add_thread_rel(db, thread.id, message_id, sequence_num)
            if message_id == cutoff_message_id:
                break
        db.commit()
    except Exception as exc:
        db.rollback()
        raise ThreadCloneError(f"failed to clone thread at message {cutoff_message_id}: {exc}") from exc
    print(f"[store] cloned thread into {thread.id} up to message {cutoff_message_id}")
    return thread.id


def get_recent_thread_ids_by_user(db: Session, user_name: str, limit: int = 100) -> list[str]:
    """Threads touched by the user's ``limit`` latest turns, most recently active first."""
    recent_ids = [
        row[0]
        for row in db.query(ChatMessage.id)
        .filter(ChatMessage.user_name == user_name)
        .filter(ChatMessage.message_type != MESSAGE_TYPE_PSEUDO)
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(limit)
        .all()
    ]
    if not recent_ids:
        return []
    last_seen = func.max(ChatMessage.timestamp)
    rows = (
        db.query(ChatThreadRel.thread_id, last_seen)
        .join(ChatMessage, ChatMessage.id == ChatThreadRel.chat_message_id)
        .filter(ChatThreadRel.chat_message_id.in_(recent_ids))
        .group_by(ChatThreadRel.thread_id)
        .order_by(last_seen.desc(), ChatThreadRel.thread_id.desc())
        .all()
    )
    return [row[0] for row in rows]
