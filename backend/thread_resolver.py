"""
Maps an incoming Mastodon status onto the local thread it continues.

Mastodon reply trees can branch anywhere; local threads are linear. For a
reply the resolver finds the stored message behind ``in_reply_to_id`` and
picks the thread whose tip is that message. A reply to an older message
forks the thread (copy-on-fork), and a reply to a post the bot never stored
rebuilds the thread from the network's ancestor chain.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from mastodon_client import MastodonClient
from message_store import (
    MESSAGE_TYPE_RECONCILED,
    create_message,
    find_message_by_status_id,
    privacy_level_for,
)
from retry import with_retry
from schemas import ChatMessagePayload, Status
from telemetry import append_bot_telemetry
from text_utils import normalize_status_content
from thread_index import (
    add_thread_rel,
    clone_thread,
    create_thread,
    find_threads_containing,
    new_thread,
)


def parse_status_time(raw: Optional[str]) -> datetime:
    if not raw:
        raise ValueError("status has no created_at")
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ThreadResolver:
    def __init__(
        self,
        db: Session,
        mastodon: MastodonClient,
        my_account_id: str,
        retry_attempts: int = 3,
        retry_backoff_sec: float = 10.0,
    ):
        self.db = db
        self.mastodon = mastodon
        self.my_account_id = my_account_id
        self.retry_attempts = retry_attempts
        self.retry_backoff_sec = retry_backoff_sec

    def convert_status(self, status: Status) -> ChatMessagePayload:
        role = "assistant" if status.account.id == self.my_account_id else "user"
        return ChatMessagePayload(
            role=role,
            content=normalize_status_content(status.content),
            name=status.account.acct,
        )

    async def resolve_thread(self, status: Status) -> str:
        """Return the id of the thread a reply to ``status`` should extend."""
        if not status.in_reply_to_id:
            thread_id = new_thread(self.db)
            print(f"[resolver] status={status.id} starts a conversation -> new thread {thread_id}")
            append_bot_telemetry("thread_created", {"status_id": status.id, "thread_id": thread_id})
            return thread_id

        parent = find_message_by_status_id(self.db, status.in_reply_to_id)
        if parent is None:
            # The reply tree exists on Mastodon but we never recorded it.
            return await self.reconcile_thread(status.id)

        threads = find_threads_containing(self.db, parent.id)
        if not threads:
            thread_id = new_thread(self.db)
            print(f"[resolver] message {parent.id} belongs to no thread -> new thread {thread_id}")
            append_bot_telemetry("thread_created", {"status_id": status.id, "thread_id": thread_id})
            return thread_id

        for thread_id, rels in threads.items():
            if rels[-1].chat_message_id == parent.id:
                print(f"[resolver] status={status.id} continues thread {thread_id}")
                return thread_id

        # Reply to a non-tip message: fork from any thread holding the parent.
        base_thread_id, base_rels = next(iter(threads.items()))
        forked_id = clone_thread(self.db, base_rels, parent.id)
        print(f"[resolver] status={status.id} forks thread {base_thread_id} at {parent.id} -> {forked_id}")
        append_bot_telemetry(
            "thread_forked",
            {"status_id": status.id, "base_thread_id": base_thread_id, "thread_id": forked_id},
        )
        return forked_id

    async def reconcile_thread(self, status_id: str) -> str:
        """Rebuild a thread from the ancestors of ``status_id``.

        The resulting thread holds only the ancestors, never ``status_id``
        itself. Ancestors already in the store are reused. Storing a single
        ancestor is best-effort: a failure skips that message and keeps the
        rest, and the whole thread is committed once at the end.
        """
        print(f"[resolver] reconciling thread for status={status_id}")
        tree = await with_retry(
            "reply-tree",
            lambda: self.mastodon.get_reply_tree(status_id),
            attempts=self.retry_attempts,
            backoff_sec=self.retry_backoff_sec,
        )

        db = self.db
        message_ids: list[str] = []
        skipped = 0
        try:
            thread = create_thread(db)
            for ancestor in tree.ancestors:
                if ancestor.id == status_id:
                    continue
                existing = find_message_by_status_id(db, ancestor.id)
                if existing is not None:
                    message_ids.append(existing.id)
                    continue
                try:
                    with db.begin_nested():
                        row = create_message(
                            db,
                            self.convert_status(ancestor),
                            MESSAGE_TYPE_RECONCILED,
                            privacy_level_for(ancestor.visibility),
                            status_id=ancestor.id,
                            timestamp=parse_status_time(ancestor.created_at),
                        )
                except Exception as exc:
                    skipped += 1
                    print(f"[resolver] skipping ancestor status={ancestor.id}: {exc}")
                    continue
                message_ids.append(row.id)

            for seq, message_id in enumerate(message_ids, start=1):
                add_thread_rel(db, thread.id, message_id, seq)
            db.commit()
        except Exception:
            db.rollback()
            raise

        print(f"[resolver] reconciled thread {thread.id} with {len(message_ids)} messages (skipped={skipped})")
        append_bot_telemetry(
            "thread_reconciled",
            {
                "status_id": status_id,
                "thread_id": thread.id,
                "messages": len(message_ids),
                "skipped": skipped,
            },
        )
        return thread.id
