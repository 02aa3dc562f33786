"""
Reply pipeline: notification -> thread -> context -> model -> posts -> store.

Each notification is handled in isolation. Any failure while answering one is
logged, recorded in telemetry and answered with a fixed notice; the next
notification is processed regardless, and the cursor moves past every
notification that was attempted.
"""

import asyncio
from pathlib import Path
from typing import List, Optional, Union

import httpx
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bot_state import BotState, advance_cursor, save_state
from config import BotConfig
from errors import BotError, ReplyTooLongError
from history_service import build_extra_context, restore_thread
from llm_service import ChatService
from mastodon_client import MastodonClient
from message_store import (
    MESSAGE_TYPE_AI,
    MESSAGE_TYPE_PSEUDO,
    MESSAGE_TYPE_USER,
    attach_status_id,
    privacy_level_for,
)
from retry import with_retry
from schemas import ChatMessagePayload, Notification, Status
from telemetry import append_bot_telemetry
from text_utils import extract_image_markdown, sanitize_mentions, split_text
from thread_index import append_message
from thread_resolver import ThreadResolver

ERROR_NOTICE = "Something went wrong while I was thinking. Please try again later."
TOO_LONG_NOTICE = "My reply came out too long to post. Could you ask me a shorter question?"

_MEDIA_POLL_ATTEMPTS = 10
_MEDIA_POLL_INTERVAL_SEC = 1.0


class ReplyResult(BaseModel):
    thread_id: str
    user_message: ChatMessagePayload
    response: ChatMessagePayload
    image_urls: List[str] = Field(default_factory=list)


class ReplyPipeline:
    def __init__(
        self,
        db: Session,
        mastodon: MastodonClient,
        chat_service: ChatService,
        config: BotConfig,
        my_account_id: str,
        dry_run: bool = False,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.mastodon = mastodon
        self.chat_service = chat_service
        self.config = config
        self.my_account_id = my_account_id
        self.dry_run = dry_run
        self._http_transport = http_transport
        self.resolver = ThreadResolver(
            db,
            mastodon,
            my_account_id,
            retry_attempts=config.retry_attempts,
            retry_backoff_sec=config.retry_backoff_sec,
        )

    async def _retry(self, label: str, fn):
        return await with_retry(
            label,
            fn,
            attempts=self.config.retry_attempts,
            backoff_sec=self.config.retry_backoff_sec,
        )

    # ------------------------------------------------------------------
    # Generating
    # ------------------------------------------------------------------

    async def reply_to(self, status: Status) -> ReplyResult:
        """Work out the reply to ``status`` without posting or storing it."""
        thread_id = await self.resolver.resolve_thread(status)
        extra_context = build_extra_context(
            self.db,
            status.account.acct,
            max_threads=self.config.max_history_threads,
            max_recent_per_account=self.config.max_recent_per_account,
            recent_limit=self.config.recent_context_limit,
        )
        context = self.chat_service.new_chat_context(extra_context)
        context.history.extend(restore_thread(self.db, thread_id))
        print(f"[pipeline] status={status.id} thread={thread_id} history={len(context.history)}")

        user_message = self.resolver.convert_status(status)
        response = await self.chat_service.chat(context, user_message)
        return ReplyResult(
            thread_id=thread_id,
            user_message=user_message,
            response=response.message,
            image_urls=response.image_urls,
        )

    async def reply_to_status_id(self, status_id: str) -> ReplyResult:
        status = await self._retry("get-status", lambda: self.mastodon.get_status(status_id))
        return await self.reply_to(status)

    def split_reply(self, text: str, acct: str) -> List[str]:
        """Chunks ready to post after the ``@acct `` prefix.

        Raises ``ReplyTooLongError`` when a single line still does not fit in a post.
        """
        limit = self.config.max_post_chars - len(f"@{acct} ")
        threshold = min(self.config.reply_split_threshold, limit)
        parts = split_text(text, threshold) if len(text) > threshold else [text]
        for part in parts:
            if len(part) > limit:
                raise ReplyTooLongError(f"reply part of {len(part)} chars exceeds the {limit} char limit")
        return parts

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    async def _download_image(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.config.network_timeout_sec,
            follow_redirects=True,
            transport=self._http_transport,
        ) as client:
            r = await client.get(url)
        r.raise_for_status()
        return r.content

    async def _attach_image(self, url: str) -> List[str]:
        """Upload the image at ``url``; an image that cannot be attached is dropped."""
        try:
            data = await self._retry("image-download", lambda: self._download_image(url))
            media = await self._retry("media-upload", lambda: self.mastodon.upload_image(data))
            for _ in range(_MEDIA_POLL_ATTEMPTS):
                if media.status == "uploaded":
                    return [media.id]
                await asyncio.sleep(_MEDIA_POLL_INTERVAL_SEC)
                media = await self.mastodon.get_media(media.id)
            print(f"[pipeline] media {media.id} still processing, posting without it")
        except Exception as exc:
            print(f"[pipeline] image attach failed url={url}: {exc}")
        return []

    async def reply_and_post(self, status: Status) -> ReplyResult:
        result = await self.reply_to(status)
        acct = status.account.acct

        text, markdown_url = extract_image_markdown(sanitize_mentions(result.response.content or ""))
        if not text.strip():
            raise BotError("model returned an empty reply")
        image_url = result.image_urls[0] if result.image_urls else markdown_url
        chunks = self.split_reply(text, acct)

        if self.dry_run:
            print(f"[pipeline] dry run: {len(chunks)} chunk(s) for status={status.id} image={image_url}")
            for chunk in chunks:
                print(f"@{acct} {chunk}")
            return result

        privacy = privacy_level_for(status.visibility)
        append_message(self.db, result.thread_id, result.user_message, MESSAGE_TYPE_USER, privacy, status_id=status.id)
        assistant = append_message(self.db, result.thread_id, result.response, MESSAGE_TYPE_AI, privacy)

        media_ids = await self._attach_image(image_url) if image_url else []
        in_reply_to_id = status.id
        for i, chunk in enumerate(chunks):
            posted = await self._retry(
                "post-status",
                lambda: self.mastodon.post_status(
                    f"@{acct} {chunk}",
                    reply_to_id=in_reply_to_id,
                    media_ids=(media_ids or None) if i == 0 else None,
                    visibility=status.visibility,
                ),
            )
            if i == 0:
                attach_status_id(self.db, assistant.id, posted.id)
            else:
                # Continuation chunks are stored so replies to them resolve to this thread.
                append_message(
                    self.db,
                    result.thread_id,
                    self.resolver.convert_status(posted),
                    MESSAGE_TYPE_PSEUDO,
                    privacy,
                    status_id=posted.id,
                )
            in_reply_to_id = posted.id

        print(f"[pipeline] replied to status={status.id} thread={result.thread_id} chunks={len(chunks)}")
        append_bot_telemetry(
            "reply_posted",
            {
                "status_id": status.id,
                "thread_id": result.thread_id,
                "chunks": len(chunks),
                "image": bool(media_ids),
            },
        )
        return result

    async def post_error_reply(self, status: Status, notice: str) -> None:
        if self.dry_run:
            print(f"[pipeline] dry run: would post notice to status={status.id}: {notice}")
            return
        try:
            await self.mastodon.post_status(
                f"@{status.account.acct} {notice}",
                reply_to_id=status.id,
                visibility=status.visibility,
            )
        except Exception as exc:
            print(f"[pipeline] error reply to status={status.id} failed: {exc}")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def handle_notification(self, notification: Notification) -> bool:
        status = notification.status
        if status is None or notification.account.id == self.my_account_id:
            print(f"[pipeline] skipping notification={notification.id}")
            return False
        try:
            await self.reply_and_post(status)
            return True
        except Exception as exc:
            self.db.rollback()
            print(f"[pipeline] failed to reply to notification={notification.id} status={status.id}: {exc}")
            append_bot_telemetry(
                "reply_failed",
                {
                    "notification_id": notification.id,
                    "status_id": status.id,
                    "error": type(exc).__name__,
                    "detail": str(exc)[:300],
                },
            )
            notice = TOO_LONG_NOTICE if isinstance(exc, ReplyTooLongError) else ERROR_NOTICE
            await self.post_error_reply(status, notice)
            return False

    async def process_notifications(
        self,
        state: BotState,
        state_path: Union[str, Path],
        stop_event: Optional[asyncio.Event] = None,
    ) -> int:
        """One polling cycle over new mentions. Returns how many were answered."""
        notifications = await self._retry(
            "notifications",
            lambda: self.mastodon.get_all_notifications(
                since_id=state.last_notification_id,
                types=["mention"],
            ),
        )
        print(f"[pipeline] {len(notifications)} new notification(s) since {state.last_notification_id}")

        answered = 0
        for notification in notifications:
            if stop_event is not None and stop_event.is_set():
                break
            if await self.handle_notification(notification):
                answered += 1
            if advance_cursor(state, notification.id):
                save_state(state, state_path)
                append_bot_telemetry("cursor_advanced", {"last_notification_id": state.last_notification_id})
        return answered
