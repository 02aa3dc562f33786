"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import pytest

# Ensure backend/ is on the import path (modules import each other by bare name)
BACKEND_PATH = Path(__file__).resolve().parent.parent / "backend"
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from config import BotConfig  # noqa: E402
from database import init_db, make_engine  # noqa: E402
from schemas import (  # noqa: E402
    Account,
    ChatMessagePayload,
    MediaAttachment,
    Notification,
    ReplyTree,
    Status,
    ToolCall,
    ToolCallFunction,
)

BOT_ACCOUNT = Account(id="1", username="teobot", acct="teobot", display_name="Teobot")


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep telemetry and LLM call logs inside the test's tmp dir."""
    monkeypatch.setenv("BOT_TELEMETRY_LOG", str(tmp_path / "bot_telemetry.log"))
    monkeypatch.setenv("BOT_TELEMETRY_ENABLED", "1")
    monkeypatch.setenv("LLM_CALL_LOG", str(tmp_path / "llm_call_log.txt"))
    yield


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config(tmp_path: Path) -> BotConfig:
    return BotConfig(
        mastodon_base_url="https://mastodon.test",
        mastodon_access_token="token",
        chat_api_url="https://llm.test/v1/chat/completions",
        chat_api_key="sk-test",
        storage_path=str(tmp_path / "data"),
        retry_attempts=2,
        retry_backoff_sec=0.0,
        max_tool_iterations=4,
    )


def make_status(
    status_id: str,
    acct: str = "alice",
    account_id: str = "100",
    content: str = "hello",
    in_reply_to_id: Optional[str] = None,
    visibility: str = "public",
    created_at: Optional[str] = "2024-05-01T12:00:00.000Z",
) -> Status:
    return Status(
        id=status_id,
        in_reply_to_id=in_reply_to_id,
        content=f"<p>{content}</p>",
        account=Account(id=account_id, username=acct, acct=acct),
        visibility=visibility,
        created_at=created_at,
    )


def make_notification(notification_id: str, status: Optional[Status]) -> Notification:
    account = status.account if status is not None else Account(id="100", acct="alice")
    return Notification(id=notification_id, type="mention", account=account, status=status)


def assistant(content: str = "", tool_calls: Optional[list] = None) -> ChatMessagePayload:
    return ChatMessagePayload(role="assistant", content=content, tool_calls=tool_calls)


def tool_call(call_id: str, name: str, arguments: str = "") -> ToolCall:
    return ToolCall(id=call_id, function=ToolCallFunction(name=name, arguments=arguments))


class FakeMastodon:
    """In-memory stand-in for MastodonClient."""

    def __init__(self, account: Account = BOT_ACCOUNT):
        self.account = account
        self.statuses: dict[str, Status] = {}
        self.trees: dict[str, ReplyTree] = {}
        self.notifications: list[Notification] = []
        self.posted: list[dict] = []
        self.uploads: list[bytes] = []
        self.fail_posts = False
        self._next_id = 9000

    def add_status(self, status: Status) -> Status:
        self.statuses[status.id] = status
        return status

    async def verify_credentials(self) -> Account:
        return self.account

    async def get_status(self, status_id: str) -> Status:
        return self.statuses[status_id]

    async def get_reply_tree(self, status_id: str) -> ReplyTree:
        return self.trees.get(status_id, ReplyTree())

    async def post_status(self, content, reply_to_id=None, media_ids=None, visibility=None, sensitive=False) -> Status:
        if self.fail_posts:
            raise RuntimeError("post refused")
        self._next_id += 1
        status = Status(
            id=str(self._next_id),
            in_reply_to_id=reply_to_id,
            content=f"<p>{content}</p>",
            account=self.account,
            visibility=visibility or "public",
            created_at="2024-05-01T12:00:01.000Z",
        )
        self.statuses[status.id] = status
        self.posted.append(
            {
                "id": status.id,
                "content": content,
                "reply_to_id": reply_to_id,
                "media_ids": media_ids,
                "visibility": visibility,
            }
        )
        return status

    async def get_all_notifications(self, since_id=None, types=None, max_id=None):
        return list(self.notifications)

    async def upload_image(self, image_data: bytes):
        self.uploads.append(image_data)
        return MediaAttachment(id="m1", status="uploaded")

    async def get_media(self, media_id: str):
        return MediaAttachment(id=media_id, status="uploaded")


class FakeChatClient:
    """Scripted ChatCompletionsClient: pops replies in order, then repeats the default."""

    def __init__(self, replies: Optional[list] = None, default: str = "hello robo"):
        self.replies = list(replies or [])
        self.default = default
        self.requests: list[list[ChatMessagePayload]] = []

    async def complete(self, messages, tools):
        self.requests.append(list(messages))
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return assistant(self.default)


@pytest.fixture
def mastodon() -> FakeMastodon:
    return FakeMastodon()


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()
