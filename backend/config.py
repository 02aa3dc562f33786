"""Runtime configuration loaded from the environment (and backend/.env)."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

_BACKEND_DIR = Path(__file__).resolve().parent


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _env_int(name: str, default: int, min_value: int, max_value: int) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw not in (None, "") else default
    except Exception:
        value = default
    return max(min_value, min(max_value, value))


def _env_float(name: str, default: float, min_value: float, max_value: float) -> float:
    raw = os.getenv(name)
    try:
        value = float(raw) if raw not in (None, "") else default
    except Exception:
        value = default
    return max(min_value, min(max_value, value))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class BotConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    mastodon_base_url: str = ""
    mastodon_access_token: str = ""

    chat_api_url: str = "https://api.openai.com/v1/chat/completions"
    chat_api_key: Optional[str] = None
    chat_model: str = "gpt-4o"
    image_api_url: str = "https://api.openai.com/v1/images/generations"
    image_model: str = "dall-e-3"
    image_generation_enabled: bool = False

    storage_path: str = "data"
    database_url: str = "sqlite:///./teobot.db"

    poll_interval_sec: float = 30.0
    llm_timeout_sec: float = 60.0
    network_timeout_sec: float = 30.0
    retry_attempts: int = 3
    retry_backoff_sec: float = 10.0
    max_tool_iterations: int = 10

    reply_split_threshold: int = 450
    max_post_chars: int = 500
    recent_context_limit: int = 50
    max_history_threads: int = 10
    max_recent_per_account: int = 100

    timezone: str = "Asia/Tokyo"
    bot_version: str = "dev"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @property
    def state_path(self) -> Path:
        return Path(self.storage_path) / "state.json"


def load_config(env_file: Optional[Path] = None) -> BotConfig:
    load_dotenv(dotenv_path=env_file or (_BACKEND_DIR / ".env"), override=False)
    return BotConfig(
        mastodon_base_url=(_env("MASTODON_BASE_URL", "") or "").rstrip("/"),
        mastodon_access_token=_env("MASTODON_ACCESS_TOKEN", "") or "",
        chat_api_url=_env("CHAT_API_URL", "https://api.openai.com/v1/chat/completions"),
        chat_api_key=_env("CHAT_GPT_API_KEY") or _env("OPENAI_API_KEY"),
        chat_model=_env("CHAT_MODEL", "gpt-4o"),
        image_api_url=_env("IMAGE_API_URL", "https://api.openai.com/v1/images/generations"),
        image_model=_env("IMAGE_MODEL", "dall-e-3"),
        image_generation_enabled=_env_bool("IMAGE_GENERATION_ENABLED", False),
        storage_path=_env("TEOBOT_STORAGE_PATH", "data"),
        database_url=_env("DATABASE_URL", "sqlite:///./teobot.db"),
        poll_interval_sec=_env_float("BOT_POLL_INTERVAL_SEC", 30.0, 1.0, 3600.0),
        llm_timeout_sec=_env_float("LLM_TIMEOUT_SEC", 60.0, 5.0, 300.0),
        network_timeout_sec=_env_float("NETWORK_TIMEOUT_SEC", 30.0, 1.0, 120.0),
        retry_attempts=_env_int("RETRY_ATTEMPTS", 3, 1, 10),
        retry_backoff_sec=_env_float("RETRY_BACKOFF_SEC", 10.0, 0.0, 120.0),
        max_tool_iterations=_env_int("MAX_TOOL_ITERATIONS", 10, 1, 50),
        reply_split_threshold=_env_int("REPLY_SPLIT_THRESHOLD", 450, 50, 5000),
        max_post_chars=_env_int("MAX_POST_CHARS", 500, 50, 10000),
        recent_context_limit=_env_int("RECENT_CONTEXT_LIMIT", 50, 0, 500),
        max_history_threads=_env_int("MAX_HISTORY_THREADS", 10, 0, 100),
        max_recent_per_account=_env_int("MAX_RECENT_PER_ACCOUNT", 100, 1, 1000),
        timezone=_env("BOT_TIMEZONE", "Asia/Tokyo"),
        bot_version=_env("BOT_VERSION", "dev"),
        api_host=_env("API_HOST", "127.0.0.1"),
        api_port=_env_int("API_PORT", 8000, 1, 65535),
    )
