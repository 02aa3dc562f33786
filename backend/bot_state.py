"""Durable polling cursor (``state.json``)."""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class BotState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_notification_id: Optional[str] = Field(default=None, alias="lastNotificationId")


def _id_key(value: str) -> tuple:
    # Mastodon ids are decimal strings of varying length; compare them as numbers.
    value = value.strip()
    if value.isdigit():
        return (0, len(value.lstrip("0")), value.lstrip("0"))
    return (1, len(value), value)


def load_state(path: Union[str, Path]) -> BotState:
    p = Path(path)
    try:
        if not p.exists():
            return BotState()
        raw = json.loads(p.read_text(encoding="utf-8") or "{}")
        return BotState.model_validate(raw)
    except Exception as exc:
        print(f"[state] unreadable state file {p}: {exc}; starting from an empty cursor")
        return BotState()


def save_state(state: BotState, path: Union[str, Path]) -> None:
    """Write ``state`` atomically: temp file in the same directory, then ``os.replace``."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(state.model_dump(by_alias=True, exclude_none=True), ensure_ascii=False, indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=str(p.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_name, p)
    except Exception:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def advance_cursor(state: BotState, notification_id: str) -> bool:
    """Move the cursor forward to ``notification_id``; never backwards."""
    if not notification_id:
        return False
    current = state.last_notification_id
    if current and _id_key(notification_id) <= _id_key(current):
        return False
    state.last_notification_id = notification_id
    return True
