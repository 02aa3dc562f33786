"""Bot telemetry: JSONL event log and a windowed summary reader."""

import json
import os
from collections import deque
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Optional

from text_utils import normalize_whitespace

_BACKEND_DIR = Path(__file__).resolve().parent


def telemetry_path() -> Path:
    raw = os.getenv("BOT_TELEMETRY_LOG", "bot_telemetry.log") or "bot_telemetry.log"
    p = Path(raw)
    return p if p.is_absolute() else _BACKEND_DIR / p


def telemetry_enabled() -> bool:
    return (os.getenv("BOT_TELEMETRY_ENABLED", "1") or "1").strip().lower() in (
        "1", "true", "yes", "on",
    )


def append_bot_telemetry(event: str, payload: Optional[dict] = None) -> None:
    if not telemetry_enabled():
        return
    try:
        data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": normalize_whitespace(event or "event"),
            "payload": payload or {},
        }
        path = telemetry_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(data, ensure_ascii=False, default=str) + "\n")
    except Exception as exc:
        # Telemetry must never break the reply path.
        print(f"[telemetry] write failed: {exc}")


def _parse_iso_utc(ts_raw: str) -> Optional[datetime]:
    try:
        ts = datetime.fromisoformat(str(ts_raw).replace("Z", "+00:00"))
    except Exception:
        return None
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def read_bot_telemetry_summary(hours: int = 24, limit: int = 6) -> dict:
    h = max(1, min(168, int(hours or 24)))
    n = max(1, min(25, int(limit or 6)))
    now_utc = datetime.now(timezone.utc)
    cutoff = now_utc - timedelta(hours=h)

    counts: dict[str, int] = {}
    recent: deque = deque(maxlen=n)
    parse_errors = 0
    path = telemetry_path()
    file_exists = path.exists()

    if file_exists:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    raw = (line or "").strip()
                    if not raw:
                        continue
                    try:
                        item = json.loads(raw)
                    except ValueError:
                        item = None
                    if not isinstance(item, dict):
                        parse_errors += 1
                        continue
                    ts = _parse_iso_utc(str(item.get("ts") or ""))
                    if not ts or ts < cutoff:
                        continue
                    event = normalize_whitespace(str(item.get("event") or "event")) or "event"
                    counts[event] = counts.get(event, 0) + 1
                    payload = item.get("payload")
                    recent.append(
                        {
                            "ts": ts.isoformat(),
                            "event": event,
                            "payload": payload if isinstance(payload, dict) else {},
                        }
                    )
        except OSError as exc:
            print(f"[telemetry] read failed: {exc}")

    posted = counts.get("reply_posted", 0)
    failed = counts.get("reply_failed", 0)
    failure_rate = round((failed / (posted + failed)) * 100.0, 2) if (posted + failed) > 0 else 0.0

    return {
        "status": "ok",
        "now_utc": now_utc.isoformat(),
        "window_hours": h,
        "telemetry_enabled": telemetry_enabled(),
        "file_exists": file_exists,
        "file_path": path.name,
        "counts": counts,
        "reply_failure_rate_percent": failure_rate,
        "forks": counts.get("thread_forked", 0),
        "reconciliations": counts.get("thread_reconciled", 0),
        "recent": list(recent),
        "parse_errors": parse_errors,
    }
