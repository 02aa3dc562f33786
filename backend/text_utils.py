"""Low-level text helpers for status content and reply splitting.

No dependency on schemas, models, or any other project module.
"""

import html
import re
from typing import Optional

_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_PARAGRAPH_BREAK_RE = re.compile(r"</p>\s*<p[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_HEAD_MENTIONS_RE = re.compile(r"^\s*(@[a-zA-Z0-9_]+(?:@[a-zA-Z0-9_.\-]+)?\s*)+")
_IMAGE_MARKDOWN_RE = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")


def normalize_whitespace(text: str) -> str:
    return " ".join((text or "").split()).strip()


def strip_html(text: str) -> str:
    text = _PARAGRAPH_BREAK_RE.sub("\n", text or "")
    text = _BR_RE.sub("\n", text)
    return html.unescape(_TAG_RE.sub("", text))


def strip_head_mentions(text: str) -> str:
    return _HEAD_MENTIONS_RE.sub("", text or "")


def normalize_status_content(content: str) -> str:
    """Turn Mastodon status HTML into the plain text the model sees."""
    return strip_head_mentions(strip_html(content)).strip()


def sanitize_mentions(text: str) -> str:
    # "@ name" never resolves to an account, so the bot cannot mention people by accident.
    return (text or "").replace("@", "@ ")


def split_text(text: str, max_part_len: int) -> list[str]:
    """Greedy line packing.

    Lines are appended to the current part while ``len(part) + 1 + len(line)``
    stays within ``max_part_len``; otherwise the line starts a new part. A
    single line longer than the limit is kept whole.
    """
    parts: list[list[str]] = []
    current_len = 0
    for line in (text or "").split("\n"):
        if parts and current_len + 1 + len(line) <= max_part_len:
            parts[-1].append(line)
            current_len += 1 + len(line)
        else:
            parts.append([line])
            current_len = len(line)
    return ["\n".join(lines) for lines in parts]


def extract_image_markdown(text: str) -> tuple[str, Optional[str]]:
    """Split ``![alt](url)`` out of a reply; returns the remaining text and the url."""
    raw = text or ""
    found = _IMAGE_MARKDOWN_RE.search(raw)
    if not found:
        return raw, None
    remaining = raw[: found.start()] + raw[found.end():]
    return remaining.strip(), found.group(1).strip()
