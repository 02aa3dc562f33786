import pytest

from text_utils import (
    extract_image_markdown,
    normalize_status_content,
    sanitize_mentions,
    split_text,
)

SAMPLES = [
    "short",
    "line one\nline two\nline three\nline four",
    "a" * 30 + "\n" + "b" * 5 + "\n\n" + "c" * 12,
    "\nleading blank line\n",
    "x" * 50,
    "",
]


@pytest.mark.parametrize("text", SAMPLES)
@pytest.mark.parametrize("max_len", [10, 20, 500])
def test_split_text_covers_input_and_respects_limit(text, max_len):
    parts = split_text(text, max_len)

    assert "\n".join(parts) == text
    original_lines = text.split("\n")
    for part in parts:
        assert len(part) <= max_len or (part in original_lines and len(part) > max_len)


def test_split_text_packs_greedily():
    assert split_text("aaa\nbbb\nccc", 7) == ["aaa\nbbb", "ccc"]
    assert split_text("aaaaaaaaaa\nb", 5) == ["aaaaaaaaaa", "b"]


def test_normalize_status_content():
    html = '<p><span class="h-card"><a href="https://x/@teobot">@<span>teobot</span></a></span> hello</p><p>second &amp; last<br>line</p>'
    assert normalize_status_content(html) == "hello\nsecond & last\nline"
    assert normalize_status_content("<p>@teobot@social.example @bob hi</p>") == "hi"


def test_sanitize_mentions():
    assert sanitize_mentions("hi @alice and @bob@x.y") == "hi @ alice and @ bob@ x.y"


def test_extract_image_markdown():
    assert extract_image_markdown("look ![cat](https://img/cat.png) here") == ("look  here", "https://img/cat.png")
    assert extract_image_markdown("no image") == ("no image", None)
