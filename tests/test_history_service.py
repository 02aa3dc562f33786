import json

from history_service import (
    build_extra_context,
    build_thread_history,
    recent_cross_user_context,
    restore_thread,
)
from message_store import (
    MESSAGE_TYPE_AI,
    MESSAGE_TYPE_PSEUDO,
    MESSAGE_TYPE_USER,
    PRIVACY_PRIVATE,
    PRIVACY_PUBLIC,
)
from schemas import ChatMessagePayload
from thread_index import append_message, new_thread


def _say(db, thread_id, role, content, name=None, message_type=None, privacy=PRIVACY_PUBLIC):
    if message_type is None:
        message_type = MESSAGE_TYPE_USER if role == "user" else MESSAGE_TYPE_AI
    return append_message(
        db, thread_id, ChatMessagePayload(role=role, content=content, name=name), message_type, privacy
    )


def test_restore_thread_orders_by_sequence_and_hides_pseudo(db):
    thread_id = new_thread(db)
    _say(db, thread_id, "user", "one", "alice")
    _say(db, thread_id, "assistant", "two")
    _say(db, thread_id, "assistant", "two (cont.)", message_type=MESSAGE_TYPE_PSEUDO)
    _say(db, thread_id, "user", "three", "alice")

    assert [m.content for m in restore_thread(db, thread_id)] == ["one", "two", "three"]
    assert [m.content for m in restore_thread(db, thread_id, include_pseudo=True)] == [
        "one", "two", "two (cont.)", "three",
    ]
    assert restore_thread(db, "missing") == []


def test_recent_cross_user_context_is_oldest_first(db):
    thread_id = new_thread(db)
    for content in ("a", "b", "c"):
        _say(db, thread_id, "user", content, "bob")

    assert [m.content for m in recent_cross_user_context(db, 2)] == ["b", "c"]


def test_build_thread_history_caps_threads(db):
    for i in range(3):
        thread_id = new_thread(db)
        _say(db, thread_id, "user", f"q{i}", "alice")
        _say(db, thread_id, "assistant", f"a{i}")

    history = build_thread_history(db, "alice", max_threads=2)
    assert [[m.content for m in thread] for thread in history] == [["q2", "a2"], ["q1", "a1"]]
    assert build_thread_history(db, "nobody") == []


def _block(text: str, tag: str):
    inner = text.split(f"<{tag}>\n", 1)[1].split(f"\n</{tag}>", 1)[0]
    return json.loads(inner)


def test_build_extra_context_blocks(db):
    shared = new_thread(db)
    _say(db, shared, "user", "hello bot", "alice")
    _say(db, shared, "assistant", "hello alice")

    secret = new_thread(db)
    _say(db, secret, "user", "psst", "bob", privacy=PRIVACY_PRIVATE)

    text = build_extra_context(db, "alice")

    threads = _block(text, "threads")
    assert threads == [[
        {"role": "user", "content": "hello bot", "name": "alice"},
        {"role": "assistant", "content": "hello alice"},
    ]]
    recent = _block(text, "recent_messages")
    assert [m["content"] for m in recent] == ["hello bot", "hello alice"]
    assert "psst" not in text
