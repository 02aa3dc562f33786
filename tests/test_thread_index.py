import pytest

import thread_index
from errors import ThreadCloneError
from message_store import MESSAGE_TYPE_USER, PRIVACY_PUBLIC
from models import ChatMessage, ChatThread, ChatThreadRel
from schemas import ChatMessagePayload
from thread_index import (
    append_message,
    clone_thread,
    find_threads_containing,
    get_max_sequence_num,
    get_recent_thread_ids_by_user,
    get_thread_rels,
    new_thread,
    thread_exists,
)


def _append(db, thread_id, content, name="alice"):
    return append_message(
        db,
        thread_id,
        ChatMessagePayload(role="user", content=content, name=name),
        MESSAGE_TYPE_USER,
        PRIVACY_PUBLIC,
    )


def test_append_assigns_dense_sequence_numbers(db):
    thread_id = new_thread(db)
    assert thread_exists(db, thread_id)
    assert get_max_sequence_num(db, thread_id) == 0

    rows = [_append(db, thread_id, f"m{i}") for i in range(3)]

    rels = get_thread_rels(db, thread_id)
    assert [r.sequence_num for r in rels] == [1, 2, 3]
    assert [r.chat_message_id for r in rels] == [m.id for m in rows]
    assert get_max_sequence_num(db, thread_id) == 3


def test_clone_at_cutoff_preserves_sequence_and_leaves_base_alone(db):
    base = new_thread(db)
    m1, m2, m3 = (_append(db, base, c) for c in ("m1", "m2", "m3"))

    forked = clone_thread(db, get_thread_rels(db, base), m2.id)

    assert forked != base
    forked_rels = get_thread_rels(db, forked)
    assert [(r.chat_message_id, r.sequence_num) for r in forked_rels] == [(m1.id, 1), (m2.id, 2)]
    assert [r.chat_message_id for r in get_thread_rels(db, base)] == [m1.id, m2.id, m3.id]

    containing = find_threads_containing(db, m2.id)
    assert set(containing) == {base, forked}
    assert m3.id not in [r.chat_message_id for r in containing[forked]]


def test_clone_rejects_cutoff_outside_base(db):
    base = new_thread(db)
    _append(db, base, "m1")
    before = db.query(ChatThread).count()

    with pytest.raises(ThreadCloneError):
        clone_thread(db, get_thread_rels(db, base), "not-a-member")

    assert db.query(ChatThread).count() == before


def test_find_threads_containing_unknown_message(db):
    assert find_threads_containing(db, "nope") == {}


def test_recent_thread_ids_by_user_most_recent_first(db):
    t1 = new_thread(db)
    t2 = new_thread(db)
    _append(db, t1, "first")
    _append(db, t2, "second")
    _append(db, t2, "from bob", name="bob")

    assert get_recent_thread_ids_by_user(db, "alice") == [t2, t1]

    _append(db, t1, "third")
    assert get_recent_thread_ids_by_user(db, "alice") == [t1, t2]
    assert get_recent_thread_ids_by_user(db, "bob") == [t2]
    assert get_recent_thread_ids_by_user(db, "carol") == []


def test_clone_failing_midway_leaves_nothing_behind(db):
    base = new_thread(db)
    m1, m2, m3 = (_append(db, base, c) for c in ("m1", "m2", "m3"))
    threads_before = db.query(ChatThread).count()
    rels_before = db.query(ChatThreadRel).count()
    # second row reuses sequence 1, so the copy hits the unique constraint after one insert
    broken_rels = [
        ChatThreadRel(thread_id=base, chat_message_id=m1.id, sequence_num=1),
        ChatThreadRel(thread_id=base, chat_message_id=m2.id, sequence_num=1),
        ChatThreadRel(thread_id=base, chat_message_id=m3.id, sequence_num=3),
    ]

    with pytest.raises(ThreadCloneError):
        clone_thread(db, broken_rels, m3.id)

    assert db.query(ChatThread).count() == threads_before
    assert db.query(ChatThreadRel).count() == rels_before
    assert set(find_threads_containing(db, m1.id)) == {base}


def test_append_rolls_back_message_when_rel_insert_fails(db, monkeypatch):
    thread_id = new_thread(db)
    _append(db, thread_id, "kept")

    def broken_rel(*args, **kwargs):
        raise RuntimeError("rel insert failed")

    monkeypatch.setattr(thread_index, "add_thread_rel", broken_rel)
    with pytest.raises(RuntimeError):
        _append(db, thread_id, "lost")
    monkeypatch.undo()

    assert db.query(ChatMessage).count() == 1
    assert get_max_sequence_num(db, thread_id) == 1
    assert _append(db, thread_id, "next") is not None
    assert [r.sequence_num for r in get_thread_rels(db, thread_id)] == [1, 2]


def test_thread_locks_are_released_after_append(db):
    thread_id = new_thread(db)
    _append(db, thread_id, "m1")

    assert thread_id not in thread_index._thread_locks
    held = thread_index.thread_lock(thread_id)
    assert thread_index.thread_lock(thread_id) is held
