"""
Tests for session persistence.
"""

import json
import os

from sessions import Session, SessionStore


def test_save_and_load_round_trip(tmp_path):
    store = SessionStore(str(tmp_path / "sessions"))
    session = store.create_session(str(tmp_path), "qwen3-coder-plus")
    session.history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    path = store.save(session)

    assert os.path.exists(path)
    assert not os.path.exists(path + ".tmp")
    loaded = store.load(session.session_id)
    assert loaded.history == session.history
    assert loaded.model_id == "qwen3-coder-plus"
    assert loaded.message_count == 1


def test_latest_and_find_by_name(tmp_path):
    store = SessionStore(str(tmp_path / "sessions"))
    first = store.create_session(str(tmp_path), "m", name="First")
    store.save(first)
    second = store.create_session(str(tmp_path), "m", name="Second")
    store.save(second)

    assert store.get_latest(str(tmp_path)).name == "Second"
    assert store.find_by_name(str(tmp_path), "first").session_id == first.session_id
    assert store.get_latest(str(tmp_path / "elsewhere")) is None


def test_auto_name_renames_default_session(tmp_path):
    store = SessionStore(str(tmp_path / "sessions"))
    session = store.create_session(str(tmp_path), "m")
    store.save(session)
    old_id = session.session_id

    session = store.auto_name_session(session, "fix the failing build on windows please now")
    assert session.name == "fix the failing build on windows..."
    assert store.load(old_id) is None
    assert store.load(session.session_id) is not None
    assert store.auto_name_session(session, "other").name == session.name


def test_corrupt_file_is_skipped(tmp_path):
    store = SessionStore(str(tmp_path / "sessions"))
    good = store.create_session(str(tmp_path), "m", name="good")
    store.save(good)
    bad_path = os.path.join(store.base_dir, good.session_id.split("_")[0] + "_bad.json")
    with open(bad_path, "w") as f:
        f.write("{not json")

    names = [s.name for s in store.list_sessions(str(tmp_path))]
    assert names == ["good"]


def test_invalid_history_entries_dropped(tmp_path):
    store = SessionStore(str(tmp_path / "sessions"))
    path = os.path.join(store.base_dir, "x_y.json")
    with open(path, "w") as f:
        json.dump({"session_id": "x_y", "history": [{"role": "user", "content": "ok"}, {"role": "user"}, "junk"]}, f)
    loaded = store.load("x_y")
    assert isinstance(loaded, Session)
    assert loaded.history == [{"role": "user", "content": "ok"}]


def test_delete(tmp_path):
    store = SessionStore(str(tmp_path / "sessions"))
    session = store.create_session(str(tmp_path), "m")
    store.save(session)
    assert store.delete(session.session_id)
    assert not store.delete(session.session_id)
