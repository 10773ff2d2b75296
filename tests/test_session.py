"""Tests for the SQLite session store and the session reconciler."""

from __future__ import annotations

import os
import tempfile
from unittest.mock import MagicMock

import pytest

from tenten_chat.errors import PersistenceError
from tenten_chat.session.reconciler import SessionReconciler
from tenten_chat.session.store import SqliteSessionStore
from tenten_chat.types import SessionEvent, TextDelta


class TestSqliteSessionStore:
    def setup_method(self):
        fd, self.db_path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.store = SqliteSessionStore(self.db_path)

    def teardown_method(self):
        self.store.close()
        try:
            os.unlink(self.db_path)
        except OSError:
            pass

    def test_create_is_idempotent(self):
        assert self.store.create_session("42", title="First") == "42"
        assert self.store.create_session("42", title="Second") == "42"
        assert self.store.get_session("42")["title"] == "First"
        assert len(self.store.list_sessions()) == 1

    def test_generated_id(self):
        sid = self.store.create_session()
        assert self.store.get_session(sid) is not None

    def test_messages_in_order(self):
        self.store.create_session("s1")
        self.store.append_message("s1", "q1", {"question": "q1"}, [{"output": "a"}], "a1")
        self.store.append_message("s1", "q2", {"question": "q2"}, '{"output": "b"}', "a2")
        self.store.append_message("other", "x", {}, None, "y")

        store2 = SqliteSessionStore(self.db_path)
        msgs = store2.load_messages("s1")
        store2.close()
        assert [m.question for m in msgs] == ["q1", "q2"]
        assert msgs[0].request_payload == {"question": "q1"}
        assert msgs[0].response_payload == [{"output": "a"}]
        assert msgs[1].final_text == "a2"

    def test_update_title(self):
        self.store.create_session("s1")
        self.store.update_session_title("s1", "Renamed")
        assert self.store.get_session("s1")["title"] == "Renamed"

    def test_closed_connection_raises_persistence_error(self):
        store = SqliteSessionStore(":memory:")
        store.close()
        with pytest.raises(PersistenceError):
            store.create_session("s1")


class TestSessionReconciler:
    def test_binds_first_server_id(self):
        store = MagicMock()
        rec = SessionReconciler(store, provisional_id="123456")
        assert rec.observe(SessionEvent(id=42)) is True
        assert rec.session_id == "42"
        store.create_session.assert_called_once_with(
            session_id="42", title=None, provisional_id="123456",
        )

    def test_persists_exactly_once(self):
        store = MagicMock()
        rec = SessionReconciler(store)
        rec.observe(SessionEvent(id=42))
        assert rec.observe(SessionEvent(id=42)) is False
        assert store.create_session.call_count == 1

    def test_title_updated_once(self):
        store = MagicMock()
        rec = SessionReconciler(store)
        rec.observe(SessionEvent(id=42))
        rec.observe(SessionEvent(id=42, title="Optics"))
        rec.observe(SessionEvent(id=42, title="Optics again"))
        store.update_session_title.assert_called_once_with("42", "Optics")
        assert rec.title == "Optics"

    def test_repeated_creation_title_not_rewritten(self):
        store = MagicMock()
        rec = SessionReconciler(store)
        rec.observe(SessionEvent(id=42, title="T"))
        rec.observe(SessionEvent(id=42, title="T"))
        store.update_session_title.assert_not_called()

    def test_later_distinct_title_after_titled_creation(self):
        store = MagicMock()
        rec = SessionReconciler(store)
        rec.observe(SessionEvent(id=7, title="New chat"))
        rec.observe(SessionEvent(id=7, title="Newton's laws"))
        rec.observe(SessionEvent(id=7, title="Something else"))
        store.update_session_title.assert_called_once_with("7", "Newton's laws")
        assert rec.title == "Newton's laws"

    def test_failed_title_update_retried(self):
        store = MagicMock()
        store.update_session_title.side_effect = [PersistenceError("locked"), None]
        rec = SessionReconciler(store)
        rec.observe(SessionEvent(id=42))
        rec.observe(SessionEvent(id=42, title="Optics"))
        assert rec.title is None
        rec.observe(SessionEvent(id=42, title="Optics"))
        assert store.update_session_title.call_count == 2
        assert rec.title == "Optics"

    def test_existing_session_kept(self):
        store = MagicMock()
        rec = SessionReconciler(store, session_id="7")
        assert rec.observe(SessionEvent(id=99)) is False
        assert rec.session_id == "7"
        store.create_session.assert_not_called()

    def test_other_updates_ignored(self):
        rec = SessionReconciler(MagicMock())
        assert rec.observe(TextDelta("x")) is False
        assert rec.session_id is None

    def test_store_failure_swallowed_and_retried(self):
        store = MagicMock()
        store.create_session.side_effect = [PersistenceError("locked"), "42"]
        rec = SessionReconciler(store)
        assert rec.observe(SessionEvent(id=42)) is True
        assert rec.session_id == "42"
        rec.observe(SessionEvent(id=42))
        assert store.create_session.call_count == 2

    def test_record_exchange_failure_swallowed(self):
        store = MagicMock()
        store.append_message.side_effect = PersistenceError("disk full")
        rec = SessionReconciler(store, session_id="s")
        assert rec.record_exchange("q", {}, None, "a") is None

    def test_record_without_session(self):
        store = MagicMock()
        rec = SessionReconciler(store)
        assert rec.record_exchange("q", {}, None, "a") is None
        store.append_message.assert_not_called()

    def test_bind_provisional(self):
        store = MagicMock()
        rec = SessionReconciler(store, provisional_id="654321")
        assert rec.bind_provisional() is True
        assert rec.session_id == "654321"
        assert rec.bind_provisional() is False

    def test_works_with_real_store(self):
        store = SqliteSessionStore(":memory:")
        rec = SessionReconciler(store)
        rec.observe(SessionEvent(id=5))
        rec.observe(SessionEvent(id=5, title="Waves"))
        rec.record_exchange("q", {"a": 1}, [], "answer")
        assert store.get_session("5")["title"] == "Waves"
        assert [m.final_text for m in store.load_messages("5")] == ["answer"]
        store.close()
