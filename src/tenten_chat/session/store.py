"""Persistence collaborator: sessions and exchange records."""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from tenten_chat.errors import PersistenceError


@dataclass
class StoredMessage:
    """One persisted exchange: the question and the final answer."""

    id: int
    session_id: str
    question: str
    final_text: str
    request_payload: dict[str, Any] = field(default_factory=dict)
    response_payload: Any = None
    created_at: float = field(default_factory=time.time)


class SessionStore(Protocol):
    """Contract the chat core expects from its storage collaborator."""

    def create_session(
        self,
        session_id: str | None = None,
        title: str | None = None,
        provisional_id: str | None = None,
    ) -> str: ...

    def append_message(
        self,
        session_id: str,
        question: str,
        request_payload: dict[str, Any],
        response_payload: Any,
        final_text: str,
    ) -> int: ...

    def update_session_title(self, session_id: str, title: str) -> None: ...

    def load_messages(self, session_id: str) -> list[StoredMessage]: ...


class SqliteSessionStore:
    """SQLite-backed session store."""

    def __init__(self, db_path: str = "~/.tenten_chat/sessions.db") -> None:
        if db_path == ":memory:":
            self.db_path = None
            self._conn = sqlite3.connect(":memory:")
        else:
            self.db_path = Path(db_path).expanduser()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                title TEXT,
                provisional_id TEXT,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                question TEXT NOT NULL,
                request_payload TEXT DEFAULT '{}',
                response_payload TEXT DEFAULT 'null',
                final_text TEXT NOT NULL,
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_msg_session ON messages(session_id);
        """)
        self._conn.commit()

    def create_session(
        self,
        session_id: str | None = None,
        title: str | None = None,
        provisional_id: str | None = None,
    ) -> str:
        """Insert a session unless one with the same id already exists."""
        sid = session_id or uuid.uuid4().hex
        now = time.time()
        try:
            self._conn.execute(
                "INSERT OR IGNORE INTO sessions "
                "(id, title, provisional_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (sid, title, provisional_id, now, now),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"create_session failed: {e}") from e
        return sid

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        try:
            row = self._conn.execute(
                "SELECT id, title, provisional_id, created_at FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"get_session failed: {e}") from e
        if row is None:
            return None
        return {"id": row[0], "title": row[1], "provisional_id": row[2], "created_at": row[3]}

    def list_sessions(self) -> list[dict[str, Any]]:
        try:
            rows = self._conn.execute(
                "SELECT id, title, updated_at FROM sessions ORDER BY updated_at DESC",
            ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"list_sessions failed: {e}") from e
        return [{"id": r[0], "title": r[1], "updated_at": r[2]} for r in rows]

    def append_message(
        self,
        session_id: str,
        question: str,
        request_payload: dict[str, Any],
        response_payload: Any,
        final_text: str,
    ) -> int:
        now = time.time()
        try:
            cur = self._conn.execute(
                "INSERT INTO messages "
                "(session_id, question, request_payload, response_payload, final_text, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    session_id, question,
                    json.dumps(request_payload, ensure_ascii=False),
                    json.dumps(response_payload, ensure_ascii=False),
                    final_text, now,
                ),
            )
            self._conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?", (now, session_id),
            )
            self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise PersistenceError(f"append_message failed: {e}") from e
        return int(cur.lastrowid)

    def update_session_title(self, session_id: str, title: str) -> None:
        try:
            self._conn.execute(
                "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, time.time(), session_id),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"update_session_title failed: {e}") from e

    def load_messages(self, session_id: str) -> list[StoredMessage]:
        """Messages for *session_id* in insertion order."""
        try:
            rows = self._conn.execute(
                "SELECT id, session_id, question, request_payload, response_payload, "
                "final_text, created_at FROM messages WHERE session_id = ? ORDER BY id",
                (session_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"load_messages failed: {e}") from e
        return [
            StoredMessage(
                id=r[0],
                session_id=r[1],
                question=r[2],
                request_payload=json.loads(r[3]),
                response_payload=json.loads(r[4]),
                final_text=r[5],
                created_at=r[6],
            )
            for r in rows
        ]

    def close(self) -> None:
        self._conn.close()
