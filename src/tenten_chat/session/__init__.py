"""Session persistence and server-id reconciliation."""

from tenten_chat.session.reconciler import SessionReconciler
from tenten_chat.session.store import SessionStore, SqliteSessionStore, StoredMessage

__all__ = ["SessionReconciler", "SessionStore", "SqliteSessionStore", "StoredMessage"]
