"""Session Reconciler: binds a server-issued session id to the local chat.

Storage failures are logged and swallowed; the session label is a
convenience and must never abort an exchange.
"""

from __future__ import annotations

import logging
from typing import Any

from tenten_chat.session.store import SessionStore
from tenten_chat.types import CanonicalUpdate, SessionEvent

_logger = logging.getLogger(__name__)


class SessionReconciler:
    """Correlates the provisional local id with the server session id."""

    def __init__(
        self,
        store: SessionStore | None = None,
        session_id: str | None = None,
        provisional_id: str | None = None,
    ) -> None:
        self._store = store
        self.session_id = session_id
        self.provisional_id = provisional_id
        self.title: str | None = None
        self._persisted: set[str] = set()
        self._titled: set[str] = set()
        if session_id is not None:
            self._persisted.add(session_id)

    def reset(self, provisional_id: str | None = None) -> None:
        """Forget the bound session (new chat)."""
        self.session_id = None
        self.provisional_id = provisional_id
        self.title = None

    def bind_provisional(self) -> bool:
        """Adopt the provisional id when the backend never issued one."""
        if self.session_id is not None or not self.provisional_id:
            return False
        return self.observe(SessionEvent(id=self.provisional_id))

    def observe(self, update: CanonicalUpdate) -> bool:
        """Handle one update.  Returns True when a new session was bound."""
        if not isinstance(update, SessionEvent):
            return False
        server_id = str(update.id)

        bound = False
        if self.session_id is None:
            self.session_id = server_id
            bound = True
            _logger.info(
                "Bound session %s (provisional %s)", server_id, self.provisional_id,
            )
        if server_id != self.session_id:
            _logger.debug("Ignoring session event for unbound id %s", server_id)
            return bound

        if server_id not in self._persisted:
            if self._create(server_id, update.title):
                self._persisted.add(server_id)
                if update.title:
                    self.title = update.title

        # A later distinct title relabels the stored session once
        if (
            update.title
            and update.title != self.title
            and server_id in self._persisted
            and server_id not in self._titled
        ):
            if self._update_title(server_id, update.title):
                self.title = update.title
                self._titled.add(server_id)
        return bound

    def record_exchange(
        self,
        question: str,
        request_payload: dict[str, Any],
        response_payload: Any,
        final_text: str,
    ) -> int | None:
        """Persist a completed exchange under the bound session."""
        if self._store is None or self.session_id is None:
            return None
        try:
            return self._store.append_message(
                self.session_id, question, request_payload, response_payload, final_text,
            )
        except Exception:
            _logger.warning("Failed to persist exchange", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self, session_id: str, title: str | None) -> bool:
        if self._store is None:
            return True
        try:
            self._store.create_session(
                session_id=session_id,
                title=title,
                provisional_id=self.provisional_id,
            )
        except Exception:
            _logger.warning("Failed to create session %s", session_id, exc_info=True)
            return False
        return True

    def _update_title(self, session_id: str, title: str) -> bool:
        if self._store is None:
            return True
        try:
            self._store.update_session_title(session_id, title)
        except Exception:
            _logger.warning("Failed to update title for %s", session_id, exc_info=True)
            return False
        return True
