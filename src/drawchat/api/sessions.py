"""Session registry and the queue-backed renderer bridge used by the HTTP API."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from typing import Any, Callable

from drawchat.diagram.errors import StructuralInvalidError
from drawchat.diagram.session import STORAGE_DIAGRAM_XML_KEY, DiagramSession
from drawchat.storage.sqlite_store import KeyValueStore

logger = logging.getLogger(__name__)


class QueuedRenderer:
    """Renderer that buffers commands for the browser-side draw.io editor.

    The browser drains commands over HTTP, executes them in order and posts
    export results back to the session's ``handle_export``.
    """

    def __init__(self) -> None:
        self._commands: queue.Queue[dict[str, Any]] = queue.Queue()

    def load(self, xml: str) -> None:
        self._commands.put_nowait({"type": "load", "xml": xml})

    def export(self, fmt: str) -> None:
        self._commands.put_nowait({"type": "export", "format": fmt})

    def drain(self) -> list[dict[str, Any]]:
        """Remove and return all queued commands, oldest first."""
        commands = []
        while True:
            try:
                commands.append(self._commands.get_nowait())
            except queue.Empty:
                return commands


class SessionManager:
    """Owns every live DiagramSession, keyed by session id."""

    def __init__(self, store_factory: Callable[[], KeyValueStore | None] | None = None) -> None:
        self._store_factory = store_factory
        self._sessions: dict[str, tuple[DiagramSession, QueuedRenderer]] = {}
        self._lock = threading.Lock()

    def _store(self) -> KeyValueStore | None:
        if self._store_factory is None:
            return None
        return self._store_factory()

    def create(self, session_id: str | None = None) -> DiagramSession:
        """Create a session, reloading the last saved document if there is one.

        If a session with ``session_id`` was registered meanwhile, that
        session is returned instead.
        """
        store = self._store()
        renderer = QueuedRenderer()
        session = DiagramSession(
            store=store,
            renderer=renderer,
            session_id=session_id or str(uuid.uuid4()),
        )
        if store is not None:
            saved = store.get(STORAGE_DIAGRAM_XML_KEY)
            if saved:
                try:
                    session.load(saved)
                    logger.info("[%s] Restored last saved diagram (%d chars)", session.session_id, len(saved))
                except StructuralInvalidError as e:
                    logger.warning("[%s] Ignoring unreadable saved diagram: %s", session.session_id, e)

        with self._lock:
            existing = self._sessions.get(session.session_id)
            if existing is not None:
                logger.info("Session %s already registered, reusing it", session.session_id)
                return existing[0]
            self._sessions[session.session_id] = (session, renderer)
        logger.info("Session created: %s", session.session_id)
        return session

    def get(self, session_id: str) -> DiagramSession | None:
        with self._lock:
            entry = self._sessions.get(session_id)
        return entry[0] if entry else None

    def get_or_create(self, session_id: str | None) -> DiagramSession:
        if session_id:
            session = self.get(session_id)
            if session is not None:
                return session
        return self.create(session_id)

    def renderer(self, session_id: str) -> QueuedRenderer | None:
        with self._lock:
            entry = self._sessions.get(session_id)
        return entry[1] if entry else None

    def delete(self, session_id: str) -> bool:
        with self._lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        logger.info("Session deleted: %s", session_id)
        return True
