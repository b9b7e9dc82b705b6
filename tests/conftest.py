"""Shared fixtures: per-test SQLite store and diagram sessions."""

import pytest

from drawchat.diagram.session import DiagramSession
from drawchat.storage.sqlite_store import SqliteStore
from tests.helpers import RecordingRenderer


@pytest.fixture
def store(tmp_path):
    """Per-test SqliteStore with schema initialized."""
    s = SqliteStore(tmp_path / "test.db")
    s.init_db()
    yield s
    s.close()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def session(store):
    """Session with no renderer attached."""
    return DiagramSession(store=store, session_id="test")


@pytest.fixture
def ready_session(store, renderer):
    """Session whose renderer has signalled readiness."""
    s = DiagramSession(store=store, renderer=renderer, session_id="ready")
    s.on_renderer_load()
    return s
