"""Tests for the FastAPI server: chat, sessions, renderer bridge and credentials."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from google.genai import errors as genai_errors

from drawchat.agent.loop import AgentResult, DiagramAgent, ToolStep
from drawchat.api import server
from drawchat.api.sessions import QueuedRenderer, SessionManager
from drawchat.diagram.session import STORAGE_DIAGRAM_XML_KEY
from drawchat.diagram.validator import EMPTY_DIAGRAM, validate_and_fix
from tests.helpers import _make_fn_call_response, _make_text_response, cell, make_svg


@pytest.fixture
def client(store, monkeypatch):
    """TestClient with a per-test store, a fresh session registry and no access codes."""
    monkeypatch.setattr(server, "_get_store", lambda: store)
    monkeypatch.setattr(server, "_sessions", SessionManager(store_factory=lambda: store))
    monkeypatch.setattr(server, "_agent", None)
    monkeypatch.setattr(server.config, "ACCESS_CODE_LIST", "")
    return TestClient(server.app)


def _new_session(client) -> str:
    resp = client.post("/sessions")
    assert resp.status_code == 200
    return resp.json()["session_id"]


def _ready_session(client) -> str:
    sid = _new_session(client)
    assert client.post(f"/sessions/{sid}/renderer/ready").status_code == 200
    return sid


# ── Health / access codes ──


class TestAccessCode:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_no_codes_configured(self, client):
        resp = client.post("/verify-access-code")
        assert resp.status_code == 200
        assert resp.json()["valid"] is True

    def test_codes_configured(self, client, monkeypatch):
        monkeypatch.setattr(server.config, "ACCESS_CODE_LIST", "abc, def")
        assert client.post("/verify-access-code").status_code == 401
        assert client.post("/verify-access-code", headers={"x-access-code": "nope"}).status_code == 401
        resp = client.post("/verify-access-code", headers={"x-access-code": "def"})
        assert resp.status_code == 200

    def test_chat_requires_code(self, client, monkeypatch):
        monkeypatch.setattr(server.config, "ACCESS_CODE_LIST", "abc")
        resp = client.post("/chat", json={"messages": [{"role": "user", "text": "hi"}]})
        assert resp.status_code == 401


# ── Chat ──


class TestChat:
    def test_cached_example_skips_model(self, client):
        mock_agent = MagicMock()
        with patch("drawchat.api.server._get_agent", return_value=mock_agent):
            resp = client.post("/chat", json={"messages": [{"role": "user", "text": "Draw a cat for me"}]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["cached"] is True
        assert data["xml"].startswith("<mxfile>")
        mock_agent.run.assert_not_called()

    def test_cached_example_not_used_mid_conversation(self, client):
        mock_agent = MagicMock()
        mock_agent.run.return_value = AgentResult(answer="Sure.", xml="")
        messages = [
            {"role": "user", "text": "hello"},
            {"role": "assistant", "text": "hi"},
            {"role": "user", "text": "Draw a cat for me"},
        ]
        with patch("drawchat.api.server._get_agent", return_value=mock_agent):
            resp = client.post("/chat", json={"messages": messages})
        assert resp.json()["cached"] is False
        history = mock_agent.run.call_args.kwargs["history"]
        assert [c.role for c in history] == ["user", "model"]

    def test_agent_run(self, client):
        agent = DiagramAgent(api_key="fake")
        agent._client = MagicMock()
        agent._client.models.generate_content.side_effect = [
            _make_fn_call_response("display_diagram", {"xml": cell("2", "Box")}),
            _make_text_response("Here is your box."),
        ]
        with patch("drawchat.api.server._get_agent", return_value=agent):
            resp = client.post("/chat", json={"messages": [{"role": "user", "text": "draw a box"}]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["answer"] == "Here is your box."
        assert data["steps"] == [{"tool": "display_diagram", "summary": "Diagram displayed (3 cells).", "ok": True}]
        assert 'value="Box"' in data["xml"]

        session = client.get(f"/sessions/{data['session_id']}").json()
        assert session["state"] == "ready"

    def test_existing_session_is_reused(self, client):
        sid = _new_session(client)
        mock_agent = MagicMock()
        mock_agent.run.return_value = AgentResult(
            answer="ok", steps=[ToolStep(tool="edit_diagram", args={}, summary="Error: x", ok=False)]
        )
        with patch("drawchat.api.server._get_agent", return_value=mock_agent):
            resp = client.post("/chat", json={"session_id": sid, "messages": [{"role": "user", "text": "edit"}]})
        assert resp.json()["session_id"] == sid
        assert resp.json()["steps"][0]["ok"] is False
        assert mock_agent.run.call_args.args[0].session_id == sid

    def test_images_are_decoded(self, client):
        mock_agent = MagicMock()
        mock_agent.run.return_value = AgentResult(answer="ok")
        msg = {"role": "user", "text": "copy", "files": ["data:image/png;base64,iVBORw0KGgo="]}
        with patch("drawchat.api.server._get_agent", return_value=mock_agent):
            client.post("/chat", json={"messages": [msg]})
        images = mock_agent.run.call_args.kwargs["images"]
        assert images == [(b"\x89PNG\r\n\x1a\n", "image/png")]

    def test_too_many_files(self, client):
        msg = {"role": "user", "text": "x", "files": ["data:image/png;base64,AAAA"] * 6}
        resp = client.post("/chat", json={"messages": [msg]})
        assert resp.status_code == 400
        assert "Too many files" in resp.json()["detail"]

    def test_file_too_large(self, client):
        msg = {"role": "user", "text": "x", "files": ["data:image/png;base64," + "A" * (3 * 1024 * 1024)]}
        resp = client.post("/chat", json={"messages": [msg]})
        assert resp.status_code == 400
        assert "2MB" in resp.json()["detail"]

    def test_invalid_attachment(self, client):
        msg = {"role": "user", "text": "x", "files": ["data:image/png;base64,@@@@"]}
        assert client.post("/chat", json={"messages": [msg]}).status_code == 400

    def test_empty_messages(self, client):
        assert client.post("/chat", json={"messages": []}).status_code == 400

    def test_missing_messages(self, client):
        assert client.post("/chat", json={}).status_code == 422

    def test_model_api_error_status(self, client):
        mock_agent = MagicMock()
        mock_agent.run.side_effect = genai_errors.ClientError(
            429, {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}}
        )
        with patch("drawchat.api.server._get_agent", return_value=mock_agent):
            resp = client.post("/chat", json={"messages": [{"role": "user", "text": "hi"}]})
        assert resp.status_code == 429

    def test_sensitive_errors_are_masked(self, client):
        mock_agent = MagicMock()
        mock_agent.run.side_effect = RuntimeError("invalid API key sk-12345")
        with patch("drawchat.api.server._get_agent", return_value=mock_agent):
            resp = client.post("/chat", json={"messages": [{"role": "user", "text": "hi"}]})
        assert resp.status_code == 500
        assert "sk-12345" not in resp.json()["detail"]
        assert resp.json()["detail"] == "Authentication failed. Please check your credentials."


# ── Sessions ──


class TestSessions:
    def test_create_and_get(self, client):
        sid = _new_session(client)
        data = client.get(f"/sessions/{sid}").json()
        assert data["state"] == "empty"
        assert data["renderer_ready"] is False
        assert data["history_size"] == 0

    def test_unknown_session(self, client):
        assert client.get("/sessions/nope").status_code == 404
        assert client.delete("/sessions/nope").status_code == 404
        assert client.post("/sessions/nope/clear").status_code == 404

    def test_delete(self, client):
        sid = _new_session(client)
        assert client.delete(f"/sessions/{sid}").json() == {"deleted": True}
        assert client.get(f"/sessions/{sid}").status_code == 404

    def test_load_wraps_fragment(self, client):
        sid = _new_session(client)
        resp = client.post(f"/sessions/{sid}/load", json={"xml": cell("2", "Box")})
        assert resp.status_code == 200
        assert resp.json()["state"] == "ready"
        assert resp.json()["xml"].startswith("<mxfile>")

    def test_load_invalid(self, client):
        sid = _new_session(client)
        resp = client.post(f"/sessions/{sid}/load", json={"xml": "not xml"})
        assert resp.status_code == 400
        assert "Missing mxCell or mxfile" in resp.json()["detail"]

    def test_clear(self, client):
        sid = _new_session(client)
        client.post(f"/sessions/{sid}/load", json={"xml": cell("2")})
        data = client.post(f"/sessions/{sid}/clear").json()
        assert data["xml"] == EMPTY_DIAGRAM
        assert data["state"] == "empty"

    def test_mermaid(self, client):
        sid = _new_session(client)
        client.post(f"/sessions/{sid}/load", json={"xml": cell("2", "Box")})
        assert client.get(f"/sessions/{sid}/mermaid").json()["mermaid"].endswith('2["Box"]')

    def test_new_session_restores_saved_diagram(self, client, store):
        saved = validate_and_fix(cell("2", "Saved")).fixed
        store.set(STORAGE_DIAGRAM_XML_KEY, saved)
        sid = _new_session(client)
        assert client.get(f"/sessions/{sid}").json()["xml"] == saved


# ── Renderer bridge ──


class TestRendererBridge:
    def test_ready_replays_document(self, client):
        sid = _new_session(client)
        client.post(f"/sessions/{sid}/load", json={"xml": cell("2")})
        assert client.get(f"/sessions/{sid}/renderer/commands").json()["commands"] == []

        data = client.post(f"/sessions/{sid}/renderer/ready").json()
        assert data["renderer_ready"] is True
        commands = client.get(f"/sessions/{sid}/renderer/commands").json()["commands"]
        assert commands == [{"type": "load", "xml": data["xml"]}]
        assert client.get(f"/sessions/{sid}/renderer/commands").json()["commands"] == []

    def test_export_requires_ready_renderer(self, client):
        sid = _new_session(client)
        resp = client.post(f"/sessions/{sid}/export", json={})
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Diagram renderer is not ready"
        assert client.post(f"/sessions/{sid}/save", json={"format": "png"}).status_code == 503

    def test_renderer_reset(self, client):
        sid = _ready_session(client)
        assert client.delete(f"/sessions/{sid}/renderer/ready").json()["renderer_ready"] is False
        assert client.post(f"/sessions/{sid}/export", json={}).status_code == 503

    def test_history_round_trip(self, client):
        sid = _ready_session(client)
        docs = [validate_and_fix(cell("2", f"v{i}")).fixed for i in range(2)]
        for xml in docs:
            assert client.post(f"/sessions/{sid}/export", json={"history": True}).status_code == 200
            commands = client.get(f"/sessions/{sid}/renderer/commands").json()["commands"]
            assert commands[-1] == {"type": "export", "format": "xmlsvg"}
            resp = client.post(f"/sessions/{sid}/renderer/export", json={"data": make_svg(xml)})
            assert resp.json() == {"xml": xml, "file": None}

        history = client.get(f"/sessions/{sid}/history").json()
        assert [h["index"] for h in history] == [0, 1]
        assert history[0]["xml"] == docs[0]

        resp = client.post(f"/sessions/{sid}/restore/0").json()
        assert resp == {"restored": True, "xml": docs[0]}
        assert client.post(f"/sessions/{sid}/restore/9").json()["restored"] is False

    def test_silent_export(self, client):
        sid = _ready_session(client)
        client.post(f"/sessions/{sid}/export", json={"history": False})
        xml = validate_and_fix(cell("2")).fixed
        client.post(f"/sessions/{sid}/renderer/export", json={"data": make_svg(xml)})
        assert client.get(f"/sessions/{sid}/history").json() == []

    def test_save_drawio(self, client, store):
        sid = _ready_session(client)
        resp = client.post(f"/sessions/{sid}/save", json={"format": "drawio", "filename": "flow"})
        assert resp.status_code == 200
        xml = validate_and_fix(cell("2", "Saved")).fixed
        data = client.post(
            f"/sessions/{sid}/renderer/export", json={"data": make_svg(xml), "format": "xmlsvg"}
        ).json()
        assert data["file"] == {"filename": "flow.drawio", "content": xml, "mime_type": "application/xml"}
        assert store.get(STORAGE_DIAGRAM_XML_KEY) == xml

    def test_save_unknown_format(self, client):
        sid = _ready_session(client)
        resp = client.post(f"/sessions/{sid}/save", json={"format": "pdf"})
        assert resp.status_code == 400


class TestQueuedRenderer:
    def test_drain_preserves_order(self):
        r = QueuedRenderer()
        r.load("<a/>")
        r.export("png")
        assert r.drain() == [{"type": "load", "xml": "<a/>"}, {"type": "export", "format": "png"}]
        assert r.drain() == []


class TestSessionManager:
    def test_duplicate_id_returns_registered_session(self):
        manager = SessionManager()
        first = manager.create("abc")
        assert manager.create("abc") is first
        assert manager.renderer("abc") is not None

    def test_get_or_create_race_reuses_winner(self):
        manager = SessionManager()
        winner = manager.create("abc")
        # Lookup misses as if another request registered the id after it
        with patch.object(manager, "get", return_value=None):
            assert manager.get_or_create("abc") is winner

    def test_get_or_create(self):
        manager = SessionManager()
        first = manager.get_or_create("abc")
        assert manager.get_or_create("abc") is first
        other = manager.get_or_create(None)
        assert other is not first
        assert manager.get(other.session_id) is other

    def test_unreadable_saved_diagram_is_ignored(self, store):
        store.set(STORAGE_DIAGRAM_XML_KEY, "garbage")
        session = SessionManager(store_factory=lambda: store).create()
        assert session.xml == ""


# ── Credentials ──


class TestCredentials:
    def test_store_list_delete(self, client, store, monkeypatch):
        monkeypatch.setattr(server, "_agent", MagicMock())
        resp = client.put("/credentials/Gemini", json={"api_key": " secret "})
        assert resp.status_code == 200
        assert server._agent is None
        assert store.get_credential("gemini") == "secret"
        assert client.get("/credentials").json() == {"providers": ["gemini"]}

        assert client.delete("/credentials/gemini").json()["deleted"] is True
        assert client.get("/credentials").json() == {"providers": []}

    def test_empty_key_rejected(self, client):
        assert client.put("/credentials/gemini", json={"api_key": "  "}).status_code == 400
