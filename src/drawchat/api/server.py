"""FastAPI server: chat endpoint, diagram sessions and the renderer bridge."""

from __future__ import annotations

import base64
import binascii
import logging
import time

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel

from drawchat import config
from drawchat.agent.cached_responses import find_cached_response
from drawchat.agent.loop import DiagramAgent, create_diagram_agent
from drawchat.agent.tools import DISPLAY_DIAGRAM
from drawchat.api.sessions import SessionManager
from drawchat.diagram.errors import RendererUnavailableError, StructuralInvalidError
from drawchat.diagram.session import FILE_FORMATS, DiagramSession
from drawchat.diagram.validator import is_minimal_diagram
from drawchat.storage.sqlite_store import SqliteStore

# Configure logging on import, before anything else logs
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

# File upload limits (must match the client)
MAX_FILE_SIZE = 2 * 1024 * 1024
MAX_FILES = 5

_SENSITIVE_WORDS = ("key", "token", "sig", "secret", "password", "credential")
_AUTH_FAILED = "Authentication failed. Please check your credentials."

app = FastAPI(title="drawchat", description="Chat-driven draw.io diagram editing")

# CORS for the editor dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy-initialized singletons
_store: SqliteStore | None = None
_agent: DiagramAgent | None = None


def _get_store() -> SqliteStore:
    global _store
    if _store is None:
        _store = SqliteStore(config.SQLITE_PATH)
        _store.init_db()
        logger.info("SQLite store: %s", config.SQLITE_PATH)
    return _store


def _get_agent() -> DiagramAgent:
    global _agent
    if _agent is None:
        logger.info("Initializing diagram agent...")
        t0 = time.perf_counter()
        _agent = create_diagram_agent(store=_get_store())
        logger.info("Diagram agent ready (%.2fs)", time.perf_counter() - t0)
    return _agent


_sessions = SessionManager(store_factory=_get_store)


def _get_session(session_id: str) -> DiagramSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id!r} not found")
    return session


def _require_renderer(session: DiagramSession) -> None:
    try:
        session.require_renderer()
    except RendererUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _safe_error_message(message: str) -> str:
    """Hide upstream messages that might echo keys, tokens or other secrets."""
    lower = message.lower()
    if any(word in lower for word in _SENSITIVE_WORDS):
        return _AUTH_FAILED
    return message


def require_access_code(x_access_code: str | None = Header(default=None)) -> None:
    codes = config.get_access_codes()
    if codes and (not x_access_code or x_access_code not in codes):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing access code. Please configure it in Settings.",
        )


# ── Request / response models ──


class ChatMessage(BaseModel):
    role: str  # "user" or "assistant"
    text: str = ""
    files: list[str] = []  # data URLs


class ChatRequest(BaseModel):
    messages: list[ChatMessage]
    session_id: str | None = None
    previous_xml: str | None = None


class ToolStepResponse(BaseModel):
    tool: str
    summary: str
    ok: bool = True


class ChatResponse(BaseModel):
    session_id: str
    answer: str
    steps: list[ToolStepResponse]
    xml: str
    cached: bool = False


class SessionResponse(BaseModel):
    session_id: str
    state: str
    xml: str
    has_raster: bool
    history_size: int
    renderer_ready: bool
    awaiting_append: bool
    export_pending: bool
    save_pending: bool


class LoadRequest(BaseModel):
    xml: str
    skip_validation: bool = False


class ExportRequest(BaseModel):
    history: bool = True


class SaveRequest(BaseModel):
    format: str
    filename: str = "diagram"


class ExportCompleteRequest(BaseModel):
    data: str
    format: str | None = None


class ExportedFileResponse(BaseModel):
    filename: str
    content: str
    mime_type: str


class ExportCompleteResponse(BaseModel):
    xml: str
    file: ExportedFileResponse | None = None


class HistoryEntryResponse(BaseModel):
    index: int
    xml: str
    svg: str
    timestamp: float


class CredentialRequest(BaseModel):
    api_key: str


def _session_response(session: DiagramSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        state=session.state,
        xml=session.xml,
        has_raster=bool(session.svg),
        history_size=len(session.history),
        renderer_ready=session.renderer_ready,
        awaiting_append=session.pending_fragment is not None,
        export_pending=session.export_pending,
        save_pending=session.save_pending,
    )


# ── Files ──


def validate_file_parts(files: list[str]) -> str | None:
    """Return an error message if the attachments exceed the upload limits."""
    if len(files) > MAX_FILES:
        return f"Too many files. Maximum {MAX_FILES} allowed."
    for url in files:
        if url.startswith("data:") and "," in url:
            b64 = url.split(",", 1)[1]
            # Base64 inflates by ~33%; check the decoded size
            size_in_bytes = (len(b64) * 3 + 3) // 4
            if size_in_bytes > MAX_FILE_SIZE:
                return f"File exceeds {MAX_FILE_SIZE // 1024 // 1024}MB limit."
    return None


def decode_data_url(url: str) -> tuple[bytes, str]:
    """Split a ``data:<mime>;base64,<payload>`` URL into bytes and mime type."""
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Attachments must be base64 data URLs")
    header, payload = url[5:].split(",", 1)
    mime_type = header.split(";", 1)[0] or "application/octet-stream"
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 attachment: {e}") from e


def _history_contents(messages: list[ChatMessage]) -> list[types.Content]:
    contents = []
    for msg in messages:
        if not msg.text:
            continue
        role = "model" if msg.role == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part.from_text(text=msg.text)]))
    return contents


# ── Health ──


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/verify-access-code")
def verify_access_code(x_access_code: str | None = Header(default=None)):
    codes = config.get_access_codes()
    if not codes:
        return {"valid": True, "message": "No access code required"}
    if not x_access_code:
        raise HTTPException(status_code=401, detail="Access code is required")
    if x_access_code not in codes:
        raise HTTPException(status_code=401, detail="Invalid access code")
    return {"valid": True, "message": "Access code is valid"}


# ── Chat ──


@app.post("/chat", response_model=ChatResponse, dependencies=[Depends(require_access_code)])
def chat(req: ChatRequest):
    if not req.messages:
        raise HTTPException(status_code=400, detail="messages must not be empty")
    last = req.messages[-1]
    logger.info("POST /chat session=%s prompt=%r", req.session_id, last.text[:120])

    file_error = validate_file_parts(last.files)
    if file_error:
        raise HTTPException(status_code=400, detail=file_error)
    try:
        images = [decode_data_url(url) for url in last.files]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    session = _sessions.get_or_create(req.session_id)
    with session.lock:
        is_first_message = len(req.messages) == 1
        is_empty_diagram = not session.xml.strip() or is_minimal_diagram(session.xml)
        if is_first_message and is_empty_diagram:
            cached = find_cached_response(last.text, bool(last.files))
            if cached is not None:
                logger.info("Serving cached response for %r", last.text[:60])
                session.display(cached.xml)
                return ChatResponse(
                    session_id=session.session_id,
                    answer="",
                    steps=[ToolStepResponse(tool=DISPLAY_DIAGRAM, summary="Cached example diagram")],
                    xml=session.xml,
                    cached=True,
                )

        t0 = time.perf_counter()
        try:
            result = _get_agent().run(
                session,
                last.text,
                history=_history_contents(req.messages[:-1]),
                images=images,
                previous_xml=req.previous_xml,
            )
        except genai_errors.APIError as e:
            logger.exception("Model API error after %.2fs", time.perf_counter() - t0)
            raise HTTPException(status_code=e.code or 500, detail=_safe_error_message(e.message or str(e)))
        except Exception as e:
            logger.exception("Agent error after %.2fs", time.perf_counter() - t0)
            raise HTTPException(status_code=500, detail=_safe_error_message(str(e)))

    logger.info(
        "Chat complete: %d tool step(s), %d char answer, %.2fs total",
        len(result.steps), len(result.answer), time.perf_counter() - t0,
    )
    return ChatResponse(
        session_id=session.session_id,
        answer=result.answer,
        steps=[ToolStepResponse(tool=s.tool, summary=s.summary, ok=s.ok) for s in result.steps],
        xml=result.xml,
    )


# ── Sessions ──


@app.post("/sessions", response_model=SessionResponse)
def create_session():
    return _session_response(_sessions.create())


@app.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str):
    return _session_response(_get_session(session_id))


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str):
    if not _sessions.delete(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id!r} not found")
    return {"deleted": True}


@app.post("/sessions/{session_id}/load", response_model=SessionResponse)
def load_diagram(session_id: str, req: LoadRequest):
    session = _get_session(session_id)
    with session.lock:
        try:
            session.load(req.xml, skip_validation=req.skip_validation)
        except StructuralInvalidError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _session_response(session)


@app.post("/sessions/{session_id}/clear", response_model=SessionResponse)
def clear_diagram(session_id: str):
    session = _get_session(session_id)
    with session.lock:
        session.clear()
        return _session_response(session)


@app.get("/sessions/{session_id}/history", response_model=list[HistoryEntryResponse])
def get_history(session_id: str):
    session = _get_session(session_id)
    return [
        HistoryEntryResponse(index=i, xml=e.xml, svg=e.svg, timestamp=e.timestamp)
        for i, e in enumerate(session.history)
    ]


@app.post("/sessions/{session_id}/restore/{index}")
def restore_history(session_id: str, index: int):
    session = _get_session(session_id)
    with session.lock:
        restored = session.restore(index)
    return {"restored": restored, "xml": session.xml}


@app.get("/sessions/{session_id}/mermaid")
def get_mermaid(session_id: str):
    session = _get_session(session_id)
    return {"mermaid": session.to_mermaid()}


@app.post("/sessions/{session_id}/export")
def request_export(session_id: str, req: ExportRequest):
    session = _get_session(session_id)
    with session.lock:
        _require_renderer(session)
        if req.history:
            session.export_for_history()
        else:
            session.export_silent()
    return {"requested": True, "history": req.history}


@app.post("/sessions/{session_id}/save")
def request_save(session_id: str, req: SaveRequest):
    session = _get_session(session_id)
    if req.format not in FILE_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown format {req.format!r}. Available: {', '.join(FILE_FORMATS)}",
        )
    with session.lock:
        _require_renderer(session)
        session.export_to_file(req.format, req.filename)
    return {"requested": True, "format": req.format}


# ── Renderer bridge ──


@app.post("/sessions/{session_id}/renderer/ready", response_model=SessionResponse)
def renderer_ready(session_id: str):
    """The browser editor finished loading; replay the current document to it."""
    session = _get_session(session_id)
    with session.lock:
        session.on_renderer_load()
        if session.xml:
            session.load(session.xml, skip_validation=True)
        return _session_response(session)


@app.delete("/sessions/{session_id}/renderer/ready", response_model=SessionResponse)
def renderer_reset(session_id: str):
    session = _get_session(session_id)
    with session.lock:
        session.reset_renderer_ready()
        return _session_response(session)


@app.get("/sessions/{session_id}/renderer/commands")
def renderer_commands(session_id: str):
    _get_session(session_id)
    renderer = _sessions.renderer(session_id)
    return {"commands": renderer.drain() if renderer else []}


@app.post("/sessions/{session_id}/renderer/export", response_model=ExportCompleteResponse)
def renderer_export(session_id: str, req: ExportCompleteRequest):
    """Export completion callback from the browser editor."""
    session = _get_session(session_id)
    with session.lock:
        exported = session.handle_export(req.data, req.format)
        file = None
        if exported is not None:
            file = ExportedFileResponse(
                filename=exported.filename,
                content=exported.content,
                mime_type=exported.mime_type,
            )
        return ExportCompleteResponse(xml=session.xml, file=file)


# ── Credentials ──


@app.get("/credentials")
def list_credentials():
    return {"providers": _get_store().list_credential_providers()}


@app.put("/credentials/{provider}")
def set_credential(provider: str, req: CredentialRequest):
    global _agent
    if not req.api_key.strip():
        raise HTTPException(status_code=400, detail="api_key must not be empty")
    _get_store().set_credential(provider, req.api_key.strip())
    # Rebuild the agent with the new key on next use
    _agent = None
    return {"provider": provider, "stored": True}


@app.delete("/credentials/{provider}")
def delete_credential(provider: str):
    global _agent
    _get_store().remove_credential(provider)
    _agent = None
    return {"provider": provider, "deleted": True}
