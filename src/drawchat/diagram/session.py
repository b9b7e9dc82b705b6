"""Edit orchestrator: owns one diagram session's document, raster and history."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Protocol

from drawchat import config
from drawchat.diagram.cells import parse_cells
from drawchat.diagram.errors import DiagramError, RendererUnavailableError, StructuralInvalidError
from drawchat.diagram.mermaid import convert_to_mermaid
from drawchat.diagram.patch import PatchOperation, apply_edits
from drawchat.diagram.validator import EMPTY_DIAGRAM, extract_diagram_xml, validate_and_fix, wrap_in_mxfile
from drawchat.storage.sqlite_store import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_DIAGRAM_XML_KEY = "drawchat-diagram-xml"

STATE_EMPTY = "empty"
STATE_READY = "ready"

# Export format used by the renderer for history/silent exports: SVG with
# the mxfile embedded in its content attribute.
HISTORY_EXPORT_FORMAT = "xmlsvg"

# file format -> (renderer format, mime type, extension)
FILE_FORMATS: dict[str, tuple[str, str, str]] = {
    "drawio": ("xmlsvg", "application/xml", ".drawio"),
    "png": ("png", "image/png", ".png"),
    "svg": ("svg", "image/svg+xml", ".svg"),
}


class Renderer(Protocol):
    """The embedded diagram editor. Export results come back via handle_export."""

    def load(self, xml: str) -> None: ...

    def export(self, fmt: str) -> None: ...


@dataclass(frozen=True)
class HistoryEntry:
    """Snapshot captured when an export-with-history completes."""

    svg: str
    xml: str
    timestamp: float


@dataclass(frozen=True)
class ExportedFile:
    """A file ready to hand to the user as a download."""

    filename: str
    content: str
    mime_type: str


class DiagramSession:
    """State machine for one chat session's diagram.

    The session is EMPTY until a document with user cells is loaded and
    READY afterwards. Export requests are asynchronous: the renderer calls
    ``handle_export`` when the data is available. There is one pending slot
    for generic exports and one for file saves; a new request in the same
    slot cancels the future it replaces.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        renderer: Renderer | None = None,
        max_history: int | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.lock = threading.Lock()
        self._store = store
        self._renderer = renderer
        self._renderer_ready = False
        self._xml = ""
        self._svg = ""
        self._history: deque[HistoryEntry] = deque(
            maxlen=max_history or config.MAX_HISTORY_SIZE
        )
        self._pending_fragment: str | None = None
        # Export slots
        self._export_future: Future[str] | None = None
        self._expect_history_export = False
        self._save_future: Future[ExportedFile] | None = None
        self._save_format: str | None = None
        self._save_filename: str = ""

    # ── State ──

    @property
    def xml(self) -> str:
        return self._xml

    @property
    def svg(self) -> str:
        return self._svg

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    @property
    def pending_fragment(self) -> str | None:
        return self._pending_fragment

    @property
    def state(self) -> str:
        if any(not c.is_root for c in parse_cells(self._xml)):
            return STATE_READY
        return STATE_EMPTY

    @property
    def export_pending(self) -> bool:
        return self._export_future is not None

    @property
    def save_pending(self) -> bool:
        return self._save_future is not None

    # ── Renderer lifecycle ──

    def on_renderer_load(self) -> None:
        self._renderer_ready = True

    def reset_renderer_ready(self) -> None:
        self._renderer_ready = False

    @property
    def renderer_ready(self) -> bool:
        return self._renderer is not None and self._renderer_ready

    def require_renderer(self) -> Renderer:
        """Return the renderer, raising RendererUnavailableError if not ready."""
        if not self.renderer_ready:
            raise RendererUnavailableError("Diagram renderer is not ready")
        return self._renderer

    # ── Load / clear / restore ──

    def load(self, xml: str, skip_validation: bool = False) -> str:
        """Make ``xml`` the current document, auto-fixing partial fragments.

        Returns the text actually loaded. Raises StructuralInvalidError, with
        the session untouched, if the XML has no diagram markers at all.
        """
        to_load = xml
        if not skip_validation:
            result = validate_and_fix(xml)
            if not result.valid:
                logger.warning("[%s] Rejected diagram: %s", self.session_id, result.error)
                raise StructuralInvalidError(result.error or "Invalid XML")
            if result.fixed is not None:
                logger.info("[%s] Auto-fixed XML issues: %s", self.session_id, "; ".join(result.fixes))
                to_load = result.fixed

        self._xml = to_load
        if self.renderer_ready:
            self._renderer.load(to_load)
        else:
            logger.debug("[%s] Renderer not ready, document held until it loads", self.session_id)
        return to_load

    def clear(self) -> None:
        """Reset to the canonical empty document and drop all history."""
        self.load(EMPTY_DIAGRAM, skip_validation=True)
        self._svg = ""
        self._history.clear()
        self._pending_fragment = None
        logger.info("[%s] Diagram cleared", self.session_id)

    def restore(self, index: int) -> bool:
        """Reload a history entry. Out-of-range indexes are ignored."""
        if not 0 <= index < len(self._history):
            logger.debug("[%s] Restore index %d out of range (%d entries)",
                         self.session_id, index, len(self._history))
            return False
        entry = self._history[index]
        self.load(entry.xml, skip_validation=True)
        self._svg = entry.svg
        logger.info("[%s] Restored history entry %d", self.session_id, index)
        return True

    # ── Tool-call operations ──

    def display(self, xml: str, truncated: bool = False) -> str | None:
        """Replace the whole document with a bare-cell fragment.

        A truncated payload is held back for ``append`` instead of loaded.
        """
        if truncated:
            self._pending_fragment = xml
            logger.info("[%s] display_diagram truncated at %d chars, awaiting append",
                        self.session_id, len(xml))
            return None
        self._pending_fragment = None
        return self.load(xml)

    def append(self, fragment: str, truncated: bool = False) -> str | None:
        """Continue a truncated display payload."""
        if self._pending_fragment is None:
            raise DiagramError(
                "No truncated diagram to continue. Use display_diagram to send the full diagram."
            )
        combined = self._pending_fragment + fragment
        if truncated:
            self._pending_fragment = combined
            logger.info("[%s] append_diagram still truncated (%d chars so far)",
                        self.session_id, len(combined))
            return None
        self._pending_fragment = None
        return self.load(combined)

    def edit(self, edits: list[PatchOperation] | list[dict[str, Any]]) -> str:
        """Apply a search/replace batch to the current document, all-or-nothing."""
        operations = [
            e if isinstance(e, PatchOperation) else PatchOperation.model_validate(e)
            for e in edits
        ]
        updated = apply_edits(self._xml, operations)
        return self.load(updated)

    def to_mermaid(self) -> str:
        return convert_to_mermaid(self._xml)

    # ── Exports ──

    def _replace_export_future(self) -> Future[str]:
        previous = self._export_future
        if previous is not None and not previous.done():
            logger.warning("[%s] Export superseded before completion, cancelling previous waiter",
                           self.session_id)
            previous.cancel()
        future: Future[str] = Future()
        self._export_future = future
        return future

    def export_for_history(self) -> Future[str] | None:
        """Request an export whose completion is recorded in history."""
        if not self.renderer_ready:
            logger.warning("[%s] Renderer not ready, export skipped", self.session_id)
            return None
        future = self._replace_export_future()
        self._expect_history_export = True
        self._renderer.export(HISTORY_EXPORT_FORMAT)
        return future

    def export_silent(self) -> Future[str] | None:
        """Request an export that does not touch history."""
        if not self.renderer_ready:
            logger.warning("[%s] Renderer not ready, export skipped", self.session_id)
            return None
        future = self._replace_export_future()
        self._expect_history_export = False
        self._renderer.export(HISTORY_EXPORT_FORMAT)
        return future

    def export_to_file(self, fmt: str, filename: str) -> Future[ExportedFile] | None:
        """Request an export for download as ``filename`` plus the format's extension."""
        if fmt not in FILE_FORMATS:
            raise ValueError(f"Unknown export format {fmt!r}. Expected one of: {', '.join(FILE_FORMATS)}")
        if not self.renderer_ready:
            logger.warning("[%s] Renderer not ready, save skipped", self.session_id)
            return None

        previous = self._save_future
        if previous is not None and not previous.done():
            logger.warning("[%s] Save superseded before completion, cancelling previous waiter",
                           self.session_id)
            previous.cancel()
        future: Future[ExportedFile] = Future()
        self._save_future = future
        self._save_format = fmt
        self._save_filename = filename
        self._renderer.export(FILE_FORMATS[fmt][0])
        return future

    def _build_file(self, data: str, fmt: str, filename: str) -> ExportedFile:
        _, mime_type, extension = FILE_FORMATS[fmt]
        content = data
        if fmt == "drawio":
            content = wrap_in_mxfile(extract_diagram_xml(data))
            if self._store is not None:
                self._store.set(STORAGE_DIAGRAM_XML_KEY, content)
        return ExportedFile(filename=f"{filename}{extension}", content=content, mime_type=mime_type)

    def handle_export(self, data: str, fmt: str | None = None) -> ExportedFile | None:
        """Completion callback from the renderer.

        ``fmt`` is the renderer format that was requested. When given, the
        result goes to the pending file save only if it matches that save's
        format, and to the generic export slot otherwise. Without ``fmt`` a
        pending save takes the result first.

        A save stops there for raster and plain SVG formats. Otherwise the
        document and raster are updated, history is recorded if expected,
        and the pending export is resolved. Data that carries no diagram
        leaves the document and history untouched. Returns the file to
        download when a save was resolved.
        """
        exported: ExportedFile | None = None
        if self._save_future is not None and (fmt is None or fmt == FILE_FORMATS[self._save_format][0]):
            future, save_format = self._save_future, self._save_format
            filename = self._save_filename
            self._save_future, self._save_format, self._save_filename = None, None, ""
            exported = self._build_file(data, save_format, filename)
            if not future.done():
                future.set_result(exported)
            logger.info("[%s] Saved %s (%d chars)", self.session_id, exported.filename, len(exported.content))
            if save_format in ("png", "svg"):
                return exported

        xml = extract_diagram_xml(data)
        if "<mxfile" not in xml and "<mxGraphModel" not in xml:
            logger.warning("[%s] Ignoring %s export without diagram XML (%d chars)",
                           self.session_id, fmt or "untyped", len(data))
            return exported
        self._xml = xml
        self._svg = data

        if self._expect_history_export:
            self._history.append(HistoryEntry(svg=data, xml=xml, timestamp=time.time()))
            self._expect_history_export = False
            logger.debug("[%s] History entry added (%d total)", self.session_id, len(self._history))

        if self._export_future is not None:
            future_xml, self._export_future = self._export_future, None
            if not future_xml.done():
                future_xml.set_result(xml)
        return exported
