"""Errors raised by the diagram core."""

from __future__ import annotations


class DiagramError(Exception):
    """Base class for recoverable diagram operation failures."""


class StructuralInvalidError(DiagramError):
    """Raised when XML has neither mxCell nor mxfile elements."""


class PatchNotFoundError(DiagramError):
    """Raised when an edit's search text does not occur in the document."""

    def __init__(self, index: int, search: str) -> None:
        self.index = index
        self.search = search
        preview = search if len(search) <= 80 else search[:80] + "..."
        super().__init__(f"Edit {index + 1}: search pattern not found: {preview!r}")


class RendererUnavailableError(DiagramError):
    """Raised when an operation needs a renderer that has not signalled readiness."""
