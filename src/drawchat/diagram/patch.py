"""Exact-text search/replace patching of diagram XML."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from drawchat.diagram.errors import PatchNotFoundError

logger = logging.getLogger(__name__)


class PatchOperation(BaseModel):
    """A literal search/replace pair. Only the first occurrence is replaced."""

    search: str
    replace: str


def apply_edit(xml: str, edit: PatchOperation) -> str | None:
    """Apply one operation, returning the new text or None if ``search`` is absent.

    An empty search never matches.
    """
    if not edit.search:
        return None
    pos = xml.find(edit.search)
    if pos == -1:
        return None
    return xml[:pos] + edit.replace + xml[pos + len(edit.search):]


def apply_edits(xml: str, edits: list[PatchOperation]) -> str:
    """Apply operations in order; each one sees the output of the previous.

    The batch is all-or-nothing: the first unmatched search raises
    PatchNotFoundError and no partial result is returned.
    """
    current = xml
    for i, edit in enumerate(edits):
        updated = apply_edit(current, edit)
        if updated is None:
            logger.info("Edit %d/%d failed: search pattern not found", i + 1, len(edits))
            raise PatchNotFoundError(i, edit.search)
        current = updated
    logger.debug("Applied %d edit(s): %d -> %d chars", len(edits), len(xml), len(current))
    return current
