"""Structural validation and auto-wrapping of draw.io XML."""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_PAGE_NAME = "Page-1"
DEFAULT_PAGE_ID = "page-1"

ROOT_CELLS = '<mxCell id="0"/><mxCell id="1" parent="0"/>'
EMPTY_DIAGRAM = (
    f'<mxfile><diagram name="{DEFAULT_PAGE_NAME}" id="{DEFAULT_PAGE_ID}">'
    f"<mxGraphModel><root>{ROOT_CELLS}</root></mxGraphModel>"
    "</diagram></mxfile>"
)

_CONTENT_RE = re.compile(r'content="([^"]*)"')
_WHITESPACE_RE = re.compile(r"\s")


@dataclass
class ValidationResult:
    """Outcome of validate_and_fix.

    ``fixed`` is only set when at least one fix was applied; callers keep
    the input text otherwise.
    """

    valid: bool
    error: str | None = None
    fixed: str | None = None
    fixes: list[str] = field(default_factory=list)


def wrap_in_graph_model(xml: str) -> str:
    """Wrap bare mxCell elements in mxGraphModel/root with the reserved root cells."""
    return f"<mxGraphModel><root>{ROOT_CELLS}{xml}</root></mxGraphModel>"


def wrap_in_mxfile(xml: str) -> str:
    """Wrap an mxGraphModel in the mxfile envelope unless it already has one."""
    if "<mxfile" in xml:
        return xml
    return f'<mxfile><diagram name="{DEFAULT_PAGE_NAME}" id="{DEFAULT_PAGE_ID}">{xml}</diagram></mxfile>'


def validate_and_fix(xml: str) -> ValidationResult:
    """Check XML structure and wrap partial fragments into a full document."""
    if not xml or not xml.strip():
        return ValidationResult(valid=True)

    if "<mxCell" not in xml and "<mxfile" not in xml:
        return ValidationResult(
            valid=False,
            error="Invalid XML: Missing mxCell or mxfile elements",
        )

    fixes: list[str] = []
    fixed = xml

    if "<mxGraphModel" not in fixed and "<mxfile" not in fixed:
        fixed = wrap_in_graph_model(fixed)
        fixes.append("Wrapped raw mxCell elements in mxGraphModel structure")

    if "<mxGraphModel" in fixed and "<mxfile" not in fixed:
        fixed = wrap_in_mxfile(fixed)
        fixes.append("Wrapped mxGraphModel in mxfile structure")

    if not fixes:
        return ValidationResult(valid=True)
    logger.debug("Applied %d structural fix(es): %s", len(fixes), "; ".join(fixes))
    return ValidationResult(valid=True, fixed=fixed, fixes=fixes)


def extract_diagram_xml(svg_data: str) -> str:
    """Pull the embedded mxfile out of a draw.io ``xmlsvg`` export.

    Falls back to returning the input unchanged when there is no
    ``content`` attribute.
    """
    match = _CONTENT_RE.search(svg_data)
    if match is None:
        return svg_data
    return html.unescape(match.group(1))


def is_minimal_diagram(xml: str) -> bool:
    """True when the document holds no user cells beyond the reserved roots."""
    stripped = _WHITESPACE_RE.sub("", xml)
    return 'id="2"' not in stripped
