"""Convert draw.io XML to a Mermaid flowchart (one-way, lossy)."""

from __future__ import annotations

import logging
import re

from drawchat.diagram.cells import CANVAS_ROOT_ID, Cell, parse_cells, parse_style

logger = logging.getLogger(__name__)

HEADER = '%%{init: {"theme": "default"}}%%'
DIRECTION = "flowchart TD"
EMPTY_PLACEHOLDER = f'{HEADER}\n{DIRECTION}\n    A["Empty diagram"]'

_ID_RE = re.compile(r"[^a-zA-Z0-9_]")

_SHAPE_BRACKETS = {
    "diamond": ('{{"', '"}}'),
    "circle": ('(("', '"))'),
    "rounded": ('("', '")'),
    "stadium": ('(["', '"])'),
    "rect": ('["', '"]'),
}


def sanitize_id(cell_id: str) -> str:
    return _ID_RE.sub("_", cell_id)


def sanitize_label(label: str) -> str:
    return label.replace("\n", " ").replace('"', "'").strip()


def shape_type(style: str) -> str:
    """Pick a shape category; the first match in priority order wins."""
    props = parse_style(style)
    shape = props.get("shape")
    if "rhombus" in props or shape == "rhombus":
        return "diamond"
    if "ellipse" in props or shape == "ellipse":
        return "circle"
    if props.get("rounded") == "1":
        return "rounded"
    if shape == "parallelogram":
        return "stadium"
    return "rect"


def arrow_style(style: str) -> str:
    props = parse_style(style)
    if props.get("dashed") == "1":
        return "-.->"
    if props.get("endArrow") == "none":
        return "---"
    if props.get("endArrow") == "classic" and props.get("startArrow") == "classic":
        return "---"
    return "-->"


def format_node(cell: Cell) -> str:
    safe_id = sanitize_id(cell.id)
    label = sanitize_label(cell.value) or safe_id
    opening, closing = _SHAPE_BRACKETS[shape_type(cell.style)]
    return f"{safe_id}{opening}{label}{closing}"


def format_edge(cell: Cell) -> str:
    source = sanitize_id(cell.source or "")
    target = sanitize_id(cell.target or "")
    arrow = arrow_style(cell.style)
    label = sanitize_label(cell.value)
    if label:
        return f'{source} {arrow}|"{label}"| {target}'
    return f"{source} {arrow} {target}"


def convert_to_mermaid(xml: str) -> str:
    """Render the cell graph as Mermaid flowchart text.

    Returns a one-node placeholder when there are no shapes or connectors,
    since Mermaid has no way to draw an empty chart.
    """
    cells = parse_cells(xml)
    vertices = [
        c for c in cells
        if c.vertex and not c.is_root and c.parent != CANVAS_ROOT_ID
    ]
    edges = [c for c in cells if c.edge and c.source and c.target]

    if not vertices and not edges:
        return EMPTY_PLACEHOLDER

    lines = [HEADER, DIRECTION]
    lines.extend(f"    {format_node(v)}" for v in vertices)
    lines.extend(f"    {format_edge(e)}" for e in edges)
    logger.debug("Converted %d node(s), %d edge(s) to Mermaid", len(vertices), len(edges))
    return "\n".join(lines)
