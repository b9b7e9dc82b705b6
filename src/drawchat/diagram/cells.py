"""Cell model: tolerant tokenizer for mxCell elements and style strings."""

from __future__ import annotations

import html
import re
from collections.abc import Iterator
from dataclasses import dataclass

ROOT_CELL_IDS = frozenset({"0", "1"})
CANVAS_ROOT_ID = "0"

_CELL_TAG = "<mxCell"
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_NAME_STOP = frozenset("=>/\"'")


@dataclass(frozen=True)
class Cell:
    """One mxCell: a shape (vertex), a connector (edge), or a structural cell."""

    id: str
    value: str = ""
    style: str = ""
    parent: str | None = None
    source: str | None = None
    target: str | None = None
    vertex: bool = False
    edge: bool = False

    @property
    def is_root(self) -> bool:
        return self.id in ROOT_CELL_IDS


def decode_html_entities(text: str) -> str:
    """Decode entities, turn <br> into newlines and strip remaining inline markup."""
    text = html.unescape(text)
    text = _BR_RE.sub("\n", text)
    return _TAG_RE.sub("", text)


def parse_style(style: str) -> dict[str, str]:
    """Parse a ``key=value;key2;...`` style string into a mapping.

    Bare keys such as ``ellipse`` or ``rhombus`` map to ``"1"``. Later
    declarations of the same key override earlier ones, as draw.io does.
    """
    out: dict[str, str] = {}
    for part in style.split(";"):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            key, value = part.split("=", 1)
            out[key.strip()] = value.strip()
        else:
            out[part] = "1"
    return out


def _skip_space(xml: str, i: int) -> int:
    n = len(xml)
    while i < n and xml[i].isspace():
        i += 1
    return i


def _read_attributes(xml: str, i: int) -> tuple[dict[str, str], int]:
    """Read attributes starting at ``i`` up to the end of the start tag.

    Returns the attributes and the index just past the tag. Never raises:
    an unterminated tag ends at end of input, stray characters are skipped.
    """
    attrs: dict[str, str] = {}
    n = len(xml)
    while True:
        i = _skip_space(xml, i)
        if i >= n:
            return attrs, n
        if xml[i] == ">":
            return attrs, i + 1
        if xml.startswith("/>", i):
            return attrs, i + 2

        start = i
        while i < n and not xml[i].isspace() and xml[i] not in _NAME_STOP:
            i += 1
        name = xml[start:i]
        if not name:
            # Stray '/', quote or '=' with no attribute name
            i += 1
            continue

        i = _skip_space(xml, i)
        if i >= n or xml[i] != "=":
            attrs.setdefault(name, "")
            continue

        i = _skip_space(xml, i + 1)
        if i < n and xml[i] in "\"'":
            quote = xml[i]
            close = xml.find(quote, i + 1)
            if close == -1:
                value, i = xml[i + 1:], n
            else:
                value, i = xml[i + 1:close], close + 1
        else:
            start = i
            while i < n and not xml[i].isspace() and xml[i] != ">" and not xml.startswith("/>", i):
                i += 1
            value = xml[start:i]
        attrs.setdefault(name, value)


def iter_cell_attributes(xml: str) -> Iterator[dict[str, str]]:
    """Yield the raw attribute mapping of every ``<mxCell`` start tag, in order."""
    pos = 0
    n = len(xml)
    while True:
        start = xml.find(_CELL_TAG, pos)
        if start == -1:
            return
        i = start + len(_CELL_TAG)
        # <mxCellFoo> is a different element
        if i < n and not (xml[i].isspace() or xml[i] in "/>"):
            pos = i
            continue
        attrs, pos = _read_attributes(xml, i)
        yield attrs


def parse_cells(xml: str) -> list[Cell]:
    """Parse every mxCell element in document order.

    Missing attributes default to empty (id, value, style) or None
    (parent, source, target). Malformed input never raises.
    """
    cells: list[Cell] = []
    for attrs in iter_cell_attributes(xml):
        cells.append(Cell(
            id=attrs.get("id", ""),
            value=decode_html_entities(attrs.get("value", "")),
            style=attrs.get("style", ""),
            parent=attrs.get("parent"),
            source=attrs.get("source"),
            target=attrs.get("target"),
            vertex=attrs.get("vertex") == "1",
            edge=attrs.get("edge") == "1",
        ))
    return cells
