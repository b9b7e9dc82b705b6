"""Shared test helpers: mock Gemini response factories and a recording renderer."""

import html
from unittest.mock import MagicMock


class RecordingRenderer:
    """Renderer that records load/export requests instead of drawing anything."""

    def __init__(self):
        self.loads: list[str] = []
        self.exports: list[str] = []

    def load(self, xml: str) -> None:
        self.loads.append(xml)

    def export(self, fmt: str) -> None:
        self.exports.append(fmt)


def make_svg(xml: str) -> str:
    """Build a draw.io-style xmlsvg export embedding ``xml`` in its content attribute."""
    return f'<svg xmlns="http://www.w3.org/2000/svg" content="{html.escape(xml)}"><g/></svg>'


def cell(cell_id: str, value: str = "", style: str = "", parent: str = "1") -> str:
    return (
        f'<mxCell id="{cell_id}" value="{value}" style="{style}" vertex="1" parent="{parent}">'
        '<mxGeometry x="0" y="0" width="120" height="60" as="geometry"/></mxCell>'
    )


def _make_text_response(text: str):
    """Create a mock Gemini response with text content."""
    part = MagicMock()
    part.text = text
    part.function_call = None

    content = MagicMock()
    content.role = "model"
    content.parts = [part]

    candidate = MagicMock()
    candidate.content = content
    candidate.finish_reason = None

    response = MagicMock()
    response.candidates = [candidate]
    response.function_calls = None
    response.text = text
    return response


def _make_fn_call_response(name: str, args: dict, finish_reason=None):
    """Create a mock Gemini response with a function call."""
    fn_call = MagicMock()
    fn_call.name = name
    fn_call.args = args

    fn_part = MagicMock()
    fn_part.function_call = fn_call

    content = MagicMock()
    content.role = "model"
    content.parts = [fn_part]

    candidate = MagicMock()
    candidate.content = content
    candidate.finish_reason = finish_reason

    response = MagicMock()
    response.candidates = [candidate]
    response.function_calls = [fn_call]
    response.text = None
    return response
