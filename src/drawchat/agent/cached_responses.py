"""Canned display_diagram payloads for the starter prompts shown on an empty canvas."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CachedResponse:
    prompt_text: str
    has_image: bool
    xml: str


CACHED_EXAMPLE_RESPONSES: list[CachedResponse] = [
    CachedResponse(
        prompt_text="Draw a simple login flowchart",
        has_image=False,
        xml="""\
<mxCell id="2" value="Start" style="ellipse;whiteSpace=wrap;html=1;fillColor=#d5e8d4;strokeColor=#82b366;" vertex="1" parent="1">
  <mxGeometry x="340" y="40" width="120" height="50" as="geometry"/>
</mxCell>
<mxCell id="3" value="Enter username&#xa;and password" style="shape=parallelogram;whiteSpace=wrap;html=1;fillColor=#dae8fc;strokeColor=#6c8ebf;" vertex="1" parent="1">
  <mxGeometry x="320" y="130" width="160" height="60" as="geometry"/>
</mxCell>
<mxCell id="4" value="Credentials valid?" style="rhombus;whiteSpace=wrap;html=1;fillColor=#fff2cc;strokeColor=#d6b656;" vertex="1" parent="1">
  <mxGeometry x="330" y="230" width="140" height="90" as="geometry"/>
</mxCell>
<mxCell id="5" value="Show dashboard" style="rounded=1;whiteSpace=wrap;html=1;fillColor=#d5e8d4;strokeColor=#82b366;" vertex="1" parent="1">
  <mxGeometry x="340" y="370" width="120" height="50" as="geometry"/>
</mxCell>
<mxCell id="6" value="Show error" style="rounded=1;whiteSpace=wrap;html=1;fillColor=#f8cecc;strokeColor=#b85450;" vertex="1" parent="1">
  <mxGeometry x="560" y="250" width="120" height="50" as="geometry"/>
</mxCell>
<mxCell id="7" style="endArrow=classic;html=1;exitX=0.5;exitY=1;entryX=0.5;entryY=0;" edge="1" parent="1" source="2" target="3">
  <mxGeometry relative="1" as="geometry"/>
</mxCell>
<mxCell id="8" style="endArrow=classic;html=1;exitX=0.5;exitY=1;entryX=0.5;entryY=0;" edge="1" parent="1" source="3" target="4">
  <mxGeometry relative="1" as="geometry"/>
</mxCell>
<mxCell id="9" value="Yes" style="endArrow=classic;html=1;exitX=0.5;exitY=1;entryX=0.5;entryY=0;" edge="1" parent="1" source="4" target="5">
  <mxGeometry relative="1" as="geometry"/>
</mxCell>
<mxCell id="10" value="No" style="endArrow=classic;html=1;exitX=1;exitY=0.5;entryX=0;entryY=0.5;" edge="1" parent="1" source="4" target="6">
  <mxGeometry relative="1" as="geometry"/>
</mxCell>
<mxCell id="11" value="Retry" style="endArrow=classic;html=1;dashed=1;exitX=0.5;exitY=0;entryX=1;entryY=0.5;edgeStyle=orthogonalEdgeStyle;" edge="1" parent="1" source="6" target="3">
  <mxGeometry relative="1" as="geometry"/>
</mxCell>""",
    ),
    CachedResponse(
        prompt_text="Draw a cat for me",
        has_image=False,
        xml="""\
<mxCell id="2" value="" style="ellipse;whiteSpace=wrap;html=1;aspect=fixed;fillColor=#FFE6CC;strokeColor=#000000;strokeWidth=2;" vertex="1" parent="1">
  <mxGeometry x="300" y="150" width="120" height="120" as="geometry"/>
</mxCell>
<mxCell id="3" value="" style="triangle;whiteSpace=wrap;html=1;fillColor=#FFE6CC;strokeColor=#000000;strokeWidth=2;rotation=30;" vertex="1" parent="1">
  <mxGeometry x="280" y="120" width="50" height="60" as="geometry"/>
</mxCell>
<mxCell id="4" value="" style="triangle;whiteSpace=wrap;html=1;fillColor=#FFE6CC;strokeColor=#000000;strokeWidth=2;rotation=-30;" vertex="1" parent="1">
  <mxGeometry x="390" y="120" width="50" height="60" as="geometry"/>
</mxCell>
<mxCell id="5" value="" style="ellipse;whiteSpace=wrap;html=1;aspect=fixed;fillColor=#000000;strokeColor=#000000;" vertex="1" parent="1">
  <mxGeometry x="325" y="185" width="15" height="15" as="geometry"/>
</mxCell>
<mxCell id="6" value="" style="ellipse;whiteSpace=wrap;html=1;aspect=fixed;fillColor=#000000;strokeColor=#000000;" vertex="1" parent="1">
  <mxGeometry x="380" y="185" width="15" height="15" as="geometry"/>
</mxCell>
<mxCell id="7" value="" style="triangle;whiteSpace=wrap;html=1;fillColor=#FFB6C1;strokeColor=#000000;rotation=180;" vertex="1" parent="1">
  <mxGeometry x="350" y="210" width="20" height="15" as="geometry"/>
</mxCell>
<mxCell id="8" value="" style="ellipse;whiteSpace=wrap;html=1;fillColor=#FFE6CC;strokeColor=#000000;strokeWidth=2;" vertex="1" parent="1">
  <mxGeometry x="285" y="250" width="150" height="180" as="geometry"/>
</mxCell>""",
    ),
]


def find_cached_response(prompt_text: str, has_image: bool) -> CachedResponse | None:
    """Exact-match lookup; image uploads never match a text-only example."""
    for cached in CACHED_EXAMPLE_RESPONSES:
        if cached.prompt_text == prompt_text and cached.has_image == has_image and cached.xml:
            return cached
    return None
