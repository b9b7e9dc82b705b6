#!/usr/bin/env python3
"""CLI: Validate a draw.io file and print it as a full document or as Mermaid."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from drawchat.diagram.cells import parse_cells
from drawchat.diagram.mermaid import convert_to_mermaid
from drawchat.diagram.validator import extract_diagram_xml, validate_and_fix


def main() -> None:
    parser = argparse.ArgumentParser(description="Validate and convert a draw.io diagram")
    parser.add_argument(
        "path",
        type=Path,
        help="A .drawio/.xml file, a bare mxCell fragment, or a draw.io xmlsvg export",
    )
    parser.add_argument(
        "--mermaid",
        action="store_true",
        help="Print a Mermaid flowchart instead of the normalized XML",
    )
    parser.add_argument(
        "--fix",
        action="store_true",
        help="Rewrite the file in place with the normalized XML",
    )
    args = parser.parse_args()

    if not args.path.is_file():
        print(f"Error: {args.path} is not a file.", file=sys.stderr)
        sys.exit(1)

    text = args.path.read_text(encoding="utf-8")
    if args.path.suffix == ".svg":
        text = extract_diagram_xml(text)

    result = validate_and_fix(text)
    if not result.valid:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)
    for fix in result.fixes:
        print(f"Fixed: {fix}", file=sys.stderr)

    xml = result.fixed if result.fixed is not None else text
    cells = parse_cells(xml)
    print(
        f"{len(cells)} cells ({sum(c.vertex for c in cells)} shapes, "
        f"{sum(c.edge for c in cells)} connectors)",
        file=sys.stderr,
    )

    if args.fix and args.path.suffix == ".svg":
        print("Warning: --fix ignored for SVG exports.", file=sys.stderr)
    elif args.fix and result.fixed is not None:
        args.path.write_text(xml, encoding="utf-8")
        print(f"Wrote {args.path}", file=sys.stderr)

    print(convert_to_mermaid(xml) if args.mermaid else xml)


if __name__ == "__main__":
    main()
