#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from quire.archive import ArchiveError
from quire.env import log_level, tree_depth
from quire.models import tree_to_dicts
from quire.workspace import EpubWorkspace


def _parse_depth(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return tree_depth()
    if raw.strip().lower() in {"all", "0"}:
        return None
    value = int(raw)
    if value < 0:
        raise argparse.ArgumentTypeError("depth must be positive")
    return value


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print the file tree of an EPUB and optionally repack it in place."
    )
    parser.add_argument("input", help="Input EPUB file path")
    parser.add_argument("--titles", action="store_true", help="Read <title> of HTML documents")
    parser.add_argument("--depth", help="Folder nesting depth (integer or 'all')")
    parser.add_argument(
        "--repack",
        action="store_true",
        help="Rewrite the archive (mimetype first and stored, other entries deflated)",
    )
    return parser.parse_args(argv)


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=log_level(), format="%(levelname)s %(name)s: %(message)s")
    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 1
    try:
        depth = _parse_depth(args.depth)
    except (ValueError, argparse.ArgumentTypeError) as exc:
        print(f"Invalid depth: {exc}", file=sys.stderr)
        return 2

    with EpubWorkspace(tree_depth=depth) as workspace:
        try:
            tree = workspace.open(input_path, titles=args.titles)
            if args.repack:
                workspace.save(input_path)
        except ArchiveError as exc:
            print(str(exc), file=sys.stderr)
            return 1

    print(json.dumps(tree_to_dicts(tree), ensure_ascii=False, indent=2))
    if args.repack:
        print(f"EPUB repacked: {input_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
