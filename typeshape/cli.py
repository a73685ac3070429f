#!/usr/bin/env python3
"""typeshape unified CLI.

Argument parsing is delegated to the individual tool modules, so each tool is
usable both as:
- `typeshape <tool> ...`
- `python -m typeshape.tools.<tool> ...`

Commands:
- check    Validate a declaration table
- expand   List the shapes a declaration accepts
- evolve   Evolve a type from a JSON sample
- merge    Generate / extend records from a JSON sample
- render   Render a declaration table as Rust

Example:
  typeshape evolve response.json --name User --declarations types.json
"""

from __future__ import annotations

import sys
from typing import List, Optional

from typeshape.tools import declarations, evolution, expander, render, schema_merge


def _help() -> str:
    return (
        "typeshape CLI\n\n"
        "Usage:\n"
        "  typeshape <command> [args...]\n\n"
        "Commands:\n"
        "  check     Validate a declaration table\n"
        "  expand    List accepted shapes of a declaration\n"
        "  evolve    Evolve a type from a JSON sample\n"
        "  merge     Generate or extend records from a JSON sample\n"
        "  render    Render declarations as Rust\n"
        "  version   Show current version\n"
    )


def _print_version_and_exit() -> None:
    from importlib.metadata import PackageNotFoundError, version

    try:
        v = version("typeshape")
    except PackageNotFoundError:
        v = "unknown"
    print(v)
    raise SystemExit(0)


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] in {"-h", "--help", "help"}:
        sys.stdout.write(_help())
        return 0

    cmd, rest = argv[0], argv[1:]
    if cmd in ("--version", "-V", "version"):
        _print_version_and_exit()
    if cmd in {"check", "validate"}:
        return declarations.main(rest)
    if cmd == "expand":
        return expander.main(rest)
    if cmd == "evolve":
        return evolution.main(rest)
    if cmd == "merge":
        return schema_merge.main(rest)
    if cmd == "render":
        return render.main(rest)

    sys.stderr.write(f"Unknown command: {cmd}\n\n")
    sys.stderr.write(_help())
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
