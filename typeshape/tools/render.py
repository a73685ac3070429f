"""Render declarations as Rust source with serde attributes.

Output conventions:
- every declaration derives Debug, Clone, Serialize, Deserialize
- records are `pub struct` with `pub` fields; Option fields are skipped when None
- renamed fields carry `#[serde(rename = "...")]`, flattened ones `#[serde(flatten)]`
- unions are `#[serde(untagged)]` or `#[serde(tag = "tag")]`; unit variants are bare
- JSON keys that are not Rust identifiers are snake_cased with a rename

CLI:
  typeshape render decls.json [--header]
"""

from __future__ import annotations

import argparse
import json
import re
import sys
from typing import List, Optional, Sequence, Tuple

from typeshape.tools.declarations import DeclarationError, load_declarations
from typeshape.tools.model import FieldInfo, TypeInfo, UnionKind

DERIVES = "#[derive(Debug, Clone, Serialize, Deserialize)]"
HEADER = "use serde::{Deserialize, Serialize};\n"

RUST_KEYWORDS = {
    "as", "async", "await", "break", "const", "continue", "crate", "dyn", "else", "enum", "extern",
    "false", "fn", "for", "if", "impl", "in", "let", "loop", "match", "mod", "move", "mut", "pub",
    "ref", "return", "static", "struct", "trait", "true", "type", "unsafe", "use", "where", "while",
}

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# -------------------------
# Naming
# -------------------------

def to_pascal_case(s: str) -> str:
    words = re.split(r"[_\- ]+", s)
    return "".join(w[:1].upper() + w[1:].lower() for w in words if w)


def to_snake_case(s: str) -> str:
    out: List[str] = []
    prev_lower = False
    for i, ch in enumerate(s):
        if ch in "- ":
            out.append("_")
            prev_lower = False
        elif ch.isupper():
            if i > 0 and prev_lower:
                out.append("_")
            out.append(ch.lower())
            prev_lower = False
        else:
            out.append(ch)
            prev_lower = ch.islower() or ch.isdigit()
    return "".join(out)


def field_ident(f: FieldInfo) -> Tuple[str, Optional[str]]:
    """(rust identifier, serde rename) for a declared field."""
    name, rename = f.name, f.rename
    if not _IDENT.match(name):
        ident = re.sub(r"[^A-Za-z0-9_]", "_", to_snake_case(name))
        if not ident or ident[0].isdigit():
            ident = f"_{ident}"
        name, rename = ident, rename or f.name
    if name in RUST_KEYWORDS:
        name = f"r#{name}"
    return name, rename


# -------------------------
# Rendering
# -------------------------

def _field_lines(f: FieldInfo, indent: str, visibility: str) -> List[str]:
    ident, rename = field_ident(f)
    lines: List[str] = []
    if rename is not None and rename != ident:
        lines.append(f'{indent}#[serde(rename = "{rename}")]')
    if f.flatten:
        lines.append(f"{indent}#[serde(flatten)]")
    elif f.optional:
        lines.append(f'{indent}#[serde(skip_serializing_if = "Option::is_none")]')
    lines.append(f"{indent}{visibility}{ident}: {f.type.render()},")
    return lines


def render_declaration(decl: TypeInfo) -> str:
    lines = [DERIVES]
    if isinstance(decl.kind, UnionKind):
        lines.append("#[serde(untagged)]" if decl.kind.untagged else '#[serde(tag = "tag")]')
        lines.append(f"pub enum {decl.name} {{")
        for v in decl.kind.variants:
            if v.fields is None:
                lines.append(f"    {v.name},")
                continue
            lines.append(f"    {v.name} {{")
            for f in v.fields:
                lines.extend(_field_lines(f, "        ", ""))
            lines.append("    },")
    else:
        lines.append(f"pub struct {decl.name} {{")
        for f in decl.kind.fields:
            lines.extend(_field_lines(f, "    ", "pub "))
    lines.append("}")
    return "\n".join(lines) + "\n"


def render_declarations(decls: Sequence[TypeInfo], *, header: bool = False) -> str:
    body = "\n".join(render_declaration(d) for d in decls)
    return (HEADER + "\n" + body) if header else body


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="typeshape render")
    ap.add_argument("path", help="Path to declaration table JSON")
    ap.add_argument("--header", action="store_true", help="Prepend the serde use line")
    args = ap.parse_args(argv)

    try:
        table = load_declarations(args.path)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Failed to read/parse JSON: {e}", file=sys.stderr)
        return 3
    except DeclarationError as e:
        for issue in e.issues:
            print(f"{issue['pointer']}: {issue['message']}", file=sys.stderr)
        return 2

    sys.stdout.write(render_declarations(list(table.values()), header=args.header))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
