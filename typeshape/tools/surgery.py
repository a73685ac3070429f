"""Span-based replacement of declarations inside existing Rust source.

A Replacement names a declaration, the byte span of its current text (or
None for a brand-new declaration) and the new text. `splice` applies a batch:

- spans are sorted and must not overlap
- each span widens back over the attribute and doc-comment lines directly
  above it, and forward to the end of its last line
- span-less replacements are appended at the end, separated by a blank line

`locate_span` finds a `struct` / `enum` definition by name for tables that
arrive without spans.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from typeshape.tools.model import TypeInfo
from typeshape.tools.render import render_declaration

Span = Tuple[int, int]

_PREFIX_LINES = ("#[", "///", "//!", "/**", "*", "*/")


class SurgeryError(ValueError):
    pass


@dataclass(frozen=True)
class Replacement:
    name: str
    span: Optional[Span]
    text: str


def full_span(source: str, start: int, end: int) -> Span:
    if start < 0 or end > len(source) or start > end:
        raise SurgeryError(f"Invalid span ({start}, {end}) for source of length {len(source)}")

    line_start = source.rfind("\n", 0, start) + 1
    if source[line_start:start].strip() == "":
        start = line_start
        # Attribute / doc lines directly above; blank lines only count between them.
        cursor = start
        while cursor > 0:
            prev_start = source.rfind("\n", 0, cursor - 1) + 1
            line = source[prev_start:cursor - 1].strip()
            if line.startswith(_PREFIX_LINES):
                start = prev_start
                cursor = prev_start
            elif line == "":
                cursor = prev_start
            else:
                break

    # Trailing whitespace up to and including the newline.
    i = end
    while i < len(source) and source[i] in " \t\r":
        i += 1
    if i < len(source) and source[i] == "\n":
        end = i + 1
    return start, end


def splice(source: str, replacements: Sequence[Replacement]) -> str:
    spanned = sorted((r for r in replacements if r.span is not None), key=lambda r: r.span[0])
    appended = [r for r in replacements if r.span is None]

    for prev, cur in zip(spanned, spanned[1:]):
        if prev.span[1] > cur.span[0]:
            raise SurgeryError(f"Overlapping declaration spans: {prev.name} {prev.span} and {cur.name} {cur.span}")

    out: List[str] = []
    last = 0
    for r in spanned:
        start, end = full_span(source, r.span[0], r.span[1])
        if start < last:
            raise SurgeryError(f"Overlapping declaration spans: {r.name} starts inside a previous replacement")
        out.append(source[last:start])
        out.append(r.text if r.text.endswith("\n") else r.text + "\n")
        last = end
    out.append(source[last:])
    result = "".join(out)

    for r in appended:
        text = r.text if r.text.endswith("\n") else r.text + "\n"
        result = (result.rstrip("\n") + "\n\n" + text) if result.strip() else text
    return result


def _skip_literal(source: str, i: int) -> int:
    """Index just past a string literal or comment starting at i, else i."""
    if source.startswith("//", i):
        nl = source.find("\n", i)
        return len(source) if nl < 0 else nl
    if source.startswith("/*", i):
        close = source.find("*/", i + 2)
        return len(source) if close < 0 else close + 2
    if source[i] == '"':
        j = i + 1
        while j < len(source) and source[j] != '"':
            j += 2 if source[j] == "\\" else 1
        return j + 1
    return i


def locate_span(source: str, name: str, kind: Optional[str] = None) -> Optional[Span]:
    """Span of `[pub[(..)]] struct|enum Name ...` through its closing brace or `;`."""
    keyword = {"record": "struct", "union": "enum"}.get(kind or "", r"(?:struct|enum)")
    pattern = re.compile(
        rf"^[ \t]*((?:pub(?:\([^)]*\))?\s+)?{keyword}\s+{re.escape(name)}\b)", re.MULTILINE
    )
    m = pattern.search(source)
    if m is None:
        return None

    start = m.start(1)
    depth = 0
    i = m.end(1)
    while i < len(source):
        skipped = _skip_literal(source, i)
        if skipped != i:
            i = skipped
            continue
        ch = source[i]
        if ch == ";" and depth == 0:
            return start, i + 1
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return start, i + 1
        i += 1
    return None


def plan(source: str, decls: Sequence[TypeInfo], existing: Mapping[str, TypeInfo]) -> List[Replacement]:
    out: List[Replacement] = []
    for decl in decls:
        prior = existing.get(decl.name)
        span = prior.span if prior is not None else None
        if span is None:
            span = locate_span(source, decl.name, "union" if decl.is_union else "record")
        out.append(Replacement(decl.name, span, render_declaration(decl)))
    return out


def splice_declarations(source: str, decls: Sequence[TypeInfo], existing: Mapping[str, TypeInfo]) -> str:
    return splice(source, plan(source, decls, existing))
