"""Declaration table I/O: schema validation, parsing and canonical dumps.

The name -> TypeInfo table the engine evolves against is exchanged as JSON:

    {"declarations": [
      {"name": "User", "kind": "record", "span": [0, 58],
       "fields": [{"name": "name", "type": "String"},
                  {"name": "email", "type": "Option<String>"}]},
      {"name": "Contact", "kind": "union", "untagged": true,
       "variants": [{"name": "Email", "fields": [...]}, {"name": "Unknown"}]}
    ]}

Validation errors are emitted with JSON Pointers, sorted by path.

CLI:
  typeshape check decls.json [--json-errors]

Exit codes:
  0 OK
  2 invalid declaration table
  3 IO/JSON parse error
"""

from __future__ import annotations

import argparse
import importlib.resources
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import jsonschema

from typeshape.tools.model import FieldInfo, RecordKind, TypeInfo, UnionKind, VariantInfo
from typeshape.tools.types import parse_type_expr, unwrap_optional


SCHEMA_NAME = "declarations.schema.v1.json"


class DeclarationError(ValueError):
    def __init__(self, message: str, issues: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.issues = issues or []


def load_schema_text() -> str:
    with importlib.resources.files("typeshape.schema").joinpath(SCHEMA_NAME).open("r", encoding="utf-8") as f:
        return f.read()


def load_schema() -> Dict[str, Any]:
    return json.loads(load_schema_text())


def load_json(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    return json.loads(text)


def _join_pointer(segments: Iterable[Union[str, int]]) -> str:
    out = [str(s).replace("~", "~0").replace("/", "~1") for s in segments]
    return "/" + "/".join(out) if out else ""


def _issue(pointer: str, message: str, validator: str, expected: Any = None) -> Dict[str, Any]:
    return {"pointer": pointer, "message": message, "validator": validator, "expected": expected}


def validate(doc: Any, schema: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    validator = jsonschema.Draft202012Validator(schema if schema is not None else load_schema())
    errors: List[Dict[str, Any]] = []
    for err in sorted(validator.iter_errors(doc), key=lambda e: [str(p) for p in e.absolute_path]):
        errors.append(_issue(_join_pointer(err.absolute_path), err.message, err.validator, err.validator_value))
    return errors


# -------------------------
# Parsing
# -------------------------

def _field_from_dict(d: Dict[str, Any], pointer: str, issues: List[Dict[str, Any]]) -> Optional[FieldInfo]:
    try:
        ty = parse_type_expr(d["type"])
    except ValueError as e:
        issues.append(_issue(pointer + "/type", str(e), "type-expr", d["type"]))
        return None
    return FieldInfo(
        name=d["name"],
        type=ty,
        optional=bool(d.get("optional", False)),
        rename=d.get("rename"),
        flatten=bool(d.get("flatten", False)),
    )


def _fields_from_list(items: List[Dict[str, Any]], pointer: str, issues: List[Dict[str, Any]]) -> List[FieldInfo]:
    out: List[FieldInfo] = []
    seen = set()
    for i, raw in enumerate(items):
        fp = f"{pointer}/{i}"
        if raw["name"] in seen:
            issues.append(_issue(fp + "/name", f"Duplicate field {raw['name']!r}", "unique-name", raw["name"]))
            continue
        seen.add(raw["name"])
        fi = _field_from_dict(raw, fp, issues)
        if fi is not None:
            out.append(fi)
    return out


def type_info_from_dict(d: Dict[str, Any], pointer: str = "", issues: Optional[List[Dict[str, Any]]] = None) -> Optional[TypeInfo]:
    """Build one TypeInfo from an already schema-valid dict. Problems go to `issues`."""
    issues = issues if issues is not None else []
    before = len(issues)
    span = d.get("span")
    if span is not None and span[0] > span[1]:
        issues.append(_issue(pointer + "/span", f"Span start {span[0]} is after end {span[1]}", "span", span))

    kind: Union[RecordKind, UnionKind]
    if d["kind"] == "union":
        variants: List[VariantInfo] = []
        seen = set()
        for i, raw in enumerate(d.get("variants", [])):
            vp = f"{pointer}/variants/{i}"
            if raw["name"] in seen:
                issues.append(_issue(vp + "/name", f"Duplicate variant {raw['name']!r}", "unique-name", raw["name"]))
                continue
            seen.add(raw["name"])
            fields = raw.get("fields")
            if fields is None:
                variants.append(VariantInfo(raw["name"]))
            else:
                variants.append(VariantInfo(raw["name"], tuple(_fields_from_list(fields, vp + "/fields", issues))))
        kind = UnionKind(variants=tuple(variants), untagged=bool(d.get("untagged", True)))
    else:
        kind = RecordKind(fields=tuple(_fields_from_list(d.get("fields", []), pointer + "/fields", issues)))

    if len(issues) > before:
        return None
    return TypeInfo(name=d["name"], kind=kind, span=tuple(span) if span is not None else None)


def parse_declarations(doc: Any, *, schema: Optional[Dict[str, Any]] = None) -> Dict[str, TypeInfo]:
    """Validate and parse a declaration document into an insertion-ordered table."""
    issues = validate(doc, schema)
    if issues:
        raise DeclarationError(f"Invalid declaration table ({len(issues)} issue(s))", issues)

    table: Dict[str, TypeInfo] = {}
    for i, raw in enumerate(doc["declarations"]):
        pointer = f"/declarations/{i}"
        if raw["name"] in table:
            issues.append(_issue(pointer + "/name", f"Duplicate declaration {raw['name']!r}", "unique-name", raw["name"]))
            continue
        info = type_info_from_dict(raw, pointer, issues)
        if info is not None:
            table[info.name] = info

    if issues:
        raise DeclarationError(f"Invalid declaration table ({len(issues)} issue(s))", issues)
    return table


def load_declarations(path: Union[str, Path]) -> Dict[str, TypeInfo]:
    return parse_declarations(load_json(Path(path)))


# -------------------------
# Canonical dump
# -------------------------

def _field_to_dict(f: FieldInfo) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": f.name, "type": f.type.render()}
    if f.optional:
        out["optional"] = True
    if f.rename is not None:
        out["rename"] = f.rename
    if f.flatten:
        out["flatten"] = True
    return out


def declaration_to_dict(info: TypeInfo) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": info.name}
    if isinstance(info.kind, UnionKind):
        out["kind"] = "union"
        out["untagged"] = info.kind.untagged
        variants = []
        for v in info.kind.variants:
            vd: Dict[str, Any] = {"name": v.name}
            if v.fields is not None:
                vd["fields"] = [_field_to_dict(f) for f in v.fields]
            variants.append(vd)
        out["variants"] = variants
    else:
        out["kind"] = "record"
        out["fields"] = [_field_to_dict(f) for f in info.kind.fields]
    if info.span is not None:
        out["span"] = list(info.span)
    return out


def dumps_declarations(decls: Iterable[TypeInfo]) -> str:
    doc = {"declarations": [declaration_to_dict(d) for d in decls]}
    return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


def describe(info: TypeInfo) -> str:
    """One-line summary used by the CLI."""
    if isinstance(info.kind, UnionKind):
        tag = "untagged" if info.kind.untagged else "tagged"
        return f"{info.name}: {tag} union, {len(info.kind.variants)} variant(s)"
    opt = sum(1 for f in info.kind.fields if f.optional)
    inner = ", ".join(f"{f.name}: {unwrap_optional(f.type)}{'?' if f.optional else ''}" for f in info.kind.fields)
    return f"{info.name}: record ({opt} optional) {{{inner}}}"


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="typeshape check")
    ap.add_argument("path", help="Path to declaration table JSON")
    ap.add_argument("--json-errors", action="store_true", help="Emit validation errors as JSON on stderr")
    ap.add_argument("--quiet", action="store_true", help="Print nothing on success")
    args = ap.parse_args(argv)

    try:
        doc = load_json(Path(args.path))
    except (OSError, json.JSONDecodeError) as e:
        print(f"Failed to read/parse JSON: {e}", file=sys.stderr)
        return 3

    try:
        table = parse_declarations(doc)
    except DeclarationError as e:
        if args.json_errors:
            print(json.dumps(e.issues, indent=2, ensure_ascii=False), file=sys.stderr)
        else:
            for issue in e.issues:
                print(f"{issue['pointer']}: {issue['message']}", file=sys.stderr)
        return 2

    if not args.quiet:
        for info in table.values():
            print(describe(info))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
