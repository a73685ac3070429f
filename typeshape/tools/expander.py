"""Shape expansion: every concrete stance a declaration can take on the wire.

Rules:
- a record expands to one shape per subset of its optional fields (2^k shapes
  for k optional fields, so callers should keep k small)
- a field whose type names a known *untagged* union is inlined: one branch per
  variant shape, plus a branch without it when the field is optional; each
  inlined branch records the field and union name in its metadata (the most
  recently inlined field wins)
- a `flatten` field whose type names a known record is inlined the same way,
  without metadata
- tagged unions get a synthetic required `tag` field per variant; unit variants
  of untagged unions cannot be told apart and are skipped

CLI:
  typeshape expand decls.json --name User [--json]
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Mapping, Optional, Sequence, Tuple

from typeshape.tools.declarations import DeclarationError, load_declarations
from typeshape.tools.events import NULL_SINK, EventSink
from typeshape.tools.model import (
    NO_METADATA,
    FieldInfo,
    FieldShape,
    Shape,
    ShapeMetadata,
    TypeInfo,
    UnionKind,
    VariantInfo,
)
from typeshape.tools.types import Lit, named_ref, unwrap_optional


class ShapeExpander:
    def __init__(self, known: Optional[Mapping[str, TypeInfo]] = None, *, events: EventSink = NULL_SINK):
        self.known: Mapping[str, TypeInfo] = known or {}
        self.events = events

    def expand(self, decl: TypeInfo) -> List[Shape]:
        if isinstance(decl.kind, UnionKind):
            shapes = self._expand_variants(decl.kind.variants, decl.kind.untagged, (decl.name,))
        else:
            shapes = self._expand_fields(decl.kind.fields, (decl.name,))
        self.events.emit("expand.type", name=decl.name, shapes=len(shapes))
        return shapes

    def expand_fields(self, fields: Sequence[FieldInfo]) -> List[Shape]:
        return self._expand_fields(fields, ())

    def expand_variants(self, variants: Sequence[VariantInfo], untagged: bool) -> List[Shape]:
        return self._expand_variants(variants, untagged, ())

    # ---- internals ----

    def _inlinable(self, f: FieldInfo, path: Tuple[str, ...]) -> Optional[TypeInfo]:
        ref = named_ref(unwrap_optional(f.type))
        if ref is None or ref in path:
            return None
        target = self.known.get(ref)
        if target is None:
            return None
        if target.is_untagged_union:
            return target
        if f.flatten and target.is_record:
            return target
        return None

    def _expand_fields(self, fields: Sequence[FieldInfo], path: Tuple[str, ...]) -> List[Shape]:
        bases: List[Tuple[List[FieldShape], ShapeMetadata]] = [([], NO_METADATA)]

        for f in fields:
            target = self._inlinable(f, path)
            if target is None:
                for base_fields, _ in bases:
                    if all(bf.name != f.name for bf in base_fields):
                        base_fields.append(FieldShape(f.name, f.type, not f.optional))
                continue

            inner_path = path + (target.name,)
            if isinstance(target.kind, UnionKind):
                inlined = self._expand_variants(target.kind.variants, True, inner_path)
                meta = ShapeMetadata(original_union_field_name=f.name, source_union_type=target.name)
            else:
                inlined = self._expand_fields(target.kind.fields, inner_path)
                meta = None
            self.events.emit("expand.inline", field=f.name, type=target.name, branches=len(inlined))

            grown: List[Tuple[List[FieldShape], ShapeMetadata]] = []
            for base_fields, base_meta in bases:
                if f.optional:
                    grown.append((list(base_fields), base_meta))
                for variant_shape in inlined:
                    branch = list(base_fields)
                    taken = {bf.name for bf in branch}
                    for vf in variant_shape.fields:
                        if vf.name in taken:
                            continue
                        branch.append(FieldShape(vf.name, vf.type, (not f.optional) and vf.required))
                    grown.append((branch, meta if meta is not None else base_meta))
            bases = grown

        out: List[Shape] = []
        for base_fields, meta in bases:
            out.extend(_optional_subsets(base_fields, meta))
        return out

    def _expand_variants(self, variants: Sequence[VariantInfo], untagged: bool, path: Tuple[str, ...]) -> List[Shape]:
        out: List[Shape] = []
        for v in variants:
            if v.fields is None:
                if not untagged:
                    out.append(Shape((FieldShape("tag", Lit(v.name), True),)))
                continue
            for shape in self._expand_fields(v.fields, path):
                if untagged:
                    out.append(shape)
                else:
                    tag = FieldShape("tag", Lit(v.name), True)
                    rest = tuple(sf for sf in shape.fields if sf.name != "tag")
                    out.append(Shape((tag,) + rest, shape.metadata))
        return out


def _optional_subsets(fields: List[FieldShape], meta: ShapeMetadata) -> List[Shape]:
    optional_idx = [i for i, f in enumerate(fields) if not f.required]
    if not optional_idx:
        return [Shape(tuple(fields), meta)]

    out: List[Shape] = []
    for mask in range(1 << len(optional_idx)):
        chosen = {idx for bit, idx in enumerate(optional_idx) if (mask >> bit) & 1}
        picked: List[FieldShape] = []
        for i, f in enumerate(fields):
            if f.required:
                picked.append(f)
            elif i in chosen:
                picked.append(FieldShape(f.name, unwrap_optional(f.type), True))
        out.append(Shape(tuple(picked), meta))
    return out


def expand(decl: TypeInfo, known: Optional[Mapping[str, TypeInfo]] = None) -> List[Shape]:
    return ShapeExpander(known).expand(decl)


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="typeshape expand")
    ap.add_argument("path", help="Path to declaration table JSON")
    ap.add_argument("--name", required=True, help="Declaration to expand")
    ap.add_argument("--json", action="store_true", help="Print shapes as JSON")
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

    decl = table.get(args.name)
    if decl is None:
        print(f"Unknown declaration: {args.name}", file=sys.stderr)
        return 2

    shapes = ShapeExpander(table).expand(decl)
    if args.json:
        print(json.dumps([s.to_dict() for s in shapes], indent=2, ensure_ascii=False))
        return 0
    for i, shape in enumerate(shapes, 1):
        inner = ", ".join(f"{f.name}: {f.type}" for f in shape.fields)
        print(f"{i}: {{{inner}}}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
