"""JSON-schema merge: records straight from a sample, extending known records.

This path does not expand shapes. It infers a JSON shape tree and emits one
record per object, merging into an existing record where one fits:

- arrays merge their elements: null yields to the other kind, objects merge
  field-wise, any other conflict becomes string
- nested objects are named in PascalCase after their key, array elements after
  the singular of their key (`users` -> `User`, `categories` -> `Category`,
  otherwise `<Name>Item`); a root array becomes `<Root> { items: Vec<Elem> }`
- numbers are f64, nulls `Option<serde_json::Value>`
- an object extends the existing record of the same name, or else the first
  record whose similarity reaches SIMILARITY_THRESHOLD

Extension classifies fields as common / old-only / new-only and resolves the
conflict per MergeStrategy:
- optional: old-only and new-only fields become optional
- union:    they become the `Legacy` / `Current` variants of an untagged
            `<Record>Variant`, held by a required `schema_variant` field
- hybrid:   union when more than HYBRID_UNION_ABOVE fields conflict, else optional

CLI:
  typeshape merge sample.json --name Root [--declarations d.json]
                  [--strategy optional|union|hybrid] [--json] [--out f]
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from typeshape.tools.declarations import DeclarationError, declaration_to_dict, load_declarations, load_json
from typeshape.tools.events import NULL_SINK, EventSink
from typeshape.tools.model import EvolutionError, FieldInfo, RecordKind, TypeInfo, UnionKind, VariantInfo
from typeshape.tools.render import render_declarations, to_pascal_case, to_snake_case
from typeshape.tools.scoring import types_compatible
from typeshape.tools.types import NUMERIC, Named, OptionT, Prim, SeqT, Type, optional_of

SIMILARITY_THRESHOLD = 0.6
HYBRID_UNION_ABOVE = 3
SCHEMA_VARIANT_FIELD = "schema_variant"

JSON_VALUE = Named("serde_json::Value")
NULL_TYPE = OptionT(JSON_VALUE)
F64 = Prim("f64")


class MergeStrategy(str, Enum):
    OPTIONAL = "optional"
    UNION = "union"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Union[str, "MergeStrategy"]) -> "MergeStrategy":
        if isinstance(value, MergeStrategy):
            return value
        try:
            return cls(value.lower())
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown merge strategy {value!r} (expected one of: {choices})") from None


# -------------------------
# JSON shape tree
# -------------------------

@dataclass(frozen=True)
class JsonType:
    kind: str  # string | number | boolean | null | array | object
    elem: Optional["JsonType"] = None
    fields: Tuple[Tuple[str, "JsonType"], ...] = ()


STRING = JsonType("string")
NUMBER = JsonType("number")
BOOLEAN = JsonType("boolean")
NULL = JsonType("null")


def analyze_json(value: Any) -> JsonType:
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, (int, float)):
        return NUMBER
    if isinstance(value, str):
        return STRING
    if isinstance(value, list):
        elem = NULL
        for item in value:
            elem = merge_types(elem, analyze_json(item))
        return JsonType("array", elem=elem)
    if isinstance(value, dict):
        return JsonType("object", fields=tuple((str(k), analyze_json(v)) for k, v in value.items()))
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def merge_types(a: JsonType, b: JsonType) -> JsonType:
    if a.kind == "null":
        return b
    if b.kind == "null":
        return a
    if a.kind == "array" and b.kind == "array":
        return JsonType("array", elem=merge_types(a.elem or NULL, b.elem or NULL))
    if a.kind == "object" and b.kind == "object":
        merged: Dict[str, JsonType] = dict(a.fields)
        for key, t in b.fields:
            merged[key] = merge_types(merged[key], t) if key in merged else t
        return JsonType("object", fields=tuple(merged.items()))
    if a.kind == b.kind and a.kind in ("string", "number", "boolean"):
        return a
    return STRING


# -------------------------
# Extension helpers
# -------------------------

def singular_name(plural: str) -> str:
    if plural.endswith("ies"):
        return plural[:-3] + "y"
    if plural.endswith("s") and not plural.endswith("ss"):
        return plural[:-1]
    return f"{plural}Item"


def _is_numeric(ty: Type) -> bool:
    return isinstance(ty, Prim) and ty.name in NUMERIC


def compatible_type(existing: Type, new: Type) -> Type:
    """The type a common field keeps when an existing record is extended."""
    if existing == new:
        return existing
    if new == NULL_TYPE:
        return optional_of(existing)
    if _is_numeric(existing) and new == F64:
        return existing
    if isinstance(existing, OptionT) and not isinstance(new, OptionT):
        inner = existing.inner
        if inner == new or (_is_numeric(inner) and new == F64):
            return existing
    if not isinstance(existing, OptionT) and isinstance(new, OptionT):
        inner = new.inner
        if existing == inner or (_is_numeric(existing) and inner == F64):
            return optional_of(existing)
    return new


def similarity(existing: Sequence[FieldInfo], new: Sequence[FieldInfo]) -> float:
    if not existing and not new:
        return 1.0
    declared = {f.name: f for f in existing}
    common = 0
    compatible = 0
    for f in new:
        old = declared.get(f.name)
        if old is None:
            continue
        common += 1
        if types_compatible(old.type, f.type, loose=True):
            compatible += 1
    overlap = common / (len(existing) + len(new))
    type_ratio = compatible / common if common else 0.0
    return (overlap + type_ratio) / 2


@dataclass(frozen=True)
class FieldClassification:
    common: Tuple[FieldInfo, ...]
    old_only: Tuple[FieldInfo, ...]
    new_only: Tuple[FieldInfo, ...]

    @property
    def conflicting(self) -> int:
        return len(self.old_only) + len(self.new_only)


def classify_fields(existing: Sequence[FieldInfo], new: Sequence[FieldInfo]) -> FieldClassification:
    incoming = {f.name: f for f in new}
    common: List[FieldInfo] = []
    old_only: List[FieldInfo] = []
    for old in existing:
        f = incoming.get(old.name)
        if f is None:
            old_only.append(old)
            continue
        ty = compatible_type(old.type, f.type)
        common.append(FieldInfo(old.name, ty, optional=old.optional or f.optional, rename=f.rename or old.rename, flatten=old.flatten))
    known = {f.name for f in existing}
    new_only = [f for f in new if f.name not in known]
    return FieldClassification(tuple(common), tuple(old_only), tuple(new_only))


def _optionalize(fields: Sequence[FieldInfo]) -> List[FieldInfo]:
    return [FieldInfo(f.name, optional_of(f.type), optional=True, rename=f.rename, flatten=f.flatten) for f in fields]


# -------------------------
# Record generation
# -------------------------

class RecordGenerator:
    def __init__(
        self,
        declarations: Optional[Mapping[str, TypeInfo]] = None,
        strategy: Union[str, MergeStrategy] = MergeStrategy.OPTIONAL,
        *,
        events: EventSink = NULL_SINK,
    ):
        self.declarations: Mapping[str, TypeInfo] = declarations or {}
        self.strategy = MergeStrategy.parse(strategy)
        self.events = events
        self.out: List[TypeInfo] = []
        self._names: Dict[str, int] = {}
        self._extended: Set[str] = set()

    def unique(self, base: str) -> str:
        count = self._names.get(base, 0) + 1
        self._names[base] = count
        return base if count == 1 else f"{base}{count}"

    def generate(self, schema: JsonType, root_name: str) -> List[TypeInfo]:
        if schema.kind == "array":
            elem = self.type_for(schema.elem or NULL, singular_name(root_name))
            self.out.append(TypeInfo(self.unique(root_name), RecordKind((FieldInfo("items", SeqT(elem)),))))
        elif schema.kind == "object":
            self.type_for(schema, root_name)
        else:
            ty = self.type_for(schema, root_name)
            self.out.append(TypeInfo(self.unique(root_name), RecordKind((FieldInfo("value", ty),))))
        return self.out

    def type_for(self, schema: JsonType, name: str) -> Type:
        if schema.kind == "object":
            return Named(self.record_for(schema, name))
        if schema.kind == "array":
            return SeqT(self.type_for(schema.elem or NULL, singular_name(name)))
        if schema.kind == "number":
            return F64
        if schema.kind == "boolean":
            return Prim("bool")
        if schema.kind == "null":
            return NULL_TYPE
        return Prim("String")

    def fields_for(self, schema: JsonType) -> List[FieldInfo]:
        out: List[FieldInfo] = []
        for key, t in schema.fields:
            ty = self.type_for(t, to_pascal_case(key))
            snake = to_snake_case(key)
            out.append(FieldInfo(snake, ty, optional=t.kind == "null", rename=key if snake != key else None))
        return out

    def record_for(self, schema: JsonType, name: str) -> str:
        fields = self.fields_for(schema)
        existing = self._existing_for(name, fields)
        if existing is None:
            record_name = self.unique(name)
            self.out.append(TypeInfo(record_name, RecordKind(tuple(fields))))
            return record_name

        self._extended.add(existing.name)
        self._names.setdefault(existing.name, 1)
        self.out.extend(self.extend(existing, fields))
        return existing.name

    def _existing_for(self, name: str, fields: Sequence[FieldInfo]) -> Optional[TypeInfo]:
        named = self.declarations.get(name)
        if named is not None and named.is_record and name not in self._extended:
            return named
        for decl in self.declarations.values():
            if not isinstance(decl.kind, RecordKind) or decl.name in self._extended:
                continue
            score = similarity(decl.kind.fields, fields)
            if score >= SIMILARITY_THRESHOLD:
                self.events.emit("merge.similar", record=decl.name, candidate=name, similarity=score)
                return decl
        return None

    def extend(self, existing: TypeInfo, fields: Sequence[FieldInfo]) -> List[TypeInfo]:
        if not isinstance(existing.kind, RecordKind):
            raise EvolutionError(f"Cannot extend {existing.name}: not a record")
        cls = classify_fields(existing.kind.fields, fields)
        self.events.emit(
            "merge.classify",
            record=existing.name,
            common=len(cls.common),
            old_only=len(cls.old_only),
            new_only=len(cls.new_only),
        )

        use_union = self.strategy is MergeStrategy.UNION or (
            self.strategy is MergeStrategy.HYBRID and cls.conflicting > HYBRID_UNION_ABOVE
        )
        if not use_union or cls.conflicting == 0:
            merged = list(cls.common) + _optionalize(cls.old_only) + _optionalize(cls.new_only)
            return [TypeInfo(existing.name, RecordKind(tuple(merged)), existing.span)]

        union_name = self.unique(f"{existing.name}Variant")
        variants = []
        if cls.old_only:
            variants.append(VariantInfo("Legacy", cls.old_only))
        if cls.new_only:
            variants.append(VariantInfo("Current", cls.new_only))
        union = TypeInfo(union_name, UnionKind(tuple(variants), untagged=True))
        holder = FieldInfo(SCHEMA_VARIANT_FIELD, Named(union_name), flatten=True)
        record = TypeInfo(existing.name, RecordKind(tuple(cls.common) + (holder,)), existing.span)
        return [union, record]


def generate_records(
    schema: JsonType,
    root_name: str,
    declarations: Optional[Mapping[str, TypeInfo]] = None,
    strategy: Union[str, MergeStrategy] = MergeStrategy.OPTIONAL,
    *,
    events: EventSink = NULL_SINK,
) -> List[TypeInfo]:
    return RecordGenerator(declarations, strategy, events=events).generate(schema, root_name)


def merge_sample(
    sample: Any,
    root_name: str,
    declarations: Optional[Mapping[str, TypeInfo]] = None,
    strategy: Union[str, MergeStrategy] = MergeStrategy.OPTIONAL,
    *,
    events: EventSink = NULL_SINK,
) -> List[TypeInfo]:
    return generate_records(analyze_json(sample), root_name, declarations, strategy, events=events)


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="typeshape merge")
    ap.add_argument("sample", help="Path to a JSON sample")
    ap.add_argument("--name", required=True, help="Root record name")
    ap.add_argument("--declarations", help="Declaration table JSON describing existing records")
    ap.add_argument("--strategy", default="optional", choices=[s.value for s in MergeStrategy])
    ap.add_argument("--json", action="store_true", help="Print the declarations as JSON")
    ap.add_argument("--out", help="Write the result to this file")
    args = ap.parse_args(argv)

    try:
        sample = load_json(Path(args.sample))
        table = load_declarations(args.declarations) if args.declarations else {}
    except (OSError, json.JSONDecodeError) as e:
        print(f"Failed to read/parse input: {e}", file=sys.stderr)
        return 3
    except DeclarationError as e:
        for issue in e.issues:
            print(f"{issue['pointer']}: {issue['message']}", file=sys.stderr)
        return 2

    decls = merge_sample(sample, args.name, table, args.strategy)
    if args.json:
        text = json.dumps({"declarations": [declaration_to_dict(d) for d in decls]}, indent=2, ensure_ascii=False) + "\n"
    else:
        text = render_declarations(decls, header=True)

    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        return 0
    sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
