"""Compatibility scoring between shapes, field patterns and declarations.

- types_compatible: equal after normalisation, or equal once an Option layer is
  stripped; with loose=True also string/integer/float cross matches
- patterns_compatible: name-sorted (name, type, required) lists; a required
  field may fill an optional slot, never the other way round
- record_score: 2 per shared field name, +3 when the types are compatible
- variant_score: 10 per shared name, +5 when compatible, + coverage bonus,
  minus a penalty when the sample carries too many foreign fields
"""

from __future__ import annotations

import math
from typing import Iterable, List, Tuple, Union

from typeshape.tools.model import FieldInfo, FieldShape, Shape, TypeInfo, UnionKind, VariantInfo
from typeshape.tools.types import OptionT, Prim, SIGNED_WIDTHS, Type, UNSIGNED_WIDTHS, as_type, collapse_optional

Pattern = List[Tuple[str, Type, bool]]

_STRING = {"String", "str", "char"}
_INTEGER = {"isize", "usize", *SIGNED_WIDTHS, *UNSIGNED_WIDTHS}
_FLOAT = {"f32", "f64"}


def _scalar_class(ty: Type) -> str | None:
    if not isinstance(ty, Prim):
        return None
    if ty.name in _STRING:
        return "string"
    if ty.name in _INTEGER:
        return "integer"
    if ty.name in _FLOAT:
        return "float"
    return None


def types_compatible(t1: Union[str, Type], t2: Union[str, Type], *, loose: bool = False) -> bool:
    a = collapse_optional(as_type(t1))
    b = collapse_optional(as_type(t2))
    if a == b:
        return True
    if isinstance(a, OptionT) or isinstance(b, OptionT):
        inner_a = a.inner if isinstance(a, OptionT) else a
        inner_b = b.inner if isinstance(b, OptionT) else b
        return types_compatible(inner_a, inner_b, loose=loose)
    if loose:
        ca, cb = _scalar_class(a), _scalar_class(b)
        return ca is not None and cb is not None
    return False


# -------------------------
# Patterns
# -------------------------

def pattern_of_shapes(fields: Iterable[FieldShape]) -> Pattern:
    return sorted(((f.name, f.type, f.required) for f in fields), key=lambda p: p[0])


def pattern_of_infos(fields: Iterable[FieldInfo]) -> Pattern:
    return sorted(((f.name, f.type, not f.optional) for f in fields), key=lambda p: p[0])


def patterns_compatible(candidate: Pattern, slot: Pattern) -> bool:
    if len(candidate) != len(slot):
        return False
    for (name1, ty1, req1), (name2, ty2, req2) in zip(candidate, slot):
        if name1 != name2:
            return False
        if not types_compatible(ty1, ty2):
            return False
        if req2 and not req1:
            return False
    return True


def union_slots(union: UnionKind) -> List[Pattern]:
    return [pattern_of_infos(v.fields) for v in union.variants if v.fields is not None]


def matches_any(candidate: Pattern, slots: List[Pattern]) -> bool:
    return any(patterns_compatible(candidate, slot) for slot in slots)


# -------------------------
# Scores
# -------------------------

def record_score(fields: Iterable[FieldInfo], shape: Shape) -> int:
    declared = {f.name: f for f in fields}
    score = 0
    for sf in shape.fields:
        existing = declared.get(sf.name)
        if existing is None:
            continue
        score += 2
        if types_compatible(existing.type, sf.type, loose=True):
            score += 3
    return score


def declaration_score(decl: TypeInfo, shape: Shape) -> int:
    if isinstance(decl.kind, UnionKind):
        return 1
    return record_score(decl.kind.fields, shape)


def variant_score(shape: Shape, variant: VariantInfo) -> int:
    if variant.fields is None:
        return 0
    declared = {f.name: f for f in variant.fields}
    score = 0
    matched = 0
    for sf in shape.fields:
        vf = declared.get(sf.name)
        if vf is None:
            continue
        score += 10
        matched += 1
        if types_compatible(sf.type, vf.type, loose=True):
            score += 5

    total = len(variant.fields)
    score += math.floor(10 * matched / max(total, 1) + 0.5)

    unmatched = len(shape.fields) - matched
    if unmatched > total:
        score = max(0, score - 2 * unmatched)
    return score
