"""Shape optimizer: from many shapes to one decision.

Pipeline for `optimize(shapes, name)`:
1. common fields: names present in every shape; on type disagreement the more
   specific type wins (narrower integer, integer over float, anything over an
   inferred null, required over optional, else first seen)
2. residual shapes: every shape minus the common fields
3. greedy clustering: residuals whose field-name sets differ by at most
   `merge_distance` join the cluster of the first one; fields not shared by the
   whole cluster become optional
4. refinement of nested structures (passthrough)
5. fold-back into a known untagged union:
   a. pattern fold-back around one shared field, >= `pattern_fold_back` of the
      remaining patterns matching the union's variants
   b. direct fold-back of whole residual variants against the union's variants
6. generic decision: record, record with the single variant merged in, or a
   union of the residual variants

Processing order is the input order everywhere, so names and grouping are
deterministic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from typeshape.tools.events import NULL_SINK, EventSink
from typeshape.tools.model import (
    EvolutionError,
    EvolutionResult,
    FieldShape,
    RecordWithExtendedUnion,
    Shape,
    SimpleRecord,
    TaggedUnion,
    TypeInfo,
    UnionKind,
    Variant,
)
from typeshape.tools.scoring import Pattern, matches_any, pattern_of_shapes, union_slots
from typeshape.tools.types import UNIT, Named, Prim, collapse_optional, int_width, optional_of, unwrap_optional


@dataclass(frozen=True)
class Thresholds:
    pattern_fold_back: float = 0.7
    direct_fold_back: float = 0.8
    merge_distance: int = 1
    retention_ratio: float = 0.5


DEFAULT_THRESHOLDS = Thresholds()


# -------------------------
# Field-level helpers
# -------------------------

def more_specific(first: FieldShape, second: FieldShape) -> FieldShape:
    """Pick the field whose type says more; ties keep `first`."""
    if first.type == second.type:
        return first if first.required or not second.required else second

    a, b = first.type, second.type
    if unwrap_optional(a) == UNIT and unwrap_optional(b) != UNIT:
        return second
    if unwrap_optional(b) == UNIT and unwrap_optional(a) != UNIT:
        return first

    wa, wb = int_width(a), int_width(b)
    if wa is not None and wb is not None and wa[0] == wb[0] and wa[1] != wb[1]:
        return first if wa[1] < wb[1] else second
    if wa is not None and isinstance(b, Prim) and b.name in ("f32", "f64"):
        return first
    if wb is not None and isinstance(a, Prim) and a.name in ("f32", "f64"):
        return second

    if first.required and not second.required:
        return first
    if second.required and not first.required:
        return second
    return first


def find_common_fields(shapes: Sequence[Shape]) -> List[FieldShape]:
    if not shapes:
        return []
    counts: Dict[str, int] = {}
    best: Dict[str, FieldShape] = {}
    order: List[str] = []
    for shape in shapes:
        seen = set()
        for f in shape.fields:
            if f.name in seen:
                continue
            seen.add(f.name)
            if f.name not in counts:
                counts[f.name] = 0
                best[f.name] = f
                order.append(f.name)
            else:
                best[f.name] = more_specific(best[f.name], f)
            counts[f.name] += 1
    return [best[n] for n in order if counts[n] == len(shapes)]


def remove_common_fields(shapes: Sequence[Shape], common: Sequence[FieldShape]) -> List[Shape]:
    names = {f.name for f in common}
    return [Shape(tuple(f for f in s.fields if f.name not in names), s.metadata) for s in shapes]


def field_distance(a: Shape, b: Shape) -> int:
    na, nb = set(a.names()), set(b.names())
    return len(na ^ nb)


def _as_optional(f: FieldShape) -> FieldShape:
    return FieldShape(f.name, optional_of(f.type), False)


def _collapse(fields: Sequence[FieldShape]) -> Tuple[FieldShape, ...]:
    return tuple(FieldShape(f.name, collapse_optional(f.type), f.required) for f in fields)


def cluster_variants(residuals: Sequence[Shape], merge_distance: int = 1) -> List[Variant]:
    taken = [False] * len(residuals)
    variants: List[Variant] = []
    for i, base in enumerate(residuals):
        if taken[i]:
            continue
        taken[i] = True
        members = [i]
        for j in range(i + 1, len(residuals)):
            if not taken[j] and field_distance(base, residuals[j]) <= merge_distance:
                taken[j] = True
                members.append(j)
        variants.append(_merge_cluster(members, residuals))
    return variants


def _merge_cluster(members: List[int], residuals: Sequence[Shape]) -> Variant:
    first = members[0]
    if len(members) == 1:
        return Variant(f"Variant{first + 1}", residuals[first].fields)

    group = [residuals[i] for i in members]
    merged = find_common_fields(group)
    present = {f.name for f in merged}
    for shape in group:
        for f in shape.fields:
            if f.name not in present:
                present.add(f.name)
                merged.append(_as_optional(f))
    return Variant(f"MergedVariant{first + 1}", _collapse(merged))


def union_field_name(union_name: str, shapes: Sequence[Shape] = ()) -> str:
    """Name for a record field typed as `union_name`.

    Shape metadata recorded when the union was inlined wins; otherwise
    `FooVariant` gives `foo` and anything else `<name>_type`.
    """
    for shape in shapes:
        meta = shape.metadata
        if meta.source_union_type == union_name and meta.original_union_field_name:
            return meta.original_union_field_name
    if "variant" in union_name.lower():
        stem = union_name[: -len("Variant")] if union_name.endswith("Variant") else union_name
        return stem.lower() or "variant"
    return f"{union_name.lower()}_type"


def free_union_field_name(union_name: str, shapes: Sequence[Shape], taken: Sequence[str]) -> str:
    """`union_field_name` moved aside from names already used in the record."""
    used = set(taken)
    base = union_field_name(union_name, shapes)
    if base not in used:
        return base
    base = f"{union_name.lower()}_type"
    candidate, n = base, 2
    while candidate in used:
        candidate = f"{base}{n}"
        n += 1
    return candidate


def _pattern_name(union_name: str) -> str:
    stem = union_name[: -len("Variant")] if union_name.endswith("Variant") else union_name
    return f"{stem}Pattern"


# -------------------------
# Optimizer
# -------------------------

class ShapeOptimizer:
    def __init__(
        self,
        known: Optional[Mapping[str, TypeInfo]] = None,
        *,
        thresholds: Optional[Thresholds] = None,
        events: EventSink = NULL_SINK,
    ):
        self.known: Mapping[str, TypeInfo] = known or {}
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.events = events

    def optimize(self, shapes: Sequence[Shape], name: str) -> EvolutionResult:
        self.events.emit("optimize.start", name=name, shapes=len(shapes))
        if not shapes:
            return self._decided(SimpleRecord(name, ()), "empty")
        if len(shapes) == 1:
            return self._decided(SimpleRecord(name, shapes[0].fields), "single-shape")

        common = find_common_fields(shapes)
        self.events.emit("optimize.common", fields=[f.to_dict() for f in common])

        residuals = remove_common_fields(shapes, common)
        variants = cluster_variants(residuals, self.thresholds.merge_distance)
        self.events.emit("optimize.cluster", variants=[v.to_dict() for v in variants])

        variants = self._refine(variants)

        folded = self._fold_back(common, variants, name, shapes)
        if folded is not None:
            return self._decided(folded, "fold-back")
        return self._decided(self._decide(common, variants, name), "generic")

    def _decided(self, result: EvolutionResult, reason: str) -> EvolutionResult:
        self.events.emit("optimize.decision", reason=reason, result=result.to_dict())
        return result

    def _refine(self, variants: List[Variant]) -> List[Variant]:
        # Nested structures are not re-optimized; variants pass through as clustered.
        return variants

    def _decide(self, common: List[FieldShape], variants: List[Variant], name: str) -> EvolutionResult:
        if not variants:
            return SimpleRecord(name, common)
        if len(variants) == 1:
            only = variants[0]
            if not common:
                return SimpleRecord(name, only.fields)
            if not only.fields:
                return SimpleRecord(name, common)
            return SimpleRecord(name, _collapse(list(common) + list(only.fields)))
        return TaggedUnion(name, common, variants)

    # ---- fold-back ----

    def fold_back_candidates(self, name: str) -> List[Tuple[str, UnionKind]]:
        out: List[Tuple[str, UnionKind]] = []
        for union_name, info in self.known.items():
            if union_name == name or not isinstance(info.kind, UnionKind) or not info.kind.untagged:
                continue
            out.append((union_name, info.kind))
        return out

    def _fold_back(
        self, common: List[FieldShape], variants: List[Variant], name: str, shapes: Sequence[Shape]
    ) -> Optional[EvolutionResult]:
        candidates = self.fold_back_candidates(name)
        if not candidates or not variants:
            return None
        result = self._pattern_fold_back(common, variants, name, shapes, candidates)
        if result is not None:
            return result
        return self._direct_fold_back(common, variants, name, shapes, candidates)

    def _shared_field_order(self, variants: List[Variant]) -> List[Tuple[str, List[int]]]:
        """Field names with the variants holding them, most widely shared first."""
        holders: Dict[str, List[int]] = {}
        for i, v in enumerate(variants):
            for f in v.fields:
                holders.setdefault(f.name, []).append(i)
        ranked = sorted(enumerate(holders.items()), key=lambda item: (-len(item[1][1]), item[0]))
        return [entry for _, entry in ranked]

    def _pattern_ratio(self, patterns: List[Tuple[int, Pattern]], expected: int, union: UnionKind) -> Optional[float]:
        if len(patterns) != expected:
            raise EvolutionError(f"Found pattern count mismatch: {len(patterns)} patterns for {expected} variants")
        if not patterns:
            return None
        slots = union_slots(union)
        matched = sum(1 for _, p in patterns if matches_any(p, slots))
        return matched / len(patterns)

    def _pattern_fold_back(
        self,
        common: List[FieldShape],
        variants: List[Variant],
        name: str,
        shapes: Sequence[Shape],
        candidates: List[Tuple[str, UnionKind]],
    ) -> Optional[EvolutionResult]:
        for field_name, idxs in self._shared_field_order(variants):
            patterns = [
                (i, pattern_of_shapes(f for f in variants[i].fields if f.name != field_name)) for i in idxs
            ]
            for union_name, union in candidates:
                ratio = self._pattern_ratio(patterns, len(idxs), union)
                if ratio is None or ratio < self.thresholds.pattern_fold_back:
                    continue
                slots = union_slots(union)
                folded_idx = [i for i, p in patterns if matches_any(p, slots)]
                if not folded_idx:
                    continue
                shared = variants[folded_idx[0]].get(field_name)
                if shared is None:
                    raise EvolutionError(f"Shared field {field_name!r} vanished from {variants[folded_idx[0]].name}")
                others = [i for i in range(len(variants)) if i not in folded_idx]
                taken = [f.name for f in common] + [field_name]
                union_field = FieldShape(free_union_field_name(union_name, shapes, taken), Named(union_name), True)
                self.events.emit(
                    "optimize.pattern_fold_back",
                    union=union_name,
                    field=field_name,
                    ratio=ratio,
                    folded=[variants[i].name for i in folded_idx],
                    kept=[variants[i].name for i in others],
                )
                if not others:
                    return SimpleRecord(name, list(common) + [shared, union_field])
                folded = Variant(_pattern_name(union_name), (shared, union_field))
                return TaggedUnion(name, common, [folded] + [variants[i] for i in others])
        return None

    def _direct_fold_back(
        self,
        common: List[FieldShape],
        variants: List[Variant],
        name: str,
        shapes: Sequence[Shape],
        candidates: List[Tuple[str, UnionKind]],
    ) -> Optional[EvolutionResult]:
        patterns = [pattern_of_shapes(v.fields) for v in variants]
        for union_name, union in candidates:
            slots = union_slots(union)
            hits = [matches_any(p, slots) for p in patterns]
            matched = sum(hits)
            if matched == 0:
                continue
            if not common and matched < math.ceil(self.thresholds.direct_fold_back * len(patterns)):
                continue

            field_name = free_union_field_name(union_name, shapes, [f.name for f in common])
            fields = list(common) + [FieldShape(field_name, Named(union_name), True)]
            unmatched = [i for i, hit in enumerate(hits) if not hit]
            self.events.emit(
                "optimize.direct_fold_back",
                union=union_name,
                matched=matched,
                total=len(patterns),
                unmatched=[variants[i].name for i in unmatched],
            )
            if not unmatched:
                return SimpleRecord(name, fields)
            new_variants = [
                Variant(f"NewVariant{i + 1}", tuple(FieldShape(n, t, r) for n, t, r in patterns[i]))
                for i in unmatched
            ]
            return RecordWithExtendedUnion(name, fields, union_name, new_variants)
        return None


def optimize(
    shapes: Sequence[Shape],
    name: str,
    known: Optional[Mapping[str, TypeInfo]] = None,
    *,
    thresholds: Optional[Thresholds] = None,
) -> EvolutionResult:
    return ShapeOptimizer(known, thresholds=thresholds).optimize(shapes, name)
