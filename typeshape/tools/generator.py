"""Decision -> declaration objects.

- SimpleRecord: one record; fields that are not required get the Option wrapper
- TaggedUnion: an untagged union whose variants each carry the common fields
  followed by their own; two variants where one is empty (with common fields)
  collapse to `<Name>Extra` plus a record holding an optional flattened `extra`
- RecordWithExtendedUnion: the record only; the union amendment is applied by a
  UnionWorkspace, which owns a private copy of every union it extends
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from typeshape.tools.model import (
    EvolutionError,
    EvolutionResult,
    FieldInfo,
    FieldShape,
    RecordKind,
    RecordWithExtendedUnion,
    SimpleRecord,
    TaggedUnion,
    TypeInfo,
    UnionKind,
    Variant,
    VariantInfo,
)
from typeshape.tools.types import Lit, Named, OptionT, Prim, collapse_optional, is_optional, optional_of

EXTRA_FIELD = "extra"


def field_info(f: FieldShape) -> FieldInfo:
    ty = Prim("String") if isinstance(f.type, Lit) else collapse_optional(f.type)
    if not f.required:
        ty = optional_of(ty)
    return FieldInfo(f.name, ty, optional=is_optional(ty))


def _record(name: str, fields: Sequence[FieldShape]) -> TypeInfo:
    return TypeInfo(name, RecordKind(tuple(field_info(f) for f in fields)))


def _extra_collapse(result: TaggedUnion) -> Optional[List[TypeInfo]]:
    if len(result.variants) != 2 or not result.common_fields:
        return None
    empty = [v for v in result.variants if not v.fields]
    payload = [v for v in result.variants if v.fields]
    if len(empty) != 1 or len(payload) != 1:
        return None

    extra_name = f"{result.name}Extra"
    side = _record(extra_name, payload[0].fields)
    main_fields = [field_info(f) for f in result.common_fields]
    main_fields.append(FieldInfo(EXTRA_FIELD, OptionT(Named(extra_name)), optional=True, flatten=True))
    return [side, TypeInfo(result.name, RecordKind(tuple(main_fields)))]


def generate(result: EvolutionResult) -> List[TypeInfo]:
    if isinstance(result, SimpleRecord):
        return [_record(result.name, result.fields)]

    if isinstance(result, TaggedUnion):
        collapsed = _extra_collapse(result)
        if collapsed is not None:
            return collapsed
        common = [field_info(f) for f in result.common_fields]
        variants = tuple(
            VariantInfo(v.name, tuple(common) + tuple(field_info(f) for f in v.fields)) for v in result.variants
        )
        return [TypeInfo(result.name, UnionKind(variants, untagged=True))]

    if isinstance(result, RecordWithExtendedUnion):
        return [_record(result.record_name, result.record_fields)]

    raise EvolutionError(f"Unknown evolution result: {type(result).__name__}")


class UnionWorkspace:
    """Unions being amended during one evolution call.

    The caller's table is never touched: `extend` copies a union the first
    time it is amended and `amended()` hands the updated copies back.
    """

    def __init__(self, declarations: Mapping[str, TypeInfo]):
        self._declarations = declarations
        self._work: Dict[str, TypeInfo] = {}

    def extend(self, union_name: str, variants: Sequence[Variant]) -> TypeInfo:
        current = self._work.get(union_name) or self._declarations.get(union_name)
        if current is None or not isinstance(current.kind, UnionKind):
            raise EvolutionError(f"Cannot extend {union_name!r}: no such union")

        taken = {v.name for v in current.kind.variants}
        added: List[VariantInfo] = []
        for v in variants:
            name = v.name
            n = 2
            while name in taken:
                name = f"{v.name}{n}"
                n += 1
            taken.add(name)
            added.append(VariantInfo(name, tuple(field_info(f) for f in v.fields)))

        kind = UnionKind(current.kind.variants + tuple(added), current.kind.untagged)
        updated = TypeInfo(current.name, kind, current.span)
        self._work[union_name] = updated
        return updated

    def amended(self) -> List[TypeInfo]:
        return list(self._work.values())

    def apply(self, result: EvolutionResult) -> List[TypeInfo]:
        decls = generate(result)
        if isinstance(result, RecordWithExtendedUnion):
            self.extend(result.union_name, result.new_union_variants)
            decls.extend(self.amended())
        return decls
