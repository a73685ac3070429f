"""Shape and declaration model shared by every typeshape tool.

Three groups of value objects live here:

- shapes: FieldShape / ShapeMetadata / Shape, one concrete stance a value takes
  on the wire (which fields are present, with which types)
- declarations: FieldInfo / VariantInfo / RecordKind / UnionKind / TypeInfo,
  the name -> declaration table consumed by the engine and produced by the
  generator
- results: SimpleRecord / TaggedUnion / RecordWithExtendedUnion, the
  optimizer's decision

Everything is immutable. Lists passed to constructors are stored as tuples.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from typeshape.tools.types import Type, as_type, is_optional, optional_of


class EvolutionError(RuntimeError):
    """Raised when an internal invariant of the evolution engine is violated."""


def _tuple(items: Optional[Iterable[Any]]) -> Tuple[Any, ...]:
    return tuple(items) if items is not None else ()


# -------------------------
# Shapes
# -------------------------

@dataclass(frozen=True)
class FieldShape:
    name: str
    type: Type
    required: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", as_type(self.type))

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type.render(), "required": self.required}


@dataclass(frozen=True)
class ShapeMetadata:
    original_union_field_name: Optional[str] = None
    source_union_type: Optional[str] = None

    @property
    def empty(self) -> bool:
        return self.original_union_field_name is None and self.source_union_type is None


NO_METADATA = ShapeMetadata()


@dataclass(frozen=True, eq=False)
class Shape:
    fields: Tuple[FieldShape, ...] = ()
    metadata: ShapeMetadata = NO_METADATA

    def __post_init__(self) -> None:
        fields = _tuple(self.fields)
        seen = set()
        for f in fields:
            if f.name in seen:
                raise ValueError(f"Duplicate field {f.name!r} in shape")
            seen.add(f.name)
        object.__setattr__(self, "fields", fields)

    # Equality is structural over the field set; order and provenance do not count.
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Shape):
            return NotImplemented
        return frozenset(self.fields) == frozenset(other.fields)

    def __hash__(self) -> int:
        return hash(frozenset(self.fields))

    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    def get(self, name: str) -> Optional[FieldShape]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"fields": [f.to_dict() for f in self.fields]}
        if not self.metadata.empty:
            out["metadata"] = {
                "original_union_field_name": self.metadata.original_union_field_name,
                "source_union_type": self.metadata.source_union_type,
            }
        return out


# -------------------------
# Declarations
# -------------------------

@dataclass(frozen=True)
class FieldInfo:
    """A declared field. `type` is the type as written, Option wrapper included."""

    name: str
    type: Type
    optional: bool = False
    rename: Optional[str] = None
    flatten: bool = False

    def __post_init__(self) -> None:
        ty = as_type(self.type)
        if self.optional and not is_optional(ty):
            ty = optional_of(ty)
        object.__setattr__(self, "type", ty)
        object.__setattr__(self, "optional", is_optional(ty))


@dataclass(frozen=True)
class VariantInfo:
    name: str
    fields: Optional[Tuple[FieldInfo, ...]] = None

    def __post_init__(self) -> None:
        if self.fields is not None:
            object.__setattr__(self, "fields", tuple(self.fields))

    @property
    def is_unit(self) -> bool:
        return self.fields is None


@dataclass(frozen=True)
class RecordKind:
    fields: Tuple[FieldInfo, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _tuple(self.fields))


@dataclass(frozen=True)
class UnionKind:
    variants: Tuple[VariantInfo, ...] = ()
    untagged: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "variants", _tuple(self.variants))


@dataclass(frozen=True)
class TypeInfo:
    name: str
    kind: Union[RecordKind, UnionKind]
    span: Optional[Tuple[int, int]] = None

    def __post_init__(self) -> None:
        if self.span is not None:
            object.__setattr__(self, "span", (int(self.span[0]), int(self.span[1])))

    @property
    def is_record(self) -> bool:
        return isinstance(self.kind, RecordKind)

    @property
    def is_union(self) -> bool:
        return isinstance(self.kind, UnionKind)

    @property
    def is_untagged_union(self) -> bool:
        return isinstance(self.kind, UnionKind) and self.kind.untagged


# -------------------------
# Evolution results
# -------------------------

def _fields_dict(fields: Iterable[FieldShape]) -> List[Dict[str, Any]]:
    return [f.to_dict() for f in fields]


@dataclass(frozen=True)
class Variant:
    name: str
    fields: Tuple[FieldShape, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _tuple(self.fields))

    def get(self, name: str) -> Optional[FieldShape]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "fields": _fields_dict(self.fields)}


@dataclass(frozen=True)
class SimpleRecord:
    name: str
    fields: Tuple[FieldShape, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _tuple(self.fields))

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": "record", "name": self.name, "fields": _fields_dict(self.fields)}


@dataclass(frozen=True)
class TaggedUnion:
    name: str
    common_fields: Tuple[FieldShape, ...] = ()
    variants: Tuple[Variant, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "common_fields", _tuple(self.common_fields))
        object.__setattr__(self, "variants", _tuple(self.variants))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "union",
            "name": self.name,
            "common_fields": _fields_dict(self.common_fields),
            "variants": [v.to_dict() for v in self.variants],
        }


@dataclass(frozen=True)
class RecordWithExtendedUnion:
    record_name: str
    record_fields: Tuple[FieldShape, ...] = ()
    union_name: str = ""
    new_union_variants: Tuple[Variant, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "record_fields", _tuple(self.record_fields))
        object.__setattr__(self, "new_union_variants", _tuple(self.new_union_variants))

    @property
    def name(self) -> str:
        return self.record_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "record_with_extended_union",
            "record_name": self.record_name,
            "record_fields": _fields_dict(self.record_fields),
            "union_name": self.union_name,
            "new_union_variants": [v.to_dict() for v in self.new_union_variants],
        }


EvolutionResult = Union[SimpleRecord, TaggedUnion, RecordWithExtendedUnion]
