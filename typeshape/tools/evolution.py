"""Evolution orchestrator: one JSON sample + one target name -> a decision.

Steps for `evolve(sample, target_name)`:
1. the sample becomes a shape (objects: one required field per key; anything
   else: a single `value` field)
2. if the target is declared:
   - record: its expanded shapes join the sample shape
   - union: each variant is scored against the sample; the best one is merged
     with the sample, runners-up scoring at least half the best join as-is
3. otherwise the best-scoring declaration (ties: declaration order) is used the
   same way; with no match the sample shape stands alone
4. the optimizer decides, with the target name as output name

CLI:
  typeshape evolve sample.json --name User [--declarations d.json]
                   [--source lib.rs [--in-place | --out f]] [--json] [--verbose]

Exit codes:
  0 OK
  2 invalid declarations / evolution error
  3 IO/JSON parse error
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from typeshape.tools.declarations import DeclarationError, declaration_to_dict, load_declarations, load_json
from typeshape.tools.events import NULL_SINK, EventSink, LoggingSink
from typeshape.tools.expander import ShapeExpander
from typeshape.tools.generator import UnionWorkspace
from typeshape.tools.model import (
    EvolutionError,
    EvolutionResult,
    FieldShape,
    Shape,
    TypeInfo,
    UnionKind,
    VariantInfo,
)
from typeshape.tools.optimizer import DEFAULT_THRESHOLDS, ShapeOptimizer, Thresholds
from typeshape.tools.render import render_declarations
from typeshape.tools.scoring import declaration_score, variant_score
from typeshape.tools.surgery import SurgeryError, splice_declarations
from typeshape.tools.types import Named, OptionT, Prim, SeqT, Type, UNIT, optional_of

logger = logging.getLogger(__name__)

JSON_VALUE = Named("serde_json::Value")
JSON_MAP = Named("serde_json::Map", (Prim("String"), JSON_VALUE))

I64_MIN, I64_MAX = -(2 ** 63), 2 ** 63 - 1
U64_MAX = 2 ** 64 - 1


# -------------------------
# Sample shapes
# -------------------------

def infer_json_type(value: Any) -> Type:
    if value is None:
        return OptionT(UNIT)
    if isinstance(value, bool):
        return Prim("bool")
    if isinstance(value, int):
        if I64_MIN <= value <= I64_MAX:
            return Prim("i64")
        if 0 <= value <= U64_MAX:
            return Prim("u64")
        return Prim("f64")
    if isinstance(value, float):
        return Prim("f64")
    if isinstance(value, str):
        return Prim("String")
    if isinstance(value, list):
        if not value:
            return SeqT(JSON_VALUE)
        return SeqT(infer_json_type(value[0]))
    if isinstance(value, dict):
        return JSON_MAP
    raise TypeError(f"Not a JSON value: {type(value).__name__}")


def sample_shape(value: Any) -> Shape:
    if isinstance(value, dict):
        return Shape(tuple(FieldShape(str(k), infer_json_type(v), True) for k, v in value.items()))
    return Shape((FieldShape("value", infer_json_type(value), True),))


def merge_with_sample(sample: Shape, other: Shape) -> Shape:
    """Sample fields win; fields only `other` has become optional."""
    fields = list(sample.fields)
    present = {f.name for f in fields}
    for f in other.fields:
        if f.name in present:
            continue
        present.add(f.name)
        fields.append(FieldShape(f.name, optional_of(f.type), False))
    return Shape(tuple(fields))


# -------------------------
# Orchestrator
# -------------------------

class ApiEvolution:
    def __init__(
        self,
        declarations: Optional[Mapping[str, TypeInfo]] = None,
        *,
        thresholds: Optional[Thresholds] = None,
        events: EventSink = NULL_SINK,
    ):
        self.declarations: Mapping[str, TypeInfo] = declarations or {}
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.events = events
        self.expander = ShapeExpander(self.declarations, events=events)
        self.optimizer = ShapeOptimizer(self.declarations, thresholds=self.thresholds, events=events)

    def evolve(self, sample: Any, target_name: str) -> EvolutionResult:
        shapes = self.collect_shapes(sample, target_name)
        return self.optimizer.optimize(shapes, target_name)

    def collect_shapes(self, sample: Any, target_name: str) -> List[Shape]:
        observed = sample_shape(sample)
        self.events.emit("evolve.sample", target=target_name, shape=observed.to_dict())

        base = self.declarations.get(target_name)
        if base is None:
            base = self.best_match(observed)
            self.events.emit("evolve.best_match", target=target_name, match=base.name if base else None)
        else:
            self.events.emit("evolve.target", target=target_name, decl_kind="union" if base.is_union else "record")

        shapes = [observed]
        if base is None:
            return shapes
        if isinstance(base.kind, UnionKind):
            shapes.extend(self.union_shapes(observed, base.kind.variants))
        else:
            shapes.extend(self.expander.expand(base))
        self.events.emit("evolve.shapes", count=len(shapes))
        return shapes

    def best_match(self, observed: Shape) -> Optional[TypeInfo]:
        best: Optional[TypeInfo] = None
        best_score = 0
        for decl in self.declarations.values():
            score = declaration_score(decl, observed)
            if score > best_score:
                best, best_score = decl, score
        return best

    def union_shapes(self, observed: Shape, variants: Sequence[VariantInfo]) -> List[Shape]:
        scored = [(v, variant_score(observed, v)) for v in variants]
        scored.sort(key=lambda vs: -vs[1])
        self.events.emit("evolve.variant_scores", scores={v.name: s for v, s in scored})
        if not scored:
            return []

        out: List[Shape] = []
        top, top_score = scored[0]
        if top_score > 0 and top.fields is not None:
            for shape in self.expander.expand_fields(top.fields):
                out.append(merge_with_sample(observed, shape))

        floor = math.floor(top_score * self.thresholds.retention_ratio)
        for variant, score in scored[1:]:
            if score > 0 and score >= floor and variant.fields is not None:
                self.events.emit("evolve.retain_variant", variant=variant.name, score=score)
                out.extend(self.expander.expand_fields(variant.fields))
        return out


def evolve(
    declarations: Optional[Mapping[str, TypeInfo]],
    sample: Any,
    target_name: str,
    *,
    thresholds: Optional[Thresholds] = None,
    events: EventSink = NULL_SINK,
) -> EvolutionResult:
    return ApiEvolution(declarations, thresholds=thresholds, events=events).evolve(sample, target_name)


# -------------------------
# CLI
# -------------------------

def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="typeshape evolve")
    ap.add_argument("sample", help="Path to a JSON sample")
    ap.add_argument("--name", required=True, help="Target type name")
    ap.add_argument("--declarations", help="Declaration table JSON describing existing types")
    ap.add_argument("--source", help="Rust source to splice the evolved declarations into")
    ap.add_argument("--in-place", action="store_true", help="Overwrite --source")
    ap.add_argument("--out", help="Write the result to this file")
    ap.add_argument("--json", action="store_true", help="Print the decision and declarations as JSON")
    ap.add_argument("--verbose", action="store_true", help="Log every engine decision to stderr")
    args = ap.parse_args(argv)

    if args.in_place and not args.source:
        print("--in-place requires --source", file=sys.stderr)
        return 2

    _configure_logging(args.verbose)
    events: EventSink = LoggingSink() if args.verbose else NULL_SINK

    try:
        sample = load_json(Path(args.sample))
        table: Dict[str, TypeInfo] = load_declarations(args.declarations) if args.declarations else {}
        source = Path(args.source).read_text(encoding="utf-8") if args.source else None
    except (OSError, json.JSONDecodeError) as e:
        print(f"Failed to read/parse input: {e}", file=sys.stderr)
        return 3
    except DeclarationError as e:
        for issue in e.issues:
            print(f"{issue['pointer']}: {issue['message']}", file=sys.stderr)
        return 2

    try:
        result = evolve(table, sample, args.name, events=events)
        decls = UnionWorkspace(table).apply(result)
        if args.json:
            report = {"result": result.to_dict(), "declarations": [declaration_to_dict(d) for d in decls]}
            text = json.dumps(report, indent=2, ensure_ascii=False) + "\n"
        elif source is not None:
            text = splice_declarations(source, decls, table)
        else:
            text = render_declarations(decls, header=True)
    except (EvolutionError, SurgeryError) as e:
        print(f"Evolution failed: {e}", file=sys.stderr)
        return 2
    logger.debug("evolved %s into %d declaration(s)", args.name, len(decls))

    if args.in_place:
        Path(args.source).write_text(text, encoding="utf-8")
        return 0
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        return 0
    sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
