"""A small integration layer for hosts that evolve types programmatically.

It wires the declaration loader, the evolution orchestrator, the generator and
the source surgery into one object that holds a declaration table.

Typical usage:

    from typeshape.engine import EvolutionEngine

    eng = EvolutionEngine()
    eng.load_path("types/declarations.json")
    outcome = eng.evolve_declarations(sample, "User")
    print(eng.render(outcome.declarations, header=True))

"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from typeshape.tools.declarations import declaration_to_dict, load_declarations
from typeshape.tools.events import NULL_SINK, EventSink
from typeshape.tools.evolution import ApiEvolution
from typeshape.tools.generator import UnionWorkspace
from typeshape.tools.model import EvolutionResult, TypeInfo
from typeshape.tools.optimizer import DEFAULT_THRESHOLDS, Thresholds
from typeshape.tools.render import render_declarations
from typeshape.tools.schema_merge import MergeStrategy, merge_sample
from typeshape.tools.surgery import splice_declarations


@dataclass(frozen=True)
class EvolutionOutcome:
    result: EvolutionResult
    declarations: List[TypeInfo]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result.to_dict(),
            "declarations": [declaration_to_dict(d) for d in self.declarations],
        }


class EvolutionEngine:
    def __init__(
        self,
        declarations: Optional[Mapping[str, TypeInfo]] = None,
        *,
        thresholds: Optional[Thresholds] = None,
        events: Optional[EventSink] = None,
    ):
        self.declarations: Dict[str, TypeInfo] = dict(declarations or {})
        self.thresholds = thresholds or DEFAULT_THRESHOLDS
        self.events = events or NULL_SINK

    def load_path(self, path: Union[str, Path]) -> Dict[str, TypeInfo]:
        self.declarations = load_declarations(path)
        return self.declarations

    def evolve(self, sample: Any, target_name: str) -> EvolutionResult:
        return ApiEvolution(self.declarations, thresholds=self.thresholds, events=self.events).evolve(sample, target_name)

    def generate(self, result: EvolutionResult) -> List[TypeInfo]:
        # A fresh workspace per call: amended unions never leak into self.declarations.
        return UnionWorkspace(self.declarations).apply(result)

    def evolve_declarations(self, sample: Any, target_name: str) -> EvolutionOutcome:
        result = self.evolve(sample, target_name)
        return EvolutionOutcome(result, self.generate(result))

    def merge(
        self,
        sample: Any,
        root_name: str,
        strategy: Union[str, MergeStrategy] = MergeStrategy.OPTIONAL,
    ) -> List[TypeInfo]:
        return merge_sample(sample, root_name, self.declarations, strategy, events=self.events)

    def render(self, decls: List[TypeInfo], *, header: bool = False) -> str:
        return render_declarations(decls, header=header)

    def splice(self, source: str, decls: List[TypeInfo]) -> str:
        return splice_declarations(source, decls, self.declarations)

    def evolve_source(self, source: str, sample: Any, target_name: str) -> str:
        return self.splice(source, self.evolve_declarations(sample, target_name).declarations)
