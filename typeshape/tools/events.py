"""Structured trace events for the evolution engine.

Every component takes an optional `events` sink and reports what it decided
through `emit(kind, **detail)`. Sinks only observe; they never change a
decision.

Sinks:
- NullSink        drop everything (default)
- CollectingSink  keep Event records in memory (tests, tooling)
- LoggingSink     forward to a stdlib logger at DEBUG as `kind {json}`
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol


class EventSink(Protocol):
    def emit(self, kind: str, **detail: Any) -> None:
        ...


@dataclass(frozen=True)
class Event:
    kind: str
    detail: Dict[str, Any]


class NullSink:
    def emit(self, kind: str, **detail: Any) -> None:
        return None


NULL_SINK = NullSink()


@dataclass
class CollectingSink:
    events: List[Event] = field(default_factory=list)

    def emit(self, kind: str, **detail: Any) -> None:
        self.events.append(Event(kind=kind, detail=dict(detail)))

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> List[Event]:
        return [e for e in self.events if e.kind == kind]


@dataclass
class LoggingSink:
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("typeshape.events"))
    level: int = logging.DEBUG

    def emit(self, kind: str, **detail: Any) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        payload = json.dumps(detail, default=str, sort_keys=True, ensure_ascii=False)
        self.logger.log(self.level, "%s %s", kind, payload)
