"""In-memory store for parsed traces, enabling multi-turn investigation."""

from __future__ import annotations

import enum
import itertools
import logging
import random
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from xctrace_agent.call_tree import CallGraph, build_call_graph


logger = logging.getLogger(__name__)

MAX_TRACES = 20
ID_PREFIX = "t_"
ID_LENGTH = 6


class TemplateKind(str, enum.Enum):
    CPU = "cpu"
    HANGS = "hangs"
    NETWORK = "network"
    LEAKS = "leaks"
    ALLOCATIONS = "allocations"
    SWIFTUI = "swiftui"
    ENERGY = "energy"
    LAUNCH = "launch"
    GENERIC = "generic"


_KIND_TOKENS = [
    (TemplateKind.CPU, ("time", "cpu", "profiler")),
    (TemplateKind.HANGS, ("hitch", "hang", "animation")),
    (TemplateKind.NETWORK, ("network",)),
    (TemplateKind.LEAKS, ("leak",)),
    (TemplateKind.ALLOCATIONS, ("alloc",)),
    (TemplateKind.SWIFTUI, ("swiftui",)),
    (TemplateKind.ENERGY, ("energy",)),
    (TemplateKind.LAUNCH, ("launch",)),
]


def classify_template(template: str | None) -> TemplateKind:
    """Map an Instruments template name onto a profiling domain."""
    lower = (template or "").lower()
    for kind, tokens in _KIND_TOKENS:
        if any(token in lower for token in tokens):
            return kind
    return TemplateKind.GENERIC


class CallGraphState(enum.Enum):
    UNBUILT = "unbuilt"
    BUILT = "built"
    ABSENT = "absent"


@dataclass
class StoredTrace:
    trace_id: str
    source_path: str
    template: str
    kind: TemplateKind
    raw_table: list[dict]
    stored_at: int
    stored_wall: float
    structured_result: dict | None = None
    narrative: str | None = None
    call_graph_state: CallGraphState = CallGraphState.UNBUILT
    _call_graph: CallGraph | None = field(default=None, repr=False)


@dataclass
class TraceSummary:
    trace_id: str
    source_path: str
    template: str
    kind: TemplateKind
    stored_at: str
    can_drill_down: bool = True
    narrative_preview: str | None = None

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "source_path": self.source_path,
            "template": self.template,
            "kind": self.kind.value,
            "stored_at": self.stored_at,
            "can_drill_down": self.can_drill_down,
            "narrative_preview": self.narrative_preview,
        }


def generate_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return ID_PREFIX + "".join(random.choices(alphabet, k=ID_LENGTH))


def narrative_preview(narrative: str | None) -> str | None:
    """Pick the first finding line, else the first non-heading line."""
    if not narrative:
        return None
    lines = [line.strip() for line in narrative.splitlines()]
    for line in lines:
        if line.startswith("#1"):
            return line
    for line in lines:
        if not line or line.startswith("===") or line.startswith("# "):
            continue
        return line
    return None


class TraceStore:
    """
    Bounded registry of stored traces.

    At capacity the oldest insertion is evicted before the new trace is
    admitted. Insertion, eviction, lookup and first-time call graph
    construction share one lock; built graphs are immutable.
    """

    def __init__(self, capacity: int = MAX_TRACES):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._traces: dict[str, StoredTrace] = {}
        self._lock = threading.RLock()
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._traces)

    def __contains__(self, trace_id: object) -> bool:
        return trace_id in self._traces

    def store(
        self,
        source_path: str,
        template: str,
        raw_table: list[dict],
        structured_result: dict | None = None,
        narrative: str | None = None
    ) -> str:
        with self._lock:
            while len(self._traces) >= self.capacity:
                oldest = min(self._traces.values(), key=lambda t: t.stored_at)
                del self._traces[oldest.trace_id]
                logger.debug("Evicted trace %s (%s)", oldest.trace_id, oldest.template)

            trace_id = generate_id()
            self._traces[trace_id] = StoredTrace(
                trace_id=trace_id,
                source_path=source_path,
                template=template,
                kind=classify_template(template),
                raw_table=list(raw_table),
                stored_at=next(self._counter),
                stored_wall=time.time(),
                structured_result=structured_result,
                narrative=narrative
            )
        logger.info("Stored trace %s: %s (%d rows)", trace_id, template, len(raw_table))
        return trace_id

    def get(self, trace_id: str) -> StoredTrace | None:
        with self._lock:
            return self._traces.get(trace_id)

    def list(self) -> list[TraceSummary]:
        with self._lock:
            traces = sorted(self._traces.values(), key=lambda t: t.stored_at, reverse=True)
        return [
            TraceSummary(
                trace_id=t.trace_id,
                source_path=t.source_path,
                template=t.template,
                kind=t.kind,
                stored_at=datetime.fromtimestamp(t.stored_wall, tz=timezone.utc).isoformat(),
                narrative_preview=narrative_preview(t.narrative)
            )
            for t in traces
        ]

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()

    def call_graph(self, trace: StoredTrace) -> CallGraph | None:
        """Return the trace's call graph, building it on first request."""
        if trace.call_graph_state is CallGraphState.BUILT:
            return trace._call_graph
        if trace.call_graph_state is CallGraphState.ABSENT:
            return None

        with self._lock:
            if trace.call_graph_state is CallGraphState.UNBUILT:
                graph = None
                if trace.kind is TemplateKind.CPU:
                    graph = build_call_graph(trace.raw_table)
                trace._call_graph = graph
                trace.call_graph_state = (
                    CallGraphState.BUILT if graph is not None else CallGraphState.ABSENT
                )
            return trace._call_graph
