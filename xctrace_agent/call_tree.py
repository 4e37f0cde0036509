"""Weighted call graph reconstruction from CPU backtrace samples."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from xctrace_agent.extractors import extract_frames, extract_weight, is_unsymbolicated


logger = logging.getLogger(__name__)


@dataclass
class CallEdge:
    module: str
    weight: float = 0.0


@dataclass
class FunctionNode:
    name: str
    module: str
    self_weight: float = 0.0
    total_weight: float = 0.0
    callers: dict[str, CallEdge] = field(default_factory=dict)
    callees: dict[str, CallEdge] = field(default_factory=dict)


@dataclass
class CallGraph:
    functions: dict[str, FunctionNode]
    total_weight: float


def _add_edge(edges: dict[str, CallEdge], name: str, module: str, weight: float) -> None:
    edge = edges.get(name)
    if edge is None:
        edges[name] = CallEdge(module=module, weight=weight)
    else:
        edge.weight += weight


def build_call_graph(rows: Iterable[dict]) -> CallGraph | None:
    """
    Aggregate per-sample backtraces into a call graph.

    Frames are leaf first. Unsymbolicated frames are dropped before edges are
    drawn, so the surrounding symbolicated frames link to each other. A
    function or edge counts at most once per sample. Returns None when no
    function survives.
    """
    functions: dict[str, FunctionNode] = {}
    total_weight = 0.0
    samples = 0

    for row in rows:
        frames = extract_frames(row)
        if not frames:
            continue

        weight = extract_weight(row) or 1.0
        total_weight += weight
        samples += 1

        stack = [frame for frame in frames if not is_unsymbolicated(frame[0])]
        seen_functions: set[str] = set()
        seen_callers: set[tuple[str, str]] = set()
        seen_callees: set[tuple[str, str]] = set()

        for index, (name, module) in enumerate(stack):
            node = functions.get(name)
            if node is None:
                node = FunctionNode(name=name, module=module)
                functions[name] = node

            if name not in seen_functions:
                node.total_weight += weight
                seen_functions.add(name)
            if index == 0:
                node.self_weight += weight

            if index + 1 < len(stack):
                caller_name, caller_module = stack[index + 1]
                if (name, caller_name) not in seen_callers:
                    _add_edge(node.callers, caller_name, caller_module, weight)
                    seen_callers.add((name, caller_name))

            if index > 0:
                callee_name, callee_module = stack[index - 1]
                if (name, callee_name) not in seen_callees:
                    _add_edge(node.callees, callee_name, callee_module, weight)
                    seen_callees.add((name, callee_name))

    if not functions:
        logger.debug("No symbolicated frames in %d samples; call graph unavailable", samples)
        return None

    logger.debug("Built call graph: %d functions from %d samples", len(functions), samples)
    return CallGraph(functions=functions, total_weight=total_weight)
