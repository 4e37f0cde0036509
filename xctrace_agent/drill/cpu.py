"""Drill-down over a CPU call graph."""

from __future__ import annotations

from xctrace_agent.call_tree import CallEdge, CallGraph, FunctionNode
from xctrace_agent.drill.result import DrillDownResult


HOTTEST_TOKENS = ("hottest", "heaviest")
TOP_EDGES = 10
TOP_SUGGESTIONS = 15
MAX_PATH_DEPTH = 10


def pct(value: float, total: float) -> float:
    return round(value / total * 100, 1) if total > 0 else 0.0


def round2(value: float) -> float:
    return round(value, 2)


def find_function(graph: CallGraph, target: str) -> FunctionNode | None:
    """
    Resolve a target to a function: reserved tokens, then exact name, then the
    shortest name containing the target (case-insensitive, first wins ties).
    """
    if target in HOTTEST_TOKENS:
        if not graph.functions:
            return None
        return max(graph.functions.values(), key=lambda node: node.self_weight)

    node = graph.functions.get(target)
    if node is not None:
        return node

    lower = target.lower()
    best = None
    for name, candidate in graph.functions.items():
        if lower in name.lower() and (best is None or len(name) < len(best.name)):
            best = candidate
    return best


def _top_edges(edges: dict[str, CallEdge], denominator: float) -> list[dict]:
    ranked = sorted(edges.items(), key=lambda item: item[1].weight, reverse=True)
    return [
        {
            "function": name,
            "module": edge.module,
            "weight": round2(edge.weight),
            "pct": pct(edge.weight, denominator)
        }
        for name, edge in ranked[:TOP_EDGES]
    ]


def heaviest_path(graph: CallGraph, start: FunctionNode, max_depth: int = MAX_PATH_DEPTH) -> list[str]:
    """Greedy walk through the heaviest unvisited callee, at most max_depth hops."""
    path = [start.name]
    visited = {start.name}
    current = start
    for _ in range(max_depth):
        best_name = None
        best_weight = 0.0
        for name, edge in current.callees.items():
            if name not in visited and edge.weight > best_weight:
                best_name = name
                best_weight = edge.weight
        if best_name is None:
            break
        path.append(best_name)
        visited.add(best_name)
        current = graph.functions.get(best_name)
        if current is None:
            break
    return path


def top_functions(graph: CallGraph, limit: int = TOP_SUGGESTIONS) -> list[dict]:
    ranked = sorted(graph.functions.values(), key=lambda node: node.self_weight, reverse=True)
    return [
        {
            "function": node.name,
            "module": node.module,
            "self_pct": pct(node.self_weight, graph.total_weight)
        }
        for node in ranked[:limit]
    ]


def drill_down_cpu(template: str, graph: CallGraph, target: str) -> DrillDownResult:
    node = find_function(graph, target)
    if node is None:
        suggestions = top_functions(graph)
        listing = "\n".join(
            f"{item['function']} ({item['module']}, {item['self_pct']}% self)"
            for item in suggestions
        )
        return DrillDownResult(
            template=template,
            target=target,
            suggestions=suggestions,
            hint=f'Function "{target}" not found. Top functions by self time:\n{listing}'
        )

    return DrillDownResult(
        template=template,
        target=node.name,
        function=node.name,
        module=node.module,
        self_weight=round2(node.self_weight),
        total_weight=round2(node.total_weight),
        self_pct=pct(node.self_weight, graph.total_weight),
        total_pct=pct(node.total_weight, graph.total_weight),
        callers=_top_edges(node.callers, node.total_weight),
        callees=_top_edges(node.callees, node.total_weight),
        heaviest_path=heaviest_path(graph, node)
    )
