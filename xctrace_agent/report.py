"""Plain-text rendering: drill-down results, trace listings, CPU narratives."""

from __future__ import annotations

import re

from xctrace_agent.call_tree import CallGraph
from xctrace_agent.drill.cpu import pct
from xctrace_agent.drill.result import DrillDownResult
from xctrace_agent.store import TraceSummary


MAX_NAME_LENGTH = 80


def shorten_name(name: str) -> str:
    """
    Shorten a symbol for display.

    "specialized implicit closure #1 in closure #1 in Attribute.init<A>(_:)"
    becomes "Attribute.init(_:)".
    """
    shortened = name
    while "<" in shortened:
        stripped = re.sub(r"<[^<>]*>", "", shortened)
        if stripped == shortened:
            break
        shortened = stripped

    parts = shortened.split("::")
    if len(parts) > 2:
        shortened = "::".join(parts[-2:])

    shortened = re.sub(r"^specialized\s+", "", shortened)
    shortened = re.sub(r"(implicit )?closure #\d+ in ", "", shortened)
    shortened = shortened.strip()

    if len(shortened) > MAX_NAME_LENGTH:
        shortened = shortened[:MAX_NAME_LENGTH - 3] + "..."
    return shortened or name[:MAX_NAME_LENGTH]


def classify_module(module: str, function: str) -> tuple[str, str]:
    """Guess a work category and a follow-up hint from module and symbol tokens."""
    m = module.lower()
    f = function.lower()
    if "sqlite" in m or "coredata" in m or "sql" in f or "fetch" in f:
        return "Database I/O", "Move to background queue or batch operations."
    if "urlsession" in m or "network" in m or "cfnetwork" in m or "urlsession" in f:
        return "Networking", "Use async/await or move to background thread."
    if "uikit" in m or "swiftui" in m or "layout" in f or "render" in f:
        return "UI/Layout", "Simplify view hierarchy or cache layout calculations."
    if "foundation" in m and any(token in f for token in ("json", "decode", "encode")):
        return "Serialization", "Use streaming parser or move to background thread."
    if any(token in f for token in ("dispatch_semaphore", "pthread_mutex", "os_unfair_lock")):
        return "Lock contention", "Reduce lock scope or use actor isolation."
    if "imageio" in m or "cgimage" in m or "image" in f:
        return "Image processing", "Downscale before display, use async thumbnailing."
    return "User code", "Profile further to identify optimization opportunity."


def caller_chain(graph: CallGraph, name: str, max_depth: int = 4) -> list[str]:
    """Heaviest unvisited callers above ``name``, root-most first."""
    chain = [name]
    visited = {name}
    current = graph.functions.get(name)
    for _ in range(max_depth):
        if current is None:
            break
        best_name = None
        best_weight = 0.0
        for caller, edge in current.callers.items():
            if caller not in visited and edge.weight > best_weight:
                best_name = caller
                best_weight = edge.weight
        if best_name is None:
            break
        chain.insert(0, best_name)
        visited.add(best_name)
        current = graph.functions.get(best_name)
    return chain


def _severity(self_pct: float) -> str:
    if self_pct >= 30:
        return "CRITICAL"
    if self_pct >= 10:
        return "WARNING"
    return "INFO"


def investigate_cpu(graph: CallGraph, trace_id: str | None = None, top_n: int = 3) -> str:
    hotspots = sorted(
        (node for node in graph.functions.values() if node.self_weight > 0),
        key=lambda node: node.self_weight,
        reverse=True
    )[:top_n]
    if not hotspots:
        return "No significant hotspots detected."

    lines = []
    for index, node in enumerate(hotspots, start=1):
        self_pct = pct(node.self_weight, graph.total_weight)
        category, hint = classify_module(node.module, node.name)
        lines.append(
            f"#{index} [{_severity(self_pct)}] {node.name} ({node.module}) "
            f"{node.self_weight:.1f}ms self ({self_pct:.1f}%)"
        )
        chain = caller_chain(graph, node.name)
        if len(chain) > 1:
            lines.append(f"   chain: {' > '.join(chain)}")
        lines.append(f"   {category}. {hint}")
        lines.append("")

    if trace_id:
        lines.append("Suggested drill-down:")
        lines.append(f'  drill_down("{trace_id}", "{hotspots[0].name}")')
        lines.append(f'  drill_down("{trace_id}", "hottest")')

    return "\n".join(lines).strip() + "\n"


def _render_edges(lines: list[str], title: str, edges: list[dict] | None) -> None:
    if not edges:
        return
    lines.append("")
    lines.append(title)
    for edge in edges:
        lines.append(
            f"  {shorten_name(edge['function'])} ({edge['module']})  {edge['weight']}ms  {edge['pct']}%"
        )


def render_drill_down(result: DrillDownResult) -> str:
    lines = []
    lines.append(f"=== Drill Down: {result.target} ===  template: {result.template}")
    lines.append("")

    if result.function is not None:
        lines.append(f"Function: {shorten_name(result.function)}  module: {result.module}")
        lines.append(
            f"  self: {result.self_weight}ms ({result.self_pct}%)  "
            f"total: {result.total_weight}ms ({result.total_pct}%)"
        )
        _render_edges(lines, "Callers (who calls this):", result.callers)
        _render_edges(lines, "Callees (what this calls):", result.callees)
        if result.heaviest_path and len(result.heaviest_path) > 1:
            lines.append("")
            lines.append(f"Heaviest path: {' > '.join(result.heaviest_path)}")

    if result.rows is not None:
        lines.append(f"Rows: {result.matching_rows} matching / {result.total_rows} total")
        lines.append("")
        for row in result.rows:
            lines.append("  " + "  ".join(f"{key}: {value}" for key, value in row.items()))

    if result.hint:
        lines.append("")
        lines.append(result.hint)

    return "\n".join(lines).strip() + "\n"


def render_trace_list(summaries: list[TraceSummary]) -> str:
    if not summaries:
        return "No traces stored yet. Load a trace export to start investigating.\n"

    lines = [f"=== Stored Traces ({len(summaries)}) ===", ""]
    for summary in summaries:
        preview = f"  {summary.narrative_preview}" if summary.narrative_preview else ""
        lines.append(f"  {summary.trace_id}  {summary.template}  {summary.stored_at}{preview}")
    lines.append("")
    lines.append("Use drill_down(trace_id, target) to investigate further.")
    return "\n".join(lines) + "\n"
