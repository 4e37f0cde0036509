"""Drill-down handlers over pre-aggregated template results."""

from __future__ import annotations

import re
from typing import Any, Callable

from xctrace_agent.drill.result import DrillDownResult, rows_result
from xctrace_agent.extractors import row_text
from xctrace_agent.store import StoredTrace, TemplateKind


def _items(result: dict | None, key: str) -> list[dict]:
    value = (result or {}).get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _num(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


def _contains(value: Any, needle: str) -> bool:
    return needle in str(value or "").lower()


def drill_down_hangs(trace: StoredTrace, target: str) -> DrillDownResult:
    hangs = _items(trace.structured_result, "hangs")
    lower = target.lower()
    duration_floor = re.search(r"(\d+)\s*ms", lower)

    if lower in ("worst", "critical"):
        filtered = [
            h for h in hangs
            if str(h.get("severity") or "").lower() in ("critical", "warning")
        ]
        if not filtered:
            filtered = hangs[:5]
    elif duration_floor:
        threshold = int(duration_floor.group(1))
        filtered = [h for h in hangs if _num(h.get("duration_ms")) >= threshold]
    elif target.isdigit():
        index = int(target)
        filtered = [hangs[index]] if index < len(hangs) else []
    else:
        filtered = [h for h in hangs if lower in row_text(h)]

    return rows_result(
        trace.template, target, len(hangs), filtered,
        f'No hangs matching "{target}". Try "worst", "critical", or a duration like "500ms+".'
    )


def drill_down_network(trace: StoredTrace, target: str) -> DrillDownResult:
    result = trace.structured_result or {}
    total_requests = int(_num(result.get("total_requests")))
    slowest = _items(result, "slowest_requests")
    failed = _items(result, "failed_requests")
    lower = target.lower()

    if lower in ("errors", "failed"):
        return rows_result(trace.template, target, total_requests, failed, "No failed requests.")

    if lower in ("slow", "slowest"):
        return rows_result(trace.template, target, total_requests, slowest, "No slow requests recorded.")

    domains = _items(result, "domains")
    for domain in domains:
        if _contains(domain.get("domain"), lower):
            return rows_result(trace.template, target, len(domains), [domain])

    matched = [r for r in slowest + failed if lower in row_text(r)]
    return rows_result(
        trace.template, target, total_requests, matched,
        f'No requests matching "{target}". Try a domain name, "errors", or "slow".'
    )


def drill_down_leaks(trace: StoredTrace, target: str) -> DrillDownResult:
    groups = _items(trace.structured_result, "leak_groups")
    lower = target.lower()

    if lower == "largest":
        ranked = sorted(groups, key=lambda g: _num(g.get("total_bytes")), reverse=True)
        return rows_result(trace.template, target, len(groups), ranked[:10], "No leaks recorded.")

    matched = [
        g for g in groups
        if _contains(g.get("object_type"), lower) or _contains(g.get("responsible_library"), lower)
    ]
    return rows_result(
        trace.template, target, len(groups), matched,
        f'No leaks matching "{target}". Try a type name, library name, or "largest".'
    )


def drill_down_allocations(trace: StoredTrace, target: str) -> DrillDownResult:
    categories = _items(trace.structured_result, "categories")
    lower = target.lower()

    if lower == "largest":
        ranked = sorted(categories, key=lambda c: _num(c.get("total_bytes")), reverse=True)
        return rows_result(trace.template, target, len(categories), ranked[:10], "No allocations recorded.")

    if lower == "persistent":
        persistent = [
            c for c in categories
            if _num(c.get("persistent")) / (_num(c.get("count")) or 1) > 0.5
        ]
        return rows_result(
            trace.template, target, len(categories), persistent,
            "No categories with high persistent ratio."
        )

    matched = [c for c in categories if _contains(c.get("category"), lower)]
    return rows_result(
        trace.template, target, len(categories), matched,
        f'No categories matching "{target}". Try a category name, "persistent", or "largest".'
    )


def drill_down_swiftui(trace: StoredTrace, target: str) -> DrillDownResult:
    views = _items(trace.structured_result, "views")
    lower = target.lower()

    if lower in ("excessive", "worst"):
        excessive = _items(trace.structured_result, "excessive_evaluations")
        if excessive:
            return rows_result(trace.template, target, len(views), excessive)
        ranked = sorted(views, key=lambda v: _num(v.get("evaluation_count")), reverse=True)[:10]
        result = rows_result(trace.template, target, len(views), ranked, "No view body evaluations recorded.")
        if ranked:
            result.hint = "No excessive evaluations flagged. Showing top views by eval count."
        return result

    matched = [v for v in views if _contains(v.get("view_name"), lower)]
    return rows_result(
        trace.template, target, len(views), matched,
        f'No views matching "{target}". Try a view name, "excessive", or "worst".'
    )


def drill_down_energy(trace: StoredTrace, target: str) -> DrillDownResult:
    result = trace.structured_result or {}
    components = _items(result, "top_components")
    lower = target.lower()
    context = {
        "thermal_state": result.get("thermal_state"),
        "average_energy_impact": result.get("average_energy_impact"),
        "peak_energy_impact": result.get("peak_energy_impact")
    }

    if lower == "worst":
        worst = [{**c, **context} for c in components[:3]]
        return rows_result(trace.template, target, len(components), worst, "No energy components recorded.")

    if lower == "thermal":
        row = {
            **context,
            "thermal_state": result.get("thermal_state") or "unknown",
            "total_samples": result.get("total_samples"),
        }
        return rows_result(trace.template, target, 1, [row])

    matched = [c for c in components if _contains(c.get("component"), lower)]
    return rows_result(
        trace.template, target, len(components), matched,
        f'No components matching "{target}". Try "cpu", "gpu", "network", "worst", or "thermal".',
        limit=10
    )


def drill_down_launch(trace: StoredTrace, target: str) -> DrillDownResult:
    result = trace.structured_result or {}
    phases = _items(result, "phases")
    lower = target.lower()

    if lower == "slowest":
        # Phases arrive sorted by duration, longest first.
        slowest = [
            {**p, "total_launch_ms": result.get("total_launch_ms"), "launch_type": result.get("launch_type")}
            for p in phases[:3]
        ]
        return rows_result(trace.template, target, len(phases), slowest, "No launch phases recorded.")

    matched = [p for p in phases if _contains(p.get("name"), lower)]
    return rows_result(
        trace.template, target, len(phases), matched,
        f'No phases matching "{target}". Try a phase name or "slowest".'
    )


TEMPLATE_HANDLERS: dict[TemplateKind, Callable[[StoredTrace, str], DrillDownResult]] = {
    TemplateKind.HANGS: drill_down_hangs,
    TemplateKind.NETWORK: drill_down_network,
    TemplateKind.LEAKS: drill_down_leaks,
    TemplateKind.ALLOCATIONS: drill_down_allocations,
    TemplateKind.SWIFTUI: drill_down_swiftui,
    TemplateKind.ENERGY: drill_down_energy,
    TemplateKind.LAUNCH: drill_down_launch,
}
