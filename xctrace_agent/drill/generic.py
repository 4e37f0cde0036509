"""Substring search over raw export rows."""

from __future__ import annotations

from xctrace_agent.drill.result import DrillDownResult, rows_result
from xctrace_agent.extractors import format_row, row_text
from xctrace_agent.store import StoredTrace


def drill_down_generic(trace: StoredTrace, target: str) -> DrillDownResult:
    lower = target.lower()
    matches = [row for row in trace.raw_table if lower in row_text(row)]
    result = rows_result(
        trace.template, target, len(trace.raw_table), matches,
        f'No rows matching "{target}". Try a different search term.'
    )
    result.rows = [format_row(row) for row in result.rows or []]
    return result
