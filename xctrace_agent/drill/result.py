"""Drill-down result value."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any


MAX_ROWS = 20


@dataclass
class DrillDownResult:
    """
    Answer to one drill-down query.

    CPU queries fill the function fields (or only ``hint`` and
    ``suggestions`` when nothing matched); every other query fills the row
    fields. The two groups are never populated together.
    """

    template: str
    target: str
    # CPU call graph
    function: str | None = None
    module: str | None = None
    self_weight: float | None = None
    total_weight: float | None = None
    self_pct: float | None = None
    total_pct: float | None = None
    callers: list[dict] | None = None
    callees: list[dict] | None = None
    heaviest_path: list[str] | None = None
    suggestions: list[dict] | None = None
    # Rows
    total_rows: int | None = None
    matching_rows: int | None = None
    rows: list[dict] | None = None
    hint: str | None = None

    @property
    def found(self) -> bool:
        if self.rows is not None:
            return bool(self.matching_rows)
        return self.function is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


def rows_result(
    template: str,
    target: str,
    total_rows: int,
    matched: list[dict],
    empty_hint: str | None = None,
    limit: int = MAX_ROWS
) -> DrillDownResult:
    """Build a row result, capping the rows and explaining empty or truncated output."""
    hint = None
    if not matched:
        hint = empty_hint
    elif len(matched) > limit:
        hint = f"Showing first {limit} of {len(matched)} matches. Refine your target."
    return DrillDownResult(
        template=template,
        target=target,
        total_rows=total_rows,
        matching_rows=len(matched),
        rows=list(matched[:limit]),
        hint=hint
    )
