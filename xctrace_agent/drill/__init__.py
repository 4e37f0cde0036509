"""Drill-down resolvers over stored traces."""

from xctrace_agent.drill.cpu import drill_down_cpu, find_function, heaviest_path
from xctrace_agent.drill.dispatch import drill_down
from xctrace_agent.drill.generic import drill_down_generic
from xctrace_agent.drill.result import DrillDownResult

__all__ = [
    "DrillDownResult",
    "drill_down",
    "drill_down_cpu",
    "drill_down_generic",
    "find_function",
    "heaviest_path"
]
