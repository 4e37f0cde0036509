"""Route a drill-down query to the resolver for the trace's domain."""

from __future__ import annotations

import logging

from xctrace_agent.drill.cpu import drill_down_cpu
from xctrace_agent.drill.generic import drill_down_generic
from xctrace_agent.drill.result import DrillDownResult
from xctrace_agent.drill.templates import TEMPLATE_HANDLERS
from xctrace_agent.store import TraceStore


logger = logging.getLogger(__name__)


def drill_down(store: TraceStore, trace_id: str, target: str) -> DrillDownResult | None:
    """
    Answer a drill-down query against a stored trace.

    Returns None when the trace id is unknown. CPU traces with a buildable
    call graph go to the call graph resolver; other traces use their template
    handler when a structured result was stored, else raw row search.
    """
    trace = store.get(trace_id)
    if trace is None:
        logger.debug("Drill-down on unknown trace %s", trace_id)
        return None

    graph = store.call_graph(trace)
    if graph is not None:
        return drill_down_cpu(trace.template, graph, target)

    handler = TEMPLATE_HANDLERS.get(trace.kind)
    if handler is not None and trace.structured_result is not None:
        return handler(trace, target)

    return drill_down_generic(trace, target)
