"""CLI entry point for the xctrace drill-down agent."""

import json
import logging
import typer
from typing import List, Optional
from pathlib import Path
from rich.console import Console
from rich.logging import RichHandler
from xctrace_agent.drill import drill_down
from xctrace_agent.extractors import TraceExportError, load_rows
from xctrace_agent.report import investigate_cpu, render_drill_down, render_trace_list
from xctrace_agent.store import MAX_TRACES, TraceStore

app = typer.Typer(
    help="xctrace agent - Navigate Instruments trace exports by drilling down",
    no_args_is_help=True
)
console = Console()
logger = logging.getLogger("xctrace_agent")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    capacity: int = typer.Option(
        MAX_TRACES, "--capacity", envvar="XCTRACE_AGENT_CAPACITY", help="Maximum traces kept in the session store"
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="XCTRACE_AGENT_LOG_LEVEL", help="Logging level (DEBUG, INFO, WARNING, ...)"
    ),
):
    """xctrace agent - Navigate Instruments trace exports by drilling down."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )
    ctx.obj = {"capacity": capacity}


def _check_file(path: Path) -> None:
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(code=1)
    if not path.is_file():
        console.print(f"[red]Error:[/red] Path is not a file: {path}")
        raise typer.Exit(code=1)


def _print(text: str) -> None:
    console.print(text, markup=False, highlight=False, soft_wrap=True)


def _load_trace(store: TraceStore, table: Path, template: str, structured: Optional[Path]) -> str:
    _check_file(table)
    rows = load_rows(table.read_text(encoding="utf-8"))

    structured_result = None
    if structured is not None:
        _check_file(structured)
        with open(structured, "r") as f:
            structured_result = json.load(f)

    trace_id = store.store(
        source_path=str(table),
        template=template,
        raw_table=rows,
        structured_result=structured_result
    )
    trace = store.get(trace_id)
    graph = store.call_graph(trace)
    if graph is not None:
        trace.narrative = investigate_cpu(graph, trace_id)

    console.print(f"[green]✓[/green] Stored [bold]{trace_id}[/bold]: {template} ({len(rows)} rows)")
    return trace_id


@app.command()
def drill(
    ctx: typer.Context,
    table: Path = typer.Option(..., "--table", help="Path to xctrace XML table export"),
    template: str = typer.Option(..., "--template", help="Instruments template name, e.g. 'Time Profiler'"),
    target: List[str] = typer.Option(..., "--target", help="Function name, reserved token or search term (repeatable)"),
    structured: Optional[Path] = typer.Option(None, "--structured", help="Optional pre-aggregated result JSON"),
    out: Optional[Path] = typer.Option(None, "--out", help="Write all drill-down results to this JSON file"),
    narrative: bool = typer.Option(False, "--narrative", help="Print the CPU investigation narrative first"),
):
    """Load one trace export and run drill-down queries against it."""
    store = TraceStore(capacity=ctx.obj["capacity"])
    try:
        trace_id = _load_trace(store, table, template, structured)

        trace = store.get(trace_id)
        if narrative and trace.narrative:
            _print(trace.narrative)

        results = []
        for item in target:
            result = drill_down(store, trace_id, item)
            results.append(result.to_dict())
            _print(render_drill_down(result))

        if out is not None:
            with open(out, "w") as f:
                json.dump({"trace_id": trace_id, "results": results}, f, indent=2)
            console.print(f"[green]✓[/green] Results written to: {out}")

    except typer.Exit:
        raise
    except (TraceExportError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except Exception as e:
        logger.debug("Drill-down failed", exc_info=True)
        console.print(f"[red]Error during drill-down:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def session(
    ctx: typer.Context,
    table: List[Path] = typer.Option(..., "--table", help="xctrace XML table export (repeatable)"),
    template: List[str] = typer.Option(..., "--template", help="Template name for each --table, in order"),
):
    """Load trace exports and drill down interactively."""
    if len(table) != len(template):
        console.print("[red]Error:[/red] Each --table needs a matching --template")
        raise typer.Exit(code=1)

    store = TraceStore(capacity=ctx.obj["capacity"])
    try:
        for path, name in zip(table, template):
            _load_trace(store, path, name, None)
    except TraceExportError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print("Commands: [bold]<trace_id> <target>[/bold], [bold]list[/bold], [bold]quit[/bold]")
    while True:
        line = typer.prompt("drill", default="quit", show_default=False).strip()
        if line in ("quit", "exit", ""):
            break
        if line == "list":
            _print(render_trace_list(store.list()))
            continue

        trace_id, _, target = line.partition(" ")
        if not target.strip():
            console.print("[yellow]Usage:[/yellow] <trace_id> <target>")
            continue
        result = drill_down(store, trace_id, target.strip())
        if result is None:
            console.print(f'[red]Trace "{trace_id}" not found.[/red]')
            _print(render_trace_list(store.list()))
            continue
        _print(render_drill_down(result))


if __name__ == "__main__":
    app()
