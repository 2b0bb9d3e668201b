"""Output formatting utilities for CLI commands."""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Any, NoReturn

import rich_click as click
from rich.console import Console
from rich.table import Table

from switchyard.core.types import NodeStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from switchyard.core.pipeline import Pipeline

STATUS_STYLES = {
    NodeStatus.PENDING: "dim",
    NodeStatus.RUNNING: "cyan",
    NodeStatus.SUCCESS: "green",
    NodeStatus.FAILED: "red",
    NodeStatus.CANCELLED: "yellow",
    NodeStatus.SKIPPED: "magenta",
}


def get_console() -> Console:
    """Console bound to the current stdout (so CliRunner captures it)."""
    return Console(file=sys.stdout, soft_wrap=True)


def print_table(
    headers: list[str],
    rows: list[list[str]],
    title: str | None = None,
) -> None:
    """Print a rich table.

    Args:
        headers: Column header strings
        rows: List of rows, each row is a list of cell values
        title: Optional table title
    """
    table = Table(title=title, header_style="bold")
    for header in headers:
        table.add_column(header)
    for row in rows:
        padded_row = list(row) + [""] * (len(headers) - len(row))
        table.add_row(*padded_row[: len(headers)])
    get_console().print(table)


def output_json(data: Any, indent: int = 2) -> None:
    """Output data as formatted JSON (non-JSON values are stringified)."""
    click.echo(json.dumps(data, indent=indent, default=str))


def output_json_or_table(
    data: Any,
    json_flag: bool,
    table_fn: Callable[[], None],
) -> None:
    """Output as JSON if flag is set, otherwise call table function."""
    if json_flag:
        output_json(data)
    else:
        table_fn()


def error_exit(message: str, code: int = 1) -> NoReturn:
    """Print error message and exit with code."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def error_print(message: str) -> None:
    """Print error message without exiting."""
    click.echo(f"Error: {message}", err=True)


def _summarize(value: Any, limit: int = 50) -> str:
    text = json.dumps(value, default=str)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def print_pipeline_state(pipeline: Pipeline) -> None:
    """Print one row per node plus a progress line."""
    state = pipeline.state
    table = Table(title=f"Pipeline {pipeline.config.name}", header_style="bold")
    table.add_column("NODE")
    table.add_column("KIND")
    table.add_column("STATUS")
    table.add_column("RESULT / ERROR")

    for node in pipeline.graph.nodes:
        status = state.node_states.get(node.id, NodeStatus.PENDING)
        if node.id in state.node_errors:
            detail = state.node_errors[node.id]
        elif node.id in state.node_results:
            detail = _summarize(state.node_results[node.id])
        else:
            detail = ""
        table.add_row(
            node.id,
            node.kind.value,
            f"[{STATUS_STYLES[status]}]{status.value}[/]",
            detail,
        )

    console = get_console()
    console.print(table)
    total = len(pipeline.graph.nodes)
    done = round(pipeline.get_progress() * total)
    console.print(
        f"Status: [bold]{state.status.value}[/]  "
        f"Progress: {done}/{total} ({pipeline.get_progress():.0%})"
    )
