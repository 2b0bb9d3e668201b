"""Pipeline commands: run and validate."""

from __future__ import annotations

import asyncio

import rich_click as click

from switchyard.core.errors import SwitchyardError
from switchyard.frontends.cli.output import (
    error_exit,
    error_print,
    get_console,
    output_json,
    print_pipeline_state,
)
from switchyard.frontends.cli.utils import TargetError, load_pipeline


def _resolve(target: str):
    try:
        return load_pipeline(target)
    except TargetError as e:
        error_exit(str(e))


@click.command()
@click.argument("target")
@click.option("--step", "-n", "steps", type=int, default=None, help="Execute N ready nodes only")
@click.option("--until", "-u", "until", default=None, help="Execute until NODE has a result")
@click.option("--dry-run", "-d", is_flag=True, help="Show execution order without running")
@click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
def run(
    target: str,
    steps: int | None,
    until: str | None,
    dry_run: bool,
    json_output: bool,
) -> None:
    """Execute a pipeline.

    TARGET is **module:attr** (or **path/to/file.py:attr**) naming a
    Pipeline, a NodeGraph, or a zero-argument callable returning one.

    **Examples:**

        switchyard run flows.etl:pipeline

        switchyard run flows/etl.py:build_pipeline --step 2

        switchyard run flows.etl:pipeline --until load --json

        switchyard run flows.etl:pipeline --dry-run
    """
    if steps is not None and until is not None:
        error_exit("--step and --until are mutually exclusive")
    if steps is not None and steps < 1:
        error_exit("--step must be at least 1")

    pipeline = _resolve(target)

    if dry_run:
        try:
            order = pipeline.graph.topological_sort()
        except SwitchyardError as e:
            error_exit(str(e))
        if json_output:
            output_json({"pipeline": pipeline.config.id, "order": order})
        else:
            console = get_console()
            console.print(f"Execution order for [bold]{pipeline.config.name}[/]:")
            for index, node_id in enumerate(order, 1):
                console.print(f"  {index}. {node_id}")
        return

    async def drive() -> None:
        if steps is not None:
            await pipeline.step(steps)
        elif until is not None:
            await pipeline.execute_until(until)
        else:
            await pipeline.execute()

    failure: SwitchyardError | None = None
    try:
        asyncio.run(drive())
    except SwitchyardError as e:
        failure = e

    if json_output:
        output_json(
            {
                "state": pipeline.state.to_dict(),
                "progress": pipeline.get_progress(),
                "error": str(failure) if failure else None,
            }
        )
    else:
        print_pipeline_state(pipeline)

    if failure is not None:
        error_print(str(failure))
        raise SystemExit(1)


@click.command()
@click.argument("target")
@click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
def validate(target: str, json_output: bool) -> None:
    """Check a pipeline's graph for dangling edges, invalid nodes and cycles.

    Exits with status 1 when the graph is invalid.

    **Examples:**

        switchyard validate flows.etl:pipeline
    """
    pipeline = _resolve(target)
    result = pipeline.graph.validate()

    if json_output:
        output_json(result.to_dict())
    elif result.is_valid:
        click.echo(
            f"Valid: {len(pipeline.graph.nodes)} nodes, {len(pipeline.graph.edges)} edges"
        )
    else:
        click.echo("Invalid graph:")
        for error in result.errors:
            click.echo(f"  - {error}")

    if not result.is_valid:
        raise SystemExit(1)
