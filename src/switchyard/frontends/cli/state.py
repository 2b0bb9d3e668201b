"""State commands - inspect persisted state files."""

from __future__ import annotations

import asyncio

import rich_click as click

from switchyard.core.errors import StateIOError
from switchyard.frontends.cli.output import error_exit, output_json, print_table
from switchyard.frontends.cli.utils import get_state_manager

state_dir_option = click.option(
    "--state-dir",
    "state_dir",
    default=None,
    envvar="SWITCHYARD_STATE_DIR",
    help="State directory (default: ~/.switchyard/state)",
)


@click.group()
def state() -> None:
    """Inspect and manage persisted state.

    **Commands:**

        switchyard state keys     List stored keys

        switchyard state show     Print the value stored under a key

        switchyard state rm       Remove a key

        switchyard state clear    Remove every key
    """
    pass


@state.command("keys")
@state_dir_option
@click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
def state_keys(state_dir: str | None, json_output: bool) -> None:
    """List stored keys.

    **Examples:**

        switchyard state keys

        switchyard state keys --state-dir ./.state --json
    """
    manager = get_state_manager(state_dir)

    async def run() -> list[dict]:
        rows = []
        for key in await manager.keys():
            info = await manager.get_info(key)
            rows.append({"key": key, "size": info.get("size"), "timestamp": info.get("timestamp")})
        return rows

    try:
        entries = asyncio.run(run())
    except StateIOError as e:
        error_exit(str(e))

    if json_output:
        output_json(entries)
    elif entries:
        print_table(
            ["KEY", "SIZE", "SAVED"],
            [[e["key"], str(e["size"] or ""), e["timestamp"] or ""] for e in entries],
        )
    else:
        click.echo(f"No state in {manager.base_path}")


@state.command("show")
@click.argument("key")
@state_dir_option
def state_show(key: str, state_dir: str | None) -> None:
    """Print the value stored under KEY as JSON.

    **Examples:**

        switchyard state show pipeline_etl
    """
    manager = get_state_manager(state_dir)
    try:
        data = asyncio.run(manager.load(key))
    except StateIOError as e:
        error_exit(str(e))

    if data is None:
        error_exit(f"No state for key '{key}'")
    output_json(data)


@state.command("rm")
@click.argument("key")
@state_dir_option
def state_rm(key: str, state_dir: str | None) -> None:
    """Remove KEY.

    **Examples:**

        switchyard state rm pipeline_etl
    """
    manager = get_state_manager(state_dir)

    async def run() -> bool:
        if not await manager.exists(key):
            return False
        await manager.remove(key)
        return True

    try:
        removed = asyncio.run(run())
    except StateIOError as e:
        error_exit(str(e))

    if not removed:
        error_exit(f"No state for key '{key}'")
    click.echo(f"Removed {key}")


@state.command("clear")
@state_dir_option
@click.confirmation_option(prompt="Remove every stored key?")
def state_clear(state_dir: str | None) -> None:
    """Remove every stored key (snapshots included).

    **Examples:**

        switchyard state clear --yes
    """
    manager = get_state_manager(state_dir)
    try:
        asyncio.run(manager.clear())
    except StateIOError as e:
        error_exit(str(e))
    click.echo(f"Cleared {manager.base_path}")
