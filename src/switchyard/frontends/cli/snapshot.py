"""Snapshot commands - capture and restore groups of state keys."""

from __future__ import annotations

import asyncio

import rich_click as click

from switchyard.core.errors import StateIOError
from switchyard.core.state import SnapshotManager
from switchyard.frontends.cli.output import error_exit, output_json_or_table, print_table
from switchyard.frontends.cli.state import state_dir_option
from switchyard.frontends.cli.utils import get_state_manager


def _snapshots(state_dir: str | None) -> SnapshotManager:
    return SnapshotManager(get_state_manager(state_dir))


@click.group()
def snapshot() -> None:
    """Create, restore and delete state snapshots.

    A snapshot copies the current value of a set of keys so they can be
    put back later.

    **Commands:**

        switchyard snapshot create     Capture keys under a snapshot id

        switchyard snapshot restore    Write captured values back

        switchyard snapshot delete     Remove a snapshot

        switchyard snapshot list       List snapshots, newest first
    """
    pass


@snapshot.command("create")
@click.argument("snapshot_id")
@click.argument("keys", nargs=-1)
@state_dir_option
def snapshot_create(snapshot_id: str, keys: tuple[str, ...], state_dir: str | None) -> None:
    """Capture KEYS (default: every key) under SNAPSHOT_ID.

    **Examples:**

        switchyard snapshot create nightly

        switchyard snapshot create before-fix pipeline_etl
    """
    manager = _snapshots(state_dir)
    try:
        info = asyncio.run(manager.create_snapshot(snapshot_id, list(keys) or None))
    except StateIOError as e:
        error_exit(str(e))
    click.echo(f"Created snapshot {info.id} ({info.key_count} keys)")


@snapshot.command("restore")
@click.argument("snapshot_id")
@state_dir_option
def snapshot_restore(snapshot_id: str, state_dir: str | None) -> None:
    """Write the values captured in SNAPSHOT_ID back to their keys.

    **Examples:**

        switchyard snapshot restore nightly
    """
    manager = _snapshots(state_dir)
    try:
        info = asyncio.run(manager.restore_snapshot(snapshot_id))
    except StateIOError as e:
        error_exit(str(e))
    click.echo(f"Restored snapshot {info.id} ({info.key_count} keys)")


@snapshot.command("delete")
@click.argument("snapshot_id")
@state_dir_option
def snapshot_delete(snapshot_id: str, state_dir: str | None) -> None:
    """Delete SNAPSHOT_ID and its captured values.

    **Examples:**

        switchyard snapshot delete nightly
    """
    manager = _snapshots(state_dir)
    try:
        deleted = asyncio.run(manager.delete_snapshot(snapshot_id))
    except StateIOError as e:
        error_exit(str(e))
    if not deleted:
        error_exit(f"Snapshot '{snapshot_id}' not found")
    click.echo(f"Deleted snapshot {snapshot_id}")


@snapshot.command("list")
@state_dir_option
@click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
def snapshot_list(state_dir: str | None, json_output: bool) -> None:
    """List snapshots, newest first.

    **Examples:**

        switchyard snapshot list --json
    """
    manager = _snapshots(state_dir)
    try:
        snapshots = asyncio.run(manager.list_snapshots())
    except StateIOError as e:
        error_exit(str(e))

    def show_table() -> None:
        if not snapshots:
            click.echo("No snapshots")
            return
        print_table(
            ["ID", "KEYS", "CREATED"],
            [[s.id, str(s.key_count), s.timestamp] for s in snapshots],
        )

    output_json_or_table([s.to_dict() for s in snapshots], json_output, show_table)
