"""Snapshots - named groups of persisted keys captured at a point in time.

A snapshot ``<id>`` is stored through the same StateManager it captures:

    __snapshot_<id>          {"id": ..., "keys": [...], "timestamp": ...}
    __snapshot_<id>_<key>    copy of <key>'s data, one entry per captured key

Restoring writes every captured copy back over its original key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from switchyard.core.errors import StateIOError
from switchyard.core.state.manager import StateManager

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "__snapshot_"


def snapshot_meta_key(snapshot_id: str) -> str:
    return f"{SNAPSHOT_PREFIX}{snapshot_id}"


def snapshot_data_key(snapshot_id: str, key: str) -> str:
    return f"{SNAPSHOT_PREFIX}{snapshot_id}_{key}"


@dataclass(frozen=True)
class SnapshotInfo:
    """Summary of a stored snapshot."""

    id: str
    timestamp: str
    keys: tuple[str, ...]

    @property
    def key_count(self) -> int:
        return len(self.keys)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {"id": self.id, "timestamp": self.timestamp, "keys": list(self.keys)}


class SnapshotManager:
    """Create, restore, delete and list snapshots of a StateManager.

    Example:
        >>> snapshots = SnapshotManager(states)
        >>> await snapshots.create_snapshot("before-deploy", ["pipeline_build"])
        >>> ...
        >>> await snapshots.restore_snapshot("before-deploy")
    """

    def __init__(self, state_manager: StateManager) -> None:
        self._states = state_manager

    @property
    def state_manager(self) -> StateManager:
        return self._states

    async def create_snapshot(self, snapshot_id: str, keys: list[str] | None = None) -> SnapshotInfo:
        """Capture ``keys`` (default: every non-snapshot key).

        Keys that have no stored value are recorded in the metadata but
        have no data entry; restoring leaves them untouched.
        """
        if not snapshot_id:
            raise ValueError("snapshot_id cannot be empty")

        if keys is None:
            keys = [k for k in await self._states.keys() if not k.startswith(SNAPSHOT_PREFIX)]

        info = SnapshotInfo(
            id=snapshot_id,
            timestamp=datetime.now(UTC).isoformat(),
            keys=tuple(keys),
        )
        await self._states.save(snapshot_meta_key(snapshot_id), info.to_dict())

        for key in keys:
            data = await self._states.load(key)
            if data is not None:
                await self._states.save(snapshot_data_key(snapshot_id, key), data)

        logger.debug("snapshot_created: snapshot_id=%s, keys=%d", snapshot_id, len(keys))
        return info

    async def get_snapshot(self, snapshot_id: str) -> SnapshotInfo | None:
        """Load snapshot metadata, or None if there is no such snapshot."""
        meta = await self._states.load(snapshot_meta_key(snapshot_id))
        if meta is None:
            return None
        if not isinstance(meta, dict) or "keys" not in meta:
            raise StateIOError(f"Snapshot '{snapshot_id}' has invalid metadata")
        return SnapshotInfo(
            id=meta.get("id", snapshot_id),
            timestamp=meta.get("timestamp", ""),
            keys=tuple(meta["keys"]),
        )

    async def restore_snapshot(self, snapshot_id: str) -> SnapshotInfo:
        """Write every captured value back over its original key.

        Raises:
            StateIOError: If the snapshot does not exist.
        """
        info = await self.get_snapshot(snapshot_id)
        if info is None:
            raise StateIOError(f"Snapshot '{snapshot_id}' not found")

        for key in info.keys:
            data = await self._states.load(snapshot_data_key(snapshot_id, key))
            if data is not None:
                await self._states.save(key, data)

        logger.debug("snapshot_restored: snapshot_id=%s, keys=%d", snapshot_id, info.key_count)
        return info

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        """Delete a snapshot and its data entries. Returns whether it existed."""
        info = await self.get_snapshot(snapshot_id)
        if info is not None:
            for key in info.keys:
                await self._states.remove(snapshot_data_key(snapshot_id, key))
        await self._states.remove(snapshot_meta_key(snapshot_id))

        logger.debug("snapshot_deleted: snapshot_id=%s, existed=%s", snapshot_id, info is not None)
        return info is not None

    async def list_snapshots(self) -> list[SnapshotInfo]:
        """All snapshots stored in the state manager, newest first."""
        snapshots: list[SnapshotInfo] = []
        for key in await self._states.keys():
            if not key.startswith(SNAPSHOT_PREFIX):
                continue
            meta = await self._states.load(key)
            # Data entries share the prefix; only metadata records carry an id
            # that maps back to this exact key.
            if not isinstance(meta, dict) or snapshot_meta_key(str(meta.get("id"))) != key:
                continue
            if "keys" not in meta:
                continue
            snapshots.append(
                SnapshotInfo(id=meta["id"], timestamp=meta.get("timestamp", ""), keys=tuple(meta["keys"]))
            )

        return sorted(snapshots, key=lambda s: s.timestamp, reverse=True)
