"""State persistence.

Classes:
    StateManager: Protocol for key-addressed persistence.
    FileStateManager: One JSON file per key.
    MemoryStateManager: In-process storage.
    SnapshotManager: Named groups of keys captured and restored together.

Functions:
    stateful: Decorator persisting an async function's result by key.
"""

from switchyard.core.state.manager import (
    FileStateManager,
    MemoryStateManager,
    StateManager,
    get_default_state_dir,
    safe_key,
    stateful,
)
from switchyard.core.state.snapshot import SnapshotInfo, SnapshotManager

__all__ = [
    "FileStateManager",
    "MemoryStateManager",
    "SnapshotInfo",
    "SnapshotManager",
    "StateManager",
    "get_default_state_dir",
    "safe_key",
    "stateful",
]
