"""State managers - key-addressed persistence for pipeline state.

Two implementations share the StateManager protocol:

- FileStateManager: one JSON file per key under a base directory.
- MemoryStateManager: process-local dict, for tests and ephemeral runs.

File format (one file per key, ``<safe-key>.json``):
    {
        "key": "pipeline_build",
        "data": {...},
        "timestamp": "2026-01-04T10:12:00.120000+00:00",
        "version": "1.0.0"
    }

The safe key replaces every character outside ``[A-Za-z0-9_-]`` with ``_``,
so distinct keys may share a file. A file whose stored ``key`` differs from
the requested one belongs to the other key and reads as absent.
A missing key loads as None; every other failure raises StateIOError.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import json
import logging
import os
import re
import shutil
import weakref
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from switchyard.core.errors import StateIOError

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = "1.0.0"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@runtime_checkable
class StateManager(Protocol):
    """Protocol for key-addressed state persistence."""

    async def save(self, key: str, data: Any) -> None:
        """Persist ``data`` under ``key``, replacing any previous value."""
        ...

    async def load(self, key: str) -> Any:
        """Load the value stored under ``key``, or None if absent."""
        ...

    async def remove(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is not an error."""
        ...

    async def clear(self) -> None:
        """Remove every key."""
        ...

    async def keys(self) -> list[str]:
        """List stored keys."""
        ...

    async def exists(self, key: str) -> bool:
        """Whether ``key`` is stored."""
        ...


def safe_key(key: str) -> str:
    """Map a state key to a filesystem-safe file stem."""
    return _UNSAFE_KEY_CHARS.sub("_", key)


def get_default_state_dir() -> Path:
    """Default state directory.

    Returns:
        SWITCHYARD_STATE_DIR if set, otherwise ~/.switchyard/state
    """
    override = os.environ.get("SWITCHYARD_STATE_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".switchyard" / "state"


class FileStateManager:
    """File-backed state manager.

    Operations on the same key are serialized with a per-key lock; file I/O
    runs in a worker thread so the event loop is never blocked. Concurrent
    writers from different processes are not coordinated.

    Args:
        base_path: Directory holding the state files.
        cache_enabled: Keep loaded/saved values in memory.

    Example:
        >>> states = FileStateManager(Path("/tmp/switchyard-state"))
        >>> await states.save("pipeline_build", {"status": "running"})
        >>> await states.load("pipeline_build")
        {'status': 'running'}
    """

    def __init__(self, base_path: str | Path | None = None, cache_enabled: bool = True) -> None:
        self._base_path = Path(base_path).expanduser() if base_path else get_default_state_dir()
        self._cache_enabled = cache_enabled
        self._cache: dict[str, Any] = {}
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def path_for(self, key: str) -> Path:
        """Path of the file holding ``key``."""
        return self._base_path / f"{safe_key(key)}.json"

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def save(self, key: str, data: Any) -> None:
        path = self.path_for(key)
        document = {
            "key": key,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(),
            "version": STATE_FORMAT_VERSION,
        }
        try:
            serialized = json.dumps(document, indent=2)
        except (TypeError, ValueError) as e:
            raise StateIOError(f"Failed to save state for key '{key}': {e}") from e

        async with self._lock(key):
            try:
                await asyncio.to_thread(self._write, path, serialized)
            except OSError as e:
                raise StateIOError(f"Failed to save state for key '{key}': {e}") from e

            if self._cache_enabled:
                # Cache what a cold load would return (tuples as lists, str dict keys)
                self._cache[key] = json.loads(serialized)["data"]

        logger.debug("state_saved: key=%s, path=%s", key, path)

    @staticmethod
    def _write(path: Path, serialized: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(serialized, encoding="utf-8")
        tmp.replace(path)

    async def load(self, key: str) -> Any:
        if self._cache_enabled and key in self._cache:
            return copy.deepcopy(self._cache[key])

        path = self.path_for(key)
        async with self._lock(key):
            try:
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as e:
                raise StateIOError(f"Failed to load state for key '{key}': {e}") from e

            try:
                document = json.loads(content)
            except json.JSONDecodeError as e:
                raise StateIOError(f"Failed to load state for key '{key}': {e}") from e

            if not isinstance(document, dict) or not isinstance(document.get("key"), str):
                raise StateIOError(f"Failed to load state for key '{key}': invalid state file format")

            if document["key"] != key:
                logger.warning(
                    "state_key_mismatch: key=%s, stored_key=%s, path=%s", key, document["key"], path
                )
                return None

            data = document.get("data")
            if self._cache_enabled:
                self._cache[key] = copy.deepcopy(data)
            return data

    async def remove(self, key: str) -> None:
        path = self.path_for(key)
        async with self._lock(key):
            try:
                await asyncio.to_thread(path.unlink)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StateIOError(f"Failed to remove state for key '{key}': {e}") from e
            finally:
                self._cache.pop(key, None)

        logger.debug("state_removed: key=%s", key)

    async def clear(self) -> None:
        self._cache.clear()
        try:
            await asyncio.to_thread(shutil.rmtree, self._base_path, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StateIOError(f"Failed to clear state directory '{self._base_path}': {e}") from e

        logger.debug("state_cleared: path=%s", self._base_path)

    async def keys(self) -> list[str]:
        """List stored keys, read from each file's ``key`` field."""
        try:
            files = await asyncio.to_thread(lambda: sorted(self._base_path.glob("*.json")))
        except OSError as e:
            raise StateIOError(f"Failed to list state keys: {e}") from e

        keys: list[str] = []
        for path in files:
            try:
                document = json.loads(await asyncio.to_thread(path.read_text, encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                logger.warning("state_file_unreadable: path=%s", path)
                continue
            if isinstance(document, dict) and isinstance(document.get("key"), str):
                keys.append(document["key"])
        return keys

    async def exists(self, key: str) -> bool:
        """Whether a file holding ``key`` itself (not a colliding key) is stored."""
        if self._cache_enabled and key in self._cache:
            return True
        try:
            content = await asyncio.to_thread(self.path_for(key).read_text, encoding="utf-8")
            document = json.loads(content)
        except FileNotFoundError:
            return False
        except (OSError, json.JSONDecodeError) as e:
            raise StateIOError(f"Failed to check state for key '{key}': {e}") from e
        return isinstance(document, dict) and document.get("key") == key

    async def get_info(self, key: str) -> dict[str, Any]:
        """File information for ``key``.

        Returns:
            Dict with ``exists`` and, when present, ``size``,
            ``modified_time``, ``timestamp`` and ``version``.
        """
        path = self.path_for(key)
        try:
            stat = await asyncio.to_thread(path.stat)
            document = json.loads(await asyncio.to_thread(path.read_text, encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {"exists": False}

        return {
            "exists": True,
            "size": stat.st_size,
            "modified_time": datetime.fromtimestamp(stat.st_mtime, UTC),
            "timestamp": document.get("timestamp"),
            "version": document.get("version"),
        }

    async def save_batch(self, states: dict[str, Any]) -> None:
        """Save several keys concurrently."""
        await asyncio.gather(*(self.save(key, data) for key, data in states.items()))

    async def load_batch(self, keys: list[str]) -> dict[str, Any]:
        """Load several keys concurrently. Absent keys map to None."""
        values = await asyncio.gather(*(self.load(key) for key in keys))
        return dict(zip(keys, values, strict=True))

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def __repr__(self) -> str:
        return f"FileStateManager(base_path={str(self._base_path)!r})"


class MemoryStateManager:
    """In-memory state manager.

    Values are deep-copied on save and on load, so callers can never
    mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._storage: dict[str, tuple[Any, datetime]] = {}

    async def save(self, key: str, data: Any) -> None:
        self._storage[key] = (copy.deepcopy(data), datetime.now(UTC))

    async def load(self, key: str) -> Any:
        item = self._storage.get(key)
        return copy.deepcopy(item[0]) if item is not None else None

    async def remove(self, key: str) -> None:
        self._storage.pop(key, None)

    async def clear(self) -> None:
        self._storage.clear()

    async def keys(self) -> list[str]:
        return list(self._storage)

    async def exists(self, key: str) -> bool:
        return key in self._storage

    def size(self) -> int:
        return len(self._storage)

    def __repr__(self) -> str:
        return f"MemoryStateManager(keys={len(self._storage)})"


def stateful(
    state_manager: StateManager,
    key_fn: Callable[..., str] | None = None,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """Decorator persisting an async function's result under a state key.

    A stored (non-None) value is returned without calling the function.
    Otherwise the function runs and its result is saved. If the function
    raises, the key is removed and the exception propagates.

    Args:
        state_manager: Where results are stored.
        key_fn: Builds the key from the call arguments. Defaults to the
            function's qualified name followed by the JSON-encoded arguments.

    Example:
        >>> @stateful(states)
        ... async def fetch_manifest(repo):
        ...     return await download(repo)
    """

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if key_fn is not None:
                key = key_fn(*args, **kwargs)
            else:
                key = f"{fn.__qualname__}.{json.dumps([args, kwargs], sort_keys=True, default=str)}"

            try:
                saved = await state_manager.load(key)
                if saved is not None:
                    logger.debug("stateful_hit: key=%s", key)
                    return saved

                result = await fn(*args, **kwargs)
                await state_manager.save(key, result)
                return result
            except Exception:
                await state_manager.remove(key)
                raise

        return wrapper

    return decorator
