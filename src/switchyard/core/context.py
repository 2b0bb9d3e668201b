"""ContextManager - hierarchical key/value store shared by node executions.

A context is a node in a tree. Reads fall through to the parent when a key
is not set locally; writes always stay local, so sibling contexts (for
example the branches of a concurrent node) never clobber each other while
all of them see the same inherited ancestor data.

Example:
    >>> root = create_context({"repo": "switchyard"})
    >>> child = root.create_child()
    >>> child.get("repo")
    'switchyard'
    >>> child.set("repo", "fork")
    >>> root.get("repo")
    'switchyard'
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections.abc import Awaitable, Callable, Iterator
from typing import Any

logger = logging.getLogger(__name__)

_MISSING = object()

ContextListener = Callable[[Any], None]


class ContextManager:
    """Tree-structured key/value mapping with read-through inheritance."""

    def __init__(self, parent: ContextManager | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._parent = parent
        self._children: list[ContextManager] = []
        self._listeners: dict[str, list[ContextListener]] = {}
        if parent is not None:
            parent._children.append(self)

    @property
    def parent(self) -> ContextManager | None:
        """Parent context, or None for a root (or destroyed) context."""
        return self._parent

    @property
    def children(self) -> list[ContextManager]:
        """Live child contexts."""
        return list(self._children)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, looking up the parent chain when not set locally."""
        ctx: ContextManager | None = self
        while ctx is not None:
            if key in ctx._data:
                return ctx._data[key]
            ctx = ctx._parent
        return default

    def set(self, key: str, value: Any) -> None:
        """Set a value on this context only. Parents are never touched."""
        self._data[key] = value

    def set_with_notify(self, key: str, value: Any) -> None:
        """Set a value and notify watchers of ``key`` if the value changed."""
        old = self.get(key, _MISSING)
        self.set(key, value)
        if old is _MISSING or old != value:
            self._notify(key, value)

    def merge(self, data: dict[str, Any]) -> None:
        """Set several values at once. ``None`` values are ignored."""
        for key, value in data.items():
            if value is not None:
                self._data[key] = value

    def has(self, key: str) -> bool:
        """Whether ``key`` is set here or on any ancestor."""
        return key in self._data or (self._parent is not None and self._parent.has(key))

    def delete(self, key: str) -> bool:
        """Delete a local key. Returns whether it existed locally."""
        return self._data.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        """Clear local data. Parent and child data are unaffected."""
        self._data.clear()

    def get_all(self) -> dict[str, Any]:
        """All visible data: inherited entries overridden by local ones."""
        result = self._parent.get_all() if self._parent is not None else {}
        result.update(self._data)
        return result

    def get_own(self) -> dict[str, Any]:
        """Local data only."""
        return dict(self._data)

    def keys(self) -> list[str]:
        """All visible keys, ancestors first."""
        return list(self.get_all().keys())

    def __len__(self) -> int:
        return len(self.get_all())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def is_empty(self) -> bool:
        return len(self) == 0

    def create_child(self) -> ContextManager:
        """Create a child context that inherits from this one."""
        return ContextManager(parent=self)

    def destroy(self) -> None:
        """Detach from the parent and recursively destroy all children."""
        if self._parent is not None:
            try:
                self._parent._children.remove(self)
            except ValueError:
                pass
            self._parent = None

        for child in list(self._children):
            child.destroy()

        self._data.clear()
        self._children.clear()
        self._listeners.clear()

    def clone(self) -> ContextManager:
        """Deep copy of all visible data into a new, detached root context."""
        cloned = ContextManager()
        for key, value in self.get_all().items():
            cloned.set(key, copy.deepcopy(value))
        return cloned

    def watch(self, key: str, listener: ContextListener) -> Callable[[], None]:
        """Watch ``key`` for changes made through ``set_with_notify``.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.setdefault(key, []).append(listener)

        def unwatch() -> None:
            listeners = self._listeners.get(key)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[key]

        return unwatch

    def _notify(self, key: str, value: Any) -> None:
        for listener in list(self._listeners.get(key, [])):
            try:
                listener(value)
            except Exception as e:
                logger.error("context_listener_failed: key=%s, error=%s", key, e)

    def to_json(self) -> str:
        """Serialize all visible data to a JSON string."""
        return json.dumps(self.get_all())

    @classmethod
    def from_json(cls, data: str) -> ContextManager:
        """Create a root context from ``to_json`` output."""
        context = cls()
        context.merge(json.loads(data))
        return context

    def __repr__(self) -> str:
        depth = 0
        ctx = self._parent
        while ctx is not None:
            depth += 1
            ctx = ctx._parent
        return f"ContextManager(keys={list(self._data)}, depth={depth})"


def create_context(initial: dict[str, Any] | None = None) -> ContextManager:
    """Create a root context, optionally pre-populated."""
    context = ContextManager()
    if initial:
        context.merge(initial)
    return context


class ContextScope:
    """Owns a child context for the duration of a block of work.

    The context is destroyed (and registered cleanups run) when the scope
    exits, whether the work succeeded or not.

    Example:
        >>> async with ContextScope(root) as ctx:
        ...     ctx.set("tmp", 1)
        >>> # ctx has been destroyed here
    """

    def __init__(self, parent: ContextManager | None = None) -> None:
        self._context = parent.create_child() if parent is not None else ContextManager()
        self._cleanups: list[Callable[[], None]] = []

    @property
    def context(self) -> ContextManager:
        return self._context

    def add_cleanup(self, cleanup: Callable[[], None]) -> None:
        """Register a callable to run when the scope is disposed."""
        self._cleanups.append(cleanup)

    async def run(self, fn: Callable[[ContextManager], Any | Awaitable[Any]]) -> Any:
        """Run ``fn`` with the scoped context, then dispose the scope."""
        try:
            result = fn(self._context)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        finally:
            self.dispose()

    def dispose(self) -> None:
        """Run cleanups and destroy the scoped context."""
        for cleanup in self._cleanups:
            try:
                cleanup()
            except Exception as e:
                logger.error("context_cleanup_failed: error=%s", e)
        self._cleanups.clear()
        self._context.destroy()

    async def __aenter__(self) -> ContextManager:
        return self._context

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()
