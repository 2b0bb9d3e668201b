"""Edge - a directed data dependency between two node ports."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from switchyard.core.types import EdgeKind

DEFAULT_INPUT_PORT = "input"
DEFAULT_OUTPUT_PORT = "output"


@dataclass
class Edge:
    """Connects ``source.source_port`` to ``target.target_port``.

    The port names default to ``"output"`` and ``"input"``, so the common
    single-port case is just ``Edge("a-b", "a", "b")``.

    Attributes:
        id: Unique edge identifier.
        source: Source node id (or a declared virtual source).
        target: Target node id.
        source_port: Output port read on the source.
        target_port: Input port written on the target.
        kind: Edge kind (informational for schedulers and UIs).
        transform: Optional function applied to the value in transit.
        condition: Optional predicate; when it returns False the value is
            not delivered.
        metadata: Free-form metadata.
    """

    id: str
    source: str
    target: str
    source_port: str = DEFAULT_OUTPUT_PORT
    target_port: str = DEFAULT_INPUT_PORT
    kind: EdgeKind = EdgeKind.DEPENDENCY
    transform: Callable[[Any], Any] | None = None
    condition: Callable[[Any], bool | Awaitable[bool]] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    async def deliver(self, value: Any) -> tuple[bool, Any]:
        """Apply the activation predicate and transform to ``value``.

        Returns:
            (delivered, value). ``delivered`` is False when the predicate
            rejected the value.
        """
        if self.condition is not None:
            active = self.condition(value)
            if asyncio.iscoroutine(active):
                active = await active
            if not active:
                return False, None

        if self.transform is not None:
            value = self.transform(value)
            if asyncio.iscoroutine(value):
                value = await value

        return True, value

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict (callables are omitted)."""
        return {
            "id": self.id,
            "source": self.source,
            "source_port": self.source_port,
            "target": self.target,
            "target_port": self.target_port,
            "kind": self.kind.value,
            "metadata": self.metadata,
        }

    def __repr__(self) -> str:
        return (
            f"Edge({self.id!r}, {self.source}.{self.source_port} -> "
            f"{self.target}.{self.target_port})"
        )
