"""Pipeline lifecycle events and the emitter that delivers them.

Events are emitted by the pipeline at every lifecycle transition and are
the hook a terminal UI (or any other observer) uses to follow a run.

Standard event types:
    Pipeline lifecycle:
    - pipeline_start / pipeline_end
    - pipeline_pause / pipeline_resume

    Node execution:
    - task_start: node began executing
    - task_end: node finished successfully (data["result"])
    - task_failed: node failed (event.error) or was skipped (data["result"])
    - task_retry: node is being re-executed through retry_node()

    Concurrent nodes:
    - concurrent_start / concurrent_end
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Return current UTC time (helper for default_factory)."""
    return datetime.now(UTC)


class PipelineEventType(Enum):
    """Lifecycle event types."""

    PIPELINE_START = "pipeline_start"
    PIPELINE_END = "pipeline_end"
    PIPELINE_PAUSE = "pipeline_pause"
    PIPELINE_RESUME = "pipeline_resume"
    TASK_START = "task_start"
    TASK_END = "task_end"
    TASK_FAILED = "task_failed"
    TASK_RETRY = "task_retry"
    CONCURRENT_START = "concurrent_start"
    CONCURRENT_END = "concurrent_end"


@dataclass
class PipelineEvent:
    """Event emitted during pipeline execution.

    Attributes:
        type: What happened.
        pipeline_id: Pipeline that emitted the event.
        node_id: Node the event is about, if any.
        data: Event-specific payload.
        error: The exception, for failure events.
        timestamp: When the event was created.
    """

    type: PipelineEventType
    pipeline_id: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict (the error becomes its message)."""
        return {
            "type": self.type.value,
            "pipeline_id": self.pipeline_id,
            "node_id": self.node_id,
            "data": self.data,
            "error": str(self.error) if self.error is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }


EventListener = Callable[[PipelineEvent], Awaitable[None] | None]


class EventEmitter:
    """Typed pub/sub bus for pipeline events.

    Listeners may be sync or async. ``emit`` awaits every listener for the
    event type concurrently. A listener that raises is logged and does not
    affect other listeners or the emitting pipeline.

    Example:
        >>> events = EventEmitter()
        >>> events.on(PipelineEventType.TASK_END, lambda e: print(e.node_id))
        >>> await events.emit(PipelineEvent(PipelineEventType.TASK_END, "p", node_id="a"))
        a
    """

    def __init__(self) -> None:
        self._listeners: dict[PipelineEventType, list[EventListener]] = {}

    def on(self, event_type: PipelineEventType, listener: EventListener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unregisters it."""
        listeners = self._listeners.setdefault(event_type, [])
        if listener not in listeners:
            listeners.append(listener)
        return lambda: self.off(event_type, listener)

    def off(self, event_type: PipelineEventType, listener: EventListener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def once(self, event_type: PipelineEventType, listener: EventListener) -> Callable[[], None]:
        """Register a listener that is removed after its first call."""

        def once_listener(event: PipelineEvent) -> Awaitable[None] | None:
            self.off(event_type, once_listener)
            return listener(event)

        return self.on(event_type, once_listener)

    def on_any(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener for every event type."""
        removers = [self.on(event_type, listener) for event_type in PipelineEventType]

        def remove_all() -> None:
            for remove in removers:
                remove()

        return remove_all

    async def emit(self, event: PipelineEvent) -> None:
        """Deliver ``event`` to all listeners registered for its type."""
        listeners = list(self._listeners.get(event.type, []))
        if not listeners:
            return

        results = await asyncio.gather(
            *(self._call(listener, event) for listener in listeners),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.error(
                    "event_listener_failed: pipeline_id=%s, event_type=%s, error=%s",
                    event.pipeline_id,
                    event.type.value,
                    result,
                )

    @staticmethod
    async def _call(listener: EventListener, event: PipelineEvent) -> None:
        result = listener(event)
        if asyncio.iscoroutine(result):
            await result

    def remove_all_listeners(self, event_type: PipelineEventType | None = None) -> None:
        """Remove listeners for one event type, or all of them."""
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_type, None)

    def listener_count(self, event_type: PipelineEventType) -> int:
        return len(self._listeners.get(event_type, []))
