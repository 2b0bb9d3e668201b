"""PipelineState - the run record a pipeline owns."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from switchyard.core.types import NodeStatus, PipelineStatus


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class PipelineState:
    """Execution state of a pipeline.

    A node present in ``node_results`` always has a terminal status
    (success or skipped).

    Attributes:
        id: Pipeline id.
        status: Lifecycle status.
        start_time: When the last execute() started.
        end_time: When the last execute() ended.
        node_states: Per-node status.
        node_results: Per-node outputs (or the skip record).
        node_errors: Per-node error message for failed nodes.
        error: Error message of the last failed run.
    """

    id: str
    status: PipelineStatus = PipelineStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    node_states: dict[str, NodeStatus] = field(default_factory=dict)
    node_results: dict[str, dict[str, Any]] = field(default_factory=dict)
    node_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def duration(self) -> float:
        """Duration of the last run in milliseconds (0 if it has not ended)."""
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000

    @property
    def is_running(self) -> bool:
        return self.status is PipelineStatus.RUNNING

    def copy(self) -> PipelineState:
        """Copy with independent maps (result values are shared)."""
        return PipelineState(
            id=self.id,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
            node_states=dict(self.node_states),
            node_results=dict(self.node_results),
            node_errors=dict(self.node_errors),
            error=self.error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict (results must be JSON-friendly)."""
        return {
            "id": self.id,
            "status": self.status.value,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "nodeStates": {nid: status.value for nid, status in self.node_states.items()},
            "nodeResults": self.node_results,
            "nodeErrors": self.node_errors,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineState:
        """Create from ``to_dict`` output."""
        return cls(
            id=data.get("id", ""),
            status=PipelineStatus(data.get("status", PipelineStatus.PENDING.value)),
            start_time=_parse_time(data.get("startTime")),
            end_time=_parse_time(data.get("endTime")),
            node_states={
                nid: NodeStatus(status) for nid, status in data.get("nodeStates", {}).items()
            },
            node_results=dict(data.get("nodeResults", {})),
            node_errors=dict(data.get("nodeErrors", {})),
            error=data.get("error"),
        )
