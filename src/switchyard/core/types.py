"""Pure data types for switchyard.core.

Enums and small result records shared by the graph, the pipeline and
the state layer. No behavior beyond serialization helpers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeKind(Enum):
    """Discriminant for the closed set of node variants."""

    TASK = "task"
    CONDITION = "condition"
    MERGE = "merge"
    GROUP = "group"
    CONCURRENT = "concurrent"


class NodeStatus(Enum):
    """Node execution status.

    State transitions:
        PENDING -> RUNNING -> SUCCESS | FAILED
        RUNNING -> CANCELLED (task cancelled; runs again like PENDING)
        PENDING -> SKIPPED (manual skip)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        """Whether the node has finished (counts towards progress)."""
        return self in (NodeStatus.SUCCESS, NodeStatus.FAILED, NodeStatus.SKIPPED)


class EdgeKind(Enum):
    """Edge kinds."""

    DEPENDENCY = "dependency"  # Plain data dependency
    CONDITION = "condition"  # Leaves a condition node branch port
    PARALLEL = "parallel"  # Fan-out into concurrent work


class PipelineStatus(Enum):
    """Pipeline lifecycle states.

    State transitions:
        PENDING -> RUNNING -> SUCCESS | FAILED
        RUNNING -> CANCELLED (the task awaiting execute() was cancelled)

    A run ended early by stop() is still SUCCESS.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConcurrencyStrategy(Enum):
    """How a concurrent node derives success from its branches."""

    ANY_SUCCESS = "any_success"
    ALL_SUCCESS = "all_success"
    SPECIFIED_SUCCESS = "specified_success"


class FailureStrategy(Enum):
    """Declared failure handling for a pipeline.

    Only FAIL_FAST is enforced by the execution loop; the others are
    recorded on the config for callers and UIs.
    """

    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"
    WAIT_ALL = "wait_all"


@dataclass
class ValidationResult:
    """Outcome of a validate() call."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(is_valid=not errors, errors=list(errors))

    def __bool__(self) -> bool:
        return self.is_valid

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {"is_valid": self.is_valid, "errors": list(self.errors)}


@dataclass(frozen=True)
class StepResult:
    """Result of executing a single node through the step API.

    Attributes:
        node_id: The node that was executed.
        result: The node's outputs keyed by port name.
    """

    node_id: str
    result: dict[str, Any]
