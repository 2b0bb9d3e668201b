"""Switchyard error types.

Four families, matching where a failure originates:

- StructuralError: the graph itself is invalid (duplicate id, missing
  reference, cycle). Raised while building or validating.
- NodeExecutionError: a node's executor failed. Recorded on the node and
  in the pipeline state, then propagated.
- ControlError: the pipeline control surface was misused (re-entrant
  execute, unknown node id). Raised before any state changes.
- StateIOError: persistence failed. A missing key is not an error.
"""

from __future__ import annotations

from typing import Any


class SwitchyardError(Exception):
    """Base error for all switchyard operations."""


class StructuralError(SwitchyardError):
    """Graph structure is invalid."""


class ControlError(SwitchyardError):
    """Invalid use of the pipeline control surface."""


class StateIOError(SwitchyardError):
    """Error saving, loading or removing persisted state."""


class NodeExecutionError(SwitchyardError):
    """A node failed while executing.

    Attributes:
        node_id: ID of the node that failed.
        cause: The original exception raised by the node.
    """

    def __init__(self, node_id: str, cause: BaseException | None = None, message: str | None = None):
        self.node_id = node_id
        self.cause = cause
        if message is None:
            message = f"Node '{node_id}' failed: {cause}" if cause else f"Node '{node_id}' failed"
        super().__init__(message)


class BranchFailureError(NodeExecutionError):
    """A concurrent node's success strategy was not met.

    Attributes:
        branch_errors: Mapping of branch id -> exception for failed branches.
    """

    def __init__(self, node_id: str, strategy: Any, branch_errors: dict[str, BaseException]):
        self.strategy = strategy
        self.branch_errors = branch_errors
        failed = ", ".join(f"{bid}: {err}" for bid, err in branch_errors.items()) or "none"
        super().__init__(
            node_id,
            message=(
                f"Concurrent node '{node_id}' failed strategy "
                f"'{getattr(strategy, 'value', strategy)}' (failed branches: {failed})"
            ),
        )
