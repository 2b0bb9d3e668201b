"""Core - the orchestration engine.

This module contains no knowledge of terminals, rendering or command
registries. It is plain asyncio Python that can be embedded anywhere.

Architecture:
    graph/      Node variants, edges and the NodeGraph scheduler
    pipeline/   Run control (step, pause, skip, retry) and run state
    state/      Key-addressed persistence and snapshots
    context     Hierarchical key/value context
    events      Lifecycle events and the emitter
    errors      Error taxonomy
    types       Enums and small result types

Key Concepts:
    Node:       Executable unit with named input/output ports
    NodeGraph:  DAG of nodes executed in topological order
    Pipeline:   Controller that drives a NodeGraph and tracks its state
    Context:    Shared data, inherited by child scopes

Example:
    >>> from switchyard.core import NodeGraph, Pipeline, PipelineConfig, TaskNode
    >>>
    >>> async def main():
    ...     graph = NodeGraph()
    ...     graph.add_node(TaskNode("fetch", executor=lambda _, ctx: [1, 2, 3]))
    ...     graph.add_node(TaskNode("total", executor=lambda xs, ctx: sum(xs)))
    ...     graph.connect("fetch", "total")
    ...     pipeline = Pipeline(PipelineConfig(id="sum"), graph)
    ...     state = await pipeline.execute()
    ...     print(state.node_results["total"])
"""

from switchyard.core.context import ContextManager, ContextScope, create_context
from switchyard.core.errors import (
    BranchFailureError,
    ControlError,
    NodeExecutionError,
    StateIOError,
    StructuralError,
    SwitchyardError,
)
from switchyard.core.events import EventEmitter, PipelineEvent, PipelineEventType
from switchyard.core.graph import (
    ConcurrentNode,
    ConditionNode,
    Edge,
    GroupNode,
    MergeNode,
    Node,
    NodeGraph,
    TaskNode,
)
from switchyard.core.pipeline import Pipeline, PipelineConfig, PipelineState
from switchyard.core.state import (
    FileStateManager,
    MemoryStateManager,
    SnapshotManager,
    StateManager,
)
from switchyard.core.types import (
    ConcurrencyStrategy,
    EdgeKind,
    FailureStrategy,
    NodeKind,
    NodeStatus,
    PipelineStatus,
    StepResult,
    ValidationResult,
)

__all__ = [
    # Context
    "ContextManager",
    "ContextScope",
    "create_context",
    # Errors
    "BranchFailureError",
    "ControlError",
    "NodeExecutionError",
    "StateIOError",
    "StructuralError",
    "SwitchyardError",
    # Events
    "EventEmitter",
    "PipelineEvent",
    "PipelineEventType",
    # Graph
    "ConcurrentNode",
    "ConditionNode",
    "Edge",
    "GroupNode",
    "MergeNode",
    "Node",
    "NodeGraph",
    "TaskNode",
    # Pipeline
    "Pipeline",
    "PipelineConfig",
    "PipelineState",
    # State
    "FileStateManager",
    "MemoryStateManager",
    "SnapshotManager",
    "StateManager",
    # Types
    "ConcurrencyStrategy",
    "EdgeKind",
    "FailureStrategy",
    "NodeKind",
    "NodeStatus",
    "PipelineStatus",
    "StepResult",
    "ValidationResult",
]
