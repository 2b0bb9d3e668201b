"""Switchyard - programmable DAG task orchestration.

Describe a workflow as a graph of nodes connected by data-dependency
edges, then drive it with pause, step, skip and retry control while
tracking per-node and whole-pipeline status.

Layers:
    core/       The engine (graph, pipeline, state, context, events)
    frontends/  User interfaces (CLI)

Quick Start:
    >>> from switchyard import NodeGraph, Pipeline, PipelineConfig, TaskNode
    >>>
    >>> graph = NodeGraph()
    >>> graph.add_node(TaskNode("a", executor=lambda _, ctx: 1))
    >>> graph.add_node(TaskNode("b", executor=lambda x, ctx: x * 2))
    >>> graph.connect("a", "b")
    >>> pipeline = Pipeline(PipelineConfig(id="demo"), graph)
    >>> await pipeline.step()
    [StepResult(node_id='a', result={'output': 1})]
"""

__version__ = "0.1.0"

# Re-export core for convenience
from switchyard.core import (
    ConcurrentNode,
    ConditionNode,
    ContextManager,
    Edge,
    EventEmitter,
    FileStateManager,
    GroupNode,
    MergeNode,
    NodeGraph,
    Pipeline,
    PipelineConfig,
    PipelineEventType,
    PipelineState,
    TaskNode,
    create_context,
)

__all__ = [
    "__version__",
    # Graph
    "NodeGraph",
    "Edge",
    "TaskNode",
    "ConditionNode",
    "MergeNode",
    "GroupNode",
    "ConcurrentNode",
    # Pipeline
    "Pipeline",
    "PipelineConfig",
    "PipelineState",
    "PipelineEventType",
    "EventEmitter",
    # Context and state
    "ContextManager",
    "create_context",
    "FileStateManager",
]
