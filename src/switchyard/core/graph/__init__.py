"""Graph model: nodes, edges and the NodeGraph that executes them.

Classes:
    NodeGraph: Id-keyed DAG with topological execution.
    Edge: Port-to-port data dependency.
    Node: Base of the node variants.
    TaskNode, ConditionNode, MergeNode, GroupNode, ConcurrentNode: Variants.

Example:
    >>> from switchyard.core.graph import Edge, NodeGraph, TaskNode
    >>>
    >>> graph = NodeGraph()
    >>> graph.add_node(TaskNode("a", executor=lambda _, ctx: 1))
    >>> graph.add_node(TaskNode("b", executor=lambda x, ctx: x * 2))
    >>> graph.add_edge(Edge("a-b", "a", "b"))
    >>> await graph.execute(create_context())
    {'b': {'output': 2}}
"""

from switchyard.core.graph.edge import DEFAULT_INPUT_PORT, DEFAULT_OUTPUT_PORT, Edge
from switchyard.core.graph.graph import NodeGraph
from switchyard.core.graph.nodes import (
    ConcurrentNode,
    ConditionNode,
    GroupNode,
    MergeNode,
    Node,
    NodeInfo,
    TaskNode,
)

__all__ = [
    "DEFAULT_INPUT_PORT",
    "DEFAULT_OUTPUT_PORT",
    "ConcurrentNode",
    "ConditionNode",
    "Edge",
    "GroupNode",
    "MergeNode",
    "Node",
    "NodeGraph",
    "NodeInfo",
    "TaskNode",
]
