"""NodeGraph - id-keyed graph of nodes and edges."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from switchyard.core.errors import NodeExecutionError, StructuralError
from switchyard.core.graph.edge import DEFAULT_INPUT_PORT, DEFAULT_OUTPUT_PORT, Edge
from switchyard.core.types import ValidationResult

if TYPE_CHECKING:
    from switchyard.core.context import ContextManager
    from switchyard.core.graph.nodes import Node

logger = logging.getLogger(__name__)


class NodeGraph:
    """Directed acyclic graph of nodes connected by port-to-port edges.

    Nodes and edges live in id-keyed dicts (declaration order preserved);
    incoming/outgoing edge lists per node are updated on every mutation.
    Besides nodes, a graph may declare virtual sources: ids that are not
    nodes but that edges can start from. Values for them are supplied as
    ``initial_inputs`` to ``execute``.

    Example:
        >>> graph = NodeGraph()
        >>> graph.add_source("seed")
        >>> graph.add_node(TaskNode("double", executor=lambda x, ctx: x * 2))
        >>> graph.add_node(TaskNode("show", executor=lambda x, ctx: str(x)))
        >>> graph.add_edge(Edge("e1", "seed", "double"))
        >>> graph.add_edge(Edge("e2", "double", "show"))
        >>> await graph.execute(create_context(), {"seed": 21})
        {'show': {'output': '42'}}
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._sources: list[str] = []
        self._outgoing: dict[str, list[str]] = {}
        self._incoming: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node: Node) -> NodeGraph:
        """Add a node.

        Raises:
            StructuralError: If the id is already used by a node or source.
        """
        if node.id in self._nodes:
            raise StructuralError(f"Node '{node.id}' already exists")
        if node.id in self._sources:
            raise StructuralError(f"Node id '{node.id}' conflicts with a declared source")

        self._nodes[node.id] = node
        self._outgoing.setdefault(node.id, [])
        self._incoming.setdefault(node.id, [])
        return self

    def add_source(self, source_id: str) -> NodeGraph:
        """Declare a virtual source that edges may start from."""
        if source_id in self._nodes:
            raise StructuralError(f"Source id '{source_id}' conflicts with an existing node")
        if source_id not in self._sources:
            self._sources.append(source_id)
            self._outgoing.setdefault(source_id, [])
        return self

    def add_edge(self, edge: Edge) -> NodeGraph:
        """Add an edge and update adjacency.

        Raises:
            StructuralError: On a duplicate edge id or a missing endpoint.
        """
        if edge.id in self._edges:
            raise StructuralError(f"Edge '{edge.id}' already exists")
        if edge.source not in self._nodes and edge.source not in self._sources:
            raise StructuralError(
                f"Edge '{edge.id}' references non-existent source node '{edge.source}'"
            )
        if edge.target not in self._nodes:
            raise StructuralError(
                f"Edge '{edge.id}' references non-existent target node '{edge.target}'"
            )

        self._edges[edge.id] = edge
        self._outgoing[edge.source].append(edge.id)
        self._incoming[edge.target].append(edge.id)
        return self

    def connect(
        self,
        source: str,
        target: str,
        source_port: str = DEFAULT_OUTPUT_PORT,
        target_port: str = DEFAULT_INPUT_PORT,
        **kwargs: Any,
    ) -> Edge:
        """Create and add an edge with a generated id. Returns the edge."""
        edge_id = f"{source}.{source_port}->{target}.{target_port}"
        edge = Edge(
            id=edge_id,
            source=source,
            target=target,
            source_port=source_port,
            target_port=target_port,
            **kwargs,
        )
        self.add_edge(edge)
        return edge

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every edge touching it. Returns whether it existed."""
        if node_id not in self._nodes:
            return False

        for edge_id in [*self._incoming.get(node_id, []), *self._outgoing.get(node_id, [])]:
            self.remove_edge(edge_id)

        del self._nodes[node_id]
        self._incoming.pop(node_id, None)
        self._outgoing.pop(node_id, None)
        return True

    def remove_edge(self, edge_id: str) -> bool:
        """Remove an edge. Returns whether it existed."""
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return False

        outgoing = self._outgoing.get(edge.source)
        if outgoing and edge_id in outgoing:
            outgoing.remove(edge_id)
        incoming = self._incoming.get(edge.target)
        if incoming and edge_id in incoming:
            incoming.remove(edge_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Edge | None:
        return self._edges.get(edge_id)

    @property
    def nodes(self) -> list[Node]:
        """Nodes in declaration order."""
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        """Edges in declaration order."""
        return list(self._edges.values())

    @property
    def sources(self) -> list[str]:
        """Declared virtual source ids."""
        return list(self._sources)

    def incoming_edges(self, node_id: str) -> list[Edge]:
        return [self._edges[eid] for eid in self._incoming.get(node_id, [])]

    def outgoing_edges(self, node_id: str) -> list[Edge]:
        return [self._edges[eid] for eid in self._outgoing.get(node_id, [])]

    def predecessors(self, node_id: str) -> list[str]:
        """Distinct upstream node ids (virtual sources excluded)."""
        seen: dict[str, None] = {}
        for edge in self.incoming_edges(node_id):
            if edge.source in self._nodes:
                seen.setdefault(edge.source)
        return list(seen)

    def successors(self, node_id: str) -> list[str]:
        """Distinct downstream node ids."""
        seen: dict[str, None] = {}
        for edge in self.outgoing_edges(node_id):
            seen.setdefault(edge.target)
        return list(seen)

    def sinks(self) -> list[str]:
        """Nodes without outgoing edges, in declaration order."""
        return [nid for nid in self._nodes if not self._outgoing.get(nid)]

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    # ------------------------------------------------------------------
    # Validation and ordering
    # ------------------------------------------------------------------

    def validate(self) -> ValidationResult:
        """Check nodes, edge endpoints and acyclicity."""
        errors: list[str] = []

        for node in self._nodes.values():
            errors.extend(node.validate().errors)

        for edge in self._edges.values():
            if edge.source not in self._nodes and edge.source not in self._sources:
                errors.append(
                    f"Edge {edge.id} references non-existent source node {edge.source}"
                )
            if edge.target not in self._nodes:
                errors.append(
                    f"Edge {edge.id} references non-existent target node {edge.target}"
                )

        if self.has_cycle():
            errors.append("Graph contains cycles")

        return ValidationResult.from_errors(errors)

    def _ordered_successors(self, node_id: str, position: dict[str, int]) -> list[str]:
        # Latest-declared first, so the reversed post-order lists siblings in
        # declaration order.
        succ = [s for s in self.successors(node_id) if s in position]
        return sorted(succ, key=position.__getitem__, reverse=True)

    def has_cycle(self) -> bool:
        """Detect cycles with an iterative three-colour DFS."""
        position = {nid: i for i, nid in enumerate(self._nodes)}
        done: set[str] = set()
        on_stack: set[str] = set()

        for root in self._nodes:
            if root in done:
                continue
            stack = [(root, iter(self._ordered_successors(root, position)))]
            on_stack.add(root)
            while stack:
                node_id, pending = stack[-1]
                for succ in pending:
                    if succ in on_stack:
                        return True
                    if succ not in done:
                        on_stack.add(succ)
                        stack.append((succ, iter(self._ordered_successors(succ, position))))
                        break
                else:
                    stack.pop()
                    on_stack.discard(node_id)
                    done.add(node_id)
        return False

    def topological_sort(self) -> list[str]:
        """Deterministic topological order (reversed DFS post-order).

        Independent nodes keep their declaration order.

        Raises:
            StructuralError: If the graph contains a cycle.
        """
        if self.has_cycle():
            raise StructuralError("Graph contains cycles")

        position = {nid: i for i, nid in enumerate(self._nodes)}
        visited: set[str] = set()
        post_order: list[str] = []

        for root in reversed(list(self._nodes)):
            if root in visited:
                continue
            visited.add(root)
            stack = [(root, iter(self._ordered_successors(root, position)))]
            while stack:
                node_id, pending = stack[-1]
                for succ in pending:
                    if succ not in visited:
                        visited.add(succ)
                        stack.append((succ, iter(self._ordered_successors(succ, position))))
                        break
                else:
                    stack.pop()
                    post_order.append(node_id)

        post_order.reverse()
        return post_order

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def collect_inputs(
        self, node_id: str, outputs: dict[str, dict[str, Any]]
    ) -> dict[str, Any]:
        """Gather a node's inputs from upstream outputs.

        For each incoming edge whose source has produced a non-None value on
        the edge's source port, the edge's predicate and transform are
        applied and the result lands on the target port.
        """
        inputs: dict[str, Any] = {}
        for edge in self.incoming_edges(node_id):
            upstream = outputs.get(edge.source)
            if upstream is None:
                continue
            value = upstream.get(edge.source_port)
            if value is None:
                continue
            delivered, value = await edge.deliver(value)
            if delivered:
                inputs[edge.target_port] = value
        return inputs

    async def execute(
        self,
        context: ContextManager,
        initial_inputs: dict[str, Any] | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Run every node once, sequentially, in topological order.

        Args:
            context: Context shared by all nodes of this run.
            initial_inputs: Values for virtual sources; each is exposed as
                that source's ``output`` port.

        Returns:
            Outputs of sink nodes keyed by node id.

        Raises:
            StructuralError: If the graph contains a cycle.
            NodeExecutionError: On the first node failure.
        """
        order = self.topological_sort()
        outputs: dict[str, dict[str, Any]] = {
            source_id: {DEFAULT_OUTPUT_PORT: value}
            for source_id, value in (initial_inputs or {}).items()
        }

        start = time.monotonic()
        logger.debug("graph_started: nodes=%d", len(order))

        for node_id in order:
            node = self._nodes[node_id]
            inputs = await self.collect_inputs(node_id, outputs)
            try:
                outputs[node_id] = await node.execute(context, inputs)
            except NodeExecutionError as e:
                if e.node_id == node_id:
                    raise
                raise NodeExecutionError(node_id, e) from e
            except Exception as e:
                logger.debug("graph_node_failed: node_id=%s, error=%s", node_id, e)
                raise NodeExecutionError(node_id, e) from e

        logger.debug("graph_completed: nodes=%d (%.3fs)", len(order), time.monotonic() - start)
        return {node_id: outputs[node_id] for node_id in self.sinks() if node_id in outputs}

    def reset(self) -> None:
        """Return every node to PENDING so the graph can run again."""
        for node in self._nodes.values():
            node.reset()

    def clone(self) -> NodeGraph:
        """Structural copy: nodes are cloned, edges are shallow-copied."""
        cloned = NodeGraph()
        for source_id in self._sources:
            cloned.add_source(source_id)
        for node in self._nodes.values():
            cloned.add_node(node.clone())
        for edge in self._edges.values():
            cloned.add_edge(
                Edge(
                    id=edge.id,
                    source=edge.source,
                    target=edge.target,
                    source_port=edge.source_port,
                    target_port=edge.target_port,
                    kind=edge.kind,
                    transform=edge.transform,
                    condition=edge.condition,
                    metadata=dict(edge.metadata),
                )
            )
        return cloned

    def to_dict(self) -> dict[str, Any]:
        """Describe the graph structure (no callables)."""
        return {
            "sources": list(self._sources),
            "nodes": [node.to_info().to_dict() for node in self._nodes.values()],
            "edges": [edge.to_dict() for edge in self._edges.values()],
        }

    def __repr__(self) -> str:
        return f"NodeGraph(nodes={list(self._nodes)}, edges={len(self._edges)})"
