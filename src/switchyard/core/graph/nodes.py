"""Node variants - the units of work a NodeGraph executes.

The variant set is closed; ``Node.kind`` is the discriminant:

- TaskNode: runs a user executor on its single input.
- ConditionNode: routes its input to exactly one named branch output.
- MergeNode: reduces several named inputs into one output.
- GroupNode: runs a nested graph as a single node.
- ConcurrentNode: runs several group branches at once and derives success
  from a branch strategy.

Every variant shares the same contract:

    outputs = await node.execute(context, inputs)

``inputs`` and ``outputs`` are dicts keyed by port name. User callables
(executors, selectors, reducers) may be sync or async.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, ClassVar

from switchyard.core.errors import BranchFailureError, StructuralError
from switchyard.core.graph.edge import DEFAULT_INPUT_PORT, DEFAULT_OUTPUT_PORT, Edge
from switchyard.core.graph.graph import NodeGraph
from switchyard.core.types import ConcurrencyStrategy, NodeKind, NodeStatus, ValidationResult

if TYPE_CHECKING:
    from switchyard.core.context import ContextManager

logger = logging.getLogger(__name__)

TaskExecutor = Callable[[Any, "ContextManager"], Any | Awaitable[Any]]
BranchSelector = Callable[[Any, "ContextManager"], Any | Awaitable[Any]]
MergeReducer = Callable[[dict[str, Any]], Any | Awaitable[Any]]


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async function and return its result."""
    result = fn(*args)
    if asyncio.iscoroutine(result):
        result = await result
    return result


@dataclass
class NodeInfo:
    """Serializable node information."""

    id: str
    name: str
    kind: NodeKind
    status: NodeStatus
    inputs: list[str]
    outputs: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "status": self.status.value,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "metadata": self.metadata,
        }


class Node(ABC):
    """Base class for the node variants.

    Owns the status transitions so variants only implement ``_run``:
    PENDING -> RUNNING -> SUCCESS, or FAILED if ``_run`` raises (the
    exception is re-raised unchanged), or CANCELLED if the task running
    it is cancelled.

    Args:
        id: Unique identifier within a graph.
        name: Human-readable name. Defaults to the id.
        inputs: Input port names.
        outputs: Output port names.
        metadata: Free-form metadata.
    """

    kind: ClassVar[NodeKind]

    def __init__(
        self,
        id: str,
        *,
        name: str | None = None,
        inputs: list[str] | None = None,
        outputs: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.id = id
        self.name = name if name is not None else id
        self.inputs: list[str] = list(inputs) if inputs is not None else [DEFAULT_INPUT_PORT]
        self.outputs: list[str] = list(outputs) if outputs is not None else [DEFAULT_OUTPUT_PORT]
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.status = NodeStatus.PENDING
        self.error: BaseException | None = None

    async def execute(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]:
        """Execute the node.

        Args:
            context: Shared context for this execution scope.
            inputs: Values keyed by input port name.

        Returns:
            Values keyed by output port name.
        """
        self.status = NodeStatus.RUNNING
        self.error = None
        start = time.monotonic()
        logger.debug("node_started: node_id=%s, kind=%s", self.id, self.kind.value)

        try:
            outputs = await self._run(context, inputs)
        except asyncio.CancelledError:
            self.status = NodeStatus.CANCELLED
            logger.debug("node_cancelled: node_id=%s (%.3fs)", self.id, time.monotonic() - start)
            raise
        except Exception as e:
            self.status = NodeStatus.FAILED
            self.error = e
            logger.debug(
                "node_failed: node_id=%s, error=%s (%.3fs)", self.id, e, time.monotonic() - start
            )
            raise

        self.status = NodeStatus.SUCCESS
        logger.debug("node_completed: node_id=%s (%.3fs)", self.id, time.monotonic() - start)
        return outputs

    @abstractmethod
    async def _run(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]: ...

    def validate(self) -> ValidationResult:
        """Check the node's own configuration."""
        label = self.kind.value.capitalize()
        errors: list[str] = []
        if not self.id:
            errors.append(f"{label} node must have an ID")
        if not self.name:
            errors.append(f"{label} node must have a name")
        errors.extend(self._validate())
        return ValidationResult.from_errors(errors)

    def _validate(self) -> list[str]:
        return []

    @abstractmethod
    def clone(self) -> Node:
        """Copy the configuration. The clone starts PENDING."""

    def reset(self) -> None:
        """Return to PENDING and forget the last error."""
        self.status = NodeStatus.PENDING
        self.error = None

    def to_info(self) -> NodeInfo:
        return NodeInfo(
            id=self.id,
            name=self.name,
            kind=self.kind,
            status=self.status,
            inputs=list(self.inputs),
            outputs=list(self.outputs),
            metadata=dict(self.metadata),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, status={self.status.value})"


class TaskNode(Node):
    """Runs ``executor(input, context)`` and publishes the result on ``output``.

    Example:
        >>> node = TaskNode("double", executor=lambda x, ctx: x * 2)
        >>> await node.execute(context, {"input": 21})
        {'output': 42}
    """

    kind = NodeKind.TASK

    def __init__(
        self,
        id: str,
        *,
        name: str | None = None,
        executor: TaskExecutor | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(id, name=name, metadata=metadata)
        self.executor = executor
        self.description = description

    async def _run(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]:
        if self.executor is None:
            raise RuntimeError(f"Task node '{self.id}' has no executor")
        result = await _call(self.executor, inputs.get(DEFAULT_INPUT_PORT), context)
        return {DEFAULT_OUTPUT_PORT: result}

    def _validate(self) -> list[str]:
        if not callable(self.executor):
            return ["Task node must have an executor"]
        return []

    def clone(self) -> TaskNode:
        return TaskNode(
            self.id,
            name=self.name,
            executor=self.executor,
            description=self.description,
            metadata=self.metadata,
        )


class ConditionNode(Node):
    """Routes its input to exactly one branch output.

    Boolean form (no ``branches``): the selector's truthiness picks the
    ``true`` or ``false`` port. Multi-branch form: the selector returns one
    of the declared branch names. Every other branch port is None.

    Example:
        >>> node = ConditionNode(
        ...     "size",
        ...     selector=lambda n, ctx: "small" if n < 10 else "large",
        ...     branches=["small", "large"],
        ... )
        >>> await node.execute(context, {"input": 3})
        {'small': 3, 'large': None}
    """

    kind = NodeKind.CONDITION

    def __init__(
        self,
        id: str,
        *,
        name: str | None = None,
        selector: BranchSelector | None = None,
        branches: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.branches = list(branches) if branches is not None else None
        super().__init__(
            id,
            name=name,
            outputs=self.branches if self.branches is not None else ["true", "false"],
            metadata=metadata,
        )
        self.selector = selector

    async def _run(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]:
        if self.selector is None:
            raise RuntimeError(f"Condition node '{self.id}' has no selector")
        value = inputs.get(DEFAULT_INPUT_PORT)
        selected = await _call(self.selector, value, context)

        if self.branches is None:
            if selected:
                return {"true": value, "false": None}
            return {"true": None, "false": value}

        if selected not in self.branches:
            raise ValueError(
                f"Invalid branch {selected!r} for condition node '{self.id}'. "
                f"Valid branches: {', '.join(self.branches)}"
            )
        logger.debug("condition_selected: node_id=%s, branch=%s", self.id, selected)
        return {branch: (value if branch == selected else None) for branch in self.branches}

    def _validate(self) -> list[str]:
        errors: list[str] = []
        if not callable(self.selector):
            errors.append("Condition node must have a condition function")
        if self.branches is not None:
            if not self.branches:
                errors.append("Condition node must declare at least one branch")
            elif len(set(self.branches)) != len(self.branches):
                errors.append("Condition node branches must be unique")
        return errors

    def clone(self) -> ConditionNode:
        return ConditionNode(
            self.id,
            name=self.name,
            selector=self.selector,
            branches=self.branches,
            metadata=self.metadata,
        )


class MergeNode(Node):
    """Reduces its named inputs into a single ``output``.

    Without a reducer, every non-None input is collected into a list:
    declared ports first (in declaration order), then any other ports in
    arrival order.
    """

    kind = NodeKind.MERGE

    def __init__(
        self,
        id: str,
        *,
        name: str | None = None,
        reducer: MergeReducer | None = None,
        inputs: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            id,
            name=name,
            inputs=inputs if inputs is not None else ["input1", "input2"],
            metadata=metadata,
        )
        self.reducer = reducer

    async def _run(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]:
        if self.reducer is not None:
            result = await _call(self.reducer, dict(inputs))
        else:
            ordered = [p for p in self.inputs if p in inputs]
            ordered += [p for p in inputs if p not in self.inputs]
            result = [inputs[p] for p in ordered if inputs[p] is not None]
        return {DEFAULT_OUTPUT_PORT: result}

    def clone(self) -> MergeNode:
        return MergeNode(
            self.id,
            name=self.name,
            reducer=self.reducer,
            inputs=self.inputs,
            metadata=self.metadata,
        )


class GroupNode(Node):
    """Runs a nested graph of child nodes as one node.

    The group's input ports are declared as virtual sources of the nested
    graph, so internal edges can start at ``"input"``. Each execution runs
    in a fresh child context that is destroyed afterwards. The result is
    the nested graph's sink outputs keyed by sink node id.

    Example:
        >>> group = GroupNode("prepare")
        >>> group.add_child(TaskNode("strip", executor=lambda s, ctx: s.strip()))
        >>> group.add_internal_edge(Edge("in", "input", "strip"))
        >>> await group.execute(context, {"input": "  hi "})
        {'strip': {'output': 'hi'}}
    """

    kind = NodeKind.GROUP

    def __init__(
        self,
        id: str,
        *,
        name: str | None = None,
        inputs: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(id, name=name, inputs=inputs, metadata=metadata)
        self._children: list[Node] = []
        self._internal_edges: list[Edge] = []

    def add_child(self, node: Node) -> GroupNode:
        self._children.append(node)
        return self

    def add_internal_edge(self, edge: Edge) -> GroupNode:
        self._internal_edges.append(edge)
        return self

    @property
    def children(self) -> list[Node]:
        return list(self._children)

    @property
    def internal_edges(self) -> list[Edge]:
        return list(self._internal_edges)

    def build_graph(self) -> NodeGraph:
        """Assemble the nested graph.

        Raises:
            StructuralError: If children or internal edges are inconsistent.
        """
        graph = NodeGraph()
        for port in self.inputs:
            graph.add_source(port)
        for child in self._children:
            graph.add_node(child)
        for edge in self._internal_edges:
            graph.add_edge(edge)
        return graph

    async def _run(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]:
        graph = self.build_graph()
        graph.reset()
        child_context = context.create_child()
        try:
            return await graph.execute(child_context, inputs)
        finally:
            child_context.destroy()

    def _validate(self) -> list[str]:
        errors: list[str] = []
        for child in self._children:
            result = child.validate()
            errors.extend(f"Child node {child.id}: {err}" for err in result.errors)
        try:
            graph = self.build_graph()
        except StructuralError as e:
            errors.append(str(e))
        else:
            if graph.has_cycle():
                errors.append(f"Group node {self.id} contains cycles")
        return errors

    def reset(self) -> None:
        super().reset()
        for child in self._children:
            child.reset()

    def clone(self) -> GroupNode:
        cloned = GroupNode(
            self.id, name=self.name, inputs=self.inputs, metadata=self.metadata
        )
        cloned._children = [child.clone() for child in self._children]
        cloned._internal_edges = [replace(edge, metadata=dict(edge.metadata)) for edge in self._internal_edges]
        return cloned


class ConcurrentNode(Node):
    """Runs several group branches concurrently.

    All branches are started together (bounded by ``max_concurrency`` when
    set) and every branch is allowed to settle before the strategy is
    evaluated:

    - ANY_SUCCESS: at least one branch succeeded.
    - ALL_SUCCESS: every branch succeeded.
    - SPECIFIED_SUCCESS: the critical branches succeeded (``quota`` of them
      when given). With no critical branches, a majority of all branches.

    On success the ``output`` port carries the successful branch results in
    branch order. Otherwise BranchFailureError is raised.

    Args:
        id: Node id.
        name: Node name.
        strategy: Branch success strategy.
        critical_branches: Branch ids that count for SPECIFIED_SUCCESS.
        quota: How many critical branches must succeed.
        max_concurrency: Cap on simultaneously running branches.
    """

    kind = NodeKind.CONCURRENT

    def __init__(
        self,
        id: str,
        *,
        name: str | None = None,
        strategy: ConcurrencyStrategy = ConcurrencyStrategy.ALL_SUCCESS,
        critical_branches: list[str] | None = None,
        quota: int | None = None,
        max_concurrency: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(id, name=name, metadata=metadata)
        self.strategy = ConcurrencyStrategy(strategy)
        self.critical_branches: list[str] = list(critical_branches or [])
        self.quota = quota
        self.max_concurrency = max_concurrency
        self._branches: list[GroupNode] = []
        self.branch_errors: dict[str, BaseException] = {}

    def add_branch(self, branch: GroupNode, critical: bool = False) -> ConcurrentNode:
        self._branches.append(branch)
        if critical and branch.id not in self.critical_branches:
            self.critical_branches.append(branch.id)
        return self

    @property
    def branches(self) -> list[GroupNode]:
        return list(self._branches)

    async def _run(self, context: ContextManager, inputs: dict[str, Any]) -> dict[str, Any]:
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def run_branch(branch: GroupNode) -> dict[str, Any]:
            if semaphore is None:
                return await branch.execute(context, inputs)
            async with semaphore:
                return await branch.execute(context, inputs)

        logger.debug(
            "concurrent_started: node_id=%s, branches=%d, strategy=%s",
            self.id,
            len(self._branches),
            self.strategy.value,
        )
        tasks = [asyncio.create_task(run_branch(b), name=f"{self.id}:{b.id}") for b in self._branches]
        settled = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[Any] = []
        succeeded: set[str] = set()
        self.branch_errors = {}
        for branch, outcome in zip(self._branches, settled, strict=True):
            if isinstance(outcome, Exception):
                self.branch_errors[branch.id] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                succeeded.add(branch.id)
                results.append(outcome)

        if not self._strategy_met(succeeded):
            raise BranchFailureError(self.id, self.strategy, self.branch_errors)

        logger.debug(
            "concurrent_completed: node_id=%s, succeeded=%d, failed=%d",
            self.id,
            len(succeeded),
            len(self.branch_errors),
        )
        return {DEFAULT_OUTPUT_PORT: results}

    def _strategy_met(self, succeeded: set[str]) -> bool:
        total = len(self._branches)
        if self.strategy is ConcurrencyStrategy.ANY_SUCCESS:
            return len(succeeded) > 0
        if self.strategy is ConcurrencyStrategy.SPECIFIED_SUCCESS:
            if not self.critical_branches:
                return len(succeeded) >= math.ceil(total / 2)
            required = self.quota if self.quota is not None else len(self.critical_branches)
            return len(succeeded.intersection(self.critical_branches)) >= required
        return len(succeeded) == total

    def _validate(self) -> list[str]:
        errors: list[str] = []
        if not self._branches:
            errors.append("Concurrent node must have at least one branch")
        branch_ids = {b.id for b in self._branches}
        for critical in self.critical_branches:
            if critical not in branch_ids:
                errors.append(f"Critical branch {critical} is not a branch of {self.id}")
        if self.quota is not None:
            if not self.critical_branches:
                errors.append("Concurrent node quota requires critical branches")
            elif not 0 < self.quota <= len(self.critical_branches):
                errors.append("Concurrent node quota must be between 1 and the number of critical branches")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            errors.append("Concurrent node max_concurrency must be at least 1")
        for branch in self._branches:
            result = branch.validate()
            errors.extend(f"Branch {branch.id}: {err}" for err in result.errors)
        return errors

    def reset(self) -> None:
        super().reset()
        self.branch_errors = {}
        for branch in self._branches:
            branch.reset()

    def clone(self) -> ConcurrentNode:
        cloned = ConcurrentNode(
            self.id,
            name=self.name,
            strategy=self.strategy,
            critical_branches=self.critical_branches,
            quota=self.quota,
            max_concurrency=self.max_concurrency,
            metadata=self.metadata,
        )
        cloned._branches = [branch.clone() for branch in self._branches]
        return cloned
