"""Pipeline - run control over a NodeGraph.

Wraps a graph with full-run, single-step and run-until execution,
pause/resume/stop, skip/retry, progress reporting, lifecycle events and
optional checkpointing through a StateManager.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from switchyard.core.context import ContextManager, create_context
from switchyard.core.errors import ControlError, NodeExecutionError, StateIOError
from switchyard.core.events import EventEmitter, PipelineEvent, PipelineEventType
from switchyard.core.graph.edge import DEFAULT_OUTPUT_PORT
from switchyard.core.graph.graph import NodeGraph
from switchyard.core.graph.nodes import Node
from switchyard.core.pipeline.config import PipelineConfig
from switchyard.core.pipeline.gate import PauseGate, StopToken
from switchyard.core.pipeline.state import PipelineState
from switchyard.core.state.manager import StateManager
from switchyard.core.types import NodeKind, NodeStatus, PipelineStatus, StepResult

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
"""Seconds between checks in wait_for_node / wait_for_completion."""

_DONE_STATUSES = (NodeStatus.SUCCESS, NodeStatus.FAILED, NodeStatus.SKIPPED)
_READY_STATUSES = (NodeStatus.PENDING, NodeStatus.CANCELLED)


class Pipeline:
    """Execution controller for a NodeGraph.

    A pipeline owns one PipelineState. Nodes run one at a time; pause and
    stop requests are honoured only between nodes, never interrupting a
    node in flight. The first node failure fails the run.

    Lifecycle:
        1. Created with PENDING status
        2. execute() transitions to RUNNING
        3. Ends as SUCCESS (also when stopped early) or FAILED, or as
           CANCELLED if the task awaiting execute() is cancelled
        4. reset() returns every node to PENDING for another run

    Example:
        >>> pipeline = Pipeline(PipelineConfig(id="etl"), graph)
        >>> state = await pipeline.execute()
        >>> state.status
        <PipelineStatus.SUCCESS: 'success'>
    """

    def __init__(
        self,
        config: PipelineConfig,
        graph: NodeGraph,
        context: ContextManager | None = None,
        events: EventEmitter | None = None,
        state_manager: StateManager | None = None,
        initial_inputs: dict[str, Any] | None = None,
    ) -> None:
        """Create a pipeline.

        Args:
            config: Pipeline settings.
            graph: The graph to drive.
            context: Shared context. A fresh root context when omitted.
            events: Event emitter. A private one when omitted.
            state_manager: Backend for checkpoints (used when
                ``config.persist_state`` is set).
            initial_inputs: Values for the graph's virtual sources.
        """
        self.config = config
        self.graph = graph
        self.context = context if context is not None else create_context()
        self.events = events if events is not None else EventEmitter()
        self.state_manager = state_manager
        self.initial_inputs: dict[str, Any] = dict(initial_inputs or {})

        self._state = PipelineState(id=config.id)
        self._state.node_states = {node.id: NodeStatus.PENDING for node in graph.nodes}
        self._gate = PauseGate()
        self._stop = StopToken()

        logger.debug(
            "pipeline_created: pipeline_id=%s, nodes=%d", config.id, len(graph.nodes)
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def state(self) -> PipelineState:
        """A copy of the current state."""
        return self._state.copy()

    @property
    def status(self) -> PipelineStatus:
        return self._state.status

    @property
    def is_running(self) -> bool:
        return self._state.status is PipelineStatus.RUNNING

    @property
    def is_paused(self) -> bool:
        return self._gate.is_paused

    @property
    def checkpoint_key(self) -> str:
        """State-manager key used for checkpoints."""
        return f"pipeline_{self.config.id}"

    def node_status(self, node_id: str) -> NodeStatus:
        return self._state.node_states.get(node_id, NodeStatus.PENDING)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    async def execute(self) -> PipelineState:
        """Run every remaining node in topological order.

        Nodes that already succeeded or were skipped are not re-run. A node
        whose upstream was skipped is skipped as well.

        Returns:
            A copy of the final state.

        Raises:
            ControlError: If the pipeline is already running.
            NodeExecutionError: On the first node failure.
            StructuralError: If the graph contains a cycle.
            asyncio.CancelledError: If the awaiting task is cancelled (the run ends CANCELLED).
        """
        if self.is_running:
            raise ControlError(f"Pipeline '{self.config.id}' is already running")

        self._stop.reset()
        self._gate.resume()
        self._state.status = PipelineStatus.RUNNING
        self._state.start_time = datetime.now(UTC)
        self._state.end_time = None
        self._state.error = None

        logger.debug("pipeline_started: pipeline_id=%s", self.config.id)
        await self._emit(PipelineEventType.PIPELINE_START)

        try:
            stopped = await self._walk()
        except asyncio.CancelledError:
            self._state.status = PipelineStatus.CANCELLED
            self._state.end_time = datetime.now(UTC)
            self._state.error = "Cancelled"
            logger.debug("pipeline_cancelled: pipeline_id=%s", self.config.id)
            await self._checkpoint_quietly()
            await self._emit(PipelineEventType.PIPELINE_END, {"stopped": False, "cancelled": True})
            raise
        except Exception as e:
            self._state.status = PipelineStatus.FAILED
            self._state.end_time = datetime.now(UTC)
            self._state.error = str(e)
            logger.debug("pipeline_failed: pipeline_id=%s, error=%s", self.config.id, e)
            await self._checkpoint_quietly()
            await self._emit(PipelineEventType.PIPELINE_END, error=e)
            raise

        # A stop is not a failure; PIPELINE_END reports it through "stopped"
        self._state.status = PipelineStatus.SUCCESS
        self._state.end_time = datetime.now(UTC)
        logger.debug(
            "pipeline_completed: pipeline_id=%s, status=%s, duration_ms=%.1f",
            self.config.id,
            self._state.status.value,
            self._state.duration,
        )
        await self.checkpoint()
        await self._emit(
            PipelineEventType.PIPELINE_END,
            {"stopped": stopped, "state": self._state.to_dict()},
        )
        return self.state

    async def _walk(self) -> bool:
        """Walk the topological order. Returns True if stopped early."""
        for node_id in self.graph.topological_sort():
            if self._stop.is_stopped:
                return True
            await self._gate.wait()
            if self._stop.is_stopped:
                return True

            if self.node_status(node_id) in (NodeStatus.SUCCESS, NodeStatus.SKIPPED):
                continue

            skipped = [
                pred
                for pred in self.graph.predecessors(node_id)
                if self.node_status(pred) is NodeStatus.SKIPPED
            ]
            if skipped:
                await self.skip_node(node_id, f"Upstream node '{skipped[0]}' skipped")
                continue

            await self._execute_node(self.graph.get_node(node_id))
        return False

    # ------------------------------------------------------------------
    # Pause / resume / stop
    # ------------------------------------------------------------------

    async def pause(self) -> None:
        """Block the run before its next node. No-op unless running."""
        if not self.is_running or self._gate.is_paused:
            return
        self._gate.pause()
        logger.debug("pipeline_paused: pipeline_id=%s", self.config.id)
        await self._emit(PipelineEventType.PIPELINE_PAUSE)

    async def resume(self) -> None:
        """Release a pause. No-op unless paused."""
        if not self._gate.is_paused:
            return
        self._gate.resume()
        logger.debug("pipeline_resumed: pipeline_id=%s", self.config.id)
        await self._emit(PipelineEventType.PIPELINE_RESUME)

    async def stop(self) -> None:
        """End the run before its next node; releases a pending pause."""
        self._stop.stop()
        self._gate.resume()
        logger.debug("pipeline_stop_requested: pipeline_id=%s", self.config.id)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def get_executable_nodes(self) -> list[Node]:
        """Ready nodes (pending or cancelled) whose predecessors all succeeded, in order."""
        return [
            node
            for node in self.graph.nodes
            if self.node_status(node.id) in _READY_STATUSES
            and all(
                self.node_status(pred) is NodeStatus.SUCCESS
                for pred in self.graph.predecessors(node.id)
            )
        ]

    def get_next_node(self) -> Node | None:
        ready = self.get_executable_nodes()
        return ready[0] if ready else None

    async def next(self) -> StepResult | None:
        """Execute the first ready node. Returns None when nothing is ready."""
        node = self.get_next_node()
        if node is None:
            return None
        result = await self._execute_node(node)
        return StepResult(node_id=node.id, result=result)

    async def step(self, count: int = 1) -> list[StepResult]:
        """Execute up to ``count`` ready nodes, stopping early when none remain."""
        results: list[StepResult] = []
        for _ in range(count):
            step = await self.next()
            if step is None:
                break
            results.append(step)
        return results

    async def execute_until(self, node_id: str) -> dict[str, Any]:
        """Step until ``node_id`` has a recorded result and return it.

        Raises:
            ControlError: If the node is unknown or no executable node remains
                before it is reached.
        """
        if node_id not in self.graph:
            raise ControlError(f"Node '{node_id}' not found")

        while node_id not in self._state.node_results:
            step = await self.next()
            if step is None:
                raise ControlError(f"Cannot reach node '{node_id}': no more executable nodes")
            if step.node_id == node_id:
                return step.result
        return self._state.node_results[node_id]

    async def execute_while(self, predicate: Callable[[PipelineState], bool]) -> PipelineState:
        """Step while ``predicate(state)`` holds and nodes remain ready."""
        while predicate(self._state):
            if await self.next() is None:
                break
        return self.state

    # ------------------------------------------------------------------
    # Node control
    # ------------------------------------------------------------------

    def _require_node(self, node_id: str) -> Node:
        node = self.graph.get_node(node_id)
        if node is None:
            raise ControlError(f"Node '{node_id}' not found")
        return node

    async def skip_node(self, node_id: str, reason: str = "Manually skipped") -> None:
        """Mark a node skipped so no run ever invokes it.

        Raises:
            ControlError: If the node is unknown or running right now.
        """
        node = self._require_node(node_id)
        if self.node_status(node_id) is NodeStatus.RUNNING:
            raise ControlError(f"Cannot skip node '{node_id}' while it is running")
        result = {"skipped": True, "reason": reason}

        node.status = NodeStatus.SKIPPED
        self._state.node_states[node_id] = NodeStatus.SKIPPED
        self._state.node_results[node_id] = result
        self._state.node_errors.pop(node_id, None)

        logger.debug("node_skipped: node_id=%s, reason=%s", node_id, reason)
        await self._checkpoint_quietly()
        await self._emit(PipelineEventType.TASK_FAILED, {"result": result}, node_id=node_id)

    async def retry_node(self, node_id: str) -> dict[str, Any]:
        """Clear a node's recorded outcome and execute it again now.

        Inputs come from the results recorded for its upstream nodes. Works
        regardless of the pipeline's run state.

        Raises:
            ControlError: If the node is unknown.
            NodeExecutionError: If the node fails again.
        """
        node = self._require_node(node_id)

        node.reset()
        self._state.node_states[node_id] = NodeStatus.PENDING
        self._state.node_results.pop(node_id, None)
        self._state.node_errors.pop(node_id, None)

        logger.debug("node_retry: node_id=%s", node_id)
        await self._emit(PipelineEventType.TASK_RETRY, node_id=node_id)
        return await self._execute_node(node)

    # ------------------------------------------------------------------
    # Progress and waiting
    # ------------------------------------------------------------------

    def get_progress(self) -> float:
        """Share of nodes that are success, failed or skipped (0 when empty)."""
        nodes = self.graph.nodes
        if not nodes:
            return 0.0
        done = sum(1 for node in nodes if self.node_status(node.id) in _DONE_STATUSES)
        return done / len(nodes)

    async def wait_for_node(self, node_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Poll until ``node_id`` has a recorded result.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first.
        """

        async def poll() -> dict[str, Any]:
            while node_id not in self._state.node_results:
                await asyncio.sleep(POLL_INTERVAL)
            return self._state.node_results[node_id]

        return await asyncio.wait_for(poll(), timeout)

    async def wait_for_completion(self, timeout: float | None = None) -> PipelineState:
        """Poll until the pipeline leaves RUNNING.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first.
        """

        async def poll() -> PipelineState:
            while self.is_running:
                await asyncio.sleep(POLL_INTERVAL)
            return self.state

        return await asyncio.wait_for(poll(), timeout)

    # ------------------------------------------------------------------
    # Reset and checkpoints
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear node outcomes so the pipeline can run from scratch.

        Raises:
            ControlError: While running.
        """
        if self.is_running:
            raise ControlError(f"Cannot reset pipeline '{self.config.id}' while running")

        self.graph.reset()
        self._state = PipelineState(id=self.config.id)
        self._state.node_states = {node.id: NodeStatus.PENDING for node in self.graph.nodes}
        self._stop.reset()
        self._gate.resume()
        logger.debug("pipeline_reset: pipeline_id=%s", self.config.id)

    @property
    def _persisting(self) -> bool:
        return self.config.persist_state and self.state_manager is not None

    async def checkpoint(self) -> bool:
        """Save the state under ``checkpoint_key``.

        Returns:
            True if a checkpoint was written (persistence enabled).

        Raises:
            StateIOError: If the state cannot be saved.
        """
        if not self._persisting:
            return False
        await self.state_manager.save(self.checkpoint_key, self._state.to_dict())
        logger.debug("pipeline_checkpointed: pipeline_id=%s", self.config.id)
        return True

    async def _checkpoint_quietly(self) -> None:
        # Used on paths that already propagate another error.
        try:
            await self.checkpoint()
        except StateIOError as e:
            logger.warning("checkpoint_failed: pipeline_id=%s, error=%s", self.config.id, e)

    async def restore(self) -> bool:
        """Load the last checkpoint into this pipeline.

        Node statuses and results are re-applied to the graph. A node that
        was running when the checkpoint was taken comes back as pending, and
        so does a pipeline that was running. The next execute() resumes,
        skipping nodes that already succeeded.

        Returns:
            True if a checkpoint existed and was applied.

        Raises:
            ControlError: While running.
            StateIOError: If the checkpoint cannot be read.
        """
        if self.is_running:
            raise ControlError(f"Cannot restore pipeline '{self.config.id}' while running")
        if self.state_manager is None:
            return False

        data = await self.state_manager.load(self.checkpoint_key)
        if data is None:
            return False

        restored = PipelineState.from_dict(data)
        restored.id = self.config.id
        if restored.status is PipelineStatus.RUNNING:
            restored.status = PipelineStatus.PENDING

        self.graph.reset()
        node_states: dict[str, NodeStatus] = {}
        for node in self.graph.nodes:
            status = restored.node_states.get(node.id, NodeStatus.PENDING)
            if status is NodeStatus.RUNNING:
                status = NodeStatus.PENDING
            node.status = status
            node_states[node.id] = status
        restored.node_states = node_states
        restored.node_results = {
            nid: result
            for nid, result in restored.node_results.items()
            if node_states.get(nid) in (NodeStatus.SUCCESS, NodeStatus.SKIPPED)
        }

        self._state = restored
        logger.debug(
            "pipeline_restored: pipeline_id=%s, results=%d",
            self.config.id,
            len(restored.node_results),
        )
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _available_outputs(self) -> dict[str, dict[str, Any]]:
        outputs: dict[str, dict[str, Any]] = {
            source_id: {DEFAULT_OUTPUT_PORT: value}
            for source_id, value in self.initial_inputs.items()
        }
        for node_id, result in self._state.node_results.items():
            if self.node_status(node_id) is NodeStatus.SUCCESS:
                outputs[node_id] = result
        return outputs

    async def _execute_node(self, node: Node) -> dict[str, Any]:
        """Run one node, recording its outcome and emitting events."""
        node_id = node.id
        inputs = await self.graph.collect_inputs(node_id, self._available_outputs())
        concurrent = node.kind is NodeKind.CONCURRENT

        self._state.node_states[node_id] = NodeStatus.RUNNING
        self._state.node_errors.pop(node_id, None)
        await self._emit(PipelineEventType.TASK_START, node_id=node_id)
        if concurrent:
            await self._emit(PipelineEventType.CONCURRENT_START, node_id=node_id)

        try:
            result = await node.execute(self.context, inputs)
        except asyncio.CancelledError:
            self._state.node_states[node_id] = NodeStatus.CANCELLED
            logger.debug("pipeline_node_cancelled: node_id=%s", node_id)
            raise
        except Exception as e:
            self._state.node_states[node_id] = NodeStatus.FAILED
            self._state.node_errors[node_id] = str(e)
            logger.debug("pipeline_node_failed: node_id=%s, error=%s", node_id, e)
            await self._checkpoint_quietly()
            if concurrent:
                await self._emit(
                    PipelineEventType.CONCURRENT_END, {"success": False}, node_id=node_id
                )
            await self._emit(PipelineEventType.TASK_FAILED, error=e, node_id=node_id)
            if isinstance(e, NodeExecutionError) and e.node_id == node_id:
                raise
            raise NodeExecutionError(node_id, e) from e

        self._state.node_states[node_id] = NodeStatus.SUCCESS
        self._state.node_results[node_id] = result
        await self.checkpoint()
        if concurrent:
            await self._emit(PipelineEventType.CONCURRENT_END, {"success": True}, node_id=node_id)
        await self._emit(PipelineEventType.TASK_END, {"result": result}, node_id=node_id)
        return result

    async def _emit(
        self,
        event_type: PipelineEventType,
        data: dict[str, Any] | None = None,
        *,
        node_id: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        await self.events.emit(
            PipelineEvent(
                type=event_type,
                pipeline_id=self.config.id,
                node_id=node_id,
                data=data or {},
                error=error,
            )
        )

    def __repr__(self) -> str:
        return f"Pipeline(id={self.config.id!r}, status={self._state.status.value})"
