"""Tests for Pipeline full runs, events and failure handling."""

from __future__ import annotations

import asyncio

import pytest

from switchyard.core.errors import ControlError, NodeExecutionError
from switchyard.core.events import PipelineEventType
from switchyard.core.graph import ConcurrentNode, Edge, GroupNode, NodeGraph, TaskNode
from switchyard.core.pipeline import Pipeline, PipelineConfig
from switchyard.core.types import ConcurrencyStrategy, NodeStatus, PipelineStatus


def make_pipeline(graph, **kwargs):
    return Pipeline(PipelineConfig(id="test"), graph, **kwargs)


class TestPipelineExecute:
    """Full runs through execute()."""

    @pytest.mark.asyncio
    async def test_linear_run_succeeds(self, linear_graph):
        """Every node succeeds and results are recorded."""
        pipeline = make_pipeline(linear_graph)
        state = await pipeline.execute()

        assert state.status is PipelineStatus.SUCCESS
        assert state.node_results == {
            "A": {"output": 1},
            "B": {"output": 2},
            "C": {"output": "2"},
        }
        assert set(state.node_states.values()) == {NodeStatus.SUCCESS}
        assert state.start_time is not None
        assert state.end_time >= state.start_time
        assert state.duration >= 0
        assert pipeline.get_progress() == 1.0

    @pytest.mark.asyncio
    async def test_execute_returns_a_copy(self, linear_graph):
        """Mutating the returned state does not affect the pipeline."""
        pipeline = make_pipeline(linear_graph)
        state = await pipeline.execute()
        state.node_results.clear()
        assert "C" in pipeline.state.node_results

    @pytest.mark.asyncio
    async def test_initial_inputs(self):
        """Initial inputs reach nodes wired to virtual sources."""
        graph = NodeGraph().add_source("seed")
        graph.add_node(TaskNode("square", executor=lambda x, ctx: x * x))
        graph.connect("seed", "square")

        pipeline = make_pipeline(graph, initial_inputs={"seed": 7})
        state = await pipeline.execute()
        assert state.node_results["square"] == {"output": 49}

    @pytest.mark.asyncio
    async def test_shared_context(self, context):
        """Nodes read and write the pipeline's context."""
        context.set("factor", 3)
        graph = NodeGraph()
        graph.add_node(TaskNode("scale", executor=lambda _, ctx: ctx.get("factor") * 2))
        pipeline = make_pipeline(graph, context=context)
        state = await pipeline.execute()
        assert state.node_results["scale"] == {"output": 6}
        assert pipeline.context is context

    @pytest.mark.asyncio
    async def test_empty_graph(self):
        """An empty graph succeeds with zero progress."""
        pipeline = make_pipeline(NodeGraph())
        state = await pipeline.execute()
        assert state.status is PipelineStatus.SUCCESS
        assert pipeline.get_progress() == 0.0

    @pytest.mark.asyncio
    async def test_succeeded_nodes_are_not_rerun(self, counter):
        """A second execute() skips nodes that already succeeded."""
        first = counter(lambda x, ctx: 1)
        second = counter(lambda x, ctx: x + 1)
        graph = NodeGraph()
        graph.add_node(TaskNode("a", executor=first))
        graph.add_node(TaskNode("b", executor=second))
        graph.connect("a", "b")

        pipeline = make_pipeline(graph)
        await pipeline.step()
        state = await pipeline.execute()

        assert first.calls == 1
        assert second.calls == 1
        assert state.node_results["b"] == {"output": 2}


class TestPipelineFailure:
    """Fail-fast behavior."""

    @pytest.mark.asyncio
    async def test_failure_marks_failed_and_reraises(self, counter):
        """The first failure fails the run and later nodes never start."""

        def boom(x, ctx):
            raise ValueError("bad data")

        after = counter()
        graph = NodeGraph()
        graph.add_node(TaskNode("ok", executor=lambda x, ctx: 1))
        graph.add_node(TaskNode("bad", executor=boom))
        graph.add_node(TaskNode("after", executor=after))
        graph.connect("ok", "bad")
        graph.connect("bad", "after")

        pipeline = make_pipeline(graph)
        with pytest.raises(NodeExecutionError) as exc_info:
            await pipeline.execute()

        assert exc_info.value.node_id == "bad"
        assert isinstance(exc_info.value.cause, ValueError)
        state = pipeline.state
        assert state.status is PipelineStatus.FAILED
        assert state.node_states["bad"] is NodeStatus.FAILED
        assert state.node_states["after"] is NodeStatus.PENDING
        assert "bad data" in state.node_errors["bad"]
        assert "bad data" in state.error
        assert "bad" not in state.node_results
        assert after.calls == 0

    @pytest.mark.asyncio
    async def test_failure_emits_pipeline_end_with_error(self, recorded_events):
        """PIPELINE_END carries the error on failure."""
        events, received = recorded_events

        def boom(x, ctx):
            raise RuntimeError("nope")

        graph = NodeGraph().add_node(TaskNode("bad", executor=boom))
        pipeline = make_pipeline(graph, events=events)
        with pytest.raises(NodeExecutionError):
            await pipeline.execute()

        types = [e.type for e in received]
        assert types == [
            PipelineEventType.PIPELINE_START,
            PipelineEventType.TASK_START,
            PipelineEventType.TASK_FAILED,
            PipelineEventType.PIPELINE_END,
        ]
        assert isinstance(received[2].error, RuntimeError)
        assert isinstance(received[-1].error, NodeExecutionError)

    @pytest.mark.asyncio
    async def test_cycle_fails_run(self):
        """A cyclic graph fails at the start of the walk."""
        graph = NodeGraph()
        graph.add_node(TaskNode("a", executor=lambda x, ctx: x))
        graph.add_node(TaskNode("b", executor=lambda x, ctx: x))
        graph.add_edge(Edge("ab", "a", "b"))
        graph.add_edge(Edge("ba", "b", "a"))

        pipeline = make_pipeline(graph)
        with pytest.raises(Exception, match="cycles"):
            await pipeline.execute()
        assert pipeline.status is PipelineStatus.FAILED

    @pytest.mark.asyncio
    async def test_reentrant_execute_raises_without_mutation(self):
        """execute() while running is a ControlError and changes nothing."""
        release = asyncio.Event()

        async def slow(x, ctx):
            await release.wait()
            return "done"

        graph = NodeGraph().add_node(TaskNode("slow", executor=slow))
        pipeline = make_pipeline(graph)
        run = asyncio.create_task(pipeline.execute())
        await asyncio.sleep(0)

        before = pipeline.state
        with pytest.raises(ControlError, match="already running"):
            await pipeline.execute()
        after = pipeline.state
        assert after.status is PipelineStatus.RUNNING
        assert after.start_time == before.start_time
        assert after.node_states == before.node_states

        release.set()
        assert (await run).status is PipelineStatus.SUCCESS


class TestPipelineEvents:
    """Lifecycle events."""

    @pytest.mark.asyncio
    async def test_event_sequence(self, linear_graph, recorded_events):
        """Start, per-node start/end, then end."""
        events, received = recorded_events
        pipeline = make_pipeline(linear_graph, events=events)
        await pipeline.execute()

        assert [(e.type, e.node_id) for e in received] == [
            (PipelineEventType.PIPELINE_START, None),
            (PipelineEventType.TASK_START, "A"),
            (PipelineEventType.TASK_END, "A"),
            (PipelineEventType.TASK_START, "B"),
            (PipelineEventType.TASK_END, "B"),
            (PipelineEventType.TASK_START, "C"),
            (PipelineEventType.TASK_END, "C"),
            (PipelineEventType.PIPELINE_END, None),
        ]
        assert received[2].data["result"] == {"output": 1}
        assert received[-1].data["stopped"] is False
        assert all(e.pipeline_id == "test" for e in received)

    @pytest.mark.asyncio
    async def test_concurrent_node_is_bracketed(self, recorded_events):
        """Concurrent nodes also emit CONCURRENT_START / CONCURRENT_END."""
        events, received = recorded_events
        branch = GroupNode("branch")
        branch.add_child(TaskNode("work", executor=lambda x, ctx: "ok"))
        fan = ConcurrentNode("fan", strategy=ConcurrencyStrategy.ALL_SUCCESS).add_branch(branch)
        pipeline = make_pipeline(NodeGraph().add_node(fan), events=events)

        await pipeline.execute()

        node_events = [e.type for e in received if e.node_id == "fan"]
        assert node_events == [
            PipelineEventType.TASK_START,
            PipelineEventType.CONCURRENT_START,
            PipelineEventType.CONCURRENT_END,
            PipelineEventType.TASK_END,
        ]
        assert pipeline.state.node_results["fan"] == {"output": [{"work": {"output": "ok"}}]}
