"""Tests for Pipeline run control: stepping, skip/retry, pause/stop, waiting."""

from __future__ import annotations

import asyncio

import pytest

from switchyard.core.errors import ControlError, NodeExecutionError
from switchyard.core.events import PipelineEventType
from switchyard.core.graph import NodeGraph, TaskNode
from switchyard.core.pipeline import Pipeline, PipelineConfig
from switchyard.core.state import MemoryStateManager
from switchyard.core.types import NodeStatus, PipelineStatus, StepResult


def make_pipeline(graph, **kwargs):
    return Pipeline(PipelineConfig(id="ctl"), graph, **kwargs)


def diamond():
    """root -> (left, right), left -> join"""
    graph = NodeGraph()
    graph.add_node(TaskNode("root", executor=lambda x, ctx: 1))
    graph.add_node(TaskNode("left", executor=lambda x, ctx: x + 1))
    graph.add_node(TaskNode("right", executor=lambda x, ctx: x + 2))
    graph.add_node(TaskNode("join", executor=lambda x, ctx: x))
    graph.connect("root", "left")
    graph.connect("root", "right")
    graph.connect("left", "join", target_port="input")
    return graph


class TestStepping:
    """next, step, execute_until, execute_while and the ready set."""

    @pytest.mark.asyncio
    async def test_ready_set_follows_dependencies(self):
        """Only pending nodes with all predecessors succeeded are ready."""
        pipeline = make_pipeline(diamond())
        assert [n.id for n in pipeline.get_executable_nodes()] == ["root"]

        await pipeline.next()
        assert [n.id for n in pipeline.get_executable_nodes()] == ["left", "right"]
        assert pipeline.get_next_node().id == "left"

    @pytest.mark.asyncio
    async def test_next_returns_step_result(self, linear_graph):
        """next() executes one node and returns its outputs."""
        pipeline = make_pipeline(linear_graph)
        assert await pipeline.next() == StepResult(node_id="A", result={"output": 1})
        assert pipeline.state.node_states["B"] is NodeStatus.PENDING

    @pytest.mark.asyncio
    async def test_next_returns_none_when_exhausted(self, linear_graph):
        """Nothing ready means None."""
        pipeline = make_pipeline(linear_graph)
        await pipeline.step(3)
        assert await pipeline.next() is None

    @pytest.mark.asyncio
    async def test_step_stops_early(self, linear_graph):
        """step(count) stops when no node is ready."""
        pipeline = make_pipeline(linear_graph)
        results = await pipeline.step(2)
        assert [r.node_id for r in results] == ["A", "B"]

        results = await pipeline.step(5)
        assert [r.node_id for r in results] == ["C"]
        assert results[0].result == {"output": "2"}

    @pytest.mark.asyncio
    async def test_execute_until(self, linear_graph):
        """execute_until runs up to and including the target."""
        pipeline = make_pipeline(linear_graph)
        assert await pipeline.execute_until("B") == {"output": 2}
        assert pipeline.state.node_states["C"] is NodeStatus.PENDING
        # Already recorded: returned without executing anything.
        assert await pipeline.execute_until("A") == {"output": 1}

    @pytest.mark.asyncio
    async def test_execute_until_unknown_node(self, linear_graph):
        """Unknown targets are a ControlError."""
        with pytest.raises(ControlError, match="not found"):
            await make_pipeline(linear_graph).execute_until("ghost")

    @pytest.mark.asyncio
    async def test_execute_until_unreachable(self, linear_graph):
        """A target that can never become ready exhausts execution."""
        pipeline = make_pipeline(linear_graph)
        await pipeline.skip_node("B")
        with pytest.raises(ControlError, match="no more executable nodes"):
            await pipeline.execute_until("C")

    @pytest.mark.asyncio
    async def test_execute_while(self, linear_graph):
        """execute_while steps while the predicate holds."""
        pipeline = make_pipeline(linear_graph)
        state = await pipeline.execute_while(lambda s: "B" not in s.node_results)
        assert set(state.node_results) == {"A", "B"}

    @pytest.mark.asyncio
    async def test_step_failure_raises(self):
        """A failing step records the failure and raises."""

        def boom(x, ctx):
            raise ValueError("step failed")

        pipeline = make_pipeline(NodeGraph().add_node(TaskNode("bad", executor=boom)))
        with pytest.raises(NodeExecutionError):
            await pipeline.next()
        assert pipeline.state.node_states["bad"] is NodeStatus.FAILED
        assert pipeline.get_next_node() is None


class TestSkipRetry:
    """skip_node and retry_node."""

    @pytest.mark.asyncio
    async def test_skipped_node_never_invoked(self, counter):
        """A skipped node's executor never runs and its result is the skip record."""
        skipped = counter()
        graph = NodeGraph()
        graph.add_node(TaskNode("a", executor=lambda x, ctx: 1))
        graph.add_node(TaskNode("b", executor=skipped))

        pipeline = make_pipeline(graph)
        await pipeline.skip_node("b", "not needed")
        state = await pipeline.execute()

        assert skipped.calls == 0
        assert state.node_results["b"] == {"skipped": True, "reason": "not needed"}
        assert state.node_states["b"] is NodeStatus.SKIPPED
        assert state.status is PipelineStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_skip_default_reason_and_event(self, linear_graph, recorded_events):
        """Skipping emits TASK_FAILED with the skip result."""
        events, received = recorded_events
        pipeline = make_pipeline(linear_graph, events=events)
        await pipeline.skip_node("A")

        assert received[-1].type is PipelineEventType.TASK_FAILED
        assert received[-1].node_id == "A"
        assert received[-1].data["result"] == {"skipped": True, "reason": "Manually skipped"}

    @pytest.mark.asyncio
    async def test_skip_cascades_downstream_in_full_run(self, linear_graph):
        """Nodes below a skipped node are skipped, not run without input."""
        pipeline = make_pipeline(linear_graph)
        await pipeline.skip_node("B")
        state = await pipeline.execute()

        assert state.node_results["A"] == {"output": 1}
        assert state.node_states["C"] is NodeStatus.SKIPPED
        assert state.node_results["C"]["reason"] == "Upstream node 'B' skipped"

    @pytest.mark.asyncio
    async def test_skip_unknown_node(self, linear_graph):
        """Unknown ids are a ControlError without state change."""
        pipeline = make_pipeline(linear_graph)
        with pytest.raises(ControlError):
            await pipeline.skip_node("ghost")
        assert pipeline.state.node_results == {}

    @pytest.mark.asyncio
    async def test_skip_running_node_rejected(self):
        """A node in flight cannot be skipped and finishes normally."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow(x, ctx):
            started.set()
            await release.wait()
            return "done"

        pipeline = make_pipeline(NodeGraph().add_node(TaskNode("slow", executor=slow)))
        run = asyncio.create_task(pipeline.execute())
        await started.wait()

        with pytest.raises(ControlError):
            await pipeline.skip_node("slow")
        release.set()
        state = await run
        assert state.node_states["slow"] is NodeStatus.SUCCESS
        assert state.node_results["slow"] == {"output": "done"}

    @pytest.mark.asyncio
    async def test_retry_invokes_exactly_once_more(self):
        """retry_node re-executes a failed node with recorded inputs."""
        attempts = {"n": 0}

        def flaky(x, ctx):
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise ConnectionError("transient")
            return x * 10

        graph = NodeGraph()
        graph.add_node(TaskNode("src", executor=lambda x, ctx: 4))
        graph.add_node(TaskNode("flaky", executor=flaky))
        graph.connect("src", "flaky")

        pipeline = make_pipeline(graph)
        with pytest.raises(NodeExecutionError):
            await pipeline.execute()
        assert attempts["n"] == 1

        assert await pipeline.retry_node("flaky") == {"output": 40}
        assert attempts["n"] == 2
        state = pipeline.state
        assert state.node_states["flaky"] is NodeStatus.SUCCESS
        assert "flaky" not in state.node_errors

    @pytest.mark.asyncio
    async def test_retry_succeeded_node_and_event(self, linear_graph, recorded_events, counter):
        """Retry works regardless of run state and emits TASK_RETRY."""
        events, received = recorded_events
        again = counter(lambda x, ctx: x * 2)
        linear_graph.get_node("B").executor = again
        pipeline = make_pipeline(linear_graph, events=events)
        await pipeline.execute()

        received.clear()
        assert await pipeline.retry_node("B") == {"output": 2}
        assert again.calls == 2
        assert [e.type for e in received] == [
            PipelineEventType.TASK_RETRY,
            PipelineEventType.TASK_START,
            PipelineEventType.TASK_END,
        ]

    @pytest.mark.asyncio
    async def test_retry_unknown_node(self, linear_graph):
        """Unknown ids are a ControlError."""
        with pytest.raises(ControlError):
            await make_pipeline(linear_graph).retry_node("ghost")


class TestProgressAndReset:
    """get_progress and reset."""

    @pytest.mark.asyncio
    async def test_progress_ratio(self):
        """Success, failed and skipped all count as done."""

        def boom(x, ctx):
            raise ValueError

        graph = NodeGraph()
        graph.add_node(TaskNode("ok", executor=lambda x, ctx: 1))
        graph.add_node(TaskNode("bad", executor=boom))
        graph.add_node(TaskNode("skip", executor=lambda x, ctx: 1))
        graph.add_node(TaskNode("todo", executor=lambda x, ctx: 1))
        graph.connect("bad", "todo")

        pipeline = make_pipeline(graph)
        assert pipeline.get_progress() == 0.0
        await pipeline.next()
        await pipeline.skip_node("skip")
        with pytest.raises(NodeExecutionError):
            await pipeline.next()
        assert pipeline.get_progress() == 0.75

    @pytest.mark.asyncio
    async def test_reset_allows_full_rerun(self, linear_graph, counter):
        """reset clears results and node statuses."""
        first = counter(lambda x, ctx: 1)
        linear_graph.get_node("A").executor = first
        pipeline = make_pipeline(linear_graph)
        await pipeline.execute()

        pipeline.reset()
        assert pipeline.state.node_results == {}
        assert pipeline.status is PipelineStatus.PENDING
        assert all(n.status is NodeStatus.PENDING for n in linear_graph.nodes)

        await pipeline.execute()
        assert first.calls == 2

    @pytest.mark.asyncio
    async def test_reset_while_running(self):
        """reset during a run is a ControlError."""
        release = asyncio.Event()

        async def slow(x, ctx):
            await release.wait()

        pipeline = make_pipeline(NodeGraph().add_node(TaskNode("slow", executor=slow)))
        run = asyncio.create_task(pipeline.execute())
        await asyncio.sleep(0)
        with pytest.raises(ControlError):
            pipeline.reset()
        release.set()
        await run


class TestPauseStop:
    """Cooperative pause, resume and stop."""

    @pytest.mark.asyncio
    async def test_pause_blocks_next_node(self, recorded_events):
        """A pause holds the run between nodes until resumed."""
        events, received = recorded_events
        gate = asyncio.Event()
        pipeline_ref = {}

        async def first(x, ctx):
            await pipeline_ref["p"].pause()
            gate.set()
            return 1

        graph = NodeGraph()
        graph.add_node(TaskNode("first", executor=first))
        graph.add_node(TaskNode("second", executor=lambda x, ctx: x + 1))
        graph.connect("first", "second")
        pipeline = make_pipeline(graph, events=events)
        pipeline_ref["p"] = pipeline

        run = asyncio.create_task(pipeline.execute())
        await gate.wait()
        await asyncio.sleep(0.05)

        assert pipeline.is_paused
        assert pipeline.state.node_states["first"] is NodeStatus.SUCCESS
        assert pipeline.state.node_states["second"] is NodeStatus.PENDING

        await pipeline.resume()
        state = await run
        assert state.status is PipelineStatus.SUCCESS
        types = [e.type for e in received]
        assert PipelineEventType.PIPELINE_PAUSE in types
        assert PipelineEventType.PIPELINE_RESUME in types

    @pytest.mark.asyncio
    async def test_pause_ignored_when_not_running(self, linear_graph, recorded_events):
        """pause() outside a run does nothing and emits nothing."""
        events, received = recorded_events
        pipeline = make_pipeline(linear_graph, events=events)
        await pipeline.pause()
        assert not pipeline.is_paused
        await pipeline.resume()
        assert received == []

    @pytest.mark.asyncio
    async def test_stop_ends_run_between_nodes(self, counter):
        """stop() lets the current node finish and ends the run without failing it."""
        later = counter()
        pipeline_ref = {}

        async def stopper(x, ctx):
            await pipeline_ref["p"].stop()
            return "finished anyway"

        graph = NodeGraph()
        graph.add_node(TaskNode("stopper", executor=stopper))
        graph.add_node(TaskNode("later", executor=later))
        graph.connect("stopper", "later")
        pipeline = make_pipeline(graph)
        pipeline_ref["p"] = pipeline

        state = await pipeline.execute()
        assert state.status is PipelineStatus.SUCCESS
        assert state.node_results["stopper"] == {"output": "finished anyway"}
        assert later.calls == 0
        assert state.node_states["later"] is NodeStatus.PENDING

    @pytest.mark.asyncio
    async def test_stop_releases_pause(self, recorded_events):
        """Stopping a paused run ends it instead of resuming."""
        events, received = recorded_events
        paused = asyncio.Event()
        pipeline_ref = {}

        async def first(x, ctx):
            await pipeline_ref["p"].pause()
            paused.set()
            return 1

        graph = NodeGraph()
        graph.add_node(TaskNode("first", executor=first))
        graph.add_node(TaskNode("second", executor=lambda x, ctx: x))
        graph.connect("first", "second")
        pipeline = make_pipeline(graph, events=events)
        pipeline_ref["p"] = pipeline

        run = asyncio.create_task(pipeline.execute())
        await paused.wait()
        await pipeline.stop()
        state = await run

        assert state.status is PipelineStatus.SUCCESS
        assert state.node_states["second"] is NodeStatus.PENDING
        assert received[-1].type is PipelineEventType.PIPELINE_END
        assert received[-1].data["stopped"] is True

    @pytest.mark.asyncio
    async def test_execute_after_stop_resumes(self, linear_graph):
        """A new execute() clears the stop request and finishes the rest."""
        pipeline = make_pipeline(linear_graph)
        await pipeline.next()
        await pipeline.stop()
        state = await pipeline.execute()
        assert state.status is PipelineStatus.SUCCESS
        assert state.node_results["C"] == {"output": "2"}

    @pytest.mark.asyncio
    async def test_cancelled_run_can_run_again(self, recorded_events):
        """Cancelling execute() ends the run as CANCELLED and a later run finishes it."""
        events, received = recorded_events
        calls = []

        async def slow(x, ctx):
            calls.append(x)
            if len(calls) == 1:
                await asyncio.sleep(10)
            return "done"

        graph = NodeGraph()
        graph.add_node(TaskNode("fast", executor=lambda x, ctx: 1))
        graph.add_node(TaskNode("slow", executor=slow))
        graph.connect("fast", "slow")
        pipeline = make_pipeline(graph, events=events)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(pipeline.execute(), 0.05)

        assert pipeline.status is PipelineStatus.CANCELLED
        assert pipeline.state.end_time is not None
        assert pipeline.state.node_states["fast"] is NodeStatus.SUCCESS
        assert pipeline.state.node_states["slow"] is NodeStatus.CANCELLED
        assert graph.get_node("slow").status is NodeStatus.CANCELLED
        assert received[-1].type is PipelineEventType.PIPELINE_END
        assert received[-1].data["cancelled"] is True

        state = await pipeline.execute()
        assert state.status is PipelineStatus.SUCCESS
        assert state.node_results["slow"] == {"output": "done"}
        assert calls == [1, 1]


class TestWaiting:
    """wait_for_node and wait_for_completion."""

    @pytest.mark.asyncio
    async def test_wait_for_node_and_completion(self, linear_graph):
        """Waiters return once the result exists / the run ends."""
        pipeline = make_pipeline(linear_graph)
        run = asyncio.create_task(pipeline.execute())

        assert await pipeline.wait_for_node("C", timeout=2) == {"output": "2"}
        state = await pipeline.wait_for_completion(timeout=2)
        assert state.status is PipelineStatus.SUCCESS
        await run

    @pytest.mark.asyncio
    async def test_wait_for_node_timeout(self, linear_graph):
        """A node that never completes times out."""
        with pytest.raises(TimeoutError):
            await make_pipeline(linear_graph).wait_for_node("C", timeout=0.2)

    @pytest.mark.asyncio
    async def test_wait_for_completion_timeout(self):
        """A run that never leaves RUNNING times out."""
        release = asyncio.Event()

        async def slow(x, ctx):
            await release.wait()

        pipeline = make_pipeline(NodeGraph().add_node(TaskNode("slow", executor=slow)))
        run = asyncio.create_task(pipeline.execute())
        await asyncio.sleep(0)
        with pytest.raises(TimeoutError):
            await pipeline.wait_for_completion(timeout=0.2)
        release.set()
        await run


class TestCheckpoints:
    """checkpoint and restore through a StateManager."""

    @pytest.mark.asyncio
    async def test_checkpoint_written_after_nodes(self, linear_graph):
        """With persist_state, the state is saved under pipeline_<id>."""
        states = MemoryStateManager()
        pipeline = Pipeline(
            PipelineConfig(id="etl", persist_state=True), linear_graph, state_manager=states
        )
        await pipeline.execute()

        saved = await states.load("pipeline_etl")
        assert saved["status"] == "success"
        assert saved["nodeResults"]["C"] == {"output": "2"}

    @pytest.mark.asyncio
    async def test_no_checkpoint_without_persist_state(self, linear_graph):
        """persist_state=False never touches the state manager."""
        states = MemoryStateManager()
        pipeline = make_pipeline(linear_graph, state_manager=states)
        await pipeline.execute()
        assert await pipeline.checkpoint() is False
        assert states.size() == 0

    @pytest.mark.asyncio
    async def test_restore_resumes_after_interruption(self, counter):
        """A restored pipeline skips nodes that already succeeded."""
        states = MemoryStateManager()
        config = PipelineConfig(id="resume", persist_state=True)

        def build(first, second):
            graph = NodeGraph()
            graph.add_node(TaskNode("first", executor=first))
            graph.add_node(TaskNode("second", executor=second))
            graph.connect("first", "second")
            return graph

        original = Pipeline(
            config,
            build(lambda x, ctx: 5, lambda x, ctx: x),
            state_manager=states,
        )
        await original.next()

        first, second = counter(lambda x, ctx: 5), counter(lambda x, ctx: x + 1)
        resumed = Pipeline(config, build(first, second), state_manager=states)
        assert await resumed.restore() is True
        assert resumed.graph.get_node("first").status is NodeStatus.SUCCESS

        state = await resumed.execute()
        assert first.calls == 0
        assert second.calls == 1
        assert state.node_results["second"] == {"output": 6}

    @pytest.mark.asyncio
    async def test_restore_running_node_as_pending(self):
        """A node captured mid-run comes back pending."""
        states = MemoryStateManager()
        await states.save(
            "pipeline_p",
            {
                "id": "p",
                "status": "running",
                "nodeStates": {"a": "running"},
                "nodeResults": {},
                "nodeErrors": {},
            },
        )
        pipeline = Pipeline(
            PipelineConfig(id="p", persist_state=True),
            NodeGraph().add_node(TaskNode("a", executor=lambda x, ctx: 1)),
            state_manager=states,
        )
        assert await pipeline.restore() is True
        assert pipeline.status is PipelineStatus.PENDING
        assert pipeline.node_status("a") is NodeStatus.PENDING

    @pytest.mark.asyncio
    async def test_restore_without_checkpoint(self, linear_graph):
        """No stored checkpoint means nothing to restore."""
        pipeline = make_pipeline(linear_graph, state_manager=MemoryStateManager())
        assert await pipeline.restore() is False
