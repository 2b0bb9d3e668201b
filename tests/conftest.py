"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from switchyard.core.context import ContextManager, create_context
from switchyard.core.events import EventEmitter, PipelineEvent
from switchyard.core.graph import NodeGraph, TaskNode


class CallCounter:
    """Wraps an executor and counts how often it was invoked."""

    def __init__(self, fn=None):
        self.fn = fn or (lambda x, ctx: x)
        self.calls = 0

    def __call__(self, value, ctx):
        self.calls += 1
        return self.fn(value, ctx)


def build_linear_graph() -> NodeGraph:
    """A -> B -> C where A yields 1, B doubles, C stringifies."""
    graph = NodeGraph()
    graph.add_node(TaskNode("A", executor=lambda _, ctx: 1))
    graph.add_node(TaskNode("B", executor=lambda x, ctx: x * 2))
    graph.add_node(TaskNode("C", executor=lambda x, ctx: str(x)))
    graph.connect("A", "B")
    graph.connect("B", "C")
    return graph


@pytest.fixture
def context() -> ContextManager:
    """Fresh root context."""
    return create_context()


@pytest.fixture
def linear_graph() -> NodeGraph:
    """A -> B -> C graph producing {'C': {'output': '2'}}."""
    return build_linear_graph()


@pytest.fixture
def recorded_events():
    """EventEmitter plus the list every emitted event is appended to."""
    events = EventEmitter()
    received: list[PipelineEvent] = []
    events.on_any(received.append)
    return events, received


@pytest.fixture
def counter():
    """Factory for CallCounter executors."""
    return CallCounter
