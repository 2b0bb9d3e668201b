"""Pipeline - run control, configuration and state.

Classes:
    Pipeline: Drives a NodeGraph with run/step/pause/skip/retry control.
    PipelineConfig: Declarative settings.
    PipelineState: The run record.
    PauseGate, StopToken: Cooperative pause and stop signals.
"""

from switchyard.core.pipeline.config import PipelineConfig
from switchyard.core.pipeline.gate import PauseGate, StopToken
from switchyard.core.pipeline.pipeline import POLL_INTERVAL, Pipeline
from switchyard.core.pipeline.state import PipelineState

__all__ = [
    "POLL_INTERVAL",
    "PauseGate",
    "Pipeline",
    "PipelineConfig",
    "PipelineState",
    "StopToken",
]
