"""PipelineConfig - declarative pipeline settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from switchyard.core.types import FailureStrategy

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Pipeline settings.

    ``max_concurrency``, ``timeout``, ``failure_strategy`` and
    ``auto_retry`` are recorded and persisted but advisory: the execution
    loop always runs one node at a time, fails fast, enforces no timeout and
    never retries on its own.

    Attributes:
        id: Unique pipeline identifier (required).
        name: Human-readable name. Defaults to the id.
        description: What this pipeline does.
        max_concurrency: Advisory concurrency cap.
        timeout: Advisory overall timeout in seconds.
        failure_strategy: Declared failure handling.
        auto_retry: Declared auto-retry preference.
        persist_state: Checkpoint state through the pipeline's StateManager.
    """

    id: str
    name: str = ""
    description: str = ""
    max_concurrency: int | None = None
    timeout: float | None = None
    failure_strategy: FailureStrategy = FailureStrategy.FAIL_FAST
    auto_retry: bool = False
    persist_state: bool = False

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("Pipeline id is required")
        if not self.name:
            self.name = self.id
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

        self.failure_strategy = FailureStrategy(self.failure_strategy)
        if self.failure_strategy is not FailureStrategy.FAIL_FAST:
            logger.warning(
                "failure_strategy_not_enforced: pipeline_id=%s, strategy=%s",
                self.id,
                self.failure_strategy.value,
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "maxConcurrency": self.max_concurrency,
            "timeout": self.timeout,
            "failureStrategy": self.failure_strategy.value,
            "autoRetry": self.auto_retry,
            "persistState": self.persist_state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        """Create from a dict (accepts camelCase or snake_case keys)."""

        def pick(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            max_concurrency=pick("max_concurrency", "maxConcurrency"),
            timeout=data.get("timeout"),
            failure_strategy=FailureStrategy(
                pick("failure_strategy", "failureStrategy", FailureStrategy.FAIL_FAST.value)
            ),
            auto_retry=bool(pick("auto_retry", "autoRetry", False)),
            persist_state=bool(pick("persist_state", "persistState", False)),
        )
