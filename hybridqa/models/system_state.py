"""The orchestrator's root aggregate, persisted wholesale as one snapshot."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field, model_serializer

from hybridqa.models.base import WireModel
from hybridqa.models.config import ConcurrencyConfig, ExecutionConfig
from hybridqa.models.test_case import TestCase
from hybridqa.models.test_result import Screenshot, TestAnalytics, TestHistory, TestResult

Phase = Literal["setup", "running", "analysis", "cleanup"]


class TestQueue(WireModel):
    pending: list[TestCase] = Field(default_factory=list)
    running: list[TestCase] = Field(default_factory=list)
    completed: list[TestCase] = Field(default_factory=list)
    failed: list[TestCase] = Field(default_factory=list)

    def locate(self, test_id: str) -> list[str]:
        """Names of the lists currently holding ``test_id``."""
        return [
            name for name in ("pending", "running", "completed", "failed")
            if any(t.id == test_id for t in getattr(self, name))
        ]


class TestRunner(WireModel):
    queue: TestQueue = Field(default_factory=TestQueue)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)


class CurrentState(WireModel):
    phase: Phase = "setup"
    test: Optional[TestCase] = None
    screenshots: list[Screenshot] = Field(default_factory=list)
    results: list[TestResult] = Field(default_factory=list)

    @model_serializer(mode="wrap")
    def _keep_idle_test(self, handler) -> dict[str, Any]:
        # An idle slot is reported as an explicit null, not an absent key.
        data = handler(self)
        if isinstance(data, dict):
            data.setdefault("test", None)
        return data


class History(WireModel):
    tests: list[TestHistory] = Field(default_factory=list)
    analytics: TestAnalytics = Field(default_factory=TestAnalytics)


class RunState(WireModel):
    current: CurrentState = Field(default_factory=CurrentState)
    history: History = Field(default_factory=History)


class OrchestratorState(WireModel):
    test_runner: TestRunner = Field(default_factory=TestRunner)
    state: RunState = Field(default_factory=RunState)


class TestingSystem(WireModel):
    """Snapshot root: ``{"orchestrator": {"testRunner": ..., "state": ...}}``."""

    orchestrator: OrchestratorState = Field(default_factory=OrchestratorState)

    @classmethod
    def fresh(
        cls,
        concurrency: ConcurrencyConfig | None = None,
        execution: ExecutionConfig | None = None,
    ) -> "TestingSystem":
        system = cls()
        if concurrency is not None:
            system.orchestrator.test_runner.concurrency = concurrency.model_copy(deep=True)
        if execution is not None:
            system.orchestrator.test_runner.execution = execution.model_copy(deep=True)
        return system

    # Shortcuts used throughout the scheduler
    @property
    def queue(self) -> TestQueue:
        return self.orchestrator.test_runner.queue

    @property
    def current(self) -> CurrentState:
        return self.orchestrator.state.current

    @property
    def history(self) -> History:
        return self.orchestrator.state.history

    @property
    def analytics(self) -> TestAnalytics:
        return self.orchestrator.state.history.analytics
