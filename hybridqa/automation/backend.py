"""Automation backend interface consumed by the scheduler."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from hybridqa.models.config import ViewportConfig
from hybridqa.models.test_case import AutomationStep
from hybridqa.models.test_result import PerformanceMetrics, StepResult


@runtime_checkable
class AutomationBackend(Protocol):
    """Drives a browser on behalf of the scheduler.

    ``execute_step`` reports failures (including missing ``target``/``value``
    preconditions) as a ``fail`` StepResult rather than raising.
    ``capture_screenshot`` and ``collect_metrics`` raise
    ``BackendUnavailableError`` when the browser was never initialized.
    """

    engine: str
    viewport: ViewportConfig

    async def initialize(self, engine: Optional[str] = None) -> None: ...

    async def execute_step(self, step: AutomationStep, url: str) -> StepResult: ...

    async def capture_screenshot(self, url: str, selector: Optional[str] = None) -> str: ...

    async def collect_metrics(self, url: str) -> PerformanceMetrics: ...

    async def cleanup(self) -> None: ...
