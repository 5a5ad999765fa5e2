"""Pytest configuration and shared fixtures."""

import asyncio
import base64
import inspect
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from playwright.async_api import BrowserContext, Page

from hybridqa.errors import BackendUnavailableError
from hybridqa.models.config import (
    ExecutionConfig,
    OrchestratorConfig,
    RetryConfig,
    ViewportConfig,
)
from hybridqa.models.system_state import TestingSystem
from hybridqa.models.test_case import TestCase as TestCaseModel
from hybridqa.models.test_case import TestCaseCreate
from hybridqa.models.test_result import (
    ComparisonResult,
    NetworkStats,
    NetworkTiming,
    PagePerformance,
    PerformanceMetrics,
    StepResult,
    VisualAnalysis,
    VisualScores,
)
from hybridqa.scheduler.scheduler import QueueScheduler
from hybridqa.state.store import StateStore

PNG_B64 = base64.b64encode(b"\x89PNG fake image bytes").decode("ascii")


# ============================================================================
# Fake backends
# ============================================================================


class FakeAutomation:
    """In-memory automation backend.

    Steps pass unless their target is listed in ``missing_selectors``.
    """

    def __init__(self):
        self.engine = "chromium"
        self.viewport = ViewportConfig()
        self.initialized = False
        self.cleaned_up = False
        self.unavailable = False
        self.calls: list[tuple[str, str]] = []
        self.missing_selectors: set[str] = set()
        self.step_hook: Optional[Callable[[Any, str], Any]] = None
        self.step_delay = 0.0
        self.screenshots_taken = 0
        self.metrics = PerformanceMetrics(
            performance=PagePerformance(fcp=120.5, lcp=340.0, cls=0.01),
            network=NetworkStats(requests=12, timing=NetworkTiming(dns=3, tcp=5, ttfb=40)),
        )
        self.metrics_delay = 0.0
        self.metrics_error: Optional[Exception] = None

    async def initialize(self, engine: Optional[str] = None) -> None:
        self.initialized = True
        if engine:
            self.engine = engine

    async def execute_step(self, step, url: str) -> StepResult:
        if self.unavailable:
            raise BackendUnavailableError("Browser not initialized")
        self.calls.append((url, step.action))
        if self.step_hook is not None:
            outcome = self.step_hook(step, url)
            if inspect.isawaitable(outcome):
                await outcome
        if self.step_delay:
            await asyncio.sleep(self.step_delay)
        if step.target in self.missing_selectors:
            return StepResult(
                status="fail", action=step.action, duration=1,
                error=f"Timeout 10000ms exceeded waiting for selector \"{step.target}\"",
            )
        return StepResult(status="pass", action=step.action, duration=1)

    async def capture_screenshot(self, url: str, selector: Optional[str] = None) -> str:
        self.screenshots_taken += 1
        return PNG_B64

    async def collect_metrics(self, url: str) -> PerformanceMetrics:
        if self.metrics_delay:
            await asyncio.sleep(self.metrics_delay)
        if self.metrics_error is not None:
            raise self.metrics_error
        return self.metrics

    async def cleanup(self) -> None:
        self.cleaned_up = True


class FakeOracle:
    """In-memory visual oracle with scripted analyses."""

    def __init__(self):
        self.analysis = VisualAnalysis(
            observations=["Header is visible"],
            metrics=VisualScores(accessibility=80, design_consistency=70, layout_accuracy=90),
        )
        self.queued_analyses: list[VisualAnalysis] = []
        self.analyze_errors: list[Exception] = []
        self.analyze_calls = 0
        self.analyze_hook: Optional[Callable[[], Any]] = None
        self.comparison = ComparisonResult(matches=True)
        self.compare_calls: list[tuple[str, str, float]] = []
        self.stored: list[tuple[str, str]] = []
        self.evictions: list[float] = []
        self.initialized = False
        self.cleaned_up = False

    async def initialize(self) -> None:
        self.initialized = True

    async def store_screenshot(self, data: str, owner_id: str) -> str:
        self.stored.append((owner_id, data))
        return f"/shots/{owner_id}_{len(self.stored)}.png"

    async def analyze(self, screenshot, instructions, expectations) -> VisualAnalysis:
        self.analyze_calls += 1
        if self.analyze_hook is not None:
            outcome = self.analyze_hook()
            if inspect.isawaitable(outcome):
                await outcome
        if self.analyze_errors:
            raise self.analyze_errors.pop(0)
        if self.queued_analyses:
            return self.queued_analyses.pop(0)
        return self.analysis.model_copy(deep=True)

    async def compare(self, baseline: str, current: str, tolerance: float) -> ComparisonResult:
        self.compare_calls.append((baseline, current, tolerance))
        return self.comparison

    async def evict_stale(self, max_age_seconds: float) -> int:
        self.evictions.append(max_age_seconds)
        return 0

    async def cleanup(self) -> None:
        self.cleaned_up = True


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def config(tmp_path: Path) -> OrchestratorConfig:
    """Orchestrator config writing into a temp dir, with instant retries."""
    return OrchestratorConfig(
        state_file=str(tmp_path / "test-state.json"),
        screenshot_dir=str(tmp_path / "screenshots"),
        settle_ms=0,
        execution=ExecutionConfig(retries=RetryConfig(count=2, base_delay_ms=0)),
    )


@pytest.fixture
def store(config: OrchestratorConfig) -> StateStore:
    return StateStore(config.state_file)


# ============================================================================
# Test Definition Fixtures
# ============================================================================


@pytest.fixture
def test_payload() -> dict[str, Any]:
    """Raw camelCase body of POST /test."""
    return {
        "name": "Login form",
        "description": "Checks the login form renders and accepts input",
        "target": {"url": "https://example.com/login"},
        "visual": {
            "instructions": "Check the login form layout",
            "expectations": {
                "layout": ["Form is centered"],
                "design": ["Primary button uses brand color"],
                "accessibility": ["Inputs have labels"],
            },
        },
        "automation": {
            "steps": [
                {"action": "click", "target": "#email"},
                {"action": "type", "target": "#email", "value": "user@example.com"},
            ],
            "assertions": {"visual": False, "functional": True, "performance": False},
        },
    }


@pytest.fixture
def make_test(test_payload: dict[str, Any]) -> Callable[..., TestCaseModel]:
    """Factory for queued tests; keyword arguments override parts of the payload."""

    def _make(
        test_id: Optional[str] = None,
        url: str = "https://example.com/login",
        steps: Optional[list[dict]] = None,
        visual: bool = False,
        performance: bool = False,
        baseline: str = "",
        name: str = "Login form",
    ) -> TestCaseModel:
        data = {**test_payload, "name": name, "target": {"url": url}}
        data["automation"] = {
            "steps": steps if steps is not None else test_payload["automation"]["steps"],
            "assertions": {"visual": visual, "functional": True, "performance": performance},
        }
        if baseline:
            data["visual"] = {**test_payload["visual"],
                              "screenshots": {"baseline": baseline, "tolerance": 0.05}}
        return TestCaseCreate.model_validate(data).with_id(test_id)

    return _make


# ============================================================================
# Scheduler Fixtures
# ============================================================================


@pytest.fixture
def automation() -> FakeAutomation:
    return FakeAutomation()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def scheduler(
    config: OrchestratorConfig, store: StateStore,
    automation: FakeAutomation, oracle: FakeOracle,
) -> QueueScheduler:
    snapshot = TestingSystem.fresh(config.concurrency, config.execution)
    return QueueScheduler(snapshot, store, automation, oracle)


# ============================================================================
# Mock Playwright Fixtures
# ============================================================================


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock(spec=Page)
    page.url = "https://example.com"
    page.screenshot = AsyncMock(return_value=b"\x89PNG page")
    page.goto = AsyncMock()
    page.click = AsyncMock()
    page.type = AsyncMock()
    page.hover = AsyncMock()
    page.evaluate = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.keyboard = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.on = Mock()
    locator = MagicMock()
    locator.first.scroll_into_view_if_needed = AsyncMock()
    locator.first.screenshot = AsyncMock(return_value=b"\x89PNG element")
    page.locator = Mock(return_value=locator)
    return page


@pytest.fixture
def mock_context(mock_page: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser context serving ``mock_page``."""
    context = AsyncMock(spec=BrowserContext)
    context.new_page = AsyncMock(return_value=mock_page)
    context.close = AsyncMock()
    return context
