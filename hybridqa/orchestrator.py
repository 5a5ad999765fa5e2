"""Test orchestrator composing the state store, backends, scheduler and message bus."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from hybridqa.ai.client import AIClient, set_debug_dir
from hybridqa.automation.backend import AutomationBackend
from hybridqa.automation.playwright_backend import PlaywrightAutomation
from hybridqa.errors import PersistenceError
from hybridqa.messaging.bus import MessageBus
from hybridqa.models.config import OrchestratorConfig
from hybridqa.models.messages import SystemMessage
from hybridqa.models.system_state import TestingSystem
from hybridqa.models.test_case import TestCase
from hybridqa.models.test_result import Screenshot
from hybridqa.scheduler.scheduler import QueueScheduler
from hybridqa.state.store import StateStore
from hybridqa.visual.claude_oracle import ClaudeVisualOracle
from hybridqa.visual.oracle import VisualOracle

logger = logging.getLogger(__name__)


class Orchestrator:
    """Facade over the test queue: queue tests, inspect state, broadcast."""

    def __init__(
        self,
        config: OrchestratorConfig,
        automation: AutomationBackend | None = None,
        oracle: VisualOracle | None = None,
        store: StateStore | None = None,
        bus: MessageBus | None = None,
    ):
        self.config = config
        self.store = store or StateStore(config.state_file)
        self.bus = bus or MessageBus()
        self.automation = automation or PlaywrightAutomation(config)
        self.oracle = oracle or self._build_default_oracle(config)
        self.scheduler = QueueScheduler(
            self._fresh_snapshot(), self.store, self.automation, self.oracle, self.bus,
        )
        self._initialized = False

    @staticmethod
    def _build_default_oracle(config: OrchestratorConfig) -> ClaudeVisualOracle:
        set_debug_dir(Path(config.state_file).resolve().parent / ".hybridqa" / "debug")
        # The orchestrator still runs without AI; visual assertions then error out
        ai_client: AIClient | None = None
        try:
            ai_client = AIClient(model=config.ai_model, max_tokens=config.ai_max_tokens)
        except EnvironmentError as e:
            logger.warning("AI client unavailable: %s", e)
        return ClaudeVisualOracle(
            config.screenshot_dir, ai_client=ai_client,
            retention_seconds=config.retention_seconds,
        )

    def _fresh_snapshot(self) -> TestingSystem:
        return TestingSystem.fresh(self.config.concurrency, self.config.execution)

    @property
    def snapshot(self) -> TestingSystem:
        return self.scheduler.snapshot

    async def initialize(self) -> None:
        """Start backends, load persisted state and resume any pending work."""
        await self.automation.initialize(self.config.browser)
        await self.oracle.initialize()
        await self.load_state()

        concurrency = self.snapshot.orchestrator.test_runner.concurrency
        if concurrency.max_parallel > 1 or concurrency.per_browser > 1:
            logger.warning(
                "Concurrency settings (max_parallel=%d, per_browser=%d) are reserved; "
                "tests run one at a time",
                concurrency.max_parallel, concurrency.per_browser,
            )

        requeued = await self.scheduler.recover_interrupted()
        if requeued or self.snapshot.queue.pending:
            logger.info("Resuming %d pending test(s)", len(self.snapshot.queue.pending))
            self.scheduler.kick()
        self._initialized = True

    async def load_state(self) -> None:
        """Load the stored snapshot, writing a fresh one when none is usable."""
        try:
            snapshot = await asyncio.to_thread(self.store.load)
        except PersistenceError as e:
            logger.error("%s; starting from a fresh state", e)
            snapshot = None

        if snapshot is None:
            logger.info("No existing state found, using initial state")
            snapshot = self._fresh_snapshot()
        else:
            runner = snapshot.orchestrator.test_runner
            runner.concurrency = self.config.concurrency.model_copy(deep=True)
            runner.execution = self.config.execution.model_copy(deep=True)
            logger.info("Loaded state from %s (%d pending, %d completed, %d failed)",
                        self.store.path, len(snapshot.queue.pending),
                        len(snapshot.queue.completed), len(snapshot.queue.failed))

        self.scheduler.snapshot = snapshot
        await asyncio.to_thread(self.store.save, snapshot)

    async def queue_test(self, test: TestCase) -> None:
        await self.scheduler.enqueue(test)

    async def get_state(self) -> TestingSystem:
        return self.snapshot

    async def add_screenshot(self, screenshot: Screenshot) -> None:
        await self.scheduler.add_screenshot(screenshot)

    async def broadcast_message(self, message: SystemMessage) -> None:
        await self.bus.publish(message)

    async def wait_until_idle(self) -> None:
        await self.scheduler.wait_idle()

    async def evict_stale_screenshots(self) -> int:
        """Delete stale screenshot files and drop their records from the snapshot."""
        removed = await self.oracle.evict_stale(self.config.retention_seconds)
        await self.scheduler.evict_screenshots(self.config.retention_seconds)
        return removed

    async def cleanup(self) -> None:
        """Stop the queue and release browser and screenshot resources."""
        await self.scheduler.shutdown()
        try:
            await self.automation.cleanup()
        finally:
            await self.oracle.cleanup()
        logger.info("Orchestrator cleaned up")
