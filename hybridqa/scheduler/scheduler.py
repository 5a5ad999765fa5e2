"""Single-flight execution of queued tests.

The scheduler owns the in-memory :class:`TestingSystem` snapshot. Every
mutation happens under one ``asyncio.Lock`` and is followed by a save, so the
file on disk always reflects the last completed mutation.

Queued tests are drained by one background task that loops
dequeue -> execute until ``pending`` is empty; at most one test runs at a
time regardless of the configured concurrency.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from hybridqa.automation.backend import AutomationBackend
from hybridqa.errors import BackendUnavailableError, PersistenceError, PhaseTimeoutError
from hybridqa.messaging.bus import MessageBus
from hybridqa.models.config import ExecutionConfig
from hybridqa.models.messages import (
    ErrorMessage,
    ErrorPayload,
    TestCompleteMessage,
    TestCompletePayload,
    TestStartMessage,
    TestStartPayload,
    VisualAnalysisRequestMessage,
    VisualAnalysisRequestPayload,
    VisualAnalysisResultMessage,
    VisualAnalysisResultPayload,
    orchestrator_metadata,
)
from hybridqa.models.system_state import Phase, TestingSystem
from hybridqa.models.test_case import AutomationStep, TestCase
from hybridqa.models.test_result import (
    Coordinates,
    IssueLocation,
    PerformanceMetrics,
    Screenshot,
    ScreenshotMetadata,
    StepResult,
    TestResult,
    Viewport,
    VisualAnalysis,
    VisualIssue,
    now_ms,
)
from hybridqa.results.aggregator import build_result, record_history, update_analytics
from hybridqa.state.store import StateStore
from hybridqa.visual.oracle import VisualOracle

from .retry import with_retries

logger = logging.getLogger(__name__)

BASELINE_MISMATCH = "Screenshot differs from baseline beyond tolerance"


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class QueueScheduler:
    """Drives queued tests through setup -> running -> analysis -> cleanup."""

    def __init__(
        self,
        snapshot: TestingSystem,
        store: StateStore,
        automation: AutomationBackend,
        oracle: VisualOracle,
        bus: MessageBus | None = None,
    ):
        self.snapshot = snapshot
        self.store = store
        self.automation = automation
        self.oracle = oracle
        self.bus = bus or MessageBus()
        self._lock = asyncio.Lock()
        self._drain_task: asyncio.Task | None = None

    @property
    def execution(self) -> ExecutionConfig:
        return self.snapshot.orchestrator.test_runner.execution

    @property
    def is_idle(self) -> bool:
        return self._drain_task is None or self._drain_task.done()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self) -> None:
        payload = self.snapshot.to_wire()
        await asyncio.to_thread(self.store.write_payload, payload)

    async def _persist_logged(self) -> None:
        # Background paths keep going on a failed save; the next save retries.
        try:
            await self._persist()
        except PersistenceError:
            logger.exception("Failed to persist scheduler state")

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    async def enqueue(self, test: TestCase) -> None:
        """Append ``test`` to the pending queue, persist, and start draining."""
        async with self._lock:
            pending = self.snapshot.queue.pending
            pending.append(test)
            try:
                await self._persist()
            except PersistenceError:
                pending.pop()
                raise
            pending_count = len(pending)
        logger.info("Queued test %s (%s); %d pending", test.name, test.id, pending_count)
        self.kick()

    async def add_screenshot(self, screenshot: Screenshot) -> None:
        async with self._lock:
            screenshots = self.snapshot.current.screenshots
            screenshots.append(screenshot)
            try:
                await self._persist()
            except PersistenceError:
                screenshots.pop()
                raise
        logger.debug("Recorded screenshot %s for test %s", screenshot.id, screenshot.test_id)

    async def evict_screenshots(self, max_age_seconds: float) -> int:
        """Drop recorded screenshots older than ``max_age_seconds`` from the snapshot."""
        cutoff = now_ms() - int(max_age_seconds * 1000)
        async with self._lock:
            current = self.snapshot.current
            kept = [s for s in current.screenshots if s.timestamp >= cutoff]
            removed = len(current.screenshots) - len(kept)
            if removed:
                current.screenshots = kept
                await self._persist_logged()
        if removed:
            logger.info("Evicted %d stale screenshot record(s) from state", removed)
        return removed

    def kick(self) -> None:
        """Start the drain loop unless it is already running."""
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain(), name="hybridqa-drain")

    async def _drain(self) -> None:
        while True:
            test = await self.try_dequeue()
            if test is None:
                return
            try:
                await self.execute(test)
            except asyncio.CancelledError:
                raise
            except Exception:
                # execute() contains its own failures; this only guards the loop.
                logger.exception("Unexpected error while running test %s", test.id)

    async def try_dequeue(self) -> Optional[TestCase]:
        """Move the head of ``pending`` into ``running`` when the slot is free."""
        async with self._lock:
            current = self.snapshot.current
            queue = self.snapshot.queue
            if current.phase != "setup" or not queue.pending:
                return None
            test = queue.pending.pop(0)
            queue.running.append(test)
            current.phase = "running"
            current.test = test
            await self._persist_logged()

        logger.info("Dequeued test %s (%s); %d still pending",
                    test.name, test.id, len(self.snapshot.queue.pending))
        await self.bus.publish(TestStartMessage(
            metadata=orchestrator_metadata(test.id),
            payload=TestStartPayload(test_id=test.id, name=test.name),
        ))
        return test

    async def wait_idle(self) -> None:
        """Block until the queue has been drained."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task})

    async def shutdown(self) -> None:
        """Cancel the drain loop. A run in flight is recorded as an error."""
        task = self._drain_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler stopped")

    async def recover_interrupted(self) -> int:
        """Requeue tests left running by a crash. Returns how many moved."""
        async with self._lock:
            queue = self.snapshot.queue
            current = self.snapshot.current
            if current.phase == "setup" and not queue.running and current.test is None:
                return 0
            interrupted = list(queue.running)
            queue.pending[:0] = interrupted
            queue.running = []
            current.phase = "setup"
            current.test = None
            await self._persist()
        if interrupted:
            logger.warning("Requeued %d interrupted test(s): %s",
                           len(interrupted), ", ".join(t.id for t in interrupted))
        return len(interrupted)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _remaining(self, deadline: float) -> float:
        return deadline - asyncio.get_running_loop().time()

    def _budget(self, phase_timeout_ms: int, deadline: float) -> tuple[float, Optional[str]]:
        """Seconds available for the next call and the deadline that bounds it."""
        phase_seconds = phase_timeout_ms / 1000
        remaining = self._remaining(deadline)
        if remaining < phase_seconds:
            return remaining, "total"
        return phase_seconds, None

    async def _set_phase(self, phase: Phase) -> None:
        async with self._lock:
            self.snapshot.current.phase = phase
            await self._persist_logged()

    async def execute(self, test: TestCase) -> TestResult:
        """Run every step of ``test`` and record the result.

        Step failures abort the remaining steps and make the run ``fail``;
        an unavailable backend or any other error outside a step makes it
        ``error``. The finishing phase always runs.
        """
        logger.info("Running test: %s (%s)", test.name, test.id)
        timeouts = self.execution.timeouts
        started_at = now_ms()
        start = time.monotonic()
        deadline = asyncio.get_running_loop().time() + timeouts.total / 1000

        steps: list[StepResult] = []
        metrics: PerformanceMetrics | None = None
        visual: VisualAnalysis | None = None
        errored = False
        try:
            wants_visual = test.automation.assertions.visual
            analysed = False
            for index, step in enumerate(test.automation.steps):
                outcome = await self._run_step(test, step, deadline)
                if outcome.status == "pass" and wants_visual and step.action != "wait":
                    analysed = True
                    try:
                        visual = await self._visual_turn(test, deadline)
                    except BackendUnavailableError:
                        raise
                    except Exception as e:
                        logger.warning("Visual analysis failed after step %d of %s: %s",
                                       index + 1, test.id, _describe(e))
                        outcome = outcome.model_copy(update={
                            "status": "fail",
                            "error": f"Visual analysis failed: {_describe(e)}",
                        })
                steps.append(outcome)
                logger.debug("Step %d/%d of %s: %s %s", index + 1, len(test.automation.steps),
                             test.id, outcome.action, outcome.status)
                if outcome.status == "fail":
                    logger.warning("Step %d (%s) of %s failed: %s; skipping remaining steps",
                                   index + 1, outcome.action, test.id, outcome.error)
                    break

            all_passed = all(s.status == "pass" for s in steps)
            if wants_visual and not analysed and all_passed:
                # No step produced a page state to judge; judge the target page itself
                try:
                    visual = await self._visual_turn(test, deadline)
                except BackendUnavailableError:
                    raise
                except Exception as e:
                    steps.append(StepResult(
                        status="fail", action="visual",
                        error=f"Visual analysis failed: {_describe(e)}",
                    ))

            if test.automation.assertions.performance:
                metrics = await self._collect_metrics(test, deadline)

        except asyncio.CancelledError:
            errored = True
            logger.warning("Test %s cancelled", test.id)
            raise
        except BackendUnavailableError as e:
            errored = True
            logger.error("Test %s aborted: %s", test.id, e)
            await self.bus.publish(ErrorMessage(
                metadata=orchestrator_metadata(test.id, priority="high"),
                payload=ErrorPayload(message=str(e), test_id=test.id),
            ))
        except Exception as e:
            errored = True
            logger.exception("Test %s errored: %s", test.id, _describe(e))
            await self.bus.publish(ErrorMessage(
                metadata=orchestrator_metadata(test.id, priority="high"),
                payload=ErrorPayload(message=_describe(e), test_id=test.id),
            ))
        finally:
            result = build_result(
                test.id, steps, metrics, visual,
                started_at=started_at,
                duration=int((time.monotonic() - start) * 1000),
                errored=errored,
            )
            await self._finish(test, result)

        return result

    async def _run_step(self, test: TestCase, step: AutomationStep, deadline: float) -> StepResult:
        total_ms = self.execution.timeouts.total
        budget, bound_by = self._budget(self.execution.timeouts.automation, deadline)
        if budget <= 0:
            return StepResult(status="fail", action=step.action,
                              error=str(PhaseTimeoutError("total", total_ms)))

        start = time.monotonic()
        try:
            return await asyncio.wait_for(
                self.automation.execute_step(step, test.target.url), timeout=budget,
            )
        except BackendUnavailableError:
            raise
        except asyncio.TimeoutError:
            phase = bound_by or "automation"
            limit = total_ms if bound_by else self.execution.timeouts.automation
            error = str(PhaseTimeoutError(phase, limit))
        except Exception as e:
            error = _describe(e)
        return StepResult(status="fail", action=step.action,
                          duration=int((time.monotonic() - start) * 1000), error=error)

    async def _visual_turn(self, test: TestCase, deadline: float) -> VisualAnalysis:
        total_ms = self.execution.timeouts.total
        budget, bound_by = self._budget(self.execution.timeouts.visual, deadline)
        if budget <= 0:
            raise PhaseTimeoutError("total", total_ms)
        await self._set_phase("analysis")
        try:
            return await asyncio.wait_for(self._analyze_page(test), timeout=budget)
        except asyncio.TimeoutError as e:
            if isinstance(e, PhaseTimeoutError):
                raise
            phase = bound_by or "visual"
            limit = total_ms if bound_by else self.execution.timeouts.visual
            raise PhaseTimeoutError(phase, limit) from e
        finally:
            await self._set_phase("running")

    async def _analyze_page(self, test: TestCase) -> VisualAnalysis:
        image = await self.automation.capture_screenshot(test.target.url)
        ref = await self.oracle.store_screenshot(image, test.id)
        await self._record_capture(test, image)

        await self.bus.publish(VisualAnalysisRequestMessage(
            metadata=orchestrator_metadata(test.id),
            payload=VisualAnalysisRequestPayload(
                test_id=test.id, screenshot=ref, instructions=test.visual.instructions,
            ),
        ))
        analysis = await with_retries(
            lambda: self.oracle.analyze(ref, test.visual.instructions, test.visual.expectations),
            self.execution.retries,
            label=f"Visual analysis of {test.id}",
        )

        baseline = test.visual.screenshots.baseline
        if baseline:
            comparison = await self.oracle.compare(
                baseline, ref, test.visual.screenshots.tolerance,
            )
            if not comparison.matches:
                region = comparison.differences[0] if comparison.differences else None
                analysis.issues.append(VisualIssue(
                    severity="major",
                    description=BASELINE_MISMATCH,
                    recommendation="Review the change and refresh the baseline if it is intended",
                    location=IssueLocation(
                        screenshot=ref,
                        coordinates=Coordinates(x=region.x, y=region.y) if region else Coordinates(),
                    ),
                ))
                logger.info("Screenshot of %s differs from baseline (%.2f%% changed)",
                            test.id, comparison.diff_ratio * 100)

        await self.bus.publish(VisualAnalysisResultMessage(
            metadata=orchestrator_metadata(test.id),
            payload=VisualAnalysisResultPayload(
                test_id=test.id,
                observations=analysis.observations,
                issues=analysis.issues,
                metrics=analysis.metrics,
            ),
        ))
        return analysis

    async def _record_capture(self, test: TestCase, image: str) -> None:
        viewport = self.automation.viewport
        screenshot = Screenshot(
            test_id=test.id,
            data=image,
            metadata=ScreenshotMetadata(
                viewport=Viewport(width=viewport.width, height=viewport.height),
                browser=self.automation.engine,
            ),
        )
        async with self._lock:
            self.snapshot.current.screenshots.append(screenshot)
            await self._persist_logged()

    async def _collect_metrics(self, test: TestCase, deadline: float) -> PerformanceMetrics:
        budget, bound_by = self._budget(self.execution.timeouts.automation, deadline)
        if budget <= 0:
            return PerformanceMetrics.collection_failed(
                str(PhaseTimeoutError("total", self.execution.timeouts.total))
            )
        try:
            return await asyncio.wait_for(
                self.automation.collect_metrics(test.target.url), timeout=budget,
            )
        except BackendUnavailableError:
            raise
        except asyncio.TimeoutError:
            limit = (self.execution.timeouts.total if bound_by
                     else self.execution.timeouts.automation)
            reason = str(PhaseTimeoutError(bound_by or "automation", limit))
        except Exception as e:
            reason = _describe(e)
        logger.warning("Metrics collection for %s failed: %s", test.id, reason)
        return PerformanceMetrics.collection_failed(reason)

    async def _finish(self, test: TestCase, result: TestResult) -> None:
        await self._set_phase("cleanup")
        async with self._lock:
            queue = self.snapshot.queue
            current = self.snapshot.current
            current.results.append(result)
            queue.running = [t for t in queue.running if t.id != test.id]
            if result.status == "pass":
                queue.completed.append(test)
            else:
                queue.failed.append(test)
            update_analytics(
                self.snapshot.analytics, result, len(queue.completed), current.results,
            )
            record_history(self.snapshot.history.tests, result)
            current.phase = "setup"
            current.test = None
            await self._persist_logged()

        logger.info("[%s] %s: %s (%dms)", result.status.upper(), test.id, test.name,
                    result.duration)
        await self.bus.publish(TestCompleteMessage(
            metadata=orchestrator_metadata(test.id),
            payload=TestCompletePayload(
                test_id=test.id, result_id=result.id, status=result.status,
            ),
        ))
