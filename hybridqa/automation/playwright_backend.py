"""Playwright automation backend: executes steps, captures screenshots and metrics."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from hybridqa.errors import BackendUnavailableError
from hybridqa.models.config import OrchestratorConfig
from hybridqa.models.test_case import AutomationStep
from hybridqa.models.test_result import (
    ConsoleMessages,
    NetworkStats,
    NetworkTiming,
    PagePerformance,
    PerformanceMetrics,
    StepResult,
)

from .actions import check_preconditions, run_step_action
from .browser import create_context, launch_browser

logger = logging.getLogger(__name__)

# Reads paint, layout-shift and navigation timing entries in one round trip.
_METRICS_SCRIPT = """
() => new Promise((resolve) => {
    const paint = performance.getEntriesByName('first-contentful-paint');
    const fcp = paint.length > 0 ? paint[0].startTime : 0;
    let lcp = 0;
    let cls = 0;
    try {
        new PerformanceObserver((list) => {
            for (const entry of list.getEntries()) {
                lcp = Math.max(lcp, entry.startTime);
            }
        }).observe({ type: 'largest-contentful-paint', buffered: true });
        new PerformanceObserver((list) => {
            for (const entry of list.getEntries()) {
                if (!entry.hadRecentInput) {
                    cls += entry.value;
                }
            }
        }).observe({ type: 'layout-shift', buffered: true });
    } catch (e) {
        // entry type not supported by this engine
    }
    const nav = performance.getEntriesByType('navigation')[0] || performance.timing || {};
    setTimeout(() => resolve({
        fcp: fcp,
        lcp: lcp,
        cls: cls,
        dns: (nav.domainLookupEnd || 0) - (nav.domainLookupStart || 0),
        tcp: (nav.connectEnd || 0) - (nav.connectStart || 0),
        ttfb: (nav.responseStart || 0) - (nav.requestStart || 0),
    }), 100);
})
"""


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class PlaywrightAutomation:
    """Automation backend driving a real browser through Playwright.

    Every step runs on a fresh page: the target URL is loaded (with a bounded
    number of navigation attempts), the action is applied and the page's
    context is closed again.
    """

    def __init__(self, config: OrchestratorConfig):
        self.config = config
        self.engine = config.browser
        self.viewport = config.viewport
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    @property
    def is_initialized(self) -> bool:
        return self._browser is not None

    async def initialize(self, engine: Optional[str] = None) -> None:
        """Launch the browser engine. Relaunches when the engine changes."""
        engine = engine or self.engine
        if self._browser is not None:
            if engine == self.engine:
                return
            await self.cleanup()
        self.engine = engine
        try:
            self._playwright = await async_playwright().start()
            self._browser = await launch_browser(
                self._playwright, engine, headless=self.config.headless,
            )
        except Exception as e:
            await self.cleanup()
            raise BackendUnavailableError(f"Failed to launch {engine}: {e}") from e
        logger.info("Launched %s (headless=%s)", engine, self.config.headless)

    def _require_browser(self) -> Browser:
        if self._browser is None:
            raise BackendUnavailableError("Browser not initialized")
        return self._browser

    async def _navigate(self, page: Page, url: str) -> None:
        attempts = self.config.navigation_attempts
        for attempt in range(1, attempts + 1):
            try:
                await page.goto(
                    url, timeout=self.config.navigation_timeout_ms,
                    wait_until="domcontentloaded",
                )
                break
            except Exception as e:
                if attempt == attempts:
                    raise
                logger.info("Navigation attempt %d/%d to %s failed (%s), retrying...",
                            attempt, attempts, url, e)
        # Give client-side rendering a moment to settle
        await page.wait_for_timeout(self.config.settle_ms)

    async def execute_step(self, step: AutomationStep, url: str) -> StepResult:
        """Run one step against ``url`` and report its outcome."""
        start = time.monotonic()
        try:
            check_preconditions(step)
        except Exception as e:
            logger.warning("Step rejected: %s (%s)", step.action, e)
            return StepResult(status="fail", action=step.action,
                              duration=_elapsed_ms(start), error=str(e))

        if self._browser is None:
            await self.initialize()
        browser = self._require_browser()

        try:
            context = await create_context(browser, self.viewport, self.config.user_agent)
            try:
                page = await context.new_page()
                await self._navigate(page, url)
                await run_step_action(page, step, self.config.selector_timeout_ms)
            finally:
                await context.close()
        except Exception as e:
            logger.warning("Step failed: %s on %s (%s)", step.action, url, e)
            return StepResult(status="fail", action=step.action,
                              duration=_elapsed_ms(start),
                              error=str(e) or type(e).__name__)

        return StepResult(status="pass", action=step.action, duration=_elapsed_ms(start))

    async def capture_screenshot(self, url: str, selector: Optional[str] = None) -> str:
        """Capture the page (or one element) and return it as base64 PNG."""
        browser = self._require_browser()
        context = await create_context(browser, self.viewport, self.config.user_agent)
        try:
            page = await context.new_page()
            await page.goto(url, timeout=self.config.navigation_timeout_ms)
            if selector:
                await page.wait_for_selector(selector, timeout=self.config.selector_timeout_ms)
                image = await page.locator(selector).first.screenshot()
            else:
                image = await page.screenshot()
        finally:
            await context.close()
        logger.debug("Captured screenshot of %s (%d bytes)", url, len(image))
        return base64.b64encode(image).decode("ascii")

    async def collect_metrics(self, url: str) -> PerformanceMetrics:
        """Collect paint timings, console output and network counters for ``url``.

        Collection problems never raise; they produce a degraded bundle with
        zero timings and one recorded network failure.
        """
        browser = self._require_browser()
        logger.debug("Collecting performance metrics for %s", url)
        console = ConsoleMessages()
        network = NetworkStats()

        def _on_console(msg) -> None:
            if msg.type == "error":
                console.errors.append(msg.text)
            elif msg.type == "warning":
                console.warnings.append(msg.text)

        def _on_request(_request) -> None:
            network.requests += 1

        def _on_request_failed(_request) -> None:
            network.failures += 1

        context = None
        try:
            context = await create_context(browser, self.viewport, self.config.user_agent)
            page = await context.new_page()
            page.on("console", _on_console)
            page.on("request", _on_request)
            page.on("requestfailed", _on_request_failed)
            await page.goto(url, wait_until="networkidle", timeout=30000)
            raw = await asyncio.wait_for(
                page.evaluate(_METRICS_SCRIPT),
                timeout=self.config.metrics_timeout_ms / 1000,
            )
        except Exception as e:
            reason = str(e) or "Metrics collection timeout"
            logger.error("Error collecting metrics for %s: %s", url, reason)
            return PerformanceMetrics.collection_failed(reason)
        finally:
            if context is not None:
                await context.close()

        network.timing = NetworkTiming(
            dns=max(0, raw.get("dns", 0)),
            tcp=max(0, raw.get("tcp", 0)),
            ttfb=max(0, raw.get("ttfb", 0)),
        )
        return PerformanceMetrics(
            performance=PagePerformance(
                fcp=max(0, raw.get("fcp", 0)),
                lcp=max(0, raw.get("lcp", 0)),
                cls=max(0, raw.get("cls", 0)),
            ),
            console=console,
            network=network,
        )

    async def cleanup(self) -> None:
        """Close the browser and stop Playwright."""
        if self._browser is not None:
            try:
                await self._browser.close()
            finally:
                self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            finally:
                self._playwright = None
