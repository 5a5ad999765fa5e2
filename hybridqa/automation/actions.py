"""Translates AutomationStep models to Playwright calls."""

from __future__ import annotations

import logging

from playwright.async_api import Page

from hybridqa.errors import StepExecutionError
from hybridqa.models.test_case import AutomationStep

logger = logging.getLogger(__name__)

DEFAULT_WAIT_MS = 1000
TYPE_KEY_DELAY_MS = 100

_REQUIRES_TARGET = ("click", "type", "hover", "scroll")


def check_preconditions(step: AutomationStep) -> None:
    """Raise StepExecutionError when a step lacks its required fields."""
    if step.action in _REQUIRES_TARGET and not step.target:
        raise StepExecutionError(
            step.action, f"Target selector is required for {step.action} action"
        )
    if step.action == "type" and not step.value:
        raise StepExecutionError(step.action, "Value is required for type action")


async def run_step_action(
    page: Page, step: AutomationStep, selector_timeout: int = 10000,
) -> None:
    """Execute one step on an already navigated page.

    Args:
        page: Playwright page instance.
        step: The step to execute.
        selector_timeout: How long to wait for the target to become visible (ms).
    """
    check_preconditions(step)
    logger.debug("Running step: %s | target=%s", step.action, step.target)

    match step.action:
        case "click":
            await page.wait_for_selector(step.target, state="visible", timeout=selector_timeout)
            await page.click(step.target, timeout=selector_timeout)

        case "type":
            await page.wait_for_selector(step.target, state="visible", timeout=selector_timeout)
            # Select any existing content so typing replaces it
            await page.click(step.target, click_count=3, timeout=selector_timeout)
            await page.keyboard.press("Backspace")
            logger.debug("Typing %d chars into %s", len(step.value), step.target)
            await page.type(step.target, step.value, delay=TYPE_KEY_DELAY_MS)

        case "hover":
            await page.wait_for_selector(step.target, state="visible", timeout=selector_timeout)
            await page.hover(step.target, timeout=selector_timeout)

        case "scroll":
            await page.wait_for_selector(step.target, state="attached", timeout=selector_timeout)
            await page.locator(step.target).first.scroll_into_view_if_needed(
                timeout=selector_timeout
            )

        case "wait":
            timeout = step.timeout if step.timeout is not None else DEFAULT_WAIT_MS
            logger.debug("Waiting %dms...", timeout)
            await page.wait_for_timeout(timeout)
