"""Browser launch helpers for the Playwright backend."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

from hybridqa.models.config import ViewportConfig

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

SUPPORTED_ENGINES = ("chromium", "firefox", "webkit")


async def launch_browser(
    playwright: Playwright, engine: str = "chromium", headless: bool = True,
) -> Browser:
    """Launch the requested engine. Chromium hides its automation flag."""
    if engine not in SUPPORTED_ENGINES:
        raise ValueError(f"Unsupported browser engine: {engine}")
    browser_type = getattr(playwright, engine)
    if engine == "chromium":
        return await browser_type.launch(
            headless=headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
    return await browser_type.launch(headless=headless)


async def create_context(
    browser: Browser,
    viewport: ViewportConfig,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create an isolated context with a fixed viewport and locale."""
    context_kwargs: dict = {
        "viewport": {"width": viewport.width, "height": viewport.height},
        "locale": "en-US",
        "extra_http_headers": {"Accept-Language": "en-US,en;q=0.9"},
    }
    if user_agent:
        context_kwargs["user_agent"] = user_agent
    return await browser.new_context(**context_kwargs)
