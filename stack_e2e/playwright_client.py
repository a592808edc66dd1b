"""
Direct Playwright Client
========================

Launches Playwright in-process and hands out isolated browser contexts.

Usage:
    from stack_e2e.playwright_client import PlaywrightClient

    async with PlaywrightClient() as client:
        context = await client.new_context()
        page = await context.new_page()
        await page.goto("http://nas.local:8989/login")
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright

from stack_e2e.config import settings


class PlaywrightClient:
    """
    Owns the Playwright driver and one browser process.

    Each service run gets its own context from :meth:`new_context`, so cookies,
    storage and request routes never leak between services.
    """

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: Optional[bool] = None,
        timeout: Optional[int] = None,
        viewport: Optional[Dict[str, int]] = None,
    ):
        """
        Initialize Playwright client.

        Args:
            browser_type: Browser to use (chromium, firefox, webkit)
            headless: Run in headless mode (None = PLAYWRIGHT_HEADLESS)
            timeout: Default timeout in milliseconds (None = PLAYWRIGHT_TIMEOUT_MS)
            viewport: Context viewport (None = SCREENSHOT_VIEWPORT_*)
        """
        self.browser_type = browser_type
        self.headless = settings.playwright_headless if headless is None else headless
        self.timeout = settings.default_timeout_ms if timeout is None else timeout
        self.viewport = viewport or dict(settings.viewport)

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "PlaywrightClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        """Launch the browser. Cleans up the driver if the launch fails."""
        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self.browser_type)
        try:
            self._browser = await launcher.launch(headless=self.headless)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

    async def new_context(self, **kwargs: Any) -> BrowserContext:
        """
        Create a new isolated browser context.

        Args:
            **kwargs: Context options overriding the defaults (viewport, base_url, ...)
        """
        if not self._browser:
            raise RuntimeError("Client not connected. Use 'async with' or call connect()")

        options: Dict[str, Any] = {"viewport": self.viewport, "ignore_https_errors": True}
        options.update(kwargs)
        context = await self._browser.new_context(**options)
        context.set_default_timeout(self.timeout)
        return context

    async def close(self) -> None:
        """Close the browser and stop the driver."""
        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    @property
    def browser(self) -> Browser:
        if not self._browser:
            raise RuntimeError("Client not connected")
        return self._browser
