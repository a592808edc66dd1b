"""Thin wrapper around direct Playwright for navigation and bounded waits."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from playwright.async_api import Locator, Page, TimeoutError as PlaywrightTimeout

logger = logging.getLogger(__name__)

# Short probe used for optional, presence-gated UI steps
PRESENCE_PROBE_MS = 3_000


@dataclass
class ToolError(Exception):
    """Raised when a browser operation fails."""

    name: str
    payload: Dict[str, Any]
    message: str

    def __str__(self) -> str:  # pragma: no cover - human readable helper
        return f"{self.name} failed ({self.message}) with payload={self.payload}"


async def is_present(locator: Locator, timeout: int = PRESENCE_PROBE_MS) -> bool:
    """Return True if ``locator`` becomes visible within ``timeout`` ms.

    A timeout means "not present"; it is never an error.
    """
    try:
        await locator.first.wait_for(state="visible", timeout=timeout)
        return True
    except PlaywrightTimeout:
        return False


async def settle_load_state(page: Page, state: str = "networkidle", timeout: int = 30_000) -> bool:
    """Wait for a load state, treating a timeout as settled.

    Long-polling and websocket clients can keep the network busy forever, so a
    missed networkidle is logged rather than raised.
    """
    try:
        await page.wait_for_load_state(state, timeout=timeout)
        return True
    except PlaywrightTimeout:
        logger.warning(f"Load state '{state}' not reached within {timeout}ms on {page.url}")
        return False


class Browser:
    """Convenience wrapper over a Playwright page."""

    def __init__(self, page: Page) -> None:
        self._page = page
        self.current_url: str | None = None

    @property
    def page(self) -> Page:
        return self._page

    async def goto(self, url: str, wait_until: str = "networkidle", timeout: int = 30000) -> Dict[str, Any]:
        """Navigate to URL and return the final URL with response status.

        Note: "networkidle" can time out with long-polling/WebSocket connections,
        in which case the navigation is retried with "domcontentloaded".
        """
        try:
            response = await self._page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeout as exc:
            if wait_until != "networkidle":
                raise ToolError(name="goto", payload={"url": url, "wait_until": wait_until}, message=str(exc))
            try:
                response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout)
            except PlaywrightTimeout:
                raise ToolError(name="goto", payload={"url": url, "wait_until": wait_until}, message=str(exc))
        self.current_url = self._page.url
        return {"url": self.current_url, "status": response.status if response else None}
