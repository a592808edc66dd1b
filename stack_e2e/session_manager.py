"""
Per-service session isolation.

Every service run gets a fresh browser context, page and out-of-band HTTP
client. Nothing created here outlives the ``async with`` block, so no
authenticated state crosses from one service to the next.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional
import logging

import anyio
import httpx
from playwright.async_api import BrowserContext, Page

from stack_e2e.auth import AuthSession
from stack_e2e.browser import Browser
from stack_e2e.playwright_client import PlaywrightClient
from stack_e2e.services import ServiceDescriptor, ServiceRegistry

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 15.0


@dataclass
class SessionHandle:
    """Everything one service run needs to talk to its service."""
    service: ServiceDescriptor
    base_url: str
    cookie_domain: str
    context: BrowserContext
    page: Optional[Page]
    http: httpx.AsyncClient
    auth: Optional[AuthSession] = None

    def __repr__(self) -> str:
        return f"SessionHandle(service={self.service.name}, base_url={self.base_url})"

    @property
    def browser(self) -> Browser:
        return Browser(self.page)

    def url(self, path: str = "") -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    async def navigate(self, path: str = "/", wait_until: str = "networkidle") -> Dict[str, Any]:
        """Open ``path`` with any query-parameter credentials applied."""
        target = self.url(path)
        if self.auth is not None:
            target = self.auth.decorate_url(target)
        return await self.browser.goto(target, wait_until=wait_until)


class SessionManager:
    """
    Hands out isolated sessions for services in a registry.

    Usage:
        async with PlaywrightClient() as client:
            manager = SessionManager(client, registry)
            async with manager.session("sonarr") as handle:
                await handle.page.goto(handle.url("/login"))
    """

    def __init__(self, client: PlaywrightClient, registry: ServiceRegistry):
        self.client = client
        self.registry = registry
        self._open = 0

    @asynccontextmanager
    async def session(self, name: str) -> AsyncIterator[SessionHandle]:
        descriptor = self.registry.descriptor(name)
        context = await self.client.new_context()
        http = httpx.AsyncClient(verify=False, timeout=HTTP_TIMEOUT)
        self._open += 1
        try:
            page = await context.new_page()
            handle = SessionHandle(
                service=descriptor,
                base_url=self.registry.base_url(name),
                cookie_domain=self.registry.cookie_domain(name),
                context=context,
                page=page,
                http=http,
            )
            logger.debug(f"Created session: {handle}")
            yield handle
        finally:
            self._open -= 1
            # runs even when the service deadline cancelled the body
            with anyio.CancelScope(shield=True):
                await http.aclose()
                try:
                    await context.close()
                except Exception as e:
                    logger.warning(f"Error closing context for {name}: {e}")

    @property
    def session_count(self) -> int:
        """Number of sessions currently open."""
        return self._open
