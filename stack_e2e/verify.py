"""Success predicates evaluated after stabilization and before capture."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from playwright.async_api import Page

from stack_e2e.auth import lookup_path
from stack_e2e.browser import is_present
from stack_e2e.errors import VerificationFailure


@dataclass(frozen=True)
class SuccessCheck:
    """Per-service definition of "authenticated and rendered".

    ``markers`` are Playwright selectors (``text=...`` allowed); any one of
    them becoming visible satisfies the DOM check.
    """

    forbidden_url_marker: Optional[str] = "login"
    markers: Tuple[str, ...] = ()
    marker_timeout: int = 10_000


def url_is_authenticated(url: str, forbidden_marker: Optional[str] = "login") -> bool:
    if not forbidden_marker:
        return True
    return forbidden_marker.lower() not in url.lower()


async def any_marker_visible(page: Page, markers: Tuple[str, ...], timeout: int = 10_000) -> bool:
    if not markers:
        return True
    locator = page.locator(markers[0])
    for selector in markers[1:]:
        locator = locator.or_(page.locator(selector))
    return await is_present(locator, timeout)


async def verify(page: Page, check: SuccessCheck, service: str) -> None:
    """Raise VerificationFailure unless every configured predicate holds."""
    if not url_is_authenticated(page.url, check.forbidden_url_marker):
        raise VerificationFailure(f"{service}: landed on unauthenticated page {page.url}")
    if not await any_marker_visible(page, check.markers, check.marker_timeout):
        raise VerificationFailure(
            f"{service}: none of {list(check.markers)} became visible within {check.marker_timeout}ms"
        )


def assert_json_field(payload: Any, field: str, expected: Any) -> None:
    """API-status predicate: ``payload[field]`` (dotted path allowed) equals ``expected``."""
    actual = lookup_path(payload, field)
    if actual != expected:
        raise VerificationFailure(f"Expected {field}={expected!r}, got {actual!r}")
