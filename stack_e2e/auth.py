"""Session establishment for the services under test.

Every mechanism exposes the same coroutine::

    auth_session = await mechanism.establish(handle, credentials)

where ``handle`` is the service's isolated :class:`SessionHandle` (browser
context, page and out-of-band HTTP client). The returned :class:`AuthSession`
lives exactly as long as that handle.

Mechanisms:
- FormLogin: interactive login through the service's own HTML form
- TokenApi: JSON login returning a token, replayed as a request header
- CookieBridge: out-of-band login whose Set-Cookie headers are copied into
  the browser context
- ApiKey: static key as query parameter or request header
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import unquote_plus, urlencode, urlsplit, urlunsplit

import httpx
from playwright.async_api import BrowserContext, Route, TimeoutError as PlaywrightTimeout

from stack_e2e.browser import PRESENCE_PROBE_MS, is_present, settle_load_state
from stack_e2e.config import Credentials
from stack_e2e.errors import AuthFailure

if TYPE_CHECKING:
    from stack_e2e.session_manager import SessionHandle

logger = logging.getLogger(__name__)


# ============================================================================
# Session artifacts
# ============================================================================

@dataclass(frozen=True)
class CookieRecord:
    """A single cookie to inject into a browser context."""

    name: str
    value: str
    domain: str
    path: str = "/"

    def to_playwright(self) -> Dict[str, str]:
        return {"name": self.name, "value": self.value, "domain": self.domain, "path": self.path}


@dataclass
class AuthSession:
    """Authenticated state for one service run. Never persisted."""

    mechanism: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[CookieRecord] = field(default_factory=list)
    query: Dict[str, str] = field(default_factory=dict)
    token: Optional[str] = None

    def decorate_url(self, url: str) -> str:
        """Append query-parameter credentials to ``url``, keeping existing ones."""
        if not self.query:
            return url
        parts = urlsplit(url)
        # existing pairs are kept byte-for-byte; only replaced keys are dropped
        kept = [piece for piece in parts.query.split("&") if piece and unquote_plus(piece.split("=", 1)[0]) not in self.query]
        kept.append(urlencode(list(self.query.items())))
        return urlunsplit(parts._replace(query="&".join(kept)))


def parse_set_cookie(header_value: str, domain: str, path: str = "/") -> Optional[CookieRecord]:
    """Parse one Set-Cookie header value into a cookie record.

    Only the leading ``name=value`` pair is kept (attributes after the first
    ``;`` are dropped) and the pair is split on the first ``=`` so values
    containing ``=`` survive intact. Returns None for a nameless cookie.
    """
    name_value = header_value.split(";", 1)[0]
    name, _, value = name_value.partition("=")
    name = name.strip()
    if not name:
        return None
    return CookieRecord(name=name, value=value.strip(), domain=domain, path=path)


def cookies_from_headers(header_values: Iterable[str], domain: str, path: str = "/") -> List[CookieRecord]:
    """Parse every Set-Cookie header; an empty iterable yields an empty list."""
    records = []
    for header_value in header_values:
        record = parse_set_cookie(header_value, domain, path)
        if record is not None:
            records.append(record)
    return records


def lookup_path(payload: Any, dotted: str) -> Any:
    """Return ``payload["a"]["b"]`` for ``"a.b"``, or None when any hop is missing."""
    current = payload
    for key in dotted.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


async def add_header_to_all_requests(context: BrowserContext, headers: Mapping[str, str], pattern: str = "**/*") -> None:
    """Intercept every request in ``context`` and merge ``headers`` into it.

    Registered once per context; every page and subresource opened from the
    context afterwards carries the headers.
    """
    extra = dict(headers)

    async def _inject(route: Route) -> None:
        merged = {**route.request.headers, **extra}
        await route.continue_(headers=merged)

    await context.route(pattern, _inject)


def _credential_body(credentials: Credentials, body_fields: Mapping[str, str]) -> Dict[str, Optional[str]]:
    return {body_key: getattr(credentials, attr) for attr, body_key in body_fields.items()}


# ============================================================================
# Mechanisms
# ============================================================================

class AuthMechanism:
    """Base class; subclasses implement :meth:`establish`."""

    tag = "none"

    async def establish(self, session: "SessionHandle", credentials: Credentials) -> AuthSession:
        raise NotImplementedError

    async def _post_login(
        self,
        session: "SessionHandle",
        path: str,
        body: Mapping[str, Any],
        encoding: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        url = session.url(path)
        logger.debug(f"[{session.service.name}] POST {url} ({encoding})")
        if encoding == "form":
            return await session.http.post(url, data=dict(body), headers=headers)
        return await session.http.post(url, json=dict(body), headers=headers)


@dataclass
class FormLogin(AuthMechanism):
    """Interactive login through an HTML form.

    Several selector shapes are accepted per field because the login markup
    differs between applications and releases. ``intermediate_text`` names an
    optional pre-login screen (e.g. a user picker with a "Manual Login" button)
    that is clicked only if it shows up.
    """

    login_path: str = "/login"
    username_selectors: Tuple[str, ...] = ('input[name="username"]', 'input[id="username"]')
    password_selectors: Tuple[str, ...] = ('input[name="password"]', 'input[id="password"]')
    submit_selectors: Tuple[str, ...] = ('button[type="submit"]',)
    intermediate_text: Optional[str] = None
    login_marker: str = "login"
    probe_timeout: int = PRESENCE_PROBE_MS
    form_timeout: int = 10_000
    redirect_timeout: int = 10_000

    tag = "form"

    async def establish(self, session: "SessionHandle", credentials: Credentials) -> AuthSession:
        await session.browser.goto(session.url(self.login_path))
        submitted = await self.complete_if_present(session, credentials, timeout=self.form_timeout)
        if not submitted and self.login_marker in session.page.url.lower():
            raise AuthFailure(f"{session.service.name}: login form not found at {session.page.url}")
        return AuthSession(mechanism=self.tag)

    async def complete_if_present(
        self,
        session: "SessionHandle",
        credentials: Credentials,
        timeout: Optional[int] = None,
    ) -> bool:
        """Fill and submit the form if it is on screen.

        Returns False when no form appeared within the probe window, which
        callers treat as "already authenticated".
        """
        page = session.page
        probe = self.probe_timeout if timeout is None else timeout

        if self.intermediate_text:
            prompt = page.get_by_text(self.intermediate_text)
            if await is_present(prompt, self.probe_timeout):
                logger.info(f"[{session.service.name}] Clicking optional '{self.intermediate_text}' step")
                await prompt.first.click()
                await settle_load_state(page)

        password_input = page.locator(", ".join(self.password_selectors)).first
        if not await is_present(password_input, probe):
            return False

        if self.username_selectors and credentials.username:
            username_input = page.locator(", ".join(self.username_selectors)).first
            await username_input.fill(credentials.username)
        await password_input.fill(credentials.password or "")
        await page.locator(", ".join(self.submit_selectors)).first.click()
        await settle_load_state(page)
        await self._wait_for_redirect(session)
        return True

    async def _wait_for_redirect(self, session: "SessionHandle") -> None:
        page = session.page
        try:
            await page.wait_for_function(
                "(marker) => !window.location.href.toLowerCase().includes(marker)",
                arg=self.login_marker,
                timeout=self.redirect_timeout,
            )
        except PlaywrightTimeout:
            raise AuthFailure(f"{session.service.name}: still on login page after submit ({page.url})")
        await settle_load_state(page)


@dataclass
class TokenApi(AuthMechanism):
    """JSON login returning a bearer-style token.

    The token is attached as ``header_name`` to every request the browser
    context makes. ``seed_storage`` may translate the login response into
    localStorage entries for clients that keep their token in storage.
    """

    login_path: str = "/Users/AuthenticateByName"
    body_fields: Mapping[str, str] = field(default_factory=lambda: {"username": "Username", "password": "Pw"})
    encoding: str = "json"
    token_field: str = "AccessToken"
    header_name: str = "X-Emby-Token"
    request_headers: Mapping[str, str] = field(default_factory=dict)
    seed_storage: Optional[Callable[[Mapping[str, Any], str], Dict[str, str]]] = None

    tag = "token"

    async def establish(self, session: "SessionHandle", credentials: Credentials) -> AuthSession:
        response = await self._post_login(
            session,
            self.login_path,
            _credential_body(credentials, self.body_fields),
            self.encoding,
            headers=self.request_headers,
        )
        if not response.is_success:
            raise AuthFailure(f"{session.service.name}: token login returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise AuthFailure(f"{session.service.name}: token login response is not JSON")
        token = lookup_path(payload, self.token_field)
        if not token:
            raise AuthFailure(f"{session.service.name}: login response has no '{self.token_field}'")

        headers = {self.header_name: token}
        await add_header_to_all_requests(session.context, headers)

        if self.seed_storage is not None:
            entries = self.seed_storage(payload, session.base_url)
            await session.context.add_init_script(script=storage_init_script(entries))

        logger.info(f"[{session.service.name}] Token acquired, injecting {self.header_name}")
        return AuthSession(mechanism=self.tag, headers=headers, token=token)


def storage_init_script(entries: Mapping[str, str]) -> str:
    """Build an init script writing ``entries`` to localStorage on every document."""
    return (
        "(() => {\n"
        f"  const entries = {json.dumps(dict(entries))};\n"
        "  try {\n"
        "    for (const [key, value] of Object.entries(entries)) {\n"
        "      window.localStorage.setItem(key, value);\n"
        "    }\n"
        "  } catch (e) {}\n"
        "})();"
    )


@dataclass
class CookieBridge(AuthMechanism):
    """Out-of-band login whose session cookies are replayed in the browser.

    ``body_cookie`` lifts a session id from the JSON body as well, for APIs
    that return the id in the payload instead of (or besides) Set-Cookie.
    A non-strict bridge logs a failed login and leaves the decision to the
    service's form fallback.
    """

    login_path: str = "/api/v2/auth/login"
    body_fields: Mapping[str, str] = field(default_factory=lambda: {"username": "username", "password": "password"})
    encoding: str = "form"
    body_cookie: Optional[Tuple[str, str]] = None
    reject_body: Optional[str] = None
    strict: bool = True

    tag = "cookie"

    async def establish(self, session: "SessionHandle", credentials: Credentials) -> AuthSession:
        response = await self._post_login(
            session,
            self.login_path,
            _credential_body(credentials, self.body_fields),
            self.encoding,
        )
        failure = self._failure(response)
        if failure:
            if self.strict:
                raise AuthFailure(f"{session.service.name}: {failure}")
            logger.warning(f"[{session.service.name}] API login failed ({failure}), relying on form fallback")
            return AuthSession(mechanism=self.tag)

        domain = session.cookie_domain
        cookies = cookies_from_headers(response.headers.get_list("set-cookie"), domain)
        if self.body_cookie is not None:
            cookies = self._merge_body_cookie(cookies, response, domain)

        if cookies:
            await session.context.add_cookies([cookie.to_playwright() for cookie in cookies])
        logger.info(f"[{session.service.name}] Bridged {len(cookies)} cookie(s) into browser context")
        return AuthSession(mechanism=self.tag, cookies=cookies)

    def _failure(self, response: httpx.Response) -> Optional[str]:
        if not response.is_success:
            return f"login returned HTTP {response.status_code}"
        if self.reject_body and response.text.strip() == self.reject_body:
            return f"login rejected ({self.reject_body})"
        return None

    def _merge_body_cookie(self, cookies: List[CookieRecord], response: httpx.Response, domain: str) -> List[CookieRecord]:
        name, dotted = self.body_cookie
        try:
            payload = response.json()
        except ValueError:
            return cookies
        value = lookup_path(payload, dotted)
        if not value:
            return cookies
        merged = [cookie for cookie in cookies if cookie.name != name]
        merged.append(CookieRecord(name=name, value=str(value), domain=domain))
        return merged


@dataclass
class ApiKey(AuthMechanism):
    """Static API key, either appended as ``?<name>=`` or sent as header ``<name>``."""

    name: str = "apikey"
    mode: str = "query"
    route_pattern: str = "**/*"

    tag = "apikey"

    def __post_init__(self) -> None:
        if self.mode not in {"query", "header"}:
            raise ValueError(f"Unknown API key mode: {self.mode}")

    async def establish(self, session: "SessionHandle", credentials: Credentials) -> AuthSession:
        key = credentials.api_key or ""
        if self.mode == "header":
            headers = {self.name: key}
            await add_header_to_all_requests(session.context, headers, self.route_pattern)
            return AuthSession(mechanism=self.tag, headers=headers)
        return AuthSession(mechanism=self.tag, query={self.name: key})
