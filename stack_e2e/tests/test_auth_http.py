"""Out-of-band login mechanisms against the mock services.

The browser context is replaced by a recorder so these run without Chromium.
"""
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from flask import Flask

from stack_e2e.auth import ApiKey, CookieBridge, TokenApi, add_header_to_all_requests
from stack_e2e.config import Credentials
from stack_e2e.errors import AuthFailure
from stack_e2e.mock_stack import (
    MOCK_API_KEY,
    MOCK_PASSWORD,
    MOCK_PIHOLE_PASSWORD,
    MOCK_USERNAME,
    MockServer,
    create_jellyfin_app,
    create_pihole_app,
    create_qbittorrent_app,
    create_seerr_app,
)
from stack_e2e.services import SERVICES
from stack_e2e.session_manager import SessionHandle

pytestmark = pytest.mark.asyncio

USER = Credentials(username=MOCK_USERNAME, password=MOCK_PASSWORD)


class RecordingContext:
    """Stands in for a BrowserContext and records what the mechanisms inject."""

    def __init__(self):
        self.cookies = []
        self.routes = []
        self.init_scripts = []

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def add_init_script(self, script=None, path=None):
        self.init_scripts.append(script)


class RecordingRoute:
    def __init__(self, headers):
        self.request = SimpleNamespace(headers=dict(headers))
        self.continued_with = None

    async def continue_(self, headers=None):
        self.continued_with = headers


@pytest_asyncio.fixture()
async def http_client():
    async with httpx.AsyncClient(verify=False, timeout=10.0) as client:
        yield client


@pytest.fixture()
def serve():
    servers = []

    def _serve(app):
        server = MockServer(app).start()
        servers.append(server)
        return server

    yield _serve

    for server in servers:
        server.stop()


def make_handle(name, server, http_client):
    return SessionHandle(
        service=SERVICES[name],
        base_url=server.url,
        cookie_domain=server.host,
        context=RecordingContext(),
        page=None,
        http=http_client,
    )


# ============================================================================
# CookieBridge
# ============================================================================

async def test_qbittorrent_bridge_copies_sid(serve, http_client):
    handle = make_handle("qbittorrent", serve(create_qbittorrent_app()), http_client)

    session = await SERVICES["qbittorrent"].auth.establish(handle, USER)

    assert [c.name for c in session.cookies] == ["SID"]
    injected = handle.context.cookies
    assert len(injected) == 1
    assert injected[0]["name"] == "SID"
    assert injected[0]["domain"] == "127.0.0.1"
    assert injected[0]["path"] == "/"
    assert ";" not in injected[0]["value"]


async def test_qbittorrent_bad_credentials_fail(serve, http_client):
    handle = make_handle("qbittorrent", serve(create_qbittorrent_app()), http_client)

    with pytest.raises(AuthFailure) as excinfo:
        await SERVICES["qbittorrent"].auth.establish(handle, Credentials(username=MOCK_USERNAME, password="nope"))

    assert "401" in str(excinfo.value)
    assert handle.context.cookies == []


async def test_qbittorrent_rejection_body_with_200(serve, http_client):
    handle = make_handle("qbittorrent", serve(create_qbittorrent_app(fail_status=200)), http_client)

    with pytest.raises(AuthFailure, match="Fails."):
        await SERVICES["qbittorrent"].auth.establish(handle, Credentials(username=MOCK_USERNAME, password="nope"))

    assert handle.context.cookies == []


async def test_seerr_cookie_value_keeps_trailing_equals(serve, http_client):
    handle = make_handle("seerr", serve(create_seerr_app()), http_client)

    session = await SERVICES["seerr"].auth.establish(handle, USER)

    (cookie,) = handle.context.cookies
    assert cookie["name"] == "connect.sid"
    assert cookie["value"].endswith("=")
    assert cookie["value"] == session.cookies[0].value


async def test_seerr_without_cookies_is_not_an_error(serve, http_client):
    handle = make_handle("seerr", serve(create_seerr_app(issue_cookie=False)), http_client)

    session = await SERVICES["seerr"].auth.establish(handle, USER)

    assert session.cookies == []
    assert handle.context.cookies == []


async def test_seerr_rejected_login(serve, http_client):
    handle = make_handle("seerr", serve(create_seerr_app()), http_client)

    with pytest.raises(AuthFailure):
        await SERVICES["seerr"].auth.establish(handle, Credentials(username="x", password="y"))


async def test_pihole_session_id_from_body(serve, http_client):
    handle = make_handle("pihole", serve(create_pihole_app()), http_client)

    session = await SERVICES["pihole"].auth.establish(handle, Credentials(password=MOCK_PIHOLE_PASSWORD))

    (cookie,) = handle.context.cookies
    assert cookie["name"] == "sid"
    assert cookie["value"]
    assert session.cookies[0].value == cookie["value"]


async def test_pihole_unavailable_api_defers_to_form(serve, http_client):
    handle = make_handle("pihole", serve(create_pihole_app(api_enabled=False)), http_client)

    session = await SERVICES["pihole"].auth.establish(handle, Credentials(password=MOCK_PIHOLE_PASSWORD))

    assert session.cookies == []
    assert handle.context.cookies == []


async def test_strict_bridge_raises_on_rejection(serve, http_client):
    bridge = CookieBridge(login_path="/api/auth", body_fields={"password": "password"}, encoding="json")
    handle = make_handle("pihole", serve(create_pihole_app()), http_client)

    with pytest.raises(AuthFailure):
        await bridge.establish(handle, Credentials(password="wrong"))


# ============================================================================
# TokenApi
# ============================================================================

async def test_jellyfin_token_injected_and_storage_seeded(serve, http_client):
    handle = make_handle("jellyfin", serve(create_jellyfin_app()), http_client)

    session = await SERVICES["jellyfin"].auth.establish(handle, USER)

    assert session.token
    assert session.headers == {"X-Emby-Token": session.token}
    (pattern, handler), = handle.context.routes
    assert pattern == "**/*"
    (script,) = handle.context.init_scripts
    assert "jellyfin_credentials" in script
    assert session.token in script

    route = RecordingRoute({"accept": "text/html"})
    await handler(route)
    assert route.continued_with == {"accept": "text/html", "X-Emby-Token": session.token}


async def test_jellyfin_token_login_rejected(serve, http_client):
    handle = make_handle("jellyfin", serve(create_jellyfin_app()), http_client)

    with pytest.raises(AuthFailure, match="401"):
        await SERVICES["jellyfin"].auth.establish(handle, Credentials(username=MOCK_USERNAME, password="nope"))

    assert handle.context.routes == []
    assert handle.context.init_scripts == []


async def test_token_missing_from_response(serve, http_client):
    mechanism = TokenApi(
        login_path="/Users/AuthenticateByName",
        token_field="Missing",
        request_headers=SERVICES["jellyfin"].auth.request_headers,
    )
    handle = make_handle("jellyfin", serve(create_jellyfin_app()), http_client)

    with pytest.raises(AuthFailure, match="Missing"):
        await mechanism.establish(handle, USER)


async def test_token_login_html_answer_is_auth_failure(serve, http_client):
    app = Flask("proxy")

    @app.route("/Users/AuthenticateByName", methods=["POST"])
    def authenticate():
        return "<html>reverse proxy default page</html>"

    handle = make_handle("jellyfin", serve(app), http_client)

    with pytest.raises(AuthFailure, match="not JSON"):
        await SERVICES["jellyfin"].auth.establish(handle, USER)

    assert handle.context.routes == []


# ============================================================================
# ApiKey
# ============================================================================

async def test_query_api_key_decorates_urls():
    handle = SimpleNamespace(context=RecordingContext())

    session = await ApiKey(name="apikey", mode="query").establish(handle, Credentials(api_key=MOCK_API_KEY))

    assert handle.context.routes == []
    assert session.decorate_url("http://nas:8082/") == f"http://nas:8082/?apikey={MOCK_API_KEY}"


async def test_header_api_key_routes_every_request():
    handle = SimpleNamespace(context=RecordingContext())

    session = await SERVICES["bazarr"].auth.establish(handle, Credentials(api_key=MOCK_API_KEY))

    assert session.headers == {"x-api-key": MOCK_API_KEY}
    assert session.decorate_url("http://bazarr.lan/") == "http://bazarr.lan/"
    (_, handler), = handle.context.routes
    route = RecordingRoute({"accept": "application/json"})
    await handler(route)
    assert route.continued_with["x-api-key"] == MOCK_API_KEY
    assert route.continued_with["accept"] == "application/json"


async def test_header_helper_overrides_existing_values():
    context = RecordingContext()
    await add_header_to_all_requests(context, {"X-Emby-Token": "new"}, "**/api/**")

    (pattern, handler), = context.routes
    assert pattern == "**/api/**"
    route = RecordingRoute({"X-Emby-Token": "old"})
    await handler(route)
    assert route.continued_with == {"X-Emby-Token": "new"}
