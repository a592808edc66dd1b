"""Mock media-stack services for testing the harness.

Each factory returns a small Flask app implementing just enough of one
service's login contract and UI for the harness to authenticate, render and
verify it:

- jellyfin: token login (/Users/AuthenticateByName) plus a web login with an
  optional "Manual Login" user picker, lazy-loading home page
- sonarr/radarr/prowlarr: HTML form login at /login and the v3 API
- qbittorrent: form-encoded /api/v2/auth/login issuing a SID cookie
- sabnzbd: ?apikey= query parameter
- seerr: JSON /api/v1/auth/jellyfin issuing a connect.sid cookie
- bazarr: X-API-KEY header on every request (including XHR)
- pihole: JSON /api/auth returning the session id in the body
- gallery: pages exercising the stabilization sequence

:class:`MockServer` serves an app on an ephemeral port from a daemon thread;
:class:`MockStack` starts one server per service.
"""
from __future__ import annotations

import io
import secrets
import threading
import time
from typing import Any, Dict, List, Mapping, Optional, Set

from flask import Flask, Response, jsonify, redirect, request
from PIL import Image
from werkzeug.serving import make_server

# Default test credentials
MOCK_USERNAME = "tester"
MOCK_PASSWORD = "correct horse"
MOCK_API_KEY = "0123456789abcdef0123456789abcdef"
MOCK_PIHOLE_PASSWORD = "pihole-secret"
MOCK_SERVER_ID = "f3b9c2d1e0a94b7d8c6e5f4a3b2c1d0e"
MOCK_USER_ID = "0d1c2b3a4f5e6d7c8b9a0f1e2d3c4b5a"

# How long /slow/ images hang before answering
SLOW_IMAGE_SECONDS = 5.0

RADARR_ROOT_FOLDERS = [{"id": 1, "path": "/data/media/movies", "accessible": True, "freeSpace": 1 << 40}]
SONARR_ROOT_FOLDERS = [{"id": 1, "path": "/data/media/tv", "accessible": True, "freeSpace": 1 << 40}]
RADARR_MOVIES = [{"id": 1, "title": "Big Buck Bunny", "year": 2008, "hasFile": True}]
SONARR_SERIES = [{"id": 1, "title": "Sintel Chronicles", "year": 2010, "seasonCount": 1}]


def png_bytes(color: tuple = (40, 120, 200), size: tuple = (60, 90)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _png_response() -> Response:
    return Response(png_bytes(), mimetype="image/png")


def _page(title: str, body: str) -> str:
    return (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{title}</title></head><body>{body}</body></html>"
    )


def _set_cookie(response: Response, name: str, value: str, attributes: str = "Path=/; HttpOnly") -> Response:
    response.headers.add("Set-Cookie", f"{name}={value}; {attributes}")
    return response


def _credentials_valid(username: Optional[str], password: Optional[str]) -> bool:
    return username == MOCK_USERNAME and password == MOCK_PASSWORD


# ============================================================================
# Jellyfin
# ============================================================================

def _carousel_html(sources: List[str]) -> str:
    cards = "".join(
        "<div class='card' style='display:inline-block;position:relative;width:160px;height:240px;margin:4px'>"
        f"<img loading='lazy' src='{src}' style='width:160px;height:240px'>"
        "<canvas class='blurhash' width='160' height='240' "
        "style='position:absolute;left:0;top:0;background:#333'></canvas>"
        "</div>"
        for src in sources
    )
    return (
        "<div class='itemsContainer scrollSlider' "
        "style='width:600px;overflow-x:auto;white-space:nowrap'>"
        f"{cards}</div>"
    )


def create_jellyfin_app() -> Flask:
    app = Flask("mock_jellyfin")
    app.config["TESTING"] = True
    tokens: Set[str] = set()
    web_sessions: Set[str] = set()

    def _authorized() -> bool:
        return request.headers.get("X-Emby-Token") in tokens or request.cookies.get("jf_session") in web_sessions

    @app.route("/Users/AuthenticateByName", methods=["POST"])
    def authenticate_by_name():
        if "MediaBrowser" not in request.headers.get("X-Emby-Authorization", ""):
            return jsonify({"error": "missing client authorization"}), 400
        body = request.get_json(silent=True) or {}
        if not _credentials_valid(body.get("Username"), body.get("Pw")):
            return Response("Error processing request.", status=401)
        token = secrets.token_hex(16)
        tokens.add(token)
        return jsonify({
            "User": {"Name": MOCK_USERNAME, "Id": MOCK_USER_ID, "ServerId": MOCK_SERVER_ID},
            "SessionInfo": {"UserId": MOCK_USER_ID, "Client": "stack-e2e"},
            "AccessToken": token,
            "ServerId": MOCK_SERVER_ID,
        })

    @app.route("/")
    def home():
        if not _authorized():
            return redirect("/web/login")
        sections = []
        for n in range(3):
            posters = [f"/Items/s{n}-{i}/Images/Primary" for i in range(8)]
            sections.append(
                f"<h2 class='sectionTitle'>Section {n}</h2>{_carousel_html(posters)}<div style='height:700px'></div>"
            )
        return _page("Jellyfin", "<h1>Home</h1>" + "".join(sections))

    @app.route("/web/login", methods=["GET"])
    def web_login():
        body = (
            "<div id='userPicker'><h1>Please sign in</h1>"
            "<button id='manual' onclick=\"document.getElementById('manualLoginForm').style.display='block';"
            "this.parentNode.style.display='none'\">Manual Login</button></div>"
            "<form id='manualLoginForm' method='post' action='/web/login' style='display:none'>"
            "<input id='txtManualName' name='username' placeholder='User'>"
            "<input id='txtManualPassword' name='password' type='password'>"
            "<button type='submit'>Sign in</button></form>"
        )
        return _page("Jellyfin", body)

    @app.route("/web/login", methods=["POST"])
    def web_login_submit():
        if not _credentials_valid(request.form.get("username"), request.form.get("password")):
            return redirect("/web/login?error=1")
        session_id = secrets.token_hex(16)
        web_sessions.add(session_id)
        return _set_cookie(redirect("/"), "jf_session", session_id)

    @app.route("/Items/<item_id>/Images/Primary")
    def item_image(item_id: str):
        if not _authorized():
            return Response(status=401)
        return _png_response()

    return app


# ============================================================================
# Sonarr / Radarr / Prowlarr
# ============================================================================

def create_arr_app(app_name: str, api_payloads: Optional[Mapping[str, Any]] = None) -> Flask:
    """Form-login *arr application with a read-only v3 API."""
    app = Flask(f"mock_{app_name.lower()}")
    app.config["TESTING"] = True
    sessions: Set[str] = set()
    cookie_name = f"{app_name}Auth"
    payloads: Dict[str, Any] = {"system/status": {"appName": app_name, "version": "4.0.0.0"}}
    payloads.update(api_payloads or {})

    @app.route("/login", methods=["GET"])
    def login_page():
        body = (
            f"<h1>{app_name}</h1><form method='post' action='/login'>"
            "<input id='username' name='username' type='text'>"
            "<input id='password' name='password' type='password'>"
            "<button type='submit'>Log in</button></form>"
        )
        return _page(f"{app_name} - Login", body)

    @app.route("/login", methods=["POST"])
    def login_submit():
        if not _credentials_valid(request.form.get("username"), request.form.get("password")):
            return redirect("/login?loginFailed=true")
        session_id = secrets.token_hex(16)
        sessions.add(session_id)
        return _set_cookie(redirect("/"), cookie_name, session_id)

    @app.route("/")
    def dashboard():
        if request.cookies.get(cookie_name) not in sessions:
            return redirect("/login?returnUrl=%2F")
        return _page(app_name, f"<div id='root'><h1>{app_name}</h1><div class='dashboard'>Calendar</div></div>")

    @app.route("/api/v3/<path:resource>")
    def api(resource: str):
        if request.headers.get("X-Api-Key") != MOCK_API_KEY:
            return jsonify({"error": "Unauthorized"}), 401
        if resource not in payloads:
            return jsonify({"message": "NotFound"}), 404
        return jsonify(payloads[resource])

    return app


# ============================================================================
# qBittorrent (VueTorrent)
# ============================================================================

def create_qbittorrent_app(fail_status: int = 401) -> Flask:
    """``fail_status`` 200 mimics older releases answering "Fails." with 200."""
    app = Flask("mock_qbittorrent")
    app.config["TESTING"] = True
    sessions: Set[str] = set()

    @app.route("/api/v2/auth/login", methods=["POST"])
    def login():
        if not _credentials_valid(request.form.get("username"), request.form.get("password")):
            return Response("Fails.", status=fail_status, mimetype="text/plain")
        sid = secrets.token_urlsafe(24)
        sessions.add(sid)
        return _set_cookie(Response("Ok.", mimetype="text/plain"), "SID", sid, "HttpOnly; SameSite=Strict; path=/")

    @app.route("/")
    def index():
        if request.cookies.get("SID") not in sessions:
            return _page("qBittorrent WebUI", "<form id='loginform'><input name='username'></form>")
        return _page("VueTorrent", "<nav><b>VueTorrent</b></nav><main><h2>TORRENTS</h2></main>")

    return app


# ============================================================================
# SABnzbd
# ============================================================================

def create_sabnzbd_app() -> Flask:
    app = Flask("mock_sabnzbd")
    app.config["TESTING"] = True

    @app.route("/")
    def index():
        if request.args.get("apikey") != MOCK_API_KEY:
            return Response("API Key Required", status=403, mimetype="text/plain")
        return _page("SABnzbd", "<div class='main-header'><h2>Queue</h2></div><div class='sabnzbd'>Empty</div>")

    return app


# ============================================================================
# Seerr
# ============================================================================

def create_seerr_app(issue_cookie: bool = True) -> Flask:
    app = Flask("mock_seerr")
    app.config["TESTING"] = True
    sessions: Set[str] = set()
    state: Dict[str, bool] = {"anonymous": not issue_cookie}

    @app.route("/api/v1/auth/jellyfin", methods=["POST"])
    def auth_jellyfin():
        body = request.get_json(silent=True) or {}
        if not _credentials_valid(body.get("username"), body.get("password")):
            return jsonify({"message": "Unauthorized"}), 401
        response = jsonify({"id": 1, "displayName": MOCK_USERNAME, "userType": 3})
        if issue_cookie:
            # Signed express-session id; the signature ends in '='
            sid = f"s%3A{secrets.token_hex(8)}.{secrets.token_hex(8)}="
            sessions.add(sid)
            _set_cookie(response, "connect.sid", sid)
        return response

    @app.route("/")
    def discover():
        if not state["anonymous"] and request.cookies.get("connect.sid") not in sessions:
            return redirect("/login")
        return _page("Seerr", "<h1>Discover</h1><div class='slider'>Trending</div>")

    @app.route("/login")
    def login_page():
        return _page("Seerr - Sign In", "<h1>Sign In</h1>")

    return app


# ============================================================================
# Bazarr
# ============================================================================

def create_bazarr_app() -> Flask:
    app = Flask("mock_bazarr")
    app.config["TESTING"] = True

    def _authorized() -> bool:
        return request.headers.get("X-API-KEY") == MOCK_API_KEY

    @app.route("/")
    def index():
        if not _authorized():
            return redirect("/login")
        script = (
            "<script>fetch('/api/system/status').then(r => r.json())"
            ".then(d => { document.getElementById('status').textContent = d.data.bazarr_version; });"
            "</script>"
        )
        return _page("Bazarr", f"<div id='bazarr-app'><h1>Bazarr</h1><span id='status'></span></div>{script}")

    @app.route("/api/system/status")
    def status():
        if not _authorized():
            return jsonify({"error": "Unauthorized"}), 401
        return jsonify({"data": {"bazarr_version": "1.4.3"}})

    @app.route("/login")
    def login_page():
        return _page("Bazarr - Login", "<h1>Login</h1><input type='password'>")

    return app


# ============================================================================
# Pi-hole v6
# ============================================================================

def create_pihole_app(api_enabled: bool = True) -> Flask:
    """``api_enabled=False`` answers /api/auth with 429 (no free API seats)."""
    app = Flask("mock_pihole")
    app.config["TESTING"] = True
    sessions: Set[str] = set()

    def _new_session() -> str:
        sid = secrets.token_urlsafe(16)
        sessions.add(sid)
        return sid

    @app.route("/api/auth", methods=["POST"])
    def api_auth():
        if not api_enabled:
            return jsonify({"error": {"key": "api_seats_exceeded"}}), 429
        body = request.get_json(silent=True) or {}
        if body.get("password") != MOCK_PIHOLE_PASSWORD:
            return jsonify({"session": {"valid": False, "sid": None}}), 401
        sid = _new_session()
        return jsonify({"session": {"valid": True, "totp": False, "sid": sid, "csrf": secrets.token_hex(8), "validity": 1800}})

    @app.route("/admin/")
    def dashboard():
        if request.cookies.get("sid") not in sessions:
            return redirect("/admin/login")
        body = (
            "<div class='card'><h3>Total queries</h3><canvas id='queries-over-time' width='400' height='120'>"
            "</canvas></div>"
        )
        return _page("Pi-hole", body)

    @app.route("/admin/login", methods=["GET"])
    def login_page():
        body = (
            "<form method='post' action='/admin/login'><input id='current-password' name='pw' type='password'>"
            "<button type='submit'>Log in</button></form>"
        )
        return _page("Pi-hole - Login", body)

    @app.route("/admin/login", methods=["POST"])
    def login_submit():
        if request.form.get("pw") != MOCK_PIHOLE_PASSWORD:
            return redirect("/admin/login?error=1")
        return _set_cookie(redirect("/admin/"), "sid", _new_session())

    return app


# ============================================================================
# Stabilization gallery
# ============================================================================

def create_gallery_app(slow_seconds: float = SLOW_IMAGE_SECONDS) -> Flask:
    app = Flask("mock_gallery")
    app.config["TESTING"] = True

    @app.route("/img/<int:index>.png")
    def image(index: int):
        return _png_response()

    @app.route("/slow/<int:index>.png")
    def slow_image(index: int):
        time.sleep(slow_seconds)
        return _png_response()

    @app.route("/stalled")
    def stalled():
        count = int(request.args.get("count", "4"))
        images = "".join(f"<img src='/slow/{i}.png' width='60' height='90'>" for i in range(count))
        return _page("Stalled", f"<h1>Stalled</h1>{images}")

    @app.route("/lazy")
    def lazy():
        posters = [f"/img/{i}.png" for i in range(12)]
        body = (
            "<h1>Lazy</h1><div style='height:2500px'></div>"
            f"{_carousel_html(posters)}"
            "<div style='height:1500px'></div><footer id='end'>End</footer>"
        )
        return _page("Lazy", body)

    return app


# ============================================================================
# Servers
# ============================================================================

class MockServer:
    """Serve a WSGI app from a daemon thread on an ephemeral port."""

    def __init__(self, app: Flask, host: str = "127.0.0.1", port: int = 0):
        self.host = host
        self.app = app
        self.server = make_server(host, port, app, threaded=True)
        self.port = self.server.server_port
        self.thread: Optional[threading.Thread] = None

    def start(self) -> "MockServer":
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        return self

    def stop(self) -> None:
        self.server.shutdown()
        if self.thread:
            self.thread.join(timeout=5)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


def default_apps() -> Dict[str, Flask]:
    return {
        "jellyfin": create_jellyfin_app(),
        "sonarr": create_arr_app("Sonarr", {"rootfolder": SONARR_ROOT_FOLDERS, "series": SONARR_SERIES}),
        "radarr": create_arr_app("Radarr", {"rootfolder": RADARR_ROOT_FOLDERS, "movie": RADARR_MOVIES}),
        "prowlarr": create_arr_app("Prowlarr", {"indexer": []}),
        "qbittorrent": create_qbittorrent_app(),
        "sabnzbd": create_sabnzbd_app(),
        "seerr": create_seerr_app(),
        "bazarr": create_bazarr_app(),
        "pihole": create_pihole_app(),
    }


class MockStack:
    """One running mock server per service, keyed by service name."""

    def __init__(self, apps: Optional[Mapping[str, Flask]] = None, host: str = "127.0.0.1"):
        self.host = host
        self.servers: Dict[str, MockServer] = {
            name: MockServer(app, host) for name, app in (apps or default_apps()).items()
        }

    def __enter__(self) -> "MockStack":
        for server in self.servers.values():
            server.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for server in self.servers.values():
            server.stop()

    @property
    def ports(self) -> Dict[str, int]:
        return {name: server.port for name, server in self.servers.items()}

    def replace(self, name: str, app: Flask) -> MockServer:
        """Swap one service's app, e.g. for a failure scenario."""
        old = self.servers.get(name)
        if old is not None and old.thread is not None:
            old.stop()
        server = MockServer(app, self.host).start()
        self.servers[name] = server
        return server


def credential_env() -> Dict[str, str]:
    """Environment mapping matching the mock credentials above."""
    env: Dict[str, str] = {}
    for prefix in ("JELLYFIN", "SONARR", "RADARR", "PROWLARR", "QBIT"):
        env[f"{prefix}_USERNAME"] = MOCK_USERNAME
        env[f"{prefix}_PASSWORD"] = MOCK_PASSWORD
    for prefix in ("SABNZBD", "BAZARR", "SONARR", "RADARR"):
        env[f"{prefix}_API_KEY"] = MOCK_API_KEY
    env["PIHOLE_PASSWORD"] = MOCK_PIHOLE_PASSWORD
    return env


__all__: List[str] = [
    "MockServer",
    "MockStack",
    "create_arr_app",
    "create_bazarr_app",
    "create_gallery_app",
    "create_jellyfin_app",
    "create_pihole_app",
    "create_qbittorrent_app",
    "create_sabnzbd_app",
    "create_seerr_app",
    "credential_env",
]
