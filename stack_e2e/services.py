"""Service registry: where each service lives and how it authenticates.

Two addressing schemes exist:

- direct: ``http://<host>:<port>`` for services published on the host
- virtual host: ``http://<service>.lan`` for services bound to the host's
  loopback interface, reachable from a remote runner only through the
  name-based reverse proxy

The virtual host is used only for loopback-bound services and only when the
target host is not the local machine.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional
from urllib.parse import urlsplit

from stack_e2e.auth import ApiKey, AuthMechanism, CookieBridge, FormLogin, TokenApi
from stack_e2e.config import HarnessConfig
from stack_e2e.errors import ConfigurationError
from stack_e2e.stabilize import LAZY_CAROUSELS, NETWORK_IDLE, StabilizationProfile
from stack_e2e.verify import SuccessCheck

LAN_DOMAIN = "lan"
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}

JELLYFIN_CLIENT_HEADER = (
    'MediaBrowser Client="stack-e2e", Device="playwright", DeviceId="stack-e2e", Version="1.0.0"'
)


@dataclass(frozen=True)
class ServiceDescriptor:
    """Static description of one service under test."""

    name: str
    port: int
    auth: AuthMechanism
    credential_env: Mapping[str, str]
    landing_path: str = "/"
    loopback_only: bool = False
    stabilization: StabilizationProfile = NETWORK_IDLE
    check: SuccessCheck = field(default_factory=SuccessCheck)
    form_fallback: Optional[FormLogin] = None
    timeout: float = 30.0

    @property
    def required_credentials(self) -> List[str]:
        return list(self.credential_env.values())


def jellyfin_storage(payload: Mapping[str, Any], base_url: str) -> Dict[str, str]:
    """Credentials blob the Jellyfin web client reads from localStorage."""
    user = payload.get("User") or {}
    server_id = payload.get("ServerId") or user.get("ServerId", "")
    server = {
        "Id": server_id,
        "ManualAddress": base_url,
        "LastConnectionMode": 2,
        "manualAddressOnly": True,
        "DateLastAccessed": int(time.time() * 1000),
        "AccessToken": payload.get("AccessToken"),
        "UserId": user.get("Id"),
    }
    return {"jellyfin_credentials": json.dumps({"Servers": [server]})}


def _user_password(prefix: str) -> Dict[str, str]:
    return {"username": f"{prefix}_USERNAME", "password": f"{prefix}_PASSWORD"}


def _arr(name: str, port: int) -> ServiceDescriptor:
    return ServiceDescriptor(
        name=name,
        port=port,
        auth=FormLogin(login_path="/login"),
        credential_env=_user_password(name.upper()),
    )


SERVICES: Dict[str, ServiceDescriptor] = {
    "jellyfin": ServiceDescriptor(
        name="jellyfin",
        port=8096,
        auth=TokenApi(
            login_path="/Users/AuthenticateByName",
            request_headers={"X-Emby-Authorization": JELLYFIN_CLIENT_HEADER},
            seed_storage=jellyfin_storage,
        ),
        credential_env=_user_password("JELLYFIN"),
        stabilization=LAZY_CAROUSELS,
        form_fallback=FormLogin(
            username_selectors=('input[id="txtManualName"]', 'input[name="username"]', 'input[placeholder*="ser"]'),
            password_selectors=('input[id="txtManualPassword"]', 'input[type="password"]'),
            submit_selectors=('button[type="submit"]', 'button:has-text("Sign in")'),
            intermediate_text="Manual Login",
        ),
        timeout=60.0,
    ),
    "sonarr": _arr("sonarr", 8989),
    "radarr": _arr("radarr", 7878),
    "prowlarr": _arr("prowlarr", 9696),
    "qbittorrent": ServiceDescriptor(
        name="qbittorrent",
        port=8085,
        auth=CookieBridge(login_path="/api/v2/auth/login", encoding="form", reject_body="Fails."),
        credential_env=_user_password("QBIT"),
        check=SuccessCheck(markers=("text=TORRENTS", "text=VueTorrent")),
    ),
    "sabnzbd": ServiceDescriptor(
        name="sabnzbd",
        port=8082,
        auth=ApiKey(name="apikey", mode="query"),
        credential_env={"api_key": "SABNZBD_API_KEY"},
        check=SuccessCheck(markers=('h2:has-text("Queue")', ".main-header", ".sabnzbd")),
    ),
    "seerr": ServiceDescriptor(
        name="seerr",
        port=5055,
        # Seerr signs users in with their Jellyfin account
        auth=CookieBridge(login_path="/api/v1/auth/jellyfin", encoding="json"),
        credential_env=_user_password("JELLYFIN"),
        loopback_only=True,
        stabilization=StabilizationProfile(settle_delay=2.0),
    ),
    "bazarr": ServiceDescriptor(
        name="bazarr",
        port=6767,
        auth=ApiKey(name="x-api-key", mode="header"),
        credential_env={"api_key": "BAZARR_API_KEY"},
        loopback_only=True,
        stabilization=StabilizationProfile(load_state="domcontentloaded", settle_delay=3.0),
    ),
    "pihole": ServiceDescriptor(
        name="pihole",
        port=8081,
        auth=CookieBridge(
            login_path="/api/auth",
            body_fields={"password": "password"},
            encoding="json",
            body_cookie=("sid", "session.sid"),
            strict=False,
        ),
        credential_env={"password": "PIHOLE_PASSWORD"},
        landing_path="/admin/",
        check=SuccessCheck(
            forbidden_url_marker=None,
            markers=("#queries-over-time", "canvas", ".card", '[class*="dashboard"]'),
        ),
        form_fallback=FormLogin(
            username_selectors=(),
            password_selectors=('input[type="password"]',),
            submit_selectors=('button:has-text("Log in")', 'button[type="submit"]'),
            probe_timeout=2_000,
        ),
    ),
}


class ServiceRegistry:
    """Resolve logical service names to descriptors and base URLs.

    ``ports`` overrides the published port per service, e.g. to point the
    harness at local mock servers.
    """

    def __init__(
        self,
        host: str,
        services: Optional[Mapping[str, ServiceDescriptor]] = None,
        ports: Optional[Mapping[str, int]] = None,
        lan_domain: str = LAN_DOMAIN,
    ) -> None:
        self.host = host
        self.lan_domain = lan_domain
        self._services = dict(SERVICES if services is None else services)
        self._ports = dict(ports or {})

    @classmethod
    def from_config(cls, config: HarnessConfig) -> "ServiceRegistry":
        return cls(config.target_host)

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self._services.values())

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def names(self) -> List[str]:
        return list(self._services)

    def descriptor(self, name: str) -> ServiceDescriptor:
        try:
            return self._services[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown service '{name}'. Known services: {', '.join(sorted(self._services))}"
            ) from None

    @property
    def is_local_target(self) -> bool:
        return self.host in LOCAL_HOSTS

    def base_url(self, name: str) -> str:
        descriptor = self.descriptor(name)
        if descriptor.loopback_only and not self.is_local_target:
            return f"http://{name}.{self.lan_domain}"
        port = self._ports.get(name, descriptor.port)
        return f"http://{self.host}:{port}"

    def url(self, name: str, path: str = "") -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return self.base_url(name) + path

    def cookie_domain(self, name: str) -> str:
        """Host that bridged cookies are scoped to."""
        # the resolved hostname (e.g. seerr.lan), not the raw target host
        return urlsplit(self.base_url(name)).hostname or self.host
