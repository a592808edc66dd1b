"""Read-only API assertions and the VPN reachability probe.

Sonarr, Radarr and qBittorrent share the VPN container's network namespace
and only start once the tunnel is healthy, so a successful authenticated
status call to Sonarr implies the tunnel is up.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Tuple

import httpx

from stack_e2e.config import HarnessConfig, settings
from stack_e2e.errors import ServiceSkipped, VerificationFailure
from stack_e2e.services import ServiceRegistry
from stack_e2e.verify import assert_json_field

API_KEY_HEADER = "X-Api-Key"


async def get_json(client: httpx.AsyncClient, url: str, api_key: str) -> Any:
    response = await client.get(url, headers={API_KEY_HEADER: api_key})
    assert response.is_success, f"GET {url} returned HTTP {response.status_code}"
    try:
        return response.json()
    except ValueError:
        raise VerificationFailure(f"GET {url} did not return JSON")


def assert_non_empty(collection: Any, what: str = "collection") -> None:
    if not isinstance(collection, Sequence) or len(collection) == 0:
        raise VerificationFailure(f"Expected a non-empty {what}, got {collection!r}")


def assert_contains_record(records: Any, expected: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the first record whose fields include every item of ``expected``."""
    for record in records or []:
        if isinstance(record, Mapping) and all(record.get(k) == v for k, v in expected.items()):
            return record
    raise VerificationFailure(f"No record matching {dict(expected)} in {records!r}")


@dataclass(frozen=True)
class ApiCheck:
    """A single GET against a service API, with one kind of expectation."""

    name: str
    service: str
    path: str
    api_key_env: str
    expect_field: Optional[Tuple[str, Any]] = None
    expect_record: Mapping[str, Any] = field(default_factory=dict)
    expect_non_empty: bool = False

    async def run(
        self,
        registry: ServiceRegistry,
        client: httpx.AsyncClient,
        config: HarnessConfig = settings,
    ) -> Any:
        api_key = config.get(self.api_key_env)
        if not api_key:
            raise ServiceSkipped(self.service, [self.api_key_env])

        payload = await get_json(client, registry.url(self.service, self.path), api_key)
        if self.expect_field is not None:
            assert_json_field(payload, *self.expect_field)
        if self.expect_record:
            assert_contains_record(payload, self.expect_record)
        if self.expect_non_empty:
            assert_non_empty(payload, self.name)
        return payload


VPN_PROBE = ApiCheck(
    name="vpn-reachability",
    service="sonarr",
    path="/api/v3/system/status",
    api_key_env="SONARR_API_KEY",
    expect_field=("appName", "Sonarr"),
)

API_CHECKS: Tuple[ApiCheck, ...] = (
    VPN_PROBE,
    ApiCheck(
        name="radarr-root-folder",
        service="radarr",
        path="/api/v3/rootfolder",
        api_key_env="RADARR_API_KEY",
        expect_record={"path": "/data/media/movies", "accessible": True},
    ),
    ApiCheck(
        name="sonarr-root-folder",
        service="sonarr",
        path="/api/v3/rootfolder",
        api_key_env="SONARR_API_KEY",
        expect_record={"path": "/data/media/tv", "accessible": True},
    ),
    ApiCheck(
        name="radarr-has-movies",
        service="radarr",
        path="/api/v3/movie",
        api_key_env="RADARR_API_KEY",
        expect_non_empty=True,
    ),
    ApiCheck(
        name="sonarr-has-series",
        service="sonarr",
        path="/api/v3/series",
        api_key_env="SONARR_API_KEY",
        expect_non_empty=True,
    ),
)


async def probe_reachability(
    registry: ServiceRegistry,
    config: HarnessConfig = settings,
    check: ApiCheck = VPN_PROBE,
) -> Any:
    async with httpx.AsyncClient(verify=False, timeout=15.0) as client:
        return await check.run(registry, client, config)
