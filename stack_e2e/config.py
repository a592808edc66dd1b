"""Shared configuration for the media stack verification harness.

Values come from the process environment with `.env.e2e` as a fallback:

- NAS_HOST: host running the stack (default: localhost)
- PLAYWRIGHT_HEADLESS: "true"/"1" for headless Chromium (default: true)
- SCREENSHOT_DIR: where evidence snapshots are written
- SCREENSHOT_VIEWPORT_WIDTH / SCREENSHOT_VIEWPORT_HEIGHT: browser viewport
- PLAYWRIGHT_TIMEOUT_MS: default timeout for browser operations

Per-service credentials (JELLYFIN_USERNAME, SONARR_API_KEY, ...) are optional.
A service whose credentials are missing is skipped, never failed.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from stack_e2e.env_defaults import get_env
from stack_e2e.errors import ServiceSkipped

if TYPE_CHECKING:
    from stack_e2e.services import ServiceDescriptor

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_EVIDENCE_DIR = REPO_ROOT / "screenshots"


@dataclass(frozen=True)
class Credentials:
    """Credentials for one service. Unused fields stay None."""

    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None

    def __repr__(self) -> str:
        masked = {k: ("***" if v else None) for k, v in self.__dict__.items()}
        return f"Credentials({masked})"


class HarnessConfig:
    """Configuration read once at startup.

    Pass ``environ`` to read from an explicit mapping instead of the process
    environment and `.env.e2e` (used by the test-suite).
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ

        self.target_host: str = self.get("NAS_HOST", "localhost")

        headless_str = self.get("PLAYWRIGHT_HEADLESS", "true")
        self.playwright_headless: bool = headless_str.lower() in {"true", "1"}

        self.viewport: Dict[str, int] = {
            "width": int(self.get("SCREENSHOT_VIEWPORT_WIDTH", "1920")),
            "height": int(self.get("SCREENSHOT_VIEWPORT_HEIGHT", "1080")),
        }
        self.default_timeout_ms: int = int(self.get("PLAYWRIGHT_TIMEOUT_MS", "30000"))

        evidence_dir = self.get("SCREENSHOT_DIR")
        self.evidence_dir: Path = Path(evidence_dir) if evidence_dir else DEFAULT_EVIDENCE_DIR

        if environ is None and not self.get("NAS_HOST"):
            print("[CONFIG] NAS_HOST not set, targeting services on localhost")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self._environ is not None:
            return self._environ.get(key) or default
        return get_env(key, default)

    # ---- credentials -------------------------------------------------------------
    def missing(self, keys: List[str]) -> List[str]:
        """Return the subset of ``keys`` that are not configured."""
        return [key for key in keys if not self.get(key)]

    def credentials_for(self, descriptor: "ServiceDescriptor") -> Credentials:
        """Resolve a service's credentials or raise ServiceSkipped.

        The check happens before any network call so a skipped service has
        no side effects.
        """
        env_names = descriptor.credential_env
        missing = self.missing(descriptor.required_credentials)
        if missing:
            raise ServiceSkipped(descriptor.name, missing)
        return Credentials(**{field: self.get(env) for field, env in env_names.items()})


# Singleton instance - initialized on first import
settings = HarnessConfig()
