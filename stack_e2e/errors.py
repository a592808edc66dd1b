"""Exception types shared across the harness."""
from __future__ import annotations


class ConfigurationError(Exception):
    """Raised for harness misconfiguration (e.g. an unknown service name)."""


class ServiceSkipped(Exception):
    """Raised before any network call when required credentials are absent."""

    def __init__(self, service: str, missing: list[str]) -> None:
        self.service = service
        self.missing = list(missing)
        super().__init__(f"{' / '.join(self.missing)} not set")


class AuthFailure(AssertionError):
    """Login call returned a non-success status."""


class VerificationFailure(AssertionError):
    """Post-stabilization success predicate did not hold."""
