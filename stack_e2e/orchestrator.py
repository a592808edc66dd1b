"""Run establish -> navigate -> stabilize -> verify -> capture per service.

Each service runs as an independent unit: its own context, its own timeout,
its own result. A failure or outage in one service never hides the others.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import anyio
import httpx
from playwright.async_api import Error as PlaywrightError

from stack_e2e.browser import ToolError
from stack_e2e.config import HarnessConfig, settings
from stack_e2e.errors import ServiceSkipped
from stack_e2e.evidence import Evidence, capture, discard
from stack_e2e.session_manager import SessionManager
from stack_e2e.stabilize import stabilize
from stack_e2e.verify import verify

logger = logging.getLogger(__name__)

PASSED = "passed"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class ServiceResult:
    service: str
    status: str
    reason: str = ""
    evidence: Optional[Evidence] = None
    duration: float = 0.0


class ServiceRun:
    """One service's verification, from credential check to evidence file."""

    def __init__(
        self,
        name: str,
        manager: SessionManager,
        config: HarnessConfig = settings,
        evidence_dir: Optional[Path] = None,
    ) -> None:
        self.manager = manager
        self.config = config
        self.descriptor = manager.registry.descriptor(name)
        self.evidence_dir = Path(evidence_dir) if evidence_dir else config.evidence_dir

    async def execute(self) -> Evidence:
        """Run the service and return its evidence.

        Raises ServiceSkipped (before any network call) when credentials are
        missing, AssertionError subclasses for auth/verification failures and
        TimeoutError when the service exceeds its overall timeout.
        """
        descriptor = self.descriptor
        credentials = self.config.credentials_for(descriptor)
        discard(self.evidence_dir, descriptor.name)

        with anyio.fail_after(descriptor.timeout):
            async with self.manager.session(descriptor.name) as handle:
                handle.auth = await descriptor.auth.establish(handle, credentials)
                await handle.navigate(descriptor.landing_path, wait_until=descriptor.stabilization.load_state)

                if descriptor.form_fallback is not None:
                    await descriptor.form_fallback.complete_if_present(handle, credentials)

                await stabilize(handle.page, descriptor.stabilization)
                await verify(handle.page, descriptor.check, descriptor.name)
                return await capture(handle.page, descriptor.name, self.evidence_dir)


async def run_service(
    name: str,
    manager: SessionManager,
    config: HarnessConfig = settings,
    evidence_dir: Optional[Path] = None,
) -> Evidence:
    return await ServiceRun(name, manager, config, evidence_dir).execute()


async def run_all(
    manager: SessionManager,
    config: HarnessConfig = settings,
    services: Optional[Iterable[str]] = None,
    evidence_dir: Optional[Path] = None,
) -> List[ServiceResult]:
    """Run every service (or ``services``) and collect one result per service.

    Unknown service names raise ConfigurationError up front; everything else
    is recorded on the service's own result.
    """
    names = list(services) if services is not None else manager.registry.names()
    runs = [ServiceRun(name, manager, config, evidence_dir) for name in names]

    results: List[ServiceResult] = []
    for run in runs:
        name = run.descriptor.name
        started = time.monotonic()
        try:
            evidence = await run.execute()
        except ServiceSkipped as exc:
            logger.info(f"[{name}] skipped: {exc}")
            results.append(ServiceResult(name, SKIPPED, reason=str(exc)))
            continue
        except TimeoutError:
            reason = f"exceeded {run.descriptor.timeout:g}s timeout"
            logger.error(f"[{name}] failed: {reason}")
            results.append(ServiceResult(name, FAILED, reason=reason, duration=time.monotonic() - started))
            continue
        except (AssertionError, ToolError, PlaywrightError, httpx.HTTPError) as exc:
            logger.error(f"[{name}] failed: {exc}")
            results.append(ServiceResult(name, FAILED, reason=str(exc), duration=time.monotonic() - started))
            continue
        except Exception as exc:
            logger.exception(f"[{name}] failed unexpectedly")
            results.append(ServiceResult(name, FAILED, reason=f"{type(exc).__name__}: {exc}", duration=time.monotonic() - started))
            continue
        results.append(ServiceResult(name, PASSED, evidence=evidence, duration=time.monotonic() - started))
    return results
