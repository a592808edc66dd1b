#!/usr/bin/env python3
"""
Capture evidence screenshots for every service in the media stack.

Each service is authenticated, stabilized, verified and captured on its own;
services without credentials are reported as skipped. Optionally runs the
read-only API checks (VPN reachability, root folders, libraries) as well.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import httpx

from stack_e2e.api_checks import API_CHECKS
from stack_e2e.config import settings
from stack_e2e.errors import ConfigurationError, ServiceSkipped
from stack_e2e.orchestrator import FAILED, PASSED, SKIPPED, ServiceResult, run_all
from stack_e2e.playwright_client import PlaywrightClient
from stack_e2e.services import ServiceRegistry
from stack_e2e.session_manager import SessionManager

STATUS_ICONS = {PASSED: "✅", FAILED: "❌", SKIPPED: "⏭️ "}


async def capture_services(registry: ServiceRegistry, services: Optional[List[str]], evidence_dir: Path) -> List[ServiceResult]:
    async with PlaywrightClient() as client:
        manager = SessionManager(client, registry)
        return await run_all(manager, settings, services=services, evidence_dir=evidence_dir)


async def run_api_checks(registry: ServiceRegistry) -> List[ServiceResult]:
    results = []
    async with httpx.AsyncClient(verify=False, timeout=15.0) as client:
        for check in API_CHECKS:
            try:
                await check.run(registry, client, settings)
            except ServiceSkipped as exc:
                results.append(ServiceResult(check.name, SKIPPED, reason=str(exc)))
            except (AssertionError, httpx.HTTPError) as exc:
                results.append(ServiceResult(check.name, FAILED, reason=str(exc)))
            except Exception as exc:
                logging.getLogger(__name__).exception(f"[{check.name}] failed unexpectedly")
                results.append(ServiceResult(check.name, FAILED, reason=f"{type(exc).__name__}: {exc}"))
            else:
                results.append(ServiceResult(check.name, PASSED))
    return results


def print_summary(title: str, results: List[ServiceResult]) -> None:
    print(f"\n{title}")
    print("=" * 70)
    for result in results:
        line = f"{STATUS_ICONS[result.status]} {result.service:<22} {result.status}"
        if result.evidence:
            line += f"  -> {result.evidence.path} ({result.evidence.width}x{result.evidence.height})"
        elif result.reason:
            line += f"  ({result.reason})"
        print(line)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Capture evidence screenshots of the media stack")
    parser.add_argument("--service", action="append", dest="services", help="Service to capture (repeatable)")
    parser.add_argument("--host", default=None, help="Target host (default: NAS_HOST)")
    parser.add_argument("--evidence-dir", type=Path, default=None, help="Output directory (default: SCREENSHOT_DIR)")
    parser.add_argument("--api-checks", action="store_true", help="Also run read-only API assertions")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    registry = ServiceRegistry(args.host or settings.target_host)
    evidence_dir = args.evidence_dir or settings.evidence_dir
    try:
        for name in args.services or []:
            registry.descriptor(name)
    except ConfigurationError as exc:
        print(f"❌ {exc}")
        return 2

    print(f"📸 Capturing media stack on {registry.host} into {evidence_dir}")
    results = asyncio.run(capture_services(registry, args.services, evidence_dir))
    print_summary("Service screenshots", results)

    if args.api_checks:
        api_results = asyncio.run(run_api_checks(registry))
        print_summary("API checks", api_results)
        results = results + api_results

    return 1 if any(result.status == FAILED for result in results) else 0


if __name__ == "__main__":
    sys.exit(main())
