"""Full-page evidence snapshots, one PNG per verified service."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image
from playwright.async_api import Page

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Evidence:
    service: str
    path: Path
    width: int
    height: int


def evidence_path(evidence_dir: Path, service: str) -> Path:
    return Path(evidence_dir) / f"{service}.png"


def discard(evidence_dir: Path, service: str) -> None:
    """Remove a previous run's snapshot so a failing run leaves nothing behind."""
    evidence_path(evidence_dir, service).unlink(missing_ok=True)


async def capture(page: Page, service: str, evidence_dir: Path) -> Evidence:
    """Write ``<evidence_dir>/<service>.png``, replacing any earlier capture.

    The image is written to a temporary file first and renamed into place.
    """
    target = evidence_path(evidence_dir, service)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp = target.with_name(f".{target.name}.tmp")

    try:
        await page.screenshot(path=str(temp), type="png", full_page=True)
        temp.replace(target)
    finally:
        temp.unlink(missing_ok=True)

    with Image.open(target) as image:
        width, height = image.size

    logger.info(f"[{service}] Evidence saved to {target} ({width}x{height})")
    return Evidence(service=service, path=target, width=width, height=height)
