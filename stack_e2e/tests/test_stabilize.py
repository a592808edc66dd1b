"""Stabilization, verification and capture on the gallery pages."""
import time

import pytest

from stack_e2e.errors import VerificationFailure
from stack_e2e.evidence import capture, discard
from stack_e2e.stabilize import (
    StabilizationProfile,
    reload_stalled_images,
    scroll_through,
    stabilize,
)
from stack_e2e.verify import SuccessCheck, verify

pytestmark = pytest.mark.asyncio

FAST_DEEP = StabilizationProfile(deep=True, step_pause_ms=50, edge_pause_ms=100, image_timeout_ms=3_000)

ALL_IMAGES_LOADED_JS = "() => Array.from(document.images).every(img => img.complete && img.naturalWidth > 0)"


async def test_stalled_images_are_reloaded_concurrently(page, gallery_server):
    await page.goto(f"{gallery_server.url}/stalled?count=5", wait_until="domcontentloaded")

    started = time.monotonic()
    stalled = await reload_stalled_images(page, timeout_ms=1_000)
    elapsed = time.monotonic() - started

    assert stalled == 5
    # One shared timeout, not one per image
    assert elapsed < 3.0


async def test_deep_stabilization_loads_lazy_carousel(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy")

    assert await stabilize(page, FAST_DEEP) is True

    assert await page.evaluate(ALL_IMAGES_LOADED_JS)
    opacities = await page.evaluate("() => Array.from(document.querySelectorAll('canvas')).map(c => c.style.opacity)")
    assert opacities and set(opacities) == {"0"}
    assert await page.evaluate("() => window.scrollY") == 0


async def test_scroll_through_reports_carousels(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy")
    assert await scroll_through(page, FAST_DEEP) == 1


async def test_stabilize_is_idempotent(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy")
    check = SuccessCheck(markers=("#end", ".scrollSlider"))

    await stabilize(page, FAST_DEEP)
    await verify(page, check, "gallery")
    await stabilize(page, FAST_DEEP)
    await verify(page, check, "gallery")

    assert await page.evaluate(ALL_IMAGES_LOADED_JS)


async def test_shallow_profile_only_waits(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy")
    await stabilize(page, StabilizationProfile(load_state="domcontentloaded", settle_delay=0.1))

    opacities = await page.evaluate("() => Array.from(document.querySelectorAll('canvas')).map(c => c.style.opacity)")
    assert "0" not in opacities


async def test_verify_rejects_login_url(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy?next=login")

    with pytest.raises(VerificationFailure, match="unauthenticated"):
        await verify(page, SuccessCheck(), "gallery")


async def test_verify_requires_a_marker(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy")

    with pytest.raises(VerificationFailure, match="none of"):
        await verify(page, SuccessCheck(markers=("#does-not-exist",), marker_timeout=500), "gallery")


async def test_verify_without_url_rule(page, gallery_server):
    await page.goto(f"{gallery_server.url}/lazy?from=login")
    await verify(page, SuccessCheck(forbidden_url_marker=None, markers=("#end",)), "gallery")


async def test_capture_replaces_previous_file(page, gallery_server, evidence_dir):
    evidence_dir.mkdir(parents=True)
    (evidence_dir / "gallery.png").write_bytes(b"stale")
    await page.goto(f"{gallery_server.url}/lazy")

    evidence = await capture(page, "gallery", evidence_dir)

    assert evidence.path.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
    assert evidence.width == 1920
    assert evidence.height > 1080
    assert [p.name for p in evidence_dir.iterdir()] == ["gallery.png"]


async def test_discard_tolerates_missing_file(tmp_path):
    discard(tmp_path, "absent")
    (tmp_path / "present.png").write_bytes(b"x")
    discard(tmp_path, "present")
    assert not (tmp_path / "present.png").exists()
