"""Wait until a lazily-rendering page is worth capturing.

Network idle alone is not enough for media front-ends: posters load on
viewport intersection and horizontal carousels only populate when scrolled.
The deep sequence below forces that work to happen before the capture:

1. switch lazy images to eager loading
2. walk the page vertically, then scroll every overflowing carousel
3. reload images that never completed, waiting on all of them concurrently
4. hide canvas blur placeholders
5. return to the top and settle

Pages without lazy carousels only get the load-state wait plus a delay.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import anyio
from playwright.async_api import Page

from stack_e2e.browser import settle_load_state

logger = logging.getLogger(__name__)

CAROUSEL_SELECTORS: Tuple[str, ...] = (".itemsContainer", ".scrollSlider", '[class*="scroller"]')

FORCE_EAGER_IMAGES_JS = """
() => {
  const lazy = document.querySelectorAll('img[loading="lazy"]');
  lazy.forEach(img => { img.loading = 'eager'; });
  return lazy.length;
}
"""

SCROLL_THROUGH_JS = """
async ({ selectors, stepPauseMs, edgePauseMs }) => {
  const delay = (ms) => new Promise(r => setTimeout(r, ms));

  const step = Math.max(200, window.innerHeight / 2);
  for (let y = 0; y < document.body.scrollHeight; y += step) {
    window.scrollTo(0, y);
    await delay(stepPauseMs);
  }
  window.scrollTo(0, document.body.scrollHeight);
  await delay(edgePauseMs);

  let scrolled = 0;
  for (const scroller of document.querySelectorAll(selectors.join(', '))) {
    if (scroller.scrollWidth > scroller.clientWidth) {
      scroller.scrollLeft = scroller.scrollWidth;
      await delay(edgePauseMs);
      scroller.scrollLeft = 0;
      await delay(stepPauseMs);
      scrolled += 1;
    }
  }
  return scrolled;
}
"""

RELOAD_STALLED_IMAGES_JS = """
async (timeoutMs) => {
  const stalled = Array.from(document.querySelectorAll('img'))
    .filter(img => img.src && (!img.complete || img.naturalWidth === 0));
  await Promise.all(stalled.map(img => new Promise(resolve => {
    const timer = setTimeout(resolve, timeoutMs);
    const done = () => { clearTimeout(timer); resolve(); };
    const src = img.src;
    img.src = '';
    img.src = src;
    img.addEventListener('load', done, { once: true });
    img.addEventListener('error', done, { once: true });
  })));
  return stalled.length;
}
"""

HIDE_PLACEHOLDERS_JS = """
() => {
  const canvases = document.querySelectorAll('canvas');
  canvases.forEach(c => { c.style.opacity = '0'; });
  return canvases.length;
}
"""


@dataclass(frozen=True)
class StabilizationProfile:
    """How long and how hard to wait before capturing a service's page."""

    load_state: str = "networkidle"
    load_timeout: int = 30_000
    pre_delay: float = 0.0
    deep: bool = False
    scroller_selectors: Tuple[str, ...] = CAROUSEL_SELECTORS
    step_pause_ms: int = 200
    edge_pause_ms: int = 500
    image_timeout_ms: int = 8_000
    settle_delay: float = 0.0


NETWORK_IDLE = StabilizationProfile()
LAZY_CAROUSELS = StabilizationProfile(pre_delay=3.0, deep=True, settle_delay=1.0)


async def force_eager_images(page: Page) -> int:
    return await page.evaluate(FORCE_EAGER_IMAGES_JS)


async def scroll_through(page: Page, profile: StabilizationProfile = LAZY_CAROUSELS) -> int:
    """Scroll the page and each overflowing carousel; returns carousels scrolled."""
    return await page.evaluate(
        SCROLL_THROUGH_JS,
        {
            "selectors": list(profile.scroller_selectors),
            "stepPauseMs": profile.step_pause_ms,
            "edgePauseMs": profile.edge_pause_ms,
        },
    )


async def reload_stalled_images(page: Page, timeout_ms: int = 8_000) -> int:
    """Reload images that never finished and wait for all of them at once.

    Each image resolves on load, error or ``timeout_ms``, so the whole step is
    bounded by roughly one timeout no matter how many images are stuck.
    """
    return await page.evaluate(RELOAD_STALLED_IMAGES_JS, timeout_ms)


async def hide_placeholders(page: Page) -> int:
    return await page.evaluate(HIDE_PLACEHOLDERS_JS)


async def stabilize(page: Page, profile: StabilizationProfile = NETWORK_IDLE) -> bool:
    """Bring ``page`` to a capturable state. Safe to call more than once."""
    await settle_load_state(page, profile.load_state, profile.load_timeout)
    if profile.pre_delay:
        await anyio.sleep(profile.pre_delay)

    if profile.deep:
        eager = await force_eager_images(page)
        carousels = await scroll_through(page, profile)
        stalled = await reload_stalled_images(page, profile.image_timeout_ms)
        await hide_placeholders(page)
        await page.evaluate("() => window.scrollTo(0, 0)")
        logger.debug(f"Stabilized {page.url}: eager={eager} carousels={carousels} reloaded={stalled}")

    if profile.settle_delay:
        await anyio.sleep(profile.settle_delay)
    return True
