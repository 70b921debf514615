# sitesweep/readiness.py
"""
Content-readiness policies.

A page is screenshotted only once its asynchronous content has had a chance
to render. How long that takes depends on the page type, so each type gets a
policy object holding its own timing heuristics:

- FixedDelayPolicy: a fixed settle delay (homepage, detail, other pages).
- ListingReadinessPolicy: waits for load/network idle, then polls for a
  listing container that actually holds several items.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from sitesweep.config import ListingSettings, ScanSettings
from sitesweep.models import PageType, ViewportMode
from sitesweep.url_logic import site_root

log = logging.getLogger(__name__)

LISTING_PROBE_SCRIPT = """
({selectors, itemSelector, minItems, notReadyPhrases}) => {
  const text = document.body ? document.body.innerText : '';
  for (const phrase of notReadyPhrases) {
    if (text.includes(phrase)) return {blocked: phrase, selector: null};
  }
  for (const selector of selectors) {
    let el = null;
    try { el = document.querySelector(selector); } catch (e) { continue; }
    if (!el || el.children.length === 0) continue;
    if (el.querySelectorAll(itemSelector).length >= minItems) {
      return {blocked: null, selector};
    }
  }
  return {blocked: null, selector: null};
}
"""


class ContentReadinessPolicy(Protocol):
    """How a scan pass decides that a page has finished rendering."""

    reflow_settle_ms: int

    async def prepare(
        self, context: BrowserContext, page: Page, url: str, mode: ViewportMode
    ) -> None:
        ...

    async def wait_until_ready(self, page: Page) -> None:
        ...


@dataclass
class FixedDelayPolicy:
    settle_ms: int
    reflow_settle_ms: int = 800
    extra_ms: int = 500

    async def prepare(
        self, context: BrowserContext, page: Page, url: str, mode: ViewportMode
    ) -> None:
        return None

    async def wait_until_ready(self, page: Page) -> None:
        await page.wait_for_timeout(self.settle_ms + self.extra_ms)


@dataclass
class ListingReadinessPolicy:
    listing: ListingSettings
    navigation_timeout_ms: int = 20_000
    reflow_settle_ms: int = 2000
    session_settle_ms: int = 3000

    async def prepare(
        self, context: BrowserContext, page: Page, url: str, mode: ViewportMode
    ) -> None:
        """
        Listing UIs often need cookies set by the homepage; visit it once on
        the first pass so later passes start from an established session.
        """
        if not self.listing.prime_session or mode.name != "pc_normal":
            return
        root = site_root(url)
        try:
            log.info("Visiting %s to establish session", root)
            await page.goto(root, wait_until="load", timeout=self.navigation_timeout_ms)
            await page.wait_for_timeout(self.session_settle_ms)
            cookies = await context.cookies()
            log.info("Established %d cookies from homepage", len(cookies))
        except PlaywrightError as e:
            log.warning("Failed to visit homepage, continuing anyway: %s", e)

    async def _wait_for_state(self, page: Page, state: str, timeout: float) -> None:
        try:
            await page.wait_for_load_state(state, timeout=int(timeout * 1000))  # type: ignore[arg-type]
        except PlaywrightError:
            log.warning("Load state %r timeout, continuing anyway", state)

    def _probe_args(self) -> Dict[str, Any]:
        return {
            "selectors": list(self.listing.selectors),
            "itemSelector": self.listing.item_selector,
            "minItems": self.listing.min_items,
            "notReadyPhrases": list(self.listing.not_ready_phrases),
        }

    async def find_listing(self, page: Page) -> Optional[str]:
        """Poll until a listing container holds enough items; the matched selector."""
        args = self._probe_args()
        poll_ms = int(self.listing.poll_interval * 1000)
        for attempt in range(1, self.listing.attempts + 1):
            try:
                probe = await page.evaluate(LISTING_PROBE_SCRIPT, args) or {}
            except PlaywrightError as e:
                log.debug("Listing probe failed on attempt %d: %s", attempt, e)
                probe = {}
            if probe.get("blocked"):
                log.warning(
                    "Page shows %r on attempt %d, waiting...", probe["blocked"], attempt
                )
            elif probe.get("selector"):
                log.info("Found listing content with selector: %s", probe["selector"])
                return probe["selector"]
            await page.wait_for_timeout(poll_ms)
        return None

    async def wait_until_ready(self, page: Page) -> None:
        log.info("Waiting for listing page content to load...")
        await self._wait_for_state(page, "load", self.listing.load_timeout)
        await self._wait_for_state(page, "networkidle", self.listing.network_idle_timeout)

        if await self.find_listing(page) is None:
            log.warning("Could not detect listing content, using extended wait")
            await page.wait_for_timeout(int(self.listing.fallback_wait * 1000))

        await page.wait_for_timeout(int(self.listing.final_settle * 1000))


def readiness_policy_for(page_type: PageType, settings: ScanSettings) -> ContentReadinessPolicy:
    if page_type == "list":
        return ListingReadinessPolicy(
            listing=settings.listing,
            navigation_timeout_ms=int(settings.navigation_timeout * 1000),
        )
    return FixedDelayPolicy(settle_ms=int(settings.settle_delay * 1000))
