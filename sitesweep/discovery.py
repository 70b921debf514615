# sitesweep/discovery.py
"""
Link discovery and fingerprinting.

Goals:
- Visit the homepage once and collect same-domain links (breadth one, no
  recursion).
- Fingerprint every discovered page concurrently and join before clustering.
- A page that cannot be loaded is skipped; a page that loads but cannot be
  analysed still contributes an empty fingerprint.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from playwright.async_api import Browser, BrowserContext, Page
from playwright.async_api import Error as PlaywrightError

from sitesweep.config import ScanSettings
from sitesweep.fingerprint import extract_fingerprint
from sitesweep.models import DOMFingerprint
from sitesweep.url_logic import extract_page_links, normalize_url

log = logging.getLogger(__name__)


def homepage_url(domain: str) -> str:
    return f"https://{domain}/"


@dataclass
class PageVisitor:
    """
    Owns one browser context (crawler identity) for the classification phase.
    Use as an async context manager.
    """

    browser: Browser
    settings: ScanSettings

    _context: BrowserContext = field(init=False, repr=False)

    async def __aenter__(self) -> "PageVisitor":
        self._context = await self.browser.new_context(
            user_agent=self.settings.crawler_user_agent
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self._context.close()

    @property
    def _timeout_ms(self) -> int:
        return int(self.settings.navigation_timeout * 1000)

    async def _open(self, url: str) -> Page:
        page = await self._context.new_page()
        try:
            log.info("Visiting page: %s", url)
            await page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
            await page.wait_for_timeout(int(self.settings.settle_delay * 1000))
        except BaseException:
            await page.close()
            raise
        return page

    async def visit_homepage(self, domain: str) -> Tuple[DOMFingerprint, List[str]]:
        """Fingerprint the homepage and return it with its same-domain links."""
        url = homepage_url(domain)
        page = await self._open(url)
        try:
            html = await page.content()
            soup = BeautifulSoup(html, "html.parser")
            links = extract_page_links(
                soup,
                page.url or url,
                domain,
                self.settings.excluded_patterns,
                self.settings.use_registrable_domain,
            )
            log.info("Extracted %d unique links from %s", len(links), url)
            fingerprint = await extract_fingerprint(page, url)
        finally:
            await page.close()
        return fingerprint, links

    async def fingerprint(self, url: str) -> Optional[DOMFingerprint]:
        """Fingerprint one page; None when it could not be loaded at all."""
        try:
            page = await self._open(url)
        except PlaywrightError as e:
            log.warning("Failed to analyze %s: %s", url, e)
            return None
        try:
            return await extract_fingerprint(page, url)
        finally:
            await page.close()

    async def fingerprint_all(self, urls: Sequence[str]) -> List[DOMFingerprint]:
        """
        Fan out over `urls`, bounded only by `fingerprint_concurrency` when it
        is set. Results keep the input order; failed pages are dropped.
        """
        limit = self.settings.fingerprint_concurrency
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def run_one(url: str) -> Optional[DOMFingerprint]:
            if semaphore is None:
                return await self.fingerprint(url)
            async with semaphore:
                return await self.fingerprint(url)

        results = await asyncio.gather(*(run_one(u) for u in urls))
        return [fp for fp in results if fp is not None]


def merge_page_urls(
    discovered: Sequence[str], custom: Sequence[str], exclude: Sequence[str] = ()
) -> List[str]:
    """Discovered links followed by custom URLs, deduplicated on normalize_url()."""
    seen = {normalize_url(u) for u in exclude}
    out: List[str] = []
    for url in list(discovered) + list(custom):
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        out.append(url)
    return out
