# sitesweep/scanner.py
"""
Per-page multi-viewport scanning.

Each sampled page is visited four times, one isolated browser context per
viewport mode, strictly in order:

    pc_normal -> mobile_normal -> pc_spider -> mobile_spider

A pass that blows up is recorded as a `timeout` issue for its viewport and
the next pass still runs. Load time and HTTP status come from `pc_normal`.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from playwright.async_api import Browser, BrowserContext, Page, Route
from playwright.async_api import Error as PlaywrightError

from sitesweep.config import ScanSettings
from sitesweep.error_detector import ConsoleCollector, ErrorDetector, read_request_id
from sitesweep.models import Issue, PageResult, PageType, ViewportMode
from sitesweep.readiness import ContentReadinessPolicy, readiness_policy_for
from sitesweep.screenshot import ScreenshotCapture, ScreenshotError
from sitesweep.viewport_check import check_viewport

log = logging.getLogger(__name__)

FONT_REQUEST = re.compile(r"\.(woff2?|ttf|otf|eot)(\?|$)", re.IGNORECASE)

REFLOW_SCRIPT = """
() => {
  void document.body.offsetHeight;
  window.scrollTo(0, document.body.scrollHeight);
  window.scrollTo(0, 0);
}
"""

# Optional collaborator run against the pc_normal page (e.g. an SEO audit).
PageAnalyzer = Callable[[Page], Awaitable[Dict[str, Any]]]


async def _abort_font(route: Route) -> None:
    await route.abort("failed")


@dataclass
class MultiViewportScanner:
    browser: Browser
    settings: ScanSettings
    screenshots: ScreenshotCapture
    page_analyzer: Optional[PageAnalyzer] = None

    error_detector: ErrorDetector = field(init=False)

    def __post_init__(self) -> None:
        self.error_detector = ErrorDetector(
            settings=self.settings.error_detector, checks=self.settings.checks
        )

    async def scan_page(
        self,
        url: str,
        domain: str,
        category: str,
        page_type: PageType,
        run_id: Optional[str] = None,
    ) -> PageResult:
        result = PageResult(url=url, domain=domain, page_type=page_type, category=category)
        policy = readiness_policy_for(page_type, self.settings)

        for mode in self.settings.viewport_modes:
            try:
                await self._scan_viewport(result, mode, policy, run_id)
            except Exception as e:
                log.error("Failed to scan %s with %s: %s", url, mode.name, e)
                if self.settings.checks.timeout:
                    result.issues.append(
                        Issue(
                            type="timeout",
                            severity="error",
                            message=str(e) or type(e).__name__,
                            viewport=mode.name,
                        )
                    )

        log.info(
            "Scan complete for %s: %d issues across %d viewports (%s)",
            url,
            len(result.issues),
            len(self.settings.viewport_modes),
            result.status,
        )
        return result

    async def _new_context(self, mode: ViewportMode) -> BrowserContext:
        context = await self.browser.new_context(**mode.context_options())
        await context.route(FONT_REQUEST, _abort_font)
        return context

    async def _scan_viewport(
        self,
        result: PageResult,
        mode: ViewportMode,
        policy: ContentReadinessPolicy,
        run_id: Optional[str],
    ) -> None:
        context = await self._new_context(mode)
        try:
            page = await context.new_page()
            console = ConsoleCollector.attach(page)
            log.info("Testing %s with %s", result.url, mode.name)

            await policy.prepare(context, page, result.url, mode)

            started = time.monotonic()
            response = await page.goto(
                result.url,
                wait_until="domcontentloaded",
                timeout=int(self.settings.navigation_timeout * 1000),
            )
            status = response.status if response is not None else 0
            if mode.name == "pc_normal":
                result.load_time_ms = int((time.monotonic() - started) * 1000)
                result.http_status = status

            await policy.wait_until_ready(page)

            checks = self.settings.checks
            if checks.viewport_overflow or checks.horizontal_scroll:
                result.issues.extend(await check_viewport(page, mode.name))

            try:
                await page.evaluate(REFLOW_SCRIPT)
            except PlaywrightError as e:
                log.debug("Reflow failed on %s: %s", result.url, e)
            await page.wait_for_timeout(policy.reflow_settle_ms)

            try:
                path = await self.screenshots.capture(
                    page, result.url, result.domain, mode, result.page_type, run_id
                )
                result.screenshots[mode.name] = str(path)
            except ScreenshotError as e:
                log.warning("Failed to capture screenshot for %s with %s", result.url, mode.name)
                result.issues.append(
                    Issue(
                        type="screenshot_failed",
                        severity="error",
                        message=str(e),
                        viewport=mode.name,
                    )
                )

            if not mode.is_spider:
                result.issues.extend(
                    await self.error_detector.detect(page, mode.name, console.errors, status)
                )

            request_id = await read_request_id(page)
            if request_id:
                result.request_ids[mode.name] = request_id

            if mode.name == "pc_normal" and self.page_analyzer is not None:
                await self._analyze(result, page, self.page_analyzer)
        finally:
            await context.close()

    async def _analyze(
        self, result: PageResult, page: Page, analyzer: PageAnalyzer
    ) -> None:
        try:
            log.info("Running page analysis for %s", result.url)
            result.seo = await analyzer(page)
        except Exception as e:
            log.error("Page analysis failed for %s: %s", result.url, e, exc_info=True)
