# sitesweep/error_detector.py
"""
Script, asset and error-page detection for the non-spider scan passes.

Console errors are gathered by a ConsoleCollector attached as soon as the
page is created, so messages logged during navigation are not lost.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from playwright.async_api import ConsoleMessage, Page
from playwright.async_api import Error as PlaywrightError

from sitesweep.config import CheckToggles, ErrorDetectorSettings
from sitesweep.models import Issue, ViewportName

log = logging.getLogger(__name__)

OK_STATUSES = (200, 304)

PAGE_DATA_SCRIPT = """
(errorPatterns) => {
  const broken = [];
  document.querySelectorAll('img').forEach(img => {
    if (img.complete && img.naturalWidth === 0 && img.naturalHeight === 0) {
      broken.push(img.currentSrc || img.src);
    }
  });
  const text = document.body ? (document.body.innerText || '') : '';
  return {
    brokenImages: broken,
    errorTexts: errorPatterns.filter(p => text.includes(p)),
    requestId: window.__REQUEST_ID__ || null,
  };
}
"""

REQUEST_ID_SCRIPT = "() => window.__REQUEST_ID__ || null"


@dataclass
class ConsoleCollector:
    """Accumulates console errors and uncaught page errors for one page."""

    errors: List[str] = field(default_factory=list)

    @classmethod
    def attach(cls, page: Page) -> "ConsoleCollector":
        collector = cls()
        page.on("console", collector.on_console)
        page.on("pageerror", collector.on_page_error)
        return collector

    def on_console(self, message: ConsoleMessage) -> None:
        if message.type == "error":
            self.errors.append(message.text)

    def on_page_error(self, error: Any) -> None:
        self.errors.append(str(getattr(error, "message", error)))


async def read_request_id(page: Page) -> Optional[str]:
    """The page-embedded diagnostic identifier, if the site exposes one."""
    try:
        value = await page.evaluate(REQUEST_ID_SCRIPT)
    except PlaywrightError as e:
        log.debug("Could not read request id: %s", e)
        return None
    return str(value) if value else None


@dataclass
class ErrorDetector:
    settings: ErrorDetectorSettings
    checks: CheckToggles = field(default_factory=CheckToggles)

    def _is_ignored(self, message: str) -> bool:
        return any(p in message for p in self.settings.ignored_console_patterns)

    async def detect(
        self,
        page: Page,
        viewport: ViewportName,
        console_errors: List[str],
        http_status: Optional[int] = None,
    ) -> List[Issue]:
        issues: List[Issue] = []

        if self.checks.http_errors and http_status and http_status not in OK_STATUSES:
            issues.append(
                Issue(
                    type="http_error",
                    severity="error",
                    message=f"HTTP status code {http_status} (expected 200 or 304)",
                    viewport=viewport,
                )
            )

        await page.wait_for_timeout(int(self.settings.settle * 1000))

        try:
            data = await page.evaluate(
                PAGE_DATA_SCRIPT, list(self.settings.error_text_patterns)
            ) or {}
        except PlaywrightError as e:
            log.warning("Failed to check page for broken images: %s", e)
            data = {}

        if self.checks.broken_images:
            for src in data.get("brokenImages") or []:
                issues.append(
                    Issue(
                        type="broken_image",
                        severity="warning",
                        message=f"Broken image: {src}",
                        viewport=viewport,
                    )
                )

        for text in data.get("errorTexts") or []:
            issues.append(
                Issue(
                    type="error_text",
                    severity="error",
                    message=f'Error text detected on page: "{text}"',
                    viewport=viewport,
                )
            )

        request_id = data.get("requestId")
        if request_id:
            issues.append(
                Issue(
                    type="request_id",
                    severity="info",
                    message=f"Request ID: {request_id}",
                    viewport=viewport,
                )
            )

        if self.checks.js_errors:
            for message in console_errors:
                if self._is_ignored(message):
                    continue
                issues.append(
                    Issue(
                        type="js_error",
                        severity="warning",
                        message=f"JavaScript error: {message}",
                        viewport=viewport,
                    )
                )

        return issues
