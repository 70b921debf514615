# Detects content wider than the viewport.

from __future__ import annotations

import logging
from typing import List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from sitesweep.models import Issue, ViewportName

log = logging.getLogger(__name__)

OVERFLOW_SCRIPT = "() => document.body.scrollWidth - window.innerWidth"


async def check_viewport(page: Page, viewport: ViewportName) -> List[Issue]:
    """One `horizontal_scroll` error when the document scrolls sideways."""
    try:
        overflow = int(await page.evaluate(OVERFLOW_SCRIPT) or 0)
    except (PlaywrightError, TypeError, ValueError) as e:
        log.error("Failed to check viewport: %s", e)
        return []

    if overflow <= 0:
        return []
    return [
        Issue(
            type="horizontal_scroll",
            severity="error",
            message=f"Horizontal overflow detected: {overflow}px exceeds viewport width",
            viewport=viewport,
        )
    ]
