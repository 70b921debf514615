# sitesweep/screenshot.py
"""
Viewport screenshots.

- Files land in `<screenshots_dir>/<viewport>/<domain>/<run_id>_<path>.png`.
- Capture is retried a fixed number of times with a fixed delay.
- PC captures are cropped to a centred strip no wider than `pc_crop_width`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from tenacity import (  # type: ignore[import-untyped]
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from sitesweep.config import ScreenshotSettings
from sitesweep.models import PageType, ViewportMode
from sitesweep.url_logic import sanitize_filename

log = logging.getLogger(__name__)


class ScreenshotError(Exception):
    """Raised when every capture attempt for a viewport has failed."""

    def __init__(self, url: str, viewport: str, cause: BaseException) -> None:
        super().__init__(f"Screenshot failed for {url} ({viewport}): {cause}")
        self.url = url
        self.viewport = viewport
        self.cause = cause


def crop_center(path: Path, max_width: int) -> bool:
    """
    Crop the image at `path` in place to a centred strip of at most
    `max_width` pixels. Returns True when the file was rewritten.
    """
    with Image.open(path) as img:
        width, height = img.size
        target = min(max_width, width)
        if target <= 0 or target >= width:
            return False
        left = (width - target) // 2
        cropped = img.crop((left, 0, left + target, height))
        cropped.load()
    cropped.save(path, format="PNG")
    return True


@dataclass
class ScreenshotCapture:
    screenshots_dir: Path
    settings: ScreenshotSettings

    def path_for(
        self, url: str, domain: str, viewport: str, run_id: Optional[str] = None
    ) -> Path:
        prefix = f"{run_id}_" if run_id else ""
        return (
            self.screenshots_dir / viewport / domain / f"{prefix}{sanitize_filename(url)}.png"
        )

    async def capture(
        self,
        page: Page,
        url: str,
        domain: str,
        mode: ViewportMode,
        page_type: PageType = "other",
        run_id: Optional[str] = None,
    ) -> Path:
        """Take one viewport screenshot; raises ScreenshotError when out of attempts."""
        path = self.path_for(url, domain, mode.name, run_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        timeout = (
            self.settings.homepage_timeout
            if page_type == "homepage"
            else self.settings.timeout
        )

        await page.set_viewport_size(
            {"width": mode.size.width, "height": mode.size.height}
        )

        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.settings.attempts),
            wait=wait_fixed(self.settings.retry_delay),
            retry=retry_if_exception_type(PlaywrightError),
            before_sleep=before_sleep_log(log, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retryer:
                with attempt:
                    await page.screenshot(
                        path=str(path),
                        full_page=False,
                        timeout=int(timeout * 1000),
                        animations="disabled",
                        caret="initial",
                    )
        except PlaywrightError as e:
            log.error("Failed to capture screenshot for %s: %s", url, e)
            raise ScreenshotError(url, mode.name, e) from e

        log.info("Screenshot captured: %s", path)

        if mode.is_pc:
            try:
                if crop_center(path, self.settings.pc_crop_width):
                    log.info(
                        "PC screenshot cropped to center width %dpx: %s",
                        self.settings.pc_crop_width,
                        path,
                    )
            except OSError as e:
                log.warning("Failed to crop PC screenshot %s: %s", path, e)

        return path
