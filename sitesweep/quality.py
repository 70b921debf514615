# sitesweep/quality.py
"""
Blank and near-blank screenshot detection.

Images are downsampled to 50x50 and the share of near-white pixels (R, G
and B all above 240) decides the verdict. Typical content pages sit around
60-85% white, so only very high ratios are flagged.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from sitesweep.models import ScreenshotQualityIssue

log = logging.getLogger(__name__)

SAMPLE_SIZE = (50, 50)
NEAR_WHITE = 240

PathLike = Union[str, Path]


def image_stats(path: PathLike) -> Tuple[float, bool]:
    """White percentage (0-100) of the downsampled image and whether it is one flat colour."""
    with Image.open(path) as img:
        sample = img.convert("RGB").resize(SAMPLE_SIZE)
    data = sample.tobytes()
    total = len(data) // 3
    if total == 0:
        raise ValueError(f"Empty image: {path}")
    white = 0
    for i in range(0, len(data), 3):
        if data[i] > NEAR_WHITE and data[i + 1] > NEAR_WHITE and data[i + 2] > NEAR_WHITE:
            white += 1
    uniform = all(lo == hi for lo, hi in sample.getextrema())
    return white / total * 100, uniform


def white_percentage(path: PathLike) -> float:
    return image_stats(path)[0]


def _analysis_failed() -> ScreenshotQualityIssue:
    return ScreenshotQualityIssue(
        type="error",
        severity="error",
        message="Failed to analyze screenshot",
        white_percentage=100.0,
    )


def _normal(white: float) -> ScreenshotQualityIssue:
    return ScreenshotQualityIssue(
        type="normal", severity="info", message="Normal", white_percentage=white
    )


@dataclass
class ScreenshotQualityAnalyzer:
    all_white_threshold: float = 98.0
    mostly_white_threshold: float = 92.0
    pc_threshold: float = 80.0

    def classify(self, white: float, uniform: bool = False) -> ScreenshotQualityIssue:
        if white >= self.all_white_threshold:
            return ScreenshotQualityIssue(
                type="all_white",
                severity="error",
                message=f"Screenshot is {white:.1f}% white (possibly failed to load)",
                white_percentage=white,
            )
        if uniform:
            return ScreenshotQualityIssue(
                type="blank",
                severity="error",
                message="Screenshot is a single flat colour (nothing rendered)",
                white_percentage=white,
            )
        if white >= self.mostly_white_threshold:
            return ScreenshotQualityIssue(
                type="mostly_white",
                severity="warning",
                message=f"Screenshot is {white:.1f}% white (possibly incomplete)",
                white_percentage=white,
            )
        return _normal(white)

    def classify_pc(self, white: float, uniform: bool = False) -> ScreenshotQualityIssue:
        """PC captures have more horizontal room for content, so the bar is lower."""
        if white >= self.all_white_threshold or uniform:
            return self.classify(white, uniform)
        if white >= self.pc_threshold:
            return ScreenshotQualityIssue(
                type="mostly_white",
                severity="error",
                message=(
                    f"Screenshot is {white:.1f}% white "
                    f"(PC viewport > {self.pc_threshold:g}%)"
                ),
                white_percentage=white,
            )
        return _normal(white)

    def analyze(self, path: PathLike, *, pc: bool = False) -> ScreenshotQualityIssue:
        try:
            white, uniform = image_stats(path)
        except (OSError, UnidentifiedImageError, ValueError) as e:
            log.error("Failed to analyze screenshot %s: %s", path, e)
            return _analysis_failed()
        if pc:
            return self.classify_pc(white, uniform)
        return self.classify(white, uniform)

    async def analyze_page_screenshots(
        self, screenshots: Mapping[str, Optional[str]]
    ) -> Dict[str, ScreenshotQualityIssue]:
        """Analyze every captured viewport, yielding to the loop between files."""
        results: Dict[str, ScreenshotQualityIssue] = {}
        for viewport, path in screenshots.items():
            if not path:
                continue
            results[viewport] = self.analyze(path, pc=viewport.startswith("pc_"))
            await asyncio.sleep(0)
        return results
