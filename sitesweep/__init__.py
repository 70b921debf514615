# Entrypoint for the sitesweep package.
# This file makes the public API available to programmers.

from __future__ import annotations

from sitesweep.__about__ import __version__
from sitesweep.api import ScanFailedError, ScanTimeoutError, SiteScan, scan_site
from sitesweep.clustering import ClusterEngine
from sitesweep.config import ConfigError
from sitesweep.models import (
    DOMFingerprint,
    Issue,
    PageCluster,
    PageResult,
    ScanReport,
    ScreenshotQualityIssue,
)
from sitesweep.progress import ProgressEvent, ProgressReporter
from sitesweep.quality import ScreenshotQualityAnalyzer
from sitesweep.sampler import Sampler
from sitesweep.similarity import calculate_similarity

# The __all__ variable defines the public API of the package.
__all__ = [
    "scan_site",
    "SiteScan",
    "ScanFailedError",
    "ScanTimeoutError",
    "ConfigError",
    "ClusterEngine",
    "Sampler",
    "calculate_similarity",
    "ScreenshotQualityAnalyzer",
    "ProgressReporter",
    "ProgressEvent",
    "DOMFingerprint",
    "PageCluster",
    "Issue",
    "PageResult",
    "ScanReport",
    "ScreenshotQualityIssue",
    "__version__",
]
