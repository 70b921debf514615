# Defines the data structures shared by the classifier and the scan orchestrator.

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

# Tagged types used across the package.
PageType = Literal["homepage", "detail", "list", "other"]
ViewportName = Literal["pc_normal", "mobile_normal", "pc_spider", "mobile_spider"]
Severity = Literal["error", "warning", "info"]
IssueType = Literal[
    "viewport_overflow",
    "horizontal_scroll",
    "http_error",
    "timeout",
    "js_error",
    "broken_image",
    "error_text",
    "request_id",
    "screenshot_failed",
]
QualityType = Literal["all_white", "mostly_white", "blank", "error", "normal"]
PageStatus = Literal["success", "error"]
RunStatus = Literal["running", "completed", "failed"]

VIEWPORT_ORDER: Tuple[ViewportName, ...] = (
    "pc_normal",
    "mobile_normal",
    "pc_spider",
    "mobile_spider",
)


@dataclass(frozen=True)
class DOMFingerprint:
    """
    Structural summary of a rendered page.

    Holds the ancestor tag chain from the document root to <body>, up to 50
    class tokens in first-seen order, the deepest ancestor chain below <body>,
    the number of direct children of <body> and the total element count.
    """

    url: str
    tag_sequence: Tuple[str, ...]
    class_patterns: Tuple[str, ...]
    depth: int
    breadth: int
    node_count: int

    @classmethod
    def empty(cls, url: str) -> "DOMFingerprint":
        """The degraded record used when extraction fails."""
        return cls(
            url=url,
            tag_sequence=(),
            class_patterns=(),
            depth=0,
            breadth=0,
            node_count=0,
        )


@dataclass(frozen=True)
class TypedFingerprint(DOMFingerprint):
    """A fingerprint tagged with its URL-derived page type (sampling only)."""

    page_type: PageType = "other"

    @classmethod
    def from_fingerprint(
        cls, fp: DOMFingerprint, page_type: PageType
    ) -> "TypedFingerprint":
        return cls(
            url=fp.url,
            tag_sequence=fp.tag_sequence,
            class_patterns=fp.class_patterns,
            depth=fp.depth,
            breadth=fp.breadth,
            node_count=fp.node_count,
            page_type=page_type,
        )


@dataclass
class PageCluster:
    """A group of structurally similar pages."""

    id: str
    category: str
    members: List[DOMFingerprint] = field(default_factory=list)
    representative: Optional[DOMFingerprint] = None


@dataclass(frozen=True)
class ViewportSize:
    width: int
    height: int
    device_scale_factor: float = 1.0
    is_mobile: bool = False
    has_touch: bool = False


@dataclass(frozen=True)
class ViewportMode:
    """One of the four viewport/identity combinations a page is scanned under."""

    name: ViewportName
    size: ViewportSize
    user_agent: str
    is_spider: bool

    @property
    def is_pc(self) -> bool:
        return self.name.startswith("pc_")

    def context_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``Browser.new_context``."""
        return {
            "user_agent": self.user_agent,
            "viewport": {"width": self.size.width, "height": self.size.height},
            "device_scale_factor": self.size.device_scale_factor,
            "is_mobile": self.size.is_mobile,
            "has_touch": self.size.has_touch,
        }


@dataclass
class Issue:
    """A single finding produced by one of the per-pass checks."""

    type: IssueType
    severity: Severity
    message: str
    viewport: ViewportName


@dataclass
class PageResult:
    """Aggregated outcome of scanning one page under all four viewport modes."""

    url: str
    domain: str
    page_type: PageType
    category: str
    screenshots: Dict[str, str] = field(default_factory=dict)
    issues: List[Issue] = field(default_factory=list)
    load_time_ms: int = 0
    http_status: int = 0
    request_ids: Dict[str, str] = field(default_factory=dict)
    seo: Optional[Dict[str, Any]] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def status(self) -> PageStatus:
        if any(issue.severity == "error" for issue in self.issues):
            return "error"
        return "success"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status
        return data


@dataclass
class ScreenshotQualityIssue:
    """Outcome of the blank/near-blank analysis of one screenshot."""

    type: QualityType
    severity: Severity
    message: str
    white_percentage: float


@dataclass
class ScanReport:
    """The final result of a whole-site scan."""

    run_id: str
    domain: str
    status: RunStatus = "running"
    started_at: float = field(default_factory=time.time)
    duration_ms: int = 0
    categories: int = 0
    pages: List[PageResult] = field(default_factory=list)
    # page url -> viewport -> verdict, filled in as background analyses finish
    screenshot_quality: Dict[str, Dict[str, ScreenshotQualityIssue]] = field(
        default_factory=dict
    )
    error: Optional[str] = None

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    @property
    def total_issues(self) -> int:
        return sum(len(p.issues) for p in self.pages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "domain": self.domain,
            "status": self.status,
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
            "total_pages": self.total_pages,
            "total_issues": self.total_issues,
            "categories": self.categories,
            "error": self.error,
            "pages": [p.to_dict() for p in self.pages],
            "screenshot_quality": {
                url: {viewport: asdict(q) for viewport, q in verdicts.items()}
                for url, verdicts in self.screenshot_quality.items()
            },
        }
