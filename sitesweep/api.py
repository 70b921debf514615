# sitesweep/api.py
# The primary, programmer-facing API for the library.

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from playwright.async_api import Browser, Playwright, async_playwright

from sitesweep.clustering import ClusterEngine
from sitesweep.config import ScanSettings, load_config, settings_from_config
from sitesweep.discovery import PageVisitor, homepage_url, merge_page_urls
from sitesweep.models import DOMFingerprint, PageCluster, PageType, ScanReport
from sitesweep.progress import ProgressReporter
from sitesweep.quality import ScreenshotQualityAnalyzer
from sitesweep.sampler import Sampler, sampled_pages
from sitesweep.scanner import MultiViewportScanner, PageAnalyzer
from sitesweep.screenshot import ScreenshotCapture
from sitesweep.store import ResultSink, ResultStore, StoreConfig
from sitesweep.url_logic import identify_page_type, normalize_url, swap_subdomain

log = logging.getLogger(__name__)

# (url, category, page type) for every page the scan phase will visit.
ScanTarget = Tuple[str, str, PageType]


class ScanFailedError(Exception):
    """The scan could not finish. `report` holds whatever was collected."""

    def __init__(self, message: str, report: ScanReport) -> None:
        super().__init__(message)
        self.report = report


class ScanTimeoutError(ScanFailedError):
    """The whole-scan watchdog expired."""


def new_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6]}"


def clean_domain(domain: str) -> str:
    """Accept 'example.com', 'https://example.com/' and similar."""
    d = domain.strip()
    for prefix in ("https://", "http://"):
        if d.lower().startswith(prefix):
            d = d[len(prefix):]
    return d.split("/", 1)[0].lower()


def scan_targets(
    clusters: List[PageCluster],
    pages: List[Tuple[str, PageType]],
    mirror_subdomains: Tuple[str, ...] = (),
) -> List[ScanTarget]:
    """
    Attach each page's cluster category, then add one copy per mirror
    sub-domain. URLs that normalise to one already listed are skipped.
    """
    category_of: Dict[str, str] = {}
    for cluster in clusters:
        for member in cluster.members:
            category_of.setdefault(member.url, cluster.category)

    targets: List[ScanTarget] = []
    seen: Set[str] = set()
    for url, page_type in pages:
        category = category_of.get(url, "custom")
        for candidate in [url] + [swap_subdomain(url, m) for m in mirror_subdomains]:
            key = normalize_url(candidate)
            if key in seen:
                continue
            seen.add(key)
            targets.append((candidate, category, page_type))
    return targets


class SiteScan:
    """
    One whole-site scan: discovery, fingerprinting, clustering, sampling and
    the four-viewport scan of every sampled page. Owns the Playwright browser;
    use as an async context manager and call `run()`.
    """

    def __init__(
        self,
        domain: str,
        settings: ScanSettings,
        *,
        progress: Optional[ProgressReporter] = None,
        sink: Optional[ResultSink] = None,
        page_analyzer: Optional[PageAnalyzer] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.domain = clean_domain(domain)
        self.settings = settings
        self.run_id = run_id or new_run_id()
        self.progress = progress or ProgressReporter(self.run_id)
        self.sink = sink
        self.page_analyzer = page_analyzer
        self.report = ScanReport(run_id=self.run_id, domain=self.domain)
        self.analyzer = ScreenshotQualityAnalyzer()

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._quality_tasks: Set["asyncio.Task[None]"] = set()

    async def start(self) -> None:
        """Start Playwright and launch Chromium. A failed launch stops the driver again."""
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=True)
        except BaseException:
            await self._playwright.stop()
            self._playwright = None
            raise

    async def close(self) -> None:
        # A failed run gets no grace period for pending analyses.
        if self.report.status == "failed":
            await self.drain_quality_tasks(grace=0)
        else:
            await self.drain_quality_tasks()
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "SiteScan":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def browser(self) -> Browser:
        if self._browser is None:
            raise RuntimeError("SiteScan must be entered before use.")
        return self._browser

    # ---- run ----------------------------------------------------------------

    async def run(self) -> ScanReport:
        """Run every phase under the watchdog. Raises ScanFailedError subclasses."""
        started = time.monotonic()
        if self.sink is not None:
            self.sink.create_run(self.run_id, self.domain)
        try:
            await asyncio.wait_for(self._phases(), timeout=self.settings.scan_timeout)
        except asyncio.TimeoutError:
            minutes = self.settings.scan_timeout / 60
            message = f"Scan timeout after {minutes:g} minutes"
            log.error("%s for %s", message, self.domain)
            self._finish(started, "failed", message)
            raise ScanTimeoutError(message, self.report)
        except Exception as e:
            log.critical("Scan of %s failed: %s", self.domain, e, exc_info=True)
            self._finish(started, "failed", str(e))
            raise ScanFailedError(str(e), self.report) from e

        await self.drain_quality_tasks()
        self._finish(started, "completed", None)
        return self.report

    def setup_failed(self, error: BaseException) -> ScanFailedError:
        """Record a run that failed before any phase started; the error to raise."""
        message = f"Scan setup failed: {error}"
        log.critical("%s (%s)", message, self.domain, exc_info=error)
        if self.sink is not None:
            self.sink.create_run(self.run_id, self.domain)
        self._finish(time.monotonic(), "failed", message)
        return ScanFailedError(message, self.report)

    def _finish(self, started: float, status: str, error: Optional[str]) -> None:
        report = self.report
        report.status = status  # type: ignore[assignment]
        report.error = error
        report.duration_ms = int((time.monotonic() - started) * 1000)
        if self.sink is not None:
            self.sink.finish_run(
                self.run_id,
                status=status,
                total_pages=report.total_pages,
                total_issues=report.total_issues,
                duration_ms=report.duration_ms,
                error=error,
            )
        self.progress.complete(
            status == "completed",
            error
            or f"Scan completed: {report.total_pages} pages, {report.total_issues} issues",
        )

    async def _phases(self) -> None:
        fingerprints = await self._discover()

        self.progress.step(3, f"Clustering {len(fingerprints)} pages by similarity...")
        clusters = ClusterEngine(threshold=self.settings.similarity_threshold).cluster(
            fingerprints
        )
        self.report.categories = len(clusters)
        for cluster in clusters:
            self.progress.log(f'"{cluster.category}": {len(cluster.members)} pages')

        self.progress.step(
            4,
            f"Sampling pages (max {self.settings.max_pages_per_category} per category)...",
        )
        targets = self._select(clusters)

        self.progress.step(
            5, f"Testing {len(targets)} pages x {len(self.settings.viewport_modes)} viewports..."
        )
        await self._scan_all(targets)

    # ---- phases -------------------------------------------------------------

    async def _discover(self) -> List[DOMFingerprint]:
        settings = self.settings
        async with PageVisitor(self.browser, settings) as visitor:
            self.progress.step(1, "Fetching homepage and extracting links...")
            home_fp, links = await visitor.visit_homepage(self.domain)
            self.progress.log(f"Found {len(links)} unique links from homepage")

            urls = merge_page_urls(
                links, settings.custom_urls, exclude=[homepage_url(self.domain)]
            )
            self.progress.step(2, f"Analyzing DOM structure for {len(urls)} pages...")
            fingerprints = await visitor.fingerprint_all(urls)

        self.progress.log(f"Analyzed {len(fingerprints) + 1} pages successfully")
        return [home_fp] + fingerprints

    def _select(self, clusters: List[PageCluster]) -> List[ScanTarget]:
        settings = self.settings
        sampler = Sampler(
            max_per_category=settings.max_pages_per_category,
            detail_patterns=settings.detail_patterns,
            list_patterns=settings.list_patterns,
            min_detail_pages=settings.min_detail_pages,
            min_list_pages=settings.min_list_pages,
        )
        pages = [(fp.url, fp.page_type) for fp in sampled_pages(sampler.sample_from_clusters(clusters))]

        # Custom URLs are always scanned, whatever the sampler picked.
        picked = {normalize_url(url) for url, _ in pages}
        for url in settings.custom_urls:
            if normalize_url(url) not in picked:
                picked.add(normalize_url(url))
                pages.append(
                    (url, identify_page_type(url, settings.detail_patterns, settings.list_patterns))
                )

        targets = scan_targets(clusters, pages, settings.mirror_subdomains)
        counts: Dict[str, int] = {}
        for _, _, page_type in targets:
            counts[page_type] = counts.get(page_type, 0) + 1
        self.progress.log(
            f"Selected {len(targets)} pages for testing: "
            + ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
        )
        return targets

    async def _scan_all(self, targets: List[ScanTarget]) -> None:
        scanner = MultiViewportScanner(
            browser=self.browser,
            settings=self.settings,
            screenshots=ScreenshotCapture(self.settings.screenshots_dir, self.settings.screenshot),
            page_analyzer=self.page_analyzer,
        )
        for index, (url, category, page_type) in enumerate(targets):
            self.progress.page(url, index, len(targets))
            try:
                result = await scanner.scan_page(
                    url, self.domain, category, page_type, self.run_id
                )
            except Exception as e:
                log.error("Failed to scan %s: %s", url, e, exc_info=True)
                self.progress.log(f"Failed to scan {url}: {e}")
                continue

            self.report.pages.append(result)
            page_id = f"{self.run_id}-{index}"
            if self.sink is not None:
                self.sink.save_page(page_id, self.run_id, result)
            self._schedule_quality(page_id, url, result.screenshots)

    # ---- screenshot quality -------------------------------------------------

    def _schedule_quality(self, page_id: str, url: str, screenshots: Dict[str, str]) -> None:
        if not screenshots:
            return
        task = asyncio.create_task(self._analyze_quality(page_id, url, dict(screenshots)))
        self._quality_tasks.add(task)
        task.add_done_callback(self._quality_tasks.discard)

    async def _analyze_quality(self, page_id: str, url: str, screenshots: Dict[str, str]) -> None:
        try:
            quality = await self.analyzer.analyze_page_screenshots(screenshots)
        except Exception as e:
            log.error("Screenshot analysis failed for %s: %s", url, e, exc_info=True)
            return
        self.report.screenshot_quality[url] = quality
        flagged = [vp for vp, q in quality.items() if q.type != "normal"]
        if flagged:
            log.warning("Screenshot quality issues for %s: %s", url, ", ".join(flagged))
        if self.sink is not None:
            self.sink.patch_screenshot_quality(page_id, quality)

    async def drain_quality_tasks(self, grace: Optional[float] = None) -> None:
        """Give pending analyses `grace` seconds (default `quality_grace_period`), then cancel the rest."""
        pending = set(self._quality_tasks)
        if not pending:
            return
        if grace is None:
            grace = self.settings.quality_grace_period
        still_running = pending
        if grace > 0:
            _, still_running = await asyncio.wait(pending, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            log.warning(
                "Cancelled %d screenshot analyses after %.0fs grace period",
                len(still_running),
                grace,
            )


async def scan_site(
    domain: str,
    *,
    similarity_threshold: float | None = None,
    max_pages_per_category: int | None = None,
    custom_urls: List[str] | None = None,
    mirror_subdomains: List[str] | None = None,
    scan_timeout: float | None = None,
    screenshots_dir: str | None = None,
    store: ResultSink | None = None,
    progress: ProgressReporter | None = None,
    page_analyzer: PageAnalyzer | None = None,
    pyproject_path: Path | None = None,
) -> ScanReport:
    """
    The main API function. Classifies the site's pages and scans a sample.

    Args:
        domain: Host to scan, e.g. "example.com".
        similarity_threshold: Override the clustering threshold (0..1).
        max_pages_per_category: Override the per-cluster sample bound.
        custom_urls: Extra URLs that are always scanned.
        mirror_subdomains: Sub-domain prefixes to rescan every page on.
        scan_timeout: Override the whole-scan watchdog, in seconds.
        screenshots_dir: Where screenshots are written.
        store: Result sink; defaults to the configured ResultStore.
        progress: Reporter to publish progress events on.
        page_analyzer: Optional coroutine run on each pc_normal page.
        pyproject_path: Read `[tool.sitesweep]` from here instead of CWD.

    Returns:
        A ScanReport with every page result collected.

    Raises:
        ConfigError: the merged configuration is invalid.
        ScanTimeoutError: the watchdog expired (partial report attached).
        ScanFailedError: a fatal error stopped the scan (partial report attached).
    """
    log.info("Starting new scan for: %s", domain)

    config: Dict[str, Any] = load_config(pyproject_path)
    log.debug("Loaded base configuration.")

    if similarity_threshold is not None:
        config["similarity_threshold"] = similarity_threshold
        log.info("Applied override - similarity_threshold set to: %s", similarity_threshold)
    if max_pages_per_category is not None:
        config["max_pages_per_category"] = max_pages_per_category
        log.info("Applied override - max_pages_per_category set to: %d", max_pages_per_category)
    if custom_urls:
        config["custom_urls"] = list(config["custom_urls"]) + list(custom_urls)
        log.info("Applied override - added custom urls: %s", custom_urls)
    if mirror_subdomains:
        config["mirror_subdomains"] = list(config["mirror_subdomains"]) + list(mirror_subdomains)
        log.info("Applied override - added mirror subdomains: %s", mirror_subdomains)
    if scan_timeout is not None:
        config["scan_timeout"] = scan_timeout
        log.info("Applied override - scan_timeout set to: %s", scan_timeout)
    if screenshots_dir is not None:
        config["output"]["screenshots_dir"] = screenshots_dir
        log.info("Applied override - screenshots_dir set to: %s", screenshots_dir)

    settings = settings_from_config(config)

    owned_store: Optional[ResultStore] = None
    if store is None and settings.store_enabled:
        owned_store = ResultStore(StoreConfig(enabled=True, directory=settings.store_directory))
        store = owned_store

    scan = SiteScan(
        domain, settings, progress=progress, sink=store, page_analyzer=page_analyzer
    )
    try:
        try:
            await scan.start()
        except Exception as e:
            raise scan.setup_failed(e) from e
        try:
            report = await scan.run()
        finally:
            await scan.close()
    finally:
        if owned_store is not None:
            owned_store.close()

    log.info(
        "Scan %s finished: %d pages, %d issues",
        report.run_id,
        report.total_pages,
        report.total_issues,
    )
    return report
