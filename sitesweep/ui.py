# sitesweep/ui.py
# Presentation-only utilities for CLI output.
from __future__ import annotations

from typing import IO, Iterable

from sitesweep.models import PageResult, ScanReport, ScreenshotQualityIssue
from sitesweep.progress import ProgressEvent


def _writeln(text: str = "", *, file: IO[str]) -> None:
    file.write(text + "\n")


def render_scan_header(domain: str, *, file: IO[str]) -> None:
    _writeln(f"Scanning {domain}...", file=file)


def render_progress_event(event: ProgressEvent, *, file: IO[str]) -> None:
    if event.kind == "step":
        _writeln(
            f"[{event.percent:>3}%] Step {event.phase}/{event.total_phases}: {event.message}",
            file=file,
        )
    elif event.kind == "complete":
        _writeln(f"[{event.percent:>3}%] {event.message}", file=file)
    else:
        _writeln(f"       {event.message}", file=file)


def render_summary(report: ScanReport, *, file: IO[str]) -> None:
    failed = sum(1 for p in report.pages if p.status == "error")
    _writeln(f"\nRun: {report.run_id} ({report.status})", file=file)
    _writeln(
        f"Pages: {report.total_pages}  Categories: {report.categories}  "
        f"Issues: {report.total_issues}  Pages with errors: {failed}",
        file=file,
    )
    _writeln(f"Duration: {report.duration_ms / 1000:.1f}s", file=file)


def _render_page(page: PageResult, *, file: IO[str]) -> None:
    _writeln(
        f"- [{page.status.upper():<7}] {page.url}  ({page.category}, {page.page_type}, "
        f"HTTP {page.http_status}, {page.load_time_ms}ms)",
        file=file,
    )
    for issue in page.issues:
        if issue.severity == "info":
            continue
        _writeln(
            f"    {issue.viewport:<13} {issue.severity:<7} {issue.type}: {issue.message}",
            file=file,
        )


def render_pages_section(pages: Iterable[PageResult], *, file: IO[str]) -> None:
    pages = list(pages)
    if not pages:
        return
    _writeln("\n--- Pages ---", file=file)
    for page in pages:
        _render_page(page, file=file)


def render_quality_verdict(label: str, verdict: ScreenshotQualityIssue, *, file: IO[str]) -> None:
    _writeln(
        f"{label}: {verdict.type} ({verdict.severity}) "
        f"{verdict.white_percentage:.1f}% white - {verdict.message}",
        file=file,
    )


def render_quality_section(report: ScanReport, *, file: IO[str]) -> None:
    flagged = [
        (url, viewport, verdict)
        for url, verdicts in report.screenshot_quality.items()
        for viewport, verdict in verdicts.items()
        if verdict.type != "normal"
    ]
    if not flagged:
        return
    _writeln("\n--- Screenshot Quality ---", file=file)
    for url, viewport, verdict in flagged:
        render_quality_verdict(f"- {url} [{viewport}]", verdict, file=file)


def render_errors_section(errors: Iterable[str], *, file: IO[str]) -> None:
    errs = list(errors)
    if not errs:
        return
    _writeln("\n--- Errors Encountered ---", file=file)
    for e in errs:
        _writeln(f"- {e}", file=file)
