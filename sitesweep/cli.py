# sitesweep/cli.py
# Defines the command-line interface using argparse.

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import IO, Any, Dict, List, Optional, Sequence

from sitesweep import __version__
from sitesweep.api import ScanFailedError, clean_domain, scan_site
from sitesweep.config import ConfigError
from sitesweep.models import VIEWPORT_ORDER, ScanReport
from sitesweep.progress import ProgressReporter, Subscription
from sitesweep.quality import ScreenshotQualityAnalyzer
from sitesweep.store import ResultStore, StoreConfig
from sitesweep.ui import (
    render_errors_section,
    render_pages_section,
    render_progress_event,
    render_quality_section,
    render_quality_verdict,
    render_scan_header,
    render_summary,
)

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_FOUND = 2
EXIT_PAGE_ERRORS = 3


def _configure_logging(verbose: bool) -> None:
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _load_urls(path: str | None) -> list[str]:
    if not path:
        return []
    p = Path(path)
    if not p.exists():
        log.error("The file specified could not be found: %s", path)
        raise FileNotFoundError(path)
    with p.open("r", encoding="utf-8") as f:
        lines = [
            line.strip() for line in f if line.strip() and not line.lstrip().startswith("#")
        ]
    log.info("Loaded %d custom URLs from %s", len(lines), path)
    return lines


def _human_bytes(n: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    v = float(n)
    while v >= 1024 and i < len(units) - 1:
        v /= 1024.0
        i += 1
    s = f"{v:.2f}".rstrip("0").rstrip(".")
    return f"{s} {units[i]}"


def _init_store(store_dir: str | None, os_default: bool) -> ResultStore:
    cfg = StoreConfig()
    if os_default:
        cfg.directory = "os-default"
    if store_dir:
        cfg.directory = store_dir
    return ResultStore(cfg)


def _write_json(report: ScanReport, path: str, stdout: IO[str]) -> None:
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
    print(f"Full report written to {path}", file=stdout)


async def _print_progress(subscription: Subscription, stdout: IO[str]) -> None:
    async for event in subscription:
        render_progress_event(event, file=stdout)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cluster a site's pages by structure and scan a sample in four viewports.",
        prog="sitesweep",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging output to stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- scan ---
    scan_parser = subparsers.add_parser(
        "scan", help="Classify a site's pages and scan a representative sample."
    )
    scan_parser.add_argument("domain", help="The domain to scan, e.g. example.com.")
    scan_parser.add_argument(
        "--max-pages",
        type=int,
        metavar="N",
        help="Maximum pages sampled per category.",
    )
    scan_parser.add_argument(
        "--threshold",
        type=float,
        metavar="T",
        help="Similarity threshold (0..1) for joining a cluster.",
    )
    scan_parser.add_argument(
        "--url",
        dest="urls",
        action="append",
        default=[],
        metavar="URL",
        help="A custom URL that is always scanned. Repeatable.",
    )
    scan_parser.add_argument(
        "--urls-file",
        metavar="FILEPATH",
        help="A file of custom URLs, one per line.",
    )
    scan_parser.add_argument(
        "--mirror",
        dest="mirrors",
        action="append",
        default=[],
        metavar="SUB",
        help="Also scan every page on this sub-domain prefix (en -> fr). Repeatable.",
    )
    scan_parser.add_argument(
        "--json",
        dest="json_output",
        metavar="FILEPATH",
        help="Path to write the full JSON report.",
    )
    scan_parser.add_argument(
        "--progress",
        action="store_true",
        help="Print progress events while scanning.",
    )

    # --- results ---
    results_parser = subparsers.add_parser(
        "results", help="Manage the on-disk result store."
    )
    results_parser.add_argument(
        "--dir",
        dest="store_dir",
        metavar="PATH",
        default=None,
        help="Store directory to operate on (defaults to library default).",
    )
    results_parser.add_argument(
        "--os-default",
        dest="store_os_default",
        action="store_true",
        help="Use the OS-specific default data directory.",
    )
    results_sub = results_parser.add_subparsers(dest="results_cmd", required=True)
    results_sub.add_parser("clear", help="Delete every stored run.")
    results_sub.add_parser("stats", help="Show stored runs, pages and size on disk.")
    inspect_parser = results_sub.add_parser(
        "inspect", help="Dump a stored run with its pages."
    )
    inspect_parser.add_argument("run_id", help="The run id printed by `scan`.")

    # --- analyze-screenshot ---
    analyze_parser = subparsers.add_parser(
        "analyze-screenshot", help="Check one screenshot for blank or near-blank output."
    )
    analyze_parser.add_argument("path", help="PNG file to analyze.")
    analyze_parser.add_argument(
        "--viewport",
        choices=VIEWPORT_ORDER,
        default="mobile_normal",
        help="Viewport the screenshot was taken in (PC viewports are stricter).",
    )
    return parser


def _results_command(args: argparse.Namespace, stdout: IO[str]) -> int:
    with _init_store(args.store_dir, args.store_os_default) as store:
        if args.results_cmd == "clear":
            store.clear_all()
            print(f"Results cleared at: {store.directory or '(disabled)'}", file=stdout)
            return EXIT_OK

        if args.results_cmd == "stats":
            st = store.stats()
            out = dict(st)
            out["human_bytes"] = _human_bytes(int(st.get("bytes", 0)))
            print(json.dumps(out, indent=2), file=stdout)
            return EXIT_OK

        # inspect
        run = store.get_run(args.run_id)
        if run is None:
            print(f"No run {args.run_id}", file=stdout)
            return EXIT_NOT_FOUND
        data: Dict[str, Any] = dict(run)
        data["pages"] = [store.get_page(pid) for pid in run.get("page_ids", [])]
        print(json.dumps(data, indent=2), file=stdout)
        return EXIT_OK


def _analyze_command(args: argparse.Namespace, stdout: IO[str]) -> int:
    verdict = ScreenshotQualityAnalyzer().analyze(
        args.path, pc=args.viewport.startswith("pc_")
    )
    render_quality_verdict(args.path, verdict, file=stdout)
    return EXIT_OK if verdict.type == "normal" else EXIT_PAGE_ERRORS


async def _scan_command(args: argparse.Namespace, stdout: IO[str]) -> int:
    try:
        custom_urls: List[str] = list(args.urls) + _load_urls(args.urls_file)
    except FileNotFoundError:
        return EXIT_FAILED

    domain = clean_domain(args.domain)
    render_scan_header(domain, file=stdout)

    reporter = ProgressReporter(domain)
    subscription: Optional[Subscription] = None
    printer: Optional["asyncio.Task[None]"] = None
    if args.progress:
        subscription = reporter.subscribe()
        printer = asyncio.create_task(_print_progress(subscription, stdout))

    try:
        report = await scan_site(
            domain,
            similarity_threshold=args.threshold,
            max_pages_per_category=args.max_pages,
            custom_urls=custom_urls,
            mirror_subdomains=list(args.mirrors),
            progress=reporter,
        )
    except ConfigError as e:
        render_errors_section([f"Invalid configuration: {e}"], file=stdout)
        return EXIT_FAILED
    except ScanFailedError as e:
        render_summary(e.report, file=stdout)
        render_pages_section(e.report.pages, file=stdout)
        render_errors_section([str(e)], file=stdout)
        if args.json_output:
            _write_json(e.report, args.json_output, stdout)
        return EXIT_FAILED
    finally:
        if subscription is not None:
            reporter.unsubscribe(subscription)
        if printer is not None:
            await printer

    render_summary(report, file=stdout)
    render_pages_section(report.pages, file=stdout)
    render_quality_section(report, file=stdout)
    if args.json_output:
        _write_json(report, args.json_output, stdout)

    if any(page.status == "error" for page in report.pages):
        return EXIT_PAGE_ERRORS
    return EXIT_OK


async def async_main(
    argv: Sequence[str] | None = None, stdout: IO[str] | None = None
) -> int:
    """Async entry point for the command-line interface."""
    stdout = stdout or sys.stdout
    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "results":
        return _results_command(args, stdout)
    if args.command == "analyze-screenshot":
        return _analyze_command(args, stdout)
    return await _scan_command(args, stdout)


def main(argv: Sequence[str] | None = None) -> int:
    """Synchronous wrapper for the CLI entry point."""
    return asyncio.run(async_main(argv))


if __name__ == "__main__":
    sys.exit(main())
