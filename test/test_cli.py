from __future__ import annotations

import io
import json

import pytest

from fakes import make_png
from sitesweep import cli
from sitesweep.api import ScanFailedError, ScanTimeoutError
from sitesweep.models import Issue, PageResult, ScanReport
from sitesweep.store import ResultStore, StoreConfig


def report_with(severity: str | None) -> ScanReport:
    page = PageResult(
        url="https://example.com/",
        domain="example.com",
        page_type="homepage",
        category="homepage",
    )
    if severity:
        page.issues.append(
            Issue(type="horizontal_scroll", severity=severity, message="12px", viewport="mobile_normal")
        )
    return ScanReport(run_id="r1", domain="example.com", status="completed", pages=[page], categories=1)


def fake_scan_site(outcome, calls):
    async def _scan_site(domain, **kwargs):
        calls.append((domain, kwargs))
        progress = kwargs["progress"]
        progress.step(1, "Fetching homepage and extracting links...")
        if isinstance(outcome, Exception):
            progress.complete(False, str(outcome))
            raise outcome
        progress.complete(True)
        return outcome

    return _scan_site


async def run_cli(argv):
    out = io.StringIO()
    code = await cli.async_main(argv, stdout=out)
    return code, out.getvalue()


@pytest.mark.asyncio
@pytest.mark.parametrize("severity, exp", [(None, 0), ("warning", 0), ("error", 3)])
async def test_scan_exit_codes(monkeypatch, severity, exp):
    calls = []
    monkeypatch.setattr(cli, "scan_site", fake_scan_site(report_with(severity), calls))
    code, out = await run_cli(["scan", "https://Example.com/"])
    assert code == exp
    assert "Scanning example.com..." in out
    assert "Run: r1 (completed)" in out
    assert calls[0][0] == "example.com"


@pytest.mark.asyncio
async def test_scan_passes_options_and_writes_json(monkeypatch, tmp_path):
    calls = []
    monkeypatch.setattr(cli, "scan_site", fake_scan_site(report_with("error"), calls))
    urls_file = tmp_path / "urls.txt"
    urls_file.write_text("https://example.com/b\n# comment\n\nhttps://example.com/c\n", encoding="utf-8")
    json_path = tmp_path / "out" / "report.json"

    code, out = await run_cli(
        [
            "scan",
            "example.com",
            "--max-pages",
            "2",
            "--threshold",
            "0.8",
            "--url",
            "https://example.com/a",
            "--urls-file",
            str(urls_file),
            "--mirror",
            "fr",
            "--json",
            str(json_path),
            "--progress",
        ]
    )

    assert code == 3
    kwargs = calls[0][1]
    assert kwargs["max_pages_per_category"] == 2
    assert kwargs["similarity_threshold"] == 0.8
    assert kwargs["custom_urls"] == [
        "https://example.com/a",
        "https://example.com/b",
        "https://example.com/c",
    ]
    assert kwargs["mirror_subdomains"] == ["fr"]
    assert "Step 1/5: Fetching homepage" in out
    data = json.loads(json_path.read_text(encoding="utf-8"))
    assert data["run_id"] == "r1"
    assert data["pages"][0]["status"] == "error"


@pytest.mark.asyncio
async def test_scan_missing_urls_file(tmp_path):
    code, _ = await run_cli(["scan", "example.com", "--urls-file", str(tmp_path / "none.txt")])
    assert code == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("error_cls", [ScanFailedError, ScanTimeoutError])
async def test_scan_failure_exit_code(monkeypatch, tmp_path, error_cls):
    partial = ScanReport(run_id="r2", domain="example.com", status="failed", error="boom")
    calls = []
    monkeypatch.setattr(cli, "scan_site", fake_scan_site(error_cls("boom", partial), calls))
    json_path = tmp_path / "partial.json"
    code, out = await run_cli(["scan", "example.com", "--progress", "--json", str(json_path)])
    assert code == 1
    assert "--- Errors Encountered ---" in out
    assert json.loads(json_path.read_text(encoding="utf-8"))["status"] == "failed"


@pytest.mark.asyncio
async def test_results_commands(tmp_path):
    directory = str(tmp_path / "results")
    with ResultStore(StoreConfig(directory=directory)) as store:
        store.create_run("r1", "example.com")
        store.save_page("r1-0", "r1", report_with("error").pages[0])

    code, out = await run_cli(["results", "--dir", directory, "stats"])
    assert code == 0
    stats = json.loads(out)
    assert stats["runs"] == 1 and stats["pages"] == 1
    assert "human_bytes" in stats

    code, out = await run_cli(["results", "--dir", directory, "inspect", "r1"])
    assert code == 0
    data = json.loads(out)
    assert data["domain"] == "example.com"
    assert data["pages"][0]["url"] == "https://example.com/"

    code, out = await run_cli(["results", "--dir", directory, "inspect", "missing"])
    assert code == 2

    code, out = await run_cli(["results", "--dir", directory, "clear"])
    assert code == 0
    assert "Results cleared at:" in out


@pytest.mark.asyncio
async def test_analyze_screenshot(tmp_path):
    shot = make_png(tmp_path / "s.png", white_fraction=0.85)
    code, out = await run_cli(["analyze-screenshot", str(shot)])
    assert code == 0
    assert "normal (info)" in out

    code, out = await run_cli(["analyze-screenshot", str(shot), "--viewport", "pc_normal"])
    assert code == 3
    assert "mostly_white (error)" in out


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli._build_parser().parse_args(["--version"])
    assert excinfo.value.code == 0
    assert "sitesweep" in capsys.readouterr().out
