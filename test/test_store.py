import pathlib

from sitesweep.models import Issue, PageResult, ScreenshotQualityIssue
from sitesweep.store import ResultStore, StoreConfig


def make_store(tmp_path) -> ResultStore:
    return ResultStore(StoreConfig(enabled=True, directory=str(tmp_path / "results")))


def page_result(url="https://example.com/a", severity="error") -> PageResult:
    return PageResult(
        url=url,
        domain="example.com",
        page_type="other",
        category="other",
        screenshots={"pc_normal": "/tmp/pc.png"},
        issues=[Issue(type="js_error", severity=severity, message="x", viewport="pc_normal")],
        http_status=200,
    )


def test_run_and_page_round_trip(tmp_path):
    store = make_store(tmp_path)
    store.create_run("run1", "example.com")
    store.save_page("run1-0", "run1", page_result())
    store.save_page("run1-1", "run1", page_result("https://example.com/b", "warning"))

    run = store.get_run("run1")
    assert run is not None
    assert run["status"] == "running"
    assert run["page_ids"] == ["run1-0", "run1-1"]

    page = store.get_page("run1-0")
    assert page is not None
    assert page["url"] == "https://example.com/a"
    assert page["status"] == "error"
    assert page["issues"][0]["type"] == "js_error"
    assert page["screenshot_quality"] == {}
    assert store.get_page("run1-1")["status"] == "success"
    store.close()


def test_patch_screenshot_quality(tmp_path):
    store = make_store(tmp_path)
    store.create_run("run1", "example.com")
    store.save_page("run1-0", "run1", page_result())

    store.patch_screenshot_quality(
        "run1-0",
        {
            "pc_normal": ScreenshotQualityIssue(
                type="all_white", severity="error", message="blank", white_percentage=99.5
            )
        },
    )
    store.patch_screenshot_quality(
        "run1-0",
        {
            "mobile_normal": ScreenshotQualityIssue(
                type="normal", severity="info", message="Normal", white_percentage=40.0
            )
        },
    )

    quality = store.get_page("run1-0")["screenshot_quality"]
    assert quality["pc_normal"]["type"] == "all_white"
    assert quality["pc_normal"]["white_percentage"] == 99.5
    assert quality["mobile_normal"]["type"] == "normal"

    # Unknown pages are ignored rather than created.
    store.patch_screenshot_quality("nope", {})
    assert store.get_page("nope") is None


def test_finish_run_and_stats(tmp_path):
    store = make_store(tmp_path)
    store.create_run("run1", "example.com")
    store.save_page("run1-0", "run1", page_result())
    store.finish_run(
        "run1", status="completed", total_pages=1, total_issues=1, duration_ms=1234
    )

    run = store.get_run("run1")
    assert run["status"] == "completed"
    assert run["total_issues"] == 1
    assert run["duration_ms"] == 1234
    assert run["error"] is None

    st = store.stats()
    assert st["runs"] == 1
    assert st["pages"] == 1
    assert st["bytes"] > 0
    assert pathlib.Path(st["directory"]) == tmp_path / "results"

    store.clear_all()
    assert store.get_run("run1") is None
    assert store.stats()["runs"] == 0


def test_os_default_directory_uses_platformdirs(tmp_path, monkeypatch):
    from sitesweep import store as store_mod

    target_dir = tmp_path / "os_default_here"

    def fake_user_data_dir(app_name: str, appauthor: bool = False):
        return str(target_dir)

    monkeypatch.setattr(store_mod, "user_data_dir", fake_user_data_dir, raising=True)

    store = ResultStore(StoreConfig(enabled=True, directory="os-default"))
    assert pathlib.Path(store.directory) == target_dir


def test_disabled_store_is_a_no_op(tmp_path):
    store = ResultStore(StoreConfig(enabled=False, directory=str(tmp_path / "unused")))
    assert not store.enabled
    store.create_run("run1", "example.com")
    store.save_page("run1-0", "run1", page_result())
    store.finish_run("run1", status="failed", total_pages=0, total_issues=0, duration_ms=0)
    store.clear_all()
    assert store.get_run("run1") is None
    assert store.stats() == {"runs": 0, "pages": 0, "bytes": 0, "directory": ""}
    assert not (tmp_path / "unused").exists()
