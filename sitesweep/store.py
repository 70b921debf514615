# sitesweep/store.py
"""
File-backed scan result store.

- Storage: diskcache.Cache (robust, fast, cross-platform).
- Location: default is a visible folder in CWD; optionally an OS-specific
  app data dir via platformdirs.
- Records: one per run (`run:<id>`) and one per scanned page (`page:<id>`).
  Screenshot quality verdicts arrive later and are patched onto the page.
"""
from __future__ import annotations

import dataclasses
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

import diskcache
from platformdirs import user_data_dir

from sitesweep.models import PageResult, ScreenshotQualityIssue

log = logging.getLogger(__name__)


class ResultSink(Protocol):
    """Where the pipeline sends runs and page results."""

    def create_run(self, run_id: str, domain: str) -> None:
        ...

    def save_page(self, page_id: str, run_id: str, result: PageResult) -> None:
        ...

    def patch_screenshot_quality(
        self, page_id: str, quality: Mapping[str, ScreenshotQualityIssue]
    ) -> None:
        ...

    def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        total_pages: int,
        total_issues: int,
        duration_ms: int,
        error: Optional[str] = None,
    ) -> None:
        ...


@dataclasses.dataclass
class StoreConfig:
    enabled: bool = True
    # Either a concrete directory path, or special marker "os-default"
    # for an OS-specific global data location.
    directory: str = ".sitesweep_results"


def _run_key(run_id: str) -> str:
    return f"run:{run_id}"


def _page_key(page_id: str) -> str:
    return f"page:{page_id}"


class ResultStore:
    """
    Thin wrapper over diskcache implementing ResultSink.
    Values are plain dicts so they survive version upgrades of the models.
    """

    def __init__(self, cfg: StoreConfig, app_name: str = "sitesweep"):
        self.cfg = cfg
        self.app_name = app_name
        self._cache: Optional[diskcache.Cache] = None

        if not cfg.enabled:
            log.info("Result store not enabled")
            return
        self._open()

    def _open(self) -> None:
        directory = self.cfg.directory
        if directory == "os-default":
            directory = user_data_dir(self.app_name, appauthor=False)
        log.info("Result store at %s", directory)
        self._cache = diskcache.Cache(directory)

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()

    def __enter__(self) -> "ResultStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    # ---- Introspection helpers ---------------------------------------------

    @property
    def directory(self) -> Optional[str]:
        """Returns the absolute store directory path if available."""
        if self._cache is None:
            return None
        return str(self._cache.directory)

    def _dir_size_bytes(self) -> int:
        d = self.directory
        if not d:
            return 0
        path = Path(d)
        if not path.exists():
            return 0
        total = 0
        for p in path.rglob("*"):
            try:
                if p.is_file():
                    total += p.stat().st_size
            except OSError:
                continue
        return total

    def stats(self) -> Dict[str, Any]:
        """
        Returns a simple stats dict:
            - runs: number of stored runs
            - pages: number of stored page results
            - bytes: on-disk size in bytes (recursive directory walk)
            - directory: absolute directory path
        """
        if self._cache is None:
            return {"runs": 0, "pages": 0, "bytes": 0, "directory": ""}
        runs = pages = 0
        for key in self._cache.iterkeys():
            if str(key).startswith("run:"):
                runs += 1
            elif str(key).startswith("page:"):
                pages += 1
        return {
            "runs": runs,
            "pages": pages,
            "bytes": self._dir_size_bytes(),
            "directory": os.path.abspath(self.directory or ""),
        }

    def clear_all(self) -> None:
        """Clears all stored runs and pages."""
        if self._cache is None:
            log.warning("Result store disabled")
            return
        self._cache.clear()

    # ---- ResultSink ---------------------------------------------------------

    def create_run(self, run_id: str, domain: str) -> None:
        if self._cache is None:
            return
        self._cache.set(
            _run_key(run_id),
            {
                "run_id": run_id,
                "domain": domain,
                "status": "running",
                "started_at": time.time(),
                "page_ids": [],
            },
        )

    def save_page(self, page_id: str, run_id: str, result: PageResult) -> None:
        if self._cache is None:
            return
        record = result.to_dict()
        record["page_id"] = page_id
        record["run_id"] = run_id
        record["screenshot_quality"] = {}
        with self._cache.transact():
            self._cache.set(_page_key(page_id), record)
            run = self._cache.get(_run_key(run_id))
            if run is not None:
                run["page_ids"].append(page_id)
                self._cache.set(_run_key(run_id), run)

    def patch_screenshot_quality(
        self, page_id: str, quality: Mapping[str, ScreenshotQualityIssue]
    ) -> None:
        if self._cache is None:
            return
        with self._cache.transact():
            record = self._cache.get(_page_key(page_id))
            if record is None:
                log.warning("Cannot patch screenshot quality, no page %s", page_id)
                return
            record["screenshot_quality"].update(
                {viewport: dataclasses.asdict(q) for viewport, q in quality.items()}
            )
            self._cache.set(_page_key(page_id), record)

    def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        total_pages: int,
        total_issues: int,
        duration_ms: int,
        error: Optional[str] = None,
    ) -> None:
        if self._cache is None:
            return
        with self._cache.transact():
            run = self._cache.get(_run_key(run_id))
            if run is None:
                log.warning("Cannot finish unknown run %s", run_id)
                return
            run.update(
                status=status,
                total_pages=total_pages,
                total_issues=total_issues,
                duration_ms=duration_ms,
                error=error,
            )
            self._cache.set(_run_key(run_id), run)

    # ---- Lookups ------------------------------------------------------------

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        if self._cache is None:
            return None
        return self._cache.get(_run_key(run_id))

    def get_page(self, page_id: str) -> Optional[Dict[str, Any]]:
        if self._cache is None:
            return None
        return self._cache.get(_page_key(page_id))
