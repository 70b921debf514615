# sitesweep/config.py
"""
Centralized configuration management.

Handles loading defaults, merging in settings from pyproject.toml,
applying runtime overrides, and validating the result once into a
frozen ScanSettings record that the rest of the package consumes.
"""
from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Pattern, Tuple

import tomli

from sitesweep.models import VIEWPORT_ORDER, ViewportMode, ViewportSize

log = logging.getLogger(__name__)

# Appended to every identity string so the site's own logs can tell our
# traffic apart from real visitors.
TEST_TAG = " sitesweep/0.1"

DEFAULT_CONFIG: dict[str, Any] = {
    "similarity_threshold": 0.75,
    "max_pages_per_category": 3,
    "min_detail_pages": 3,
    "min_list_pages": 3,
    "navigation_timeout": 30.0,  # seconds
    "settle_delay": 1.0,  # seconds, fixed wait for non-listing pages
    "scan_timeout": 20 * 60.0,  # seconds, whole-scan watchdog
    "quality_grace_period": 30.0,  # seconds to let pending analyses finish
    "fingerprint_concurrency": 0,  # 0 = unbounded fan-out
    "use_registrable_domain": False,
    "custom_urls": [],
    "mirror_subdomains": [],
    "viewports": {
        "pc": {
            "width": 1920,
            "height": 1080,
            "device_scale_factor": 1,
            "is_mobile": False,
            "has_touch": False,
        },
        "mobile": {
            "width": 375,
            "height": 812,
            "device_scale_factor": 3,
            "is_mobile": True,
            "has_touch": True,
        },
    },
    "user_agents": {
        "normal": (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36" + TEST_TAG
        ),
        "spider": (
            "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
            + TEST_TAG
        ),
        "crawler": "Mozilla/5.0 (compatible; sitesweep/0.1)",
    },
    "checks": {
        "viewport_overflow": True,
        "horizontal_scroll": True,
        "http_errors": True,
        "timeout": True,
        "js_errors": True,
        "broken_images": True,
    },
    "page_type_patterns": {
        "detail": [r"/products?/", r"/detail/", r"/item/"],
        "list": [r"/used-cars/", r"/cars/", r"/list", r"/search", r"/category/"],
    },
    "excluded_patterns": [
        r"/login",
        r"/logout",
        r"/signup",
        r"/cart",
        r"\.(pdf|zip|jpe?g|png|gif|svg|webp)$",
    ],
    "screenshot": {
        "attempts": 3,
        "retry_delay": 2.0,
        "timeout": 15.0,
        "homepage_timeout": 20.0,
        "pc_crop_width": 1100,
    },
    "listing": {
        "selectors": [
            ".car-list",
            ".list-item",
            '[class*="list"]',
            '[class*="item"]',
            '[class*="product"]',
            '[class*="card"]',
        ],
        "item_selector": '[class*="item"], [class*="card"], [class*="car"]',
        "min_items": 3,
        "attempts": 20,
        "poll_interval": 0.5,
        "load_timeout": 10.0,
        "network_idle_timeout": 8.0,
        "not_ready_phrases": ["No source found", "0 RESULTS"],
        "fallback_wait": 5.0,
        "final_settle": 3.0,
        "prime_session": True,
    },
    "error_detector": {
        "settle": 2.0,
        "ignored_console_patterns": [
            "[GSI_LOGGER]",
            "FedCM get() rejects with TypeError",
            "IdentityCredentialRequestOptionsMode",
        ],
        "error_text_patterns": ["No source found", "page faults", "Page faults"],
    },
    "output": {
        "screenshots_dir": "output/screenshots",
    },
    "store": {
        "enabled": True,
        "directory": ".sitesweep_results",
    },
}


class ConfigError(ValueError):
    """Raised when the merged configuration cannot be turned into settings."""


def _deep_merge_dict(
    base: MutableMapping[str, Any], overrides: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Recursively merge dicts."""
    for key, value in overrides.items():
        if isinstance(value, MutableMapping) and isinstance(
            base.get(key), MutableMapping
        ):
            base[key] = _deep_merge_dict(base[key], value)
        else:
            base[key] = value
    return base


def load_config(pyproject_path: Path | None = None) -> dict[str, Any]:
    """
    Loads configuration from defaults and merges settings from pyproject.toml.

    1. Starts with a deep copy of DEFAULT_CONFIG.
    2. Looks for `pyproject.toml` (current directory unless a path is given).
    3. If found, merges settings from `[tool.sitesweep]` over the defaults.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if pyproject_path is None:
        pyproject_path = Path.cwd() / "pyproject.toml"

    if not pyproject_path.exists():
        log.debug(
            "No pyproject.toml found at %s. Using default config.", pyproject_path
        )
        return config

    try:
        with pyproject_path.open("rb") as f:
            toml_data = tomli.load(f)
    except (OSError, tomli.TOMLDecodeError) as e:
        log.warning(
            "Failed to load or parse %s: %s. Using default config.",
            pyproject_path,
            e,
            exc_info=True,
        )
        return config

    project_config = toml_data.get("tool", {}).get("sitesweep", {})
    if project_config:
        log.info("Loading config from %s", pyproject_path)
        config = _deep_merge_dict(config, project_config)  # type: ignore
    else:
        log.debug("No [tool.sitesweep] section in %s.", pyproject_path)

    return config


# ---------- validated settings ----------


@dataclass(frozen=True)
class CheckToggles:
    viewport_overflow: bool = True
    horizontal_scroll: bool = True
    http_errors: bool = True
    timeout: bool = True
    js_errors: bool = True
    broken_images: bool = True


@dataclass(frozen=True)
class ScreenshotSettings:
    attempts: int = 3
    retry_delay: float = 2.0
    timeout: float = 15.0
    homepage_timeout: float = 20.0
    pc_crop_width: int = 1100


@dataclass(frozen=True)
class ListingSettings:
    selectors: Tuple[str, ...] = ()
    item_selector: str = ""
    min_items: int = 3
    attempts: int = 20
    poll_interval: float = 0.5
    load_timeout: float = 10.0
    network_idle_timeout: float = 8.0
    not_ready_phrases: Tuple[str, ...] = ()
    fallback_wait: float = 5.0
    final_settle: float = 3.0
    prime_session: bool = True


@dataclass(frozen=True)
class ErrorDetectorSettings:
    settle: float = 2.0
    ignored_console_patterns: Tuple[str, ...] = ()
    error_text_patterns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ScanSettings:
    """Everything the classifier and orchestrator need, validated once."""

    similarity_threshold: float
    max_pages_per_category: int
    min_detail_pages: int
    min_list_pages: int
    navigation_timeout: float
    settle_delay: float
    scan_timeout: float
    quality_grace_period: float
    fingerprint_concurrency: int
    use_registrable_domain: bool
    custom_urls: Tuple[str, ...]
    mirror_subdomains: Tuple[str, ...]
    viewport_modes: Tuple[ViewportMode, ...]
    crawler_user_agent: str
    checks: CheckToggles
    detail_patterns: Tuple[Pattern[str], ...]
    list_patterns: Tuple[Pattern[str], ...]
    excluded_patterns: Tuple[Pattern[str], ...]
    screenshot: ScreenshotSettings
    listing: ListingSettings
    error_detector: ErrorDetectorSettings
    screenshots_dir: Path
    store_enabled: bool
    store_directory: str


def build_viewport_modes(
    pc: ViewportSize, mobile: ViewportSize, normal_ua: str, spider_ua: str
) -> Tuple[ViewportMode, ...]:
    """The four scan passes, in the order they run."""
    return (
        ViewportMode(name="pc_normal", size=pc, user_agent=normal_ua, is_spider=False),
        ViewportMode(
            name="mobile_normal", size=mobile, user_agent=normal_ua, is_spider=False
        ),
        ViewportMode(name="pc_spider", size=pc, user_agent=spider_ua, is_spider=True),
        ViewportMode(
            name="mobile_spider", size=mobile, user_agent=spider_ua, is_spider=True
        ),
    )


def _compile_all(key: str, patterns: List[str]) -> Tuple[Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except (re.error, TypeError) as e:
            raise ConfigError(f"Invalid regular expression in {key}: {pattern!r} ({e})")
    return tuple(compiled)


def _viewport_size(name: str, raw: Dict[str, Any]) -> ViewportSize:
    try:
        size = ViewportSize(
            width=int(raw["width"]),
            height=int(raw["height"]),
            device_scale_factor=float(raw.get("device_scale_factor", 1)),
            is_mobile=bool(raw.get("is_mobile", False)),
            has_touch=bool(raw.get("has_touch", False)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid viewport definition for {name!r}: {e}")
    if size.width <= 0 or size.height <= 0:
        raise ConfigError(f"Viewport {name!r} must have positive dimensions.")
    return size


def _positive(config: Dict[str, Any], key: str, cast: type = float) -> Any:
    try:
        value = cast(config[key])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {e}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


def _number(
    section: Mapping[str, Any], key: str, default: Any, cast: type, prefix: str = ""
) -> Any:
    raw = section.get(key, default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {prefix}{key}: {raw!r} ({e})")


def _section(config: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = config.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{key} must be a table, got {type(value).__name__}")
    return value


def settings_from_config(config: Dict[str, Any]) -> ScanSettings:
    """Validate a merged config dict and freeze it into ScanSettings."""
    try:
        threshold = float(config["similarity_threshold"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid similarity_threshold: {e}")
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError(f"similarity_threshold must be within [0, 1], got {threshold}")

    viewports = _section(config, "viewports")
    agents = _section(config, "user_agents")
    if "pc" not in viewports or "mobile" not in viewports:
        raise ConfigError("viewports must define both 'pc' and 'mobile'.")
    if not agents.get("normal") or not agents.get("spider"):
        raise ConfigError("user_agents must define both 'normal' and 'spider'.")
    modes = build_viewport_modes(
        _viewport_size("pc", viewports["pc"]),
        _viewport_size("mobile", viewports["mobile"]),
        agents["normal"],
        agents["spider"],
    )
    if tuple(m.name for m in modes) != VIEWPORT_ORDER:
        raise ConfigError("Exactly four viewport modes are required.")

    patterns = _section(config, "page_type_patterns")
    shot = _section(config, "screenshot")
    listing = _section(config, "listing")
    detector = _section(config, "error_detector")
    store = _section(config, "store")
    checks = _section(config, "checks")

    screenshot_settings = ScreenshotSettings(
        attempts=_number(shot, "attempts", 3, int, "screenshot."),
        retry_delay=_number(shot, "retry_delay", 2.0, float, "screenshot."),
        timeout=_number(shot, "timeout", 15.0, float, "screenshot."),
        homepage_timeout=_number(shot, "homepage_timeout", 20.0, float, "screenshot."),
        pc_crop_width=_number(shot, "pc_crop_width", 1100, int, "screenshot."),
    )
    if screenshot_settings.attempts < 1:
        raise ConfigError("screenshot.attempts must be at least 1.")

    try:
        check_toggles = CheckToggles(**{k: bool(v) for k, v in checks.items()})
    except TypeError as e:
        raise ConfigError(f"Unknown check toggle: {e}")

    concurrency = _number(config, "fingerprint_concurrency", 0, int)
    if concurrency < 0:
        raise ConfigError("fingerprint_concurrency cannot be negative.")

    return ScanSettings(
        similarity_threshold=threshold,
        max_pages_per_category=_positive(config, "max_pages_per_category", int),
        min_detail_pages=_number(config, "min_detail_pages", 3, int),
        min_list_pages=_number(config, "min_list_pages", 3, int),
        navigation_timeout=_positive(config, "navigation_timeout"),
        settle_delay=_number(config, "settle_delay", 1.0, float),
        scan_timeout=_positive(config, "scan_timeout"),
        quality_grace_period=_number(config, "quality_grace_period", 30.0, float),
        fingerprint_concurrency=concurrency,
        use_registrable_domain=bool(config.get("use_registrable_domain", False)),
        custom_urls=tuple(config.get("custom_urls") or ()),
        mirror_subdomains=tuple(config.get("mirror_subdomains") or ()),
        viewport_modes=modes,
        crawler_user_agent=agents.get("crawler") or agents["normal"],
        checks=check_toggles,
        detail_patterns=_compile_all("page_type_patterns.detail", patterns.get("detail", [])),
        list_patterns=_compile_all("page_type_patterns.list", patterns.get("list", [])),
        excluded_patterns=_compile_all(
            "excluded_patterns", config.get("excluded_patterns") or []
        ),
        screenshot=screenshot_settings,
        listing=ListingSettings(
            selectors=tuple(listing.get("selectors", ())),
            item_selector=str(listing.get("item_selector", "")),
            min_items=_number(listing, "min_items", 3, int, "listing."),
            attempts=_number(listing, "attempts", 20, int, "listing."),
            poll_interval=_number(listing, "poll_interval", 0.5, float, "listing."),
            load_timeout=_number(listing, "load_timeout", 10.0, float, "listing."),
            network_idle_timeout=_number(listing, "network_idle_timeout", 8.0, float, "listing."),
            not_ready_phrases=tuple(listing.get("not_ready_phrases", ())),
            fallback_wait=_number(listing, "fallback_wait", 5.0, float, "listing."),
            final_settle=_number(listing, "final_settle", 3.0, float, "listing."),
            prime_session=bool(listing.get("prime_session", True)),
        ),
        error_detector=ErrorDetectorSettings(
            settle=_number(detector, "settle", 2.0, float, "error_detector."),
            ignored_console_patterns=tuple(detector.get("ignored_console_patterns", ())),
            error_text_patterns=tuple(detector.get("error_text_patterns", ())),
        ),
        screenshots_dir=Path(_section(config, "output").get("screenshots_dir", "output/screenshots")),
        store_enabled=bool(store.get("enabled", True)),
        store_directory=str(store.get("directory", ".sitesweep_results")),
    )


def default_settings(**overrides: Any) -> ScanSettings:
    """ScanSettings built from the defaults with top-level keys replaced."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config.update(overrides)
    return settings_from_config(config)
