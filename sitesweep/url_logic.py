# sitesweep/url_logic.py
from __future__ import annotations

import logging
import os
import re
from typing import Iterable, List, Pattern, Sequence
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse

import tldextract
from bs4 import BeautifulSoup

from sitesweep.models import PageType

log = logging.getLogger(__name__)

# Links with these extensions are assets, never pages worth fingerprinting.
EXTENSION_DENYLIST = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".webp",
    ".bmp",
    ".ico",
    ".svg",
    ".avif",
    ".mp4",
    ".webm",
    ".mp3",
    ".pdf",
    ".zip",
    ".gz",
    ".exe",
    ".dmg",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".css",
    ".js",
    ".mjs",
    ".map",
    ".xml",
    ".json",
}

ALLOWED_SCHEMES = {"http", "https"}

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")
MAX_FILENAME_LENGTH = 100


def _scheme(u: str) -> str:
    try:
        return urlparse(u).scheme.lower()
    except ValueError:
        return ""


def is_fetchable_url(u: str) -> bool:
    """Return True iff URL uses a scheme we can actually fetch (http/https)."""
    return _scheme(u) in ALLOWED_SCHEMES


def _path_ext(u: str) -> str:
    try:
        _, ext = os.path.splitext(urlparse(u).path.lower())
        return ext
    except ValueError:
        return ""


def is_probably_html_url(u: str) -> bool:
    """
    Heuristic: http/https AND path extension NOT in a denylist.
    Allows extensionless paths and 'clean URLs'.
    """
    if not is_fetchable_url(u):
        return False
    ext = _path_ext(u)
    return not (ext and ext in EXTENSION_DENYLIST)


def canonical_url(url: str) -> str:
    """
    Lowercase scheme/host, drop the fragment and sort query parameters.
    The path is kept as-is so the result is still the URL to navigate to.
    """
    try:
        p = urlparse(url)
        query = urlencode(sorted(parse_qsl(p.query, keep_blank_values=True)))
        return p._replace(
            scheme=(p.scheme or "").lower(),
            netloc=(p.netloc or "").lower(),
            query=query,
            fragment="",
        ).geturl()
    except ValueError:
        return url


def normalize_url(url: str) -> str:
    """
    Deduplication key: canonical_url plus a trimmed trailing slash.
    Robust to malformed URLs (returns input on failure).
    """
    try:
        p = urlparse(canonical_url(url))
        if p.path == "/":
            path = ""
        elif p.path.endswith("/") and len(p.path) > 1:
            path = p.path[:-1]
        else:
            path = p.path
        return p._replace(path=path).geturl()
    except ValueError:
        return url


def _netloc(host_url: str) -> str:
    return (urlparse(host_url).hostname or "").lower()


def _registrable_domain_or(host: str, fallback_to_host: bool = True) -> str:
    """
    Returns eTLD+1 when tldextract recognises the host.
    Falls back to host (minus a leading 'www.') if not.
    """
    ext = tldextract.extract(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}".lower()
    if fallback_to_host:
        return host[4:] if host.startswith("www.") else host
    return host


def is_same_site(url: str, domain: str, use_registrable_domain: bool = False) -> bool:
    """
    True when `url` is on the scanned domain. By default the host must match
    exactly; with `use_registrable_domain` any host under the same eTLD+1 counts.
    """
    host = _netloc(url)
    domain = domain.lower()
    if not host:
        return False
    if use_registrable_domain:
        return _registrable_domain_or(host) == _registrable_domain_or(domain)
    return host == domain


def is_excluded(url: str, patterns: Iterable[Pattern[str]]) -> bool:
    """Match exclusion regexes against both the path and the full URL."""
    try:
        path = urlparse(url).path
    except ValueError:
        return True
    return any(p.search(path) or p.search(url) for p in patterns)


def extract_page_links(
    soup: BeautifulSoup,
    base_url: str,
    domain: str,
    excluded: Sequence[Pattern[str]] = (),
    use_registrable_domain: bool = False,
) -> List[str]:
    """
    Same-domain page links found in <a href> elements, in document order.

    Relative links are resolved against `base_url`; assets, other hosts and
    excluded paths are dropped; duplicates collapse on normalize_url().
    """
    out: List[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor.get("href")
        if not href:
            continue
        resolved = canonical_url(urljoin(base_url, href))  # type: ignore[arg-type,type-var]
        if not is_probably_html_url(resolved):
            continue
        if not is_same_site(resolved, domain, use_registrable_domain):
            continue
        if is_excluded(resolved, excluded):
            log.debug("Skipping excluded URL: %s", resolved)
            continue
        key = normalize_url(resolved)
        if key in seen:
            continue
        seen.add(key)
        out.append(resolved)
    return out


def url_path(url: str) -> str:
    try:
        return urlparse(url).path or "/"
    except ValueError:
        return ""


def identify_page_type(
    url: str,
    detail_patterns: Iterable[Pattern[str]],
    list_patterns: Iterable[Pattern[str]],
) -> PageType:
    """
    Classify a URL by its path: root is the homepage, then the first matching
    detail pattern, then the first matching list pattern, else 'other'.
    """
    try:
        path = urlparse(url).path
    except ValueError:
        return "other"
    if path in ("", "/"):
        return "homepage"
    if any(p.search(path) for p in detail_patterns):
        return "detail"
    if any(p.search(path) for p in list_patterns):
        return "list"
    return "other"


def site_root(url: str) -> str:
    p = urlparse(url)
    return f"{p.scheme}://{p.netloc}/"


def swap_subdomain(url: str, prefix: str) -> str:
    """
    Replace the left-most host label: ('https://en.example.com/a', 'fr')
    gives 'https://fr.example.com/a'. Hosts with fewer than two labels are
    returned unchanged.
    """
    p = urlparse(url)
    host = p.hostname or ""
    labels = host.split(".")
    if len(labels) < 2:
        return url
    new_host = ".".join([prefix] + labels[1:])
    netloc = new_host if p.port is None else f"{new_host}:{p.port}"
    return p._replace(netloc=netloc).geturl()


def sanitize_filename(url: str) -> str:
    """Filesystem-safe stem from a URL's path and query."""
    try:
        p = urlparse(url)
    except ValueError:
        return "unknown"
    stem = p.path + (f"?{p.query}" if p.query else "")
    stem = _UNSAFE_FILENAME_CHARS.sub("_", stem)[:MAX_FILENAME_LENGTH]
    if not stem.strip("_"):
        return "homepage"
    return stem
