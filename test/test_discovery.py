from __future__ import annotations

import pytest

from fakes import FakeBrowser, FakePage
from sitesweep.config import default_settings
from sitesweep.discovery import PageVisitor, homepage_url, merge_page_urls
from sitesweep.fingerprint import MAX_CLASS_PATTERNS, extract_fingerprint, fingerprint_from_payload
from sitesweep.models import DOMFingerprint

PAYLOAD = {
    "tagSequence": ["html", "body"],
    "classPatterns": ["nav", "header", "a", "header", "card-grid", "ab"],
    "depth": 12,
    "breadth": 4,
    "nodeCount": 321,
}

HOME_HTML = """
<html><body>
  <a href="/item/1">one</a>
  <a href="/item/2">two</a>
  <a href="/login">login</a>
  <a href="https://elsewhere.org/">away</a>
</body></html>
"""


def test_fingerprint_from_payload_filters_classes():
    fp = fingerprint_from_payload("https://example.com/", PAYLOAD)
    assert fp.tag_sequence == ("html", "body")
    assert fp.class_patterns == ("nav", "header", "card-grid")
    assert (fp.depth, fp.breadth, fp.node_count) == (12, 4, 321)


def test_fingerprint_class_patterns_capped():
    payload = dict(PAYLOAD, classPatterns=[f"cls{i}" for i in range(200)])
    fp = fingerprint_from_payload("https://example.com/", payload)
    assert len(fp.class_patterns) == MAX_CLASS_PATTERNS
    assert fp.class_patterns[0] == "cls0"


@pytest.mark.asyncio
async def test_extract_fingerprint_degrades_to_empty():
    class Broken(FakePage):
        async def evaluate(self, script, arg=None):
            raise TypeError("bad payload")

    fp = await extract_fingerprint(Broken(), "https://example.com/x")
    assert fp == DOMFingerprint.empty("https://example.com/x")


def test_homepage_url():
    assert homepage_url("example.com") == "https://example.com/"


def test_merge_page_urls_dedupes_and_excludes():
    merged = merge_page_urls(
        ["https://example.com/a", "https://example.com/b/", "https://example.com/"],
        ["https://example.com/b", "https://example.com/c"],
        exclude=["https://example.com/"],
    )
    assert merged == [
        "https://example.com/a",
        "https://example.com/b/",
        "https://example.com/c",
    ]


@pytest.mark.asyncio
async def test_visit_homepage_returns_links_and_fingerprint():
    settings = default_settings(settle_delay=0)
    browser = FakeBrowser(lambda options: FakePage(html=HOME_HTML, fingerprint=PAYLOAD))
    async with PageVisitor(browser, settings) as visitor:
        fp, links = await visitor.visit_homepage("example.com")

    assert fp.url == "https://example.com/"
    assert fp.node_count == 321
    assert links == ["https://example.com/item/1", "https://example.com/item/2"]
    context = browser.contexts[0]
    assert context.options["user_agent"] == settings.crawler_user_agent
    assert context.closed
    assert context.page.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("concurrency", [0, 1])
async def test_fingerprint_all_skips_unreachable_pages(concurrency):
    settings = default_settings(settle_delay=0, fingerprint_concurrency=concurrency)

    class Router(FakePage):
        async def goto(self, url, wait_until="load", timeout=0):
            if url.endswith("/down"):
                self.goto_error = "net::ERR_NAME_NOT_RESOLVED"
            else:
                self.goto_error = None
            return await super().goto(url, wait_until, timeout)

    browser = FakeBrowser(lambda options: Router(fingerprint=PAYLOAD))
    urls = ["https://example.com/a", "https://example.com/down", "https://example.com/b"]
    async with PageVisitor(browser, settings) as visitor:
        fps = await visitor.fingerprint_all(urls)

    assert [f.url for f in fps] == ["https://example.com/a", "https://example.com/b"]
