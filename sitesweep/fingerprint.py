# sitesweep/fingerprint.py
"""Turns a loaded page into a DOMFingerprint (structure only, never content)."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from sitesweep.models import DOMFingerprint

log = logging.getLogger(__name__)

MAX_CLASS_PATTERNS = 50
MIN_CLASS_TOKEN_LENGTH = 3

FINGERPRINT_SCRIPT = """
() => {
  const tagSequence = [];
  let current = document.body;
  while (current) {
    tagSequence.unshift(current.tagName.toLowerCase());
    current = current.parentElement;
  }

  const classSet = new Set();
  document.querySelectorAll('[class]').forEach(el => {
    const raw = typeof el.className === 'string'
      ? el.className
      : (el.getAttribute('class') || '');
    raw.split(/\\s+/).forEach(c => { if (c) classSet.add(c); });
  });

  let maxDepth = 0;
  const all = document.querySelectorAll('*');
  all.forEach(el => {
    let depth = 0;
    let node = el;
    while (node.parentElement && node.parentElement !== document.body) {
      depth += 1;
      node = node.parentElement;
    }
    if (depth > maxDepth) maxDepth = depth;
  });

  return {
    tagSequence,
    classPatterns: Array.from(classSet),
    depth: maxDepth,
    breadth: document.body ? document.body.children.length : 0,
    nodeCount: all.length,
  };
}
"""


def fingerprint_from_payload(url: str, payload: Mapping[str, Any]) -> DOMFingerprint:
    """Build a fingerprint from the page script's raw result."""
    classes: list[str] = []
    for token in payload.get("classPatterns") or []:
        if not isinstance(token, str) or len(token) < MIN_CLASS_TOKEN_LENGTH:
            continue
        if token in classes:
            continue
        classes.append(token)
        if len(classes) >= MAX_CLASS_PATTERNS:
            break

    return DOMFingerprint(
        url=url,
        tag_sequence=tuple(str(t) for t in payload.get("tagSequence") or ()),
        class_patterns=tuple(classes),
        depth=int(payload.get("depth") or 0),
        breadth=int(payload.get("breadth") or 0),
        node_count=int(payload.get("nodeCount") or 0),
    )


async def extract_fingerprint(page: Page, url: str) -> DOMFingerprint:
    """
    Evaluate the fingerprint script on `page`. Any failure degrades to an
    all-zero fingerprint rather than dropping the page.
    """
    try:
        payload = await page.evaluate(FINGERPRINT_SCRIPT)
        return fingerprint_from_payload(url, payload or {})
    except (PlaywrightError, TypeError, ValueError) as e:
        log.error("Failed to analyze DOM for %s: %s", url, e)
        return DOMFingerprint.empty(url)
