# Small stand-ins for the Playwright page / context / browser objects.
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from PIL import Image
from playwright.async_api import Error as PlaywrightError


def make_png(path, white_fraction: float = 0.5, size=(50, 50), colour=(30, 30, 30)) -> Path:
    """A PNG whose first `white_fraction` of pixels (row-major) are pure white."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    width, height = size
    total = width * height
    white = round(total * white_fraction)
    img = Image.new("RGB", size, colour)
    pixels = [(255, 255, 255)] * white + [colour] * (total - white)
    img.putdata(pixels)
    img.save(path)
    return path


class FakeResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status


class FakePage:
    """
    Answers page.evaluate() by recognising which of the package's scripts was
    sent. Every behaviour can be overridden through constructor arguments.
    """

    def __init__(
        self,
        *,
        status: int = 200,
        overflow: int = 0,
        broken_images: Optional[List[str]] = None,
        error_texts: Optional[List[str]] = None,
        request_id: Optional[str] = None,
        fingerprint: Optional[Dict[str, Any]] = None,
        listing_probes: Optional[List[Dict[str, Any]]] = None,
        goto_error: Optional[str] = None,
        screenshot_failures: int = 0,
        screenshot_size=(1920, 1080),
        console_on_goto: Optional[List[str]] = None,
        html: str = "<html><body></body></html>",
        load_state_error: bool = False,
    ) -> None:
        self.status = status
        self.overflow = overflow
        self.broken_images = broken_images or []
        self.error_texts = error_texts or []
        self.request_id = request_id
        self.fingerprint = fingerprint or {}
        self.listing_probes = list(listing_probes or [])
        self.goto_error = goto_error
        self.screenshot_failures = screenshot_failures
        self.screenshot_size = screenshot_size
        self.console_on_goto = console_on_goto or []
        self.html = html
        self.load_state_error = load_state_error

        self.url = ""
        self.visited: List[str] = []
        self.waits: List[int] = []
        self.load_states: List[str] = []
        self.scripts: List[str] = []
        self.screenshot_calls: List[Dict[str, Any]] = []
        self.viewport_sizes: List[Dict[str, int]] = []
        self.handlers: Dict[str, List[Callable[[Any], None]]] = {}
        self.closed = False

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in self.handlers.get(event, []):
            handler(payload)

    async def goto(self, url: str, wait_until: str = "load", timeout: int = 0):
        self.visited.append(url)
        if self.goto_error:
            raise PlaywrightError(self.goto_error)
        self.url = url
        for text in self.console_on_goto:
            self.emit("console", FakeConsoleMessage("error", text))
        return FakeResponse(self.status)

    async def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    async def wait_for_load_state(self, state: str, timeout: int = 0) -> None:
        self.load_states.append(state)
        if self.load_state_error:
            raise PlaywrightError(f"Timeout waiting for {state}")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.scripts.append(script)
        if "notReadyPhrases" in script:
            if self.listing_probes:
                return self.listing_probes.pop(0)
            return {"blocked": None, "selector": None}
        if "brokenImages" in script:
            return {
                "brokenImages": self.broken_images,
                "errorTexts": [t for t in self.error_texts if t in (arg or [])],
                "requestId": self.request_id,
            }
        if "tagSequence" in script:
            return self.fingerprint
        if "scrollWidth" in script:
            return self.overflow
        if "offsetHeight" in script:
            return None
        if "__REQUEST_ID__" in script:
            return self.request_id
        raise AssertionError(f"unexpected script: {script[:40]}")

    async def set_viewport_size(self, size: Dict[str, int]) -> None:
        self.viewport_sizes.append(size)

    async def screenshot(self, **kwargs: Any) -> bytes:
        self.screenshot_calls.append(kwargs)
        if self.screenshot_failures > 0:
            self.screenshot_failures -= 1
            raise PlaywrightError("Timeout 15000ms exceeded while taking screenshot")
        make_png(kwargs["path"], white_fraction=0.5, size=self.screenshot_size)
        return b""

    async def content(self) -> str:
        return self.html

    async def close(self) -> None:
        self.closed = True


class FakeConsoleMessage:
    def __init__(self, type: str, text: str) -> None:
        self.type = type
        self.text = text


class FakeContext:
    def __init__(self, page: FakePage, options: Dict[str, Any]) -> None:
        self.page = page
        self.options = options
        self.routes: List[Any] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        return self.page

    async def route(self, pattern: Any, handler: Any) -> None:
        self.routes.append((pattern, handler))

    async def cookies(self) -> List[Dict[str, Any]]:
        return [{"name": "session", "value": "1"}]

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    """Hands out one FakePage per new context, built by `page_factory(options)`."""

    def __init__(self, page_factory: Callable[[Dict[str, Any]], FakePage]) -> None:
        self.page_factory = page_factory
        self.contexts: List[FakeContext] = []

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(self.page_factory(options), options)
        self.contexts.append(context)
        return context
