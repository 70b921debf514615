# sitesweep/progress.py
"""
Progress reporting for one scan.

A ProgressReporter is created per scan and handed to the pipeline. Consumers
call `subscribe()` to get a Subscription, an async-iterable channel backed by
a bounded asyncio.Queue. A slow consumer loses its oldest events instead of
slowing the scan down. Completing the scan closes every channel.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

log = logging.getLogger(__name__)

EventKind = Literal["step", "log", "page", "complete"]

TOTAL_PHASES = 5


@dataclass(frozen=True)
class ProgressEvent:
    scan_id: str
    kind: EventKind
    phase: int
    total_phases: int
    message: str
    percent: int
    url: Optional[str] = None
    success: Optional[bool] = None
    timestamp: float = field(default_factory=time.time)


class _Closed:
    pass


_CLOSED = _Closed()


class Subscription:
    """One consumer's view of a scan's progress events."""

    def __init__(self, maxsize: int = 100) -> None:
        self.maxsize = max(1, maxsize)
        # One slot beyond maxsize is reserved for the close marker.
        self._queue: "asyncio.Queue[Union[ProgressEvent, _Closed]]" = asyncio.Queue(
            maxsize=self.maxsize + 1
        )
        self.closed = False
        self.dropped = 0

    def publish(self, event: ProgressEvent) -> None:
        if self.closed:
            return
        while self._queue.qsize() >= self.maxsize:
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        item = await self._queue.get()
        if isinstance(item, _Closed):
            # Leave the marker for any other reader of this channel.
            self._queue.put_nowait(item)
            raise StopAsyncIteration
        return item


class ProgressReporter:
    def __init__(
        self, scan_id: str, total_phases: int = TOTAL_PHASES, channel_size: int = 100
    ) -> None:
        self.scan_id = scan_id
        self.total_phases = total_phases
        self.channel_size = channel_size
        self.phase = 0
        self.percent = 0
        self.finished = False
        self._subscribers: List[Subscription] = []

    # ---- channels -------------------------------------------------------------

    def subscribe(self) -> Subscription:
        subscription = Subscription(self.channel_size)
        if self.finished:
            subscription.close()
        else:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
        subscription.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # ---- emitters -------------------------------------------------------------

    def _emit(
        self,
        kind: EventKind,
        message: str,
        *,
        url: Optional[str] = None,
        success: Optional[bool] = None,
    ) -> ProgressEvent:
        event = ProgressEvent(
            scan_id=self.scan_id,
            kind=kind,
            phase=self.phase,
            total_phases=self.total_phases,
            message=message,
            percent=self.percent,
            url=url,
            success=success,
        )
        if kind == "step":
            log.info("[%s] Step %d/%d: %s", self.scan_id, self.phase, self.total_phases, message)
        else:
            log.info("[%s] %s", self.scan_id, message)
        for subscription in list(self._subscribers):
            subscription.publish(event)
        return event

    def _band(self, fraction: float) -> int:
        """Overall percent for `fraction` (0..1) of the way through the current phase."""
        if not self.total_phases:
            return 0
        done = max(0, self.phase - 1) + min(max(fraction, 0.0), 1.0)
        return round(done / self.total_phases * 100)

    def step(self, phase: int, message: str) -> ProgressEvent:
        """Start phase `phase`; the percent marks where that phase begins."""
        self.phase = phase
        self.percent = self._band(0.0)
        return self._emit("step", message)

    def log(self, message: str) -> ProgressEvent:
        return self._emit("log", message)

    def page(self, url: str, index: int, total: int) -> ProgressEvent:
        """Report the start of page `index` (0-based) out of `total`."""
        self.percent = max(self.percent, self._band(index / total if total else 1.0))
        return self._emit("page", f"Testing: {url} ({index + 1}/{total})", url=url)

    def complete(self, success: bool = True, message: str = "") -> ProgressEvent:
        if success:
            self.percent = 100
        event = self._emit(
            "complete",
            message or ("Scan completed" if success else "Scan failed"),
            success=success,
        )
        self.finished = True
        for subscription in self._subscribers:
            subscription.close()
        self._subscribers.clear()
        return event
