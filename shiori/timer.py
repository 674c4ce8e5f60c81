from __future__ import annotations

import asyncio
import heapq
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


@dataclass
class _ManualEntry:
    due_ms: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualScheduler:
    """Logical clock. Nothing fires until ``advance`` moves time forward."""

    now_ms: float = 0.0
    _queue: List[tuple[float, int, _ManualEntry]] = field(default_factory=list)
    _seq: int = 0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> _ManualEntry:
        entry = _ManualEntry(due_ms=self.now_ms + max(0.0, float(delay_ms)), callback=callback)
        self._seq += 1
        heapq.heappush(self._queue, (entry.due_ms, self._seq, entry))
        return entry

    def advance(self, delay_ms: float) -> int:
        target = self.now_ms + max(0.0, float(delay_ms))
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due_ms, _seq, entry = heapq.heappop(self._queue)
            self.now_ms = max(self.now_ms, due_ms)
            if entry.cancelled:
                continue
            entry.cancelled = True
            entry.callback()
            fired += 1
        self.now_ms = target
        return fired

    @property
    def pending(self) -> int:
        return sum(1 for _due, _seq, entry in self._queue if not entry.cancelled)


class AsyncioScheduler:
    """Schedules on the running event loop; must be called from loop code."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay_ms)) / 1000.0, callback)


class Timer:
    """Single-slot debounce timer: starting it replaces any pending call."""

    def __init__(self, scheduler: Scheduler, delay_ms: float) -> None:
        self._scheduler = scheduler
        self._delay_ms = delay_ms
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self, callback: Callable[[], None]) -> None:
        self.cancel()

        def fire() -> None:
            # A handle that was replaced or cancelled must never run.
            if self._handle is not handle:
                return
            self._handle = None
            callback()

        handle = self._scheduler.call_later(self._delay_ms, fire)
        self._handle = handle

    def cancel(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is not None:
            handle.cancel()
