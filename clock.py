"""Clock abstraction so batch aging and session expiry are testable."""

from __future__ import annotations

import threading
import time


class Clock:
    """时钟接口 / Source of wall-clock seconds."""

    def now(self) -> float:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> float:
        return time.time()


class ManualClock(Clock):
    """手动推进的时钟 / Deterministic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, value: float) -> None:
        with self._lock:
            self._now = float(value)
