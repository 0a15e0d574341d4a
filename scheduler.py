"""Non-reentrant periodic task runner."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Tuple, Type

logger = logging.getLogger(__name__)


class PeriodicTask:
    """周期任务 / Runs ``fn`` every ``interval`` seconds on a daemon thread.

    A tick that arrives while the previous run is still in flight is skipped,
    never queued. Exceptions raised by ``fn`` are logged and the schedule
    keeps going, unless the exception type is listed in ``fatal_errors``; in
    that case the task stops and keeps the exception in ``last_error``.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], object],
        fatal_errors: Tuple[Type[BaseException], ...] = (),
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.fn = fn
        self.fatal_errors = fatal_errors
        self.last_error: BaseException | None = None
        self.skipped_ticks = 0
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """执行一次；若上一轮仍在进行则跳过 / Returns False when the tick was skipped."""
        if not self._run_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.debug("[%s] Previous run still in flight, skipping tick", self.name)
            return False
        try:
            self.fn()
        except self.fatal_errors as exc:
            self.last_error = exc
            self._stop_event.set()
            logger.error("[%s] Fatal error, stopping schedule: %s", self.name, exc)
        except Exception as exc:
            self.last_error = exc
            logger.exception("[%s] Cycle failed", self.name)
        finally:
            self._run_lock.release()
        return True

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("[%s] Started with interval %.2fs", self.name, self.interval)

    def stop(self, timeout: float | None = None) -> None:
        """停止并等待正在执行的周期结束 / Stop and wait for an in-flight run."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("[%s] Stopped", self.name)

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.run_once()
