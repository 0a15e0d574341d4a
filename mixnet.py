"""Mixnet batcher: buffer ballots, release them in shuffled batches."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable, List, Sequence

from clock import Clock, SystemClock
from constants import MIXNET_MAX_WAIT, MIXNET_MIN_BATCH_SIZE, MIXNET_TICK_INTERVAL
from data_models import Ballot
from scheduler import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass
class _BufferedEntry:
    ballot: Ballot
    arrived_at: float


class MixnetBatcher:
    """混合网络批处理器 / Decorrelates release order from arrival order.

    The buffer is guarded by ``_buffer_lock``; a release takes a snapshot and
    clears the buffer in one step, so ballots added while a batch is being
    delivered belong to the next batch. Releases never overlap: a second
    concurrent release is skipped.
    """

    def __init__(
        self,
        on_release: Callable[[List[Ballot]], None] | None = None,
        min_batch_size: int = MIXNET_MIN_BATCH_SIZE,
        max_wait: float = MIXNET_MAX_WAIT,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        tick_interval: float = MIXNET_TICK_INTERVAL,
    ) -> None:
        if min_batch_size < 1:
            raise ValueError("min_batch_size must be at least 1")
        self.on_release = on_release
        self.min_batch_size = min_batch_size
        self.max_wait = max_wait
        self.clock = clock or SystemClock()
        self.rng = rng or random.SystemRandom()
        self.released_batches = 0
        self._buffer: List[_BufferedEntry] = []
        self._buffer_lock = threading.Lock()
        self._release_lock = threading.Lock()
        self._task = PeriodicTask("mixnet-tick", tick_interval, self.tick)

    @property
    def buffer_size(self) -> int:
        with self._buffer_lock:
            return len(self._buffer)

    def add_entry(self, ballot: Ballot | None) -> bool:
        if ballot is None:
            return False
        with self._buffer_lock:
            self._buffer.append(_BufferedEntry(ballot, self.clock.now()))
            ready = len(self._buffer) >= self.min_batch_size
        if ready:
            try:
                self.release()
            except Exception as exc:
                logger.debug("[Mixnet] Entry kept buffered after failed release: %s", exc)
        return True

    def tick(self) -> List[Ballot]:
        """周期检查 / Release a full batch, or a stale partial one."""
        with self._buffer_lock:
            if not self._buffer:
                return []
            if len(self._buffer) >= self.min_batch_size:
                force = False
            elif self.clock.now() - self._buffer[0].arrived_at > self.max_wait:
                force = True
            else:
                return []
        return self.release(force=force)

    def flush(self) -> List[Ballot]:
        return self.release(force=True)

    def release(self, force: bool = False) -> List[Ballot]:
        if not self._release_lock.acquire(blocking=False):
            logger.debug("[Mixnet] Release already in flight, skipping")
            return []
        try:
            with self._buffer_lock:
                if not self._buffer or (not force and len(self._buffer) < self.min_batch_size):
                    return []
                snapshot = self._buffer
                self._buffer = []

            batch = [entry.ballot for entry in snapshot]
            self.shuffle(batch)
            if self.on_release is not None:
                try:
                    self.on_release(batch)
                except Exception:
                    with self._buffer_lock:
                        # 投递失败：整批放回缓冲区最前面
                        self._buffer = snapshot + self._buffer
                    logger.exception("[Mixnet] Delivery of %d ballots failed, batch restored", len(batch))
                    raise
            self.released_batches += 1
            logger.info("[Mixnet] Released batch of %d ballots%s", len(batch), " (forced)" if force else "")
            return batch
        finally:
            self._release_lock.release()

    def shuffle(self, items: List) -> None:
        """Fisher-Yates 原地洗牌 / In-place uniform permutation."""
        for i in range(len(items) - 1, 0, -1):
            j = self.rng.randrange(i + 1)
            items[i], items[j] = items[j], items[i]

    def start(self) -> None:
        self._task.start()

    def stop(self) -> None:
        self._task.stop()

    def pending(self) -> Sequence[Ballot]:
        with self._buffer_lock:
            return [entry.ballot for entry in self._buffer]
