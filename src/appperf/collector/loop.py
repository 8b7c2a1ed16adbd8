"""Background collection loop driving one sampler for one session."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ..config import CollectionConfig
from ..errors import BufferSealedError, SampleTimeoutError, SamplingError
from .base import BaseSampler, MetricSample
from .buffer import SessionBuffer

logger = logging.getLogger(__name__)


@dataclass
class LoopStats:
    """Counters describing how a session's collection went."""

    ticks: int = 0
    samples: int = 0
    failures: int = 0
    timeouts: int = 0
    skipped: int = 0
    consecutive_unresolved: int = 0


class CollectionLoop:
    """Samples at a fixed cadence on a background thread until stopped.

    Ticks are scheduled at ``origin + n * interval`` so a slow sample never
    shifts later ticks; ticks that are already in the past are skipped. Each
    sample runs on a dedicated worker bounded by ``sample_timeout_seconds``;
    a sample that overruns is abandoned and later ticks are skipped until it
    returns.

    The loop seals its buffer when it exits, whether through :meth:`stop` or
    ``max_duration_seconds``.
    """

    def __init__(
        self,
        session_id: str,
        sampler: BaseSampler,
        config: CollectionConfig,
        buffer: SessionBuffer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_id = session_id
        self._sampler = sampler
        self._config = config
        self._buffer = buffer if buffer is not None else SessionBuffer(session_id, target=sampler.target)
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._pending: concurrent.futures.Future[MetricSample] | None = None
        self.stats = LoopStats()

    @property
    def buffer(self) -> SessionBuffer:
        return self._buffer

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _sample_with_timeout(self) -> MetricSample:
        if self._executor is None:
            return self._sampler.sample()
        if self._pending is not None and not self._pending.done():
            self.stats.skipped += 1
            raise SampleTimeoutError("previous sample still in flight")
        self._pending = self._executor.submit(self._sampler.sample)
        try:
            return self._pending.result(timeout=self._config.sample_timeout_seconds)
        except concurrent.futures.TimeoutError as exc:
            self.stats.timeouts += 1
            raise SampleTimeoutError(
                f"sample exceeded {self._config.sample_timeout_seconds}s and was abandoned"
            ) from exc

    def _track_resolution(self) -> None:
        if self._sampler.process_resolved:
            self.stats.consecutive_unresolved = 0
            return
        self.stats.consecutive_unresolved += 1
        if (self.stats.consecutive_unresolved >= self._config.max_resolution_failures
                and not self._buffer.degraded):
            logger.warning(
                "Session %s: target %r unresolved for %d consecutive ticks, collection degraded",
                self._session_id,
                self._sampler.target,
                self.stats.consecutive_unresolved,
            )
            self._buffer.mark_degraded()

    def run_once(self) -> MetricSample | None:
        """Take one sample and append it. Returns None if the tick produced nothing."""
        self.stats.ticks += 1
        try:
            sample = self._sample_with_timeout()
        except SamplingError as exc:
            self.stats.failures += 1
            logger.warning("Session %s: sample failed: %s", self._session_id, exc)
            return None
        except Exception:
            self.stats.failures += 1
            logger.exception("Session %s: sampler %s failed", self._session_id, self._sampler.name)
            return None

        try:
            self._track_resolution()
            self._buffer.append(sample)
        except BufferSealedError:
            if self._stop_event.is_set():
                logger.debug("Session %s: discarding in-flight sample after seal", self._session_id)
                return None
            raise
        self.stats.samples += 1
        return sample

    def _run(self) -> None:
        """Background thread loop."""
        interval = self._config.interval_seconds
        max_duration = self._config.max_duration_seconds
        origin = self._clock()
        tick = 0
        try:
            while not self._stop_event.is_set():
                if max_duration is not None and self._clock() - origin >= max_duration:
                    logger.info("Session %s reached max duration %.1fs", self._session_id, max_duration)
                    break
                self.run_once()
                now = self._clock()
                tick = max(tick + 1, int((now - origin) // interval) + 1)
                self._stop_event.wait(max(origin + tick * interval - now, 0.0))
        finally:
            self._buffer.seal()
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)

    def start(self) -> None:
        """Start collecting in the background."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"appperf-sample-{self._session_id}"
        )
        self._thread = threading.Thread(
            target=self._run, name=f"appperf-loop-{self._session_id}", daemon=True
        )
        self._thread.start()
        logger.info(
            "Session %s collection started (sampler=%s, interval=%.1fs)",
            self._session_id,
            self._sampler.name,
            self._config.interval_seconds,
        )

    def stop(self, timeout: float | None = None) -> SessionBuffer:
        """Stop collection and return the sealed buffer.

        Waits for the in-flight sample to finish, bounded by the per-sample
        timeout unless *timeout* is given.
        """
        self._stop_event.set()
        if self._thread is not None:
            wait = timeout if timeout is not None else self._config.sample_timeout_seconds + 1.0
            self._thread.join(timeout=wait)
            if self._thread.is_alive():
                logger.warning("Session %s: loop did not exit within %.1fs", self._session_id, wait)
            self._thread = None
        self._buffer.seal()
        logger.info(
            "Session %s collection stopped (%d samples, %d failures)",
            self._session_id,
            self.stats.samples,
            self.stats.failures,
        )
        return self._buffer

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the loop exits on its own. Returns True if it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()
