"""Append-only in-memory sample log for one session."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterator

from ..errors import BufferSealedError
from .base import MetricSample

logger = logging.getLogger(__name__)


class SessionBuffer:
    """Ordered, append-only sequence of samples for one session.

    The collection loop is the only writer; once :meth:`seal` is called the
    buffer is read-only and every further append raises
    :class:`BufferSealedError`. Appends and seal are serialized by an internal
    lock so a concurrent stop never observes a half-applied append.
    """

    def __init__(self, session_id: str, *, target: str = "", launched_at: float | None = None) -> None:
        self._session_id = session_id
        self._target = target
        self._launched_at = launched_at
        self._samples: list[MetricSample] = []
        self._sealed = False
        self._degraded = False
        self._cond = threading.Condition()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def target(self) -> str:
        return self._target

    @property
    def launched_at(self) -> float | None:
        return self._launched_at

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def samples(self) -> tuple[MetricSample, ...]:
        """Snapshot of the samples appended so far."""
        with self._cond:
            return tuple(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[MetricSample]:
        return iter(self.samples)

    def _check_writable(self) -> None:
        if self._sealed:
            raise BufferSealedError(self._session_id)

    def append(self, sample: MetricSample) -> None:
        """Append *sample*; its timestamp must not precede the last one."""
        with self._cond:
            self._check_writable()
            if self._samples and sample.timestamp < self._samples[-1].timestamp:
                raise ValueError(
                    f"sample at {sample.timestamp} precedes last sample at {self._samples[-1].timestamp}"
                )
            self._samples.append(sample)
            self._cond.notify_all()

    def mark_degraded(self) -> None:
        """Flag the session as having incomplete collection."""
        with self._cond:
            self._check_writable()
            self._degraded = True

    def set_launched_at(self, launched_at: float) -> None:
        with self._cond:
            self._check_writable()
            self._launched_at = launched_at

    def seal(self) -> None:
        """Freeze the buffer. Calling it again is a no-op."""
        with self._cond:
            if self._sealed:
                return
            self._sealed = True
            self._cond.notify_all()
        logger.debug("Session %s sealed with %d samples", self._session_id, len(self._samples))

    def wait_for(
        self,
        predicate: Callable[[MetricSample], bool],
        timeout: float,
    ) -> MetricSample | None:
        """Block until a sample matching *predicate* exists.

        Returns None if the buffer is sealed or *timeout* elapses first.
        """
        deadline = time.monotonic() + timeout
        checked = 0
        with self._cond:
            while True:
                for sample in self._samples[checked:]:
                    if predicate(sample):
                        return sample
                checked = len(self._samples)
                remaining = deadline - time.monotonic()
                if self._sealed or remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def metadata(self) -> dict[str, Any]:
        """Session metadata persisted alongside the samples."""
        return {
            "session_id": self._session_id,
            "target": self._target,
            "launched_at": self._launched_at,
            "degraded": self._degraded,
            "sample_count": len(self._samples),
        }

    @classmethod
    def restore(
        cls,
        metadata: dict[str, Any],
        samples: list[MetricSample],
    ) -> SessionBuffer:
        """Rebuild a sealed buffer from persisted metadata and samples."""
        buffer = cls(
            metadata.get("session_id", ""),
            target=metadata.get("target", ""),
            launched_at=metadata.get("launched_at"),
        )
        for sample in samples:
            buffer.append(sample)
        if metadata.get("degraded"):
            buffer.mark_degraded()
        buffer.seal()
        return buffer
