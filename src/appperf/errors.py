"""Exception types raised by appperf."""

from __future__ import annotations


class AppPerfError(Exception):
    """Base class for all appperf errors."""


class SamplingError(AppPerfError):
    """A telemetry source could not produce a reading.

    Raised per metric family (recovered inside the sampler) or for a whole
    sample when the source itself is unreachable (recovered by the loop).
    """


class SampleTimeoutError(SamplingError):
    """A sample did not complete within the per-sample timeout."""


class ProcessNotFoundError(AppPerfError):
    """The target process could not be resolved to a live process."""

    def __init__(self, target: str) -> None:
        super().__init__(f"process not found: {target!r}")
        self.target = target


class BufferSealedError(AppPerfError):
    """An append or metadata change was attempted on a sealed buffer."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session buffer {session_id!r} is sealed")
        self.session_id = session_id


class EmptySessionError(AppPerfError):
    """A summary was requested over a session with no samples."""
