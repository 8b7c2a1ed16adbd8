"""Session manager – the start/stop entry points for test-execution drivers."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..analyzer.summary import Summary, is_started, summarize
from ..config import AppPerfConfig, SamplerConfig
from ..exporter.base import BaseExporter
from .android import AdbShell, AndroidSampler
from .base import BaseSampler
from .buffer import SessionBuffer
from .host import HostSampler
from .loop import CollectionLoop, LoopStats

logger = logging.getLogger(__name__)

SamplerFactory = Callable[[SamplerConfig, str], BaseSampler]


def create_sampler(config: SamplerConfig, target: str) -> BaseSampler:
    """Build a fresh sampler for *target* on the configured platform."""
    if config.platform == "android":
        shell = AdbShell(
            serial=config.device_serial,
            adb_path=config.adb_path,
            timeout=config.command_timeout_seconds,
        )
        return AndroidSampler(target, shell=shell)
    return HostSampler(target, launch_command=config.launch_command)


@dataclass
class SessionResult:
    """Outcome of a stopped session."""

    session_id: str
    buffer: SessionBuffer
    summary: Summary
    stats: LoopStats
    references: dict[str, str] = field(default_factory=dict)


class SessionManager:
    """Runs one collection loop per active session.

    Each session gets its own sampler and buffer; nothing is shared between
    sessions. Exporters registered here receive every finished session.
    """

    def __init__(
        self,
        config: AppPerfConfig,
        exporters: Sequence[BaseExporter] = (),
        sampler_factory: SamplerFactory = create_sampler,
    ) -> None:
        self._config = config
        self._exporters = list(exporters)
        self._sampler_factory = sampler_factory
        self._loops: dict[str, CollectionLoop] = {}
        self._lock = threading.Lock()

    def add_exporter(self, exporter: BaseExporter) -> None:
        self._exporters.append(exporter)

    def active_sessions(self) -> list[str]:
        with self._lock:
            return sorted(self._loops)

    def start(self, session_id: str, target: str | None = None, *, launch: bool = False) -> SessionBuffer:
        """Begin collecting for *session_id* against *target*.

        With *launch*, the sampler's launch command is issued after the loop
        starts and its time is recorded for startup measurement. A sampler
        that cannot launch the app is rejected before collection begins.
        """
        target = target or self._config.sampler.target
        if not target:
            raise ValueError("no target process given and none configured")

        with self._lock:
            if session_id in self._loops:
                raise ValueError(f"session {session_id!r} is already running")
            sampler = self._sampler_factory(self._config.sampler, target)
            if launch and not sampler.can_launch:
                raise ValueError(
                    f"launch requires sampler.launch_command on the {sampler.name} platform"
                )
            buffer = SessionBuffer(session_id, target=target)
            loop = CollectionLoop(session_id, sampler, self._config.collection, buffer=buffer)
            self._loops[session_id] = loop

        loop.start()
        if launch:
            try:
                buffer.set_launched_at(sampler.launch())
            except Exception:
                with self._lock:
                    self._loops.pop(session_id, None)
                loop.stop()
                raise
        return buffer

    def measure_startup(self, session_id: str, timeout: float | None = None) -> float | None:
        """Wait for the launched app to show up in the foreground.

        Returns the elapsed seconds from launch, or None if no launch was
        recorded or the app did not start within *timeout*.
        """
        with self._lock:
            loop = self._loops[session_id]
        buffer = loop.buffer
        if buffer.launched_at is None:
            return None
        timeout = timeout if timeout is not None else self._config.collection.startup_timeout_seconds
        remaining = buffer.launched_at + timeout - time.time()
        sample = buffer.wait_for(lambda s: s.timestamp >= buffer.launched_at and is_started(s), max(remaining, 0.0))
        if sample is None:
            logger.warning("Session %s: app did not start within %.1fs", session_id, timeout)
            return None
        return sample.timestamp - buffer.launched_at

    def stop(self, session_id: str) -> SessionResult:
        """Stop collection, summarize and export the session."""
        with self._lock:
            loop = self._loops.pop(session_id)

        buffer = loop.stop()
        summary = summarize(buffer, startup_timeout=self._config.collection.startup_timeout_seconds)
        result = SessionResult(session_id=session_id, buffer=buffer, summary=summary, stats=loop.stats)

        for exporter in self._exporters:
            try:
                result.references[exporter.name] = exporter.export(session_id, buffer, summary)
            except Exception:
                logger.exception("Exporter %s failed for session %s", exporter.name, session_id)
        return result

    def stop_all(self) -> list[SessionResult]:
        return [self.stop(session_id) for session_id in self.active_sessions()]
