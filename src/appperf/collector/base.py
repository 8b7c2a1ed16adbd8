"""Base interface for per-session telemetry samplers."""

from __future__ import annotations

import abc
import enum
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

from ..errors import ProcessNotFoundError, SamplingError

logger = logging.getLogger(__name__)


class AppState(str, enum.Enum):
    """Visibility of the target app when a sample was taken."""

    FOREGROUND = "foreground"
    BACKGROUND = "background"


@dataclass(frozen=True)
class MetricSample:
    """A single timestamped observation of performance counters.

    Optional fields are ``None`` when the value was unavailable for this tick;
    ``None`` never means zero. Network fields are deltas since the previous
    sample of the same session.
    """

    timestamp: float
    cpu_system_percent: float | None = None
    cpu_app_percent: float | None = None
    memory_system_mb: float | None = None
    memory_app_mb: float | None = None
    memory_available_mb: float | None = None
    battery_level: int | None = None
    battery_temperature: float | None = None
    network_rx_bytes: int | None = None
    network_tx_bytes: int | None = None
    fps: float | None = None
    app_state: AppState = AppState.BACKGROUND

    def __post_init__(self) -> None:
        for name in ("cpu_system_percent", "cpu_app_percent"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 100.0:
                raise ValueError(f"{name} out of range [0, 100]: {value}")
        for name in ("memory_system_mb", "memory_app_mb", "memory_available_mb",
                     "network_rx_bytes", "network_tx_bytes", "fps"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative: {value}")
        if (self.memory_app_mb is not None and self.memory_system_mb is not None
                and self.memory_app_mb > self.memory_system_mb):
            raise ValueError(
                f"memory_app_mb ({self.memory_app_mb}) exceeds memory_system_mb ({self.memory_system_mb})"
            )
        if self.battery_level is not None and not 0 <= self.battery_level <= 100:
            raise ValueError(f"battery_level out of range [0, 100]: {self.battery_level}")
        if not isinstance(self.app_state, AppState):
            object.__setattr__(self, "app_state", AppState(self.app_state))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        record = asdict(self)
        record["app_state"] = self.app_state.value
        return record

    @classmethod
    def from_dict(cls, record: dict[str, Any]) -> MetricSample:
        """Build a sample from a dictionary produced by :meth:`to_dict`."""
        known = {k: v for k, v in record.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class CounterDelta:
    """Turns a cumulative counter into per-interval deltas.

    The first reading and any reading lower than the previous one (counter
    reset or rollover) yield 0.
    """

    def __init__(self) -> None:
        self._previous: int | None = None

    @property
    def previous(self) -> int | None:
        return self._previous

    def update(self, value: int) -> int:
        previous = self._previous
        self._previous = value
        if previous is None or value < previous:
            return 0
        return value - previous

    def reset(self) -> None:
        self._previous = None


def clamp_percent(value: float) -> float:
    return min(max(value, 0.0), 100.0)


class BaseSampler(abc.ABC):
    """Abstract base class for per-session samplers.

    One instance serves one session: it holds the cached process handle and
    the previous network counters for that session only. Each metric family
    is collected independently; a failing family leaves its fields ``None``
    and never fails the whole sample.

    Subclasses implement :meth:`_resolve_process` and the ``_collect_*``
    family methods. App-scoped families receive ``None`` as *process* when
    the target could not be resolved this tick.
    """

    def __init__(self, target: str, clock: Callable[[], float] = time.time) -> None:
        self._target = target
        self._clock = clock
        self._process: Any = None
        self._rx = CounterDelta()
        self._tx = CounterDelta()
        self._last_timestamp: float | None = None
        self.process_resolved = False
        self.family_failures: dict[str, int] = {}

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Sampler name used in configuration and logs."""

    @property
    def target(self) -> str:
        return self._target

    @property
    def can_launch(self) -> bool:
        """Whether ``launch`` can start the target app."""
        return False

    @abc.abstractmethod
    def _resolve_process(self) -> Any:
        """Map the target to a live process handle or raise ProcessNotFoundError."""

    def _process_alive(self, process: Any) -> bool:
        """Return False if a cached handle no longer refers to a live process."""
        return True

    def _check_source(self) -> None:
        """Raise SamplingError if the telemetry source is unreachable."""

    @abc.abstractmethod
    def _collect_cpu(self, process: Any) -> dict[str, Any]:
        """Return ``cpu_system_percent`` / ``cpu_app_percent``."""

    @abc.abstractmethod
    def _collect_memory(self, process: Any) -> dict[str, Any]:
        """Return ``memory_system_mb`` / ``memory_app_mb`` / ``memory_available_mb``."""

    @abc.abstractmethod
    def _collect_battery(self, process: Any) -> dict[str, Any]:
        """Return ``battery_level`` / ``battery_temperature``."""

    @abc.abstractmethod
    def _read_network_counters(self, process: Any) -> tuple[int, int] | None:
        """Return cumulative ``(rx_bytes, tx_bytes)`` or None when unavailable."""

    def _collect_fps(self, process: Any) -> dict[str, Any]:
        return {}

    def _collect_app_state(self, process: Any) -> dict[str, Any]:
        state = AppState.FOREGROUND if process is not None else AppState.BACKGROUND
        return {"app_state": state}

    def launch(self) -> float:
        """Launch the target app and return the wall-clock time the command was issued."""
        raise SamplingError(f"{self.name} sampler cannot launch {self._target!r}")

    def invalidate_process(self) -> None:
        """Drop the cached process handle; it is re-resolved on the next tick."""
        self._process = None

    def _ensure_process(self) -> Any:
        if self._process is not None and not self._process_alive(self._process):
            logger.info("Target %r exited, re-resolving", self._target)
            self._process = None
        if self._process is None:
            try:
                self._process = self._resolve_process()
            except ProcessNotFoundError:
                logger.debug("Target %r not resolved", self._target)
                self.process_resolved = False
                return None
        self.process_resolved = True
        return self._process

    def _collect_network(self, process: Any) -> dict[str, Any]:
        if process is None:
            return {}
        counters = self._read_network_counters(process)
        if counters is None:
            return {}
        rx, tx = counters
        return {"network_rx_bytes": self._rx.update(rx), "network_tx_bytes": self._tx.update(tx)}

    def _collect_family(self, family: str, fn: Callable[[Any], dict[str, Any]], process: Any) -> dict[str, Any]:
        try:
            return fn(process)
        except Exception as exc:
            self.family_failures[family] = self.family_failures.get(family, 0) + 1
            logger.debug("%s sampler: %s family failed: %s", self.name, family, exc)
            return {}

    def _next_timestamp(self) -> float:
        now = self._clock()
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def sample(self) -> MetricSample:
        """Collect one sample of every metric family for the bound target."""
        self._check_source()
        timestamp = self._next_timestamp()
        process = self._ensure_process()

        fields: dict[str, Any] = {}
        families: list[tuple[str, Callable[[Any], dict[str, Any]]]] = [
            ("cpu", self._collect_cpu),
            ("memory", self._collect_memory),
            ("battery", self._collect_battery),
            ("network", self._collect_network),
            ("fps", self._collect_fps),
            ("app_state", self._collect_app_state),
        ]
        for family, fn in families:
            fields.update(self._collect_family(family, fn, process))

        system = fields.get("memory_system_mb")
        app = fields.get("memory_app_mb")
        if system is not None and app is not None and app > system:
            fields["memory_app_mb"] = system
        return MetricSample(timestamp=timestamp, **fields)
