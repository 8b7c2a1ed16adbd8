"""Summary statistics for a finalized session buffer."""

from __future__ import annotations

import json
import statistics
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from ..collector.base import AppState, MetricSample
from ..collector.buffer import SessionBuffer

STARTUP_TIMEOUT_SECONDS = 30.0

STAT_FIELDS = (
    "cpu_system_percent",
    "cpu_app_percent",
    "memory_system_mb",
    "memory_app_mb",
    "memory_available_mb",
    "battery_level",
    "battery_temperature",
    "fps",
)


@dataclass
class FieldStats:
    """Statistics over the present values of one sample field."""

    count: int = 0
    mean: float | None = None
    min: float | None = None
    max: float | None = None
    p95: float | None = None


@dataclass
class Summary:
    """Derived statistics for one session.

    ``empty`` is the explicit marker for a session without samples; every
    statistic is then absent and every total zero.
    """

    session_id: str
    empty: bool = True
    sample_count: int = 0
    degraded: bool = False
    start_time: float | None = None
    end_time: float | None = None
    duration_seconds: float = 0.0
    stats: dict[str, FieldStats] = field(default_factory=lambda: {name: FieldStats() for name in STAT_FIELDS})
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    network_rx_rate_bps: float | None = None
    network_tx_rate_bps: float | None = None
    battery_drain: int | None = None
    battery_drain_per_hour: float | None = None
    foreground_ratio: float | None = None
    startup_time_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Summary:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and k != "stats"}
        summary = cls(**known)
        for name, values in data.get("stats", {}).items():
            summary.stats[name] = FieldStats(**values)
        return summary


def _percentile(data: list[float], pct: float) -> float:
    sorted_data = sorted(data)
    idx = (pct / 100.0) * (len(sorted_data) - 1)
    low = int(idx)
    high = min(low + 1, len(sorted_data) - 1)
    frac = idx - low
    return sorted_data[low] * (1 - frac) + sorted_data[high] * frac


def field_stats(values: Iterable[float | None]) -> FieldStats:
    """Compute statistics over *values*, skipping absent entries."""
    present = [float(v) for v in values if v is not None]
    if not present:
        return FieldStats()
    return FieldStats(
        count=len(present),
        mean=statistics.fmean(present),
        min=min(present),
        max=max(present),
        p95=_percentile(present, 95),
    )


def startup_time(
    samples: Sequence[MetricSample],
    launched_at: float | None,
    timeout: float = STARTUP_TIMEOUT_SECONDS,
) -> float | None:
    """Seconds from launch to the first foreground sample with app CPU data.

    Returns None when no launch time is known or no such sample appears
    within *timeout* of the launch.
    """
    if launched_at is None:
        return None
    for sample in samples:
        if sample.timestamp < launched_at:
            continue
        elapsed = sample.timestamp - launched_at
        if elapsed > timeout:
            return None
        if is_started(sample):
            return elapsed
    return None


def is_started(sample: MetricSample) -> bool:
    return sample.app_state is AppState.FOREGROUND and sample.cpu_app_percent is not None


def summarize_samples(
    samples: Sequence[MetricSample],
    *,
    session_id: str = "",
    degraded: bool = False,
    launched_at: float | None = None,
    startup_timeout: float = STARTUP_TIMEOUT_SECONDS,
) -> Summary:
    """Compute the summary of an ordered sequence of samples.

    This is a pure function: the same samples and metadata always give an
    equal summary.
    """
    summary = Summary(session_id=session_id, degraded=degraded)
    if not samples:
        return summary

    summary.empty = False
    summary.sample_count = len(samples)
    summary.start_time = samples[0].timestamp
    summary.end_time = samples[-1].timestamp
    summary.duration_seconds = summary.end_time - summary.start_time

    for name in STAT_FIELDS:
        values = (getattr(s, name) for s in samples)
        if name == "fps":
            values = (v for v in values if v is not None and v > 0)
        summary.stats[name] = field_stats(values)

    summary.network_rx_bytes = sum(s.network_rx_bytes for s in samples if s.network_rx_bytes is not None)
    summary.network_tx_bytes = sum(s.network_tx_bytes for s in samples if s.network_tx_bytes is not None)
    if summary.duration_seconds > 0:
        summary.network_rx_rate_bps = summary.network_rx_bytes / summary.duration_seconds
        summary.network_tx_rate_bps = summary.network_tx_bytes / summary.duration_seconds

    levels = [(s.timestamp, s.battery_level) for s in samples if s.battery_level is not None]
    if levels:
        summary.battery_drain = levels[0][1] - levels[-1][1]
        span = levels[-1][0] - levels[0][0]
        if span > 0:
            summary.battery_drain_per_hour = summary.battery_drain * 3600.0 / span

    foreground = sum(1 for s in samples if s.app_state is AppState.FOREGROUND)
    summary.foreground_ratio = foreground / len(samples)
    summary.startup_time_seconds = startup_time(samples, launched_at, startup_timeout)
    return summary


def summarize(buffer: SessionBuffer, *, startup_timeout: float = STARTUP_TIMEOUT_SECONDS) -> Summary:
    """Compute the summary of a sealed session buffer."""
    if not buffer.sealed:
        raise ValueError(f"session {buffer.session_id!r} is still collecting; seal it before summarizing")
    return summarize_samples(
        buffer.samples,
        session_id=buffer.session_id,
        degraded=buffer.degraded,
        launched_at=buffer.launched_at,
        startup_timeout=startup_timeout,
    )


def save_summary(summary: Summary, path: str | Path) -> None:
    """Write summary to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(summary.to_dict(), fh, indent=2)
