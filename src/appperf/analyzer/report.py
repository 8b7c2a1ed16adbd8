"""Terminal rendering of session summaries and sample timelines."""

from __future__ import annotations

from typing import Sequence

from rich.console import Console
from rich.table import Table

from ..collector.base import MetricSample
from .summary import Summary

_FIELD_LABELS = {
    "cpu_system_percent": ("CPU system", "%"),
    "cpu_app_percent": ("CPU app", "%"),
    "memory_system_mb": ("Memory system", "MB"),
    "memory_app_mb": ("Memory app", "MB"),
    "memory_available_mb": ("Memory available", "MB"),
    "battery_level": ("Battery level", "%"),
    "battery_temperature": ("Battery temp", "°C"),
    "fps": ("FPS", ""),
}


def _fmt(val: float | None, digits: int = 1) -> str:
    if val is None:
        return "-"
    return f"{val:.{digits}f}"


def _fmt_bytes(val: float | None) -> str:
    if val is None:
        return "-"
    if val >= 1_073_741_824:
        return f"{val / 1_073_741_824:.1f} GB"
    if val >= 1_048_576:
        return f"{val / 1_048_576:.1f} MB"
    return f"{val / 1024:.0f} KB"


def print_summary(summary: Summary, console: Console | None = None) -> None:
    """Pretty-print a session summary."""
    console = console or Console()
    if summary.empty:
        console.print(f"Session [bold]{summary.session_id}[/bold]: no samples collected")
        return

    title = f"Session {summary.session_id}"
    if summary.degraded:
        title += " [red](collection degraded)[/red]"
    table = Table(title=title, show_lines=False)
    table.add_column("Metric", style="green")
    table.add_column("Count", justify="right")
    table.add_column("Mean", justify="right", style="cyan")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("P95", justify="right")

    for name, stats in summary.stats.items():
        label, unit = _FIELD_LABELS.get(name, (name, ""))
        if unit:
            label = f"{label} ({unit})"
        table.add_row(label, str(stats.count), _fmt(stats.mean), _fmt(stats.min), _fmt(stats.max), _fmt(stats.p95))
    console.print(table)

    console.print(f"  Samples:        {summary.sample_count} over {summary.duration_seconds:.1f}s")
    console.print(f"  Network rx/tx:  {_fmt_bytes(summary.network_rx_bytes)} / {_fmt_bytes(summary.network_tx_bytes)}")
    if summary.battery_drain is not None:
        console.print(f"  Battery drain:  {summary.battery_drain}%")
    if summary.foreground_ratio is not None:
        console.print(f"  Foreground:     {summary.foreground_ratio:.0%}")
    console.print(f"  Startup time:   {_fmt(summary.startup_time_seconds, 2)} s")


def print_samples(samples: Sequence[MetricSample], *, max_rows: int = 200, console: Console | None = None) -> None:
    """Pretty-print the sample timeline relative to the first sample."""
    console = console or Console()
    if not samples:
        return
    t0 = samples[0].timestamp

    table = Table(title="Samples", show_lines=False)
    table.add_column("Offset (s)", justify="right", style="cyan")
    table.add_column("State", width=10)
    table.add_column("CPU sys %", justify="right")
    table.add_column("CPU app %", justify="right")
    table.add_column("Mem app MB", justify="right")
    table.add_column("Battery", justify="right")
    table.add_column("Rx", justify="right")
    table.add_column("Tx", justify="right")
    table.add_column("FPS", justify="right")

    for sample in samples[:max_rows]:
        table.add_row(
            f"{sample.timestamp - t0:.1f}",
            sample.app_state.value,
            _fmt(sample.cpu_system_percent),
            _fmt(sample.cpu_app_percent),
            _fmt(sample.memory_app_mb),
            "-" if sample.battery_level is None else str(sample.battery_level),
            _fmt_bytes(sample.network_rx_bytes),
            _fmt_bytes(sample.network_tx_bytes),
            _fmt(sample.fps),
        )

    console.print(table)
    if len(samples) > max_rows:
        console.print(f"  ... ({len(samples) - max_rows} more samples)")
