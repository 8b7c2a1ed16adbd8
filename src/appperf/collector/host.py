"""Host sampler – samples a local process and the host through psutil."""

from __future__ import annotations

import logging
import subprocess
import time
from typing import Any, Callable, Sequence

import psutil

from ..errors import ProcessNotFoundError
from .base import AppState, BaseSampler, clamp_percent

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
_INACTIVE_STATUSES = (psutil.STATUS_STOPPED, psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD)


def find_pids_by_name(process_name: str) -> list[int]:
    """Return a list of PIDs whose process name or cmdline contains *process_name*.

    The match is case-insensitive and checks both ``psutil.Process.name()``
    and the first element of ``cmdline()``.
    """
    pids: list[int] = []
    target = process_name.lower()
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            pname = (proc.info.get("name") or "").lower()
            cmdline = proc.info.get("cmdline") or []
            cmd0 = cmdline[0].lower() if cmdline else ""
            if target in pname or target in cmd0:
                pids.append(proc.info["pid"])
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return pids


class HostSampler(BaseSampler):
    """Samples a process running on this machine.

    *target* is either a PID or a case-insensitive process-name substring;
    when several processes match, the oldest one is tracked. Network counters
    are host-wide since psutil exposes no per-process traffic. There is no
    rendering source on the host, so ``fps`` is always absent.
    """

    def __init__(
        self,
        target: str,
        *,
        launch_command: Sequence[str] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(target, clock=clock)
        self._launch_command = list(launch_command)
        self._launched: subprocess.Popen | None = None
        self._cpu_count = psutil.cpu_count() or 1
        # prime the system-wide counter so the first real reading is meaningful
        psutil.cpu_percent(interval=0)

    @property
    def name(self) -> str:
        return "host"

    @property
    def can_launch(self) -> bool:
        return bool(self._launch_command)

    def _resolve_process(self) -> psutil.Process:
        candidates: list[int]
        if self._target.isdigit():
            candidates = [int(self._target)]
        else:
            candidates = find_pids_by_name(self._target)

        procs: list[psutil.Process] = []
        for pid in candidates:
            try:
                proc = psutil.Process(pid)
                if self._process_alive(proc):
                    procs.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        if not procs:
            raise ProcessNotFoundError(self._target)

        proc = min(procs, key=lambda p: p.create_time())
        # prime cpu_percent so the next call returns a real value
        proc.cpu_percent(interval=0)
        logger.info("Resolved target %r to pid %d", self._target, proc.pid)
        return proc

    def _process_alive(self, process: psutil.Process) -> bool:
        try:
            return process.is_running() and process.status() not in (psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD)
        except psutil.Error:
            return False

    def _app_call(self, fn: Callable[[], Any]) -> Any:
        """Run an app-scoped psutil call; None if the process has gone away."""
        try:
            return fn()
        except psutil.NoSuchProcess:
            logger.debug("Target %r exited mid-sample", self._target)
            self.invalidate_process()
            return None

    def _collect_cpu(self, process: psutil.Process | None) -> dict[str, Any]:
        fields: dict[str, Any] = {"cpu_system_percent": clamp_percent(psutil.cpu_percent(interval=0))}
        if process is not None:
            raw = self._app_call(lambda: process.cpu_percent(interval=0))
            if raw is not None:
                fields["cpu_app_percent"] = clamp_percent(raw / self._cpu_count)
        return fields

    def _collect_memory(self, process: psutil.Process | None) -> dict[str, Any]:
        mem = psutil.virtual_memory()
        fields: dict[str, Any] = {
            "memory_system_mb": (mem.total - mem.available) / _MB,
            "memory_available_mb": mem.available / _MB,
        }
        if process is not None:
            rss = self._app_call(lambda: process.memory_info().rss)
            if rss is not None:
                fields["memory_app_mb"] = rss / _MB
        return fields

    def _collect_battery(self, process: psutil.Process | None) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        sensors_battery = getattr(psutil, "sensors_battery", None)
        battery = sensors_battery() if sensors_battery is not None else None
        if battery is not None:
            fields["battery_level"] = int(round(min(max(battery.percent, 0), 100)))

        sensors_temperatures = getattr(psutil, "sensors_temperatures", None)
        if sensors_temperatures is not None:
            for label, entries in sensors_temperatures().items():
                if "battery" in label.lower() and entries:
                    fields["battery_temperature"] = float(entries[0].current)
                    break
        return fields

    def _read_network_counters(self, process: psutil.Process) -> tuple[int, int] | None:
        counters = psutil.net_io_counters()
        if counters is None:
            return None
        return counters.bytes_recv, counters.bytes_sent

    def _collect_app_state(self, process: psutil.Process | None) -> dict[str, Any]:
        if process is None:
            return {"app_state": AppState.BACKGROUND}
        status = self._app_call(process.status)
        if status is None:
            return {"app_state": AppState.BACKGROUND}
        state = AppState.BACKGROUND if status in _INACTIVE_STATUSES else AppState.FOREGROUND
        return {"app_state": state}

    def launch(self) -> float:
        if not self._launch_command:
            return super().launch()
        launched_at = time.time()
        self._launched = subprocess.Popen(self._launch_command)  # noqa: S603
        logger.info("Launched %s (pid %d)", self._launch_command[0], self._launched.pid)
        return launched_at
