"""Android sampler – samples an app on a device through ``adb shell``.

Every device query goes through :class:`AdbShell`, which bounds each call with
a hard timeout. Output parsing lives in module-level functions so it can be
exercised without a device.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Callable

from ..errors import ProcessNotFoundError, SamplingError
from .base import AppState, BaseSampler, clamp_percent

logger = logging.getLogger(__name__)

_KB_PER_MB = 1024.0


# ---------------------------------------------------------------------------
# adb transport
# ---------------------------------------------------------------------------

class AdbShell:
    """Runs adb commands against one device with a per-call timeout."""

    def __init__(self, serial: str = "", adb_path: str = "adb", timeout: float = 3.0) -> None:
        self._serial = serial
        self._adb_path = adb_path
        self._timeout = timeout

    def _base(self) -> list[str]:
        cmd = [self._adb_path]
        if self._serial:
            cmd += ["-s", self._serial]
        return cmd

    def run(self, *args: str) -> str:
        """Run ``adb <args>`` and return stdout."""
        cmd = self._base() + list(args)
        try:
            result = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise SamplingError(f"adb call timed out after {self._timeout}s: {' '.join(args)}") from exc
        except FileNotFoundError as exc:
            raise SamplingError(f"adb binary not found: {self._adb_path}") from exc
        if result.returncode != 0:
            raise SamplingError(
                f"adb {' '.join(args)} exited with {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    def shell(self, command: str) -> str:
        """Run *command* through ``adb shell``."""
        return self.run("shell", command)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CpuTimes:
    """Aggregate jiffies from the first line of ``/proc/stat``."""

    total: int
    idle: int


def parse_proc_stat(text: str) -> CpuTimes:
    for line in text.splitlines():
        parts = line.split()
        if parts and parts[0] == "cpu":
            values = [int(v) for v in parts[1:]]
            if len(values) < 4:
                break
            idle = values[3] + (values[4] if len(values) > 4 else 0)
            # guest time is already included in user/nice
            return CpuTimes(total=sum(values[:8]), idle=idle)
    raise SamplingError("no aggregate cpu line in /proc/stat")


def parse_pid_stat(text: str) -> int:
    """Return utime + stime jiffies from ``/proc/<pid>/stat``."""
    # the comm field may contain spaces; everything after the last ')' is fixed-width
    _, sep, rest = text.rpartition(")")
    if not sep:
        raise SamplingError("malformed /proc/<pid>/stat")
    fields = rest.split()
    # fields[0] is state (field 3), utime and stime are fields 14 and 15
    try:
        return int(fields[11]) + int(fields[12])
    except (IndexError, ValueError) as exc:
        raise SamplingError("malformed /proc/<pid>/stat") from exc


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse ``/proc/meminfo`` into a mapping of kB values."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0])
    return values


_TOTAL_PSS_RE = re.compile(r"TOTAL PSS:\s+(\d+)")
_TOTAL_ROW_RE = re.compile(r"^\s*TOTAL\s+(\d+)", re.MULTILINE)


def parse_dumpsys_meminfo(text: str) -> int:
    """Return the app's total PSS in kB from ``dumpsys meminfo``."""
    match = _TOTAL_PSS_RE.search(text) or _TOTAL_ROW_RE.search(text)
    if match is None:
        raise SamplingError("no TOTAL row in dumpsys meminfo output")
    return int(match.group(1))


def parse_dumpsys_battery(text: str) -> tuple[int | None, float | None]:
    """Return ``(level, temperature_celsius)`` from ``dumpsys battery``."""
    level: int | None = None
    temperature: float | None = None
    for line in text.splitlines():
        key, sep, value = line.strip().partition(":")
        if not sep:
            continue
        value = value.strip()
        if key == "level" and value.lstrip("-").isdigit():
            level = min(max(int(value), 0), 100)
        elif key == "temperature" and value.lstrip("-").isdigit():
            # reported in tenths of a degree
            temperature = int(value) / 10.0
    return level, temperature


def parse_net_dev(text: str) -> tuple[int, int]:
    """Sum ``(rx_bytes, tx_bytes)`` over all non-loopback interfaces."""
    rx = tx = 0
    seen = False
    for line in text.splitlines():
        iface, sep, rest = line.partition(":")
        if not sep:
            continue
        iface = iface.strip()
        fields = rest.split()
        if iface == "lo" or len(fields) < 9 or not fields[0].isdigit():
            continue
        rx += int(fields[0])
        tx += int(fields[8])
        seen = True
    if not seen:
        raise SamplingError("no interfaces in net/dev output")
    return rx, tx


_FRAMES_RE = re.compile(r"Total frames rendered:\s*(\d+)")


def parse_gfxinfo_frames(text: str) -> int:
    """Return the cumulative frame counter from ``dumpsys gfxinfo``."""
    match = _FRAMES_RE.search(text)
    if match is None:
        raise SamplingError("no frame counter in gfxinfo output")
    return int(match.group(1))


def parse_resumed_package(text: str) -> str | None:
    """Return the package of the resumed activity from ``dumpsys activity``."""
    for line in text.splitlines():
        if "ResumedActivity" not in line:
            continue
        match = re.search(r"\s([\w.]+)/[\w.$]+", line)
        if match:
            return match.group(1)
    return None


# ---------------------------------------------------------------------------
# Sampler
# ---------------------------------------------------------------------------

class AndroidSampler(BaseSampler):
    """Samples an installed Android package identified by *target*.

    CPU percentages and fps are derived from counter differences between two
    ticks, so they are absent on the first sample and after the app restarts.
    """

    def __init__(
        self,
        target: str,
        *,
        shell: AdbShell | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(target, clock=clock)
        self._shell = shell or AdbShell()
        self._prev_cpu: CpuTimes | None = None
        self._prev_app_jiffies: tuple[int, int] | None = None
        self._app_cpu_base: CpuTimes | None = None
        self._prev_frames: tuple[int, float] | None = None

    @property
    def name(self) -> str:
        return "android"

    def _check_source(self) -> None:
        state = self._shell.run("get-state").strip()
        if state != "device":
            raise SamplingError(f"device not ready (state={state or 'unknown'})")

    def _resolve_process(self) -> int:
        try:
            out = self._shell.shell(f"pidof {self._target}")
        except SamplingError as exc:
            # pidof exits non-zero when nothing matches
            raise ProcessNotFoundError(self._target) from exc
        pids = [int(p) for p in out.split() if p.isdigit()]
        if not pids:
            raise ProcessNotFoundError(self._target)
        logger.info("Resolved %s to pid %d", self._target, pids[0])
        return pids[0]

    def _process_alive(self, process: int) -> bool:
        try:
            self._shell.shell(f"test -d /proc/{process}")
        except SamplingError:
            return False
        return True

    def _collect_cpu(self, pid: int | None) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        now = parse_proc_stat(self._shell.shell("cat /proc/stat"))
        prev, self._prev_cpu = self._prev_cpu, now
        if prev is not None and now.total > prev.total:
            busy = (now.total - prev.total) - (now.idle - prev.idle)
            fields["cpu_system_percent"] = clamp_percent(100.0 * busy / (now.total - prev.total))

        if pid is None:
            self._prev_app_jiffies = None
            return fields
        app = parse_pid_stat(self._shell.shell(f"cat /proc/{pid}/stat"))
        prev_app, self._prev_app_jiffies = self._prev_app_jiffies, (pid, app)
        base, self._app_cpu_base = self._app_cpu_base, now
        if (prev_app is not None and prev_app[0] == pid and base is not None
                and now.total > base.total and app >= prev_app[1]):
            fields["cpu_app_percent"] = clamp_percent(100.0 * (app - prev_app[1]) / (now.total - base.total))
        return fields

    def _collect_memory(self, pid: int | None) -> dict[str, Any]:
        info = parse_meminfo(self._shell.shell("cat /proc/meminfo"))
        fields: dict[str, Any] = {}
        total = info.get("MemTotal")
        available = info.get("MemAvailable", info.get("MemFree"))
        if total is not None and available is not None:
            fields["memory_system_mb"] = max(total - available, 0) / _KB_PER_MB
            fields["memory_available_mb"] = available / _KB_PER_MB
        if pid is not None:
            pss = parse_dumpsys_meminfo(self._shell.shell(f"dumpsys meminfo {pid}"))
            fields["memory_app_mb"] = pss / _KB_PER_MB
        return fields

    def _collect_battery(self, pid: int | None) -> dict[str, Any]:
        level, temperature = parse_dumpsys_battery(self._shell.shell("dumpsys battery"))
        fields: dict[str, Any] = {}
        if level is not None:
            fields["battery_level"] = level
        if temperature is not None:
            fields["battery_temperature"] = temperature
        return fields

    def _read_network_counters(self, pid: int) -> tuple[int, int] | None:
        return parse_net_dev(self._shell.shell(f"cat /proc/{pid}/net/dev"))

    def _collect_fps(self, pid: int | None) -> dict[str, Any]:
        if pid is None:
            self._prev_frames = None
            return {}
        frames = parse_gfxinfo_frames(self._shell.shell(f"dumpsys gfxinfo {self._target}"))
        # timestamp of the sample being collected
        now = self._last_timestamp if self._last_timestamp is not None else self._clock()
        prev, self._prev_frames = self._prev_frames, (frames, now)
        if prev is None:
            return {}
        rendered = frames - prev[0]
        elapsed = now - prev[1]
        if rendered <= 0 or elapsed <= 0:
            return {}
        return {"fps": rendered / elapsed}

    def _collect_app_state(self, pid: int | None) -> dict[str, Any]:
        if pid is None:
            return {"app_state": AppState.BACKGROUND}
        out = self._shell.shell("dumpsys activity activities | grep -E 'mResumedActivity|topResumedActivity'")
        package = parse_resumed_package(out)
        state = AppState.FOREGROUND if package == self._target else AppState.BACKGROUND
        return {"app_state": state}

    @property
    def can_launch(self) -> bool:
        return True

    def launch(self) -> float:
        launched_at = time.time()
        self._shell.shell(f"monkey -p {self._target} -c android.intent.category.LAUNCHER 1")
        logger.info("Launched %s", self._target)
        return launched_at
