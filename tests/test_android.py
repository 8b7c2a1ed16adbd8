"""Tests for the adb-based Android sampler and its output parsers."""

import subprocess

import pytest

from appperf.collector import android
from appperf.collector.android import (
    AdbShell,
    AndroidSampler,
    CpuTimes,
    parse_dumpsys_battery,
    parse_dumpsys_meminfo,
    parse_gfxinfo_frames,
    parse_meminfo,
    parse_net_dev,
    parse_pid_stat,
    parse_proc_stat,
    parse_resumed_package,
)
from appperf.collector.base import AppState
from appperf.errors import SamplingError

PACKAGE = "com.example.app"

PROC_STAT = """cpu  {user} 0 {system} {idle} 0 0 0 0 0 0
cpu0 100 0 50 800 0 0 0 0 0 0
intr 12345
"""

PID_STAT = "4242 (com.example app) S 1 4242 0 0 -1 4194624 100 0 0 0 {utime} {stime} 0 0 20 0 30 0 1000 0 0\n"

MEMINFO = """MemTotal:        3900000 kB
MemFree:          200000 kB
MemAvailable:    1900000 kB
Buffers:           10000 kB
"""

DUMPSYS_MEMINFO_MODERN = """Applications Memory Usage (in Kilobytes):
Uptime: 1234 Realtime: 1234

** MEMINFO in pid 4242 [com.example.app] **
                   Pss  Private  Private  SwapPss      Rss     Heap     Heap     Heap
                 Total    Dirty    Clean    Dirty    Total     Size    Alloc     Free
           TOTAL   153600    90000    20000     1000   200000    40000    30000    10000

 App Summary
           TOTAL PSS:   153600            TOTAL RSS:   200000       TOTAL SWAP PSS:     1000
"""

DUMPSYS_MEMINFO_LEGACY = """** MEMINFO in pid 4242 [com.example.app] **
                   Pss  Private  Private  Swapped     Heap     Heap     Heap
                 Total    Dirty    Clean    Dirty     Size    Alloc     Free
           TOTAL    51200    40000     2000        0    20000    15000     5000
"""

DUMPSYS_BATTERY = """Current Battery Service state:
  AC powered: false
  USB powered: true
  status: 2
  health: 2
  present: true
  level: 87
  scale: 100
  voltage: 4123
  temperature: 312
  technology: Li-ion
"""

NET_DEV = """Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:   {lo} 10 0 0 0 0 0 0 {lo} 10 0 0 0 0 0 0
 wlan0: {rx} 120 0 0 0 0 0 0 {tx} 80 0 0 0 0 0 0
rmnet0: 1000 5 0 0 0 0 0 0 500 3 0 0 0 0 0 0
"""

GFXINFO = """Applications Graphics Acceleration Info:
** Graphics info for pid 4242 [com.example.app] **

Stats since: 123456789ns
Total frames rendered: {frames}
Janky frames: 12 (2.00%)
"""

RESUMED = "    mResumedActivity: ActivityRecord{1a2b3c u0 com.example.app/.MainActivity t42}\n"


class FakeShell:
    """Answers adb commands from a table of callables or strings."""

    def __init__(self, state="device"):
        self.state = state
        self.responses = {}
        self.commands = []

    def run(self, *args):
        if args == ("get-state",):
            if self.state is None:
                raise SamplingError("adb get-state exited with 1")
            return self.state + "\n"
        raise AssertionError(f"unexpected adb call {args}")

    def shell(self, command):
        self.commands.append(command)
        for prefix, response in self.responses.items():
            if command.startswith(prefix):
                value = response() if callable(response) else response
                if isinstance(value, Exception):
                    raise value
                return value
        raise SamplingError(f"{command}: exited with 1")


def _device(pid="4242"):
    shell = FakeShell()
    state = {"user": 1000, "system": 500, "idle": 8500, "utime": 100, "stime": 50,
             "rx": 10_000, "tx": 4_000, "frames": 600}
    shell.responses = {
        "pidof": lambda: f"{pid}\n" if pid else SamplingError("pidof exited with 1"),
        "test -d": "",
        "cat /proc/stat": lambda: PROC_STAT.format(**state),
        f"cat /proc/{pid}/stat": lambda: PID_STAT.format(**state),
        "cat /proc/meminfo": MEMINFO,
        "dumpsys meminfo": DUMPSYS_MEMINFO_MODERN,
        "dumpsys battery": DUMPSYS_BATTERY,
        f"cat /proc/{pid}/net/dev": lambda: NET_DEV.format(lo=999, **state),
        "dumpsys gfxinfo": lambda: GFXINFO.format(**state),
        "dumpsys activity": RESUMED,
        "monkey": "Events injected: 1\n",
    }
    return shell, state


def _clock(start=1000.0, step=1.0):
    now = [start - step]

    def tick():
        now[0] += step
        return now[0]

    return tick


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

def test_parse_proc_stat():
    times = parse_proc_stat(PROC_STAT.format(user=1000, system=500, idle=8500))
    assert times == CpuTimes(total=10000, idle=8500)


def test_parse_proc_stat_missing_line():
    with pytest.raises(SamplingError):
        parse_proc_stat("intr 1 2 3\n")


def test_parse_pid_stat_handles_spaces_in_comm():
    assert parse_pid_stat(PID_STAT.format(utime=120, stime=30)) == 150


def test_parse_pid_stat_malformed():
    with pytest.raises(SamplingError):
        parse_pid_stat("garbage")


def test_parse_meminfo():
    info = parse_meminfo(MEMINFO)
    assert info["MemTotal"] == 3900000
    assert info["MemAvailable"] == 1900000


def test_parse_dumpsys_meminfo_formats():
    assert parse_dumpsys_meminfo(DUMPSYS_MEMINFO_MODERN) == 153600
    assert parse_dumpsys_meminfo(DUMPSYS_MEMINFO_LEGACY) == 51200
    with pytest.raises(SamplingError):
        parse_dumpsys_meminfo("No process found for: 4242\n")


def test_parse_dumpsys_battery():
    assert parse_dumpsys_battery(DUMPSYS_BATTERY) == (87, 31.2)
    assert parse_dumpsys_battery("") == (None, None)


def test_parse_net_dev_skips_loopback():
    assert parse_net_dev(NET_DEV.format(lo=5, rx=2000, tx=700)) == (3000, 1200)
    with pytest.raises(SamplingError):
        parse_net_dev("Inter-|\n face |\n    lo: 1 1 0 0 0 0 0 0 1 1 0 0 0 0 0 0\n")


def test_parse_gfxinfo_frames():
    assert parse_gfxinfo_frames(GFXINFO.format(frames=4321)) == 4321
    with pytest.raises(SamplingError):
        parse_gfxinfo_frames("No process found\n")


def test_parse_resumed_package():
    assert parse_resumed_package(RESUMED) == PACKAGE
    modern = "  topResumedActivity=ActivityRecord{99 u0 org.other/org.other.Home t3}\n"
    assert parse_resumed_package(modern) == "org.other"
    assert parse_resumed_package("") is None


# ---------------------------------------------------------------------------
# AdbShell
# ---------------------------------------------------------------------------

def test_adb_shell_timeout_raises_sampling_error(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(android.subprocess, "run", fake_run)
    with pytest.raises(SamplingError):
        AdbShell(serial="emulator-5554", timeout=0.5).shell("dumpsys battery")


def test_adb_shell_builds_command(monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(cmd, 0, stdout="ok\n", stderr="")

    monkeypatch.setattr(android.subprocess, "run", fake_run)
    out = AdbShell(serial="emulator-5554", adb_path="/opt/adb", timeout=2.0).shell("cat /proc/stat")
    assert out == "ok\n"
    assert seen["cmd"] == ["/opt/adb", "-s", "emulator-5554", "shell", "cat /proc/stat"]
    assert seen["timeout"] == 2.0


def test_adb_shell_nonzero_exit(monkeypatch):
    monkeypatch.setattr(
        android.subprocess, "run",
        lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, stdout="", stderr="error: no devices"),
    )
    with pytest.raises(SamplingError):
        AdbShell().run("get-state")


def test_adb_shell_missing_binary(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(android.subprocess, "run", fake_run)
    with pytest.raises(SamplingError):
        AdbShell(adb_path="/nonexistent/adb").run("get-state")


# ---------------------------------------------------------------------------
# AndroidSampler
# ---------------------------------------------------------------------------

class TestAndroidSampler:
    def test_first_sample(self):
        shell, _ = _device()
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        sample = sampler.sample()

        assert sampler.process_resolved
        # rate-based values need two readings
        assert sample.cpu_system_percent is None
        assert sample.cpu_app_percent is None
        assert sample.fps is None
        assert sample.network_rx_bytes == 0
        assert sample.network_tx_bytes == 0
        assert sample.memory_system_mb == pytest.approx((3900000 - 1900000) / 1024)
        assert sample.memory_available_mb == pytest.approx(1900000 / 1024)
        assert sample.memory_app_mb == pytest.approx(150.0)
        assert sample.battery_level == 87
        assert sample.battery_temperature == pytest.approx(31.2)
        assert sample.app_state is AppState.FOREGROUND

    def test_second_sample_derives_rates(self):
        shell, state = _device()
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock(step=2.0))
        sampler.sample()
        state.update(user=1300, system=600, idle=9100, utime=150, stime=70,
                     rx=12_500, tx=4_400, frames=720)
        sample = sampler.sample()

        # 1000 jiffies elapsed, 600 idle
        assert sample.cpu_system_percent == pytest.approx(40.0)
        # 70 app jiffies out of 1000
        assert sample.cpu_app_percent == pytest.approx(7.0)
        assert sample.network_rx_bytes == 2500
        assert sample.network_tx_bytes == 400
        assert sample.fps == pytest.approx(60.0)

    def test_no_new_frames_means_no_fps(self):
        shell, state = _device()
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        sampler.sample()
        assert sampler.sample().fps is None

    def test_app_not_running(self):
        shell, _ = _device(pid="")
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        sample = sampler.sample()
        assert sampler.process_resolved is False
        assert sample.memory_app_mb is None
        assert sample.network_rx_bytes is None
        assert sample.memory_system_mb is not None
        assert sample.battery_level == 87
        assert sample.app_state is AppState.BACKGROUND

    def test_background_when_other_activity_resumed(self):
        shell, _ = _device()
        shell.responses["dumpsys activity"] = "  mResumedActivity: ActivityRecord{1 u0 com.android.launcher/.Home t1}\n"
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        assert sampler.sample().app_state is AppState.BACKGROUND

    def test_failed_family_is_isolated(self):
        shell, _ = _device()
        shell.responses["dumpsys battery"] = SamplingError("timed out")
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        sample = sampler.sample()
        assert sample.battery_level is None
        assert sample.memory_app_mb == pytest.approx(150.0)
        assert sampler.family_failures["battery"] == 1

    def test_device_offline_fails_whole_sample(self):
        shell, _ = _device()
        shell.state = "offline"
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        with pytest.raises(SamplingError):
            sampler.sample()

    def test_dead_process_is_re_resolved(self):
        shell, _ = _device()
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        sampler.sample()
        shell.responses["test -d"] = SamplingError("exited with 1")
        shell.responses["pidof"] = SamplingError("exited with 1")
        sample = sampler.sample()
        assert sampler.process_resolved is False
        assert sample.memory_app_mb is None

    def test_launch(self):
        shell, _ = _device()
        sampler = AndroidSampler(PACKAGE, shell=shell, clock=_clock())
        assert sampler.launch() > 0
        assert any(cmd.startswith(f"monkey -p {PACKAGE}") for cmd in shell.commands)
