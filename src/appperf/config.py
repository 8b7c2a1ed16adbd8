"""Configuration loading and validation for appperf."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

PLATFORMS = ("host", "android")


@dataclass
class OtelExporterConfig:
    """OpenTelemetry exporter settings."""

    endpoint: str = "http://localhost:4318"
    service_name: str = "appperf"
    headers: dict[str, str] = field(default_factory=dict)
    export_interval_ms: int = 10000


@dataclass
class SamplerConfig:
    """Telemetry source settings."""

    platform: str = "host"
    target: str = ""
    device_serial: str = ""
    adb_path: str = "adb"
    command_timeout_seconds: float = 3.0
    launch_command: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.platform not in PLATFORMS:
            raise ValueError(f"unknown sampler platform {self.platform!r} (expected one of {PLATFORMS})")
        if self.command_timeout_seconds <= 0:
            raise ValueError("command_timeout_seconds must be positive")


@dataclass
class CollectionConfig:
    """Collection loop settings."""

    interval_seconds: float = 1.0
    sample_timeout_seconds: float = 5.0
    max_resolution_failures: int = 5
    max_duration_seconds: float | None = None
    startup_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.sample_timeout_seconds <= 0:
            raise ValueError("sample_timeout_seconds must be positive")
        if self.max_resolution_failures < 1:
            raise ValueError("max_resolution_failures must be at least 1")
        if self.max_duration_seconds is not None and self.max_duration_seconds <= 0:
            raise ValueError("max_duration_seconds must be positive when set")
        if self.startup_timeout_seconds <= 0:
            raise ValueError("startup_timeout_seconds must be positive")


@dataclass
class LocalExporterConfig:
    """Local file exporter settings."""

    enabled: bool = True
    output_dir: str = "./perf_data"


@dataclass
class AppPerfConfig:
    """Top-level appperf configuration."""

    mode: str = "local"
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    local_exporter: LocalExporterConfig = field(default_factory=LocalExporterConfig)
    otel: OtelExporterConfig = field(default_factory=OtelExporterConfig)


def _merge_dict(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *source* into *target*."""
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge_dict(target[key], value)
        else:
            target[key] = value
    return target


def _optional_float(value: str) -> float | None:
    return None if value.strip().lower() in ("", "none", "null") else float(value)


_ENV_MAP: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "APPPERF_MODE": (("mode",), str),
    "APPPERF_SAMPLER_PLATFORM": (("sampler", "platform"), str),
    "APPPERF_SAMPLER_TARGET": (("sampler", "target"), str),
    "APPPERF_DEVICE_SERIAL": (("sampler", "device_serial"), str),
    "APPPERF_ADB_PATH": (("sampler", "adb_path"), str),
    "APPPERF_INTERVAL": (("collection", "interval_seconds"), float),
    "APPPERF_SAMPLE_TIMEOUT": (("collection", "sample_timeout_seconds"), float),
    "APPPERF_MAX_DURATION": (("collection", "max_duration_seconds"), _optional_float),
    "APPPERF_OUTPUT_DIR": (("local_exporter", "output_dir"), str),
    "APPPERF_OTEL_ENDPOINT": (("otel", "endpoint"), str),
    "APPPERF_OTEL_SERVICE_NAME": (("otel", "service_name"), str),
}


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides using the APPPERF_ prefix."""
    for env_key, (path, coerce) in _ENV_MAP.items():
        value = os.environ.get(env_key)
        if value is None:
            continue
        obj = data
        for part in path[:-1]:
            obj = obj.setdefault(part, {})
        obj[path[-1]] = coerce(value)
    return data


def _section(cls: type, data: dict[str, Any]) -> Any:
    return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _dict_to_config(data: dict[str, Any]) -> AppPerfConfig:
    """Convert a raw dictionary to an AppPerfConfig dataclass."""
    return AppPerfConfig(
        mode=data.get("mode", "local"),
        sampler=_section(SamplerConfig, data.get("sampler", {})),
        collection=_section(CollectionConfig, data.get("collection", {})),
        local_exporter=_section(LocalExporterConfig, data.get("local_exporter", {})),
        otel=_section(OtelExporterConfig, data.get("otel", {})),
    )


def load_config(path: str | Path | None = None, overrides: dict[str, Any] | None = None) -> AppPerfConfig:
    """Load configuration from a YAML file with environment overrides.

    Looks for ``appperf.yaml`` in the current directory if *path* is None.
    *overrides* (for example CLI flags) are merged last and win over both the
    file and the environment.
    """
    data: dict[str, Any] = {}
    if path is None:
        path = Path("appperf.yaml")
    else:
        path = Path(path)

    if path.exists():
        with open(path, encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh)
            if isinstance(loaded, dict):
                data = loaded

    data = _apply_env_overrides(data)
    if overrides:
        _merge_dict(data, overrides)
    return _dict_to_config(data)
