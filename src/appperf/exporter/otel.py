"""OpenTelemetry exporter – pushes session summaries via OTLP/HTTP."""

from __future__ import annotations

import logging
from typing import Any

from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource, SERVICE_NAME

from ..analyzer.summary import Summary
from ..collector.buffer import SessionBuffer
from ..config import OtelExporterConfig
from .base import BaseExporter

logger = logging.getLogger(__name__)

_UNITS = {
    "cpu_system_percent": "%",
    "cpu_app_percent": "%",
    "memory_system_mb": "MiB",
    "memory_app_mb": "MiB",
    "memory_available_mb": "MiB",
    "battery_level": "%",
    "battery_temperature": "Cel",
    "fps": "1/s",
}


class OtelExporter(BaseExporter):
    """Exports session summary statistics to an OpenTelemetry endpoint.

    Each exported session records gauge observations tagged with
    ``session.id``; the SDK's ``PeriodicExportingMetricReader`` flushes them
    to the configured OTLP/HTTP endpoint.
    """

    def __init__(self, config: OtelExporterConfig) -> None:
        self._config = config
        resource = Resource.create({SERVICE_NAME: config.service_name})

        self._endpoint = f"{config.endpoint.rstrip('/')}/v1/metrics"
        exporter_kwargs: dict[str, Any] = {"endpoint": self._endpoint}
        if config.headers:
            exporter_kwargs["headers"] = config.headers

        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(**exporter_kwargs),
            export_interval_millis=config.export_interval_ms,
        )
        self._provider = MeterProvider(resource=resource, metric_readers=[reader])
        self._meter = self._provider.get_meter("appperf.sessions")
        self._gauges: dict[str, Any] = {}

        logger.info(
            "OtelExporter initialized → %s (service=%s)",
            config.endpoint,
            config.service_name,
        )

    @property
    def name(self) -> str:
        return "otel"

    def _get_gauge(self, name: str, unit: str, description: str) -> Any:
        if name not in self._gauges:
            self._gauges[name] = self._meter.create_gauge(
                name=name,
                unit=unit,
                description=description,
            )
        return self._gauges[name]

    def _set(self, name: str, value: float | None, unit: str, description: str, attrs: dict[str, Any]) -> None:
        if value is None:
            return
        self._get_gauge(name, unit, description).set(value, attributes=attrs)

    def export(self, session_id: str, buffer: SessionBuffer, summary: Summary) -> str:
        attrs = {"session.id": session_id, "session.degraded": summary.degraded}
        self._set("appperf.session.samples", summary.sample_count, "1", "Samples collected", attrs)
        self._set("appperf.session.duration", summary.duration_seconds, "s", "Session duration", attrs)
        for field_name, stats in summary.stats.items():
            unit = _UNITS.get(field_name, "1")
            for stat in ("mean", "min", "max"):
                self._set(
                    f"appperf.{field_name}.{stat}",
                    getattr(stats, stat),
                    unit,
                    f"{stat} of {field_name} over the session",
                    attrs,
                )
        self._set("appperf.network.rx_bytes", summary.network_rx_bytes, "By", "Bytes received", attrs)
        self._set("appperf.network.tx_bytes", summary.network_tx_bytes, "By", "Bytes sent", attrs)
        self._set("appperf.battery.drain", summary.battery_drain, "%", "Battery level drained", attrs)
        self._set("appperf.startup.time", summary.startup_time_seconds, "s", "App startup time", attrs)
        self._provider.force_flush()
        return f"{self._endpoint}#session={session_id}"

    def shutdown(self) -> None:
        self._provider.shutdown()
        logger.info("OtelExporter shut down")
