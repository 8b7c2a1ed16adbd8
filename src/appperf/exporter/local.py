"""Local file exporter – writes each session to its own directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..analyzer.summary import Summary, save_summary
from ..collector.buffer import SessionBuffer
from ..config import LocalExporterConfig
from .base import BaseExporter

logger = logging.getLogger(__name__)

METRICS_FILE = "metrics.jsonl"
SESSION_FILE = "session.json"
SUMMARY_FILE = "summary.json"


def performance_payload(buffer: SessionBuffer, summary: Summary) -> dict[str, Any]:
    """Build the ``GET /execution/{id}/performance`` response body."""
    return {
        "session_id": buffer.session_id,
        "metrics": [s.to_dict() for s in buffer.samples],
        "summary": summary.to_dict(),
    }


class LocalExporter(BaseExporter):
    """Writes sessions to JSON files on disk.

    Layout under the configured *output_dir*::

        <session_id>/metrics.jsonl   one sample per line, in order
        <session_id>/session.json    session metadata
        <session_id>/summary.json    summary record
    """

    def __init__(self, config: LocalExporterConfig) -> None:
        self._config = config
        self._output_dir = Path(config.output_dir)
        self._output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("LocalExporter initialized → %s", self._output_dir)

    @property
    def name(self) -> str:
        return "local"

    def export(self, session_id: str, buffer: SessionBuffer, summary: Summary) -> str:
        if not buffer.sealed:
            raise ValueError(f"session {session_id!r} must be sealed before export")
        session_dir = self._output_dir / session_id
        session_dir.mkdir(parents=True, exist_ok=True)

        with open(session_dir / METRICS_FILE, "w", encoding="utf-8") as fh:
            for sample in buffer.samples:
                fh.write(json.dumps(sample.to_dict()) + "\n")
        with open(session_dir / SESSION_FILE, "w", encoding="utf-8") as fh:
            json.dump(buffer.metadata(), fh, indent=2)
        save_summary(summary, session_dir / SUMMARY_FILE)

        logger.info("Session %s exported to %s (%d samples)", session_id, session_dir, len(buffer))
        return str(session_dir)

    def shutdown(self) -> None:
        logger.info("LocalExporter shut down")
