"""Parse sessions written by the local exporter."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ..collector.base import MetricSample
from ..collector.buffer import SessionBuffer
from ..exporter.local import METRICS_FILE, SESSION_FILE, SUMMARY_FILE
from .summary import Summary

logger = logging.getLogger(__name__)


def parse_metrics_file(path: str | Path) -> list[MetricSample]:
    """Parse a ``metrics.jsonl`` file into samples, in file order.

    Blank and malformed lines are skipped with a warning.
    """
    samples: list[MetricSample] = []
    path = Path(path)
    if not path.exists():
        logger.warning("Metrics file not found: %s", path)
        return samples

    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                samples.append(MetricSample.from_dict(json.loads(line)))
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.warning("Skipping %s:%d: %s", path, lineno, exc)
    return samples


def load_session(session_dir: str | Path) -> SessionBuffer:
    """Rebuild the sealed buffer of an exported session."""
    session_dir = Path(session_dir)
    if not session_dir.is_dir():
        raise FileNotFoundError(f"session directory does not exist: {session_dir}")

    metadata: dict = {"session_id": session_dir.name}
    meta_path = session_dir / SESSION_FILE
    if meta_path.exists():
        with open(meta_path, encoding="utf-8") as fh:
            metadata.update(json.load(fh))

    samples = parse_metrics_file(session_dir / METRICS_FILE)
    return SessionBuffer.restore(metadata, samples)


def load_summary(session_dir: str | Path) -> Summary | None:
    """Read the stored summary of an exported session, if any."""
    path = Path(session_dir) / SUMMARY_FILE
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as fh:
        return Summary.from_dict(json.load(fh))


def list_sessions(output_dir: str | Path) -> list[Path]:
    """Return exported session directories under *output_dir*, sorted by name."""
    output_dir = Path(output_dir)
    if not output_dir.exists():
        logger.warning("Output directory does not exist: %s", output_dir)
        return []
    return sorted(p for p in output_dir.iterdir() if (p / METRICS_FILE).exists())
