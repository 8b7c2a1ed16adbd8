"""Base interface for session exporters."""

from __future__ import annotations

import abc

from ..analyzer.summary import Summary
from ..collector.buffer import SessionBuffer


class BaseExporter(abc.ABC):
    """Abstract base for exporters that persist a finished session."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Exporter name used in logs and session results."""

    @abc.abstractmethod
    def export(self, session_id: str, buffer: SessionBuffer, summary: Summary) -> str:
        """Persist a sealed buffer and its summary. Returns a retrievable reference."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Flush and release resources."""
