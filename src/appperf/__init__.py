"""Performance telemetry collection for app test sessions."""

__version__ = "0.1.0"
