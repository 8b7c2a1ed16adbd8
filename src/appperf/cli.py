"""CLI interface for appperf."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time
import uuid
from pathlib import Path
from typing import Any

from . import __version__
from .config import load_config


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    sampler: dict[str, Any] = {}
    collection: dict[str, Any] = {}
    if getattr(args, "platform", None):
        sampler["platform"] = args.platform
    if getattr(args, "serial", None):
        sampler["device_serial"] = args.serial
    if getattr(args, "launch_command", None):
        sampler["launch_command"] = args.launch_command
    if getattr(args, "interval", None) is not None:
        collection["interval_seconds"] = args.interval
    if getattr(args, "duration", None) is not None:
        collection["max_duration_seconds"] = args.duration
    data: dict[str, Any] = {}
    if sampler:
        data["sampler"] = sampler
    if collection:
        data["collection"] = collection
    if getattr(args, "output_dir", None):
        data["local_exporter"] = {"output_dir": args.output_dir}
    return data


def _cmd_collect(args: argparse.Namespace) -> None:
    """Collect telemetry for one session until interrupted or the duration cap."""
    cfg = load_config(args.config, overrides=_overrides(args))

    from .analyzer.report import print_summary
    from .collector.manager import SessionManager
    from .exporter.local import LocalExporter

    exporters = []
    if cfg.local_exporter.enabled:
        exporters.append(LocalExporter(cfg.local_exporter))
    if cfg.mode == "online":
        from .exporter.otel import OtelExporter
        exporters.append(OtelExporter(cfg.otel))

    manager = SessionManager(cfg, exporters)
    session_id = args.session_id or uuid.uuid4().hex[:12]

    stop = False

    def _handle_signal(_sig: int, _frame: object) -> None:
        nonlocal stop
        stop = True

    try:
        buffer = manager.start(session_id, args.target, launch=args.launch)
    except ValueError as exc:
        print(f"appperf: {exc}", file=sys.stderr)
        sys.exit(2)
    previous = {sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    print(
        f"appperf collecting session {session_id} "
        f"(platform={cfg.sampler.platform}, target={buffer.target}, interval={cfg.collection.interval_seconds}s)"
    )
    print("Press Ctrl+C to stop.\n")
    try:
        if args.launch:
            startup = manager.measure_startup(session_id)
            if startup is not None:
                print(f"App started in {startup:.2f}s")
        while not stop and not buffer.sealed:
            time.sleep(0.5)
    finally:
        result = manager.stop(session_id)
        for exp in exporters:
            exp.shutdown()
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print()
    print_summary(result.summary)
    for name, ref in result.references.items():
        print(f"  Exported ({name}): {ref}")


def _cmd_report(args: argparse.Namespace) -> None:
    """Recompute and print the summary of an exported session."""
    cfg = load_config(args.config)

    from .analyzer.parser import load_session
    from .analyzer.report import print_samples, print_summary
    from .analyzer.summary import summarize
    from .exporter.local import performance_payload

    session_dir = Path(args.session_dir)
    buffer = load_session(session_dir)
    summary = summarize(buffer, startup_timeout=cfg.collection.startup_timeout_seconds)

    if args.json:
        json.dump(performance_payload(buffer, summary), sys.stdout, indent=2)
        print()
        return

    print_summary(summary)
    if args.samples:
        print()
        print_samples(buffer.samples)


def _cmd_version(_args: argparse.Namespace) -> None:
    print(f"appperf {__version__}")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the appperf CLI."""
    parser = argparse.ArgumentParser(
        prog="appperf",
        description="Collect app performance telemetry during test sessions",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to appperf.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    # collect
    collect_p = sub.add_parser("collect", help="Collect telemetry for one session")
    collect_p.add_argument("target", nargs="?", default=None, help="PID, process name or Android package")
    collect_p.add_argument("--session-id", default=None, help="Session identifier (random if omitted)")
    collect_p.add_argument("--platform", choices=("host", "android"), default=None, help="Telemetry source")
    collect_p.add_argument("--serial", default=None, help="adb device serial")
    collect_p.add_argument("--interval", type=float, default=None, help="Sampling interval in seconds")
    collect_p.add_argument("--duration", type=float, default=None, help="Maximum session duration in seconds")
    collect_p.add_argument("--output-dir", default=None, help="Directory for exported sessions")
    collect_p.add_argument("--launch", action="store_true", help="Launch the app and measure startup time")
    collect_p.add_argument(
        "--launch-command", nargs=argparse.REMAINDER, default=None,
        help="Command used to launch a host app (rest of the line)",
    )
    collect_p.set_defaults(func=_cmd_collect)

    # report
    report_p = sub.add_parser("report", help="Summarize an exported session")
    report_p.add_argument("session_dir", help="Session directory written by the local exporter")
    report_p.add_argument("--samples", action="store_true", help="Also print every sample")
    report_p.add_argument("--json", action="store_true", help="Print the performance payload as JSON")
    report_p.set_defaults(func=_cmd_report)

    # version
    ver_p = sub.add_parser("version", help="Print version")
    ver_p.set_defaults(func=_cmd_version)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
