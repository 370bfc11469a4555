"""CLI entrypoints for streaming, export, process queries, diagnostics, and replay."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path

from hoststream_core import (
    ApiClient,
    DiagnosticsExporter,
    ReplayRunner,
    build_doctor_payload,
    default_export_dir,
    load_config,
    write_csv,
)
from hoststream_core.collaborators import PROCESS_KINDS, UNAVAILABLE_KINDS
from hoststream_core.logging_setup import configure_logging, install_crash_hooks

from .session import MonitorSession


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _api_client(cfg) -> ApiClient:
    return ApiClient(cfg.server.api_url, timeout_s=cfg.processes.timeout_s)


def cmd_run(args: argparse.Namespace) -> int:
    cfg = load_config()
    session = MonitorSession(cfg, local=args.local)
    if not args.local:
        banner = session.version_banner()
        if banner:
            print(banner)
    session.run(seconds=args.seconds)
    if args.diagnostics_dir:
        bundle = session.export_diagnostics(Path(args.diagnostics_dir).expanduser().resolve())
        _print_json({"diagnostics_bundle": str(bundle)})
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    cfg = load_config()
    session = MonitorSession(cfg, local=args.local, quiet=True)
    store = session.run(seconds=args.seconds)

    out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else default_export_dir(cfg)
    path = write_csv(store.history(), out_dir)
    payload = {
        "path": (str(path) if path else None),
        "rows": len(store.history()),
        "last_error": session.manager.last_error,
    }
    if args.diagnostics_dir:
        payload["diagnostics_bundle"] = str(session.export_diagnostics(Path(args.diagnostics_dir).expanduser().resolve()))
    _print_json(payload)
    return 0 if path else 1


def cmd_processes(args: argparse.Namespace) -> int:
    cfg = load_config()
    limit = args.limit if args.limit is not None else cfg.processes.limit
    result = _api_client(cfg).fetch_processes(args.kind, limit=limit)
    _print_json(asdict(result))
    return 0 if result.error is None else 1


def cmd_info(_args: argparse.Namespace) -> int:
    cfg = load_config()
    version = _api_client(cfg).fetch_info()
    if not version:
        return 1
    _print_json({"version": version})
    return 0


def cmd_doctor(args: argparse.Namespace) -> int:
    cfg = load_config()
    payload = build_doctor_payload(cfg, _api_client(cfg))

    if args.export:
        exporter = DiagnosticsExporter()
        out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else None
        bundle = exporter.bundle(cfg=cfg, doctor_payload=payload, recent_connection_events=[], output_dir=out_dir)
        payload["diagnostics_bundle"] = str(bundle)

    _print_json(payload)
    return 0


def cmd_replay(args: argparse.Namespace) -> int:
    runner = ReplayRunner()
    report = runner.run(Path(args.transcript), strict=not args.no_strict)
    payload = asdict(report)
    payload["success"] = len(report.errors) == 0

    if args.export_dir:
        path = write_csv(runner.store.history(), Path(args.export_dir).expanduser().resolve())
        payload["csv_path"] = str(path) if path else None

    _print_json(payload)
    return 0 if not report.errors else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hoststream", description="Host telemetry stream client and tools")
    sub = parser.add_subparsers(dest="command", required=True)

    run_cmd = sub.add_parser("run", help="Stream telemetry and print a live summary with alerts")
    run_cmd.add_argument("--local", action="store_true", help="Use this host as the frame source instead of the backend")
    run_cmd.add_argument("--seconds", type=float, default=None, help="Stop after this many seconds")
    run_cmd.add_argument("--diagnostics-dir", default=None, help="Write a diagnostics bundle with this session's events and history on exit")
    run_cmd.set_defaults(func=cmd_run)

    export_cmd = sub.add_parser("export", help="Collect the rolling window and write it as CSV")
    export_cmd.add_argument("--local", action="store_true", help="Use this host as the frame source instead of the backend")
    export_cmd.add_argument("--seconds", type=float, default=60.0)
    export_cmd.add_argument("--out-dir", default=None, help="Directory for the CSV file")
    export_cmd.add_argument("--diagnostics-dir", default=None, help="Also write a diagnostics bundle for this session")
    export_cmd.set_defaults(func=cmd_export)

    proc_cmd = sub.add_parser("processes", help="Top processes for one resource kind")
    proc_cmd.add_argument("--kind", required=True, choices=[*PROCESS_KINDS, *UNAVAILABLE_KINDS])
    proc_cmd.add_argument("--limit", type=int, default=None)
    proc_cmd.set_defaults(func=cmd_processes)

    info_cmd = sub.add_parser("info", help="Print the backend version")
    info_cmd.set_defaults(func=cmd_info)

    doctor_cmd = sub.add_parser("doctor", help="Print diagnostics and backend reachability")
    doctor_cmd.add_argument("--export", action="store_true", help="Export offline diagnostics bundle")
    doctor_cmd.add_argument("--out-dir", default=None, help="Optional output directory for diagnostics bundle")
    doctor_cmd.set_defaults(func=cmd_doctor)

    replay_cmd = sub.add_parser("replay", help="Replay a captured JSON-lines frame transcript")
    replay_cmd.add_argument("--transcript", required=True, help="Path to JSONL transcript")
    replay_cmd.add_argument("--no-strict", action="store_true", help="Do not report malformed or out-of-order frames as errors")
    replay_cmd.add_argument("--export-dir", default=None, help="Write the replayed window as CSV here")
    replay_cmd.set_defaults(func=cmd_replay)

    return parser


def main(argv: list[str] | None = None) -> int:
    cfg = load_config()
    configure_logging(keep_files=cfg.diagnostics.keep_log_files, console=False)
    install_crash_hooks()
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
