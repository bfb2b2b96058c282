"""
Command-line entry point for the media offload service.
"""

from __future__ import annotations

import argparse
import faulthandler
import json
import logging
import os
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from api import SweepApiServer, SweepService, build_service
from batch import SWEEP_KINDS, SweepError
from config import AppConfig, ensure_directories
from database import DatabaseManager
from discovery import UploadScanner
from orchestrator import ClientOrchestrator, HttpTransport, LocalTransport
from storage import build_storage
from utils import InstanceLockError, acquire_instance_lock, setup_logging


def build_db_paths(config: AppConfig) -> dict[str, Path]:
    """Resolve database file paths from configuration."""
    return {
        "registry": config.resolve_path("databases", "registry", default="data/registry.sqlite"),
        "state": config.resolve_path("databases", "state", default="data/state.sqlite"),
    }


def _enable_crash_diagnostics(logs_dir: Path) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)
    crash_log = logs_dir / f"crash_traceback_{datetime.utcnow().strftime('%Y%m%d')}.log"
    crash_stream = crash_log.open("a", encoding="utf-8")
    faulthandler.enable(file=crash_stream, all_threads=True)

    def _hook(exc_type, exc, tb):
        with crash_log.open("a", encoding="utf-8") as handle:
            handle.write("\n")
            handle.write(datetime.utcnow().isoformat() + " Unhandled exception\n")
            traceback.print_exception(exc_type, exc, tb, file=handle)
        sys.__excepthook__(exc_type, exc, tb)

    sys.excepthook = _hook

    def _thread_hook(args):
        _hook(args.exc_type, args.exc_value, args.exc_traceback)

    threading.excepthook = _thread_hook


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Offload media attachments to object storage.")
    parser.add_argument("--config", default=None, help="Optional config path override")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the sweep HTTP API")
    serve.add_argument("--host", default=None, help="Override API host")
    serve.add_argument("--port", type=int, default=None, help="Override API port")

    drive = commands.add_parser("drive", help="Start (or re-attach to) a sweep and drive it to completion")
    drive.add_argument("kind", choices=SWEEP_KINDS)
    drive.add_argument("--mode", default=None, help="cloudsync: sync|integrity|full; reconciliation: mark_found")
    drive.add_argument("--batch-size", type=int, default=None)
    drive.add_argument("--remove-local", action="store_true", help="Delete local copies after upload")
    drive.add_argument("--auto-fix", action="store_true", help="Repair integrity issues instead of reporting")
    drive.add_argument("--resume", action="store_true", help="Resume an existing paused or running sweep")
    drive.add_argument("--url", default=None, help="Drive a remote API server instead of running in-process")

    commands.add_parser("register", help="Register files from the uploads directory")

    analyze = commands.add_parser("analyze", help="Show sync status")
    analyze.add_argument("--deep", action="store_true", help="Scan the remote listing for exact numbers")

    discrepancies = commands.add_parser("discrepancies", help="List registry/remote mismatches")
    discrepancies.add_argument("--limit", type=int, default=100)

    status = commands.add_parser("status", help="Show sweep state")
    status.add_argument("kind", nargs="?", choices=SWEEP_KINDS)

    retry = commands.add_parser("retry", help="Retry queued failures for a sweep kind")
    retry.add_argument("kind", choices=SWEEP_KINDS)

    clear = commands.add_parser("clear-metadata", help="Forget every recorded upload")
    clear.add_argument("--yes", action="store_true", help="Confirm the reset")
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _drive(args: argparse.Namespace, config: AppConfig, service: Optional[SweepService], logger: logging.Logger) -> int:
    options: dict[str, Any] = {}
    if args.mode:
        options["mode"] = args.mode
    if args.batch_size:
        options["batch_size"] = args.batch_size
    if args.remove_local:
        options["remove_local"] = True
    if args.auto_fix:
        options["auto_fix"] = True

    if args.url:
        transport = HttpTransport(args.url, token=config.get_secret("api", "token"))
    else:
        transport = LocalTransport(service)

    def on_batch(response: dict) -> None:
        state = response.get("state", {})
        logger.info(
            "%s: %s/%s processed, %s failed, %s skipped",
            args.kind,
            state.get("processed"),
            state.get("total"),
            state.get("failed"),
            state.get("skipped"),
        )

    errors: list[Exception] = []
    orchestrator = ClientOrchestrator(
        transport,
        args.kind,
        interval_seconds=float(config.get("client", "interval_seconds", default=2.0)),
        max_retries=int(config.get("client", "max_retries", default=2)),
        retry_delay_seconds=float(config.get("client", "retry_delay_seconds", default=1.0)),
        on_batch=on_batch,
        on_complete=lambda response: _print_json(response.get("stats") or response.get("state")),
        on_error=errors.append,
        logger=logger,
    )
    try:
        if args.resume:
            response = orchestrator.resume()
        elif orchestrator.attach():
            response = {"success": True}
        else:
            response = orchestrator.start(options)
        if not response.get("success"):
            _print_json(response)
            return 1
        while not orchestrator.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted; pausing %s sweep", args.kind)
        orchestrator.pause()
        return 130
    finally:
        transport.close()
    return 1 if errors else 0


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    config = AppConfig.load(Path(args.config) if args.config else None)
    logs_dir = config.resolve_path("paths", "logs", default="logs")
    loggers = setup_logging(logs_dir, level=logging.DEBUG if args.verbose else logging.INFO)
    logger = loggers["main"]
    _enable_crash_diagnostics(logs_dir)
    ensure_directories([config.resolve_path("paths", "uploads", default="uploads")])

    db_manager = DatabaseManager(build_db_paths(config))
    db_manager.initialize()
    lock = None
    try:
        if args.command == "register":
            stats = UploadScanner(config, db_manager, logger=logger).scan()
            _print_json(stats.__dict__)
            return 0

        if args.command == "drive" and args.url:
            return _drive(args, config, None, logger)

        try:
            storage = build_storage(config, logger=logger)
        except SweepError as exc:
            logger.error("Storage is not usable: %s", exc)
            return 2
        service = build_service(config, db_manager, storage, logger=logger)

        if args.command == "serve":
            if os.environ.get("MEDIA_OFFLOAD_ALLOW_MULTI_INSTANCE") != "1":
                try:
                    lock = acquire_instance_lock(
                        config.resolve_path("paths", "lock_file", default="data/media_offload.lock")
                    )
                except InstanceLockError as exc:
                    logger.error("%s Set MEDIA_OFFLOAD_ALLOW_MULTI_INSTANCE=1 to override.", exc)
                    return 2
            server = SweepApiServer(
                service,
                host=args.host or str(config.get("api", "host", default="127.0.0.1")),
                port=args.port or int(config.get("api", "port", default=8765)),
                token=config.get_secret("api", "token"),
                logger=logger,
            )
            try:
                server.serve_forever()
            except KeyboardInterrupt:
                logger.info("Stopping API server.")
            return 0
        if args.command == "drive":
            return _drive(args, config, service, logger)
        if args.command == "analyze":
            response = service.analyze(deep=args.deep)
        elif args.command == "discrepancies":
            response = service.discrepancies(limit=args.limit)
        elif args.command == "status":
            kinds = [args.kind] if args.kind else list(SWEEP_KINDS)
            response = {kind: service.get_status(kind) for kind in kinds}
            _print_json(response)
            return 0
        elif args.command == "retry":
            response = service.retry_failed(args.kind)
        elif args.command == "clear-metadata":
            if not args.yes:
                logger.error("Refusing to clear migration metadata without --yes")
                return 2
            response = service.clear_metadata()
        else:
            return 2
        _print_json(response)
        return 0 if response.get("success") else 1
    finally:
        if lock is not None:
            lock.release()
        db_manager.close()


if __name__ == "__main__":
    raise SystemExit(main())
