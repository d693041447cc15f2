"""Command line trigger for LetterBase sheet synchronisation."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time

from letterbase.auto_sync import AutoSyncController
from letterbase.logging_config import configure_logging
from letterbase.sheets_gateway import SheetsGatewayError
from letterbase.sync_service import SyncError, SyncService


def command_export(args: argparse.Namespace) -> int:
    try:
        result = SyncService().export()
    except (SyncError, SheetsGatewayError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Updated rows : {len(result.updated)}")
    print(f"Appended rows: {len(result.appended)}")
    if result.first_new_row is not None:
        print(f"New rows     : {result.first_new_row}-{result.last_row}")
    return 0


def command_import(args: argparse.Namespace) -> int:
    try:
        result = SyncService().import_()
    except (SyncError, SheetsGatewayError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Imported rows: {result.imported}")
    if result.created_owner_ids:
        print(f"New owners   : {len(result.created_owner_ids)}")
    if result.conflict_message:
        print(result.conflict_message)
    return 0


def command_cycle(args: argparse.Namespace) -> int:
    try:
        outcome = SyncService().cycle()
    except (SyncError, SheetsGatewayError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Exported rows: {outcome.exported.rows_affected}")
    print(f"Imported rows: {outcome.imported.imported}")
    if outcome.imported.conflict_message:
        print(outcome.imported.conflict_message)
    return 0


def command_status(args: argparse.Namespace) -> int:
    status = SyncService().status(args.limit)
    if args.json:
        print(json.dumps(status, ensure_ascii=False, indent=2))
        return 0

    runs = status["runs"]
    if not runs:
        print("No sync runs recorded.")
    for run in runs:
        line = f"{run['started_at']}  {run['direction']:<11} {run['status']:<11} rows={run['rows_affected']}"
        if run["error"]:
            line += f"  {run['error']}"
        print(line)
    for conflict in status["conflicts"]:
        fields = ", ".join(sorted(conflict.get("fields", {})))
        print(f"Conflict: row {conflict.get('row')} letter {conflict.get('letter_id')} ({fields})")
    return 0


def command_watch(args: argparse.Namespace) -> int:
    service = SyncService()
    try:
        controller = AutoSyncController(service, interval_seconds=args.interval)
    except (SyncError, SheetsGatewayError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.once:
        return 0 if controller.trigger_now() else 1

    controller.start()
    print("Watching for changes. Press Ctrl+C to stop.")
    try:
        while controller.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        controller.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LetterBase Google Sheets synchronisation tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Push changed letters to the worksheet")
    export_parser.set_defaults(func=command_export)

    import_parser = subparsers.add_parser("import", help="Pull worksheet edits into the database")
    import_parser.set_defaults(func=command_import)

    cycle_parser = subparsers.add_parser("cycle", help="Export, then import")
    cycle_parser.set_defaults(func=command_cycle)

    status_parser = subparsers.add_parser("status", help="Show recent sync runs and conflicts")
    status_parser.add_argument("--limit", type=int, default=20, help="Number of runs to show")
    status_parser.add_argument("--json", action="store_true", help="Print machine readable output")
    status_parser.set_defaults(func=command_status)

    watch_parser = subparsers.add_parser(
        "watch",
        help="Run sync cycles periodically until interrupted",
    )
    watch_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between cycles (defaults to the saved setting)",
    )
    watch_parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    watch_parser.set_defaults(func=command_watch)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=True)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
