"""Sync run ledger: one ``sync_logs`` entry per reconciliation run."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

import db
from letterbase.models import SyncDirection, SyncLogEntry, SyncStatus, utc_now

logger = logging.getLogger(__name__)


def start_run(direction: SyncDirection) -> SyncLogEntry:
    record = db.create_sync_log(direction.value, SyncStatus.IN_PROGRESS.value)
    logger.info("Sync run %s started (%s)", record["id"], direction.value)
    return SyncLogEntry.from_record(record)


def complete_run(entry: SyncLogEntry, rows_affected: int, message: Optional[str] = None) -> SyncLogEntry:
    record = db.update_sync_log(
        entry.id,
        {
            "status": SyncStatus.COMPLETED,
            "rows_affected": rows_affected,
            "error": message,
            "finished_at": utc_now(),
        },
    )
    logger.info(
        "Sync run %s completed: %s row(s)%s",
        entry.id,
        rows_affected,
        f", {message}" if message else "",
    )
    return SyncLogEntry.from_record(record)


def fail_run(entry: SyncLogEntry, error: BaseException) -> SyncLogEntry:
    record = db.update_sync_log(
        entry.id,
        {"status": SyncStatus.FAILED, "error": str(error), "finished_at": utc_now()},
    )
    logger.error("Sync run %s failed: %s", entry.id, error)
    return SyncLogEntry.from_record(record)


@dataclass
class RunTracker:
    entry: SyncLogEntry
    rows_affected: int = 0
    message: Optional[str] = None


@contextmanager
def track_run(direction: SyncDirection) -> Iterator[RunTracker]:
    """Open a ledger entry, completing it on success or failing it and re-raising."""

    tracker = RunTracker(entry=start_run(direction))
    try:
        yield tracker
    except Exception as exc:
        tracker.entry = fail_run(tracker.entry, exc)
        raise
    tracker.entry = complete_run(tracker.entry, tracker.rows_affected, tracker.message)


def recent_runs(limit: int = 20) -> List[SyncLogEntry]:
    return [SyncLogEntry.from_record(record) for record in db.fetch_sync_logs(limit)]


__all__ = ["RunTracker", "complete_run", "fail_run", "recent_runs", "start_run", "track_run"]
