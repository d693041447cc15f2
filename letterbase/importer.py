"""Import reconciler: pull worksheet rows into the letters database.

Each data row resolves to exactly one :class:`RowOutcome`.  Database changes
are applied as the rows are visited; all sheet rewrites are queued and sent in
one batch at the very end, and ``last_synced_at`` is only stamped after that
batch went through.  A run that fails before the flush therefore never leaves
a half-written sheet behind, and repeating it is safe.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

import db
from letterbase import conflicts, ledger
from letterbase.directory import OwnerResolution, resolve_owners
from letterbase.exporter import row_update_ranges
from letterbase.models import Letter, SyncDirection, utc_now
from letterbase.row_codec import (
    COL_CONFLICT,
    SheetRow,
    bookkeeping_matches,
    decode_row,
    diff_projections,
    encode_letter,
    letter_fields_from_row,
    letter_projection,
    parse_timestamp,
    sheet_projection,
)
from letterbase.sheets_gateway import SheetsGateway, row_range

logger = logging.getLogger(__name__)

CONFLICT_SUMMARY_PREFIX = "Конфликты в строках"


class RowOutcome(Enum):
    NO_OP = "no-op"
    CREATED = "created"
    DELETION_PROPAGATED = "deletion-propagated"
    UPDATED_FROM_SHEET = "updated-from-sheet"
    CONFLICT_KEPT_DB = "conflict-kept-db"
    ROW_HEALED = "row-healed"


IMPORTING_OUTCOMES = frozenset(
    {RowOutcome.CREATED, RowOutcome.DELETION_PROPAGATED, RowOutcome.UPDATED_FROM_SHEET}
)


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class Existing:
    letter: Letter


LetterLookup = Union[NotFound, Existing]


@dataclass
class ImportResult:
    outcomes: Dict[int, RowOutcome] = field(default_factory=dict)
    conflicts: List[int] = field(default_factory=list)
    created_owner_ids: List[str] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome in IMPORTING_OUTCOMES)

    @property
    def conflict_message(self) -> Optional[str]:
        if not self.conflicts:
            return None
        return f"{CONFLICT_SUMMARY_PREFIX}: {', '.join(str(row) for row in self.conflicts)}"


class _RunContext:
    """Per-run state: queued sheet writes and letters to stamp after the flush."""

    def __init__(self, gateway: SheetsGateway, settings, owners: OwnerResolution, now: datetime) -> None:
        self.gateway = gateway
        self.settings = settings
        self.owners = owners
        self.now = now
        self.pending: List[Dict[str, Any]] = []
        self.rewritten_rows: Set[int] = set()
        self.synced_letter_ids: List[str] = []

    def rewrite(self, row: SheetRow, letter: Letter, *, conflict: bool = False) -> None:
        cells = encode_letter(
            letter,
            conflict=conflict,
            separator=self.settings.formula_separator,
            base_url=self.settings.app_base_url,
        )
        self.pending.extend(row_update_ranges(self.gateway.sheet_name, row.row_number, cells))
        self.rewritten_rows.add(row.row_number)
        if not conflict and letter.id not in self.synced_letter_ids:
            self.synced_letter_ids.append(letter.id)

    def clear_conflict_mark(self, row: SheetRow) -> None:
        self.pending.append(
            {
                "range": row_range(self.gateway.sheet_name, row.row_number, COL_CONFLICT, COL_CONFLICT),
                "values": [[""]],
            }
        )


def import_from_sheets(gateway: SheetsGateway, *, settings, now: Optional[datetime] = None) -> ImportResult:
    """Apply sheet edits to the database and re-stamp every touched row."""

    with ledger.track_run(SyncDirection.FROM_SHEETS) as run:
        result = _import(gateway, settings=settings, now=now or utc_now())
        run.rows_affected = result.imported
        run.message = result.conflict_message
    return result


def _import(gateway: SheetsGateway, *, settings, now: datetime) -> ImportResult:
    gateway.ensure_bookkeeping_header()
    rows = [decode_row(values, index + 2) for index, values in enumerate(gateway.read_rows())]

    owners = resolve_owners(rows, elevated_roles=settings.elevated_roles)
    context = _RunContext(gateway, settings, owners, now)
    result = ImportResult(created_owner_ids=list(owners.created_ids))

    for row in rows:
        if row.is_blank:
            continue
        if not row.number:
            outcome = _heal_placeholder(row, context)
        else:
            outcome = _resolve_row(row, _lookup(row), context)
        result.outcomes[row.row_number] = outcome
        if outcome is RowOutcome.CONFLICT_KEPT_DB:
            result.conflicts.append(row.row_number)
        elif row.conflict_text and row.row_number not in context.rewritten_rows:
            context.clear_conflict_mark(row)

    gateway.batch_write(context.pending)
    if context.synced_letter_ids:
        db.update_letters(context.synced_letter_ids, {"last_synced_at": now})

    logger.info(
        "Import from %s: %s row(s) imported, %s conflict(s), %s write range(s)",
        gateway.sheet_name,
        result.imported,
        len(result.conflicts),
        len(context.pending),
    )
    return result


def _lookup(row: SheetRow) -> LetterLookup:
    record = db.fetch_letter(row.record_id) if row.record_id else None
    if record is None:
        record = db.find_letter_by_number(row.number)
    if record is None:
        return NotFound()
    return Existing(Letter.from_record(record))


def _track_row_position(letter: Letter, row: SheetRow) -> None:
    if letter.sheet_row_num != row.row_number:
        db.update_letter(letter.id, {"sheet_row_num": row.row_number})


def _heal_placeholder(row: SheetRow, context: _RunContext) -> RowOutcome:
    """A row with an id but no number gets the stored letter written back."""

    record = db.fetch_letter(row.record_id)
    if record is None:
        return RowOutcome.NO_OP
    letter = Letter.from_record(record)
    context.rewrite(row, letter)
    _track_row_position(letter, row)
    return RowOutcome.ROW_HEALED


def _resolve_row(row: SheetRow, lookup: LetterLookup, context: _RunContext) -> RowOutcome:
    fields = letter_fields_from_row(
        row,
        owner_id=context.owners.owner_id_for(row.owner_text),
        deadline_working_days=context.settings.deadline_working_days,
        today=context.now.date(),
    )

    if isinstance(lookup, NotFound):
        created = db.create_letter(
            {**fields, "sheet_row_num": row.row_number, "created_at": context.now, "updated_at": context.now}
        )
        letter = Letter.from_record(created)
        context.rewrite(row, letter)
        logger.debug("Row %s created letter %s", row.row_number, letter.id)
        return RowOutcome.CREATED

    letter = lookup.letter
    sheet_deleted_at = parse_timestamp(row.deleted_at_text)

    if sheet_deleted_at is not None and not letter.is_deleted:
        letter = Letter.from_record(
            db.update_letter(letter.id, {"deleted_at": sheet_deleted_at, "updated_at": context.now})
        )
        context.rewrite(row, letter)
        outcome = RowOutcome.DELETION_PROPAGATED
    elif letter.is_deleted and sheet_deleted_at is None:
        context.rewrite(row, letter)
        outcome = RowOutcome.ROW_HEALED
    else:
        outcome = _reconcile_content(row, letter, fields, context)

    _track_row_position(letter, row)
    return outcome


def _reconcile_content(
    row: SheetRow, letter: Letter, fields: Dict[str, Any], context: _RunContext
) -> RowOutcome:
    diffs = diff_projections(sheet_projection(row), letter_projection(letter))
    if not diffs:
        if bookkeeping_matches(row, letter):
            return RowOutcome.NO_OP
        context.rewrite(row, letter)
        return RowOutcome.ROW_HEALED

    db_changed = letter.last_synced_at is not None and letter.updated_at is not None and (
        letter.updated_at > letter.last_synced_at
    )
    sheet_updated_at = parse_timestamp(row.updated_at_text)
    sheet_newer = (
        sheet_updated_at is not None
        and letter.updated_at is not None
        and sheet_updated_at > letter.updated_at
    )

    if not db_changed or sheet_newer:
        updated = db.update_letter(letter.id, {**fields, "updated_at": context.now})
        context.rewrite(row, Letter.from_record(updated))
        logger.debug("Row %s updated letter %s: %s", row.row_number, letter.id, ", ".join(sorted(diffs)))
        return RowOutcome.UPDATED_FROM_SHEET

    conflicts.record(letter.id, diffs, row_number=row.row_number, context={"number": letter.number})
    context.rewrite(row, letter, conflict=True)
    logger.warning("Row %s conflicts with letter %s: %s", row.row_number, letter.id, ", ".join(sorted(diffs)))
    return RowOutcome.CONFLICT_KEPT_DB


__all__ = [
    "CONFLICT_SUMMARY_PREFIX",
    "Existing",
    "ImportResult",
    "LetterLookup",
    "NotFound",
    "RowOutcome",
    "import_from_sheets",
]
