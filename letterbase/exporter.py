"""Export reconciler: push database letters out to the worksheet.

Letters whose stored ``sheet_row_num`` points inside the occupied range are
updated in place when they changed since their last sync; every other live
letter is appended as one contiguous block after the last used row.  Updates
are flushed before the append so the append cannot shift their targets.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import db
from letterbase import ledger
from letterbase.directory import owner_options
from letterbase.models import Letter, SyncDirection, utc_now
from letterbase.row_codec import TOTAL_COLUMNS, WRITE_SEGMENTS, encode_letter
from letterbase.sheets_gateway import SheetsGateway, a1_range, column_letter, row_range

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    updated: List[str] = field(default_factory=list)
    appended: List[str] = field(default_factory=list)
    first_new_row: Optional[int] = None
    last_row: int = 1

    @property
    def rows_affected(self) -> int:
        return len(self.updated) + len(self.appended)


def row_update_ranges(sheet_name: str, row_number: int, cells: List[str]) -> List[Dict[str, Any]]:
    """Value ranges rewriting ``row_number`` everywhere except the display-only columns."""

    return [
        {
            "range": row_range(sheet_name, row_number, first, last),
            "values": [cells[first : last + 1]],
        }
        for first, last in WRITE_SEGMENTS
    ]


def export_to_sheets(gateway: SheetsGateway, *, settings, now: Optional[datetime] = None) -> ExportResult:
    """Make the worksheet reflect every live letter that changed since its last sync."""

    with ledger.track_run(SyncDirection.TO_SHEETS) as run:
        result = _export(gateway, settings=settings, now=now)
        run.rows_affected = result.rows_affected
    return result


def _export(gateway: SheetsGateway, *, settings, now: Optional[datetime]) -> ExportResult:
    synced_at = now or utc_now()
    gateway.ensure_bookkeeping_header()

    letters = [Letter.from_record(record) for record in db.fetch_letters()]
    existing_rows = gateway.read_rows()
    max_row = len(existing_rows) + 1
    next_row = max_row + 1

    def encode(letter: Letter) -> List[str]:
        return encode_letter(letter, separator=settings.formula_separator, base_url=settings.app_base_url)

    result = ExportResult(last_row=max_row)
    updates: List[Dict[str, Any]] = []
    new_rows: List[List[str]] = []

    for letter in letters:
        row_num = letter.sheet_row_num
        if row_num is not None and 2 <= row_num <= max_row:
            if letter.needs_sync:
                updates.extend(row_update_ranges(gateway.sheet_name, row_num, encode(letter)))
                result.updated.append(letter.id)
        else:
            new_rows.append(encode(letter))
            result.appended.append(letter.id)

    if new_rows:
        result.first_new_row = next_row
        result.last_row = next_row + len(new_rows) - 1

    # Stamp each block right after it is written, before any formatting call.
    if updates:
        gateway.batch_write(updates)
        db.update_letters(result.updated, {"last_synced_at": synced_at})

    if new_rows:
        end_column = column_letter(TOTAL_COLUMNS)
        gateway.write_range(
            a1_range(gateway.sheet_name, f"A{next_row}:{end_column}{result.last_row}"),
            new_rows,
        )
        for offset, letter_id in enumerate(result.appended):
            db.update_letter(letter_id, {"sheet_row_num": next_row + offset, "last_synced_at": synced_at})

    if result.rows_affected:
        sheet_id = gateway.get_sheet_id()
        if sheet_id is not None:
            if new_rows:
                gateway.copy_template_formatting(sheet_id, next_row, len(new_rows))
            gateway.apply_owner_validation(sheet_id, result.last_row, owner_options(letters))

    logger.info(
        "Export to %s: %s updated, %s appended",
        gateway.sheet_name,
        len(result.updated),
        len(result.appended),
    )
    return result


__all__ = ["ExportResult", "export_to_sheets", "row_update_ranges"]
