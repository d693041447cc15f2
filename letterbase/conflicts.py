"""Journal of rows where a sheet edit and a database edit collided.

Every conflict is written as one JSON line to ``<logs>/conflicts.log`` and
kept in a short in-memory list so ``sync_status`` can show it without
reading the file back.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Mapping, Optional, Tuple

from letterbase import app_paths
from letterbase.models import format_timestamp, utc_now

JOURNAL_FILE_NAME = "conflicts.log"
MAX_RECENT = 50

_journal = logging.getLogger("letterbase.sync.conflicts")
_journal_ready = False
_entries: Deque["ConflictEntry"] = deque(maxlen=MAX_RECENT)
_lock = threading.Lock()


@dataclass(frozen=True)
class ConflictEntry:
    letter_id: str
    row_number: int
    fields: Dict[str, Tuple[str, str]]
    recorded_at: datetime
    extra: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "letter_id": self.letter_id,
            "row": self.row_number,
            "fields": {name: [stored, sheet] for name, (stored, sheet) in self.fields.items()},
            "timestamp": format_timestamp(self.recorded_at),
        }
        payload.update(self.extra)
        return payload


def _journal_logger() -> logging.Logger:
    global _journal_ready
    if _journal_ready:
        return _journal
    path = app_paths.logs_path(JOURNAL_FILE_NAME)
    try:
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:  # pragma: no cover - depends on filesystem permissions
        _journal.warning("Conflict journal %s is not writable", path)
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        _journal.addHandler(handler)
    _journal.setLevel(logging.INFO)
    _journal_ready = True
    return _journal


def record(
    letter_id: str,
    field_diffs: Mapping[str, Tuple[str, str]],
    *,
    row_number: int,
    context: Optional[Mapping[str, object]] = None,
) -> Optional[ConflictEntry]:
    """Journal a conflict on ``row_number``.

    ``field_diffs`` maps a field name to ``(database value, sheet value)``.
    Nothing is written when there are no differing fields.
    """

    if not field_diffs:
        return None
    entry = ConflictEntry(
        letter_id=letter_id,
        row_number=row_number,
        fields={name: (str(stored), str(sheet)) for name, (stored, sheet) in field_diffs.items()},
        recorded_at=utc_now(),
        extra=dict(context or {}),
    )
    _journal_logger().info(json.dumps(entry.to_dict(), ensure_ascii=False, sort_keys=True))
    with _lock:
        _entries.appendleft(entry)
    return entry


def recent(limit: int = 10) -> List[Dict[str, object]]:
    """Newest conflicts first, as JSON-ready dictionaries."""

    with _lock:
        return [entry.to_dict() for entry in list(_entries)[:limit]]


def for_letter(letter_id: str) -> List[ConflictEntry]:
    with _lock:
        return [entry for entry in _entries if entry.letter_id == letter_id]


def clear() -> None:
    with _lock:
        _entries.clear()


__all__ = ["ConflictEntry", "JOURNAL_FILE_NAME", "MAX_RECENT", "clear", "for_letter", "recent", "record"]
