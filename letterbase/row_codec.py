"""Mapping between :class:`~letterbase.models.Letter` records and sheet rows.

The worksheet has 21 fixed columns.  ``A``-``C`` and ``E``-``Q`` mirror the
letter's business fields, ``D`` is a sheet-only deadline display column that
the engine never writes in bulk, and ``R``-``U`` form the bookkeeping block
owned by the engine:

``R`` record id, ``S`` ``updated_at`` at the last write, ``T`` ``deleted_at``
and ``U`` the ``CONFLICT`` marker.

:data:`COMPARABLE_FIELDS` defines what counts as a change between a sheet row
and a stored letter.  The exporter, the importer and the encoder all read it,
so bump :data:`COMPARABLE_FIELDS_VERSION` whenever an entry changes.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from dateutil import parser as dtparser

from letterbase.models import Attachment, Identity, Letter, LetterStatus, format_timestamp, parse_iso_timestamp

# ---------------------------------------------------------------------------
# Column layout
# ---------------------------------------------------------------------------
COL_NUMBER = 0
COL_ORG = 1
COL_DATE = 2
COL_DEADLINE = 3
COL_STATUS = 4
COL_FILES = 5
COL_TYPE = 6
COL_CONTENT = 7
COL_JIRA_LINK = 8
COL_ZORDOC = 9
COL_ANSWER = 10
COL_SEND_STATUS = 11
COL_IJRO_DATE = 12
COL_COMMENT = 13
COL_OWNER = 14
COL_CONTACTS = 15
COL_CLOSE_DATE = 16
COL_ID = 17
COL_UPDATED_AT = 18
COL_DELETED_AT = 19
COL_CONFLICT = 20

TOTAL_COLUMNS = 21
TEMPLATE_ROW_INDEX = 1

BOOKKEEPING_HEADER: Tuple[str, ...] = ("ID", "UPDATED_AT", "DELETED_AT", "CONFLICT")
CONFLICT_MARK = "CONFLICT"

SHEET_DATE_FORMAT = "%d.%m.%Y"

# ---------------------------------------------------------------------------
# Status labels
# ---------------------------------------------------------------------------
STATUS_LABELS: Dict[LetterStatus, str] = {
    LetterStatus.NOT_REVIEWED: "не рассмотрен",
    LetterStatus.ACCEPTED: "принят",
    LetterStatus.IN_PROGRESS: "взято в работу",
    LetterStatus.CLARIFICATION: "на уточнении",
    LetterStatus.READY: "готово",
    LetterStatus.DONE: "сделано",
}
STATUS_FROM_LABEL: Dict[str, LetterStatus] = {
    label.lower(): status for status, label in STATUS_LABELS.items()
}
DEFAULT_STATUS = LetterStatus.NOT_REVIEWED


def status_label(status: LetterStatus) -> str:
    return STATUS_LABELS[status]


def status_from_label(label: Any) -> LetterStatus:
    """Decode a status cell; unknown or empty labels mean "not reviewed"."""

    key = _cell_text(label).lower()
    return STATUS_FROM_LABEL.get(key, DEFAULT_STATUS)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------
_EXPLICIT_DATE_PATTERNS: Tuple[Tuple[re.Pattern, Tuple[str, str, str]], ...] = (
    (re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$"), ("day", "month", "year")),
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), ("day", "month", "year")),
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), ("year", "month", "day")),
)


def format_sheet_date(value: Optional[date]) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime(SHEET_DATE_FORMAT)


def parse_sheet_date(value: Any) -> Optional[date]:
    """Parse a date cell.

    ``DD.MM.YYYY``, ``DD/MM/YYYY`` and ``YYYY-MM-DD`` are tried first and must
    name a real calendar day.  Anything else goes through dateutil with the
    day-first convention of the sheet.
    """

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _cell_text(value)
    if not text:
        return None

    for pattern, order in _EXPLICIT_DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        parts = dict(zip(order, (int(group) for group in match.groups())))
        try:
            return date(parts["year"], parts["month"], parts["day"])
        except ValueError:
            return None

    try:
        return dtparser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError, TypeError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a bookkeeping timestamp cell into an aware UTC datetime."""

    parsed = parse_iso_timestamp(value)
    if parsed is not None:
        return parsed
    day = parse_sheet_date(value)
    if day is None:
        return None
    return datetime.combine(day, time(0, 0), tzinfo=timezone.utc)


def add_working_days(start: date, days: int) -> date:
    """Return ``start`` moved forward by ``days`` weekdays."""

    current = start
    remaining = days
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


# ---------------------------------------------------------------------------
# Cells
# ---------------------------------------------------------------------------

def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _escape_formula_text(value: str) -> str:
    return value.replace('"', '""').replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


def file_url(attachment: Attachment, base_url: str = "") -> str:
    base = (base_url or "").rstrip("/")
    if base:
        return f"{base}/api/files/{attachment.id}"
    if attachment.url and attachment.url.startswith("http"):
        return attachment.url
    return f"/api/files/{attachment.id}"


def build_file_cell(files: Sequence[Attachment], *, separator: str = ";", base_url: str = "") -> str:
    if not files:
        return ""
    links = [
        f'HYPERLINK("{_escape_formula_text(file_url(item, base_url))}"{separator}'
        f'"{_escape_formula_text(item.name)}")'
        for item in files
    ]
    return "=" + " & CHAR(10) & ".join(links)


def owner_cell(owner: Optional[Identity]) -> str:
    if owner is None:
        return ""
    return owner.email or owner.name or ""


def normalize_owner_value(value: Any) -> Optional[str]:
    """Return the lookup key of an owner cell.

    E-mail values are lower-cased verbatim, names additionally get their
    whitespace collapsed.
    """

    text = _cell_text(value)
    if not text:
        return None
    if "@" in text:
        return text.lower()
    return " ".join(text.split()).lower()


def is_email_value(value: str) -> bool:
    return "@" in value


# ---------------------------------------------------------------------------
# Comparable fields
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComparableField:
    name: str
    column: int
    encode: Callable[[Letter], str]
    decode: Callable[[str], str]


def _text_field(attribute: str) -> Callable[[Letter], str]:
    return lambda letter: _cell_text(getattr(letter, attribute))


def _date_field(attribute: str) -> Callable[[Letter], str]:
    return lambda letter: format_sheet_date(getattr(letter, attribute))


def _canonical_date(cell: str) -> str:
    parsed = parse_sheet_date(cell)
    return format_sheet_date(parsed) if parsed else cell


def _canonical_owner(cell: str) -> str:
    return normalize_owner_value(cell) or ""


def _canonical_files(cell: str) -> str:
    return "\n".join(line.strip() for line in cell.splitlines() if line.strip())


COMPARABLE_FIELDS_VERSION = 1
COMPARABLE_FIELDS: Tuple[ComparableField, ...] = (
    ComparableField("number", COL_NUMBER, _text_field("number"), _cell_text),
    ComparableField("org", COL_ORG, _text_field("org"), _cell_text),
    ComparableField("date", COL_DATE, _date_field("date"), _canonical_date),
    ComparableField(
        "status", COL_STATUS, lambda letter: status_label(letter.status).lower(), lambda cell: cell.lower()
    ),
    ComparableField(
        "files", COL_FILES, lambda letter: "\n".join(item.name.strip() for item in letter.files), _canonical_files
    ),
    ComparableField("type", COL_TYPE, _text_field("type"), _cell_text),
    ComparableField("content", COL_CONTENT, _text_field("content"), _cell_text),
    ComparableField("jira_link", COL_JIRA_LINK, _text_field("jira_link"), _cell_text),
    ComparableField("zordoc", COL_ZORDOC, _text_field("zordoc"), _cell_text),
    ComparableField("answer", COL_ANSWER, _text_field("answer"), _cell_text),
    ComparableField("send_status", COL_SEND_STATUS, _text_field("send_status"), _cell_text),
    ComparableField("ijro_date", COL_IJRO_DATE, _date_field("ijro_date"), _canonical_date),
    ComparableField("comment", COL_COMMENT, _text_field("comment"), _cell_text),
    ComparableField("owner", COL_OWNER, lambda letter: _canonical_owner(owner_cell(letter.owner)), _canonical_owner),
    ComparableField("contacts", COL_CONTACTS, _text_field("contacts"), _cell_text),
    ComparableField("close_date", COL_CLOSE_DATE, _date_field("close_date"), _canonical_date),
)


def _write_segments() -> Tuple[Tuple[int, int], ...]:
    """Group the engine-written columns into contiguous ``(first, last)`` runs."""

    columns = sorted({spec.column for spec in COMPARABLE_FIELDS} | set(range(COL_ID, TOTAL_COLUMNS)))
    segments: List[Tuple[int, int]] = []
    for column in columns:
        if segments and segments[-1][1] == column - 1:
            segments[-1] = (segments[-1][0], column)
        else:
            segments.append((column, column))
    return tuple(segments)


# Column D has no comparable field, so row rewrites come out as A:C and E:U.
WRITE_SEGMENTS: Tuple[Tuple[int, int], ...] = _write_segments()


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

@dataclass
class SheetRow:
    """A decoded worksheet row; every cell is a trimmed string."""

    row_number: int
    cells: List[str]

    def cell(self, column: int) -> str:
        return self.cells[column] if column < len(self.cells) else ""

    @property
    def number(self) -> str:
        return self.cell(COL_NUMBER)

    @property
    def record_id(self) -> str:
        return self.cell(COL_ID)

    @property
    def updated_at_text(self) -> str:
        return self.cell(COL_UPDATED_AT)

    @property
    def deleted_at_text(self) -> str:
        return self.cell(COL_DELETED_AT)

    @property
    def conflict_text(self) -> str:
        return self.cell(COL_CONFLICT)

    @property
    def owner_text(self) -> str:
        return self.cell(COL_OWNER)

    @property
    def is_blank(self) -> bool:
        return not self.record_id and not self.number


def decode_row(values: Sequence[Any], row_number: int = 0) -> SheetRow:
    cells = [_cell_text(values[index]) if index < len(values) else "" for index in range(TOTAL_COLUMNS)]
    return SheetRow(row_number=row_number, cells=cells)


def encode_letter(
    letter: Letter,
    *,
    conflict: bool = False,
    separator: str = ";",
    base_url: str = "",
) -> List[str]:
    """Return the 21 cells for ``letter``; the deadline display cell stays empty."""

    row = [""] * TOTAL_COLUMNS
    row[COL_NUMBER] = letter.number or ""
    row[COL_ORG] = letter.org or ""
    row[COL_DATE] = format_sheet_date(letter.date)
    row[COL_STATUS] = status_label(letter.status)
    row[COL_FILES] = build_file_cell(letter.files, separator=separator, base_url=base_url)
    row[COL_TYPE] = letter.type or ""
    row[COL_CONTENT] = letter.content or ""
    row[COL_JIRA_LINK] = letter.jira_link or ""
    row[COL_ZORDOC] = letter.zordoc or ""
    row[COL_ANSWER] = letter.answer or ""
    row[COL_SEND_STATUS] = letter.send_status or ""
    row[COL_IJRO_DATE] = format_sheet_date(letter.ijro_date)
    row[COL_COMMENT] = letter.comment or ""
    row[COL_OWNER] = owner_cell(letter.owner)
    row[COL_CONTACTS] = letter.contacts or ""
    row[COL_CLOSE_DATE] = format_sheet_date(letter.close_date)
    row[COL_ID] = letter.id
    row[COL_UPDATED_AT] = format_timestamp(letter.updated_at)
    row[COL_DELETED_AT] = format_timestamp(letter.deleted_at)
    row[COL_CONFLICT] = CONFLICT_MARK if conflict else ""
    return row


def sheet_projection(row: SheetRow) -> Dict[str, str]:
    return {spec.name: spec.decode(row.cell(spec.column)) for spec in COMPARABLE_FIELDS}


def letter_projection(letter: Letter) -> Dict[str, str]:
    return {spec.name: spec.encode(letter) for spec in COMPARABLE_FIELDS}


def diff_projections(sheet: Mapping[str, str], stored: Mapping[str, str]) -> Dict[str, Tuple[str, str]]:
    """Return ``{field: (stored, sheet)}`` for every comparable field that differs."""

    return {
        spec.name: (stored.get(spec.name, ""), sheet.get(spec.name, ""))
        for spec in COMPARABLE_FIELDS
        if stored.get(spec.name, "") != sheet.get(spec.name, "")
    }


def bookkeeping_matches(row: SheetRow, letter: Letter) -> bool:
    """True when the ``R``-``T`` cells already describe ``letter``."""

    if row.record_id != letter.id:
        return False
    if parse_iso_timestamp(row.updated_at_text) != letter.updated_at:
        return False
    return parse_iso_timestamp(row.deleted_at_text) == letter.deleted_at


def letter_fields_from_row(
    row: SheetRow,
    *,
    owner_id: Optional[str],
    deadline_working_days: int,
    today: date,
) -> Dict[str, Any]:
    """Return the store fields a sheet row asks for.

    An unparseable letter date falls back to ``today``; a missing or
    unparseable deadline is derived from the letter date.
    """

    letter_date = parse_sheet_date(row.cell(COL_DATE)) or today
    deadline = parse_sheet_date(row.cell(COL_DEADLINE)) or add_working_days(letter_date, deadline_working_days)

    def optional_text(column: int) -> Optional[str]:
        return row.cell(column) or None

    return {
        "number": row.number,
        "org": row.cell(COL_ORG),
        "date": letter_date,
        "deadline_date": deadline,
        "status": status_from_label(row.cell(COL_STATUS)),
        "type": optional_text(COL_TYPE),
        "content": optional_text(COL_CONTENT),
        "jira_link": optional_text(COL_JIRA_LINK),
        "zordoc": optional_text(COL_ZORDOC),
        "answer": optional_text(COL_ANSWER),
        "send_status": optional_text(COL_SEND_STATUS),
        "ijro_date": parse_sheet_date(row.cell(COL_IJRO_DATE)),
        "comment": optional_text(COL_COMMENT),
        "contacts": optional_text(COL_CONTACTS),
        "close_date": parse_sheet_date(row.cell(COL_CLOSE_DATE)),
        "owner_id": owner_id,
    }


__all__ = [
    "BOOKKEEPING_HEADER",
    "COL_CONFLICT",
    "COL_DEADLINE",
    "COL_OWNER",
    "COL_STATUS",
    "COMPARABLE_FIELDS",
    "COMPARABLE_FIELDS_VERSION",
    "CONFLICT_MARK",
    "ComparableField",
    "SheetRow",
    "STATUS_LABELS",
    "TEMPLATE_ROW_INDEX",
    "TOTAL_COLUMNS",
    "WRITE_SEGMENTS",
    "add_working_days",
    "bookkeeping_matches",
    "build_file_cell",
    "decode_row",
    "diff_projections",
    "encode_letter",
    "format_sheet_date",
    "format_timestamp",
    "is_email_value",
    "letter_fields_from_row",
    "letter_projection",
    "normalize_owner_value",
    "owner_cell",
    "parse_sheet_date",
    "parse_timestamp",
    "sheet_projection",
    "status_from_label",
    "status_label",
]
