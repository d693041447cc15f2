"""Domain types shared by the store, the codec and both reconcilers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Optional


class LetterStatus(Enum):
    NOT_REVIEWED = "NOT_REVIEWED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    CLARIFICATION = "CLARIFICATION"
    READY = "READY"
    DONE = "DONE"


class SyncDirection(Enum):
    TO_SHEETS = "TO_SHEETS"
    FROM_SHEETS = "FROM_SHEETS"


class SyncStatus(Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    return to_utc(datetime.now(timezone.utc))


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime truncated to milliseconds."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return to_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc(parsed)


def _parse_iso_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Identity:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: str = "EMPLOYEE"
    can_login: bool = True

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Identity":
        return cls(
            id=str(record["id"]),
            email=record.get("email") or None,
            name=record.get("name") or None,
            role=str(record.get("role") or "EMPLOYEE"),
            can_login=bool(record.get("can_login")),
        )


@dataclass
class Attachment:
    id: str
    name: str
    url: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Attachment":
        return cls(id=str(record["id"]), name=str(record.get("name") or ""), url=record.get("url"))


@dataclass
class Letter:
    id: str
    number: str
    org: str = ""
    date: Optional[date] = None
    deadline_date: Optional[date] = None
    status: LetterStatus = LetterStatus.NOT_REVIEWED
    type: Optional[str] = None
    content: Optional[str] = None
    jira_link: Optional[str] = None
    zordoc: Optional[str] = None
    answer: Optional[str] = None
    send_status: Optional[str] = None
    ijro_date: Optional[date] = None
    comment: Optional[str] = None
    contacts: Optional[str] = None
    close_date: Optional[date] = None
    owner_id: Optional[str] = None
    owner: Optional[Identity] = None
    files: List[Attachment] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    sheet_row_num: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def needs_sync(self) -> bool:
        """True when the record changed after its last confirmed write to the sheet."""

        if self.last_synced_at is None:
            return True
        return self.updated_at is not None and self.updated_at > self.last_synced_at

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Letter":
        owner = record.get("owner")
        try:
            status = LetterStatus(record.get("status") or LetterStatus.NOT_REVIEWED.value)
        except ValueError:
            status = LetterStatus.NOT_REVIEWED
        row_num = record.get("sheet_row_num")
        return cls(
            id=str(record["id"]),
            number=str(record.get("number") or ""),
            org=str(record.get("org") or ""),
            date=_parse_iso_date(record.get("date")),
            deadline_date=_parse_iso_date(record.get("deadline_date")),
            status=status,
            type=record.get("type"),
            content=record.get("content"),
            jira_link=record.get("jira_link"),
            zordoc=record.get("zordoc"),
            answer=record.get("answer"),
            send_status=record.get("send_status"),
            ijro_date=_parse_iso_date(record.get("ijro_date")),
            comment=record.get("comment"),
            contacts=record.get("contacts"),
            close_date=_parse_iso_date(record.get("close_date")),
            owner_id=record.get("owner_id"),
            owner=Identity.from_record(owner) if owner else None,
            files=[Attachment.from_record(item) for item in record.get("files") or []],
            created_at=parse_iso_timestamp(record.get("created_at")),
            updated_at=parse_iso_timestamp(record.get("updated_at")),
            deleted_at=parse_iso_timestamp(record.get("deleted_at")),
            last_synced_at=parse_iso_timestamp(record.get("last_synced_at")),
            sheet_row_num=int(row_num) if row_num not in (None, "") else None,
        )


@dataclass
class SyncLogEntry:
    id: str
    direction: SyncDirection
    status: SyncStatus
    rows_affected: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "SyncLogEntry":
        return cls(
            id=str(record["id"]),
            direction=SyncDirection(record["direction"]),
            status=SyncStatus(record["status"]),
            rows_affected=int(record.get("rows_affected") or 0),
            error=record.get("error"),
            started_at=parse_iso_timestamp(record.get("started_at")),
            finished_at=parse_iso_timestamp(record.get("finished_at")),
        )


__all__ = [
    "Attachment",
    "Identity",
    "Letter",
    "LetterStatus",
    "SyncDirection",
    "SyncLogEntry",
    "SyncStatus",
    "format_timestamp",
    "parse_iso_timestamp",
    "to_utc",
    "utc_now",
]
