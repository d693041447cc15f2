"""SQLite-backed data access layer for LetterBase.

The sync engine only needs a handful of operations from the application
database: letters with their owner and attachments, the user directory and
the sync run log.  Records are returned as plain dictionaries; timestamps are
stored as ISO-8601 UTC strings with a ``Z`` suffix and business dates as
``YYYY-MM-DD``.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import uuid
from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from letterbase import app_paths
from letterbase.models import format_timestamp, parse_iso_timestamp, utc_now

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Database path handling
# ---------------------------------------------------------------------------
_DEFAULT_DB_PATH = Path(
    os.environ.get("LETTERBASE_DB_PATH", str(app_paths.data_path("letterbase.db")))
).resolve()
_DB_PATH = _DEFAULT_DB_PATH
DB_PATH = _DB_PATH

_SCHEMA_LOCK = threading.Lock()
_SCHEMA_READY = False

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
LETTER_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "number": "TEXT NOT NULL",
    "org": "TEXT NOT NULL DEFAULT ''",
    "date": "TEXT",
    "deadline_date": "TEXT",
    "status": "TEXT NOT NULL DEFAULT 'NOT_REVIEWED'",
    "type": "TEXT",
    "content": "TEXT",
    "jira_link": "TEXT",
    "zordoc": "TEXT",
    "answer": "TEXT",
    "send_status": "TEXT",
    "ijro_date": "TEXT",
    "comment": "TEXT",
    "contacts": "TEXT",
    "close_date": "TEXT",
    "owner_id": "TEXT",
    "created_at": "TEXT NOT NULL",
    "updated_at": "TEXT NOT NULL",
    "deleted_at": "TEXT",
    "last_synced_at": "TEXT",
    "sheet_row_num": "INTEGER",
}

FILE_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "letter_id": "TEXT NOT NULL",
    "name": "TEXT NOT NULL",
    "url": "TEXT",
    "position": "INTEGER NOT NULL DEFAULT 0",
    "created_at": "TEXT NOT NULL",
}

USER_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "email": "TEXT",
    "name": "TEXT",
    "role": "TEXT NOT NULL DEFAULT 'EMPLOYEE'",
    "can_login": "INTEGER NOT NULL DEFAULT 1",
    "created_at": "TEXT NOT NULL",
}

SYNC_LOG_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "direction": "TEXT NOT NULL",
    "status": "TEXT NOT NULL",
    "rows_affected": "INTEGER NOT NULL DEFAULT 0",
    "error": "TEXT",
    "started_at": "TEXT NOT NULL",
    "finished_at": "TEXT",
}

_TABLES: Dict[str, Dict[str, str]] = {
    "letters": LETTER_COLUMN_DEFINITIONS,
    "letter_files": FILE_COLUMN_DEFINITIONS,
    "users": USER_COLUMN_DEFINITIONS,
    "sync_logs": SYNC_LOG_COLUMN_DEFINITIONS,
}

# Writing these never counts as a change of the letter itself.
SYNC_BOOKKEEPING_FIELDS = frozenset({"last_synced_at", "sheet_row_num"})
TIMESTAMP_FIELDS = frozenset(
    {"created_at", "updated_at", "deleted_at", "last_synced_at", "started_at", "finished_at"}
)
LETTER_WRITABLE_FIELDS = frozenset(LETTER_COLUMN_DEFINITIONS) - {"id"}
USER_WRITABLE_FIELDS = frozenset({"email", "name", "role", "can_login"})
SYNC_LOG_WRITABLE_FIELDS = frozenset({"status", "rows_affected", "error", "finished_at"})


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------

def set_database_path(path: Path) -> None:
    """Override the SQLite file used for storage."""

    global _DB_PATH, DB_PATH, _SCHEMA_READY
    _DB_PATH = Path(path).resolve()
    DB_PATH = _DB_PATH
    _SCHEMA_READY = False


def _ensure_schema(conn: sqlite3.Connection) -> None:
    for table, definitions in _TABLES.items():
        columns = ",\n        ".join(f"{column} {definition}" for column, definition in definitions.items())
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n        {columns}\n    )")

        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        for column, definition in definitions.items():
            if column not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    conn.execute("CREATE INDEX IF NOT EXISTS idx_letters_number ON letters(number)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_letters_deleted_at ON letters(deleted_at)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_letter_files_letter ON letter_files(letter_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sync_logs_started ON sync_logs(started_at)")


def _ensure_database() -> None:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        if _DB_PATH.parent:
            _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(_DB_PATH)
        try:
            _ensure_schema(conn)
            conn.commit()
        finally:
            conn.close()
        _SCHEMA_READY = True


def initialize_database() -> Path:
    _ensure_database()
    return _DB_PATH


def get_connection() -> sqlite3.Connection:
    _ensure_database()
    conn = sqlite3.connect(_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _utc_now_iso() -> str:
    return format_timestamp(utc_now())


def _next_updated_at(existing: Mapping[str, Any]) -> str:
    """Bump time for an edit; always later than the letter's last sync stamp."""

    now = utc_now()
    synced = parse_iso_timestamp(existing.get("last_synced_at"))
    if synced is not None and now <= synced:
        now = synced + timedelta(milliseconds=1)
    return format_timestamp(now)


def _serialize(column: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if column in TIMESTAMP_FIELDS and isinstance(value, str) and not value.strip():
        return None
    return value


def _serialize_fields(fields: Mapping[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    allowed_set = frozenset(allowed)
    unknown = [key for key in fields if key not in allowed_set]
    if unknown:
        raise ValueError(f"Unknown field(s): {', '.join(sorted(unknown))}")
    return {key: _serialize(key, value) for key, value in fields.items()}


def _new_id() -> str:
    return str(uuid.uuid4())


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


def _user_dict(row: sqlite3.Row) -> Dict[str, Any]:
    data = _row_to_dict(row) or {}
    data["can_login"] = bool(data.get("can_login"))
    return data


def _attach_relations(conn: sqlite3.Connection, letters: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not letters:
        return letters
    letter_ids = [letter["id"] for letter in letters]
    owner_ids = sorted({letter["owner_id"] for letter in letters if letter.get("owner_id")})

    files_by_letter: Dict[str, List[Dict[str, Any]]] = {letter_id: [] for letter_id in letter_ids}
    placeholders = ",".join("?" for _ in letter_ids)
    cursor = conn.execute(
        f"SELECT * FROM letter_files WHERE letter_id IN ({placeholders}) "
        "ORDER BY position, created_at",
        letter_ids,
    )
    for row in cursor.fetchall():
        files_by_letter[row["letter_id"]].append(_row_to_dict(row) or {})

    owners: Dict[str, Dict[str, Any]] = {}
    if owner_ids:
        placeholders = ",".join("?" for _ in owner_ids)
        cursor = conn.execute(f"SELECT * FROM users WHERE id IN ({placeholders})", owner_ids)
        owners = {row["id"]: _user_dict(row) for row in cursor.fetchall()}

    for letter in letters:
        letter["files"] = files_by_letter.get(letter["id"], [])
        letter["owner"] = owners.get(letter.get("owner_id") or "")
    return letters


# ---------------------------------------------------------------------------
# Letters
# ---------------------------------------------------------------------------

def fetch_letters(*, include_deleted: bool = False) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        sql = "SELECT * FROM letters"
        if not include_deleted:
            sql += " WHERE deleted_at IS NULL"
        sql += " ORDER BY created_at, rowid"
        letters = [_row_to_dict(row) or {} for row in conn.execute(sql).fetchall()]
        return _attach_relations(conn, letters)


def fetch_letter(letter_id: str) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM letters WHERE id = ?", (letter_id,)).fetchone()
        if row is None:
            return None
        return _attach_relations(conn, [_row_to_dict(row) or {}])[0]


def find_letter_by_number(number: str) -> Optional[Dict[str, Any]]:
    """Return the oldest live letter carrying ``number``."""

    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM letters WHERE number = ? AND deleted_at IS NULL "
            "ORDER BY created_at, rowid LIMIT 1",
            (number,),
        ).fetchone()
        if row is None:
            return None
        return _attach_relations(conn, [_row_to_dict(row) or {}])[0]


def create_letter(fields: Mapping[str, Any]) -> Dict[str, Any]:
    payload = _serialize_fields(fields, LETTER_WRITABLE_FIELDS | {"id"})
    if not payload.get("number"):
        raise ValueError("Letter number is required")
    now = _utc_now_iso()
    payload.setdefault("id", _new_id())
    payload["id"] = payload["id"] or _new_id()
    payload["created_at"] = payload.get("created_at") or now
    payload["updated_at"] = payload.get("updated_at") or payload["created_at"]
    payload.setdefault("org", "")
    payload["org"] = payload["org"] or ""
    payload["status"] = payload.get("status") or "NOT_REVIEWED"

    columns = ", ".join(payload)
    placeholders = ", ".join("?" for _ in payload)
    with get_connection() as conn:
        conn.execute(f"INSERT INTO letters ({columns}) VALUES ({placeholders})", list(payload.values()))
    logger.debug("Created letter %s (%s)", payload["id"], payload["number"])
    created = fetch_letter(payload["id"])
    if created is None:
        raise KeyError(payload["id"])
    return created


def _apply_letter_update(
    conn: sqlite3.Connection, existing: Mapping[str, Any], payload: Dict[str, Any]
) -> None:
    if "updated_at" not in payload:
        changed = any(
            existing.get(key) != value
            for key, value in payload.items()
            if key not in SYNC_BOOKKEEPING_FIELDS
        )
        if changed:
            payload["updated_at"] = _next_updated_at(existing)
    if not payload:
        return
    assignments = ", ".join(f"{column} = ?" for column in payload)
    conn.execute(
        f"UPDATE letters SET {assignments} WHERE id = ?",
        [*payload.values(), existing["id"]],
    )


def update_letter(letter_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Update ``letter_id`` and return the fresh record.

    ``updated_at`` is bumped whenever a business field actually changes unless
    the caller supplies it.  Sync bookkeeping fields never bump it.
    """

    payload = _serialize_fields(fields, LETTER_WRITABLE_FIELDS)
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM letters WHERE id = ?", (letter_id,)).fetchone()
        if row is None:
            raise KeyError(letter_id)
        _apply_letter_update(conn, _row_to_dict(row) or {}, payload)
    updated = fetch_letter(letter_id)
    if updated is None:
        raise KeyError(letter_id)
    return updated


def update_letters(letter_ids: Sequence[str], fields: Mapping[str, Any]) -> int:
    """Apply the same ``fields`` to every letter in ``letter_ids``."""

    if not letter_ids:
        return 0
    payload = _serialize_fields(fields, LETTER_WRITABLE_FIELDS)
    count = 0
    with get_connection() as conn:
        placeholders = ",".join("?" for _ in letter_ids)
        rows = conn.execute(
            f"SELECT * FROM letters WHERE id IN ({placeholders})", list(letter_ids)
        ).fetchall()
        for row in rows:
            _apply_letter_update(conn, _row_to_dict(row) or {}, dict(payload))
            count += 1
    return count


def add_file(letter_id: str, name: str, url: Optional[str] = None) -> Dict[str, Any]:
    now = _utc_now_iso()
    with get_connection() as conn:
        position = conn.execute(
            "SELECT COUNT(*) FROM letter_files WHERE letter_id = ?", (letter_id,)
        ).fetchone()[0]
        payload = {
            "id": _new_id(),
            "letter_id": letter_id,
            "name": name,
            "url": url,
            "position": position,
            "created_at": now,
        }
        conn.execute(
            "INSERT INTO letter_files (id, letter_id, name, url, position, created_at) "
            "VALUES (:id, :letter_id, :name, :url, :position, :created_at)",
            payload,
        )
        conn.execute("UPDATE letters SET updated_at = ? WHERE id = ?", (now, letter_id))
    return payload


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def fetch_users() -> List[Dict[str, Any]]:
    with get_connection() as conn:
        rows = conn.execute("SELECT * FROM users ORDER BY created_at, rowid").fetchall()
        return [_user_dict(row) for row in rows]


def create_user(
    *,
    email: Optional[str] = None,
    name: Optional[str] = None,
    role: str = "EMPLOYEE",
    can_login: bool = True,
) -> Dict[str, Any]:
    if not (email or name):
        raise ValueError("A user needs an e-mail or a name")
    payload = {
        "id": _new_id(),
        "email": email,
        "name": name,
        "role": role,
        "can_login": int(can_login),
        "created_at": _utc_now_iso(),
    }
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO users (id, email, name, role, can_login, created_at) "
            "VALUES (:id, :email, :name, :role, :can_login, :created_at)",
            payload,
        )
    payload["can_login"] = can_login
    return payload


def update_user(user_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    payload = _serialize_fields(fields, USER_WRITABLE_FIELDS)
    with get_connection() as conn:
        if payload:
            assignments = ", ".join(f"{column} = ?" for column in payload)
            conn.execute(f"UPDATE users SET {assignments} WHERE id = ?", [*payload.values(), user_id])
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise KeyError(user_id)
    return _user_dict(row)


def update_users(
    fields: Mapping[str, Any],
    *,
    ids: Optional[Iterable[str]] = None,
    exclude_ids: Optional[Iterable[str]] = None,
    exclude_roles: Optional[Iterable[str]] = None,
) -> int:
    """Bulk update users matching every supplied filter; returns the row count."""

    payload = _serialize_fields(fields, USER_WRITABLE_FIELDS)
    if not payload:
        return 0
    clauses: List[str] = []
    params: List[Any] = list(payload.values())
    for column_filter, values, negate in (
        ("id", ids, False),
        ("id", exclude_ids, True),
        ("role", exclude_roles, True),
    ):
        if values is None:
            continue
        items = list(values)
        if not items:
            if not negate:
                return 0
            continue
        placeholders = ",".join("?" for _ in items)
        operator = "NOT IN" if negate else "IN"
        clauses.append(f"{column_filter} {operator} ({placeholders})")
        params.extend(items)

    sql = "UPDATE users SET " + ", ".join(f"{column} = ?" for column in payload)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    with get_connection() as conn:
        cursor = conn.execute(sql, params)
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Sync run log
# ---------------------------------------------------------------------------

def create_sync_log(direction: str, status: str) -> Dict[str, Any]:
    payload = {
        "id": _new_id(),
        "direction": direction,
        "status": status,
        "rows_affected": 0,
        "error": None,
        "started_at": _utc_now_iso(),
        "finished_at": None,
    }
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO sync_logs (id, direction, status, rows_affected, error, started_at, finished_at) "
            "VALUES (:id, :direction, :status, :rows_affected, :error, :started_at, :finished_at)",
            payload,
        )
    return payload


def update_sync_log(log_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
    payload = _serialize_fields(fields, SYNC_LOG_WRITABLE_FIELDS)
    with get_connection() as conn:
        if payload:
            assignments = ", ".join(f"{column} = ?" for column in payload)
            conn.execute(f"UPDATE sync_logs SET {assignments} WHERE id = ?", [*payload.values(), log_id])
        row = conn.execute("SELECT * FROM sync_logs WHERE id = ?", (log_id,)).fetchone()
    if row is None:
        raise KeyError(log_id)
    return _row_to_dict(row) or {}


def fetch_sync_logs(limit: int = 20) -> List[Dict[str, Any]]:
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT * FROM sync_logs ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (max(1, int(limit)),),
        ).fetchall()
        return [_row_to_dict(row) or {} for row in rows]


__all__ = [
    "DB_PATH",
    "SYNC_BOOKKEEPING_FIELDS",
    "add_file",
    "create_letter",
    "create_sync_log",
    "create_user",
    "fetch_letter",
    "fetch_letters",
    "fetch_sync_logs",
    "fetch_users",
    "find_letter_by_number",
    "get_connection",
    "initialize_database",
    "set_database_path",
    "update_letter",
    "update_letters",
    "update_sync_log",
    "update_user",
    "update_users",
]
