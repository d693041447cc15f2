"""Google Sheets gateway for LetterBase synchronisation.

A thin, stateless wrapper around the Sheets v4 API.  Every call goes out
exactly once; retrying a failed run is left to whoever scheduled it.  The
operations used by the reconcilers are:

``read_range`` / ``write_range`` / ``batch_write``
    Plain value access.  Writes use ``USER_ENTERED`` so that hyperlink
    formulas in the files column are evaluated by the spreadsheet.

``ensure_bookkeeping_header``
    Make sure ``R1:U1`` names the bookkeeping columns.

``copy_template_formatting``
    Copy formats and data validation (never values) from the template row
    onto freshly appended rows.

``apply_owner_validation``
    Refresh the dropdown of allowed owners on the owner column.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from letterbase.google_credentials import (
    CredentialsFileInvalidError,
    load_service_account_data,
    service_account_info_from_env,
)
from letterbase.row_codec import BOOKKEEPING_HEADER, COL_ID, COL_OWNER, TEMPLATE_ROW_INDEX, TOTAL_COLUMNS

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
VALUE_INPUT_OPTION = "USER_ENTERED"
TYPED_COLUMNS_PATTERN = re.compile(r"typed columns", re.IGNORECASE)
_SPREADSHEET_URL_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


class SheetsGatewayError(Exception):
    """Base error raised when the Sheets gateway cannot complete an action."""


class CredentialsNotFoundError(SheetsGatewayError):
    """Raised when neither a credentials file nor environment credentials exist."""


class InvalidCredentialsError(SheetsGatewayError, CredentialsFileInvalidError):
    """Raised when the service account file or key cannot be used."""


class SpreadsheetAccessError(SheetsGatewayError):
    """Raised when the Sheets API rejects or fails a request."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Service construction
# ---------------------------------------------------------------------------

def load_credentials(
    credential_path: str = "",
    *,
    service_account_email: str = "",
    private_key: str = "",
):
    """Return service account credentials from a JSON file or the environment."""

    path = Path(credential_path).expanduser() if credential_path else None
    has_file = path is not None and path.exists()
    if not has_file and not (service_account_email and private_key):
        raise CredentialsNotFoundError(
            f"No service account file at {credential_path or '<unset>'} and no "
            "GOOGLE_SERVICE_ACCOUNT_EMAIL/GOOGLE_PRIVATE_KEY in the environment"
        )
    try:
        if has_file:
            info = load_service_account_data(path)
        else:
            info = service_account_info_from_env(service_account_email, private_key)
    except CredentialsFileInvalidError as exc:
        raise InvalidCredentialsError(str(exc)) from exc
    try:
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
    except ValueError as exc:
        raise InvalidCredentialsError(f"Service account key rejected: {exc}") from exc


def build_service(settings) -> Any:
    """Construct a Sheets service from :class:`settings.SyncSettings`."""

    credentials = load_credentials(
        settings.credential_path,
        service_account_email=settings.service_account_email,
        private_key=settings.private_key,
    )
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


# ---------------------------------------------------------------------------
# A1 helpers
# ---------------------------------------------------------------------------

def parse_spreadsheet_id(value: str) -> str:
    """Accept either a bare spreadsheet id or a full Google Sheets URL."""

    text = (value or "").strip()
    match = _SPREADSHEET_URL_PATTERN.search(text)
    if match:
        return match.group(1)
    return text


def column_letter(index: int) -> str:
    """Return the spreadsheet column letter for a 1-indexed column index."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: List[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def quote_sheet_name(sheet_name: str) -> str:
    return "'" + sheet_name.replace("'", "''") + "'"


def a1_range(sheet_name: str, range_spec: str) -> str:
    return f"{quote_sheet_name(sheet_name)}!{range_spec}"


def row_range(sheet_name: str, row_number: int, first_column: int, last_column: int, *, rows: int = 1) -> str:
    """A1 range for 0-indexed columns ``first_column..last_column`` starting at ``row_number``."""

    start = f"{column_letter(first_column + 1)}{row_number}"
    end = f"{column_letter(last_column + 1)}{row_number + rows - 1}"
    return a1_range(sheet_name, f"{start}:{end}")


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _http_detail(exc: HttpError) -> str:
    detail = str(exc)
    content = getattr(exc, "content", b"")
    if isinstance(content, bytes):
        content = content.decode("utf-8", "replace")
    if content and content not in detail:
        detail = f"{detail} {content}"
    return detail


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class SheetsGateway:
    """Value and formatting access to one worksheet of one spreadsheet."""

    def __init__(self, service: Any, spreadsheet_id: str, sheet_name: str) -> None:
        self._service = service
        self.spreadsheet_id = parse_spreadsheet_id(spreadsheet_id)
        self.sheet_name = sheet_name

    def _execute(self, request: Any, action: str) -> Dict[str, Any]:
        try:
            response = request.execute()
        except HttpError as exc:
            raise SpreadsheetAccessError(
                f"{action} failed: {_http_detail(exc)}", status=_http_status(exc)
            ) from exc
        return response if isinstance(response, dict) else {}

    # Values -----------------------------------------------------------
    def read_range(self, range_spec: str) -> List[List[Any]]:
        request = (
            self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self.spreadsheet_id, range=a1_range(self.sheet_name, range_spec))
        )
        result = self._execute(request, f"Reading {range_spec}")
        return [list(row) for row in result.get("values", [])]

    def read_rows(self) -> List[List[Any]]:
        """Return every data row (``A2:U``) as stored, trailing blanks trimmed by the API."""

        return self.read_range(f"A2:{column_letter(TOTAL_COLUMNS)}")

    def write_range(self, range_a1: str, values: Sequence[Sequence[Any]]) -> None:
        request = (
            self._service.spreadsheets()
            .values()
            .update(
                spreadsheetId=self.spreadsheet_id,
                range=range_a1,
                valueInputOption=VALUE_INPUT_OPTION,
                body={"values": [list(row) for row in values]},
            )
        )
        self._execute(request, f"Writing {range_a1}")

    def batch_write(self, data: Sequence[Mapping[str, Any]]) -> None:
        if not data:
            return
        request = (
            self._service.spreadsheets()
            .values()
            .batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"valueInputOption": VALUE_INPUT_OPTION, "data": [dict(entry) for entry in data]},
            )
        )
        self._execute(request, f"Batch write of {len(data)} range(s)")
        logger.debug("Wrote %s range(s) to %s", len(data), self.sheet_name)

    def ensure_bookkeeping_header(self) -> bool:
        """Rewrite ``R1:U1`` when any bookkeeping header cell is missing."""

        first = column_letter(COL_ID + 1)
        last = column_letter(TOTAL_COLUMNS)
        rows = self.read_range(f"{first}1:{last}1")
        header = [str(cell).strip() for cell in rows[0]] if rows else []
        if len(header) >= len(BOOKKEEPING_HEADER) and all(header[: len(BOOKKEEPING_HEADER)]):
            return False
        self.write_range(a1_range(self.sheet_name, f"{first}1:{last}1"), [list(BOOKKEEPING_HEADER)])
        logger.info("Restored bookkeeping header on %s", self.sheet_name)
        return True

    # Structure --------------------------------------------------------
    def get_sheet_id(self) -> Optional[int]:
        request = self._service.spreadsheets().get(
            spreadsheetId=self.spreadsheet_id, fields="sheets.properties"
        )
        result = self._execute(request, "Reading spreadsheet metadata")
        for sheet in result.get("sheets", []):
            properties = sheet.get("properties", {})
            if properties.get("title") == self.sheet_name:
                return properties.get("sheetId")
        return None

    def _batch_update(self, requests: List[Dict[str, Any]], action: str) -> None:
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id, body={"requests": requests}
        )
        self._execute(request, action)

    def copy_template_formatting(self, sheet_id: int, start_row: int, row_count: int) -> None:
        """Paste the template row's formats and validation onto ``row_count`` rows from ``start_row``."""

        if row_count <= 0:
            return
        source = {
            "sheetId": sheet_id,
            "startRowIndex": TEMPLATE_ROW_INDEX,
            "endRowIndex": TEMPLATE_ROW_INDEX + 1,
            "startColumnIndex": 0,
            "endColumnIndex": TOTAL_COLUMNS,
        }
        destination = {
            "sheetId": sheet_id,
            "startRowIndex": start_row - 1,
            "endRowIndex": start_row - 1 + row_count,
            "startColumnIndex": 0,
            "endColumnIndex": TOTAL_COLUMNS,
        }
        requests = [
            {
                "copyPaste": {
                    "source": dict(source),
                    "destination": dict(destination),
                    "pasteType": paste_type,
                    "pasteOrientation": "NORMAL",
                }
            }
            for paste_type in ("PASTE_FORMAT", "PASTE_DATA_VALIDATION")
        ]
        self._batch_update(requests, "Copying template formatting")

    def apply_owner_validation(self, sheet_id: int, last_row: int, values: Sequence[str]) -> bool:
        """Set the owner dropdown on rows ``2..last_row``.

        Returns ``False`` when nothing was applied, either because there is
        nothing to apply or because the column already carries typed-column
        validation that the API refuses to replace.
        """

        if not values or last_row < 2:
            return False
        rule = {
            "condition": {
                "type": "ONE_OF_LIST",
                "values": [{"userEnteredValue": value} for value in values],
            },
            "strict": True,
            "showCustomUi": True,
        }
        request = {
            "setDataValidation": {
                "range": {
                    "sheetId": sheet_id,
                    "startRowIndex": 1,
                    "endRowIndex": last_row,
                    "startColumnIndex": COL_OWNER,
                    "endColumnIndex": COL_OWNER + 1,
                },
                "rule": rule,
            }
        }
        try:
            self._batch_update([request], "Applying owner validation")
        except SpreadsheetAccessError as exc:
            if TYPED_COLUMNS_PATTERN.search(str(exc)):
                logger.info("Owner validation skipped, column uses typed validation: %s", exc)
                return False
            raise
        return True


__all__ = [
    "SCOPES",
    "CredentialsNotFoundError",
    "InvalidCredentialsError",
    "SheetsGateway",
    "SheetsGatewayError",
    "SpreadsheetAccessError",
    "a1_range",
    "build_service",
    "column_letter",
    "load_credentials",
    "parse_spreadsheet_id",
    "quote_sheet_name",
    "row_range",
]
