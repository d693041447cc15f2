from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# Application paths and defaults are resolved at import time.
os.environ["LETTERBASE_HOME"] = tempfile.mkdtemp(prefix="letterbase-tests-")
for _name in (
    "GOOGLE_SPREADSHEET_ID",
    "GOOGLE_SHEET_NAME",
    "GOOGLE_SERVICE_ACCOUNT_EMAIL",
    "GOOGLE_PRIVATE_KEY",
    "GOOGLE_SHEET_FORMULA_SEPARATOR",
    "LETTERBASE_CREDENTIALS_PATH",
    "LETTERBASE_DB_PATH",
    "LETTERBASE_LOG_LEVEL",
    "APP_URL",
):
    os.environ.pop(_name, None)

import pytest

import db
from fake_sheets import SHEET_NAME, FakeSheetsService
from letterbase import conflicts
from letterbase.sheets_gateway import SheetsGateway
from settings import SyncSettings


@pytest.fixture
def database(tmp_path: Path) -> Path:
    db_path = tmp_path / "letters.db"
    db.set_database_path(db_path)
    db.initialize_database()
    conflicts.clear()
    return db_path


@pytest.fixture
def sync_settings(tmp_path: Path) -> SyncSettings:
    return SyncSettings(
        spreadsheet_id="https://docs.google.com/spreadsheets/d/sheet-123/edit#gid=7",
        sheet_name=SHEET_NAME,
        credential_path=str(tmp_path / "missing.json"),
        service_account_email="",
        private_key="",
        formula_separator=";",
        app_base_url="https://letters.example.com",
    )


@pytest.fixture
def sheet() -> FakeSheetsService:
    return FakeSheetsService()


@pytest.fixture
def gateway(sheet: FakeSheetsService) -> SheetsGateway:
    return SheetsGateway(sheet, "sheet-123", SHEET_NAME)
