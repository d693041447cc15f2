from __future__ import annotations

import json

import db
import sync_cli
from fake_sheets import FakeSheetsService
from letterbase.sync_service import SyncService


def _patch_service(monkeypatch, sync_settings, sheet: FakeSheetsService) -> None:
    monkeypatch.setattr(sync_cli, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(
        sync_cli,
        "SyncService",
        lambda: SyncService(sync_settings, service_factory=lambda _settings: sheet),
    )


def test_export_command_prints_summary(monkeypatch, capsys, database, sheet, sync_settings) -> None:
    db.create_letter({"number": "1/24", "org": "Минтранс"})
    _patch_service(monkeypatch, sync_settings, sheet)

    exit_code = sync_cli.main(["export"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Appended rows: 1" in out
    assert "New rows     : 2-2" in out


def test_import_command_reports_conflicts(monkeypatch, capsys, database, sheet, sync_settings) -> None:
    sheet.grid.append(["3/24", "Минобр", "06.03.2024"])
    _patch_service(monkeypatch, sync_settings, sheet)

    assert sync_cli.main(["import"]) == 0
    assert "Imported rows: 1" in capsys.readouterr().out


def test_command_errors_exit_non_zero(monkeypatch, capsys, database, sheet, sync_settings) -> None:
    sync_settings.spreadsheet_id = ""
    _patch_service(monkeypatch, sync_settings, sheet)

    assert sync_cli.main(["cycle"]) == 1
    assert "Error: GOOGLE_SPREADSHEET_ID is not configured" in capsys.readouterr().err


def test_status_command_outputs_json(monkeypatch, capsys, database, sheet, sync_settings) -> None:
    _patch_service(monkeypatch, sync_settings, sheet)
    sync_cli.main(["cycle"])
    capsys.readouterr()

    assert sync_cli.main(["status", "--json", "--limit", "5"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [run["direction"] for run in payload["runs"]] == ["FROM_SHEETS", "TO_SHEETS"]


def test_status_command_without_runs(monkeypatch, capsys, database, sheet, sync_settings) -> None:
    _patch_service(monkeypatch, sync_settings, sheet)

    assert sync_cli.main(["status"]) == 0
    assert "No sync runs recorded." in capsys.readouterr().out


def test_watch_once_runs_single_cycle(monkeypatch, database, sheet, sync_settings) -> None:
    db.create_letter({"number": "1/24", "org": "Минтранс"})
    _patch_service(monkeypatch, sync_settings, sheet)

    assert sync_cli.main(["watch", "--once", "--interval", "10"]) == 0
    assert sheet.data_row_count() == 1
