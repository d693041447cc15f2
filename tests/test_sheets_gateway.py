from __future__ import annotations

import pytest

from fake_sheets import HEADER, SHEET_ID, SHEET_NAME, FakeSheetsService, http_error
from letterbase.sheets_gateway import (
    CredentialsNotFoundError,
    InvalidCredentialsError,
    SheetsGateway,
    SheetsGatewayError,
    SpreadsheetAccessError,
    a1_range,
    column_letter,
    load_credentials,
    parse_spreadsheet_id,
    row_range,
)


def _gateway(service: FakeSheetsService) -> SheetsGateway:
    return SheetsGateway(service, "sheet-123", SHEET_NAME)


def test_parse_spreadsheet_id_accepts_urls_and_ids() -> None:
    url = "https://docs.google.com/spreadsheets/d/1AbC-d_9/edit#gid=0"

    assert parse_spreadsheet_id(url) == "1AbC-d_9"
    assert parse_spreadsheet_id("  1AbC-d_9 ") == "1AbC-d_9"
    assert parse_spreadsheet_id("") == ""


def test_a1_helpers_quote_sheet_names() -> None:
    assert column_letter(1) == "A"
    assert column_letter(21) == "U"
    assert column_letter(27) == "AA"
    assert a1_range("Q1 'draft'", "A1:B2") == "'Q1 ''draft'''!A1:B2"
    assert row_range(SHEET_NAME, 5, 4, 20) == f"'{SHEET_NAME}'!E5:U5"
    assert row_range(SHEET_NAME, 3, 0, 20, rows=4) == f"'{SHEET_NAME}'!A3:U6"


def test_column_letter_rejects_zero() -> None:
    with pytest.raises(ValueError):
        column_letter(0)


def test_read_rows_returns_data_rows_only() -> None:
    service = FakeSheetsService([["1/1", "Org"], [], ["1/3", "Other"]])

    rows = _gateway(service).read_rows()

    assert rows == [["1/1", "Org"], [], ["1/3", "Other"]]
    assert service.calls[0] == ("get", f"'{SHEET_NAME}'!A2:U")


def test_ensure_bookkeeping_header_writes_missing_cells() -> None:
    service = FakeSheetsService(header=False)
    service.grid.append(HEADER[:17])

    assert _gateway(service).ensure_bookkeeping_header() is True
    assert service.grid[0][17:21] == ["ID", "UPDATED_AT", "DELETED_AT", "CONFLICT"]
    assert service.grid[0][:17] == HEADER[:17]


def test_ensure_bookkeeping_header_is_noop_when_present() -> None:
    service = FakeSheetsService()

    assert _gateway(service).ensure_bookkeeping_header() is False
    assert service.write_calls() == []


def test_batch_write_skips_empty_payload() -> None:
    service = FakeSheetsService()

    _gateway(service).batch_write([])

    assert service.calls == []


def test_get_sheet_id_matches_title() -> None:
    service = FakeSheetsService()

    assert _gateway(service).get_sheet_id() == SHEET_ID
    assert SheetsGateway(service, "sheet-123", "Декабрь").get_sheet_id() is None


def test_copy_template_formatting_pastes_formats_and_validation() -> None:
    service = FakeSheetsService()

    _gateway(service).copy_template_formatting(SHEET_ID, 5, 3)

    paste_types = [request["copyPaste"]["pasteType"] for request in service.structure_requests]
    assert paste_types == ["PASTE_FORMAT", "PASTE_DATA_VALIDATION"]
    first = service.structure_requests[0]["copyPaste"]
    assert first["source"]["startRowIndex"] == 1
    assert first["source"]["endRowIndex"] == 2
    assert first["destination"]["startRowIndex"] == 4
    assert first["destination"]["endRowIndex"] == 7
    assert first["destination"]["endColumnIndex"] == 21


def test_apply_owner_validation_sets_dropdown() -> None:
    service = FakeSheetsService()

    applied = _gateway(service).apply_owner_validation(SHEET_ID, 9, ["anna@example.com", "Пётр"])

    assert applied is True
    request = service.structure_requests[0]["setDataValidation"]
    assert request["range"]["startColumnIndex"] == 14
    assert request["range"]["endColumnIndex"] == 15
    assert request["range"]["startRowIndex"] == 1
    assert request["range"]["endRowIndex"] == 9
    assert [value["userEnteredValue"] for value in request["rule"]["condition"]["values"]] == [
        "anna@example.com",
        "Пётр",
    ]


def test_apply_owner_validation_ignores_typed_columns_rejection() -> None:
    service = FakeSheetsService()
    service.structure_error = http_error(
        400, "Invalid requests[0].setDataValidation: You cannot set data validation on typed columns."
    )

    assert _gateway(service).apply_owner_validation(SHEET_ID, 5, ["anna@example.com"]) is False


def test_apply_owner_validation_propagates_other_errors() -> None:
    service = FakeSheetsService()
    service.structure_error = http_error(403, "The caller does not have permission")

    with pytest.raises(SpreadsheetAccessError) as excinfo:
        _gateway(service).apply_owner_validation(SHEET_ID, 5, ["anna@example.com"])

    assert excinfo.value.status == 403


def test_apply_owner_validation_without_values_is_skipped() -> None:
    service = FakeSheetsService()

    assert _gateway(service).apply_owner_validation(SHEET_ID, 5, []) is False
    assert service.calls == []


def test_api_errors_are_wrapped() -> None:
    service = FakeSheetsService()
    service.get_error = http_error(404, "Requested entity was not found.")

    with pytest.raises(SpreadsheetAccessError) as excinfo:
        _gateway(service).read_rows()

    assert excinfo.value.status == 404
    assert "Reading" in str(excinfo.value)


def test_load_credentials_requires_a_source(tmp_path) -> None:
    with pytest.raises(CredentialsNotFoundError):
        load_credentials(str(tmp_path / "absent.json"))


def test_load_credentials_reports_invalid_file_as_gateway_error(tmp_path) -> None:
    path = tmp_path / "service_account.json"
    path.write_text('{"type": "service_account"}', encoding="utf-8")

    with pytest.raises(InvalidCredentialsError) as excinfo:
        load_credentials(str(path))

    assert isinstance(excinfo.value, SheetsGatewayError)
    assert "missing fields" in str(excinfo.value)
