from __future__ import annotations

from datetime import date, datetime, timezone

from fake_sheets import render
from letterbase.models import Attachment, Identity, Letter, LetterStatus
from letterbase.row_codec import (
    COL_CONFLICT,
    COL_DEADLINE,
    COL_FILES,
    COL_ID,
    COL_OWNER,
    COL_STATUS,
    COL_UPDATED_AT,
    TOTAL_COLUMNS,
    WRITE_SEGMENTS,
    add_working_days,
    bookkeeping_matches,
    build_file_cell,
    decode_row,
    diff_projections,
    encode_letter,
    letter_fields_from_row,
    letter_projection,
    normalize_owner_value,
    parse_sheet_date,
    sheet_projection,
    status_from_label,
)

UPDATED = datetime(2024, 3, 11, 9, 30, tzinfo=timezone.utc)


def _letter(**overrides) -> Letter:
    values = dict(
        id="letter-1",
        number="12/345",
        org="Минфин",
        date=date(2024, 3, 5),
        status=LetterStatus.IN_PROGRESS,
        comment="Ждём ответ",
        owner=Identity(id="user-1", email="ivan@example.com", name="ivan"),
        owner_id="user-1",
        files=[Attachment(id="f1", name="scan.pdf"), Attachment(id="f2", name="reply.docx")],
        updated_at=UPDATED,
    )
    values.update(overrides)
    return Letter(**values)


def _rendered(cells):
    return [render(cell) for cell in cells]


def test_encode_letter_fills_business_and_bookkeeping_columns() -> None:
    cells = encode_letter(_letter(), separator=";", base_url="https://letters.example.com/")

    assert len(cells) == TOTAL_COLUMNS
    assert cells[:3] == ["12/345", "Минфин", "05.03.2024"]
    assert cells[COL_DEADLINE] == ""
    assert cells[COL_STATUS] == "взято в работу"
    assert cells[COL_OWNER] == "ivan@example.com"
    assert cells[COL_ID] == "letter-1"
    assert cells[COL_UPDATED_AT] == "2024-03-11T09:30:00.000Z"
    assert cells[COL_CONFLICT] == ""
    assert encode_letter(_letter(), conflict=True)[COL_CONFLICT] == "CONFLICT"


def test_build_file_cell_joins_hyperlinks_with_line_breaks() -> None:
    files = [Attachment(id="f1", name="scan.pdf"), Attachment(id="f2", name='Ответ "итог".docx')]

    cell = build_file_cell(files, separator=",", base_url="https://letters.example.com")

    assert cell == (
        '=HYPERLINK("https://letters.example.com/api/files/f1","scan.pdf")'
        " & CHAR(10) & "
        'HYPERLINK("https://letters.example.com/api/files/f2","Ответ ""итог"".docx")'
    )
    assert build_file_cell([]) == ""


def test_build_file_cell_uses_stored_url_without_base() -> None:
    files = [Attachment(id="f1", name="scan.pdf", url="https://cdn.example.com/scan.pdf")]

    assert build_file_cell(files) == '=HYPERLINK("https://cdn.example.com/scan.pdf";"scan.pdf")'


def test_parse_sheet_date_accepts_known_formats() -> None:
    assert parse_sheet_date("05.03.2024") == date(2024, 3, 5)
    assert parse_sheet_date("5/3/2024") == date(2024, 3, 5)
    assert parse_sheet_date("2024-03-05") == date(2024, 3, 5)
    assert parse_sheet_date("March 5, 2024") == date(2024, 3, 5)


def test_parse_sheet_date_rejects_invalid_values() -> None:
    assert parse_sheet_date("31.02.2024") is None
    assert parse_sheet_date("") is None
    assert parse_sheet_date("не дата") is None


def test_add_working_days_skips_weekends() -> None:
    assert add_working_days(date(2024, 3, 10), 7) == date(2024, 3, 19)
    assert add_working_days(date(2024, 3, 8), 1) == date(2024, 3, 11)
    assert add_working_days(date(2024, 3, 8), 0) == date(2024, 3, 8)


def test_status_labels_are_case_insensitive_with_fallback() -> None:
    assert status_from_label("ГОТОВО") is LetterStatus.READY
    assert status_from_label(" на уточнении ") is LetterStatus.CLARIFICATION
    assert status_from_label("В архиве") is LetterStatus.NOT_REVIEWED
    assert status_from_label("") is LetterStatus.NOT_REVIEWED


def test_write_segments_skip_deadline_column() -> None:
    assert WRITE_SEGMENTS == ((0, 2), (4, 20))


def test_normalize_owner_value() -> None:
    assert normalize_owner_value("  Иван   Петров ") == "иван петров"
    assert normalize_owner_value("Ivan@Example.COM") == "ivan@example.com"
    assert normalize_owner_value("   ") is None


def test_projection_of_written_row_matches_letter() -> None:
    letter = _letter()
    row = decode_row(_rendered(encode_letter(letter, base_url="https://letters.example.com")), 2)

    assert row.cell(COL_FILES) == "scan.pdf\nreply.docx"
    assert diff_projections(sheet_projection(row), letter_projection(letter)) == {}
    assert bookkeeping_matches(row, letter)


def test_projection_ignores_date_spelling_and_owner_case() -> None:
    letter = _letter(files=[])
    cells = _rendered(encode_letter(letter))
    cells[2] = "2024-03-05"
    cells[COL_OWNER] = "IVAN@example.com"
    cells[COL_DEADLINE] = "15.03.2024"

    row = decode_row(cells, 2)

    assert diff_projections(sheet_projection(row), letter_projection(letter)) == {}


def test_projection_reports_changed_fields() -> None:
    letter = _letter(files=[])
    cells = _rendered(encode_letter(letter))
    cells[13] = "Ответ получен"
    cells[COL_STATUS] = "Неизвестно"

    diffs = diff_projections(sheet_projection(decode_row(cells, 2)), letter_projection(letter))

    assert diffs == {
        "comment": ("Ждём ответ", "Ответ получен"),
        "status": ("взято в работу", "неизвестно"),
    }


def test_bookkeeping_mismatch_detected() -> None:
    letter = _letter()
    cells = _rendered(encode_letter(letter))
    cells[COL_UPDATED_AT] = "2024-03-01T00:00:00Z"

    assert not bookkeeping_matches(decode_row(cells, 2), letter)


def test_letter_fields_from_row_derives_deadline_and_defaults() -> None:
    cells = [""] * TOTAL_COLUMNS
    cells[0] = "77/1"
    cells[2] = "10.03.2024"
    cells[COL_STATUS] = "что-то новое"

    fields = letter_fields_from_row(
        decode_row(cells, 4), owner_id=None, deadline_working_days=7, today=date(2024, 4, 1)
    )

    assert fields["number"] == "77/1"
    assert fields["date"] == date(2024, 3, 10)
    assert fields["deadline_date"] == date(2024, 3, 19)
    assert fields["status"] is LetterStatus.NOT_REVIEWED
    assert fields["comment"] is None


def test_letter_fields_from_row_falls_back_to_today() -> None:
    cells = [""] * TOTAL_COLUMNS
    cells[0] = "77/2"
    cells[2] = "когда-нибудь"
    cells[COL_DEADLINE] = "01.04.2024"

    fields = letter_fields_from_row(
        decode_row(cells, 5), owner_id="user-9", deadline_working_days=7, today=date(2024, 3, 28)
    )

    assert fields["date"] == date(2024, 3, 28)
    assert fields["deadline_date"] == date(2024, 4, 1)
    assert fields["owner_id"] == "user-9"


def test_decode_row_pads_short_rows() -> None:
    row = decode_row([" 1/2 ", "Org"], 3)

    assert len(row.cells) == TOTAL_COLUMNS
    assert row.number == "1/2"
    assert row.record_id == ""
    assert not row.is_blank
    assert decode_row([], 4).is_blank
