from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from scout.dates import extract_time, find_inline_date, is_date_line, match_month, normalize_date

VILNIUS = ZoneInfo("Europe/Vilnius")
DECEMBER = datetime(2025, 12, 20, 12, 0, tzinfo=VILNIUS)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Doors: 7 PM", "19:00"),
        ("7:30 PM", "19:30"),
        ("19:00", "19:00"),
        ("12 PM", "12:00"),
        ("12 AM", "00:00"),
        ("Pradžia 9:05", "09:05"),
        ("Doors 18:00, show 9 pm", "21:00"),
    ],
)
def test_extract_time(text: str, expected: str) -> None:
    assert extract_time(text) == expected


@pytest.mark.parametrize("text", ["", "Bilietai nuo 12.50 €", "Room 1234"])
def test_extract_time_none(text: str) -> None:
    assert extract_time(text) is None


@pytest.mark.parametrize(
    "line",
    ["JAN 15", "Sausio 15 d.", "Šeštadienis, spalio 4, 19:00", "2025 m. vasario 3 d.", "15 Jan"],
)
def test_date_lines(line: str) -> None:
    assert is_date_line(line)


@pytest.mark.parametrize("line", ["Concert Name", "Some Club", "Žalgirio arena, Kaunas"])
def test_non_date_lines(line: str) -> None:
    assert not is_date_line(line)


def test_match_month_prefers_table_order() -> None:
    assert match_month("Gruodžio 5") == 12
    assert match_month("JAN 15") == 1
    assert match_month("nothing here") is None


def test_find_inline_date() -> None:
    assert find_inline_date("Join us on January 3rd at 9 PM") == "January 3rd"
    assert find_inline_date("no dates in this text") is None


def test_normalize_lithuanian_month_with_time() -> None:
    now = datetime(2025, 1, 2, 10, 0, tzinfo=VILNIUS)
    result = normalize_date("Sausio 15", "19:00", now=now)
    assert result == datetime(2025, 1, 15, 19, 0, tzinfo=VILNIUS)


def test_normalize_defaults_to_evening() -> None:
    now = datetime(2025, 3, 1, 10, 0, tzinfo=VILNIUS)
    result = normalize_date("Kovo 8", None, now=now)
    assert (result.hour, result.minute) == (19, 0)


def test_year_rollover_for_earlier_month() -> None:
    result = normalize_date("Sausio 15", "19:00", now=DECEMBER)
    assert result == datetime(2026, 1, 15, 19, 0, tzinfo=VILNIUS)


def test_current_month_never_rolls() -> None:
    result = normalize_date("Gruodžio 5", "20:00", now=DECEMBER)
    assert result == datetime(2025, 12, 5, 20, 0, tzinfo=VILNIUS)


def test_explicit_year_is_kept() -> None:
    result = normalize_date("2025 m. vasario 3 d.", None, now=DECEMBER)
    assert result == datetime(2025, 2, 3, 19, 0, tzinfo=VILNIUS)


def test_day_is_clamped_to_month_length() -> None:
    result = normalize_date("2026 vasario 31", None, now=DECEMBER)
    assert result.date() == datetime(2026, 2, 28).date()


def test_iso_instant_is_used_directly() -> None:
    result = normalize_date("2026-03-14T20:00:00+02:00", "10:00", now=DECEMBER)
    assert result == datetime.fromisoformat("2026-03-14T20:00:00+02:00")


def test_iso_date_uses_time_raw() -> None:
    result = normalize_date("2026-03-14", "18:30", now=DECEMBER)
    assert result == datetime(2026, 3, 14, 18, 30, tzinfo=VILNIUS)


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_empty_date_is_none(raw) -> None:
    assert normalize_date(raw, "19:00", now=DECEMBER) is None


def test_unrecognised_text_falls_back_to_today() -> None:
    result = normalize_date("netrukus", None, now=DECEMBER)
    assert result == datetime(2025, 12, 20, 19, 0, tzinfo=VILNIUS)


def test_dotted_time_on_date_line() -> None:
    assert extract_time("Jazz Night\nSpalio 4, 19.30\nLoftas") == "19:30"
    assert extract_time("Jazz Night\nnuo 19.30\nLoftas") is None


def test_dotted_time_is_not_taken_for_the_day() -> None:
    now = datetime(2025, 9, 1, 10, 0, tzinfo=VILNIUS)
    result = normalize_date("Spalio 4, 19.30", "19:30", now=now)
    assert result == datetime(2025, 10, 4, 19, 30, tzinfo=VILNIUS)
