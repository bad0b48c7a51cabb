import pytest

from sessionbook.shared.validators import (
    decode_list_field,
    hhmm_to_minutes,
    parse_hhmm,
    parse_month,
    validate_duration,
    validate_email,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, []),
        ("", []),
        (["English", " Spanish "], ["English", "Spanish"]),
        ('["English", "French"]', ["English", "French"]),
        ("English, French ,", ["English", "French"]),
        ("[not json", ["[not json"]),
    ],
)
def test_decode_list_field_always_returns_list(raw, expected) -> None:
    assert decode_list_field(raw) == expected


def test_parse_hhmm_accepts_24_hour_times() -> None:
    assert parse_hhmm("09:30") == (9, 30)
    assert hhmm_to_minutes("23:59") == 23 * 60 + 59


@pytest.mark.parametrize("value", ["9:30", "24:00", "12:60", "noon", ""])
def test_parse_hhmm_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValueError):
        parse_hhmm(value)


def test_parse_month() -> None:
    assert parse_month("2026-03") == (2026, 3)
    with pytest.raises(ValueError):
        parse_month("2026-13")


def test_validate_email_normalizes_case_and_whitespace() -> None:
    assert validate_email("  Ada@Example.COM ") == "ada@example.com"
    assert validate_email(None) is None


def test_validate_email_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        validate_email("not-an-email")


@pytest.mark.parametrize("minutes", [15, 30, 60])
def test_validate_duration_accepts_session_lengths(minutes: int) -> None:
    assert validate_duration(minutes) == minutes


def test_validate_duration_rejects_other_lengths() -> None:
    with pytest.raises(ValueError):
        validate_duration(45)
