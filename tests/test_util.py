from datetime import date, datetime

import pytest

from api.utils.util import (
    day_bounds,
    generate_secure_password,
    is_valid_serial,
    month_range,
    normalize_search,
    normalize_serial,
    parse_local_date,
)


def test_normalize_search_folds_diacritics():
    assert normalize_search("  Łódź   Piłsudskiego ") == "lodz pilsudskiego"
    assert normalize_search("Gdańsk") == "gdansk"
    assert normalize_search(None) == ""


@pytest.mark.parametrize("serial, valid", [
    ("ABC-123", True),
    ("00:1A:2B", True),
    ("AB 12", False),
    ("SN_1", False),
    ("", False),
])
def test_serial_format(serial, valid):
    assert is_valid_serial(serial) is valid


def test_normalize_serial():
    assert normalize_serial(" sn-01 ") == "SN-01"
    assert normalize_serial(None) == ""


def test_month_range_handles_leap_years():
    assert month_range(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_range(2026, 12) == (date(2026, 12, 1), date(2026, 12, 31))


def test_day_bounds_cover_whole_days():
    start, end = day_bounds(date(2026, 10, 1), date(2026, 10, 31))
    assert start == datetime(2026, 10, 1)
    assert end == datetime(2026, 11, 1)


def test_parse_local_date():
    assert parse_local_date("2026-03-29") == date(2026, 3, 29)
    with pytest.raises(ValueError):
        parse_local_date("29.03.2026")


def test_generated_password_mixes_character_classes():
    password = generate_secure_password()
    assert len(password) == 12
    assert any(c.isupper() for c in password)
    assert any(c.islower() for c in password)
    assert any(c.isdigit() for c in password)
    assert any(c in "!@#$%^&*" for c in password)
