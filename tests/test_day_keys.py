from datetime import date, datetime, timedelta, timezone

import pytest

from backend.day_keys import days_between, format_day, normalize_day, parse_optional_day, shift_day, to_storage_datetime
from backend.errors import ValidationError


def test_plain_day_string_is_read_literally():
    assert normalize_day('2025-01-02') == date(2025, 1, 2)


def test_timestamp_keeps_its_own_calendar_date():
    # Late evening west of UTC is already the next day in UTC; the key must not shift.
    assert normalize_day('2025-01-02T23:30:00-05:00') == date(2025, 1, 2)
    assert normalize_day('2025-01-02T00:00:00Z') == date(2025, 1, 2)


def test_datetime_values_drop_time_of_day():
    aware = datetime(2025, 3, 9, 22, 15, tzinfo=timezone(timedelta(hours=-8)))
    assert normalize_day(aware) == date(2025, 3, 9)
    assert normalize_day(datetime(2025, 3, 9, 1, 0)) == date(2025, 3, 9)


def test_normalize_is_idempotent():
    once = normalize_day('2024-02-29T12:00:00+02:00')
    assert normalize_day(once) == once
    assert normalize_day(format_day(once)) == once


@pytest.mark.parametrize('raw', ['2025-02-30', 'tomorrow', '', None, 20250101, '01/02/2025'])
def test_invalid_input_is_a_validation_error(raw):
    with pytest.raises(ValidationError):
        normalize_day(raw)


def test_optional_day_accepts_blank():
    assert parse_optional_day(None) is None
    assert parse_optional_day('') is None
    assert parse_optional_day('2025-05-01') == date(2025, 5, 1)


def test_storage_form_is_utc_midnight():
    stored = to_storage_datetime(date(2025, 1, 2))
    assert stored.isoformat() == '2025-01-02T00:00:00+00:00'


def test_day_arithmetic():
    assert shift_day(date(2024, 12, 31), 1) == date(2025, 1, 1)
    assert days_between(date(2025, 1, 1), date(2025, 1, 10)) == 9
    assert days_between(date(2025, 1, 10), date(2025, 1, 1)) == -9
