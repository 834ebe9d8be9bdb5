from datetime import date
from types import SimpleNamespace

import pytest

from backend.errors import ValidationError
from backend.recurrence import (
    Daily, DaysOfWeek, EveryNDays, describe_rule, expand, matches, next_occurrence,
    occurs_on, rule_from_fields, rule_to_fields, weekday_index,
)

JAN_1 = date(2025, 1, 1)  # a Wednesday


def test_weekday_index_counts_from_sunday():
    assert weekday_index(date(2025, 1, 5)) == 0
    assert weekday_index(date(2025, 1, 6)) == 1
    assert weekday_index(date(2025, 1, 11)) == 6


def test_nothing_matches_before_the_anchor():
    assert not matches(date(2024, 12, 31), Daily(), JAN_1)
    assert matches(JAN_1, Daily(), JAN_1)


def test_every_n_days_expansion():
    days = list(expand(EveryNDays(3), JAN_1, None, JAN_1, date(2025, 1, 10)))
    assert days == [date(2025, 1, 1), date(2025, 1, 4), date(2025, 1, 7), date(2025, 1, 10)]


def test_every_n_days_aligns_when_window_starts_late():
    days = list(expand(EveryNDays(3), JAN_1, None, date(2025, 1, 5), date(2025, 1, 12)))
    assert days == [date(2025, 1, 7), date(2025, 1, 10)]


def test_days_of_week_expansion():
    rule = DaysOfWeek(frozenset({1, 3}))
    days = list(expand(rule, JAN_1, None, JAN_1, date(2025, 1, 10)))
    assert days == [date(2025, 1, 1), date(2025, 1, 6), date(2025, 1, 8)]


def test_expansion_stops_at_series_end():
    days = list(expand(Daily(), JAN_1, date(2025, 1, 3), JAN_1, date(2025, 1, 31)))
    assert days == [date(2025, 1, 1), date(2025, 1, 2), date(2025, 1, 3)]


def test_expansion_of_window_outside_series_is_empty():
    assert list(expand(Daily(), JAN_1, date(2025, 1, 3), date(2025, 2, 1), date(2025, 2, 5))) == []
    assert list(expand(Daily(), JAN_1, None, date(2024, 12, 1), date(2024, 12, 31))) == []


def test_open_ended_series_only_expands_the_window():
    days = list(expand(Daily(), date(2000, 1, 1), None, date(2100, 1, 1), date(2100, 1, 2)))
    assert days == [date(2100, 1, 1), date(2100, 1, 2)]


@pytest.mark.parametrize('build', [
    lambda: EveryNDays(0),
    lambda: EveryNDays(-2),
    lambda: EveryNDays(True),
    lambda: DaysOfWeek(frozenset()),
    lambda: DaysOfWeek(frozenset({7})),
])
def test_invalid_rules_fail_at_construction(build):
    with pytest.raises(ValidationError):
        build()


def test_unknown_rule_type_is_rejected():
    with pytest.raises(TypeError):
        matches(date(2025, 1, 2), object(), JAN_1)


def test_occurs_on_respects_end_day():
    series = SimpleNamespace(rule=Daily(), start_day=JAN_1, end_day=date(2025, 1, 3))
    assert occurs_on(series, date(2025, 1, 3))
    assert not occurs_on(series, date(2025, 1, 4))


def test_next_occurrence():
    assert next_occurrence(EveryNDays(3), JAN_1, date(2025, 1, 4)) == date(2025, 1, 7)
    assert next_occurrence(EveryNDays(3), JAN_1, date(2024, 12, 31)) == JAN_1
    assert next_occurrence(EveryNDays(3), JAN_1, date(2025, 1, 4), series_end=date(2025, 1, 5)) is None
    assert next_occurrence(DaysOfWeek(frozenset({1})), JAN_1, date(2025, 1, 6)) == date(2025, 1, 13)
    assert next_occurrence(Daily(), JAN_1, date(2025, 1, 1)) == date(2025, 1, 2)


def test_describe_rule():
    assert describe_rule(Daily()) == 'Daily'
    assert describe_rule(EveryNDays(3)) == 'Every 3 days'
    assert describe_rule(DaysOfWeek(frozenset({3, 1}))) == 'Weekly on Mon, Wed'


def test_rule_fields_conversion():
    assert rule_from_fields('everyXDays', 2) == EveryNDays(2)
    assert rule_from_fields('daily') == Daily()
    assert rule_to_fields(DaysOfWeek(frozenset({3, 1}))) == ('days_of_week', 1, '1,3')
    assert rule_to_fields(EveryNDays(5)) == ('every_n_days', 5, None)


def test_unknown_frequency_is_a_validation_error():
    with pytest.raises(ValidationError):
        rule_from_fields('monthly')
    with pytest.raises(ValidationError):
        rule_from_fields('every_n_days')
