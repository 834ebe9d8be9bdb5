"""
Recurrence rules and their evaluation.

A rule is one of three value types: ``Daily``, ``EveryNDays`` and
``DaysOfWeek``. Weekdays are numbered 0 (Sunday) through 6 (Saturday).
Expansion is always bounded by a caller-supplied window, so a series with no
end day costs no more than the days being looked at.
"""
from dataclasses import dataclass, field
from datetime import timedelta

from backend.day_keys import days_between
from backend.errors import ValidationError

FREQ_DAILY = 'daily'
FREQ_EVERY_N_DAYS = 'every_n_days'
FREQ_DAYS_OF_WEEK = 'days_of_week'
ALLOWED_FREQUENCIES = {FREQ_DAILY, FREQ_EVERY_N_DAYS, FREQ_DAYS_OF_WEEK}

# Spellings used by older clients.
FREQUENCY_ALIASES = {
    'everyxdays': FREQ_EVERY_N_DAYS,
    'every_x_days': FREQ_EVERY_N_DAYS,
    'daysofweek': FREQ_DAYS_OF_WEEK,
    'weekly': FREQ_DAYS_OF_WEEK,
}

WEEKDAY_LABELS = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']


@dataclass(frozen=True)
class Daily:
    frequency = FREQ_DAILY


@dataclass(frozen=True)
class EveryNDays:
    interval: int
    frequency = FREQ_EVERY_N_DAYS

    def __post_init__(self):
        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise ValidationError('Interval must be a whole number of days, at least 1')


@dataclass(frozen=True)
class DaysOfWeek:
    days: frozenset = field(default_factory=frozenset)
    frequency = FREQ_DAYS_OF_WEEK

    def __post_init__(self):
        days = frozenset(self.days)
        if not days:
            raise ValidationError('Pick at least one day of the week')
        for day in days:
            if isinstance(day, bool) or not isinstance(day, int) or not (0 <= day <= 6):
                raise ValidationError('Days of week must be between 0 (Sunday) and 6 (Saturday)')
        object.__setattr__(self, 'days', days)


def weekday_index(day_value):
    """Weekday with Sunday as 0."""
    return (day_value.weekday() + 1) % 7


def _unknown_rule(rule):
    return TypeError(f'Unsupported recurrence rule: {rule!r}')


def matches(day_value, rule, anchor):
    """True when ``day_value`` is an occurrence of ``rule`` anchored at ``anchor``."""
    if day_value < anchor:
        return False
    if isinstance(rule, Daily):
        return True
    if isinstance(rule, EveryNDays):
        return days_between(anchor, day_value) % rule.interval == 0
    if isinstance(rule, DaysOfWeek):
        return weekday_index(day_value) in rule.days
    raise _unknown_rule(rule)


def expand(rule, anchor, series_end, window_start, window_end):
    """Yield matching days in the window, ascending, clipped to the series bounds."""
    first = max(anchor, window_start)
    last = window_end if series_end is None else min(series_end, window_end)
    if first > last:
        return

    if isinstance(rule, Daily):
        step = 1
    elif isinstance(rule, EveryNDays):
        step = rule.interval
        offset = days_between(anchor, first) % step
        if offset:
            first += timedelta(days=step - offset)
    elif isinstance(rule, DaysOfWeek):
        step = 1
    else:
        raise _unknown_rule(rule)

    current = first
    while current <= last:
        if matches(current, rule, anchor):
            yield current
        current += timedelta(days=step)


def occurs_on(series, day_value):
    """Check a day against a series' rule and its start/end bounds."""
    if series.end_day and day_value > series.end_day:
        return False
    return matches(day_value, series.rule, series.start_day)


def next_occurrence(rule, anchor, after, series_end=None):
    """First occurrence strictly after ``after``; the anchor itself if ``after`` precedes it."""
    if after < anchor:
        candidate = anchor
    elif isinstance(rule, Daily):
        candidate = after + timedelta(days=1)
    elif isinstance(rule, EveryNDays):
        elapsed = days_between(anchor, after)
        steps = elapsed // rule.interval + 1
        candidate = anchor + timedelta(days=steps * rule.interval)
    elif isinstance(rule, DaysOfWeek):
        candidate = None
        for offset in range(1, 8):
            probe = after + timedelta(days=offset)
            if weekday_index(probe) in rule.days:
                candidate = probe
                break
    else:
        raise _unknown_rule(rule)

    if candidate is None or (series_end and candidate > series_end):
        return None
    return candidate


def describe_rule(rule):
    if isinstance(rule, Daily):
        return 'Daily'
    if isinstance(rule, EveryNDays):
        if rule.interval == 1:
            return 'Daily'
        return f'Every {rule.interval} days'
    if isinstance(rule, DaysOfWeek):
        if len(rule.days) == 7:
            return 'Every day of the week'
        return 'Weekly on ' + ', '.join(WEEKDAY_LABELS[d] for d in sorted(rule.days))
    raise _unknown_rule(rule)


def normalize_frequency(raw):
    freq = str(raw or '').strip().lower()
    freq = FREQUENCY_ALIASES.get(freq, freq)
    if freq not in ALLOWED_FREQUENCIES:
        raise ValidationError('Invalid frequency')
    return freq


def rule_from_fields(frequency, interval=None, days_of_week=None):
    """Build a rule from stored/request fields. ``days_of_week`` is an iterable of ints."""
    freq = normalize_frequency(frequency)
    if freq == FREQ_DAILY:
        return Daily()
    if freq == FREQ_EVERY_N_DAYS:
        if interval is None:
            raise ValidationError('Interval is required for every_n_days')
        return EveryNDays(interval)
    return DaysOfWeek(frozenset(days_of_week or ()))


def rule_to_fields(rule):
    """Return ``(frequency, interval, days_of_week)`` column values for a rule."""
    if isinstance(rule, Daily):
        return FREQ_DAILY, 1, None
    if isinstance(rule, EveryNDays):
        return FREQ_EVERY_N_DAYS, rule.interval, None
    if isinstance(rule, DaysOfWeek):
        return FREQ_DAYS_OF_WEEK, 1, ','.join(str(d) for d in sorted(rule.days))
    raise _unknown_rule(rule)
