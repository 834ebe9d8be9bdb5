from backend.day_keys import normalize_day, parse_optional_day
from backend.errors import ValidationError
from backend.mutations import ALLOWED_SCOPES, SCOPE_THIS
from backend.recurrence import FREQ_EVERY_N_DAYS, normalize_frequency, rule_from_fields


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_days_of_week(raw):
    """List or comma string of weekday numbers (0 = Sunday) -> sorted unique ints."""
    if raw is None or raw == '':
        return []
    if isinstance(raw, (list, tuple, set)):
        values = list(raw)
    else:
        values = str(raw).split(",")
    days = []
    for val in values:
        if isinstance(val, bool):
            raise ValidationError(f'Invalid day of week: {val!r}')
        if isinstance(val, str):
            val = val.strip()
            if not val:
                continue
        try:
            day = int(val)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid day of week: {val!r}') from None
        if not (0 <= day <= 6):
            raise ValidationError('Days of week must be between 0 (Sunday) and 6 (Saturday)')
        days.append(day)
    return sorted(set(days))


def parse_interval(raw):
    if raw is None or raw == '':
        return None
    if isinstance(raw, bool):
        raise ValidationError('Interval must be a whole number')
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError('Interval must be a whole number') from None


def parse_scope(raw, default=SCOPE_THIS):
    scope = str(raw or default).strip().lower()
    if scope not in ALLOWED_SCOPES:
        raise ValidationError(f'Invalid scope: {raw!r}')
    return scope


def parse_rule_payload(data):
    """Build a recurrence rule from ``frequency``/``interval``/``days_of_week`` keys."""
    frequency = normalize_frequency(data.get('frequency') or data.get('recurrence_type'))
    interval = parse_interval(data.get('interval'))
    if frequency == FREQ_EVERY_N_DAYS and interval is None:
        raise ValidationError('Interval is required for every_n_days')
    days = parse_days_of_week(data.get('days_of_week'))
    return rule_from_fields(frequency, interval, days)


def has_rule_fields(data):
    return any(key in data for key in ('frequency', 'recurrence_type', 'interval', 'days_of_week'))


def parse_content_fields(data):
    fields = {}
    if 'title' in data:
        fields['title'] = data.get('title')
    if 'description' in data:
        description = data.get('description')
        fields['description'] = description.strip() if isinstance(description, str) else description
    if 'color' in data:
        fields['color'] = (data.get('color') or '').strip() or None
    return fields


def parse_occurrence_fields(data):
    fields = parse_content_fields(data)
    if 'day' in data or 'date' in data:
        raw = data.get('day') if 'day' in data else data.get('date')
        fields['day'] = normalize_day(raw)
    return fields


def parse_series_fields(data, series=None):
    """Content, rule and bound updates for a series edit.

    Rule keys left out of ``data`` fall back to the series' stored values so a
    client can change only the interval or only the weekdays.
    """
    fields = parse_content_fields(data)
    if has_rule_fields(data):
        merged = {}
        if series is not None:
            merged = {
                'frequency': series.frequency,
                'interval': series.interval,
                'days_of_week': series.days_of_week,
            }
        merged.update({k: data[k] for k in ('frequency', 'recurrence_type', 'interval', 'days_of_week') if k in data})
        if 'recurrence_type' in data:
            merged['frequency'] = data['recurrence_type']
        fields['rule'] = parse_rule_payload(merged)
    if 'start_day' in data:
        fields['start_day'] = normalize_day(data.get('start_day'), field='start_day')
    if 'end_day' in data:
        fields['end_day'] = parse_optional_day(data.get('end_day'), field='end_day')
    return fields
