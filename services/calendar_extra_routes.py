"""Recurring event (series) route handlers."""


def list_recurring_events():
    """List all recurring events for the current user."""
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    repo, _ = get_calendar_store()
    with repo.unit_of_work(readonly=True):
        result = [a.series_summary(series) for series in repo.list_series(user.id)]
    return jsonify(result)


def create_recurring_event():
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = request.get_json(silent=True) or {}
    start_raw = data.get('start_day') or data.get('day')
    if not start_raw:
        return jsonify({'error': 'start_day is required'}), 400
    rule = a.parse_rule_payload(data)
    start_day = a.normalize_day(start_raw, field='start_day')
    end_day = a.parse_optional_day(data.get('end_day'), field='end_day')
    fields = a.parse_content_fields(data)
    fields['color'] = fields.get('color') or a.app.config['DEFAULT_EVENT_COLOR']

    repo, _ = get_calendar_store()
    series = a.create_series(repo, user.id, rule, start_day, end_day, fields)
    return jsonify(a.series_summary(series)), 201


def recurring_event_detail(rec_id):
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    repo, _ = get_calendar_store()
    with repo.unit_of_work(readonly=True):
        series = repo.get_series(user.id, rec_id)
        if not series:
            return jsonify({'error': 'Recurring event not found'}), 404
        result = a.series_summary(series)
    return jsonify(result)


def update_recurring_event(rec_id):
    """Scoped edit: ``{"scope": ..., "event_date": ..., "updates": {...}}``."""
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = request.get_json(silent=True) or {}
    scope = a.parse_scope(data.get('scope'), default='all')
    updates = data.get('updates')
    if updates is None:
        updates = {k: v for k, v in data.items() if k not in ('scope', 'event_date')}
    if not isinstance(updates, dict) or not updates:
        return jsonify({'error': 'Nothing to update'}), 400

    repo, ledger = get_calendar_store()
    if scope == 'this':
        fields = a.parse_occurrence_fields(updates)
    else:
        series = repo.get_series(user.id, rec_id)
        if not series:
            return jsonify({'error': 'Recurring event not found'}), 404
        fields = a.parse_series_fields(updates, series)
    if not fields:
        return jsonify({'error': 'Nothing to update'}), 400

    result = a.edit_series(repo, ledger, user.id, rec_id, scope, data.get('event_date'), fields)
    if scope == 'this':
        return jsonify(result.to_dict())
    with repo.unit_of_work(readonly=True):
        summary = a.series_summary(result)
    return jsonify(summary)


def delete_recurring_event(rec_id):
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    scope = a.parse_scope(request.args.get('scope'), default='all')
    event_date = request.args.get('event_date') or None
    repo, ledger = get_calendar_store()
    result = a.delete_series(repo, ledger, user.id, rec_id, scope, event_date)
    return jsonify(result)
