"""Occurrence route handlers: the merged calendar window and per-occurrence changes."""

from backend.day_keys import normalize_day


def list_occurrences():
    import app as a
    effective_occurrences = a.effective_occurrences
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    start_raw = request.args.get('start')
    end_raw = request.args.get('end')
    if not start_raw or not end_raw:
        return jsonify({'error': 'start and end are required'}), 400
    start_day = normalize_day(start_raw, field='start')
    end_day = normalize_day(end_raw, field='end')

    repo, ledger = get_calendar_store()
    with repo.unit_of_work(readonly=True):
        occurrences = effective_occurrences(
            repo,
            ledger,
            user.id,
            start_day,
            end_day,
            max_window_days=a.app.config['CALENDAR_MAX_WINDOW_DAYS'],
        )
    return jsonify([occ.to_dict() for occ in occurrences])


def create_occurrence():
    import app as a
    create_independent_event = a.create_independent_event
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = request.get_json(silent=True) or {}
    raw_day = data.get('day') or data.get('date')
    if not raw_day:
        return jsonify({'error': 'day is required'}), 400
    fields = a.parse_content_fields(data)
    fields['color'] = fields.get('color') or a.app.config['DEFAULT_EVENT_COLOR']

    repo, _ = get_calendar_store()
    event = create_independent_event(repo, user.id, normalize_day(raw_day), fields)
    return jsonify(event.to_dict()), 201


def update_occurrence(identity):
    """PATCH one occurrence.

    ``completed`` toggles completion. Content fields (title, description,
    color, day) are an edit applied at ``scope``; for ``future``/``all`` the
    rule and series bounds may be changed too. Both may be sent at once.
    """
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    data = request.get_json(silent=True) or {}
    scope = a.parse_scope(data.get('scope'))
    repo, ledger = get_calendar_store()
    series = None
    if scope != 'this':
        ref = a.parse_occurrence_identity(identity)
        series_id = ref.series_id
        if not ref.is_virtual:
            row = repo.get_occurrence(user.id, ref.occurrence_id)
            series_id = row.recurrence_id if row else None
        series = repo.get_series(user.id, series_id) if series_id else None
    if series is None:
        fields = a.parse_occurrence_fields(data)
    else:
        # Rule keys left out fall back to the stored rule.
        fields = a.parse_series_fields(data, series)
    completed = a.parse_bool(data.get('completed')) if 'completed' in data else None
    if not fields and completed is None:
        return jsonify({'error': 'Nothing to update'}), 400

    result = a.update_occurrence(repo, ledger, user.id, identity, scope, fields, completed)
    return jsonify(result.to_dict())


def delete_occurrence(identity):
    import app as a
    get_calendar_store = a.get_calendar_store
    get_current_user = a.get_current_user
    jsonify = a.jsonify
    request = a.request
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    scope = a.parse_scope(request.args.get('scope'))
    repo, ledger = get_calendar_store()
    result = a.delete_occurrence(repo, ledger, user.id, identity, scope)
    return jsonify(result)
