from datetime import date

import pytest

from backend.errors import ConflictError, NotFoundError, ValidationError
from backend.mutations import (
    create_independent_event, create_series, delete_occurrence, delete_series,
    edit_occurrence, edit_series, promote, series_summary, toggle_completion, update_occurrence,
)
from backend.occurrence_engine import effective_occurrences, make_virtual_id
from backend.recurrence import Daily, EveryNDays
from models import CalendarEvent, RecurrenceCompletion, RecurringEvent, db


def jan(d):
    return date(2025, 1, d)


def _series(repo, user, rule=None, start=None, end=None, title='Stretch'):
    return create_series(repo, user.id, rule or Daily(), start or jan(1), end, {'title': title})


def _by_day(store, user, start=jan(1), end=jan(10)):
    repo, ledger = store
    return {o.day: o for o in effective_occurrences(repo, ledger, user.id, start, end)}


def _series_rows(series_id):
    return CalendarEvent.query.filter_by(recurrence_id=series_id).all()


def test_completion_round_trip_restores_ledger(store, user):
    repo, ledger = store
    series = _series(repo, user)
    vid = make_virtual_id(series.id, jan(2))

    done = toggle_completion(repo, ledger, user.id, vid, True)
    assert done.completed and not done.is_generated
    assert ledger.is_completed(user.id, series.id, jan(2))
    assert _series_rows(series.id)[0].completed_at is not None

    undone = toggle_completion(repo, ledger, user.id, vid, False)
    assert not undone.completed
    assert not ledger.is_completed(user.id, series.id, jan(2))
    row = _series_rows(series.id)[0]
    assert row.completed is False
    assert row.completed_at is None
    assert RecurrenceCompletion.query.count() == 0


def test_repeated_toggles_do_not_duplicate(store, user):
    repo, ledger = store
    series = _series(repo, user)
    vid = make_virtual_id(series.id, jan(3))
    toggle_completion(repo, ledger, user.id, vid, True)
    toggle_completion(repo, ledger, user.id, vid, True)

    assert len(_series_rows(series.id)) == 1
    assert RecurrenceCompletion.query.count() == 1


def test_toggle_independent_event_uses_its_own_flag(store, user):
    repo, ledger = store
    event = create_independent_event(repo, user.id, jan(4), {'title': 'Call mom'})
    result = toggle_completion(repo, ledger, user.id, str(event.id), True)
    assert result.completed
    assert RecurrenceCompletion.query.count() == 0
    assert db.session.get(CalendarEvent, event.id).completed_at is not None


def test_promotion_retries_the_find_after_losing_the_insert(store, user, monkeypatch):
    repo, ledger = store
    series = _series(repo, user)
    promote(repo, ledger, user.id, series, jan(2))
    repo.session.commit()

    real_find = repo.find_series_occurrence
    calls = {'n': 0}

    def stale_find(user_id, series_id, day):
        # The first two reads miss the row another request just inserted.
        calls['n'] += 1
        if calls['n'] <= 2:
            return None
        return real_find(user_id, series_id, day)

    monkeypatch.setattr(repo, 'find_series_occurrence', stale_find)
    result = toggle_completion(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), True)

    assert result.completed
    assert calls['n'] >= 3
    assert len(_series_rows(series.id)) == 1


def test_unresolvable_promotion_is_a_conflict(store, user, monkeypatch):
    repo, ledger = store
    series = _series(repo, user)
    promote(repo, ledger, user.id, series, jan(2))
    repo.session.commit()

    monkeypatch.setattr(repo, 'find_series_occurrence', lambda *args: None)
    with pytest.raises(ConflictError):
        with repo.unit_of_work():
            repo.upsert_occurrence(user.id, series.id, jan(2), {'title': 'x'})
    assert len(_series_rows(series.id)) == 1


def test_second_independent_event_on_a_day_conflicts(store, user):
    repo, _ = store
    create_independent_event(repo, user.id, date(2025, 2, 1), {'title': 'First'})
    with pytest.raises(ConflictError):
        create_independent_event(repo, user.id, date(2025, 2, 1), {'title': 'Second'})
    assert CalendarEvent.query.filter_by(user_id=user.id).count() == 1


def test_unique_index_backs_the_independent_day_rule(store, user):
    repo, _ = store
    create_independent_event(repo, user.id, jan(5), {'title': 'First'})
    with pytest.raises(ConflictError):
        with repo.unit_of_work():
            repo.add_occurrence(CalendarEvent(user_id=user.id, day=jan(5), title='Sneaky'))
    assert CalendarEvent.query.count() == 1


def test_creation_validation(store, user):
    repo, _ = store
    with pytest.raises(ValidationError):
        create_series(repo, user.id, Daily(), jan(5), jan(4), {'title': 'Backwards'})
    with pytest.raises(ValidationError):
        create_series(repo, user.id, Daily(), jan(5), None, {'title': '   '})
    with pytest.raises(ValidationError):
        create_independent_event(repo, user.id, 'soon', {'title': 'Bad day'})
    assert RecurringEvent.query.count() == 0


def test_this_delete_is_idempotent(store, user):
    repo, ledger = store
    series = _series(repo, user)
    vid = make_virtual_id(series.id, jan(2))
    delete_occurrence(repo, ledger, user.id, vid, 'this')
    first = [(r.day, r.is_tombstone) for r in _series_rows(series.id)]
    delete_occurrence(repo, ledger, user.id, vid, 'this')
    assert [(r.day, r.is_tombstone) for r in _series_rows(series.id)] == first == [(jan(2), True)]


def test_this_delete_turns_an_override_into_a_tombstone(store, user):
    repo, ledger = store
    series = _series(repo, user)
    vid = make_virtual_id(series.id, jan(2))
    edited = edit_occurrence(repo, ledger, user.id, vid, 'this', {'title': 'Longer stretch'})
    delete_occurrence(repo, ledger, user.id, edited.id, 'this')

    rows = _series_rows(series.id)
    assert len(rows) == 1 and rows[0].is_tombstone
    assert jan(2) not in _by_day(store, user)


def test_tombstone_is_terminal(store, user):
    repo, ledger = store
    series = _series(repo, user)
    vid = make_virtual_id(series.id, jan(2))
    delete_occurrence(repo, ledger, user.id, vid, 'this')

    with pytest.raises(NotFoundError):
        toggle_completion(repo, ledger, user.id, vid, True)
    with pytest.raises(NotFoundError):
        edit_occurrence(repo, ledger, user.id, vid, 'this', {'title': 'Back again'})
    tombstone_id = str(_series_rows(series.id)[0].id)
    with pytest.raises(NotFoundError):
        toggle_completion(repo, ledger, user.id, tombstone_id, True)


def test_missing_targets_are_not_found(store, user, other_user):
    repo, ledger = store
    series = _series(repo, user, rule=EveryNDays(3))
    with pytest.raises(NotFoundError):
        toggle_completion(repo, ledger, user.id, 'recurring_999_2025-01-01', True)
    with pytest.raises(NotFoundError):
        toggle_completion(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), True)
    with pytest.raises(NotFoundError):
        delete_occurrence(repo, ledger, other_user.id, make_virtual_id(series.id, jan(1)), 'all')
    with pytest.raises(NotFoundError):
        edit_occurrence(repo, ledger, user.id, '12345', 'this', {'title': 'Ghost'})
    assert CalendarEvent.query.count() == 0


def test_invalid_scope(store, user):
    repo, ledger = store
    series = _series(repo, user)
    with pytest.raises(ValidationError):
        delete_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(1)), 'everything')


def test_future_edit_purges_rows_from_the_pivot(store, user):
    repo, ledger = store
    series = _series(repo, user)
    delete_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), 'this')
    edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(5)), 'this', {'title': 'Override'})

    edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(4)), 'future', {'title': 'Yoga'})

    assert [(r.day, r.is_tombstone) for r in _series_rows(series.id)] == [(jan(2), True)]
    days = _by_day(store, user, jan(1), jan(6))
    assert sorted(days) == [jan(1), jan(3), jan(4), jan(5), jan(6)]
    assert days[jan(5)].is_generated
    assert {o.title for o in days.values()} == {'Yoga'}


def test_future_edit_can_change_the_rule(store, user):
    repo, ledger = store
    series = _series(repo, user)
    result = edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(1)), 'future',
                             {'rule': EveryNDays(2)})
    assert result.frequency == 'every_n_days'
    assert sorted(_by_day(store, user, jan(1), jan(6))) == [jan(1), jan(3), jan(5)]


def test_completion_survives_purge(store, user):
    repo, ledger = store
    series = _series(repo, user)
    toggle_completion(repo, ledger, user.id, make_virtual_id(series.id, jan(5)), True)
    edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(4)), 'future', {'color': '#ff0000'})

    assert _series_rows(series.id) == []
    day = _by_day(store, user)[jan(5)]
    assert day.is_generated and day.completed
    assert day.color == '#ff0000'


def test_all_edit_removes_every_exception(store, user):
    repo, ledger = store
    series = _series(repo, user)
    delete_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), 'this')
    edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(7)), 'all', {'title': 'Renamed'})

    assert _series_rows(series.id) == []
    days = _by_day(store, user, jan(1), jan(3))
    assert sorted(days) == [jan(1), jan(2), jan(3)]


def test_all_edit_rejects_inverted_bounds(store, user):
    repo, ledger = store
    series = _series(repo, user, start=jan(5))
    with pytest.raises(ValidationError):
        edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(5)), 'all', {'end_day': jan(1)})
    assert repo.get_series(user.id, series.id).end_day is None


def test_all_delete_removes_series_rows_and_ledger(store, user):
    repo, ledger = store
    series = _series(repo, user)
    series_id = series.id
    toggle_completion(repo, ledger, user.id, make_virtual_id(series_id, jan(3)), True)
    delete_occurrence(repo, ledger, user.id, make_virtual_id(series_id, jan(2)), 'this')

    result = delete_occurrence(repo, ledger, user.id, make_virtual_id(series_id, jan(6)), 'all')

    assert result['deleted'] == 'series'
    assert db.session.get(RecurringEvent, series_id) is None
    assert _series_rows(series_id) == []
    assert RecurrenceCompletion.query.count() == 0


def test_future_delete_from_first_day_removes_the_series(store, user):
    repo, ledger = store
    series = _series(repo, user)
    result = delete_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(1)), 'future')
    assert result['deleted'] == 'series'
    assert RecurringEvent.query.count() == 0


def test_moving_a_series_day_detaches_it(store, user):
    repo, ledger = store
    series = _series(repo, user, end=jan(5))
    toggle_completion(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), True)

    moved = edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), 'this', {'day': jan(8)})

    assert moved.recurrence_id is None
    assert moved.day == jan(8)
    assert moved.title == 'Stretch'
    assert moved.completed
    days = _by_day(store, user)
    assert jan(2) not in days
    assert not days[jan(8)].is_generated
    assert not ledger.is_completed(user.id, series.id, jan(2))


def test_moving_onto_an_occupied_day_changes_nothing(store, user):
    repo, ledger = store
    series = _series(repo, user)
    create_independent_event(repo, user.id, jan(8), {'title': 'Busy'})
    with pytest.raises(ConflictError):
        edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), 'this', {'day': jan(8)})
    assert _series_rows(series.id) == []


def test_editing_an_independent_event_ignores_scope(store, user):
    repo, ledger = store
    event = create_independent_event(repo, user.id, jan(3), {'title': 'Dentist'})
    create_independent_event(repo, user.id, jan(4), {'title': 'Taken'})

    result = edit_occurrence(repo, ledger, user.id, str(event.id), 'all', {'title': 'Orthodontist', 'day': jan(6)})
    assert (result.title, result.day) == ('Orthodontist', jan(6))
    with pytest.raises(ConflictError):
        edit_occurrence(repo, ledger, user.id, str(event.id), 'this', {'day': jan(4)})

    delete_occurrence(repo, ledger, user.id, str(event.id), 'future')
    assert CalendarEvent.query.count() == 1


def test_series_wrappers_need_a_pivot_for_narrow_scopes(store, user):
    repo, ledger = store
    series = _series(repo, user)
    with pytest.raises(ValidationError):
        edit_series(repo, ledger, user.id, series.id, 'this', None, {'title': 'Nope'})
    with pytest.raises(ValidationError):
        delete_series(repo, ledger, user.id, series.id, 'future', None)

    updated = edit_series(repo, ledger, user.id, series.id, 'all', None, {'title': 'Mobility'})
    assert updated.title == 'Mobility'
    override = edit_series(repo, ledger, user.id, series.id, 'this', '2025-01-03', {'title': 'Rest'})
    assert override.day == jan(3) and override.title == 'Rest'

    result = delete_series(repo, ledger, user.id, series.id, 'future', '2025-01-05')
    assert result['end_day'] == '2025-01-04'


def test_series_summary(store, user):
    repo, _ = store
    series = _series(repo, user, rule=EveryNDays(3), end=jan(10))
    summary = series_summary(series, today=jan(5))
    assert summary['recurrence_label'] == 'Every 3 days'
    assert summary['next_occurrence'] == '2025-01-07'
    assert series_summary(series, today=jan(11))['next_occurrence'] is None
    assert series_summary(series, today=jan(4))['next_occurrence'] == '2025-01-04'


def test_edits_accept_day_strings(store, user):
    repo, ledger = store
    series = _series(repo, user, end=jan(10))
    result = edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(4)), 'all',
                             {'start_day': '2025-01-03', 'end_day': '2025-01-06'})
    assert (result.start_day, result.end_day) == (jan(3), jan(6))
    assert sorted(_by_day(store, user)) == [jan(3), jan(4), jan(5), jan(6)]

    moved = edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(5)), 'this',
                            {'day': '2025-01-09'})
    assert moved.recurrence_id is None
    assert moved.day == jan(9)

    event = create_independent_event(repo, user.id, jan(2), {'title': 'Dentist'})
    edited = edit_occurrence(repo, ledger, user.id, str(event.id), 'this', {'day': '2025-01-07'})
    assert edited.day == jan(7)

    updated = edit_series(repo, ledger, user.id, series.id, 'all', None, {'end_day': '2025-01-04'})
    assert updated.end_day == jan(4)


def test_edits_reject_malformed_day_strings(store, user):
    repo, ledger = store
    series = _series(repo, user)
    with pytest.raises(ValidationError):
        edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), 'all', {'start_day': 'soon'})
    with pytest.raises(ValidationError):
        edit_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(2)), 'this', {'day': '2025-02-30'})
    assert repo.get_series(user.id, series.id).start_day == jan(1)
    assert _series_rows(series.id) == []


def test_update_with_completion_is_all_or_nothing(store, user):
    repo, ledger = store
    series = _series(repo, user)
    vid = make_virtual_id(series.id, jan(2))

    # The new rule skips the day being completed, so the completion step fails.
    with pytest.raises(NotFoundError):
        update_occurrence(repo, ledger, user.id, vid, 'all', {'rule': EveryNDays(2)}, completed=True)

    stored = repo.get_series(user.id, series.id)
    assert stored.frequency == 'daily'
    assert _series_rows(series.id) == []
    assert RecurrenceCompletion.query.count() == 0


def test_update_edits_and_completes_together(store, user):
    repo, ledger = store
    series = _series(repo, user)
    result = update_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(3)), 'this',
                               {'title': 'Long stretch'}, completed=True)
    assert result.title == 'Long stretch'
    assert result.completed
    assert ledger.is_completed(user.id, series.id, jan(3))

    moved = update_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(4)), 'this',
                              {'day': jan(9)}, completed=True)
    assert moved.recurrence_id is None
    assert moved.day == jan(9) and moved.completed

    with pytest.raises(ValidationError):
        update_occurrence(repo, ledger, user.id, make_virtual_id(series.id, jan(5)), 'this')


def test_future_delete_past_the_end_keeps_the_end(store, user):
    repo, ledger = store
    series = _series(repo, user, end=jan(5))
    result = delete_series(repo, ledger, user.id, series.id, 'future', '2025-01-20')

    assert result['end_day'] == '2025-01-05'
    assert repo.get_series(user.id, series.id).end_day == jan(5)
    assert sorted(_by_day(store, user, jan(1), jan(31))) == [jan(1), jan(2), jan(3), jan(4), jan(5)]
