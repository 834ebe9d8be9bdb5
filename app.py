import os
import logging

from dotenv import load_dotenv
from flask import Flask, request, jsonify, session

load_dotenv()

from models import db, User, DEFAULT_EVENT_COLOR
from backend.day_keys import normalize_day, parse_optional_day
from backend.errors import CalendarError, StorageError
from backend.mutations import (
    create_independent_event, create_series, delete_occurrence, delete_series,
    edit_occurrence, edit_series, series_summary, toggle_completion, update_occurrence,
)
from backend.occurrence_engine import effective_occurrences, parse_occurrence_identity
from backend.sql_repository import SqlCompletionLedger, SqlOccurrenceRepository
from services.validation_service import (
    parse_bool, parse_content_fields, parse_occurrence_fields, parse_rule_payload,
    parse_scope, parse_series_fields,
)
from services import calendar_routes, calendar_extra_routes

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///calendar.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['DEFAULT_EVENT_COLOR'] = os.environ.get('DEFAULT_EVENT_COLOR', DEFAULT_EVENT_COLOR)
app.config['CALENDAR_MAX_WINDOW_DAYS'] = int(os.environ.get('CALENDAR_MAX_WINDOW_DAYS', 366))
app.config['PROMOTION_RETRIES'] = int(os.environ.get('PROMOTION_RETRIES', 2))
app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO').upper()

logging.basicConfig(
    level=app.config['LOG_LEVEL'],
    format='%(asctime)s %(levelname)s %(name)s: %(message)s'
)
app.logger.setLevel(app.config['LOG_LEVEL'])

db.init_app(app)


def get_current_user():
    """Resolve the current user from the X-User-Id header, else fall back to session.

    When API_SHARED_KEY is configured the header must be accompanied by a
    matching X-API-Key.
    """
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = app.config.get('API_SHARED_KEY')
    if api_user_id and (not shared_key or api_key == shared_key):
        try:
            api_uid_int = int(api_user_id)
        except (TypeError, ValueError):
            api_uid_int = None
        if api_uid_int:
            user = db.session.get(User, api_uid_int)
            if user:
                return user

    # Session-based auth for browser users
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def get_calendar_store():
    """Repository and completion ledger bound to the request's session."""
    repo = SqlOccurrenceRepository(db.session, promotion_retries=app.config['PROMOTION_RETRIES'])
    return repo, SqlCompletionLedger(db.session)


@app.errorhandler(CalendarError)
def handle_calendar_error(error):
    if isinstance(error, StorageError):
        app.logger.error("Calendar request failed: %s %s: %s", request.method, request.path, error.message)
    else:
        app.logger.info("Calendar request rejected (%s): %s", error.status_code, error.message)
    return jsonify(error.to_dict()), error.status_code


with app.app_context():
    db.create_all()


@app.route('/api/set-user/<int:user_id>', methods=['POST'])
def set_user(user_id):
    """Set the current user in session"""
    user = db.get_or_404(User, user_id)
    session['user_id'] = user.id
    session.permanent = True  # Make session persistent across browser restarts
    return jsonify({'success': True, 'username': user.username})


@app.route('/api/create-user', methods=['POST'])
def create_user():
    """Create a new user (no password; identity only)"""
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()

    if not username:
        return jsonify({'error': 'Username is required'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=username)
    db.session.add(user)
    db.session.commit()

    session['user_id'] = user.id
    session.permanent = True

    return jsonify({'success': True, 'user_id': user.id, 'username': user.username})


@app.route('/api/current-user')
def current_user_info():
    """Get current user info"""
    user = get_current_user()
    if user:
        return jsonify({'user_id': user.id, 'username': user.username})
    return jsonify({'user_id': None, 'username': None})


app.add_url_rule('/api/calendar/occurrences', 'list_occurrences',
                 calendar_routes.list_occurrences, methods=['GET'])
app.add_url_rule('/api/calendar/occurrences', 'create_occurrence',
                 calendar_routes.create_occurrence, methods=['POST'])
app.add_url_rule('/api/calendar/occurrences/<identity>', 'update_occurrence',
                 calendar_routes.update_occurrence, methods=['PATCH'])
app.add_url_rule('/api/calendar/occurrences/<identity>', 'delete_occurrence',
                 calendar_routes.delete_occurrence, methods=['DELETE'])
app.add_url_rule('/api/calendar/recurring', 'list_recurring_events',
                 calendar_extra_routes.list_recurring_events, methods=['GET'])
app.add_url_rule('/api/calendar/recurring', 'create_recurring_event',
                 calendar_extra_routes.create_recurring_event, methods=['POST'])
app.add_url_rule('/api/calendar/recurring/<int:rec_id>', 'recurring_event_detail',
                 calendar_extra_routes.recurring_event_detail, methods=['GET'])
app.add_url_rule('/api/calendar/recurring/<int:rec_id>', 'update_recurring_event',
                 calendar_extra_routes.update_recurring_event, methods=['PATCH'])
app.add_url_rule('/api/calendar/recurring/<int:rec_id>', 'delete_recurring_event',
                 calendar_extra_routes.delete_recurring_event, methods=['DELETE'])


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
