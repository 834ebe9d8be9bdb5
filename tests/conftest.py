import os

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ.pop('API_SHARED_KEY', None)

import pytest

from app import app as flask_app, get_calendar_store
from models import db, User


@pytest.fixture
def app_ctx():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def user(app_ctx):
    u = User(username='tester')
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def other_user(app_ctx):
    u = User(username='someone-else')
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def store(app_ctx):
    return get_calendar_store()


@pytest.fixture
def client(app_ctx):
    return flask_app.test_client()


@pytest.fixture
def auth_headers(user):
    return {'X-User-Id': str(user.id)}
