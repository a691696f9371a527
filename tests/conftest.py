import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest

from app import app as flask_app
from models import db, User


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def user(app):
    owner = User(username="tester")
    db.session.add(owner)
    db.session.commit()
    return owner


@pytest.fixture
def client(app, user):
    test_client = app.test_client()
    with test_client.session_transaction() as sess:
        sess["user_id"] = user.id
    return test_client
