import os

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['ENABLE_FINANCE_JOBS'] = '0'
os.environ['SECRET_KEY'] = 'test-secret'
os.environ.pop('OPENAI_API_KEY', None)

import pytest

import app as planos_app
from models import db


@pytest.fixture
def flask_app():
    app = planos_app.app
    app.config['TESTING'] = True
    app.config['OPENAI_API_KEY'] = None
    with app.app_context():
        db.drop_all()
        db.create_all()
        planos_app._seed_default_categories()
        yield app
        db.session.remove()


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def test_client(client):
    """Client with a freshly created, signed-in user."""
    resp = client.post('/api/create-user', json={'username': 'alice', 'password': 'secret'})
    assert resp.status_code == 201
    return client


@pytest.fixture
def fake_chat(monkeypatch):
    """Replace the chat completion with canned replies; records each call."""
    import ai_service

    calls = []

    def install(reply):
        def chat(system_prompt, user_content, **kwargs):
            calls.append({'system': system_prompt, 'user': user_content, **kwargs})
            if isinstance(reply, Exception):
                raise reply
            return reply
        monkeypatch.setattr(ai_service, 'call_chat_text', chat)
        return calls

    return install
