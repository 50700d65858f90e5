import pytest

from app import app as flask_app

TEST_KEY = '0123456789abcdef'


@pytest.fixture
def key():
    return TEST_KEY


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setenv('UTS_QR_KEY', TEST_KEY)
    flask_app.config.update(TESTING=True)
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()
