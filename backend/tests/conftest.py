from pathlib import Path
import os
import uuid
import pytest

# Point the app at a throwaway SQLite file before `studybuddy` is imported anywhere.
TEST_DB = Path(__file__).resolve().parents[1] / "test_app.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ.setdefault("JWT_SECRET", "test-secret")

from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from studybuddy.database import engine
from studybuddy.main import app
from studybuddy.utils.rate_limit import InMemoryRateLimiter


@pytest.fixture(autouse=True)
def reset_db(monkeypatch):
    """Fresh schema and rate-limit budget for every test."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr("studybuddy.main._api_rate_limiter", InMemoryRateLimiter())
    yield


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    yield
    engine.dispose()
    if TEST_DB.exists():
        try:
            TEST_DB.unlink()
        except OSError:
            pass


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(client):
    """Register and log in a user; returns `(user_id, auth_headers)`."""
    def _make(email=None, password="pw123", university="Test University"):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        r = client.post('/auth/register', json={'email': email, 'password': password,
                                                'first_name': 'Test', 'last_name': 'User',
                                                'university': university})
        assert r.status_code == 200
        user_id = r.json()['user_id']
        login = client.post('/auth/login', json={'email': email, 'password': password})
        assert login.status_code == 200
        return user_id, {'Authorization': f"Bearer {login.json()['access_token']}"}
    return _make
