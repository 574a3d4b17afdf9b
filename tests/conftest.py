from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from access import StaticCredentialStore, hash_password
from db import get_session
from main import app
from models import utcnow
from routers.auth import get_credential_store, get_now
from store import RequestStore

DISPATCHER = ("dispatch", "s3cret")


class Clock:
    """Manually advanced clock shared by the app and the tests."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session):
    return RequestStore(session)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def credentials():
    return StaticCredentialStore(DISPATCHER[0], hash_password(DISPATCHER[1]))


@pytest.fixture
def api(engine, clock, credentials):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_now] = clock
    app.dependency_overrides[get_credential_store] = lambda: credentials
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api):
    return TestClient(api)


@pytest.fixture
def dispatcher_client(api):
    client = TestClient(api)
    response = client.post(
        "/login", json={"username": DISPATCHER[0], "password": DISPATCHER[1]}
    )
    assert response.status_code == 200
    return client


def sample_request(**overrides):
    payload = {
        "unit_name": "A",
        "personnel_name": "B",
        "phone_number": "555",
        "mission_date": "2025-06-01",
        "mission_time": "10:00",
        "destination": "Clinic",
    }
    payload.update(overrides)
    return payload
