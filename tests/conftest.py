from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from db import get_session
from main import app
from models import Event, EventType, Need, Role, User, utcnow


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
def make_client(engine):
    """Build TestClients that share the test database; each keeps its own cookies."""

    def _session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session_override
    clients = []

    def _make(username=None):
        client = TestClient(app)
        clients.append(client)
        if username is not None:
            resp = client.post("/login", json={"username": username})
            assert resp.status_code in (200, 201), resp.text
        return client

    yield _make

    for client in clients:
        client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def manager(session):
    user = User(username="admin", role=Role.manager)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def make_helper(session):
    def _make(username):
        user = User(username=username, role=Role.helper)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_need(session, manager):
    def _make(**overrides):
        fields = {
            "manager_id": manager.id,
            "title": "Winter coats",
            "cost": Decimal("25.00"),
            "quantity": 10,
        }
        fields.update(overrides)
        need = Need(**fields)
        session.add(need)
        session.commit()
        session.refresh(need)
        return need

    return _make


@pytest.fixture
def make_event(session, make_need):
    def _make(need=None, **overrides):
        need = need or make_need()
        fields = {
            "need_id": need.id,
            "event_type": EventType.distribution,
            "event_start": utcnow() + timedelta(days=3),
            "volunteer_slots": 0,
        }
        fields.update(overrides)
        event = Event(**fields)
        session.add(event)
        session.commit()
        session.refresh(event)
        return event

    return _make


def fresh(session, model, ident):
    """Re-read a row from the database, bypassing anything cached in the session."""
    session.expire_all()
    return session.get(model, ident)


@pytest.fixture
def reload(session):
    def _reload(model, ident):
        return fresh(session, model, ident)

    return _reload


@pytest.fixture
def now():
    return datetime(2026, 10, 17, 12, 0, 0)
