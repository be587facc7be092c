"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.main import app
from app.models import Base, TutoringSession
from tutorlink.realtime import configure_realtime
from tutorlink.sessions import SqlSessionDirectory

from support import LEARNER, SESSION_ID, TEACHER, FakeDirectory, session_record


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def tutoring_session(db_session) -> TutoringSession:
    row = TutoringSession(id=SESSION_ID, teacher_id=TEACHER, learner_id=LEARNER, skill="Algebra")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture()
def fake_directory() -> FakeDirectory:
    return FakeDirectory(session_record())


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient whose coordinator reads the test database."""

    configure_realtime(directory=SqlSessionDirectory(session_factory))
    with TestClient(app) as test_client:
        yield test_client
