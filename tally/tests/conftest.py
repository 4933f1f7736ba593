"""
Shared test fixtures for the Tally test suite.

Uses an in-memory SQLite database so tests run without PostgreSQL.
"""

from __future__ import annotations

import os
import sys

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root is importable
_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from pkg.database import Base  # noqa: E402


@pytest.fixture()
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs the app elsewhere)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    """Yield an in-memory SQLite session for isolated testing."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
