"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from runmatch.db.models import Base
from runmatch.runners.snapshot import RawResultRecord

RACE_DATE = date(2025, 3, 15)


@pytest.fixture
def test_engine():
    """
    Create a test database engine.

    Uses SQLite in-memory for fast tests that don't need
    PostgreSQL-specific features. StaticPool keeps the single in-memory
    database alive across connections (and threads, for the API tests).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    """
    Create a database session for a test.

    Each test gets a fresh database, so services are free to commit.
    """
    Session = sessionmaker(bind=test_engine, autoflush=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory on a file-backed SQLite database.

    Batch imports open one session per record (possibly on several
    threads), which needs a real file rather than a shared connection.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'runmatch.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def make_record():
    """Build RawResultRecords with sensible defaults."""
    counter = {"next": 1}

    def _make(**overrides) -> RawResultRecord:
        values = {
            "provider": "runsignup",
            "source_result_id": f"rsu-{counter['next']}",
            "race_ref": "austin-half-2025",
            "race_date": RACE_DATE,
            "raw_name": "Robert Smith",
            "raw_city": "Austin",
            "raw_state": "TX",
            "raw_age": 34,
            "finish_time": "01:42:10",
            "overall_place": 120,
        }
        values.update(overrides)
        counter["next"] += 1
        return RawResultRecord(**values)

    return _make
