"""
Database module for runmatch.

Provides SQLAlchemy ORM models and session management.

Usage:
    from runmatch.db import get_session, Runner

    with get_session() as session:
        runners = session.query(Runner).all()
"""

from runmatch.db.models import (
    Base,
    Result,
    Runner,
    RunnerAlias,
    RunnerMatch,
)
from runmatch.db.session import get_session, get_engine, SessionLocal

__all__ = [
    # Base
    "Base",
    # Models
    "Runner",
    "RunnerAlias",
    "Result",
    "RunnerMatch",
    # Session
    "get_session",
    "get_engine",
    "SessionLocal",
]
