"""Lock helpers serializing identity resolution for a single blocking key."""

from __future__ import annotations

import hashlib
import threading
import weakref
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import text
from sqlalchemy.orm import Session

# Process-local fallback for databases without advisory locks (SQLite in tests).
# Entries disappear once no caller holds the lock object.
_local_locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
_local_locks_guard = threading.Lock()


def advisory_lock_key(name: str) -> int:
    """Return a deterministic signed 64-bit lock key from a lock name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


def _local_lock(key: int) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
        return lock


@contextmanager
def identity_lock(session: Session, name: str) -> Generator[int, None, None]:
    """
    Hold an exclusive lock on `name` while resolving an identity.

    On PostgreSQL this is a transaction-scoped advisory lock: it is taken on
    the session's connection and released when the session commits or rolls
    back, so the caller must finish its transaction inside this context.
    Other databases get a process-local lock released on exit.

    Yields:
        The numeric lock key.
    """
    key = advisory_lock_key(name)

    if session.get_bind().dialect.name == "postgresql":
        session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
        yield key
        return

    lock = _local_lock(key)
    lock.acquire()
    try:
        yield key
    finally:
        lock.release()
