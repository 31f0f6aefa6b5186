"""Locking helpers for concurrent identity resolution."""

from runmatch.tasks.locks import advisory_lock_key, identity_lock

__all__ = ["advisory_lock_key", "identity_lock"]
