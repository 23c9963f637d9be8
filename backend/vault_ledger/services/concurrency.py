# Overview: Service-layer operations for concurrency; encapsulates writer serialisation and retries.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Hashable

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModification
from ..extensions import db


_registry_guard = threading.Lock()
_key_locks: dict[tuple[str, Hashable], "_KeyLock"] = {}


class _KeyLock:
    """Per-key lock plus the number of threads holding or waiting on it."""
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


def _checkout(scope: str, key: Hashable) -> _KeyLock:
    with _registry_guard:
        entry = _key_locks.get((scope, key))
        if entry is None:
            entry = _KeyLock()
            _key_locks[(scope, key)] = entry
        entry.users += 1
        return entry


def _checkin(scope: str, key: Hashable, entry: _KeyLock) -> None:
    # Evict once nobody holds or waits on the key
    with _registry_guard:
        entry.users -= 1
        if entry.users == 0:
            _key_locks.pop((scope, key), None)


@contextmanager
def exclusive(scope: str, key: Hashable, *, timeout: float | None = None):
    """
    Serialise writers for one key within this process.

    Re-entrant for the holding thread, so a finalize holding a vault can
    call into helpers that take the same vault scope. Hold it until commit.
    """
    if timeout is None:
        timeout = current_app.config["VAULT_LOCK_TIMEOUT_SECONDS"]
    entry = _checkout(scope, key)
    try:
        if not entry.lock.acquire(timeout=timeout):
            raise ConcurrentModification(
                f"Timed out waiting for {scope} {key}",
                details={"scope": scope, "key": str(key)},
            )
        try:
            yield
        finally:
            entry.lock.release()
    finally:
        _checkin(scope, key, entry)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts); exhausting attempts raises
    ConcurrentModification. Any other failure rolls back and propagates.
    """
    if attempts is None:
        attempts = current_app.config["VAULT_RETRY_ATTEMPTS"]
    if backoff_base is None:
        backoff_base = current_app.config["VAULT_RETRY_BACKOFF_SECONDS"]

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrentModification(
                    "Conflicting write; retry the operation",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise ConcurrentModification("No attempts were made", details={"attempts": attempts})
