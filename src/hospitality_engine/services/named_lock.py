"""Named locks for cross-process mutual exclusion

A lock is identified by a logical name such as
``hospitality:rule-generation:category:42``. Two providers exist:

* AdvisoryLockProvider holds a PostgreSQL session-level advisory lock on a
  dedicated connection. The advisory key is the first 8 bytes of the SHA-256
  digest of the name, read as a signed big-endian 64-bit integer.
* LocalLockProvider keeps one threading.Lock per name and only excludes
  threads of the current process (single-writer deployments, SQLite).
"""
import hashlib
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from src.hospitality_engine.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class LockAcquisitionError(Exception):
    pass


def category_lock_name(category_id: int) -> str:
    return f"hospitality:rule-generation:category:{category_id}"


def advisory_lock_key(name: str) -> int:
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@dataclass
class NamedLock:
    name: str
    handle: Any = field(default=None, repr=False)
    released: bool = False


class LocalLockProvider:
    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, name: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def acquire(self, name: str, timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> NamedLock:
        lock = self._lock_for(name)
        acquired = lock.acquire(timeout=timeout if timeout is not None else -1)
        if not acquired:
            raise LockAcquisitionError(f"Timed out acquiring lock '{name}'")
        logger.debug(f"Acquired local lock {name}")
        return NamedLock(name=name, handle=lock)

    def release(self, lock: NamedLock) -> None:
        if lock.released:
            return
        lock.handle.release()
        lock.released = True
        logger.debug(f"Released local lock {lock.name}")


class AdvisoryLockProvider:
    def __init__(self, engine: Engine):
        self._engine = engine

    def acquire(self, name: str, timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> NamedLock:
        key = advisory_lock_key(name)
        conn = self._engine.connect()
        try:
            if timeout is not None:
                conn.execute(text(f"SET lock_timeout = {int(timeout * 1000)}"))
            conn.execute(text("SELECT pg_advisory_lock(:key)"), {"key": key})
            conn.commit()
        except Exception as e:
            conn.invalidate()
            conn.close()
            raise LockAcquisitionError(f"Failed to acquire advisory lock '{name}': {e}") from e
        logger.debug(f"Acquired advisory lock {name} (key={key})")
        return NamedLock(name=name, handle=conn)

    def release(self, lock: NamedLock) -> None:
        if lock.released:
            return
        conn = lock.handle
        try:
            conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": advisory_lock_key(lock.name)})
            conn.execute(text("RESET lock_timeout"))
            conn.commit()
        except Exception:
            # a discarded DBAPI connection takes its session-level locks with it
            conn.invalidate()
            raise
        finally:
            lock.released = True
            conn.close()
        logger.debug(f"Released advisory lock {lock.name}")


@contextmanager
def hold_lock(provider, name: str, timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> Iterator[NamedLock]:
    lock = provider.acquire(name, timeout=timeout)
    try:
        yield lock
    finally:
        try:
            provider.release(lock)
        except Exception:
            logger.exception(f"Failed to release lock {name}")


def build_lock_provider(engine: Engine):
    settings = get_settings()
    backend = settings.NAMED_LOCK_BACKEND
    if backend == "auto":
        backend = "advisory" if engine.dialect.name == "postgresql" else "local"
    if backend == "advisory":
        return AdvisoryLockProvider(engine)
    return LocalLockProvider()
