from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
import threading

from sqlalchemy.orm import Session

from app.models import Release


@dataclass
class _ReleaseLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


_registry_guard = threading.Lock()
# Entries live only while some thread holds or waits on them.
_release_locks: dict[str, _ReleaseLock] = {}


def _acquire_entry(version: str) -> _ReleaseLock:
    with _registry_guard:
        entry = _release_locks.get(version)
        if entry is None:
            entry = _ReleaseLock()
            _release_locks[version] = entry
        entry.holders += 1
        return entry


def _release_entry(version: str, entry: _ReleaseLock) -> None:
    with _registry_guard:
        entry.holders -= 1
        if entry.holders == 0 and _release_locks.get(version) is entry:
            del _release_locks[version]


@contextmanager
def release_exclusion(version: str) -> Iterator[None]:
    """Single writer per release inside this process."""
    entry = _acquire_entry(version)
    try:
        with entry.lock:
            yield
    finally:
        _release_entry(version, entry)


def lock_release_row(db: Session, version: str) -> Release | None:
    """Row lock for writers in other processes; a no-op on SQLite."""
    return db.query(Release).filter(Release.version == version).with_for_update().first()
