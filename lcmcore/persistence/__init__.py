"""Persistence layer for lifecycle state, history and checklists."""

from __future__ import annotations

from typing import Optional

from ..config import LcmConfig, load_config
from .errors import (
    PreconditionFailed,
    RecordExists,
    RecordNotFound,
    StoreError,
    StoreUnavailable,
)
from .inmemory import InMemoryLifecycleStore
from .sqlite import SQLiteLifecycleStore
from .store import ChecklistStore, HistoryStore, LifecycleStore, StateStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresLifecycleStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresLifecycleStore = None  # type: ignore

try:  # pragma: no cover - optional dependency
    from ..db import LifecycleDB
except ImportError:  # pragma: no cover - optional dependency
    LifecycleDB = None  # type: ignore


def get_store(
    database_url: Optional[str] = None, config: Optional[LcmConfig] = None
) -> LifecycleStore:
    """Build a lifecycle store for ``database_url``.

    The URL can be provided explicitly, via ``LCM_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. A new store is returned
    on every call; callers own it and pass it to the engine. When no
    database is configured an in-memory store is returned.
    """

    config = config or load_config()
    database_url = database_url or config.database_url
    timeout = config.store.timeout

    if not database_url or database_url == "memory://":
        return InMemoryLifecycleStore()

    scheme = database_url.split("://", 1)[0]
    if "+" in scheme:
        if LifecycleDB is None:
            raise RuntimeError("SQLModel support not available")
        return LifecycleDB(database_url, timeout=timeout)
    if scheme == "sqlite":
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteLifecycleStore(path, timeout=timeout)
    if scheme in ("postgres", "postgresql"):
        if PostgresLifecycleStore is None:
            raise RuntimeError("Postgres support not available")
        return PostgresLifecycleStore(database_url, timeout=timeout)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ChecklistStore",
    "HistoryStore",
    "InMemoryLifecycleStore",
    "LifecycleDB",
    "LifecycleStore",
    "PostgresLifecycleStore",
    "PreconditionFailed",
    "RecordExists",
    "RecordNotFound",
    "SQLiteLifecycleStore",
    "StateStore",
    "StoreError",
    "StoreUnavailable",
    "get_store",
]
