from __future__ import annotations

from staffcrm.config import BackendConfig, require_service_key
from staffcrm.store.base import ForeignKeyViolation, PersistenceError, TableStore
from staffcrm.store.rest import RestStore
from staffcrm.store.sqlite import SqliteStore

__all__ = [
    "ForeignKeyViolation",
    "PersistenceError",
    "RestStore",
    "SqliteStore",
    "TableStore",
    "open_store",
]


def open_store(backend: BackendConfig) -> TableStore:
    if backend.provider == "rest":
        return RestStore(url=backend.url or "", api_key=require_service_key(), timeout=backend.timeout)
    return SqliteStore(backend.sqlite_path)
