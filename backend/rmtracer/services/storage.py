"""
Persisted key-value storage for the station.
Synchronous get/set of whole string values, no expiry; survives restarts
when backed by the local database.
"""
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from ..core.config import settings
from ..models.base import Base, make_engine
from ..models.kv import StoredValue


class KeyValueStore:
    """Interface shared by the storage backends."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store; everything is lost when the process exits."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqlKeyValueStore(KeyValueStore):
    """Store backed by the ``kv_store`` table of the local database."""

    def __init__(self, engine=None):
        self._engine = engine if engine is not None else make_engine(settings.DATABASE_URL)
        Base.metadata.create_all(bind=self._engine, tables=[StoredValue.__table__])
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    def get(self, key: str) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.get(StoredValue, key)
            return row.value if row else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            row = db.get(StoredValue, key)
            if row:
                row.value = value
            else:
                db.add(StoredValue(key=key, value=value))
            db.commit()
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self._session_factory()
        try:
            db.query(StoredValue).filter(StoredValue.key == key).delete()
            db.commit()
        finally:
            db.close()
