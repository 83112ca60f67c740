"""Key-value store with optional per-key TTL, used for retry counters and view caching."""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

KVBase = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValueStore(ABC):
    """Interface: get/put/delete string values, with an optional TTL in seconds."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the live value for ``key``, or None when absent or expired."""

    @abstractmethod
    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store ``value``; ``ttl_seconds=None`` never expires."""

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[datetime]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class KVEntry(KVBase):
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime)


class SqlKeyValueStore(KeyValueStore):
    """KV store persisted in a SQL table; expired rows are ignored and removed lazily."""

    def __init__(self, database_url: str = "sqlite:///data/kv.db", engine=None,
                 clock: Callable[[], datetime] = _utcnow):
        self.database_url = database_url
        self._engine = engine
        self._session_factory = None
        self._clock = clock

    @property
    def engine(self):
        if self._engine is None:
            self._engine = create_engine(self.database_url, echo=False)
        return self._engine

    @property
    def session_factory(self):
        if self._session_factory is None:
            KVBase.metadata.create_all(self.engine)
            self._session_factory = sessionmaker(bind=self.engine)
        return self._session_factory

    def get_session(self) -> Session:
        return self.session_factory()

    def _now(self) -> datetime:
        # Stored naive in UTC
        return self._clock().astimezone(timezone.utc).replace(tzinfo=None)

    def get(self, key: str) -> Optional[str]:
        with self.get_session() as session:
            entry = session.get(KVEntry, key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= self._now():
                session.delete(entry)
                session.commit()
                return None
            return entry.value

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._now() + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None
        with self.get_session() as session:
            session.merge(KVEntry(key=key, value=value, expires_at=expires_at))
            session.commit()

    def delete(self, key: str) -> None:
        with self.get_session() as session:
            session.query(KVEntry).filter(KVEntry.key == key).delete()
            session.commit()
