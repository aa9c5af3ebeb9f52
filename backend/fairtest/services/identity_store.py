"""
Local identity store - device-scoped key-value storage for exam identities.

The Identity Manager receives a store instead of reaching for ambient global
state. Two implementations:
- InMemoryIdentityStore: process-lifetime dict (tests, ephemeral sessions)
- SqlIdentityStore: local_identities table through SQLAlchemy

Both raise StorageUnavailable when the backing storage cannot be used.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fairtest.errors import StorageUnavailable
from fairtest.logging_config import get_logger, log_with_context
from fairtest.models.local_identity import LocalIdentity

logger = get_logger("db")


class IdentityStore(ABC):
    """Key-value interface used by AnonymousIdentityManager."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        ...


class InMemoryIdentityStore(IdentityStore):

    def __init__(self, initial: Dict[str, str] = None):
        self._data = dict(initial or {})

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqlIdentityStore(IdentityStore):
    """
    Identity store backed by the local_identities table.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
            (normally fairtest.database.SessionLocal)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def put(self, key: str, value: str) -> None:
        db = self._session_factory()
        try:
            row = db.get(LocalIdentity, key)
            if row:
                row.value = value
            else:
                db.add(LocalIdentity(key=key, value=value))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log_with_context(logger, "ERROR", "Local identity write failed: {}".format(type(e).__name__),
                             context={"key": key})
            raise StorageUnavailable() from e
        finally:
            db.close()

    def get(self, key: str) -> Optional[str]:
        db = self._session_factory()
        try:
            row = db.get(LocalIdentity, key)
            return row.value if row else None
        except SQLAlchemyError as e:
            log_with_context(logger, "ERROR", "Local identity read failed: {}".format(type(e).__name__),
                             context={"key": key})
            raise StorageUnavailable() from e
        finally:
            db.close()

    def keys(self, prefix: str = "") -> List[str]:
        db = self._session_factory()
        try:
            query = db.query(LocalIdentity.key)
            if prefix:
                query = query.filter(LocalIdentity.key.startswith(prefix, autoescape=True))
            return [row.key for row in query.order_by(LocalIdentity.key).all()]
        except SQLAlchemyError as e:
            raise StorageUnavailable() from e
        finally:
            db.close()
