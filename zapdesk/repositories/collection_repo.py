"""
Collection repository.

Durable key-value persistence for named collections (attendants, queue,
bot sessions, active chats, archived chats, contacts, tags).
"""

import json
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zapdesk.models import StoredCollection
from zapdesk.utils.database import session_scope
from zapdesk.utils.logger import logger


class CollectionRepository:
    """Repository for stored collection database operations."""

    def __init__(self, db: Session):
        self.db = db

    def get_collection(self, name: str) -> Optional[StoredCollection]:
        """
        Get stored collection row by name.

        Args:
            name: Collection name

        Returns:
            StoredCollection object or None
        """
        return self.db.query(StoredCollection).filter(StoredCollection.name == name).first()

    def load(self, name: str, default: Any = None) -> Any:
        """
        Load and decode a collection.

        Args:
            name: Collection name
            default: Value returned when the collection is missing or unreadable

        Returns:
            Decoded JSON value or default
        """
        row = self.get_collection(name)
        if not row:
            return default

        try:
            return json.loads(row.value)
        except json.JSONDecodeError as e:
            logger.error(f"Error decoding stored collection {name}: {e}")
            return default

    def save(self, name: str, data: Any) -> StoredCollection:
        """
        Save a collection (create or replace).

        Args:
            name: Collection name
            data: JSON-serializable value

        Returns:
            StoredCollection object
        """
        value = json.dumps(data, ensure_ascii=False)
        row = self.get_collection(name)

        if row:
            row.value = value
        else:
            row = StoredCollection(name=name, value=value)
            self.db.add(row)

        self.db.commit()
        self.db.refresh(row)
        logger.debug(f"Saved collection {name} ({len(value)} bytes)")
        return row


class PersistentStore:
    """
    Write-through store used by the in-memory pools.

    Each call opens its own database session. Write failures are logged and
    reported through the return value; the caller's in-memory state stays
    authoritative and the next successful save of the same collection restores
    durability.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from zapdesk.utils.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def save(self, name: str, data: Any) -> bool:
        try:
            with session_scope(self.session_factory) as db:
                CollectionRepository(db).save(name, data)
            return True
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.error(f"Persistence failure saving collection {name}: {e}")
            return False

    def load(self, name: str, default: Any = None) -> Any:
        try:
            with session_scope(self.session_factory) as db:
                return CollectionRepository(db).load(name, default)
        except SQLAlchemyError as e:
            logger.error(f"Persistence failure loading collection {name}: {e}")
            return default
