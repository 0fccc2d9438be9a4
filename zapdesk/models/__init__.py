"""
Models for the zapdesk console.

The only database table is the named-collection store; conversation records
are plain dataclasses serialized into it.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def generate_uuid() -> str:
    """Generate a UUID string for use as identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


from zapdesk.models.stored_collection import StoredCollection
from zapdesk.models.session import (
    ArchivedSegment,
    BotOwned,
    DeliveryStatus,
    FileAttachment,
    HumanOwned,
    Message,
    Queued,
    QueueEntry,
    ReplySnapshot,
    Sender,
    Session,
)
from zapdesk.models.directory import Attendant, Contact, Tag

__all__ = [
    "Base",
    "generate_uuid",
    "utc_now",
    "StoredCollection",
    "ArchivedSegment",
    "BotOwned",
    "DeliveryStatus",
    "FileAttachment",
    "HumanOwned",
    "Message",
    "Queued",
    "QueueEntry",
    "ReplySnapshot",
    "Sender",
    "Session",
    "Attendant",
    "Contact",
    "Tag",
]
