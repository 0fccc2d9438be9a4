"""
Stored collection model.

One row per named collection (queue, bot_sessions, active_chats, ...), holding
the whole collection as JSON text.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from zapdesk.models import Base, generate_uuid, utc_now


class StoredCollection(Base):
    """A named JSON document written through on every pool mutation."""

    __tablename__ = "stored_collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return f"<StoredCollection(name={self.name}, size={len(self.value or '')})>"
