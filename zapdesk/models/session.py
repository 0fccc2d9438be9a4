"""
Conversation records.

A Session is the live record of one end user's conversation. Which pool holds
it is carried by its ownership variant (BotOwned, Queued, HumanOwned), and the
Session Registry replaces that variant as part of every pool move. Resolved
sessions are frozen into ArchivedSegment snapshots.

All records serialize to camelCase JSON dictionaries for the persistent store
and the console API.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

from zapdesk.models import generate_uuid, utc_now


INITIAL_STATE = "GREETING"


class Sender(str, Enum):
    USER = "user"
    BOT = "bot"
    ATTENDANT = "attendant"
    SYSTEM = "system"


class DeliveryStatus(IntEnum):
    """Transport acknowledgement level, advisory only."""

    PENDING = 1
    SENT = 2
    DELIVERED = 3
    READ = 4


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class FileAttachment:
    name: str
    mime_type: str
    data: str = ""  # base64 payload

    @property
    def is_audio(self) -> bool:
        return self.mime_type.startswith("audio/")

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "mimeType": self.mime_type, "data": self.data}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileAttachment":
        return cls(
            name=data.get("name") or "arquivo",
            mime_type=data.get("mimeType") or data.get("type") or "application/octet-stream",
            data=data.get("data") or "",
        )


@dataclass(frozen=True)
class ReplySnapshot:
    """Copy of a quoted message taken when the reply was created."""

    text: Optional[str]
    sender: str
    sender_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    message_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "sender": self.sender,
            "senderName": self.sender_name,
            "timestamp": to_iso(self.timestamp),
            "messageId": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplySnapshot":
        return cls(
            text=data.get("text"),
            sender=data.get("sender") or Sender.USER.value,
            sender_name=data.get("senderName"),
            timestamp=parse_iso(data.get("timestamp")),
            message_id=data.get("messageId"),
        )


@dataclass
class Message:
    sender: Sender
    text: Optional[str] = None
    files: List[FileAttachment] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    # Assigned by the registry on append, unique and increasing within a session
    id: Optional[int] = None
    reply_to: Optional[ReplySnapshot] = None
    edited: bool = False
    status: Optional[DeliveryStatus] = None
    transport_id: Optional[str] = None
    forwarded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender.value,
            "text": self.text,
            "files": [f.to_dict() for f in self.files],
            "timestamp": to_iso(self.timestamp),
            "replyTo": self.reply_to.to_dict() if self.reply_to else None,
            "edited": self.edited,
            "status": int(self.status) if self.status is not None else None,
            "transportId": self.transport_id,
            "isForwarded": self.forwarded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        status = data.get("status")
        return cls(
            id=data.get("id"),
            sender=Sender(data.get("sender", Sender.USER.value)),
            text=data.get("text"),
            files=[FileAttachment.from_dict(f) for f in data.get("files") or []],
            timestamp=parse_iso(data.get("timestamp")) or utc_now(),
            reply_to=ReplySnapshot.from_dict(data["replyTo"]) if data.get("replyTo") else None,
            edited=bool(data.get("edited", False)),
            status=DeliveryStatus(status) if status is not None else None,
            transport_id=data.get("transportId"),
            forwarded=bool(data.get("isForwarded", False)),
        )


@dataclass(frozen=True)
class QueueEntry:
    id: int
    user_id: str
    user_name: Optional[str]
    department: str
    message: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "department": self.department,
            "message": self.message,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        return cls(
            id=int(data["id"]),
            user_id=data["userId"],
            user_name=data.get("userName"),
            department=data.get("department") or "",
            message=data.get("message") or "",
            timestamp=parse_iso(data.get("timestamp")) or utc_now(),
        )


# Ownership variants. Exactly one is attached to a live session.

@dataclass(frozen=True)
class BotOwned:
    kind = "bot"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True)
class Queued:
    entry: QueueEntry
    kind = "queued"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "entry": self.entry.to_dict()}


@dataclass(frozen=True)
class HumanOwned:
    attendant_id: str
    kind = "human"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "attendantId": self.attendant_id}


Ownership = Union[BotOwned, Queued, HumanOwned]


def ownership_from_dict(data: Optional[Dict[str, Any]]) -> Ownership:
    data = data or {}
    kind = data.get("kind")
    if kind == Queued.kind:
        return Queued(QueueEntry.from_dict(data["entry"]))
    if kind == HumanOwned.kind:
        return HumanOwned(data["attendantId"])
    return BotOwned()


@dataclass
class Session:
    user_id: str
    user_name: Optional[str] = None
    ownership: Ownership = field(default_factory=BotOwned)
    conversation_state: str = INITIAL_STATE
    context: Dict[str, Any] = field(default_factory=lambda: {"history": {}})
    message_log: List[Message] = field(default_factory=list)
    ai_history: List[Dict[str, str]] = field(default_factory=list)
    invalid_notice_shown: bool = False
    session_id: str = field(default_factory=generate_uuid)
    created_at: datetime = field(default_factory=utc_now)
    next_message_id: int = 1

    @property
    def attendant_id(self) -> Optional[str]:
        if isinstance(self.ownership, HumanOwned):
            return self.ownership.attendant_id
        return None

    @property
    def pool(self) -> str:
        return self.ownership.kind

    @property
    def last_activity(self) -> datetime:
        if self.message_log:
            return self.message_log[-1].timestamp
        return self.created_at

    def find_message(
        self,
        message_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Message]:
        """Find a message by id, or by exact timestamp when no id is given."""
        for message in reversed(self.message_log):
            if message_id is not None and message.id == message_id:
                return message
            if message_id is None and timestamp is not None and message.timestamp == timestamp:
                return message
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "ownership": self.ownership.to_dict(),
            "attendantId": self.attendant_id,
            "currentState": self.conversation_state,
            "context": self.context,
            "messageLog": [m.to_dict() for m in self.message_log],
            "aiHistory": self.ai_history,
            "invalidNoticeShown": self.invalid_notice_shown,
            "createdAt": to_iso(self.created_at),
            "nextMessageId": self.next_message_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        context = data.get("context") or {}
        context.setdefault("history", {})
        log = [Message.from_dict(m) for m in data.get("messageLog") or []]
        next_id = data.get("nextMessageId") or max((m.id or 0 for m in log), default=0) + 1
        return cls(
            session_id=data.get("sessionId") or generate_uuid(),
            user_id=data["userId"],
            user_name=data.get("userName"),
            ownership=ownership_from_dict(data.get("ownership")),
            conversation_state=data.get("currentState") or INITIAL_STATE,
            context=context,
            message_log=log,
            ai_history=list(data.get("aiHistory") or []),
            invalid_notice_shown=bool(data.get("invalidNoticeShown", False)),
            created_at=parse_iso(data.get("createdAt")) or utc_now(),
            next_message_id=next_id,
        )


@dataclass(frozen=True)
class ArchivedSegment:
    """Immutable snapshot of a session taken when it was resolved."""

    user_id: str
    user_name: Optional[str]
    attendant_id: Optional[str]
    session_id: str
    created_at: datetime
    resolved_by: str
    resolved_at: datetime
    context: Dict[str, Any]
    message_log: Tuple[Message, ...]

    @classmethod
    def from_session(cls, session: Session, resolved_by: str, resolved_at: datetime) -> "ArchivedSegment":
        return cls(
            user_id=session.user_id,
            user_name=session.user_name,
            attendant_id=session.attendant_id,
            session_id=session.session_id,
            created_at=session.created_at,
            resolved_by=resolved_by,
            resolved_at=resolved_at,
            context=copy.deepcopy(session.context),
            message_log=tuple(copy.deepcopy(session.message_log)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "attendantId": self.attendant_id,
            "createdAt": to_iso(self.created_at),
            "resolvedBy": self.resolved_by,
            "resolvedAt": to_iso(self.resolved_at),
            "context": self.context,
            "messageLog": [m.to_dict() for m in self.message_log],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchivedSegment":
        return cls(
            user_id=data["userId"],
            user_name=data.get("userName"),
            attendant_id=data.get("attendantId"),
            session_id=data.get("sessionId") or generate_uuid(),
            created_at=parse_iso(data.get("createdAt")) or utc_now(),
            resolved_by=data.get("resolvedBy") or "",
            resolved_at=parse_iso(data.get("resolvedAt")) or utc_now(),
            context=data.get("context") or {},
            message_log=tuple(Message.from_dict(m) for m in data.get("messageLog") or []),
        )
