"""
Transport collaborator contract.

The console talks to WhatsApp only through this interface: it sends and edits
messages, and it receives normalized events parsed from the gateway.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

from zapdesk.models import DeliveryStatus, FileAttachment


class ConnectionState(str, Enum):
    LOADING = "LOADING"
    QR_READY = "QR_READY"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class QuotedMessage:
    text: Optional[str]
    from_me: bool


@dataclass
class InboundEvent:
    user_id: str
    user_name: Optional[str] = None
    text: str = ""
    file: Optional[FileAttachment] = None
    reply_context: Optional[QuotedMessage] = None
    transport_id: Optional[str] = None


@dataclass(frozen=True)
class StatusReceipt:
    user_id: str
    transport_id: str
    status: DeliveryStatus


@dataclass(frozen=True)
class ConnectionUpdate:
    state: ConnectionState
    qr_code: Optional[str] = None
    own_jid: Optional[str] = None


class Transport(Protocol):
    """What the outbound queue and the console need from a WhatsApp gateway."""

    state: ConnectionState

    async def send(self, user_id: str, text: Optional[str], files: List[FileAttachment]) -> Optional[str]:
        """Send a message, returning the transport message id."""
        ...

    async def edit(self, user_id: str, transport_id: str, new_text: str) -> None:
        ...


@dataclass
class RecordingTransport:
    """
    In-process transport that records what it was asked to send.

    Used when no gateway is configured, so the console runs without WhatsApp.
    """

    state: ConnectionState = ConnectionState.CONNECTED
    sent: List[dict] = field(default_factory=list)
    edits: List[dict] = field(default_factory=list)

    async def send(self, user_id: str, text: Optional[str], files: List[FileAttachment]) -> Optional[str]:
        transport_id = f"local-{len(self.sent) + 1}"
        self.sent.append({"userId": user_id, "text": text, "files": files, "id": transport_id})
        return transport_id

    async def edit(self, user_id: str, transport_id: str, new_text: str) -> None:
        self.edits.append({"userId": user_id, "id": transport_id, "text": new_text})
