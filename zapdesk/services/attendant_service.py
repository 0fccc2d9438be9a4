"""
Attendant action layer.

Operations the console exposes to human attendants. Each one mutates the
registry and enqueues whatever the user should receive. Actions on a chat
that is no longer active raise NotFoundError so the console can re-sync.
"""

import re
from datetime import datetime
from typing import Iterable, List, Optional

from zapdesk.errors import NotFoundError, ValidationError
from zapdesk.models import ArchivedSegment, DeliveryStatus, FileAttachment, Message, ReplySnapshot, Sender, Session
from zapdesk.repositories.directory_repo import DirectoryRepository, is_person_jid
from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.services.catalog_service import TextCatalog
from zapdesk.services.outbound_queue import OutboundQueue
from zapdesk.utils.logger import logger


RESOLVED_BY_ATTENDANT = "attendant"

# Senders whose messages go out from the console number
DELIVERED_SENDERS = (Sender.BOT, Sender.ATTENDANT)
USER_JID_SUFFIX = "@s.whatsapp.net"


def normalize_user_id(user_id: str) -> str:
    """Turn a typed phone number into a WhatsApp user id."""
    user_id = (user_id or "").strip()
    if "@" in user_id:
        return user_id
    digits = re.sub(r"\D", "", user_id)
    if not digits:
        raise ValidationError("A phone number or WhatsApp id is required", field="userId")
    return f"{digits}{USER_JID_SUFFIX}"


class AttendantService:
    """Takeover, reply, edit, resolve, transfer, initiate, forward and broadcast."""

    def __init__(
        self,
        registry: SessionRegistry,
        outbound: OutboundQueue,
        catalog: TextCatalog,
        directory: DirectoryRepository,
    ):
        self.registry = registry
        self.outbound = outbound
        self.catalog = catalog
        self.directory = directory

    def _attendant_name(self, attendant_id: str) -> str:
        attendant = self.directory.get_attendant(attendant_id)
        return attendant.name if attendant else attendant_id

    def _require_active(self, user_id: str) -> Session:
        session = self.registry.active_chat(user_id)
        if session is None:
            raise NotFoundError("Active chat", user_id)
        return session

    def _send(
        self,
        session: Session,
        sender: Sender,
        text: Optional[str],
        files: Optional[List[FileAttachment]] = None,
        reply_to: Optional[ReplySnapshot] = None,
        forwarded: bool = False,
        status: Optional[DeliveryStatus] = DeliveryStatus.PENDING,
    ) -> Message:
        message = self.registry.append_message(session, Message(
            sender=sender,
            text=text,
            files=list(files or []),
            reply_to=reply_to,
            status=status,
            forwarded=forwarded,
        ))
        self.outbound.enqueue(
            session.user_id,
            text=text,
            files=message.files,
            session_id=session.session_id,
            message_id=message.id,
        )
        return message

    def takeover_chat(self, user_id: str, attendant_id: str) -> Session:
        """Claim a queued or bot session and greet the user in the attendant's name."""
        already_active = self.registry.active_chat(user_id) is not None
        session = self.registry.takeover(user_id, attendant_id)
        if not already_active:
            greeting = self.catalog.text("attendantTakeover", {"attendantName": self._attendant_name(attendant_id)})
            self._send(session, Sender.ATTENDANT, greeting)
        return session

    def reply(
        self,
        user_id: str,
        attendant_id: str,
        text: Optional[str] = None,
        files: Optional[List[FileAttachment]] = None,
        reply_to_id: Optional[int] = None,
    ) -> Message:
        """Send an attendant message into an active chat."""
        session = self._require_active(user_id)
        if not (text and text.strip()) and not files:
            raise ValidationError("A reply needs text or at least one file", field="text")

        reply_to = None
        if reply_to_id is not None:
            quoted = session.find_message(message_id=reply_to_id)
            if quoted is None:
                raise NotFoundError("Message", str(reply_to_id))
            sender_name = session.user_name if quoted.sender == Sender.USER else self._attendant_name(attendant_id)
            reply_to = ReplySnapshot(
                text=quoted.text,
                sender=quoted.sender.value,
                sender_name=sender_name,
                timestamp=quoted.timestamp,
                message_id=quoted.id,
            )

        return self._send(session, Sender.ATTENDANT, text, files, reply_to=reply_to)

    def edit_message(
        self,
        user_id: str,
        new_text: str,
        message_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[Message]:
        """
        Change the text of a message in the live session.

        Archived segments are immutable, so a message that is only in history
        is a no-op (None). Bot and attendant messages still waiting in the
        outbound queue go out with the new text; already delivered ones are
        also edited on WhatsApp. User and system messages change only in the
        console log.
        """
        if not (new_text and new_text.strip()):
            raise ValidationError("Edited text cannot be empty", field="newText")

        session = self.registry.find_live(user_id)
        if session is None:
            return None
        message = session.find_message(message_id=message_id, timestamp=timestamp)
        if message is None:
            return None

        message.text = new_text
        message.edited = True
        self.registry.touch(session)
        if message.sender in DELIVERED_SENDERS:
            self._propagate_edit(session, message, new_text)
        logger.info(f"Edited message {message.id} of {user_id}")
        return message

    def _propagate_edit(self, session: Session, message: Message, new_text: str) -> None:
        # Not yet sent: the queued entry goes out with the new text instead
        if self.outbound.revise_pending(session.session_id, message.id, new_text):
            return
        if message.transport_id:
            self.outbound.enqueue_edit(session.user_id, message.transport_id, new_text)

    def resolve_chat(self, user_id: str, resolved_by: str = RESOLVED_BY_ATTENDANT) -> ArchivedSegment:
        """Say goodbye, then archive the active chat."""
        session = self._require_active(user_id)
        # Archived immediately, so it is never acknowledged
        self._send(session, Sender.BOT, self.catalog.text("sessionEnded"), status=None)
        segment = self.registry.resolve(user_id, resolved_by)
        if segment is None:
            raise NotFoundError("Active chat", user_id)
        return segment

    def transfer_chat(self, user_id: str, new_attendant_id: str) -> Session:
        if self.directory.get_attendant(new_attendant_id) is None:
            raise NotFoundError("Attendant", new_attendant_id)
        session = self.registry.transfer(user_id, new_attendant_id, self.catalog.text("transferNote"))
        if session is None:
            raise NotFoundError("Active chat", user_id)
        return session

    def initiate_chat(
        self,
        user_id: str,
        attendant_id: str,
        user_name: Optional[str] = None,
        text: Optional[str] = None,
        files: Optional[List[FileAttachment]] = None,
    ) -> Session:
        """
        Open (or reopen) a conversation from the console side.

        An already active chat is returned unchanged. Otherwise the user is
        claimed for the attendant and the opening message, if any, is sent.
        """
        user_id = normalize_user_id(user_id)
        if user_name:
            self.directory.record_contact(user_id, address_book_name=user_name)
        existing = self.registry.active_chat(user_id)
        if existing is not None:
            return existing
        session = self.registry.takeover(user_id, attendant_id, user_name=user_name)
        if (text and text.strip()) or files:
            self._send(session, Sender.ATTENDANT, text, files)
        return session

    def forward_message(
        self,
        target_user_id: str,
        attendant_id: str,
        text: Optional[str] = None,
        files: Optional[List[FileAttachment]] = None,
    ) -> Message:
        """Copy a message's content into another active chat."""
        session = self._require_active(target_user_id)
        if not text and not files:
            raise ValidationError("Nothing to forward", field="message")
        logger.info(f"Attendant {attendant_id} forwarded a message to {target_user_id}")
        return self._send(session, Sender.ATTENDANT, text, files, forwarded=True)

    def broadcast(
        self,
        recipient_ids: Iterable[str],
        text: Optional[str],
        attendant_id: str,
        files: Optional[List[FileAttachment]] = None,
    ) -> int:
        """
        Send the same message to many users.

        Recipients keep their current pool; users without a live session get
        a fresh bot session that holds the message.

        Returns:
            Number of recipients the message was queued for
        """
        if not (text and text.strip()) and not files:
            raise ValidationError("A broadcast needs text or at least one file", field="text")

        count = 0
        for raw_id in dict.fromkeys(recipient_ids):
            user_id = normalize_user_id(raw_id)
            if not is_person_jid(user_id):
                continue
            session = self.registry.get_or_create(user_id)
            self._send(session, Sender.ATTENDANT, text, files)
            count += 1

        logger.info(f"Attendant {attendant_id} broadcast a message to {count} recipients")
        return count
