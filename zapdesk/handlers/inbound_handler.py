"""
Inbound message handler.

Receives normalized WhatsApp events, records them in the user's session and
routes bot-owned sessions to the conversation state machine. Queued and
attendant-owned sessions only get the message recorded.
"""

import asyncio
import weakref
from typing import Awaitable, Callable, Optional

from zapdesk.errors import CollaboratorUnavailableError
from zapdesk.models import BotOwned, FileAttachment, Message, ReplySnapshot, Sender, Session
from zapdesk.repositories.directory_repo import DirectoryRepository, is_person_jid
from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.services.catalog_service import TextCatalog
from zapdesk.services.state_machine import ConversationStateMachine
from zapdesk.services.transcription_service import TranscriptionService
from zapdesk.transport.base import InboundEvent, QuotedMessage, StatusReceipt
from zapdesk.utils.logger import logger


class InboundDispatcher:
    """
    Per-user ordered dispatch of inbound messages.

    Messages from the same user are handled one at a time in arrival order.
    Different users never wait on each other, so a slow transcription or LLM
    call for one user does not delay anyone else.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        state_machine: ConversationStateMachine,
        directory: DirectoryRepository,
        catalog: TextCatalog,
        transcriber: Optional[TranscriptionService] = None,
        media_fetcher: Optional[Callable[[str], Awaitable[Optional[str]]]] = None,
    ):
        self.registry = registry
        self.state_machine = state_machine
        self.directory = directory
        self.catalog = catalog
        self.transcriber = transcriber
        self.media_fetcher = media_fetcher
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def handle_event(self, event: InboundEvent) -> None:
        await self.handle_inbound(
            event.user_id,
            event.user_name,
            event.text,
            file=event.file,
            reply_context=event.reply_context,
            transport_id=event.transport_id,
        )

    async def handle_inbound(
        self,
        user_id: str,
        user_name: Optional[str],
        text: str,
        file: Optional[FileAttachment] = None,
        reply_context: Optional[QuotedMessage] = None,
        transport_id: Optional[str] = None,
    ) -> None:
        """
        Handle one inbound message (async).

        Args:
            user_id: WhatsApp id of the sender
            user_name: Push name reported by the transport
            text: Message text or media caption
            file: Optional attached media
            reply_context: Optional quoted message
            transport_id: Transport message id
        """
        if not user_id or not is_person_jid(user_id):
            return

        logger.info(f"Received message from {user_id}: {(text or '')[:50]}")

        lock = self._lock_for(user_id)
        async with lock:
            try:
                await self._dispatch(user_id, user_name, text, file, reply_context, transport_id)
            except Exception as e:
                logger.exception(f"Error handling message from {user_id}: {e}")

    async def _dispatch(
        self,
        user_id: str,
        user_name: Optional[str],
        text: str,
        file: Optional[FileAttachment],
        reply_context: Optional[QuotedMessage],
        transport_id: Optional[str],
    ) -> None:
        self.directory.record_contact(user_id, push_name=user_name)
        if file is not None and not file.data and transport_id:
            await self._fetch_media(file, transport_id)
        session = self.registry.get_or_create(user_id, user_name)

        self.registry.append_message(session, Message(
            sender=Sender.USER,
            text=text or None,
            files=[file] if file else [],
            reply_to=self._quote_snapshot(reply_context, session),
            transport_id=transport_id,
        ))

        effective_input = text or ""
        if file is not None and file.is_audio:
            transcript = await self._transcribe(file)
            effective_input = transcript
            session = self.registry.find_live(user_id)
            if session is None:
                logger.info(f"Session of {user_id} closed during transcription")
                return
            self.registry.append_message(session, Message(
                sender=Sender.SYSTEM,
                text=self.catalog.text("transcriptionNote", {"text": transcript}),
            ))

        session = self.registry.find_live(user_id)
        if session is None or not isinstance(session.ownership, BotOwned):
            logger.debug(f"Message from {user_id} recorded, session owned by {session.pool if session else 'nobody'}")
            return

        await self.state_machine.step(session, effective_input)

    async def _transcribe(self, file: FileAttachment) -> str:
        if self.transcriber is None:
            return self.catalog.text("transcriptionUnavailable")
        return await self.transcriber.transcribe(file.data, file.mime_type)

    def _quote_snapshot(self, quoted: Optional[QuotedMessage], session: Session) -> Optional[ReplySnapshot]:
        if quoted is None:
            return None
        # Quoted media without a caption has no text of its own
        text = quoted.text or self.catalog.text("quotedMedia")
        if quoted.from_me:
            return ReplySnapshot(text=text, sender=Sender.ATTENDANT.value,
                                 sender_name=self.catalog.text("quotedSelfName"))
        return ReplySnapshot(text=text, sender=Sender.USER.value, sender_name=session.user_name)

    def handle_receipt(self, receipt: StatusReceipt) -> bool:
        """Apply a delivery/read receipt to the message it acknowledges."""
        return self.registry.apply_delivery_status(receipt.user_id, receipt.transport_id, receipt.status)

    async def _fetch_media(self, file: FileAttachment, transport_id: str) -> None:
        """Fill in media the gateway delivered without its body."""
        if self.media_fetcher is None:
            return
        try:
            file.data = await self.media_fetcher(transport_id) or ""
        except CollaboratorUnavailableError as e:
            logger.error(f"Could not download media {transport_id}: {e}")
