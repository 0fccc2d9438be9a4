"""
Outbound queue.

FIFO of messages waiting to go out through the transport. Anything that wants
to message a user enqueues here and never blocks; a single drain loop sends
one entry per tick while the transport is connected.

Delivery is at least once: a failed entry goes back to the head of the queue
and the worker backs off, so a send that reached WhatsApp before failing
locally can be delivered twice.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, List, Optional

from zapdesk.models import FileAttachment
from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.transport.base import ConnectionState, Transport
from zapdesk.utils.logger import logger


SEND = "send"
EDIT = "edit"


@dataclass
class OutboundEntry:
    user_id: str
    kind: str = SEND
    text: Optional[str] = None
    files: List[FileAttachment] = field(default_factory=list)
    # Session message this entry delivers, for exact acknowledgement
    session_id: Optional[str] = None
    message_id: Optional[int] = None
    # Edit target
    transport_id: Optional[str] = None
    attempts: int = 0


class OutboundQueue:
    """Transport-gated delivery queue with head-of-line retry."""

    def __init__(
        self,
        transport: Transport,
        registry: SessionRegistry,
        drain_interval: float = 0.5,
        failure_backoff: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.registry = registry
        self.drain_interval = drain_interval
        self.failure_backoff = failure_backoff
        self.sleep = sleep
        self._entries: Deque[OutboundEntry] = deque()
        self._stopping = False

    def __len__(self) -> int:
        return len(self._entries)

    def pending(self) -> List[OutboundEntry]:
        return list(self._entries)

    def enqueue(
        self,
        user_id: str,
        text: Optional[str] = None,
        files: Optional[List[FileAttachment]] = None,
        session_id: Optional[str] = None,
        message_id: Optional[int] = None,
    ) -> OutboundEntry:
        entry = OutboundEntry(
            user_id=user_id,
            text=text,
            files=list(files or []),
            session_id=session_id,
            message_id=message_id,
        )
        self._entries.append(entry)
        return entry

    def enqueue_edit(self, user_id: str, transport_id: str, new_text: str) -> OutboundEntry:
        entry = OutboundEntry(user_id=user_id, kind=EDIT, text=new_text, transport_id=transport_id)
        self._entries.append(entry)
        return entry

    def revise_pending(self, session_id: str, message_id: int, new_text: str) -> bool:
        """
        Replace the text of a send still waiting in the queue.

        Returns:
            True if a pending entry for that session message was found
        """
        for entry in self._entries:
            if entry.kind == SEND and entry.session_id == session_id and entry.message_id == message_id:
                entry.text = new_text
                return True
        return False

    async def drain_once(self) -> bool:
        """
        Process at most one entry.

        Returns:
            True if an entry was delivered
        """
        if self.transport.state != ConnectionState.CONNECTED or not self._entries:
            return False

        entry = self._entries.popleft()
        entry.attempts += 1
        try:
            if entry.kind == EDIT:
                await self.transport.edit(entry.user_id, entry.transport_id, entry.text)
                transport_id = entry.transport_id
            else:
                transport_id = await self.transport.send(entry.user_id, entry.text, entry.files)
        except Exception as e:
            logger.error(
                f"Outbound {entry.kind} to {entry.user_id} failed (attempt {entry.attempts}): {e}; "
                f"retrying in {self.failure_backoff}s"
            )
            self._entries.appendleft(entry)
            await self.sleep(self.failure_backoff)
            return False

        if entry.kind == SEND:
            self._acknowledge(entry, transport_id)
        logger.debug(f"Delivered outbound {entry.kind} to {entry.user_id}")
        return True

    def _acknowledge(self, entry: OutboundEntry, transport_id: Optional[str]) -> None:
        if entry.message_id is not None and entry.session_id is not None:
            self.registry.mark_sent(entry.user_id, entry.session_id, entry.message_id, transport_id)
        else:
            self.registry.mark_sent_by_text(entry.user_id, entry.text, transport_id)

    async def run(self) -> None:
        """Drain loop; runs until stop() is called."""
        self._stopping = False
        logger.info("Outbound drain loop started")
        while not self._stopping:
            await self.drain_once()
            await self.sleep(self.drain_interval)
        logger.info("Outbound drain loop stopped")

    def stop(self) -> None:
        self._stopping = True
