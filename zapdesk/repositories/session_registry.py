"""
Session registry.

Owns every live conversation record and the archive. A live session sits in
exactly one of three pools, and its ownership variant names that pool:

- bot sessions (BotOwned): the menu bot answers
- queue (Queued): waiting for an attendant, the bot stays silent
- active chats (HumanOwned): an attendant owns the conversation

Every move pops the record from its pool, replaces the ownership variant and
inserts it into the target pool in one synchronous step. All callers run on
the console event loop thread, so no move can interleave with another.

Each mutation is written through to the persistent store.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from zapdesk.models import (
    ArchivedSegment,
    BotOwned,
    DeliveryStatus,
    HumanOwned,
    Message,
    Queued,
    QueueEntry,
    Sender,
    Session,
    utc_now,
)
from zapdesk.repositories.collection_repo import PersistentStore
from zapdesk.utils.logger import logger


BOT_SESSIONS = "bot_sessions"
ACTIVE_CHATS = "active_chats"
QUEUE = "queue"
ARCHIVED_CHATS = "archived_chats"

_ONE_MICROSECOND = timedelta(microseconds=1)


class SessionRegistry:
    """Pool ownership and lifecycle of per-user conversation records."""

    def __init__(
        self,
        store: PersistentStore,
        max_bot_sessions: int = 1000,
        max_archived_users: int = 500,
        idle_expiry: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.max_bot_sessions = max_bot_sessions
        self.max_archived_users = max_archived_users
        self.idle_expiry = idle_expiry
        self.clock = clock

        self._bot_sessions: Dict[str, Session] = {}
        self._active_chats: Dict[str, Session] = {}
        self._queue: Dict[str, Session] = {}
        self._archived: Dict[str, List[ArchivedSegment]] = {}
        self._next_queue_id = 1

    # ----- startup -----

    def restore(self) -> None:
        """Reload all pools from the store, keeping each user in one pool."""
        active = [Session.from_dict(d) for d in self.store.load(ACTIVE_CHATS, [])]
        queue_doc = self.store.load(QUEUE, {}) or {}
        queued = [Session.from_dict(d) for d in queue_doc.get("items", [])]
        bots = [Session.from_dict(d) for d in self.store.load(BOT_SESSIONS, [])]

        for session in active:
            if isinstance(session.ownership, HumanOwned):
                self._active_chats[session.user_id] = session
        for session in queued:
            if isinstance(session.ownership, Queued) and not self._holds(session.user_id):
                self._queue[session.user_id] = session
        for session in bots:
            if self._holds(session.user_id):
                logger.warning(f"Dropping stale bot session for {session.user_id}: already held by another pool")
                continue
            session.ownership = BotOwned()
            self._bot_sessions[session.user_id] = session

        highest = max((s.ownership.entry.id for s in self._queue.values()), default=0)
        self._next_queue_id = max(int(queue_doc.get("nextId", 1)), highest + 1)

        archived = self.store.load(ARCHIVED_CHATS, {}) or {}
        self._archived = {
            user_id: [ArchivedSegment.from_dict(d) for d in segments]
            for user_id, segments in archived.items()
        }

        logger.info(
            f"Restored pools: {len(self._bot_sessions)} bot, {len(self._queue)} queued, "
            f"{len(self._active_chats)} active, {len(self._archived)} archived users"
        )

    # ----- lookups -----

    def _holds(self, user_id: str) -> bool:
        return user_id in self._bot_sessions or user_id in self._active_chats or user_id in self._queue

    def pools_holding(self, user_id: str) -> List[str]:
        """Names of the live pools containing user_id (at most one when consistent)."""
        pools = []
        if user_id in self._bot_sessions:
            pools.append(BOT_SESSIONS)
        if user_id in self._active_chats:
            pools.append(ACTIVE_CHATS)
        if user_id in self._queue:
            pools.append(QUEUE)
        return pools

    def find_live(self, user_id: str) -> Optional[Session]:
        return (
            self._bot_sessions.get(user_id)
            or self._active_chats.get(user_id)
            or self._queue.get(user_id)
        )

    def active_chat(self, user_id: str) -> Optional[Session]:
        return self._active_chats.get(user_id)

    def bot_session(self, user_id: str) -> Optional[Session]:
        return self._bot_sessions.get(user_id)

    def is_current(self, session: Session) -> bool:
        """True while session is still the live record for its user."""
        return self.find_live(session.user_id) is session

    def get_or_create(self, user_id: str, user_name: Optional[str] = None) -> Session:
        """
        Return the live session for user_id, creating a bot-owned one if absent.

        A non-empty user_name that differs from the stored one replaces it.
        """
        session = self.find_live(user_id)
        if session is None:
            self._evict_oldest_bot_session()
            session = Session(user_id=user_id, user_name=user_name)
            self._bot_sessions[user_id] = session
            logger.info(f"Created bot session for {user_id}")
            self._persist(BOT_SESSIONS)
        elif user_name and session.user_name != user_name:
            session.user_name = user_name
            self._persist_session(session)
        return session

    def _evict_oldest_bot_session(self) -> None:
        while self._bot_sessions and len(self._bot_sessions) >= self.max_bot_sessions:
            oldest = next(iter(self._bot_sessions))
            del self._bot_sessions[oldest]
            logger.warning(f"Bot session cap reached, evicted oldest session {oldest}")

    # ----- messages -----

    def _latest_timestamp(self, session: Session) -> Optional[datetime]:
        if session.message_log:
            return session.message_log[-1].timestamp
        segments = self._archived.get(session.user_id)
        if segments:
            for segment in reversed(segments):
                if segment.message_log:
                    return segment.message_log[-1].timestamp
        return None

    def append_message(self, session: Session, message: Message) -> Message:
        """
        Append a message to a live session log.

        Assigns the next per-session message id and keeps timestamps unique and
        strictly increasing across the user's archived and live segments.
        """
        latest = self._latest_timestamp(session)
        if latest is not None and message.timestamp <= latest:
            message.timestamp = latest + _ONE_MICROSECOND

        message.id = session.next_message_id
        session.next_message_id += 1
        session.message_log.append(message)
        self._persist_session(session)
        return message

    def mark_sent(self, user_id: str, session_id: str, message_id: int, transport_id: Optional[str]) -> bool:
        """Advance a delivered outbound message to SENT by exact id."""
        session = self.find_live(user_id)
        if session is None or session.session_id != session_id:
            return False
        message = session.find_message(message_id=message_id)
        if message is None:
            return False
        return self._advance_status(session, message, DeliveryStatus.SENT, transport_id)

    def mark_sent_by_text(self, user_id: str, text: Optional[str], transport_id: Optional[str]) -> bool:
        """
        Fallback acknowledgement for entries that carry no message id.

        Picks the most recent pending bot or attendant message with identical
        text, which can pick the wrong one when the same text is sent twice.
        """
        session = self.find_live(user_id)
        if session is None:
            return False
        for message in reversed(session.message_log):
            if message.sender not in (Sender.BOT, Sender.ATTENDANT):
                continue
            if message.text == text and (message.status is None or message.status < DeliveryStatus.SENT):
                return self._advance_status(session, message, DeliveryStatus.SENT, transport_id)
        return False

    def apply_delivery_status(self, user_id: str, transport_id: str, status: DeliveryStatus) -> bool:
        """Apply a transport receipt to the live message it refers to."""
        session = self.find_live(user_id)
        if session is None:
            return False
        for message in reversed(session.message_log):
            if message.transport_id == transport_id:
                return self._advance_status(session, message, status, None)
        return False

    def _advance_status(
        self,
        session: Session,
        message: Message,
        status: DeliveryStatus,
        transport_id: Optional[str],
    ) -> bool:
        changed = False
        if message.status is None or message.status < status:
            message.status = status
            changed = True
        if transport_id and message.transport_id != transport_id:
            message.transport_id = transport_id
            changed = True
        if changed:
            self._persist_session(session)
        return changed

    # ----- pool moves -----

    def move_to_queue(self, user_id: str, department: str, reason: str) -> Optional[QueueEntry]:
        """
        Move a bot-owned session into the attendant queue.

        No-op when the user is already queued or in an active chat.
        """
        if user_id in self._queue or user_id in self._active_chats:
            logger.info(f"Skipping queue request for {user_id}: already queued or attended")
            return None

        session = self._bot_sessions.pop(user_id, None)
        if session is None:
            logger.warning(f"Cannot queue {user_id}: no bot session")
            return None

        entry = QueueEntry(
            id=self._next_queue_id,
            user_id=user_id,
            user_name=session.user_name,
            department=department,
            message=reason,
            timestamp=self.clock(),
        )
        self._next_queue_id += 1
        session.ownership = Queued(entry)
        self._queue[user_id] = session

        logger.info(f"Queued {user_id} for department {department} (entry {entry.id})")
        self._persist(BOT_SESSIONS, QUEUE)
        return entry

    def takeover(self, user_id: str, attendant_id: str, user_name: Optional[str] = None) -> Session:
        """
        Give an attendant ownership of the user's conversation.

        Claims the queued or bot session, or opens a fresh one when the user
        has none. If an attendant already owns the chat, the existing session
        is returned untouched, so a duplicate takeover keeps the first owner.
        """
        existing = self._active_chats.get(user_id)
        if existing is not None:
            logger.info(f"Takeover of {user_id} by {attendant_id} ignored: owned by {existing.attendant_id}")
            return existing

        session = self._queue.pop(user_id, None) or self._bot_sessions.pop(user_id, None)
        if session is None:
            session = Session(user_id=user_id, user_name=user_name)
        elif user_name and not session.user_name:
            session.user_name = user_name

        session.ownership = HumanOwned(attendant_id)
        self._active_chats[user_id] = session

        logger.info(f"Attendant {attendant_id} took over {user_id}")
        self._persist(BOT_SESSIONS, QUEUE, ACTIVE_CHATS)
        return session

    def transfer(self, user_id: str, new_attendant_id: str, note: str) -> Optional[Session]:
        """Hand an active chat to another attendant and log a system note."""
        session = self._active_chats.get(user_id)
        if session is None:
            return None

        session.ownership = HumanOwned(new_attendant_id)
        self.append_message(session, Message(sender=Sender.SYSTEM, text=note, timestamp=self.clock()))
        logger.info(f"Transferred {user_id} to attendant {new_attendant_id}")
        return session

    def resolve(self, user_id: str, resolved_by: str) -> Optional[ArchivedSegment]:
        """Archive and close an active chat. Returns None if it is not active."""
        session = self._active_chats.pop(user_id, None)
        if session is None:
            logger.info(f"Resolve of {user_id} ignored: not an active chat")
            return None

        segment = self._archive(session, resolved_by)
        self._persist(ACTIVE_CHATS)
        return segment

    def close_bot_session(self, user_id: str, resolved_by: str) -> Optional[ArchivedSegment]:
        """Archive and discard a bot-owned or queued session."""
        session = self._bot_sessions.pop(user_id, None) or self._queue.pop(user_id, None)
        if session is None:
            return None

        segment = self._archive(session, resolved_by)
        self._persist(BOT_SESSIONS, QUEUE)
        return segment

    def _archive(self, session: Session, resolved_by: str) -> ArchivedSegment:
        segment = ArchivedSegment.from_session(session, resolved_by, self.clock())
        self._archived.setdefault(session.user_id, []).append(segment)

        while len(self._archived) > self.max_archived_users:
            oldest = next(iter(self._archived))
            del self._archived[oldest]
            logger.warning(f"Archive cap reached, dropped history of {oldest}")

        logger.info(f"Archived session of {session.user_id} ({len(segment.message_log)} messages, by {resolved_by})")
        self._persist(ARCHIVED_CHATS)
        return segment

    # ----- maintenance -----

    def expire_idle_bot_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Drop bot sessions idle for longer than idle_expiry."""
        now = now or self.clock()
        expired = [
            user_id for user_id, session in self._bot_sessions.items()
            if now - session.last_activity > self.idle_expiry
        ]
        for user_id in expired:
            del self._bot_sessions[user_id]
        if expired:
            logger.info(f"Expired {len(expired)} idle bot sessions")
            self._persist(BOT_SESSIONS)
        return expired

    # ----- snapshots -----

    def queue_entries(self) -> List[QueueEntry]:
        return sorted((s.ownership.entry for s in self._queue.values()), key=lambda e: e.id)

    def active_chats(self) -> List[Session]:
        return list(self._active_chats.values())

    def bot_sessions(self, states: Optional[Iterable[str]] = None) -> List[Session]:
        sessions = list(self._bot_sessions.values())
        if states is not None:
            wanted = set(states)
            sessions = [s for s in sessions if s.conversation_state in wanted]
        return sessions

    def archived_segments(self, user_id: str) -> List[ArchivedSegment]:
        return list(self._archived.get(user_id, []))

    def archived_user_ids(self) -> List[str]:
        return list(self._archived)

    def known_user_names(self) -> Dict[str, Optional[str]]:
        """user_id -> latest display name across archives and live pools."""
        names: Dict[str, Optional[str]] = {}
        for user_id, segments in self._archived.items():
            names[user_id] = segments[-1].user_name
        for pool in (self._bot_sessions, self._queue, self._active_chats):
            for user_id, session in pool.items():
                names[user_id] = session.user_name or names.get(user_id)
        return names

    # ----- persistence -----

    def touch(self, session: Session) -> None:
        """Write through an in-place change to a live session."""
        self._persist_session(session)

    def _persist_session(self, session: Session) -> None:
        if self._bot_sessions.get(session.user_id) is session:
            self._persist(BOT_SESSIONS)
        elif self._active_chats.get(session.user_id) is session:
            self._persist(ACTIVE_CHATS)
        elif self._queue.get(session.user_id) is session:
            self._persist(QUEUE)

    def _persist(self, *names: str) -> None:
        for name in names:
            if name == BOT_SESSIONS:
                self.store.save(name, [s.to_dict() for s in self._bot_sessions.values()])
            elif name == ACTIVE_CHATS:
                self.store.save(name, [s.to_dict() for s in self._active_chats.values()])
            elif name == QUEUE:
                self.store.save(name, {
                    "nextId": self._next_queue_id,
                    "items": [s.to_dict() for s in self._queue.values()],
                })
            elif name == ARCHIVED_CHATS:
                self.store.save(name, {
                    user_id: [segment.to_dict() for segment in segments]
                    for user_id, segments in self._archived.items()
                })
