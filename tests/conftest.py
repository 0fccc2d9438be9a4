"""
Pytest configuration and shared fixtures.

Provides a temporary SQLite-backed persistent store and the console
components wired together with fake collaborators (recording transport,
scripted LLM, instant sleep).
"""

import os
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from zapdesk.handlers.inbound_handler import InboundDispatcher
from zapdesk.models import Base
from zapdesk.repositories.collection_repo import PersistentStore
from zapdesk.repositories.directory_repo import DirectoryRepository
from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.services.attendant_service import AttendantService
from zapdesk.services.catalog_service import TextCatalog
from zapdesk.services.history_service import HistoryService
from zapdesk.services.outbound_queue import OutboundQueue
from zapdesk.services.state_machine import ConversationStateMachine
from zapdesk.transport.base import RecordingTransport
from zapdesk.utils.database import create_db_engine


@pytest.fixture(scope="function")
def test_db_path() -> Generator[Path, None, None]:
    """
    Create a temporary database file for testing.

    File-based SQLite is used instead of in-memory so every store call can
    open its own connection, as in production.

    Yields:
        Path to temporary test database file
    """
    fd, path = tempfile.mkstemp(suffix=".db", prefix="test_zapdesk_")
    os.close(fd)

    db_path = Path(path)

    yield db_path

    for suffix in ("", "-wal", "-shm"):
        candidate = Path(f"{db_path}{suffix}")
        if candidate.exists():
            candidate.unlink()


@pytest.fixture(scope="function")
def test_engine(test_db_path: Path) -> Generator[Engine, None, None]:
    """
    Engine for the test database, built by the production factory so the
    same pragmas apply, with all tables created.
    """
    engine = create_db_engine(f"sqlite:///{test_db_path}")
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: Engine):
    return sessionmaker(bind=test_engine, expire_on_commit=False)


@pytest.fixture(scope="function")
def test_session(session_factory):
    """Raw database session for repository-level tests."""
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def store(session_factory) -> PersistentStore:
    return PersistentStore(session_factory)


@pytest.fixture(scope="function")
def registry(store: PersistentStore) -> SessionRegistry:
    return SessionRegistry(store)


@pytest.fixture(scope="function")
def directory(store: PersistentStore) -> DirectoryRepository:
    directory = DirectoryRepository(store)
    directory.restore()
    return directory


@pytest.fixture(scope="function")
def catalog(tmp_path: Path) -> TextCatalog:
    """Built-in catalog (the override file does not exist)."""
    return TextCatalog(str(tmp_path / "bot_texts.yml"))


@pytest.fixture(scope="function")
def fake_sleep() -> AsyncMock:
    """Instant replacement for asyncio.sleep that records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture(scope="function")
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture(scope="function")
def outbound(transport, registry, fake_sleep) -> OutboundQueue:
    return OutboundQueue(transport, registry, drain_interval=0, failure_backoff=5, sleep=fake_sleep)


@pytest.fixture(scope="function")
def fake_llm() -> Mock:
    """
    Scripted LLM collaborator.

    generate_reply is an AsyncMock so tests can swap in side effects that
    suspend or fail.
    """
    llm = Mock()
    llm.generate_reply = AsyncMock(return_value="Resposta do assistente.")
    return llm


@pytest.fixture(scope="function")
def state_machine(registry, outbound, catalog, fake_llm, fake_sleep) -> ConversationStateMachine:
    return ConversationStateMachine(registry, outbound, catalog, llm=fake_llm, pacing_delay=0.5, sleep=fake_sleep)


@pytest.fixture(scope="function")
def fake_transcriber() -> Mock:
    transcriber = Mock()
    transcriber.transcribe = AsyncMock(return_value="quero falar com alguém")
    return transcriber


@pytest.fixture(scope="function")
def dispatcher(registry, state_machine, directory, catalog, fake_transcriber) -> InboundDispatcher:
    return InboundDispatcher(registry, state_machine, directory, catalog, transcriber=fake_transcriber)


@pytest.fixture(scope="function")
def attendants(registry, outbound, catalog, directory) -> AttendantService:
    return AttendantService(registry, outbound, catalog, directory)


@pytest.fixture(scope="function")
def history(registry) -> HistoryService:
    return HistoryService(registry)


@pytest.fixture(scope="function")
def drain(outbound: OutboundQueue):
    """Coroutine function delivering every queued entry; returns how many went out."""

    async def _drain() -> int:
        delivered = 0
        while len(outbound):
            if not await outbound.drain_once():
                break
            delivered += 1
        return delivered

    return _drain
