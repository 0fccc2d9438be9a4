"""
Console runtime.

Builds the console components and runs them on one asyncio event loop in a
background thread. Everything that touches the pools runs on that loop:
webhook dispatch, the outbound drain loop, scheduled maintenance and every
attendant action submitted from Flask request threads.
"""

import asyncio
import threading
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Set

from zapdesk.handlers.inbound_handler import InboundDispatcher
from zapdesk.repositories.collection_repo import PersistentStore
from zapdesk.repositories.directory_repo import DirectoryRepository
from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.services import scheduler_service
from zapdesk.services.attendant_service import AttendantService
from zapdesk.services.catalog_service import TextCatalog
from zapdesk.services.directory_service import DirectoryService
from zapdesk.services.history_service import HistoryService
from zapdesk.services.llm_service import LLMService
from zapdesk.services.outbound_queue import OutboundQueue
from zapdesk.services.state_machine import ConversationStateMachine
from zapdesk.services.transcription_service import TranscriptionService
from zapdesk.transport.base import ConnectionUpdate, InboundEvent, RecordingTransport, StatusReceipt, Transport
from zapdesk.transport.evolution import EvolutionTransport, parse_webhook
from zapdesk.utils.config_loader import config
from zapdesk.utils.logger import logger


def build_llm(catalog: TextCatalog) -> Optional[LLMService]:
    """LLM collaborator, or None when no API key is configured."""
    try:
        return LLMService(
            catalog,
            model=config.get("console.llm.model"),
            max_context_messages=config.get_int("console.llm.max_context_messages", 10),
            max_tokens_per_request=config.get_int("console.llm.max_tokens_per_request", 4000),
            max_response_tokens=config.get_int("console.llm.max_response_tokens", 500),
        )
    except ValueError as e:
        logger.warning(f"Assistant disabled: {e}")
        return None


class ConsoleRuntime:
    """Wires the console and owns its event loop thread."""

    def __init__(
        self,
        store: Optional[PersistentStore] = None,
        transport: Optional[Transport] = None,
        catalog: Optional[TextCatalog] = None,
        llm: Optional[LLMService] = None,
        transcriber: Optional[TranscriptionService] = None,
        use_ai: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.catalog = catalog or TextCatalog(config.get("console.catalog_file", "config/bot_texts.yml"))
        self.store = store or PersistentStore()

        self.registry = SessionRegistry(
            self.store,
            max_bot_sessions=config.get_int("console.sessions.max_bot_sessions", 1000),
            max_archived_users=config.get_int("console.archive.max_archived_users", 500),
            idle_expiry=timedelta(hours=config.get_float("console.sessions.idle_expiry_hours", 24)),
        )
        self.directory = DirectoryRepository(self.store)

        if transport is None:
            transport = EvolutionTransport.from_config()
        if transport is None:
            logger.warning("No WhatsApp gateway configured, using the local recording transport")
            transport = RecordingTransport()
        self.transport = transport

        if use_ai:
            llm = llm or build_llm(self.catalog)
            transcriber = transcriber or TranscriptionService(self.catalog, config.get("console.transcription.model"))

        self.outbound = OutboundQueue(
            self.transport,
            self.registry,
            drain_interval=config.get_float("console.outbound.drain_interval_seconds", 0.5),
            failure_backoff=config.get_float("console.outbound.failure_backoff_seconds", 5.0),
            sleep=sleep,
        )
        self.state_machine = ConversationStateMachine(
            self.registry,
            self.outbound,
            self.catalog,
            llm=llm,
            pacing_delay=config.get_float("console.flow.pacing_delay_seconds", 0.5),
            sleep=sleep,
            max_ai_history=config.get_int("console.llm.max_context_messages", 10),
        )
        self.dispatcher = InboundDispatcher(
            self.registry,
            self.state_machine,
            self.directory,
            self.catalog,
            transcriber=transcriber,
            media_fetcher=getattr(self.transport, "fetch_media", None),
        )
        self.attendants = AttendantService(self.registry, self.outbound, self.catalog, self.directory)
        self.history = HistoryService(self.registry)
        self.directory_service = DirectoryService(self.directory, self.registry)

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._tasks: Set[asyncio.Task] = set()
        self.request_timeout = config.get_float("console.api.request_timeout_seconds", 30.0)

    # ----- lifecycle -----

    def start(self, run_workers: bool = True) -> None:
        """Restore pools and start the event loop thread."""
        self.registry.restore()
        self.directory.restore()

        self.loop = asyncio.new_event_loop()
        ready = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, args=(ready,), name="zapdesk-loop", daemon=True)
        self._thread.start()
        ready.wait()

        if run_workers:
            self.submit(self._start_workers())
        logger.info("Console runtime started")

    def _run_loop(self, ready: threading.Event) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.call_soon(ready.set)
        self.loop.run_forever()

    async def _start_workers(self) -> None:
        self._spawn(self.outbound.run())
        if isinstance(self.transport, EvolutionTransport):
            self._spawn(self.transport.refresh_state())
        scheduler_service.init_scheduler(asyncio.get_running_loop())
        scheduler_service.schedule_idle_sweep(
            self.registry, config.get_int("console.sessions.idle_sweep_minutes", 10)
        )

    def stop(self) -> None:
        if self.loop is None:
            return
        self.outbound.stop()
        self.submit(self._shutdown())
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        self.loop.close()
        self.loop = None
        logger.info("Console runtime stopped")

    async def _shutdown(self) -> None:
        scheduler_service.shutdown_scheduler()
        for task in list(self._tasks):
            task.cancel()
        if isinstance(self.transport, EvolutionTransport):
            await self.transport.close()

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ----- cross-thread entry points -----

    def submit(self, coro: Awaitable[Any]) -> Any:
        """Run a coroutine on the console loop and wait for its result."""
        if self.loop is None:
            raise RuntimeError("Console runtime is not running")
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.request_timeout)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a plain function on the console loop thread."""
        async def invoke():
            return fn(*args, **kwargs)
        return self.submit(invoke())

    # ----- gateway events -----

    async def handle_webhook(self, payload: dict) -> int:
        """
        Apply one gateway webhook body.

        Inbound messages are dispatched in background tasks so the webhook
        returns at once; per-user locks keep each user's messages in order.

        Returns:
            Number of events recognized
        """
        events = parse_webhook(payload, getattr(self.transport, "own_jid", None))
        for event in events:
            if isinstance(event, InboundEvent):
                self._spawn(self.dispatcher.handle_event(event))
            elif isinstance(event, StatusReceipt):
                self.dispatcher.handle_receipt(event)
            elif isinstance(event, ConnectionUpdate):
                if isinstance(self.transport, EvolutionTransport):
                    self.transport.apply_connection_update(event)
                else:
                    self.transport.state = event.state
        return len(events)

    async def drain_tasks(self) -> None:
        """Wait for in-flight dispatch tasks, except the long-running drain loop."""
        pending = [t for t in self._tasks if not t.done() and t.get_coro().__qualname__ != "OutboundQueue.run"]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
