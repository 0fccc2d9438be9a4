"""
Conversation state machine.

Drives a bot-owned session through the dialogue graph: resolves numbered
choices, captures free text, forwards assistant-chat questions to the LLM and
walks chains of auto-advancing nodes with a pacing delay between prompts.

Every bot text is appended to the session log and enqueued for delivery in
the same step, so log order and delivery order match.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from zapdesk.models import BotOwned, HumanOwned, Message, Sender, Session
from zapdesk.repositories.session_registry import SessionRegistry
from zapdesk.services.catalog_service import TextCatalog
from zapdesk.services.conversation_flow import (
    CONVERSATION_FLOW,
    INITIAL_STATE,
    FlowNode,
    FlowOption,
    QueueRequest,
)
from zapdesk.services.llm_service import LLMService
from zapdesk.services.outbound_queue import OutboundQueue
from zapdesk.utils.logger import logger


RESOLVED_BY_USER = "user"


@dataclass
class StepResult:
    outbound_texts: List[str] = field(default_factory=list)
    terminal: bool = False


def _state_name(state: Any) -> str:
    return getattr(state, "value", state)


class ConversationStateMachine:
    """Bot dialogue engine over a flow graph."""

    def __init__(
        self,
        registry: SessionRegistry,
        outbound: OutboundQueue,
        catalog: TextCatalog,
        llm: Optional[LLMService] = None,
        flow: Optional[Mapping[str, FlowNode]] = None,
        pacing_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_ai_history: int = 10,
    ):
        self.registry = registry
        self.outbound = outbound
        self.catalog = catalog
        self.llm = llm
        self.flow: Dict[str, FlowNode] = {_state_name(k): v for k, v in (flow or CONVERSATION_FLOW).items()}
        self.pacing_delay = pacing_delay
        self.sleep = sleep
        self.max_ai_history = max_ai_history

    async def step(self, session: Session, user_input: str) -> StepResult:
        """
        Advance a bot-owned session by one user input.

        Args:
            session: Live bot-owned session
            user_input: Text typed (or transcribed) by the user

        Returns:
            Texts emitted to the user and whether the session ended
        """
        result = StepResult()
        node = self._current_node(session)
        option = self._select_option(node, user_input)

        if option is not None:
            await self._transition(session, option.next_state, option.payload, result)
        elif node.llm_chat:
            await self._chat(session, user_input, result)
        elif node.requires_text_input and node.next_state:
            session.context.setdefault("history", {})[session.conversation_state] = user_input
            await self._transition(session, node.next_state, None, result)
        else:
            self._reject(session, node, result)

        return result

    def _current_node(self, session: Session) -> FlowNode:
        node = self.flow.get(session.conversation_state)
        if node is None:
            logger.warning(
                f"Unknown state {session.conversation_state!r} for {session.user_id}, resetting to {INITIAL_STATE}"
            )
            session.conversation_state = INITIAL_STATE
            node = self.flow[INITIAL_STATE]
        return node

    @staticmethod
    def _select_option(node: FlowNode, user_input: str) -> Optional[FlowOption]:
        if not node.options:
            return None
        try:
            choice = int((user_input or "").strip())
        except ValueError:
            return None
        if 1 <= choice <= len(node.options):
            return node.options[choice - 1]
        return None

    def _emit(self, session: Session, text: str, result: StepResult) -> None:
        message = self.registry.append_message(session, Message(sender=Sender.BOT, text=text))
        self.outbound.enqueue(
            session.user_id,
            text=text,
            session_id=session.session_id,
            message_id=message.id,
        )
        result.outbound_texts.append(text)

    def _reject(self, session: Session, node: FlowNode, result: StepResult) -> None:
        if session.conversation_state != INITIAL_STATE and not session.invalid_notice_shown:
            session.invalid_notice_shown = True
            self._emit(session, self.catalog.text("invalidOption"), result)
        self._emit(session, self.catalog.render_node(node, session.context), result)

    async def _transition(
        self,
        session: Session,
        next_state: str,
        payload: Optional[Mapping[str, Any]],
        result: StepResult,
    ) -> None:
        if payload:
            session.context.update(payload)
        session.invalid_notice_shown = False

        state: Optional[str] = _state_name(next_state)
        while state is not None:
            node = self.flow.get(state)
            if node is None:
                logger.warning(f"Flow has no state {state!r}, resetting to {INITIAL_STATE}")
                state, node = INITIAL_STATE, self.flow[INITIAL_STATE]
            session.conversation_state = state

            if node.terminal:
                self._emit(session, self.catalog.render_node(node, session.context), result)
                self.registry.close_bot_session(session.user_id, RESOLVED_BY_USER)
                result.terminal = True
                logger.info(f"Session of {session.user_id} ended by the user")
                return

            if node.queue_request is not None:
                self._request_attendant(session, node.queue_request)

            self._emit(session, self.catalog.render_node(node, session.context), result)

            if not node.auto_advances:
                return

            await self.sleep(self.pacing_delay)
            if not self.registry.is_current(session) or isinstance(session.ownership, HumanOwned):
                logger.info(f"Stopping prompt chain for {session.user_id}: session changed owner")
                return
            state = _state_name(node.next_state)

    def _request_attendant(self, session: Session, request: QueueRequest) -> None:
        values = self.catalog.template_values(session.context)
        department = request.department or session.context.get("department") or ""
        reason = self.catalog.text(request.reason_key, values)
        self.registry.move_to_queue(session.user_id, department, reason)

    async def _chat(self, session: Session, text: str, result: StepResult) -> None:
        if self.llm is None:
            self._emit(session, self.catalog.text("aiUnavailable"), result)
            return

        session.ai_history.append({"role": "user", "text": text})
        del session.ai_history[:-self.max_ai_history]
        chat_state = session.conversation_state

        reply = await self.llm.generate_reply(
            list(session.ai_history),
            self.catalog.system_instruction(session.context.get("department")),
        )

        if (
            not self.registry.is_current(session)
            or not isinstance(session.ownership, BotOwned)
            or session.conversation_state != chat_state
        ):
            logger.info(f"Discarding assistant reply for {session.user_id}: session moved on")
            return

        session.ai_history.append({"role": "model", "text": reply})
        del session.ai_history[:-self.max_ai_history]
        self._emit(session, reply, result)
