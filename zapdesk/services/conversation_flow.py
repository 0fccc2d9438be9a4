"""
Dialogue graph of the menu chatbot.

Nodes are keyed by state name. Each node names the catalog text it shows and
either lists numbered options (edges with an optional context payload),
captures free text and continues at next_state, or auto-advances to
next_state with no input at all.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ChatState(str, Enum):
    GREETING = "GREETING"
    AI_ASSISTANT_SELECT_DEPT = "AI_ASSISTANT_SELECT_DEPT"
    AI_ASSISTANT_CHATTING = "AI_ASSISTANT_CHATTING"
    SCHEDULING_CLIENT_TYPE = "SCHEDULING_CLIENT_TYPE"
    SCHEDULING_NEW_CLIENT_DETAILS = "SCHEDULING_NEW_CLIENT_DETAILS"
    SCHEDULING_EXISTING_CLIENT_DETAILS = "SCHEDULING_EXISTING_CLIENT_DETAILS"
    SCHEDULING_SUMMARY = "SCHEDULING_SUMMARY"
    SCHEDULING_CONFIRMED = "SCHEDULING_CONFIRMED"
    ATTENDANT_SELECT = "ATTENDANT_SELECT"
    ATTENDANT_TRANSFER = "ATTENDANT_TRANSFER"
    END_SESSION = "END_SESSION"


@dataclass(frozen=True)
class FlowOption:
    text_key: str
    next_state: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QueueRequest:
    """Entering the node puts the session in the attendant queue."""

    reason_key: str
    # None means the department comes from the session context
    department: Optional[str] = None


@dataclass(frozen=True)
class FlowNode:
    text_key: str
    options: Tuple[FlowOption, ...] = ()
    requires_text_input: bool = False
    next_state: Optional[str] = None
    llm_chat: bool = False
    terminal: bool = False
    queue_request: Optional[QueueRequest] = None

    @property
    def auto_advances(self) -> bool:
        return bool(self.next_state) and not self.requires_text_input and not self.options


def _department_options(next_state: ChatState) -> Tuple[FlowOption, ...]:
    return (
        FlowOption("deptRH", next_state, {"department": "RH"}),
        FlowOption("deptAccounting", next_state, {"department": "Contábil"}),
        FlowOption("deptTax", next_state, {"department": "Fiscal"}),
        FlowOption("deptCorporate", next_state, {"department": "Societário"}),
        FlowOption("deptFinancial", next_state, {"department": "Financeiro"}),
        FlowOption("backToStart", ChatState.GREETING),
    )


_NAVIGATION = (
    FlowOption("backToStart", ChatState.GREETING),
    FlowOption("optionEndSession", ChatState.END_SESSION),
)

INITIAL_STATE = ChatState.GREETING.value

DETAIL_STATES = (
    ChatState.SCHEDULING_NEW_CLIENT_DETAILS.value,
    ChatState.SCHEDULING_EXISTING_CLIENT_DETAILS.value,
)

# States whose bot sessions the console lists as "talking to the assistant"
AI_STATES = (
    ChatState.AI_ASSISTANT_SELECT_DEPT.value,
    ChatState.AI_ASSISTANT_CHATTING.value,
)

CONVERSATION_FLOW: Dict[str, FlowNode] = {
    ChatState.GREETING: FlowNode(
        text_key="greeting",
        options=(
            FlowOption("optionAiAssistant", ChatState.AI_ASSISTANT_SELECT_DEPT),
            FlowOption("optionScheduling", ChatState.SCHEDULING_CLIENT_TYPE),
            FlowOption("optionAttendant", ChatState.ATTENDANT_SELECT),
            FlowOption("optionEndSession", ChatState.END_SESSION),
        ),
    ),
    ChatState.AI_ASSISTANT_SELECT_DEPT: FlowNode(
        text_key="aiDeptSelect",
        options=_department_options(ChatState.AI_ASSISTANT_CHATTING),
    ),
    ChatState.AI_ASSISTANT_CHATTING: FlowNode(
        text_key="aiDeptPrompt",
        options=(
            FlowOption("optionHumanTransfer", ChatState.ATTENDANT_SELECT),
            *_NAVIGATION,
        ),
        requires_text_input=True,
        llm_chat=True,
    ),
    ChatState.SCHEDULING_CLIENT_TYPE: FlowNode(
        text_key="schedulingClientType",
        options=(
            FlowOption("clientTypeNo", ChatState.SCHEDULING_NEW_CLIENT_DETAILS, {"clientType": "Novo Cliente"}),
            FlowOption("clientTypeYes", ChatState.SCHEDULING_EXISTING_CLIENT_DETAILS, {"clientType": "Cliente Existente"}),
            FlowOption("backToStart", ChatState.GREETING),
        ),
    ),
    ChatState.SCHEDULING_NEW_CLIENT_DETAILS: FlowNode(
        text_key="schedulingNewClientDetails",
        options=_NAVIGATION,
        requires_text_input=True,
        next_state=ChatState.SCHEDULING_SUMMARY,
    ),
    ChatState.SCHEDULING_EXISTING_CLIENT_DETAILS: FlowNode(
        text_key="schedulingExistingClientDetails",
        options=_NAVIGATION,
        requires_text_input=True,
        next_state=ChatState.SCHEDULING_SUMMARY,
    ),
    ChatState.SCHEDULING_SUMMARY: FlowNode(
        text_key="schedulingSummary",
        options=(
            FlowOption("confirmYes", ChatState.SCHEDULING_CONFIRMED),
            FlowOption("confirmNo", ChatState.SCHEDULING_CLIENT_TYPE),
            *_NAVIGATION,
        ),
    ),
    ChatState.SCHEDULING_CONFIRMED: FlowNode(
        text_key="schedulingConfirmed",
        next_state=ChatState.GREETING,
        queue_request=QueueRequest(reason_key="schedulingQueueReason", department="Agendamento"),
    ),
    ChatState.ATTENDANT_SELECT: FlowNode(
        text_key="attendantSelect",
        options=_department_options(ChatState.ATTENDANT_TRANSFER),
    ),
    ChatState.ATTENDANT_TRANSFER: FlowNode(
        text_key="attendantTransferWait",
        queue_request=QueueRequest(reason_key="transferQueueReason"),
    ),
    ChatState.END_SESSION: FlowNode(
        text_key="sessionEnded",
        terminal=True,
    ),
}
