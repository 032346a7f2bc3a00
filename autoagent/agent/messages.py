"""Message sink for the agent feed.

``MessageService`` keeps the ordered feed of one run and forwards
every appended or updated entry to an optional render callback (the
UI collaborator). Work units only talk to the feed through this class.
"""

from typing import Callable, Dict, List, Optional, Tuple

import structlog

from ..exceptions import (
    AgentError,
    GatewayConnectionError,
    GatewayError,
    MessageFinalizedError,
    MessageNotFoundError,
    StoreConsistencyError,
)
from .models import Analysis, AnalysisAction, Message, MessageStatus, MessageType, Task

logger = structlog.get_logger("autoagent.messages")

UNKNOWN_ERROR = "An unknown error occurred. Please try again later."

_ANALYSIS_TEXT = {
    AnalysisAction.ALIGNMENT: '🔍 Aligning the AA structure to sequence for "{arg}"...',
    AnalysisAction.STRUCTURE_CLEANING: '🌐 Removing non-cofactors from structure for "{arg}"...',
    AnalysisAction.FOLDING: '🎨 Predicting structure for: "{arg}"...',
    AnalysisAction.DOCKING: "💻 Computing molecular docking score...",
    AnalysisAction.STORYTELLING: "Storytelling...",
}


def _describe_gateway_error(e: GatewayError) -> str:
    """Map a provider failure to the text shown to the user."""
    detail = e.detail
    if e.status == 409:
        return detail if isinstance(detail, str) and detail else "An Unknown Error Occurred, Please Try Again!"
    if e.status == 422:
        if isinstance(detail, list):
            msgs = [d.get("msg", "") for d in detail if isinstance(d, dict)]
            if msgs:
                return "\n".join(msgs)
        return e.message or UNKNOWN_ERROR
    if e.status == 429:
        return detail if isinstance(detail, str) and detail else "Too many requests. Please try again later."
    if e.status == 403:
        return "Authentication Error. Please make sure you are logged in."
    if e.status == 401:
        return "Invalid API key. Please check the key in your settings."
    if e.status == 404:
        return "The selected model is not available for this API key."
    if e.status is not None:
        return "Error accessing the model provider. Please try again later."
    return e.message or UNKNOWN_ERROR


def describe_error(e: object) -> str:
    """Turn a failure reason into a single user-facing sentence."""
    if isinstance(e, str):
        return e or UNKNOWN_ERROR
    if isinstance(e, GatewayConnectionError):
        return "Error attempting to connect to the server."
    if isinstance(e, GatewayError):
        return _describe_gateway_error(e)
    if isinstance(e, AgentError):
        return e.message or type(e).__name__
    if isinstance(e, Exception):
        return str(e) or type(e).__name__
    return UNKNOWN_ERROR


class MessageService:
    """Ordered, append/update-by-id message feed.

    Args:
        render: Optional callback invoked with a copy of every message
            appended or updated. Exceptions raised by it propagate to
            the caller (the active work unit).
    """

    def __init__(self, render: Optional[Callable[[Message], None]] = None):
        self._render = render
        self._order: List[str] = []
        self._messages: Dict[str, Message] = {}

    @property
    def messages(self) -> Tuple[Message, ...]:
        """The feed in the order messages were first sent."""
        return tuple(self._messages[mid] for mid in self._order)

    def get(self, message_id: str) -> Message:
        try:
            return self._messages[message_id]
        except KeyError:
            raise MessageNotFoundError(
                f"Unknown message {message_id}", message_id=message_id
            ) from None

    def _emit(self, message: Message) -> None:
        if self._render is not None:
            self._render(message.model_copy())

    def send(self, message: Message) -> Message:
        """Append ``message`` to the feed."""
        if message.id in self._messages:
            raise StoreConsistencyError(
                f"Message {message.id} was already sent",
                module="agent.messages",
                message_id=message.id,
            )
        stored = message.model_copy()
        self._messages[stored.id] = stored
        self._order.append(stored.id)
        logger.debug(
            "message_sent",
            message_id=stored.id,
            type=stored.type.value,
            task_id=stored.task_id,
        )
        self._emit(stored)
        return message

    def update(self, message: Message) -> Message:
        """Replace the feed entry with the same id, keeping its position."""
        current = self.get(message.id)
        if current.final:
            raise MessageFinalizedError(
                f"Message {message.id} is final", message_id=message.id
            )
        stored = message.model_copy()
        self._messages[stored.id] = stored
        logger.debug("message_updated", message_id=stored.id, final=stored.final)
        self._emit(stored)
        return message

    def send_error(self, reason: object) -> Message:
        text = describe_error(reason)
        logger.warning("error_message_sent", error=text, exc_type=type(reason).__name__)
        return self.send(Message(type=MessageType.ERROR, value=text))

    # ========== Convenience senders ==========

    def send_goal_message(self, goal: str) -> Message:
        return self.send(Message(type=MessageType.GOAL, value=goal))

    def send_system_message(self, text: str) -> Message:
        return self.send(Message(type=MessageType.SYSTEM, value=text))

    def send_analysis_message(self, analysis: Analysis) -> Message:
        template = _ANALYSIS_TEXT.get(analysis.action, "⏰ Generating response...")
        return self.send(
            Message(type=MessageType.SYSTEM, value=template.format(arg=analysis.arg))
        )

    def start_task(self, task: Task) -> Message:
        return self.send(Message.for_task(task, status=MessageStatus.STARTED))

    def skip_task_message(self, task: Task) -> Message:
        return self.send_system_message(f"🥺 Skipping task: {task.value}")
