"""Concluding step: summarize the results of all completed tasks."""

from typing import Optional

import structlog

from ..models import Message, MessageStatus, MessageType
from .base import AgentWork

logger = structlog.get_logger("autoagent.agent")

SUMMARIZING_TEXT = "Summarizing..."
EMPTY_SUMMARY_TEXT = "Sorry, I couldn't generate a proper summary. Please try again."


class SummarizeWork(AgentWork):
    """Condenses completed task results into one final message.

    The store is marked concluded before the gateway is called, so a
    failed summary is never retried.
    """

    def __init__(self, parent):
        super().__init__(parent)
        self.message: Optional[Message] = None

    async def run(self) -> None:
        model = self.parent.model
        model.mark_concluded()
        goal = model.get_goal()

        message = Message(
            type=MessageType.TASK,
            status=MessageStatus.COMPLETED,
            value=f'Summarizing "{goal}"',
            info=SUMMARIZING_TEXT,
        )
        self.parent.message_service.send(message)
        self.message = message

        results = [t.result for t in model.get_completed_tasks() if t.result]
        summary = await self.parent.gateway.summarize(goal, results, self.parent.model_settings)
        if not summary or not summary.strip():
            logger.warning("summary_empty", run_id=self.parent.run_id)
            summary = EMPTY_SUMMARY_TEXT

        message.info = summary
        message.final = True
        self.parent.message_service.update(message)
        self.result = summary
        logger.info("summary_created", results=len(results), length=len(summary))

    async def conclude(self) -> None:
        if self.message is not None:
            await self.parent.save_messages([self.message])
