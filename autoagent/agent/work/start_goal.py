"""First step of every run: announce the goal and create the initial tasks."""

from typing import List, Optional

import structlog

from ...exceptions import GatewayResponseError
from ..models import Message
from .base import AgentWork

logger = structlog.get_logger("autoagent.agent")


class StartGoalWork(AgentWork):
    """Sends the goal message and decomposes the goal into tasks.

    Any failure here is fatal: without initial tasks there is nothing
    left for the run to do.
    """

    def __init__(self, parent):
        super().__init__(parent)
        self.task_values: List[str] = []
        self.goal_message: Optional[Message] = None
        self.messages: List[Message] = []

    async def run(self) -> None:
        goal = self.parent.model.get_goal()
        self.goal_message = self.parent.message_service.send_goal_message(goal)

        values = await self.parent.gateway.get_initial_tasks(goal, self.parent.model_settings)
        values = [v.strip() for v in values if v and v.strip()]
        if not values:
            raise GatewayResponseError("No tasks could be created for this goal")

        logger.info("initial_tasks_created", count=len(values), run_id=self.parent.run_id)
        self.task_values = values
        self.result = "\n".join(values)

    async def conclude(self) -> None:
        created = self.parent.model.add_tasks(self.task_values)
        self.messages = [self.parent.message_service.start_task(t) for t in created]
        await self.parent.save_messages([self.goal_message, *self.messages])

    def on_error(self, e: Exception) -> bool:
        super().on_error(e)
        return False
