"""Follow-up task creation after a task produced a result."""

from typing import TYPE_CHECKING, List, Optional, Tuple

import structlog

from ..models import Message, Task
from .base import AgentWork

if TYPE_CHECKING:
    from ..autonomous_agent import AutonomousAgent

logger = structlog.get_logger("autoagent.agent")


class CreateTasksWork(AgentWork):
    """Asks the gateway which tasks are still missing for the goal.

    Proposals that are blank or repeat an existing task are dropped.
    New tasks are only added to the store in ``conclude``.
    """

    def __init__(self, parent: "AutonomousAgent", task: Task, last_result: str):
        super().__init__(parent)
        self.task = task
        self.last_result = last_result
        self.new_tasks: List[str] = []
        self.messages: List[Message] = []

    async def run(self) -> None:
        model = self.parent.model
        proposed = await self.parent.gateway.get_additional_tasks(
            goal=model.get_goal(),
            current=self.task.value,
            completed=[t.value for t in model.get_completed_tasks()],
            remaining=model.get_remaining_task_values(),
            result=self.last_result,
            settings=self.parent.model_settings,
        )

        seen = set()
        for value in proposed:
            value = value.strip()
            key = value.lower()
            if not value or key in seen or model.has_task_value(value):
                continue
            seen.add(key)
            self.new_tasks.append(value)

        logger.info(
            "additional_tasks_proposed",
            task_id=self.task.id,
            proposed=len(proposed),
            accepted=len(self.new_tasks),
        )
        self.result = "\n".join(self.new_tasks)

    async def conclude(self) -> None:
        created = self.parent.model.add_tasks(self.new_tasks)
        self.messages = [self.parent.message_service.start_task(t) for t in created]
        if self.messages:
            await self.parent.save_messages(self.messages)

    def next(self) -> Optional[AgentWork]:
        return None

    def _identity(self) -> Tuple:
        return (self.task.id, self.last_result)
