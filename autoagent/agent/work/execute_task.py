"""Execution step for a single analyzed task."""

from typing import TYPE_CHECKING, Optional, Tuple

import structlog

from ..gateway import ExecutionRequest
from ..models import Analysis, Message, MessageStatus, Task, TaskStatus
from .base import AgentWork
from .create_tasks import CreateTasksWork

if TYPE_CHECKING:
    from ..autonomous_agent import AutonomousAgent

logger = structlog.get_logger("autoagent.agent")

LOADING_TEXT = "Loading..."


class ExecuteTaskWork(AgentWork):
    """Executes one task through the gateway.

    The progress message is shown immediately with a loading body and
    updated in place once the gateway answers. A failed execution only
    fails this task; the run moves on to the remaining ones.
    """

    def __init__(self, parent: "AutonomousAgent", task: Task, analysis: Analysis):
        super().__init__(parent)
        self.task = task
        self.analysis = analysis
        self.message: Optional[Message] = None

    async def run(self) -> None:
        model = self.parent.model
        messages = self.parent.message_service

        self.task = model.update_task_status(self.task, TaskStatus.EXECUTING)
        message = Message.for_task(
            self.task, status=MessageStatus.COMPLETED, info=LOADING_TEXT
        )
        messages.send(message)
        self.message = message

        request = ExecutionRequest(
            run_id=self.parent.run_id,
            goal=model.get_goal(),
            task_value=self.task.value,
            analysis=self.analysis,
            model_settings=self.parent.model_settings.to_api_settings(),
        )
        logger.info(
            "task_execution_started",
            task_id=self.task.id,
            action=self.analysis.action.value,
            run_id=self.parent.run_id,
        )
        result = await self.parent.gateway.execute_task(request)

        message.info = result
        message.final = True
        self.task = model.update_task_result(self.task, result)
        messages.update(message)

        self.task = model.update_task_status(self.task, TaskStatus.COMPLETED)
        self.result = result
        logger.info("task_execution_completed", task_id=self.task.id, length=len(result))

    async def conclude(self) -> None:
        if self.message is not None:
            await self.parent.save_messages([self.message])

    def next(self) -> Optional[AgentWork]:
        if self.parent.model_settings.create_additional_tasks and self.result:
            return CreateTasksWork(self.parent, self.task, self.result)
        return None

    def on_error(self, e: Exception) -> bool:
        self._fail_task(self.task)
        return super().on_error(e)

    def _identity(self) -> Tuple:
        return (self.task.id, self.analysis.action, self.analysis.arg, self.analysis.reasoning)
