"""Analysis step: choose how a pending task will be executed."""

from typing import TYPE_CHECKING, Optional, Tuple

import structlog

from ...exceptions import GatewayConfigError
from ..models import Analysis, Task, TaskStatus
from .base import AgentWork
from .execute_task import ExecuteTaskWork

if TYPE_CHECKING:
    from ..autonomous_agent import AutonomousAgent

logger = structlog.get_logger("autoagent.agent")


class AnalyzeTaskWork(AgentWork):
    """Marks a task executing and asks the gateway for its Analysis.

    Followed by an ``ExecuteTaskWork`` for the same task. A gateway
    that is not configured halts the run, since every later call
    would fail the same way; any other failure only fails this task.
    """

    counts_as_loop = True

    def __init__(self, parent: "AutonomousAgent", task: Task):
        super().__init__(parent)
        self.task = task
        self.analysis: Optional[Analysis] = None

    async def run(self) -> None:
        model = self.parent.model
        self.task = model.update_task_status(self.task, TaskStatus.EXECUTING)

        analysis = await self.parent.gateway.analyze_task(
            model.get_goal(), self.task.value, self.parent.model_settings
        )
        logger.info(
            "task_analyzed",
            task_id=self.task.id,
            action=analysis.action.value,
            run_id=self.parent.run_id,
        )
        self.parent.message_service.send_analysis_message(analysis)
        self.analysis = analysis
        self.result = analysis.reasoning

    def next(self) -> Optional[AgentWork]:
        if self.analysis is None:
            return None
        return ExecuteTaskWork(self.parent, self.task, self.analysis)

    def on_error(self, e: Exception) -> bool:
        self._fail_task(self.task)
        recoverable = super().on_error(e)
        return recoverable and not isinstance(e, GatewayConfigError)

    def _identity(self) -> Tuple:
        return (self.task.id,)
