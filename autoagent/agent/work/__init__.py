"""Work units driven by the autonomous agent."""

from .base import AgentWork
from .start_goal import StartGoalWork
from .analyze_task import AnalyzeTaskWork
from .execute_task import ExecuteTaskWork
from .create_tasks import CreateTasksWork
from .summarize import SummarizeWork

__all__ = [
    "AgentWork",
    "StartGoalWork",
    "AnalyzeTaskWork",
    "ExecuteTaskWork",
    "CreateTasksWork",
    "SummarizeWork",
]
