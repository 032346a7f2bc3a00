"""Goal/task store for a single agent run.

Holds the goal and the ordered task list. Only the active work unit
(or the orchestrator between steps) mutates it, so no locking is done.
"""

from datetime import datetime
from typing import Dict, Iterable, List

import structlog

from ..exceptions import InvalidStatusTransitionError, TaskNotFoundError
from .models import Task, TaskStatus

logger = structlog.get_logger("autoagent.agent")


class AgentModel:
    """The goal and tasks of one run.

    Tasks are never removed; they only move forward through
    ``TaskStatus``.
    """

    def __init__(self, goal: str):
        self._goal = goal
        self._tasks: Dict[str, Task] = {}
        self._next_order = 0
        self._concluded = False

    # ========== Goal ==========

    def get_goal(self) -> str:
        return self._goal

    def set_goal(self, goal: str) -> None:
        self._goal = goal

    # ========== Tasks ==========

    @property
    def tasks(self) -> List[Task]:
        """All tasks in creation order."""
        return sorted(self._tasks.values(), key=lambda t: t.order)

    def add_task(self, value: str) -> Task:
        task = Task(value=value.strip(), order=self._next_order)
        self._next_order += 1
        self._tasks[task.id] = task
        logger.debug("task_added", task_id=task.id, order=task.order)
        return task

    def add_tasks(self, values: Iterable[str]) -> List[Task]:
        """Add one task per non-blank value, preserving order."""
        return [self.add_task(v) for v in values if v and v.strip()]

    def get_task(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFoundError(f"Unknown task {task_id}", task_id=task_id) from None

    def update_task_status(self, task: Task, status: TaskStatus) -> Task:
        """Move a task to ``status``.

        Setting the current status again is a no-op. A move to a lower
        rank, or from one terminal status to the other, raises
        ``InvalidStatusTransitionError``.
        """
        stored = self.get_task(task.id)
        current = stored.status
        if status == current:
            return stored
        if status.rank <= current.rank:
            raise InvalidStatusTransitionError(
                f"Cannot move task from {current.value} to {status.value}",
                task_id=stored.id,
            )
        logger.debug(
            "task_state_transition",
            task_id=stored.id,
            from_status=current.value,
            to_status=status.value,
        )
        stored.status = status
        if status.is_terminal:
            stored.completed_at = datetime.now()
        return stored

    def update_task_result(self, task: Task, result: str) -> Task:
        stored = self.get_task(task.id)
        stored.result = result
        return stored

    def get_pending_tasks(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.PENDING]

    def get_completed_tasks(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.COMPLETED]

    def get_failed_tasks(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.FAILED]

    def get_remaining_task_values(self) -> List[str]:
        return [t.value for t in self.tasks if not t.status.is_terminal]

    def has_task_value(self, value: str) -> bool:
        needle = value.strip().lower()
        return any(t.value.lower() == needle for t in self._tasks.values())

    # ========== Conclusion ==========

    @property
    def concluded(self) -> bool:
        """Whether the summarize step has been started for this run."""
        return self._concluded

    def mark_concluded(self) -> None:
        self._concluded = True
