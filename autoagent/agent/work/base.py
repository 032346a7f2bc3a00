"""The unit-of-execution contract driven by ``AutonomousAgent``."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Tuple

import structlog

from ...exceptions import StoreConsistencyError
from ..models import Task, TaskStatus

if TYPE_CHECKING:
    from ..autonomous_agent import AutonomousAgent

logger = structlog.get_logger("autoagent.agent")


class AgentWork(ABC):
    """One discrete step of the run loop.

    The orchestrator calls ``run`` then ``conclude``, routes any
    failure of either into ``on_error``, and asks ``next`` for the
    following step. A new step type only has to implement this class;
    the orchestrator's control flow does not change.

    Attributes:
        parent: The owning orchestrator (store, feed, gateway, settings).
        result: Authoritative text output of the step, set by ``run``.
        counts_as_loop: Whether starting this step consumes one unit of
            the run's loop budget.
    """

    counts_as_loop = False

    def __init__(self, parent: "AutonomousAgent"):
        self.parent = parent
        self.result = ""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def run(self) -> None:
        """Perform the step. Called exactly once per instance."""

    async def conclude(self) -> None:
        """Side effects that must only happen after ``run`` succeeded."""

    def next(self) -> Optional["AgentWork"]:
        """Pick the step that should follow this one.

        Must be a pure function of this unit and the store: no I/O and
        no mutation. ``None`` hands the decision back to the
        orchestrator.
        """
        return None

    def on_error(self, e: Exception) -> bool:
        """Report a failure of ``run``/``conclude``.

        Sends exactly one error message. Returns False (halt the run)
        for store-consistency failures, True otherwise.
        """
        logger.error(
            "work_failed",
            work=self.name,
            error=str(e),
            exc_type=type(e).__name__,
            run_id=self.parent.run_id,
        )
        self.parent.message_service.send_error(e)
        return not isinstance(e, StoreConsistencyError)

    def _fail_task(self, task: Task) -> None:
        """Move ``task`` to FAILED unless it already reached a terminal status."""
        try:
            current = self.parent.model.get_task(task.id)
            if not current.status.is_terminal:
                self.parent.model.update_task_status(current, TaskStatus.FAILED)
        except StoreConsistencyError as exc:
            logger.warning("task_fail_mark_skipped", task_id=task.id, error=str(exc))

    # Units are compared by variant and inputs so that repeated next()
    # calls on the same finished unit compare equal.

    def _identity(self) -> Tuple:
        return ()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AgentWork):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.parent is other.parent
            and self._identity() == other._identity()
        )

    def __hash__(self) -> int:
        return hash((type(self), id(self.parent), self._identity()))

    def __repr__(self) -> str:
        return f"{self.name}{self._identity()!r}"
