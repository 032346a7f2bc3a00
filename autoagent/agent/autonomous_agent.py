"""Autonomous agent orchestrator.

Drives the work-unit state machine for one goal: runs a unit to
completion (``run`` then ``conclude``), routes failures to the unit's
``on_error``, then asks for the following unit until there is no
further work, a stop is requested, or a failure is fatal.

Only one unit is ever active, so the store and the message feed have
exactly one writer at a time and need no locking.

Classes:
    AgentLifecycle: Orchestrator states.
    AutonomousAgent: The run loop.
"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

import structlog

from ..exceptions import AgentStateError, PersistenceError, WorkSchedulingError
from .gateway import AgentGateway
from .messages import MessageService, describe_error
from .models import AgentStatus, Message, MessageType, ModelSettings
from .persistence import MessagePersistence
from .selection import TaskSelectionPolicy, oldest_first
from .store import AgentModel
from .work import AgentWork, AnalyzeTaskWork, StartGoalWork, SummarizeWork

logger = structlog.get_logger("autoagent.agent")

COMPLETED_TEXT = "All tasks completed. Shutting down."
MAX_LOOPS_TEXT = (
    "This agent has maxed out on loops. To save your wallet, this agent is "
    "shutting down. You can configure the number of loops in the settings."
)


class AgentLifecycle(str, Enum):
    """Orchestrator states.

    Flow: IDLE -> RUNNING <-> PAUSED -> STOPPED | ERRORED.
    """
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentLifecycle.STOPPED, AgentLifecycle.ERRORED)


class AutonomousAgent:
    """Runs one goal to completion through a sequence of work units.

    Stop and pause requests are cooperative and only observed between
    units: an in-flight ``run`` is never aborted, but once a stop has
    been requested its successor is never started.

    Args:
        goal: The user's objective.
        gateway: Execution gateway used by every work unit.
        message_service: Feed the run reports to. A fresh one is
            created when omitted.
        persistence: Optional collaborator that saves finished messages.
        model_settings: Caller's model configuration.
        selection_policy: Picks the next pending task to analyze.
        summarize: Whether to finish with a ``SummarizeWork`` step.
        run_id: Identifier forwarded to the gateway. Generated when
            omitted.
    """

    def __init__(
        self,
        goal: str,
        gateway: AgentGateway,
        message_service: Optional[MessageService] = None,
        *,
        persistence: Optional[MessagePersistence] = None,
        model_settings: Optional[ModelSettings] = None,
        selection_policy: TaskSelectionPolicy = oldest_first,
        summarize: bool = True,
        run_id: Optional[str] = None,
    ):
        self.model = AgentModel(goal)
        self.gateway = gateway
        self.message_service = message_service or MessageService()
        self.persistence = persistence
        self.model_settings = model_settings or ModelSettings()
        self.selection_policy = selection_policy
        self.summarize = summarize
        self.run_id = run_id or uuid.uuid4().hex

        self._lifecycle = AgentLifecycle.IDLE
        self._current_work: Optional[AgentWork] = None
        self._stop_requested = False
        self._paused = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._loop_count = 0
        self._loop_notice_sent = False
        self._started_at: Optional[datetime] = None

    # ========== State ==========

    @property
    def lifecycle(self) -> AgentLifecycle:
        return self._lifecycle

    @property
    def is_running(self) -> bool:
        return self._lifecycle in (AgentLifecycle.RUNNING, AgentLifecycle.PAUSED)

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def loop_count(self) -> int:
        return self._loop_count

    def get_status(self) -> AgentStatus:
        """Snapshot of the run for status displays."""
        tasks = self.model.tasks
        uptime = 0.0
        if self._started_at is not None:
            uptime = (datetime.now() - self._started_at).total_seconds()
        return AgentStatus(
            lifecycle=self._lifecycle.value,
            run_id=self.run_id,
            goal=self.model.get_goal(),
            current_work=self._current_work.name if self._current_work else None,
            loop_count=self._loop_count,
            tasks_total=len(tasks),
            tasks_pending=len(self.model.get_pending_tasks()),
            tasks_completed=len(self.model.get_completed_tasks()),
            tasks_failed=len(self.model.get_failed_tasks()),
            started_at=self._started_at,
            uptime_seconds=uptime,
        )

    # ========== Control ==========

    def stop(self) -> None:
        """Request a stop; honored at the next step boundary."""
        if self._lifecycle.is_terminal:
            return
        self._stop_requested = True
        self._resume_event.set()
        logger.info("agent_stop_requested", run_id=self.run_id)

    def pause(self) -> None:
        """Hold the loop before the next step until ``resume`` or ``stop``."""
        if self._lifecycle.is_terminal:
            raise AgentStateError("Cannot pause a finished run", run_id=self.run_id)
        self._paused = True
        self._resume_event.clear()
        logger.info("agent_pause_requested", run_id=self.run_id)

    def resume(self) -> None:
        if self._lifecycle.is_terminal:
            raise AgentStateError("Cannot resume a finished run", run_id=self.run_id)
        self._paused = False
        self._resume_event.set()
        logger.info("agent_resumed", run_id=self.run_id)

    # ========== Run loop ==========

    async def run(self) -> AgentLifecycle:
        """Run the goal until it stops or errors.

        Returns:
            The terminal lifecycle: STOPPED or ERRORED.

        Raises:
            AgentStateError: If the agent was already started.
        """
        if self._lifecycle != AgentLifecycle.IDLE:
            raise AgentStateError(
                f"Agent already {self._lifecycle.value}", run_id=self.run_id
            )
        self._lifecycle = AgentLifecycle.RUNNING
        self._started_at = datetime.now()
        logger.info("agent_run_started", run_id=self.run_id, goal=self.model.get_goal())

        work: Optional[AgentWork] = StartGoalWork(self)
        while work is not None:
            await self._wait_if_paused()
            if self._stop_requested:
                return self._finish(AgentLifecycle.STOPPED, "stop_requested")

            self._current_work = work
            if work.counts_as_loop:
                self._loop_count += 1

            if not await self._execute(work):
                return self._finish(AgentLifecycle.ERRORED, "fatal_error")

            if self._stop_requested:
                return self._finish(AgentLifecycle.STOPPED, "stop_requested")

            try:
                work = self._resolve_next(work)
            except Exception as e:
                if not self._handle_failure(work, e):
                    return self._finish(AgentLifecycle.ERRORED, "fatal_error")
                work = None

        if not self._loop_notice_sent:
            self.message_service.send_system_message(COMPLETED_TEXT)
        return self._finish(AgentLifecycle.STOPPED, "no_further_work")

    async def _wait_if_paused(self) -> None:
        # Re-check after every wake: a pause() may land between resume() and the wake-up
        while self._paused and not self._stop_requested:
            if self._lifecycle != AgentLifecycle.PAUSED:
                self._lifecycle = AgentLifecycle.PAUSED
                logger.info("agent_paused", run_id=self.run_id)
            await self._resume_event.wait()
        self._lifecycle = AgentLifecycle.RUNNING

    async def _execute(self, work: AgentWork) -> bool:
        """Run and conclude one unit. Returns False if the run must halt."""
        logger.debug("work_started", work=work.name, run_id=self.run_id)
        try:
            await work.run()
            await work.conclude()
        except Exception as e:
            return self._handle_failure(work, e)
        logger.debug("work_completed", work=work.name, run_id=self.run_id)
        return True

    def _handle_failure(self, work: AgentWork, e: Exception) -> bool:
        feed_size = len(self.message_service.messages)
        try:
            return work.on_error(e)
        except Exception as handler_error:
            logger.error(
                "work_error_handler_failed",
                work=work.name,
                error=str(handler_error),
                original_error=str(e),
                run_id=self.run_id,
            )
            reported = any(
                m.type == MessageType.ERROR
                for m in self.message_service.messages[feed_size:]
            )
            if not reported:
                self._report_failure(e)
            return False

    def _report_failure(self, e: Exception) -> None:
        """Last-resort error message when a unit could not report its own failure."""
        try:
            self.message_service.send(
                Message(type=MessageType.ERROR, value=describe_error(e))
            )
        except Exception as send_error:
            logger.error(
                "error_message_not_sent", error=str(send_error), run_id=self.run_id
            )

    def _resolve_next(self, work: AgentWork) -> Optional[AgentWork]:
        """The unit's own choice, falling back to the store."""
        following = work.next()
        if following is work:
            raise WorkSchedulingError(
                f"{work.name} scheduled itself", run_id=self.run_id
            )
        if following is None:
            following = self._next_from_store()
        return following

    def _next_from_store(self) -> Optional[AgentWork]:
        """Pick the next unit from store state alone.

        A pending task chosen by the selection policy is analyzed while
        loop budget remains. Once it runs out, each task still pending
        is reported as skipped. Then the run is summarized once if any
        task completed.
        """
        pending = self.model.get_pending_tasks()
        if pending:
            if self._loop_count < self.model_settings.custom_max_loops:
                task = self.selection_policy(pending)
                if task is not None:
                    return AnalyzeTaskWork(self, task)
            elif not self._loop_notice_sent:
                self._loop_notice_sent = True
                logger.warning(
                    "agent_max_loops_reached",
                    loops=self._loop_count,
                    skipped=len(pending),
                    run_id=self.run_id,
                )
                self.message_service.send_system_message(MAX_LOOPS_TEXT)
                for task in pending:
                    self.message_service.skip_task_message(task)

        if self.summarize and not self.model.concluded and self.model.get_completed_tasks():
            return SummarizeWork(self)
        return None

    def _finish(self, lifecycle: AgentLifecycle, reason: str) -> AgentLifecycle:
        self._lifecycle = lifecycle
        self._current_work = None
        log = logger.error if lifecycle == AgentLifecycle.ERRORED else logger.info
        log(
            "agent_run_finished",
            run_id=self.run_id,
            lifecycle=lifecycle.value,
            reason=reason,
            loops=self._loop_count,
        )
        return lifecycle

    # ========== Collaborators ==========

    async def save_messages(self, messages: Sequence[Message]) -> bool:
        """Hand finished messages to the persistence collaborator.

        Persistence is best effort: a ``PersistenceError`` is logged and
        reported as a False acknowledgement.
        """
        if self.persistence is None or not messages:
            return False
        try:
            return await self.persistence.save_messages(messages)
        except PersistenceError as e:
            logger.warning("save_messages_failed", error=str(e), count=len(messages))
            return False
