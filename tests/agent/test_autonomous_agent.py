"""Tests for the autonomous agent run loop."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from autoagent.agent.autonomous_agent import (
    COMPLETED_TEXT,
    MAX_LOOPS_TEXT,
    AgentLifecycle,
    AutonomousAgent,
)
from autoagent.agent.gateway import ECHO_PREFIX, EchoGateway
from autoagent.agent.messages import MessageService
from autoagent.agent.models import MessageType, ModelSettings, TaskStatus
from autoagent.agent.persistence import InMemoryMessagePersistence, MessagePersistence
from autoagent.agent.selection import newest_first
from autoagent.agent.work import AgentWork
from autoagent.exceptions import (
    AgentStateError,
    GatewayConfigError,
    GatewayTimeoutError,
    PersistenceError,
    WorkSchedulingError,
)

GOAL = "synthesize compound X"


class CountingMessageService(MessageService):
    """MessageService that logs every send/update as it happens."""

    def __init__(self):
        super().__init__()
        self.log = []

    def send(self, message):
        self.log.append(("send", message.id, message.task_id, message.info))
        return super().send(message)

    def update(self, message):
        self.log.append(("update", message.id, message.task_id, message.info))
        return super().update(message)


def _make_agent(tasks=("Synthesize compound X",), gateway=None, **kwargs):
    gateway = gateway or EchoGateway(initial_tasks=list(tasks))
    feed = CountingMessageService()
    agent = AutonomousAgent(
        GOAL,
        gateway,
        feed,
        persistence=InMemoryMessagePersistence(),
        **kwargs,
    )
    return agent, feed, gateway


def _errors(agent):
    return [m for m in agent.message_service.messages if m.type == MessageType.ERROR]


def _execution_entries(feed):
    """Loading sends and in-place updates, in feed order."""
    return [
        (kind, task_id)
        for kind, _, task_id, info in feed.log
        if kind == "update" or info == "Loading..."
    ]


# -------------------------------------------------------------------
# Happy path
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_single_task_runs_to_completion():
    """One task should be analyzed, executed and completed."""
    agent, feed, _ = _make_agent(summarize=False)

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.STOPPED
    task = agent.model.tasks[0]
    assert task.status == TaskStatus.COMPLETED
    assert task.result.startswith(ECHO_PREFIX)

    loading = [e for e in feed.log if e[0] == "send" and e[3] == "Loading..."]
    updates = [e for e in feed.log if e[0] == "update"]
    assert len(loading) == 1
    assert len(updates) == 1
    assert updates[0][1] == loading[0][1]
    assert '"goal": "synthesize compound X"' in updates[0][3]
    assert agent.message_service.messages[-1].value == COMPLETED_TEXT
    assert _errors(agent) == []


@pytest.mark.asyncio
async def test_feed_starts_with_goal_then_task_messages():
    """The feed should open with the goal and then the planned tasks."""
    agent, _, _ = _make_agent(tasks=["A", "B"], summarize=False)

    await agent.run()

    messages = agent.message_service.messages
    assert messages[0].type == MessageType.GOAL
    assert messages[0].value == GOAL
    assert [m.value for m in messages[1:3]] == ["A", "B"]
    assert all(m.task_id is not None for m in messages[1:3])


@pytest.mark.asyncio
async def test_two_tasks_execute_strictly_in_sequence():
    """A second task should only start after the first is updated."""
    agent, feed, gateway = _make_agent(tasks=["First", "Second"], summarize=False)

    await agent.run()

    first, second = agent.model.tasks
    assert _execution_entries(feed) == [
        ("send", first.id),
        ("update", first.id),
        ("send", second.id),
        ("update", second.id),
    ]
    assert [r.task_value for r in gateway.requests] == ["First", "Second"]
    assert all(t.status == TaskStatus.COMPLETED for t in agent.model.tasks)


@pytest.mark.asyncio
async def test_selection_policy_decides_execution_order():
    """The selection policy should decide which task runs next."""
    agent, _, gateway = _make_agent(
        tasks=["A", "B", "C"], summarize=False, selection_policy=newest_first
    )

    await agent.run()

    assert [r.task_value for r in gateway.requests] == ["C", "B", "A"]


@pytest.mark.asyncio
async def test_task_status_never_regresses():
    """Task statuses should only ever move forward during a run."""
    agent, _, gateway = _make_agent(tasks=["A", "B"], summarize=False)
    seen = {}
    real_execute = gateway.execute_task

    async def recording_execute(request):
        for task in agent.model.tasks:
            seen.setdefault(task.id, []).append(task.status.rank)
        return await real_execute(request)

    gateway.execute_task = recording_execute
    await agent.run()

    for task in agent.model.tasks:
        ranks = seen[task.id] + [task.status.rank]
        assert ranks == sorted(ranks)


@pytest.mark.asyncio
async def test_summary_concludes_the_run():
    """The summary should be the last step before the completion notice."""
    agent, _, _ = _make_agent(tasks=["A", "B"])

    await agent.run()

    summary = agent.message_service.messages[-2]
    assert summary.value == f'Summarizing "{GOAL}"'
    assert summary.final is True
    results = [t.result for t in agent.model.tasks]
    assert summary.info == "\n\n".join(results)
    assert agent.model.concluded is True
    assert agent.message_service.messages[-1].value == COMPLETED_TEXT


@pytest.mark.asyncio
async def test_finished_messages_are_persisted():
    """Goal and final task messages should be persisted."""
    agent, _, _ = _make_agent(tasks=["A"], summarize=False)

    await agent.run()

    saved = agent.persistence.saved
    assert saved[0].type == MessageType.GOAL
    assert saved[-1].final is True
    assert saved[-1].info == agent.model.tasks[0].result


# -------------------------------------------------------------------
# Failures
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_gateway_timeout_fails_task_but_run_continues():
    """A timeout should fail the task without erroring the run."""
    gateway = EchoGateway(initial_tasks=["Synthesize compound X"])
    gateway.execute_task = AsyncMock(side_effect=GatewayTimeoutError("Gateway timed out"))
    agent, _, _ = _make_agent(gateway=gateway)

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.STOPPED
    errors = _errors(agent)
    assert len(errors) == 1
    assert "timed out" in errors[0].value
    assert agent.model.tasks[0].status == TaskStatus.FAILED


@pytest.mark.asyncio
async def test_failed_task_does_not_block_the_next_one():
    """Later tasks should still run after one fails."""
    gateway = EchoGateway(initial_tasks=["A", "B"])
    real_execute = gateway.execute_task

    async def fail_first(request):
        if request.task_value == "A":
            raise GatewayTimeoutError("Gateway timed out")
        return await real_execute(request)

    gateway.execute_task = fail_first
    agent, _, _ = _make_agent(gateway=gateway, summarize=False)

    assert await agent.run() == AgentLifecycle.STOPPED
    a, b = agent.model.tasks
    assert a.status == TaskStatus.FAILED
    assert b.status == TaskStatus.COMPLETED
    assert len(_errors(agent)) == 1


@pytest.mark.asyncio
async def test_unconfigured_gateway_halts_the_run():
    """A missing gateway key should halt the run after one error."""
    gateway = EchoGateway(initial_tasks=["A", "B"])
    gateway.analyze_task = AsyncMock(side_effect=GatewayConfigError("An API key is required."))
    agent, _, _ = _make_agent(gateway=gateway)

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.ERRORED
    assert len(_errors(agent)) == 1
    assert gateway.analyze_task.await_count == 1
    assert agent.model.tasks[0].status == TaskStatus.FAILED
    assert agent.model.tasks[1].status == TaskStatus.PENDING
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_store_corruption_during_execution_is_fatal():
    """An invalid status transition should halt the run."""
    agent, _, gateway = _make_agent(tasks=["A", "B"])
    real_execute = gateway.execute_task

    async def corrupt_store(request):
        task = agent.model.tasks[0]
        agent.model.update_task_status(task, TaskStatus.FAILED)
        return await real_execute(request)

    gateway.execute_task = corrupt_store

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.ERRORED
    assert len(_errors(agent)) == 1
    assert len(gateway.requests) == 1
    assert agent.model.tasks[1].status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_no_initial_tasks_is_reported_and_fatal():
    """An empty plan should be reported once and halt the run."""
    agent, _, _ = _make_agent(tasks=[])

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.ERRORED
    errors = _errors(agent)
    assert len(errors) == 1
    assert "No tasks" in errors[0].value
    assert agent.model.tasks == []


@pytest.mark.asyncio
async def test_persistence_failure_does_not_stop_the_run():
    """Persistence errors should be logged, not surfaced."""
    class BrokenPersistence(MessagePersistence):
        async def save_messages(self, messages):
            raise PersistenceError("database unavailable")

    gateway = EchoGateway(initial_tasks=["A"])
    agent = AutonomousAgent(GOAL, gateway, persistence=BrokenPersistence(), summarize=False)

    assert await agent.run() == AgentLifecycle.STOPPED
    assert agent.model.tasks[0].status == TaskStatus.COMPLETED
    assert _errors(agent) == []


@pytest.mark.asyncio
async def test_failing_error_handler_still_reports_once():
    """A crashing error handler should still leave one error in the feed."""
    class BrokenErrorFeed(CountingMessageService):
        def send_error(self, reason):
            raise RuntimeError("renderer crashed")

    gateway = EchoGateway(initial_tasks=["A"])
    gateway.execute_task = AsyncMock(side_effect=GatewayTimeoutError("Gateway timed out"))
    agent = AutonomousAgent(GOAL, gateway, BrokenErrorFeed())

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.ERRORED
    errors = _errors(agent)
    assert len(errors) == 1
    assert errors[0].value == "Gateway timed out"


@pytest.mark.asyncio
async def test_handler_failure_after_reporting_adds_no_second_error():
    """No second error should be sent if the handler reported before crashing."""
    gateway = EchoGateway(initial_tasks=["A"])
    gateway.execute_task = AsyncMock(side_effect=GatewayTimeoutError("Gateway timed out"))
    agent, _, _ = _make_agent(gateway=gateway)

    def report_then_crash(e):
        agent.message_service.send_error(e)
        raise RuntimeError("handler crashed")

    with patch("autoagent.agent.work.execute_task.ExecuteTaskWork.on_error", side_effect=report_then_crash):
        lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.ERRORED
    assert len(_errors(agent)) == 1


def test_work_scheduling_itself_is_rejected():
    """A unit returning itself from next() should raise."""
    agent, _, _ = _make_agent()

    class LoopingWork(AgentWork):
        async def run(self):
            self.result = "done"

        def next(self):
            return self

    with pytest.raises(WorkSchedulingError):
        agent._resolve_next(LoopingWork(agent))


# -------------------------------------------------------------------
# Stop / pause / loop budget
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stop_after_step_prevents_further_work():
    """A stop during a step should let it conclude and start nothing after."""
    agent, feed, gateway = _make_agent(tasks=["A", "B"])
    real_execute = gateway.execute_task

    async def execute_then_stop(request):
        result = await real_execute(request)
        agent.stop()
        return result

    gateway.execute_task = execute_then_stop

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.STOPPED
    a, b = agent.model.tasks
    assert a.status == TaskStatus.COMPLETED
    assert b.status == TaskStatus.PENDING
    assert len(gateway.requests) == 1
    # The finished step still concluded, and nothing was sent after it
    last = agent.message_service.messages[-1]
    assert last.task_id == a.id and last.final is True
    assert agent.persistence.saved[-1].id == last.id
    assert _errors(agent) == []


@pytest.mark.asyncio
async def test_stop_before_run_starts_nothing():
    """Stopping before run() should send nothing at all."""
    agent, feed, gateway = _make_agent()
    gateway.get_initial_tasks = AsyncMock(return_value=["A"])

    agent.stop()
    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.STOPPED
    assert feed.log == []
    gateway.get_initial_tasks.assert_not_awaited()


@pytest.mark.asyncio
async def test_pause_holds_the_loop_until_resumed():
    """Pausing should hold the next step until resume()."""
    agent, _, gateway = _make_agent(tasks=["A", "B"], summarize=False)
    real_execute = gateway.execute_task

    async def execute_then_pause(request):
        agent.pause()
        return await real_execute(request)

    gateway.execute_task = execute_then_pause
    runner = asyncio.create_task(agent.run())

    for _ in range(50):
        if agent.lifecycle == AgentLifecycle.PAUSED:
            break
        await asyncio.sleep(0)

    assert agent.lifecycle == AgentLifecycle.PAUSED
    assert agent.is_running is True
    assert len(gateway.requests) == 1

    gateway.execute_task = real_execute
    agent.resume()

    assert await runner == AgentLifecycle.STOPPED
    assert len(gateway.requests) == 2


@pytest.mark.asyncio
async def test_stop_while_paused_ends_cleanly():
    """stop() should release a paused run."""
    agent, feed, _ = _make_agent()
    agent.pause()
    runner = asyncio.create_task(agent.run())
    await asyncio.sleep(0)
    assert agent.lifecycle == AgentLifecycle.PAUSED

    agent.stop()

    assert await runner == AgentLifecycle.STOPPED
    assert feed.log == []


@pytest.mark.asyncio
async def test_pause_right_after_resume_keeps_the_loop_held():
    """A pause landing right after resume() should keep the loop held."""
    agent, feed, _ = _make_agent()
    agent.pause()
    runner = asyncio.create_task(agent.run())
    await asyncio.sleep(0)
    assert agent.lifecycle == AgentLifecycle.PAUSED

    # Re-paused before the waiting loop gets to run again
    agent.resume()
    agent.pause()
    for _ in range(5):
        await asyncio.sleep(0)

    assert agent.lifecycle == AgentLifecycle.PAUSED
    assert feed.log == []

    agent.resume()
    assert await runner == AgentLifecycle.STOPPED
    assert agent.model.tasks[0].status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_loop_budget_skips_remaining_tasks():
    """Tasks left after the loop budget should each be reported as skipped."""
    agent, _, gateway = _make_agent(
        tasks=["A", "B", "C"], model_settings=ModelSettings(custom_max_loops=1)
    )

    lifecycle = await agent.run()

    assert lifecycle == AgentLifecycle.STOPPED
    assert len(gateway.requests) == 1
    assert agent.loop_count == 1
    values = [m.value for m in agent.message_service.messages]
    assert values.count(MAX_LOOPS_TEXT) == 1
    assert COMPLETED_TEXT not in values
    notice = values.index(MAX_LOOPS_TEXT)
    assert values[notice + 1:notice + 3] == ["🥺 Skipping task: B", "🥺 Skipping task: C"]
    assert [t.status for t in agent.model.tasks] == [
        TaskStatus.COMPLETED,
        TaskStatus.PENDING,
        TaskStatus.PENDING,
    ]
    # Completed work is still summarized
    assert agent.model.concluded is True


@pytest.mark.asyncio
async def test_additional_tasks_are_created_and_executed():
    """Follow-up tasks should be created and executed in order."""
    gateway = EchoGateway(initial_tasks=["A"])
    gateway.get_additional_tasks = AsyncMock(side_effect=[["B"], []])
    agent, _, _ = _make_agent(
        gateway=gateway,
        summarize=False,
        model_settings=ModelSettings(create_additional_tasks=True),
    )

    await agent.run()

    assert [t.value for t in agent.model.tasks] == ["A", "B"]
    assert [r.task_value for r in gateway.requests] == ["A", "B"]
    assert gateway.get_additional_tasks.await_count == 2


# -------------------------------------------------------------------
# Lifecycle
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_run_is_not_reentrant():
    """A second run() should raise AgentStateError."""
    agent, _, _ = _make_agent(summarize=False)
    await agent.run()

    with pytest.raises(AgentStateError):
        await agent.run()


@pytest.mark.asyncio
async def test_pause_after_finish_is_rejected():
    """Pausing a finished run should raise AgentStateError."""
    agent, _, _ = _make_agent(summarize=False)
    await agent.run()

    with pytest.raises(AgentStateError):
        agent.pause()


@pytest.mark.asyncio
async def test_status_snapshot():
    """get_status() should reflect the finished run."""
    agent, _, _ = _make_agent(tasks=["A", "B"], run_id="run-42", summarize=False)
    assert agent.get_status().lifecycle == "idle"

    await agent.run()

    status = agent.get_status()
    assert status.lifecycle == "stopped"
    assert status.run_id == "run-42"
    assert status.goal == GOAL
    assert status.tasks_total == 2
    assert status.tasks_completed == 2
    assert status.tasks_pending == 0
    assert status.loop_count == 2
    assert status.current_work is None
