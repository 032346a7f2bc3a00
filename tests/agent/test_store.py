"""Tests for the goal/task store."""

import pytest

from autoagent.agent.models import Task, TaskStatus
from autoagent.agent.store import AgentModel
from autoagent.exceptions import InvalidStatusTransitionError, TaskNotFoundError


def test_goal_round_trip():
    """set_goal() should replace the stored goal."""
    model = AgentModel("synthesize compound X")
    assert model.get_goal() == "synthesize compound X"

    model.set_goal("synthesize compound Y")
    assert model.get_goal() == "synthesize compound Y"


def test_tasks_keep_creation_order():
    """Tasks should be stored pending, in creation order."""
    model = AgentModel("goal")
    created = model.add_tasks(["first", "second", "third"])

    assert [t.value for t in model.tasks] == ["first", "second", "third"]
    assert [t.order for t in created] == [0, 1, 2]
    assert all(t.status == TaskStatus.PENDING for t in created)


def test_add_tasks_skips_blank_values():
    """Blank task values should be dropped and the rest trimmed."""
    model = AgentModel("goal")
    created = model.add_tasks(["", "  ", " trimmed "])

    assert [t.value for t in created] == ["trimmed"]


def test_forward_transitions_are_allowed():
    """Moving a task forward should stamp its completion time."""
    model = AgentModel("goal")
    task = model.add_task("t")

    model.update_task_status(task, TaskStatus.EXECUTING)
    stored = model.update_task_status(task, TaskStatus.COMPLETED)

    assert stored.status == TaskStatus.COMPLETED
    assert stored.completed_at is not None


def test_pending_can_fail_directly():
    """A pending task should be allowed to fail without executing."""
    model = AgentModel("goal")
    task = model.add_task("t")

    assert model.update_task_status(task, TaskStatus.FAILED).status == TaskStatus.FAILED


def test_setting_same_status_is_a_no_op():
    """Re-applying the current status should not raise."""
    model = AgentModel("goal")
    task = model.add_task("t")
    model.update_task_status(task, TaskStatus.EXECUTING)

    assert model.update_task_status(task, TaskStatus.EXECUTING).status == TaskStatus.EXECUTING


@pytest.mark.parametrize(
    "path,target",
    [
        ([TaskStatus.EXECUTING], TaskStatus.PENDING),
        ([TaskStatus.COMPLETED], TaskStatus.EXECUTING),
        ([TaskStatus.COMPLETED], TaskStatus.FAILED),
        ([TaskStatus.FAILED], TaskStatus.COMPLETED),
    ],
)
def test_backward_or_terminal_to_terminal_is_rejected(path, target):
    """Backward or terminal-to-terminal moves should raise and leave the task unchanged."""
    model = AgentModel("goal")
    task = model.add_task("t")
    for status in path:
        model.update_task_status(task, status)

    with pytest.raises(InvalidStatusTransitionError):
        model.update_task_status(task, target)
    assert model.get_task(task.id).status == path[-1]


def test_unknown_task_is_rejected():
    """Tasks from another store should raise TaskNotFoundError."""
    model = AgentModel("goal")
    stranger = Task(value="not in this store")

    with pytest.raises(TaskNotFoundError):
        model.get_task(stranger.id)
    with pytest.raises(TaskNotFoundError):
        model.update_task_status(stranger, TaskStatus.EXECUTING)


def test_update_task_result():
    """update_task_result() should store the result text."""
    model = AgentModel("goal")
    task = model.add_task("t")

    model.update_task_result(task, "42")

    assert model.get_task(task.id).result == "42"


def test_status_queries():
    """Status queries should partition tasks by status."""
    model = AgentModel("goal")
    a, b, c, d = model.add_tasks(["a", "b", "c", "d"])
    model.update_task_status(a, TaskStatus.COMPLETED)
    model.update_task_status(b, TaskStatus.FAILED)
    model.update_task_status(c, TaskStatus.EXECUTING)

    assert model.get_pending_tasks() == [d]
    assert model.get_completed_tasks() == [a]
    assert model.get_failed_tasks() == [b]
    assert model.get_remaining_task_values() == ["c", "d"]


def test_has_task_value_ignores_case_and_whitespace():
    """Duplicate checks should ignore case and surrounding spaces."""
    model = AgentModel("goal")
    model.add_task("Fold the enzyme")

    assert model.has_task_value("  fold THE enzyme ")
    assert not model.has_task_value("Dock the substrate")


def test_concluded_flag():
    """mark_concluded() should set the concluded flag."""
    model = AgentModel("goal")
    assert model.concluded is False

    model.mark_concluded()

    assert model.concluded is True
