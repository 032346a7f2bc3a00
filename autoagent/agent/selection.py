"""Task selection policies.

A policy picks which pending task the orchestrator analyzes next.
Policies are pure functions of the pending list; none of them
mutates a task.
"""

from typing import Callable, Dict, Optional, Sequence

from .models import Task

TaskSelectionPolicy = Callable[[Sequence[Task]], Optional[Task]]


def oldest_first(pending: Sequence[Task]) -> Optional[Task]:
    """Pick the task created earliest."""
    if not pending:
        return None
    return min(pending, key=lambda t: t.order)


def newest_first(pending: Sequence[Task]) -> Optional[Task]:
    """Pick the task created most recently (follow-up tasks jump the queue)."""
    if not pending:
        return None
    return max(pending, key=lambda t: t.order)


def shortest_first(pending: Sequence[Task]) -> Optional[Task]:
    """Pick the task with the shortest description; ties go to the oldest."""
    if not pending:
        return None
    return min(pending, key=lambda t: (len(t.value), t.order))


POLICIES: Dict[str, TaskSelectionPolicy] = {
    "oldest_first": oldest_first,
    "newest_first": newest_first,
    "shortest_first": shortest_first,
}

DEFAULT_POLICY = "oldest_first"


def get_policy(name: str) -> TaskSelectionPolicy:
    """Resolve a policy by its configured name."""
    try:
        return POLICIES[name]
    except KeyError:
        valid = ", ".join(sorted(POLICIES))
        raise ValueError(f"Unknown task selection policy {name!r} (valid: {valid})") from None
