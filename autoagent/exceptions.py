"""Custom exception hierarchy for autoagent.

Provides error classification across the agent engine so work units
can decide whether a failure is fatal to the run or only to the
current step.

Hierarchy:
    AgentError
      ├─ GatewayError
      │    ├─ GatewayTimeoutError
      │    ├─ GatewayConnectionError
      │    ├─ GatewayConfigError
      │    └─ GatewayResponseError
      │         └─ AnalysisParseError
      ├─ StoreConsistencyError
      │    ├─ TaskNotFoundError
      │    ├─ InvalidStatusTransitionError
      │    ├─ MessageNotFoundError
      │    ├─ MessageFinalizedError
      │    └─ WorkSchedulingError
      ├─ AgentStateError
      └─ PersistenceError
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (timeout, rate limit, dropped connection)
    PERMANENT = "permanent"          # Not worth retrying (bad input, malformed response)
    INFRASTRUCTURE = "infrastructure"  # Missing key, bad endpoint configuration


class AgentError(Exception):
    """Base exception for all autoagent errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "agent.gateway").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Gateway exceptions
# ---------------------------------------------------------------------------

class GatewayError(AgentError):
    """The external execution gateway reported a failure.

    Attributes:
        status: HTTP status code returned by the provider, if any.
        detail: Provider-supplied error payload (string, or the parsed
            JSON ``detail`` field).
    """

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        detail: Any = None,
        category: Optional[ErrorCategory] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        self.detail = detail
        if category is None:
            # 429 and 5xx are worth another attempt, anything else is not
            if status is not None and (status == 429 or status >= 500):
                category = ErrorCategory.TRANSIENT
            else:
                category = ErrorCategory.PERMANENT
        super().__init__(
            message, category=category, module=module or "agent.gateway", **context
        )


class GatewayTimeoutError(GatewayError):
    """The gateway did not answer within its configured timeout."""

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        kwargs.setdefault("category", ErrorCategory.TRANSIENT)
        super().__init__(message, **kwargs)


class GatewayConnectionError(GatewayError):
    """The gateway endpoint could not be reached."""

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        kwargs.setdefault("category", ErrorCategory.TRANSIENT)
        super().__init__(message, **kwargs)


class GatewayConfigError(GatewayError):
    """The gateway is not usable as configured (missing key, bad URL)."""

    def __init__(self, message: str = "", **kwargs: Any) -> None:
        kwargs.setdefault("category", ErrorCategory.INFRASTRUCTURE)
        super().__init__(message, **kwargs)


class GatewayResponseError(GatewayError):
    """The gateway answered but the body could not be understood."""


class AnalysisParseError(GatewayResponseError):
    """The gateway returned an analysis missing reasoning, action or arg."""


# ---------------------------------------------------------------------------
# Store / feed consistency exceptions (always fatal to a run)
# ---------------------------------------------------------------------------

class StoreConsistencyError(AgentError):
    """The task store or message feed was asked to do something impossible."""

    def __init__(self, message: str = "", *, module: Optional[str] = None, **context: Any) -> None:
        super().__init__(
            message,
            category=ErrorCategory.PERMANENT,
            module=module or "agent.store",
            **context,
        )


class TaskNotFoundError(StoreConsistencyError):
    """A task id is not present in the store."""


class InvalidStatusTransitionError(StoreConsistencyError):
    """A task status change would move backwards or between terminal states."""


class MessageNotFoundError(StoreConsistencyError):
    """An update targeted a message id that was never sent."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message, module="agent.messages", **context)


class MessageFinalizedError(StoreConsistencyError):
    """An update targeted a message that was already marked final."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message, module="agent.messages", **context)


class WorkSchedulingError(StoreConsistencyError):
    """A work unit tried to schedule itself as its own successor."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message, module="agent.autonomous_agent", **context)


# ---------------------------------------------------------------------------
# Orchestrator / collaborator exceptions
# ---------------------------------------------------------------------------

class AgentStateError(AgentError):
    """An orchestrator operation is not valid in its current lifecycle state."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message, module="agent.autonomous_agent", **context)


class PersistenceError(AgentError):
    """Saving messages to the persistence collaborator failed (non-critical)."""

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message, module="agent.persistence", **context)
