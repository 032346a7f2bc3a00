"""Pydantic models for the agent engine.

Domain models:
    Task, Message, Analysis, ModelSettings, AgentStatus

Enums:
    TaskStatus, MessageType, MessageStatus, AnalysisAction

Task and Message are mutable records owned by the run; their ``id``
fields (and a task's ``value``) are frozen once created.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


class TaskStatus(str, Enum):
    """Lifecycle status of a task.

    Flow: PENDING -> EXECUTING -> COMPLETED | FAILED.
    """
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2


_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.EXECUTING: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 2,
}


class MessageType(str, Enum):
    """Kind of feed entry."""
    GOAL = "goal"
    THINKING = "thinking"
    TASK = "task"
    ACTION = "action"
    SYSTEM = "system"
    ERROR = "error"


class MessageStatus(str, Enum):
    """Presentation state of a message, independent of TaskStatus."""
    STARTED = "started"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FINAL = "final"


class AnalysisAction(str, Enum):
    """Actions the analysis step may choose for a task."""
    ALIGNMENT = "alignment"
    STRUCTURE_CLEANING = "structure cleaning"
    FOLDING = "folding"
    DOCKING = "docking"
    STORYTELLING = "storytelling"


class Task(BaseModel):
    """A decomposed unit of work toward the goal.

    Only the store mutates ``status`` and ``result``; see
    ``AgentModel.update_task_status`` for the transition rules.
    """

    id: str = Field(default_factory=new_id, frozen=True)
    value: str = Field(..., frozen=True, description="Task description")
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    result: Optional[str] = None
    order: int = Field(default=0, description="Creation sequence within the store")
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None


class Message(BaseModel):
    """One entry in the user-visible feed.

    ``task_id`` is set when the message reports progress on a task;
    goal, system and error messages carry no task reference.
    """

    id: str = Field(default_factory=new_id, frozen=True)
    type: MessageType
    value: str = ""
    task_id: Optional[str] = None
    status: Optional[MessageStatus] = None
    info: Optional[str] = None
    final: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def for_task(cls, task: Task, **fields: Any) -> "Message":
        """Build a task-typed message that references ``task``."""
        fields.setdefault("type", MessageType.TASK)
        fields.setdefault("value", task.value)
        return cls(task_id=task.id, **fields)


class Analysis(BaseModel):
    """Structured hint attached to a task before execution."""

    reasoning: str
    action: AnalysisAction
    arg: str

    @field_validator("reasoning", "arg")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v


# Context window per known model name
MAX_TOKENS: Dict[str, int] = {
    "gpt-3.5-turbo": 4000,
    "gpt-3.5-turbo-16k": 16000,
    "gpt-4": 4000,
    "KFM-alpha": 4000,
    "deepseek-chat": 128000,
}

DEFAULT_MODEL_NAME = "deepseek-chat"


class ModelSettings(BaseModel):
    """Caller's model configuration for a run.

    Translated into the gateway's shape by ``to_api_settings()``.
    The protein-design fields are forwarded untouched as
    ``parameters``.
    """

    language: str = "en"
    custom_api_key: str = ""
    custom_model_name: str = DEFAULT_MODEL_NAME
    custom_temperature: float = Field(default=0.8, ge=0.0, le=1.0)
    custom_max_loops: int = Field(default=25, ge=1)
    max_tokens: Optional[int] = None
    custom_thermostability: Optional[float] = None
    custom_activity: Optional[float] = None
    custom_ph: Optional[float] = None
    target_protein: str = ""
    target_substrate: str = ""
    create_additional_tasks: bool = False

    @property
    def effective_max_tokens(self) -> int:
        if self.max_tokens is not None:
            return self.max_tokens
        return MAX_TOKENS.get(self.custom_model_name, 4000)

    def to_api_settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = {
            "model": self.custom_model_name,
            "temperature": self.custom_temperature,
            "max_tokens": self.effective_max_tokens,
            "language": self.language,
        }
        if self.custom_api_key.strip():
            settings["custom_api_key"] = self.custom_api_key
        parameters = {
            "thermostability": self.custom_thermostability,
            "activity": self.custom_activity,
            "ph": self.custom_ph,
            "target_protein": self.target_protein or None,
            "target_substrate": self.target_substrate or None,
        }
        settings["parameters"] = {k: v for k, v in parameters.items() if v is not None}
        return settings


class AgentStatus(BaseModel):
    """Status snapshot of an agent run.

    Returned by ``AutonomousAgent.get_status()``.
    """

    lifecycle: str = Field(..., description="idle, running, paused, stopped or errored")
    run_id: str
    goal: str
    current_work: Optional[str] = Field(
        default=None, description="Class name of the active work unit"
    )
    loop_count: int = 0
    tasks_total: int = 0
    tasks_pending: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    started_at: Optional[datetime] = None
    uptime_seconds: float = 0.0
