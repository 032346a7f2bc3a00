"""Agent engine: models, capabilities, work units and the orchestrator."""

from .models import (
    AgentStatus,
    Analysis,
    AnalysisAction,
    Message,
    MessageStatus,
    MessageType,
    ModelSettings,
    Task,
    TaskStatus,
)
from .store import AgentModel
from .messages import MessageService, describe_error
from .gateway import AgentGateway, ChatCompletionsGateway, EchoGateway, ExecutionRequest
from .persistence import InMemoryMessagePersistence, MessagePersistence
from .selection import get_policy
from .work import (
    AgentWork,
    AnalyzeTaskWork,
    CreateTasksWork,
    ExecuteTaskWork,
    StartGoalWork,
    SummarizeWork,
)
from .autonomous_agent import AgentLifecycle, AutonomousAgent

__all__ = [
    # Models
    "AgentStatus",
    "Analysis",
    "AnalysisAction",
    "Message",
    "MessageStatus",
    "MessageType",
    "ModelSettings",
    "Task",
    "TaskStatus",
    # Capabilities
    "AgentModel",
    "MessageService",
    "describe_error",
    "AgentGateway",
    "ChatCompletionsGateway",
    "EchoGateway",
    "ExecutionRequest",
    "InMemoryMessagePersistence",
    "MessagePersistence",
    "get_policy",
    # Work units
    "AgentWork",
    "AnalyzeTaskWork",
    "CreateTasksWork",
    "ExecuteTaskWork",
    "StartGoalWork",
    "SummarizeWork",
    # Orchestrator
    "AgentLifecycle",
    "AutonomousAgent",
]
