"""External execution gateway.

The gateway performs the real planning, analysis, execution and
summarization on behalf of work units. Work units only see the
``AgentGateway`` contract, so the development echo stub and the live
chat-completions client are interchangeable.

Key classes:
    ExecutionRequest: Payload for a single task execution.
    AgentGateway: Abstract gateway contract.
    EchoGateway: Deterministic stub that echoes execution requests.
    ChatCompletionsGateway: OpenAI-compatible HTTP client (aiohttp).
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import aiohttp
import structlog
from pydantic import BaseModel, ValidationError

from ..exceptions import (
    AnalysisParseError,
    GatewayConfigError,
    GatewayConnectionError,
    GatewayError,
    GatewayResponseError,
    GatewayTimeoutError,
)
from .models import Analysis, AnalysisAction, ModelSettings

logger = structlog.get_logger("autoagent.gateway")

DEFAULT_API_URL = "https://api.deepseek.com/v1/chat/completions"

ECHO_PREFIX = "Echoing request to /agent/execute:\n"


class ExecutionRequest(BaseModel):
    """Everything the gateway needs to execute one task."""

    run_id: str
    goal: str
    task_value: str
    analysis: Analysis
    model_settings: Dict[str, Any]

    def to_payload(self) -> Dict[str, Any]:
        """Wire shape of the request."""
        return {
            "run_id": self.run_id,
            "goal": self.goal,
            "task": self.task_value,
            "analysis": self.analysis.model_dump(mode="json"),
            "model_settings": self.model_settings,
        }


class AgentGateway(ABC):
    """Contract for the remote service that does the agent's thinking.

    Every method either returns its result or raises a
    ``GatewayError`` subclass; none of them bounds its own latency
    unless the implementation says so.
    """

    @abstractmethod
    async def get_initial_tasks(self, goal: str, settings: ModelSettings) -> List[str]:
        """Decompose ``goal`` into an ordered list of task descriptions."""

    @abstractmethod
    async def analyze_task(
        self, goal: str, task_value: str, settings: ModelSettings
    ) -> Analysis:
        """Choose the action to take for one task."""

    @abstractmethod
    async def execute_task(self, request: ExecutionRequest) -> str:
        """Execute one task and return its textual result."""

    @abstractmethod
    async def get_additional_tasks(
        self,
        goal: str,
        current: str,
        completed: Sequence[str],
        remaining: Sequence[str],
        result: str,
        settings: ModelSettings,
    ) -> List[str]:
        """Propose follow-up tasks after ``current`` produced ``result``."""

    @abstractmethod
    async def summarize(
        self, goal: str, results: Sequence[str], settings: ModelSettings
    ) -> str:
        """Condense completed task results into a final answer."""

    async def close(self) -> None:
        """Release any held resources."""


class EchoGateway(AgentGateway):
    """Deterministic development stub.

    ``execute_task`` echoes the request it would have sent instead of
    calling a service. Every request is kept in ``requests`` in call
    order.

    Args:
        initial_tasks: Tasks returned for any goal. Defaults to a
            single task equal to the goal.
        default_action: Action chosen by ``analyze_task``.
    """

    def __init__(
        self,
        initial_tasks: Optional[Sequence[str]] = None,
        default_action: AnalysisAction = AnalysisAction.STORYTELLING,
    ):
        self.initial_tasks = list(initial_tasks) if initial_tasks is not None else None
        self.default_action = default_action
        self.requests: List[ExecutionRequest] = []

    async def get_initial_tasks(self, goal: str, settings: ModelSettings) -> List[str]:
        if self.initial_tasks is not None:
            return list(self.initial_tasks)
        return [goal]

    async def analyze_task(
        self, goal: str, task_value: str, settings: ModelSettings
    ) -> Analysis:
        return Analysis(
            reasoning=f"Default analysis for task: {task_value}",
            action=self.default_action,
            arg=task_value,
        )

    async def execute_task(self, request: ExecutionRequest) -> str:
        self.requests.append(request)
        payload = request.to_payload()
        # Never echo a caller's key back into the feed
        payload["model_settings"] = {
            k: v for k, v in payload["model_settings"].items() if k != "custom_api_key"
        }
        return ECHO_PREFIX + json.dumps(payload, indent=2, ensure_ascii=False)

    async def get_additional_tasks(
        self,
        goal: str,
        current: str,
        completed: Sequence[str],
        remaining: Sequence[str],
        result: str,
        settings: ModelSettings,
    ) -> List[str]:
        return []

    async def summarize(
        self, goal: str, results: Sequence[str], settings: ModelSettings
    ) -> str:
        return "\n\n".join(results)


# ---------------------------------------------------------------------------
# Chat-completions gateway
# ---------------------------------------------------------------------------

PLANNING_PROMPT = (
    "You are an AI task planning assistant. Given a goal, generate a list "
    "of specific, actionable tasks. Return ONLY a JSON array of task strings "
    'like: ["task 1", "task 2", "task 3"]'
)

ANALYSIS_PROMPT = (
    "You are an AI task analysis assistant. Given a goal and a task, analyze "
    "what action to take next. Return ONLY a JSON object with: "
    '{"reasoning": "your reasoning", "action": "action_type", "arg": "argument"}.\n\n'
    "Available actions:\n"
    '- "alignment": Align the AA structure to sequence\n'
    '- "structure cleaning": Remove non-cofactors from structure\n'
    '- "folding": Predict structure\n'
    '- "docking": Compute molecular docking score\n'
    '- "storytelling": Storytelling'
)

EXECUTION_PROMPT = (
    "You are an autonomous task execution assistant. Carry out the given "
    "task toward the goal using the chosen action, and answer with the "
    "task's result only. Answer in the language: {language}."
)

CREATE_TASKS_PROMPT = (
    "You are an AI task creation assistant. Given a goal, the last task "
    "and its result, and the tasks already completed or remaining, propose "
    "only the new tasks still needed. Return ONLY a JSON array of task "
    "strings; return [] if nothing is missing."
)

SUMMARY_PROMPT = "Please summarize the following results for the goal \"{goal}\":\n\n{results}"

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _strip_fences(content: str) -> str:
    """Remove a surrounding markdown code fence, if present."""
    match = _FENCE_PATTERN.match(content.strip())
    return match.group(1) if match else content.strip()


def parse_task_list(content: str) -> List[str]:
    """Parse a JSON array of task strings out of model output.

    Also accepts an object wrapping the array under ``tasks`` or
    ``newTasks``.

    Raises:
        GatewayResponseError: If the content is not such a list.
    """
    try:
        data = json.loads(_strip_fences(content))
    except ValueError:
        raise GatewayResponseError("Failed to parse tasks from model response") from None
    if isinstance(data, dict):
        data = data.get("tasks", data.get("newTasks"))
    if not isinstance(data, list) or not all(isinstance(t, str) for t in data):
        raise GatewayResponseError("Invalid task format in model response")
    return [t.strip() for t in data if t.strip()]


def parse_analysis(content: str) -> Analysis:
    """Parse an analysis object out of model output.

    Raises:
        AnalysisParseError: If reasoning, action or arg is missing or
            the action is unknown.
    """
    try:
        return Analysis.model_validate_json(_strip_fences(content))
    except ValidationError as e:
        raise AnalysisParseError(
            "Failed to parse analysis from model response",
            errors=e.error_count(),
        ) from None


class ChatCompletionsGateway(AgentGateway):
    """Gateway backed by any OpenAI-compatible chat completions endpoint.

    A caller-supplied ``ModelSettings.custom_api_key`` takes precedence
    over the configured key.

    Args:
        api_url: Full URL to the chat completions endpoint. Must use
            HTTPS.
        api_key: Default bearer token for the provider API.
        timeout: Per-request timeout in seconds.

    Raises:
        GatewayConfigError: If api_url is not HTTPS or has no host.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        api_key: str = "",
        timeout: int = 60,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

        parsed = urlparse(self.api_url)
        if parsed.scheme != "https":
            logger.warning("insecure_api_url", url=self.api_url)
            raise GatewayConfigError("API URL must use HTTPS")
        if not parsed.hostname:
            logger.warning("invalid_api_url", url=self.api_url)
            raise GatewayConfigError("API URL must have a valid hostname")
        logger.info("gateway_api_configured", host=parsed.hostname)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create a shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """Close the shared HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _resolve_key(self, api_settings: Dict[str, Any]) -> str:
        key = (api_settings.get("custom_api_key") or "").strip() or self.api_key
        if not key:
            raise GatewayConfigError(
                "An API key is required. Please provide a valid API key in the settings."
            )
        return key

    def _build_payload(
        self, system_prompt: str, user_prompt: str, api_settings: Dict[str, Any]
    ) -> dict:
        """Build the OpenAI-compatible payload from ``to_api_settings()`` output."""
        return {
            "model": api_settings["model"],
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": api_settings["temperature"],
            "max_tokens": api_settings["max_tokens"],
        }

    @staticmethod
    async def _read_error_detail(resp: aiohttp.ClientResponse) -> Any:
        """Extract the most useful error payload from a failed response."""
        text = await resp.text()
        try:
            data = json.loads(text)
        except ValueError:
            return text[:500]
        if isinstance(data, dict):
            if "detail" in data:
                return data["detail"]
            error = data.get("error")
            if isinstance(error, dict):
                return error.get("message") or error.get("type")
        return text[:500]

    def _parse_content(self, data: Any) -> str:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or not isinstance(choices, list):
            keys = list(data.keys()) if isinstance(data, dict) else []
            logger.error("gateway_malformed_response", data_keys=keys)
            raise GatewayResponseError("Received an unexpected response from the model provider")
        content = (choices[0].get("message") or {}).get("content", "")
        if not content:
            logger.warning("gateway_empty_response")
            raise GatewayResponseError("No content in model response")
        return content

    async def _complete(
        self, system_prompt: str, user_prompt: str, api_settings: Dict[str, Any]
    ) -> str:
        """Run one chat completion and return the assistant's text."""
        headers = {
            "Authorization": f"Bearer {self._resolve_key(api_settings)}",
            "Content-Type": "application/json",
        }
        payload = self._build_payload(system_prompt, user_prompt, api_settings)

        try:
            session = await self._get_session()
            async with session.post(
                self.api_url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    detail = await self._read_error_detail(resp)
                    logger.error("gateway_api_error", status=resp.status, detail=str(detail)[:500])
                    raise GatewayError(
                        f"Model provider error (status {resp.status})",
                        status=resp.status,
                        detail=detail,
                    )
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            logger.warning("gateway_timeout", timeout=self.timeout)
            raise GatewayTimeoutError(
                f"The model provider did not answer within {self.timeout}s"
            ) from None
        except aiohttp.ClientError as e:
            logger.error("gateway_connection_error", error=str(e))
            raise GatewayConnectionError(str(e)) from e
        except ValueError:
            raise GatewayResponseError("Model provider returned invalid JSON") from None

        content = self._parse_content(data)
        logger.info("gateway_response_success", length=len(content), model=data.get("model"))
        return content

    async def get_initial_tasks(self, goal: str, settings: ModelSettings) -> List[str]:
        content = await self._complete(
            PLANNING_PROMPT,
            f"Goal: {goal}. Generate initial tasks as a JSON array.",
            settings.to_api_settings(),
        )
        return parse_task_list(content)

    async def analyze_task(
        self, goal: str, task_value: str, settings: ModelSettings
    ) -> Analysis:
        content = await self._complete(
            ANALYSIS_PROMPT,
            f"Goal: {goal}. Task: {task_value}. Analyze what action to take next.",
            settings.to_api_settings(),
        )
        return parse_analysis(content)

    async def execute_task(self, request: ExecutionRequest) -> str:
        api_settings = request.model_settings
        parameters = api_settings.get("parameters") or {}
        user_prompt = (
            f"Goal: {request.goal}\n"
            f"Task: {request.task_value}\n"
            f"Action: {request.analysis.action.value} ({request.analysis.arg})\n"
            f"Reasoning: {request.analysis.reasoning}"
        )
        if parameters:
            user_prompt += f"\nParameters: {json.dumps(parameters, ensure_ascii=False)}"
        return await self._complete(
            EXECUTION_PROMPT.format(language=api_settings.get("language", "en")),
            user_prompt,
            api_settings,
        )

    async def get_additional_tasks(
        self,
        goal: str,
        current: str,
        completed: Sequence[str],
        remaining: Sequence[str],
        result: str,
        settings: ModelSettings,
    ) -> List[str]:
        user_prompt = json.dumps(
            {
                "goal": goal,
                "last_task": current,
                "result": result,
                "completed_tasks": list(completed),
                "tasks": list(remaining),
            },
            ensure_ascii=False,
        )
        content = await self._complete(
            CREATE_TASKS_PROMPT, user_prompt, settings.to_api_settings()
        )
        return parse_task_list(content)

    async def summarize(
        self, goal: str, results: Sequence[str], settings: ModelSettings
    ) -> str:
        prompt = SUMMARY_PROMPT.format(goal=goal, results="\n\n".join(results))
        return await self._complete(
            "You are an assistant that writes concise final reports.",
            prompt,
            settings.to_api_settings(),
        )
