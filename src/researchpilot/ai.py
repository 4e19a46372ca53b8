"""Summary: AI provider abstraction and implementations.

Importance: Centralizes LLM access, tool loops, and structured output for both agents.
Alternatives: Call provider SDKs directly in each agent runner.
"""

from __future__ import annotations

import json
import logging
import re
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from researchpilot.config import AppConfig
from researchpilot.errors import AiProviderError
from researchpilot.models import ToolCall


logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")


@dataclass(frozen=True)
class Tool:
    """Summary: Describes a callable tool offered to the model.

    Importance: Keeps tool schemas and execution together so providers stay generic.
    Alternatives: Hardcode tool dispatch inside each provider.
    """

    name: str
    description: str
    parameters: dict[str, Any]
    execute: Callable[[dict[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class ToolRequest:
    """Summary: A tool invocation requested by the model during one step."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ModelTurn:
    """Summary: One model response inside a tool loop.

    Importance: Normalizes provider payloads into text plus tool requests.
    Alternatives: Pass raw provider dicts through the loop.
    """

    text: str
    tool_requests: tuple[ToolRequest, ...] = ()
    message: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Generation:
    """Summary: Captures AI output and metadata for a full generation.

    Importance: Normalizes downstream handling of text, tool calls, and structured output.
    Alternatives: Use dicts or provider response objects.
    """

    text: str
    tool_calls: tuple[ToolCall, ...] = ()
    structured: dict[str, Any] | None = None
    latency_ms: int = 0


class AiProvider(ABC):
    """Summary: Abstract interface for AI generation.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    name = "base"
    model = "unknown"

    @abstractmethod
    def generate(
        self,
        system: str,
        prompt: str,
        tools: list[Tool] | None = None,
        schema: dict[str, Any] | None = None,
        step_limit: int = 10,
        purpose: str = "",
    ) -> Generation:
        """Summary: Generate a response, running tools and honoring a schema when given.

        Importance: Standardizes AI outputs for downstream agent runners.
        Alternatives: Return provider-specific response objects directly.
        """


class ChatModelProvider(AiProvider):
    """Summary: Shared bounded tool loop for chat-style providers.

    Importance: Gives every provider identical step limits and tool-call logging.
    Alternatives: Rely on each vendor's own agent runtime.
    """

    def generate(
        self,
        system: str,
        prompt: str,
        tools: list[Tool] | None = None,
        schema: dict[str, Any] | None = None,
        step_limit: int = 10,
        purpose: str = "",
    ) -> Generation:
        """Summary: Run the tool loop for at most step_limit model calls.

        Importance: Bounds cost and latency while keeping the best available answer.
        Alternatives: Loop until the model stops requesting tools.
        """

        started = time.time()
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        offered = list(tools or [])
        by_name = {tool.name: tool for tool in offered}
        tool_calls: list[ToolCall] = []
        text = ""
        for _ in range(max(1, step_limit)):
            turn = self._complete(messages, offered, schema)
            if turn.text.strip():
                text = turn.text
            if not turn.tool_requests:
                break
            messages.append(turn.message)
            for request in turn.tool_requests:
                tool_calls.append(ToolCall(tool=request.name, query=str(request.arguments.get("query", ""))))
                tool = by_name.get(request.name)
                if tool is None:
                    result: dict[str, Any] = {"error": f"Unknown tool: {request.name}"}
                else:
                    result = tool.execute(request.arguments)
                messages.append(self._tool_message(request, result))
        else:
            logger.warning("Step limit %s reached for %s; returning best-effort text.", step_limit, purpose)
        latency_ms = int((time.time() - started) * 1000)
        structured = parse_structured(text) if schema is not None else None
        return Generation(
            text=text,
            tool_calls=tuple(tool_calls),
            structured=structured,
            latency_ms=latency_ms,
        )

    @abstractmethod
    def _complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[Tool],
        schema: dict[str, Any] | None,
    ) -> ModelTurn:
        """Summary: Perform a single model call over the conversation so far."""

    def _tool_message(self, request: ToolRequest, result: dict[str, Any]) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": request.id, "content": json.dumps(result)}


class MockAiProvider(ChatModelProvider):
    """Summary: Deterministic AI provider for local testing.

    Importance: Enables offline workflows and repeatable tests.
    Alternatives: Use a small local LLM for all development tasks.
    """

    name = "mock"
    model = "mock"

    def _complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[Tool],
        schema: dict[str, Any] | None,
    ) -> ModelTurn:
        """Summary: Request one search when tools are offered, then answer.

        Importance: Exercises the tool loop without external dependencies.
        Alternatives: Use fixture-based responses loaded from files.
        """

        prompt = messages[1]["content"]
        searched = any(message.get("role") == "tool" for message in messages)
        if tools and not searched:
            request = ToolRequest(
                id="mock-call-1",
                name=tools[0].name,
                arguments={"query": _first_line(prompt)[:120], "depth": "standard"},
            )
            return ModelTurn(
                text="",
                tool_requests=(request,),
                message={"role": "assistant", "content": "", "tool_calls": [request.id]},
            )
        if schema is not None:
            return ModelTurn(text=json.dumps(_mock_insights(prompt)))
        return ModelTurn(text=f"[mock:research] {prompt[:240]}")


class OllamaProvider(ChatModelProvider):
    """Summary: AI provider that targets a local Ollama server.

    Importance: Supports privacy-sensitive workflows on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    name = "ollama"

    def __init__(self, base_url: str, model: str, timeout: float = 60.0) -> None:
        """Summary: Initialize the Ollama provider.

        Importance: Stores connection details for repeated requests.
        Alternatives: Lazily resolve URLs per request.
        """

        self._base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = timeout

    def _complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[Tool],
        schema: dict[str, Any] | None,
    ) -> ModelTurn:
        """Summary: Call the Ollama chat API once.

        Importance: Enables local inference with tool calling and JSON formats.
        Alternatives: Use Ollama's generate endpoint and parse text.
        """

        payload: dict[str, Any] = {"model": self.model, "messages": messages, "stream": False}
        if tools:
            payload["tools"] = [_function_spec(tool) for tool in tools]
        if schema is not None:
            payload["format"] = schema
        raw = _post_json(
            f"{self._base_url}/api/chat",
            payload,
            headers={},
            timeout=self._timeout,
            label="Ollama",
        )
        message = raw.get("message") or {}
        requests = tuple(
            ToolRequest(
                id=f"ollama-call-{index}",
                name=call["function"]["name"],
                arguments=_arguments(call["function"].get("arguments")),
            )
            for index, call in enumerate(message.get("tool_calls") or [])
        )
        return ModelTurn(text=message.get("content") or "", tool_requests=requests, message=message)

    def _tool_message(self, request: ToolRequest, result: dict[str, Any]) -> dict[str, Any]:
        return {"role": "tool", "content": json.dumps(result)}


class OpenAiProvider(ChatModelProvider):
    """Summary: AI provider using OpenAI's chat completion API.

    Importance: Enables higher-quality research and insights when configured.
    Alternatives: Use the responses API or a different provider.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ) -> None:
        """Summary: Initialize the OpenAI provider.

        Importance: Stores credentials for future requests.
        Alternatives: Pass the API key per request from a caller.
        """

        self._api_key = api_key
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[Tool],
        schema: dict[str, Any] | None,
    ) -> ModelTurn:
        """Summary: Call chat completions once with tools and response format.

        Importance: Enables cloud-grade reasoning with function calling.
        Alternatives: Use the assistants API.
        """

        payload: dict[str, Any] = {"model": self.model, "messages": messages, "temperature": 0.2}
        if tools:
            payload["tools"] = [_function_spec(tool) for tool in tools]
        if schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "structured_output",
                    "strict": True,
                    "schema": strict_json_schema(schema),
                },
            }
        raw = _post_json(
            f"{self._base_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=self._timeout,
            label="OpenAI",
        )
        try:
            message = raw["choices"][0]["message"]
        except (KeyError, IndexError) as exc:
            raise AiProviderError(f"OpenAI response missing choices: {raw}") from exc
        requests = tuple(
            ToolRequest(
                id=call["id"],
                name=call["function"]["name"],
                arguments=_arguments(call["function"].get("arguments")),
            )
            for call in message.get("tool_calls") or []
        )
        return ModelTurn(text=message.get("content") or "", tool_requests=requests, message=message)


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting AI providers from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        """Summary: Construct the configured AI provider.

        Importance: Ensures consistent provider selection across services.
        Alternatives: Use dependency injection frameworks.
        """

        timeout = self.config.request_timeout_seconds
        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model, timeout)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(
                self.config.openai_api_key,
                self.config.openai_model,
                self.config.openai_base_url,
                timeout,
            )
        return MockAiProvider()


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)


def parse_structured(text: str) -> dict[str, Any] | None:
    """Summary: Parse a JSON object from model text, tolerating code fences.

    Importance: Lets callers treat unparseable output as missing structured output.
    Alternatives: Raise on the first JSON decode error.
    """

    candidate = text.strip()
    if candidate.startswith("```"):
        candidate = candidate.strip("`")
        if candidate.startswith("json"):
            candidate = candidate[4:]
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def strict_json_schema(schema: Any) -> Any:
    """Summary: Rewrite a JSON schema into the form accepted by strict structured outputs.

    Importance: Every object lists all properties as required and forbids extras; optional
    fields stay nullable, so the same pydantic model still validates the result.
    Alternatives: Send the schema unconstrained and rely on post-validation only.
    """

    if isinstance(schema, list):
        return [strict_json_schema(entry) for entry in schema]
    if not isinstance(schema, dict):
        return schema
    rewritten: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "default":
            continue
        if key in ("properties", "$defs") and isinstance(value, dict):
            rewritten[key] = {name: strict_json_schema(entry) for name, entry in value.items()}
        else:
            rewritten[key] = strict_json_schema(value)
    if isinstance(rewritten.get("properties"), dict):
        rewritten["required"] = list(rewritten["properties"])
        rewritten["additionalProperties"] = False
    return rewritten


def _post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    label: str,
) -> dict[str, Any]:
    """Summary: POST a JSON payload and decode the JSON response.

    Importance: Wraps transport failures into AiProviderError with the provider body.
    Alternatives: Use requests or httpx.
    """

    request = urllib.request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8") if exc.fp else ""
        raise AiProviderError(f"{label} request failed: {exc.code} {body}") from exc
    except (urllib.error.URLError, TimeoutError) as exc:
        raise AiProviderError(f"{label} request failed: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise AiProviderError(f"{label} returned invalid JSON: {exc}") from exc


def _function_spec(tool: Tool) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def _arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return text.strip()


def _mock_insights(prompt: str) -> dict[str, Any]:
    """Summary: Build a canned insights payload from addresses found in the prompt."""

    addresses = list(dict.fromkeys(_EMAIL_PATTERN.findall(prompt)))
    headline = _first_line(prompt)[:80]
    email_step: dict[str, Any] = {
        "type": "email",
        "description": "Send a follow-up email",
        "details": f"Follow up on: {headline}",
        "subject": f"Follow-up: {headline}",
        "body": "Thanks for the conversation. Sharing next steps as discussed.",
    }
    if addresses:
        email_step["to"] = addresses[0]
    return {
        "keyInsights": [
            f"Context: {headline}",
            "The counterpart is interested in continuing the conversation.",
            "A concrete next step has been requested.",
        ],
        "feedback": [
            "Respond promptly to keep momentum.",
            "Confirm owners and dates for each next step.",
        ],
        "actionSteps": [
            email_step,
            {
                "type": "meeting",
                "description": "Schedule a follow-up meeting",
                "details": f"Discuss next steps for: {headline}",
                "meetingSummary": f"Follow-up: {headline}",
                "attendees": addresses[:3],
                "durationMinutes": 30,
            },
        ],
    }
