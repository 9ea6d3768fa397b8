"""Model client -- chat completions over an OpenAI-compatible HTTP API.

Uses a direct httpx client (no provider SDK). Turns are converted to the
provider's message format on the way out and completions are normalised
on the way back, including inline reasoning extraction for models that
think inside tags.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from chatline.ai.models import ModelRegistry
from chatline.ai.reasoning import extract_reasoning
from chatline.config import Settings
from chatline.transcript.schemas import TextPart, ToolCallPart, ToolResultPart, Turn

logger = logging.getLogger(__name__)

_RETRY_STATUSES = frozenset({429, 500, 502, 503})
_MAX_RETRY_DELAY = 30.0


class ModelProviderError(RuntimeError):
    """The model provider returned an error response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ToolCallRequest:
    """A tool call parsed from a completion, arguments already decoded."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Completion:
    """Normalised model response."""

    text: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    reasoning: str | None = None
    finish_reason: str = "stop"
    usage: dict[str, int] | None = None


def _retry_delay(header: str | None) -> float:
    """Seconds to wait from a retry-after header; 1s when absent or an HTTP-date."""
    try:
        delay = float(header) if header else 1.0
    except ValueError:
        return 1.0
    return min(max(delay, 0.0), _MAX_RETRY_DELAY)


def _text_of(content: str | list[Any]) -> str:
    if isinstance(content, str):
        return content
    return "".join(p.text for p in content if isinstance(p, TextPart))


def _result_text(result: Any) -> str:
    return result if isinstance(result, str) else json.dumps(result)


def to_provider_messages(turns: Sequence[Turn], system: str | None = None) -> list[dict[str, Any]]:
    """Convert turns into OpenAI-style chat messages.

    A tool turn expands to one ``tool`` message per result part.
    """
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})

    for turn in turns:
        if turn.role == "tool":
            if isinstance(turn.content, list):
                for part in turn.content:
                    if isinstance(part, ToolResultPart):
                        messages.append({
                            "role": "tool",
                            "tool_call_id": part.tool_call_id,
                            "content": _result_text(part.result),
                        })
            continue

        if turn.role != "assistant" or isinstance(turn.content, str):
            messages.append({"role": turn.role, "content": _text_of(turn.content)})
            continue

        tool_calls = [
            {
                "id": part.tool_call_id,
                "type": "function",
                "function": {"name": part.tool_name, "arguments": json.dumps(part.args)},
            }
            for part in turn.content
            if isinstance(part, ToolCallPart)
        ]
        message: dict[str, Any] = {"role": "assistant", "content": _text_of(turn.content) or None}
        if tool_calls:
            message["tool_calls"] = tool_calls
        messages.append(message)
    return messages


def _parse_tool_calls(raw_calls: list[dict[str, Any]] | None) -> list[ToolCallRequest]:
    calls: list[ToolCallRequest] = []
    for raw in raw_calls or []:
        function = raw.get("function", {})
        arguments = function.get("arguments") or "{}"
        try:
            parsed = json.loads(arguments) if isinstance(arguments, str) else arguments
        except json.JSONDecodeError:
            logger.warning("Unparseable arguments for tool %s: %s", function.get("name"), arguments[:200])
            parsed = {}
        calls.append(
            ToolCallRequest(
                id=raw.get("id", ""),
                name=function.get("name", ""),
                arguments=parsed if isinstance(parsed, dict) else {},
            )
        )
    return calls


class ModelClient:
    """Calls the chat-completions endpoint for a logical model id."""

    def __init__(self, settings: Settings, registry: ModelRegistry) -> None:
        self._settings = settings
        self._registry = registry
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        headers = {"content-type": "application/json"}
        if settings.groq_api_key:
            headers["authorization"] = f"Bearer {settings.groq_api_key}"
        else:
            logger.warning("GROQ_API_KEY is not set -- model calls will fail")

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        self._http = httpx.AsyncClient(
            base_url=settings.model_base_url,
            headers=headers,
            timeout=timeout,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
        logger.info("Model client initialized (%s)", settings.model_base_url)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    async def complete(
        self,
        model_id: str,
        messages: Sequence[Turn],
        system: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> Completion:
        """Run one completion and return it normalised.

        Raises ModelProviderError on provider errors, UnknownModelError for an
        unregistered model id.
        """
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        spec = self._registry.resolve(model_id)
        payload: dict[str, Any] = {
            "model": spec.provider_model,
            "max_tokens": self._settings.max_tokens,
            "messages": to_provider_messages(messages, system),
        }
        if tools:
            payload["tools"] = tools

        data = await self._post(payload)
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}

        text = message.get("content") or ""
        reasoning = None
        if spec.reasoning_tag:
            reasoning, text = extract_reasoning(text, spec.reasoning_tag)

        return Completion(
            text=text,
            tool_calls=_parse_tool_calls(message.get("tool_calls")),
            reasoning=reasoning,
            finish_reason=choice.get("finish_reason") or "stop",
            usage=data.get("usage"),
        )

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with one retry for throttling and transient server errors."""
        last_error: Exception | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await self._http.post("/chat/completions", json=payload)
            except httpx.TimeoutException as e:
                last_error = ModelProviderError(f"Model request timed out: {e}")
                if attempt == 0:
                    logger.warning("Model API timeout, retrying: %s", e)
                    await asyncio.sleep(1)
                    continue
                break
            except httpx.HTTPError as e:
                last_error = ModelProviderError(f"HTTP error: {e}")
                break  # Don't retry connection errors

            if response.status_code == 200:
                return response.json()

            try:
                error_msg = response.json().get("error", {}).get("message", "unknown error")
            except (ValueError, AttributeError):
                error_msg = f"HTTP {response.status_code}: {response.text[:500]}"

            if response.status_code in _RETRY_STATUSES and attempt == 0:
                retry_after = _retry_delay(response.headers.get("retry-after"))
                logger.warning(
                    "Model API error %d, retrying in %.1fs: %s",
                    response.status_code,
                    retry_after,
                    error_msg,
                )
                await asyncio.sleep(retry_after)
                continue

            last_error = ModelProviderError(
                f"Model API error ({response.status_code}): {error_msg}",
                status_code=response.status_code,
            )
            break

        raise last_error or ModelProviderError("Model call failed with unknown error")
