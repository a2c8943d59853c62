"""Client for OpenAI-compatible chat completion APIs with tool calling."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .agent_types import LLMReply, Message, ToolCall, ToolDefinition

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_RETRY_BACKOFF = 0.2


class LLMError(Exception):
    """Raised when a chat completion or health request fails."""

    def __init__(self, message: str, retryable: bool = False, retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.retry_after = retry_after


@dataclass
class OpenAICompatibleConfig:
    """Client settings; ``retry_backoff`` is in seconds."""

    api_key: str = ""
    base_url: str = ""
    model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    max_retries: int = 0
    retry_backoff: float = 0.0
    http_client: Optional[httpx.Client] = None


def parse_retry_after(value: Optional[str]) -> float:
    """Seconds from a ``Retry-After`` header; zero when absent or not a count."""
    raw = (value or "").strip()
    if not raw:
        return 0.0
    try:
        seconds = int(raw)
    except ValueError:
        return 0.0
    if seconds < 0:
        return 0.0
    return float(seconds)


def normalize_tool_arguments(raw: Optional[str]) -> str:
    """Turn model-supplied arguments into valid JSON text."""
    raw = (raw or "").strip()
    if not raw:
        return "{}"
    try:
        json.loads(raw)
    except ValueError:
        return json.dumps({"raw_arguments": raw}, ensure_ascii=False, separators=(",", ":"))
    return raw


def _message_dict(message: Message) -> dict[str, Any]:
    item: dict[str, Any] = {"role": message.role}
    if message.content:
        item["content"] = message.content
    if message.tool_call_id:
        item["tool_call_id"] = message.tool_call_id
    if message.tool_calls:
        calls = []
        for call in message.tool_calls:
            entry: dict[str, Any] = {}
            if call.id:
                entry["id"] = call.id
            entry["type"] = "function"
            entry["function"] = {"name": call.name, "arguments": call.args}
            calls.append(entry)
        item["tool_calls"] = calls
    return item


def _tool_dict(tool: ToolDefinition) -> dict[str, Any]:
    spec: dict[str, Any] = {"name": tool.name}
    if tool.description:
        spec["description"] = tool.description
    if tool.schema is not None:
        spec["parameters"] = tool.schema
    return {"type": "function", "function": spec}


class OpenAICompatibleLLMClient:
    """Sends chat completions to ``/v1/chat/completions`` and retries transient failures."""

    def __init__(self, config: Optional[OpenAICompatibleConfig] = None) -> None:
        config = config or OpenAICompatibleConfig()
        self._base_url = (config.base_url or "").strip().rstrip("/") or DEFAULT_BASE_URL
        self._model = (config.model or "").strip() or DEFAULT_MODEL
        self._api_key = (config.api_key or "").strip()
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self._max_retries = max(config.max_retries, 0)
        self._retry_backoff = (
            config.retry_backoff if config.retry_backoff > 0 else DEFAULT_RETRY_BACKOFF
        )
        self._client = (
            config.http_client if config.http_client is not None else httpx.Client(timeout=None)
        )

    def model(self) -> str:
        return self._model

    def _build_request(self, messages: list[Message], tools: list[ToolDefinition]) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [_message_dict(m) for m in messages],
        }
        if tools:
            body["tools"] = [_tool_dict(t) for t in tools]
        body["tool_choice"] = "auto"
        if self._max_tokens:
            body["max_tokens"] = self._max_tokens
        if self._temperature:
            body["temperature"] = self._temperature
        return body

    def next(
        self,
        messages: list[Message],
        tools: Optional[list[ToolDefinition]] = None,
        timeout: Optional[float] = None,
    ) -> LLMReply:
        """Ask the model for its next reply; ``timeout`` bounds the whole call in seconds."""
        payload = json.dumps(
            self._build_request(messages, tools or []), ensure_ascii=False
        ).encode("utf-8")
        deadline = None if timeout is None else time.monotonic() + timeout

        for attempt in range(self._max_retries + 1):
            try:
                return self._do_request(payload, deadline)
            except LLMError as exc:
                if not exc.retryable or attempt == self._max_retries:
                    raise
                delay = exc.retry_after if exc.retry_after > 0 else self._retry_backoff * (attempt + 1)
                if deadline is not None and time.monotonic() + delay > deadline:
                    raise LLMError(
                        "context canceled while waiting retry: context deadline exceeded"
                    ) from exc
                time.sleep(delay)
        raise LLMError("chat completion failed")

    def _do_request(self, payload: bytes, deadline: Optional[float]) -> LLMReply:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = "Bearer " + self._api_key
        kwargs: dict[str, Any] = {}
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LLMError("send chat completion request: context deadline exceeded")
            kwargs["timeout"] = remaining

        try:
            response = self._client.post(
                self._base_url + "/v1/chat/completions",
                content=payload,
                headers=headers,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            expired = deadline is not None and time.monotonic() >= deadline
            raise LLMError(
                f"send chat completion request: {exc}", retryable=not expired
            ) from exc

        if response.status_code >= 300:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise LLMError(
                f"chat completion API error {response.status_code}: {response.text}",
                retryable=retryable,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("response is not an object")
            choices = data.get("choices") or []
            if not choices:
                raise LLMError("chat completion response has no choices")
            message = choices[0].get("message") or {}
            reply = LLMReply(content=(message.get("content") or "").strip())
            for call in message.get("tool_calls") or []:
                function = call.get("function") or {}
                reply.tool_calls.append(
                    ToolCall(
                        id=call.get("id") or "",
                        name=function.get("name") or "",
                        args=normalize_tool_arguments(function.get("arguments")),
                    )
                )
            usage = data.get("usage") or {}
            reply.prompt_tokens = int(usage.get("prompt_tokens") or 0)
            reply.completion_tokens = int(usage.get("completion_tokens") or 0)
        except LLMError:
            raise
        except (ValueError, TypeError, AttributeError) as exc:
            raise LLMError(f"decode chat completion response: {exc}") from exc
        return reply

    def health_check(self) -> None:
        """Check the API is reachable; 200, 401 and 403 count as reachable."""
        headers = {}
        if self._api_key:
            headers["Authorization"] = "Bearer " + self._api_key
        try:
            response = self._client.get(self._base_url + "/v1/models", headers=headers)
        except httpx.HTTPError as exc:
            raise LLMError(f"llm health request failed: {exc}") from exc
        if response.status_code in (200, 401, 403):
            return
        raise LLMError(f"llm health status {response.status_code}: {response.text}")