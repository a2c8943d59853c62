"""A deterministic stand-in for an LLM that follows a fixed tool-calling flow."""

from __future__ import annotations

import json
from typing import Any, Optional

from .agent_types import LLMReply, Message, ToolCall, ToolDefinition


def _raw_json(value: dict[str, Any]) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def _user_query(messages: list[Message]) -> str:
    return next((m.content for m in reversed(messages) if m.role == "user"), "")


def _last_tool_call_name(messages: list[Message]) -> str:
    return next(
        (m.tool_calls[0].name for m in reversed(messages) if m.role == "assistant" and m.tool_calls),
        "",
    )


def _count_tool_calls(messages: list[Message]) -> int:
    return sum(len(m.tool_calls) for m in messages)


def _dig_endpoint(value: dict[str, Any]) -> Optional[str]:
    endpoint = value.get("endpoint")
    if isinstance(endpoint, str):
        return endpoint
    if isinstance(endpoint, dict):
        method, path = endpoint.get("method"), endpoint.get("path")
        if isinstance(method, str) and isinstance(path, str):
            return f"{method} {path}"
    items = value.get("items")
    if isinstance(items, list):
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("endpoint"), str):
                return item["endpoint"]
    return None


def _last_endpoint(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role != "tool":
            continue
        try:
            obj = json.loads(message.content)
        except ValueError:
            continue
        if not isinstance(obj, dict):
            continue
        endpoint = _dig_endpoint(obj)
        if endpoint is not None:
            return endpoint
    return ""


def _summarize(messages: list[Message]) -> str:
    parts = [m.content for m in messages if m.role == "tool"]
    if not parts:
        return "未检索到可用信息。"
    return "结构化汇总结果:\n" + "\n".join(parts)


class RuleBasedLLMClient:
    """Search, then fetch detail (or dependencies), then an example if asked, then summarize."""

    def next(
        self, messages: list[Message], tools: Optional[list[ToolDefinition]] = None
    ) -> LLMReply:
        query = _user_query(messages)
        lowered = query.lower()
        last_tool = _last_tool_call_name(messages)
        endpoint = _last_endpoint(messages)

        if _count_tool_calls(messages) == 0:
            return LLMReply(
                tool_calls=[
                    ToolCall("tc-1", "search_api", _raw_json({"query": query, "top_k": 5}))
                ]
            )

        if last_tool == "search_api" and endpoint:
            name = (
                "analyze_dependencies"
                if "依赖" in query or "dependency" in lowered
                else "get_api_detail"
            )
            return LLMReply(tool_calls=[ToolCall("tc-2", name, _raw_json({"endpoint": endpoint}))])

        if (
            last_tool == "get_api_detail"
            and endpoint
            and ("示例" in query or "example" in lowered or "code" in lowered)
        ):
            return LLMReply(
                tool_calls=[
                    ToolCall(
                        "tc-3",
                        "generate_example",
                        _raw_json({"endpoint": endpoint, "language": "go"}),
                    )
                ]
            )

        return LLMReply(content=_summarize(messages))