"""Messages, tool calls and streaming events exchanged with the agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass
class ToolCall:
    """A tool invocation requested by the model; ``args`` is JSON text."""

    id: str = ""
    name: str = ""
    args: str = "{}"


@dataclass
class Message:
    """One chat message: role is user, assistant, system or tool."""

    role: str
    content: str = ""
    tool_call_id: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class ToolDefinition:
    """A tool offered to the model, with its JSON schema."""

    name: str
    description: str = ""
    schema: Optional[dict[str, Any]] = None


@dataclass
class LLMReply:
    """The model's answer: text, tool calls, or both, plus token usage."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0


class EventKind(str, Enum):
    """Kinds of events emitted while the agent runs."""

    STEP_START = "agent.step.start"
    LLM_END = "agent.llm.end"
    COMPLETE = "agent.complete"

    def __str__(self) -> str:
        return self.value


@dataclass
class AgentEvent:
    """One streamed progress event."""

    kind: EventKind
    step: int = 0
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; zero step and empty content are left out."""
        data: dict[str, Any] = {"kind": EventKind(self.kind).value}
        if self.step:
            data["step"] = self.step
        if self.content:
            data["content"] = self.content
        return data