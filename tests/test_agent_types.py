import json

from wanzhi.agent_types import (
    AgentEvent,
    EventKind,
    LLMReply,
    Message,
    ToolCall,
    ToolDefinition,
)


def test_step_start_event_to_dict():
    event = AgentEvent(kind=EventKind.STEP_START, step=1)
    assert event.to_dict() == {"kind": "agent.step.start", "step": 1}


def test_complete_event_keeps_content():
    event = AgentEvent(kind=EventKind.COMPLETE, content="找到登录接口 POST /user/login")
    data = event.to_dict()
    assert data["kind"] == "agent.complete"
    assert data["content"] == "找到登录接口 POST /user/login"
    assert "step" not in data


def test_event_dict_survives_json_round_trip():
    event = AgentEvent(kind=EventKind.LLM_END, step=3, content="x")
    decoded = json.loads(json.dumps(event.to_dict()))
    assert EventKind(decoded["kind"]) is EventKind.LLM_END
    assert AgentEvent(**{**decoded, "kind": EventKind(decoded["kind"])}) == event


def test_event_kind_accepts_plain_string():
    event = AgentEvent(kind="agent.complete")
    assert event.to_dict() == {"kind": "agent.complete"}


def test_message_defaults_are_independent():
    first = Message(role="user", content="hi")
    second = Message(role="assistant")
    first.tool_calls.append(ToolCall(id="tc-1", name="search_api"))
    assert second.tool_calls == []
    assert first.tool_calls[0].args == "{}"


def test_reply_and_definition_hold_values():
    reply = LLMReply(content="ok-summary", prompt_tokens=10, completion_tokens=5)
    definition = ToolDefinition(name="search_api", description="search", schema={"type": "object"})
    assert reply.tool_calls == []
    assert (reply.prompt_tokens, reply.completion_tokens) == (10, 5)
    assert definition.schema == {"type": "object"}