import json
import time

import httpx
import pytest

from wanzhi.agent_types import Message, ToolDefinition
from wanzhi.llm_openai import (
    LLMError,
    OpenAICompatibleConfig,
    OpenAICompatibleLLMClient,
    normalize_tool_arguments,
    parse_retry_after,
)

BASE = "http://llm.example.com"


def make_client(handler, **kwargs):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    config = OpenAICompatibleConfig(base_url=BASE, http_client=http_client, **kwargs)
    return OpenAICompatibleLLMClient(config)


def test_text_reply():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": "ok-summary"}}]}
        )

    client = make_client(handler, api_key="placeholder", model="gpt-4o-mini", max_tokens=256, temperature=0.1)
    reply = client.next([Message(role="user", content="hi")], None)
    assert paths == ["/v1/chat/completions"]
    assert reply.content == "ok-summary"
    assert reply.tool_calls == []


def test_tool_calls():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "role": "assistant",
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {
                                        "name": "search_api",
                                        "arguments": '{"query":"登录","top_k":3}',
                                    },
                                }
                            ],
                        }
                    }
                ]
            },
        )

    client = make_client(handler, api_key="placeholder", model="gpt-4o-mini", max_tokens=256, temperature=0.1)
    reply = client.next(
        [Message(role="user", content="查登录接口")],
        [ToolDefinition(name="search_api", description="search", schema={"type": "object"})],
    )
    assert bodies[0]["model"] == "gpt-4o-mini"
    assert len(bodies[0]["tools"]) == 1
    assert bodies[0]["tool_choice"] == "auto"
    assert len(reply.tool_calls) == 1
    assert reply.tool_calls[0].name == "search_api"
    assert reply.tool_calls[0].id == "call_1"
    assert '"query":"登录"' in reply.tool_calls[0].args


def test_http_error_not_retried():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(400, text="bad request")

    client = make_client(handler, model="gpt-4o-mini", max_retries=3)
    with pytest.raises(LLMError, match="400"):
        client.next([Message(role="user", content="hi")])
    assert len(calls) == 1


def test_retry_on_429_then_success():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"}, text="rate limited")
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": "retry-ok"}}]}
        )

    client = make_client(
        handler, api_key="placeholder", model="gpt-4o-mini", max_retries=2, retry_backoff=0.005
    )
    reply = client.next([Message(role="user", content="hi")])
    assert reply.content == "retry-ok"
    assert len(calls) == 2


def test_retry_exhausted():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(500, text="upstream broken")

    client = make_client(handler, model="gpt-4o-mini", max_retries=2, retry_backoff=0.005)
    with pytest.raises(LLMError):
        client.next([Message(role="user", content="hi")])
    assert len(calls) == 3


def test_context_deadline_no_retry():
    calls = []

    def handler(request):
        calls.append(1)
        time.sleep(0.12)
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(handler, model="gpt-4o-mini", max_retries=3, retry_backoff=0.005)
    with pytest.raises(LLMError):
        client.next([Message(role="user", content="hi")], timeout=0.02)
    assert len(calls) == 1


def test_health_check_allows_unauthorized():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(401)

    client = make_client(handler, api_key="placeholder")
    assert client.health_check() is None
    assert paths == ["/v1/models"]


def test_health_check_fails_on_5xx():
    client = make_client(lambda request: httpx.Response(500, text="server broken"), api_key="placeholder")
    with pytest.raises(LLMError, match="500"):
        client.health_check()


def test_usage_parsing():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "hello"}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            },
        )

    client = make_client(handler, model="gpt-4o-mini")
    reply = client.next([Message(role="user", content="hi")])
    assert reply.prompt_tokens == 10
    assert reply.completion_tokens == 5


def test_model():
    client = OpenAICompatibleLLMClient(OpenAICompatibleConfig(model="deepseek-chat"))
    assert client.model() == "deepseek-chat"


def test_default_model():
    client = OpenAICompatibleLLMClient(OpenAICompatibleConfig())
    assert client.model() == "gpt-4o-mini"


def test_no_choices_raises():
    client = make_client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(LLMError, match="no choices"):
        client.next([Message(role="user", content="hi")])


def test_request_omits_empty_tools_and_sends_auth():
    seen = []

    def handler(request):
        seen.append((json.loads(request.content), request.headers.get("Authorization")))
        return httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]})

    client = make_client(handler, api_key="token")
    reply = client.next([Message(role="user", content="hi")])
    assert reply.content == "x"
    body, auth = seen[0]
    assert "tools" not in body
    assert body["messages"] == [{"role": "user", "content": "hi"}]
    assert auth == "Bearer token"


@pytest.mark.parametrize(
    "value, expected",
    [("", 0.0), (None, 0.0), ("abc", 0.0), ("-1", 0.0), (" 2 ", 2.0), ("0", 0.0)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected


def test_normalize_tool_arguments():
    assert normalize_tool_arguments("") == "{}"
    assert normalize_tool_arguments('  {"a":1}  ') == '{"a":1}'
    assert json.loads(normalize_tool_arguments("not json")) == {"raw_arguments": "not json"}