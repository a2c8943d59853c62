"""JSON-RPC endpoint with SSE streaming and its middleware chain."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Protocol, Union

from .agent_types import AgentEvent
from .metrics import Metrics
from .ratelimit import RateLimiter, default_config, new_rate_limiter
from .request_id import (
    REQUEST_ID_HEADER,
    TRACE_ID_HEADER,
    current_request_id,
    current_trace_id,
    request_scope,
    resolve_request_ids,
)

MCP_PATH = "/mcp"
STREAMING_METHOD = "query_api"

CODE_INVALID_REQUEST = -32600
CODE_INVALID_PARAMS = -32602
CODE_SERVER_ERROR = -32000


@dataclass
class HTTPRequest:
    """An incoming HTTP request; a text body is stored as UTF-8 bytes."""

    method: str = "POST"
    path: str = MCP_PATH
    headers: dict[str, str] = field(default_factory=dict)
    body: Union[bytes, str] = b""
    remote_addr: str = "127.0.0.1:12345"

    def __post_init__(self) -> None:
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")


@dataclass
class HTTPResponse:
    """An HTTP response; ``stream`` yields body chunks that follow ``body``."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    stream: Optional[Iterator[bytes]] = None

    def text(self) -> str:
        """The whole body as text, draining the stream if there is one."""
        if self.stream is not None:
            chunks = list(self.stream)
            self.stream = None
            self.body += b"".join(chunks)
        return self.body.decode("utf-8")


@dataclass
class Hooks:
    """Optional lifecycle callbacks; ``after_tool_call`` gets seconds and the error."""

    on_init: Optional[Callable[[], None]] = None
    before_tool_call: Optional[Callable[[str], None]] = None
    after_tool_call: Optional[Callable[[str, float, Optional[BaseException]], None]] = None
    on_shutdown: Optional[Callable[[], None]] = None


class ToolDispatcher(Protocol):
    """Runs a named tool with decoded JSON parameters; raises on failure."""

    def dispatch(self, name: str, params: Any) -> Any:
        """Return the tool result for ``name`` called with ``params``."""


class StreamRunner(Protocol):
    """Produces agent events for a user query."""

    def run_stream(self, query: str) -> Iterable[AgentEvent]:
        """Yield the events of answering ``query``."""


def _get_header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    return next((v for k, v in headers.items() if k.lower() == lowered), "")


def is_sse_request(headers: Mapping[str, str]) -> bool:
    """Whether the client asked for an event stream."""
    return "text/event-stream" in _get_header(headers, "Accept")


def sse_headers() -> dict[str, str]:
    """Response headers of an event stream."""
    return {
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
    }


def format_sse_event(event: AgentEvent) -> str:
    """One SSE frame: the event kind and the event as JSON."""
    data = json.dumps(event.to_dict(), ensure_ascii=False, separators=(",", ":"))
    return f"event: {event.kind}\ndata: {data}\n\n"


def client_ip(remote_addr: str) -> str:
    """Host part of ``host:port``; the input unchanged if it has no valid port."""
    if remote_addr.startswith("["):
        end = remote_addr.find("]")
        if end < 0 or remote_addr[end + 1 : end + 2] != ":":
            return remote_addr
        if ":" in remote_addr[end + 2 :]:
            return remote_addr
        return remote_addr[1:end]
    if remote_addr.count(":") != 1:
        return remote_addr
    host = remote_addr.split(":", 1)[0]
    if "[" in host or "]" in host:
        return remote_addr
    return host


def _json_response(status: int, payload: Any) -> HTTPResponse:
    body = (json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")
    return HTTPResponse(status, {"Content-Type": "application/json"}, body)


def _http_error(status: int, message: str) -> HTTPResponse:
    return _json_response(status, {"error": message})


@dataclass
class _RpcRequest:
    jsonrpc: str
    id: Any
    method: str
    params: Any


def _decode_rpc(body: bytes) -> Optional[_RpcRequest]:
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    jsonrpc = data.get("jsonrpc")
    method = data.get("method")
    if jsonrpc is not None and not isinstance(jsonrpc, str):
        return None
    if method is not None and not isinstance(method, str):
        return None
    return _RpcRequest(jsonrpc or "2.0", data.get("id"), method or "", data.get("params"))


def _rpc_payload(
    rpc: _RpcRequest, result: Any = None, code: int = 0, message: str = ""
) -> dict[str, Any]:
    payload: dict[str, Any] = {"jsonrpc": rpc.jsonrpc, "id": rpc.id}
    if result is not None:
        payload["result"] = result
    if code:
        payload["error"] = {"code": code, "message": message}
    return payload


class McpServer:
    """Serves ``POST /mcp`` with auth, rate limiting, logging and validation."""

    def __init__(
        self,
        registry: ToolDispatcher,
        hooks: Optional[Hooks] = None,
        auth_token: str = "",
        rate_limit_per_minute: int = 0,
        metrics: Optional[Metrics] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry
        self._hooks = hooks or Hooks()
        self._auth_token = (auth_token or "").strip()
        self._metrics = metrics
        self._logger = logger or logging.getLogger(__name__)
        config = default_config()
        if rate_limit_per_minute > 0:
            config.limit = rate_limit_per_minute
        self._limiter = new_rate_limiter(config)
        self._stream_runner: Optional[StreamRunner] = None

    def init(self) -> None:
        """Run the ``on_init`` hook, if any."""
        if self._hooks.on_init is not None:
            self._hooks.on_init()

    def shutdown(self) -> None:
        """Run the ``on_shutdown`` hook, if any."""
        if self._hooks.on_shutdown is not None:
            self._hooks.on_shutdown()

    def set_stream_runner(self, runner: Optional[StreamRunner]) -> None:
        """Enable event streaming of ``query_api`` through ``runner``."""
        self._stream_runner = runner

    def limiter(self) -> RateLimiter:
        return self._limiter

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Serve one request through the whole middleware chain."""
        request_id, trace_id = resolve_request_ids(request.headers)
        with request_scope(request_id, trace_id):
            response = self._serve(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[TRACE_ID_HEADER] = trace_id
        return response

    def _serve(self, request: HTTPRequest) -> HTTPResponse:
        if self._auth_token:
            if _get_header(request.headers, "Authorization") != "Bearer " + self._auth_token:
                return _http_error(401, "unauthorized")
        if not self._limiter.allow(client_ip(request.remote_addr)):
            return _http_error(429, "rate limit exceeded")

        start = time.monotonic()
        response = self._validate(request)
        duration = time.monotonic() - start
        self._logger.info(
            "mcp request",
            extra={
                "request_id": current_request_id(),
                "method": request.method,
                "path": request.path,
                "remote": request.remote_addr,
                "status": response.status,
                "duration_ms": int(duration * 1000),
            },
        )
        return response

    def _validate(self, request: HTTPRequest) -> HTTPResponse:
        if request.path != MCP_PATH:
            return _http_error(404, "not found")
        if request.method != "POST":
            return _http_error(405, "method not allowed")
        content_type = _get_header(request.headers, "Content-Type")
        if content_type and "application/json" not in content_type:
            return _http_error(400, "content-type must be application/json")
        return self._handle_rpc(request)

    def _handle_rpc(self, request: HTTPRequest) -> HTTPResponse:
        if is_sse_request(request.headers) and self._stream_runner is not None:
            return self._handle_sse(request)
        rpc = _decode_rpc(request.body)
        if rpc is None:
            return _http_error(400, "invalid json body")
        return self._dispatch(rpc)

    def _dispatch(self, rpc: _RpcRequest) -> HTTPResponse:
        if not rpc.method:
            return _json_response(
                400, _rpc_payload(rpc, code=CODE_INVALID_REQUEST, message="method is required")
            )

        start = time.monotonic()
        if self._hooks.before_tool_call is not None:
            self._hooks.before_tool_call(rpc.method)
        result: Any = None
        error: Optional[BaseException] = None
        try:
            result = self._registry.dispatch(rpc.method, rpc.params)
        except Exception as exc:
            error = exc
        duration = time.monotonic() - start
        if self._hooks.after_tool_call is not None:
            self._hooks.after_tool_call(rpc.method, duration, error)

        if self._metrics is not None:
            self._metrics.record_request(rpc.method, "error" if error else "ok", duration)

        if error is not None:
            return _json_response(
                200, _rpc_payload(rpc, code=CODE_SERVER_ERROR, message=str(error))
            )
        return _json_response(200, _rpc_payload(rpc, result=result))

    def _handle_sse(self, request: HTTPRequest) -> HTTPResponse:
        rpc = _decode_rpc(request.body)
        if rpc is None:
            return _http_error(400, "invalid json body")
        runner = self._stream_runner
        if rpc.method != STREAMING_METHOD or runner is None:
            return self._dispatch(rpc)

        query = rpc.params.get("query") if isinstance(rpc.params, dict) else None
        if not isinstance(query, str) or not query:
            return _json_response(
                400, _rpc_payload(rpc, code=CODE_INVALID_PARAMS, message="query is required")
            )

        request_id, trace_id = current_request_id(), current_trace_id()

        def frames() -> Iterator[bytes]:
            with request_scope(request_id, trace_id):
                for event in runner.run_stream(query):
                    yield format_sse_event(event).encode("utf-8")

        return HTTPResponse(200, sse_headers(), stream=frames())