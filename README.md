# wanzhi

Building blocks for an API knowledge assistant service. Python 3.10 or later;
runtime dependencies are `httpx` and `redis`.

## What is here

- `wanzhi.mcp` — `McpServer`, a JSON-RPC 2.0 endpoint for `POST /mcp`.
  `handle(HTTPRequest)` runs the request through bearer-token
  authentication, per-client rate limiting (by the host part of
  `remote_addr`), logging, path/method/content-type validation and tool
  dispatch, and returns an `HTTPResponse`. Request and trace ids are taken
  from `X-Request-ID` / `X-Trace-ID` (or generated) and echoed in the
  response headers. With a stream runner set (`set_stream_runner`) and an
  `Accept: text/event-stream` header, `query_api` calls are answered as
  Server-Sent Events. `Hooks` gives optional `on_init`, `before_tool_call`,
  `after_tool_call` and `on_shutdown` callbacks.
- `wanzhi.chat` — `ChatHandler.handle_chat` answers `{"message": ...}` with
  a stream of agent events as SSE.
- `wanzhi.webhook` — `WebhookHandler.handle_sync` accepts a push payload,
  authorizes it by a `sha256=` HMAC signature (`X-Hub-Signature-256`) or a
  bearer token, keeps `.json`, `.yaml` and `.yml` files
  (`filter_api_files`) and passes them to a `SyncService`, inline or on a
  background thread.
- `wanzhi.ratelimit` — `FixedWindowLimiter`, `SlidingWindowLimiter` and
  `TokenBucketLimiter` behind the `RateLimiter` interface
  (`allow`, `allow_n`, `wait`, `wait_n`, `reset`, `stats`);
  `new_rate_limiter(config)` picks one by `Algorithm`.
- `wanzhi.request_id` — `generate_request_id`, `resolve_request_ids`,
  and the `request_scope` context manager read by `current_request_id` /
  `current_trace_id`.
- `wanzhi.resilience` — `CircuitBreaker` (closed, half-open, open) and
  `Retry` with exponential backoff and jitter.
- `wanzhi.logger` — `new_logger(stream, debug)` returns a logger writing one
  JSON object per line; fields passed with `extra={...}` become top-level keys.
- `wanzhi.metrics` — `Metrics` counts requests, tool calls, LLM calls, tokens
  and RAG searches; pass a `MetricsRegistry` to collect them with `gather()`.
- `wanzhi.agent_types` — `Message`, `ToolCall`, `ToolDefinition`, `LLMReply`,
  `EventKind` and `AgentEvent`.
- `wanzhi.llm_openai` — `OpenAICompatibleLLMClient` for
  `/v1/chat/completions` with tool calling, retries on 429 and 5xx
  (honouring `Retry-After`), an optional overall `timeout`, and
  `health_check()` against `/v1/models`.
- `wanzhi.rule_based` — `RuleBasedLLMClient`, a deterministic client that
  searches, fetches detail or dependencies, generates an example when asked,
  then summarizes the tool results.
- `wanzhi.embedding` — `NoopEmbeddingClient` (zero vectors) and
  `OpenAIEmbeddingClient` (`/v1/embeddings`, batches of 10).
- `wanzhi.rerank` — `NoopRerankClient` (original order, score 1.0) and
  `DashScopeRerankClient`.
- `wanzhi.vector_store` — `InMemoryVectorClient` with cosine-similarity
  search and filtering by service or metadata.
- `wanzhi.redis_client` — `new_redis_client(RedisOptions)` connects, pings,
  and returns a `RedisKV` offering the string commands the store needs.

## JSON-RPC server

```python
from wanzhi.mcp import HTTPRequest, McpServer

class Tools:
    def dispatch(self, name, params):
        if name == "ping":
            return {"pong": params.get("msg", "")}
        raise LookupError(f"unknown tool: {name}")

server = McpServer(Tools(), auth_token="token", rate_limit_per_minute=60)
server.init()

response = server.handle(HTTPRequest(
    headers={"Authorization": "Bearer token", "Content-Type": "application/json"},
    body='{"jsonrpc":"2.0","id":1,"method":"ping","params":{"msg":"ok"}}',
))
print(response.status, response.text())
```

A tool that raises is reported as a JSON-RPC error with code `-32000`; a
missing method gives `-32600`.

## Circuit breaker and retry

```python
from wanzhi.resilience import (
    CircuitBreaker, CircuitBreakerOpenError, Retry, RetryError,
    default_config, default_retry_config,
)

breaker = CircuitBreaker(default_config("llm"))
try:
    breaker.execute(call_upstream)
except CircuitBreakerOpenError:
    ...  # fail fast
print(breaker.state, breaker.metrics())

retry = Retry(default_retry_config())
try:
    retry.execute(call_upstream)
except RetryError as exc:
    print("gave up:", exc.last_error)
```

Once at least `max_requests` requests have been seen and the failure rate
reaches `ready_to_trip`, the breaker opens. After `timeout` seconds it lets a
probe through: a success closes it, a failure counts toward reopening it.
`force_reset()` closes it by hand.

## Rate limiting

```python
from wanzhi.ratelimit import default_config, new_rate_limiter

limiter = new_rate_limiter(default_config())   # fixed window, 60 per minute
if limiter.allow("203.0.113.7"):
    ...
print(limiter.stats("203.0.113.7"))
```

## What the package does not do

- It does not listen on a network socket and has no command to start a
  server: `McpServer`, `ChatHandler` and `WebhookHandler` take an
  `HTTPRequest` and return an `HTTPResponse`, and wiring them to an HTTP
  server is left to the caller.
- It has no tool registry, agent engine, knowledge base or document parser.
  The server dispatches to any object with a `dispatch(name, params)` method,
  streaming uses any object with `run_stream(query)`, and the webhook syncs
  through any object with `sync_files(files)`.
- Vector storage is in memory only; there is no client for an external
  vector database.

## Running the tests

Install the `test` extra and run `pytest` from the project root.