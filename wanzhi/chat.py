"""Chat endpoint that streams agent events as server-sent events."""

from __future__ import annotations

import json
from typing import Iterator

from .mcp import HTTPRequest, HTTPResponse, StreamRunner, sse_headers


def _json_error(status: int, message: str) -> HTTPResponse:
    body = (json.dumps({"error": message}) + "\n").encode("utf-8")
    return HTTPResponse(status, {"Content-Type": "application/json"}, body)


def _encode_frame(kind: str, content: str) -> str:
    name = kind.replace("\n", "\\n").replace("\r", "\\r")
    data = content.replace("\n", "\ndata:").replace("\r", "\\r")
    return f"event:{name}\ndata:{data}\n\n"


class ChatHandler:
    """Answers ``{"message": ...}`` with a stream of agent events."""

    def __init__(self, runner: StreamRunner) -> None:
        self._runner = runner

    def handle_chat(self, request: HTTPRequest) -> HTTPResponse:
        try:
            data = json.loads(request.body)
        except (ValueError, UnicodeDecodeError):
            return _json_error(400, "message is required")
        message = data.get("message") if isinstance(data, dict) else None
        if not isinstance(message, str) or not message:
            return _json_error(400, "message is required")

        events = self._runner.run_stream(message)

        def frames() -> Iterator[bytes]:
            for event in events:
                yield _encode_frame(str(event.kind), event.content).encode("utf-8")

        return HTTPResponse(200, sse_headers(), stream=frames())