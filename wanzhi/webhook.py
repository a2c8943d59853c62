"""Webhook that syncs changed API documents pushed from a repository."""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

from .mcp import HTTPRequest, HTTPResponse

_API_SUFFIXES = (".json", ".yaml", ".yml")
_SIGNATURE_PREFIX = "sha256="


@dataclass
class SyncFile:
    """A changed file and its content."""

    path: str = ""
    content: str = ""


@dataclass
class SyncResult:
    """Outcome of syncing one file."""

    path: str = ""
    service: str = ""
    count: int = 0
    error: str = ""


class SyncService(Protocol):
    """Stores API documents.

    On failure it raises; an exception may carry the partial results in a
    ``results`` attribute, which are reported back to the caller.
    """

    def sync_files(self, files: list[SyncFile]) -> list[SyncResult]:
        """Sync ``files`` and return one result per processed file."""


@dataclass
class Payload:
    """The body of a sync webhook."""

    event: str = ""
    repository: str = ""
    branch: str = ""
    commit: str = ""
    files: list[SyncFile] = field(default_factory=list)


@dataclass
class SyncResponse:
    """The JSON answer of the webhook."""

    status: str
    message: str
    details: list[SyncResult] = field(default_factory=list)


class _InvalidPayload(ValueError):
    pass


def _optional_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _InvalidPayload(key)
    return value


def _parse_payload(body: bytes) -> Payload:
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise _InvalidPayload("json") from exc
    if data is None:
        return Payload()
    if not isinstance(data, dict):
        raise _InvalidPayload("object")
    raw_files = data.get("files")
    if raw_files is None:
        raw_files = []
    if not isinstance(raw_files, list):
        raise _InvalidPayload("files")
    files: list[SyncFile] = []
    for item in raw_files:
        if item is None:
            files.append(SyncFile())
            continue
        if not isinstance(item, dict):
            raise _InvalidPayload("file")
        files.append(SyncFile(_optional_str(item, "path"), _optional_str(item, "content")))
    return Payload(
        event=_optional_str(data, "event"),
        repository=_optional_str(data, "repository"),
        branch=_optional_str(data, "branch"),
        commit=_optional_str(data, "commit"),
        files=files,
    )


def _result_dict(result: SyncResult) -> dict[str, Any]:
    data: dict[str, Any] = {"path": result.path}
    if result.service:
        data["service"] = result.service
    if result.count:
        data["count"] = result.count
    if result.error:
        data["error"] = result.error
    return data


def _json_response(status: int, response: SyncResponse) -> HTTPResponse:
    data: dict[str, Any] = {"status": response.status, "message": response.message}
    if response.details:
        data["details"] = [_result_dict(r) for r in response.details]
    body = (json.dumps(data, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")
    return HTTPResponse(status, {"Content-Type": "application/json"}, body)


def _text_error(status: int, message: str) -> HTTPResponse:
    headers = {
        "Content-Type": "text/plain; charset=utf-8",
        "X-Content-Type-Options": "nosniff",
    }
    return HTTPResponse(status, headers, (message + "\n").encode("utf-8"))


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    return next((v for k, v in headers.items() if k.lower() == lowered), "")


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Check a ``sha256=<hex>`` HMAC signature of ``body``."""
    if not signature.startswith(_SIGNATURE_PREFIX):
        return False
    try:
        want = binascii.unhexlify(signature[len(_SIGNATURE_PREFIX):])
    except (binascii.Error, ValueError):
        return False
    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return hmac.compare_digest(mac, want)


def filter_api_files(files: list[SyncFile]) -> list[SyncFile]:
    """Keep JSON and YAML documents."""
    return [f for f in files if f.path.lower().endswith(_API_SUFFIXES)]


class WebhookHandler:
    """Authorizes the webhook and hands changed API documents to a sync service."""

    def __init__(
        self,
        service: SyncService,
        secret: str = "",
        bearer_token: str = "",
        process_async: bool = False,
    ) -> None:
        self._service = service
        self._secret = (secret or "").strip()
        self._bearer_token = (bearer_token or "").strip()
        self._process_async = process_async

    def _authorized(self, request: HTTPRequest, body: bytes) -> bool:
        if not self._secret and not self._bearer_token:
            return True
        signature = _header(request.headers, "X-Hub-Signature-256").strip()
        if signature and self._secret and verify_signature(body, self._secret, signature):
            return True
        if self._bearer_token:
            auth = _header(request.headers, "Authorization").strip()
            if auth == "Bearer " + self._bearer_token:
                return True
        return False

    def handle_sync(self, request: HTTPRequest) -> HTTPResponse:
        if request.method != "POST":
            return _text_error(405, "method not allowed")
        body = request.body if isinstance(request.body, bytes) else str(request.body).encode()
        if not self._authorized(request, body):
            return _text_error(401, "unauthorized")
        try:
            payload = _parse_payload(body)
        except _InvalidPayload:
            return _text_error(400, "invalid payload")

        api_files = filter_api_files(payload.files)
        if not api_files:
            return _json_response(200, SyncResponse("skipped", "No API documents changed"))

        if self._process_async:
            threading.Thread(
                target=self._sync_quietly, args=(list(api_files),), daemon=True
            ).start()
            return _json_response(
                202, SyncResponse("accepted", f"Processing {len(api_files)} files")
            )

        try:
            results = self._service.sync_files(api_files)
        except Exception as exc:
            partial: Optional[list[SyncResult]] = getattr(exc, "results", None)
            return _json_response(500, SyncResponse("error", str(exc), list(partial or [])))
        return _json_response(
            200, SyncResponse("success", f"Synced {len(results)} API documents", list(results))
        )

    def _sync_quietly(self, files: list[SyncFile]) -> None:
        try:
            self._service.sync_files(files)
        except Exception:
            pass