"""Document reranking clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

DEFAULT_DASHSCOPE_URL = "https://dashscope.aliyuncs.com"
DEFAULT_DASHSCOPE_MODEL = "qwen3-vl-rerank"
_RERANK_PATH = "/api/v1/services/rerank/text-rerank/text-rerank"


@dataclass
class Document:
    """A document to rank: text, an image or a video."""

    text: str = ""
    image: str = ""
    video: str = ""

    def _to_dict(self) -> dict[str, str]:
        return {k: v for k, v in (("text", self.text), ("image", self.image), ("video", self.video)) if v}


@dataclass
class RerankResult:
    """Position of a document in the input and its relevance."""

    index: int
    relevance_score: float
    document: Document = field(default_factory=Document)


class RerankClient(Protocol):
    """Orders documents by relevance to a query."""

    def rerank(self, query: str, documents: list[Document], top_n: int = 0) -> list[RerankResult]:
        """Ranked results; ``top_n`` of zero returns all."""


class RerankError(Exception):
    """Raised when a rerank request fails."""


class NoopRerankClient:
    """Keeps the original order, scoring every document 1.0."""

    def rerank(self, query: str, documents: list[Document], top_n: int = 0) -> list[RerankResult]:
        results = [RerankResult(i, 1.0, doc) for i, doc in enumerate(documents)]
        if 0 < top_n < len(results):
            results = results[:top_n]
        return results


def _parse_result(item: Any) -> RerankResult:
    if not isinstance(item, dict):
        raise TypeError("result is not an object")
    doc = item.get("document") or {}
    if not isinstance(doc, dict):
        raise TypeError("document is not an object")
    return RerankResult(
        index=int(item.get("index", 0)),
        relevance_score=float(item.get("relevance_score", 0.0)),
        document=Document(
            text=doc.get("text") or "", image=doc.get("image") or "", video=doc.get("video") or ""
        ),
    )


class DashScopeRerankClient:
    """Calls the DashScope text-rerank service."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "",
        model: str = "",
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url or DEFAULT_DASHSCOPE_URL
        self._model = model or DEFAULT_DASHSCOPE_MODEL
        self._client = http_client if http_client is not None else httpx.Client(timeout=None)

    def rerank(self, query: str, documents: list[Document], top_n: int = 0) -> list[RerankResult]:
        parameters: dict[str, Any] = {"return_documents": True}
        if top_n > 0:
            parameters["top_n"] = top_n
        parameters["fps"] = 1.0
        payload = {
            "model": self._model,
            "input": {"query": query, "documents": [d._to_dict() for d in documents]},
            "parameters": parameters,
        }
        try:
            response = self._client.post(
                self._base_url + _RERANK_PATH,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": "Bearer " + self._api_key,
                },
            )
        except httpx.HTTPError as exc:
            raise RerankError(f"send request: {exc}") from exc

        if response.status_code != 200:
            raise RerankError(f"rerank API error {response.status_code}: {response.text}")

        try:
            data = response.json()
            if not isinstance(data, dict):
                raise TypeError("response is not an object")
            code = data.get("code") or ""
            message = data.get("message") or ""
            output = data.get("output") or {}
            items = output.get("results") or []
            if not isinstance(items, list):
                raise TypeError("results is not a list")
            results = [_parse_result(item) for item in items]
        except (ValueError, TypeError, AttributeError) as exc:
            raise RerankError(f"decode response: {exc}") from exc

        if code:
            raise RerankError(f"rerank API error: {code} - {message}")
        return results