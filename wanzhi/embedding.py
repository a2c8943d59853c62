"""Text embedding clients."""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

DEFAULT_BATCH_SIZE = 10
DEFAULT_DIMENSION = 1024
DEFAULT_BASE_URL = "https://api.openai.com"


class EmbeddingClient(Protocol):
    """Turns texts into embedding vectors."""

    def embed(self, texts: list[str]) -> list[list[float]]:
        """One vector per text, in order."""

    def dimension(self) -> int:
        """Length of the vectors."""


class EmbeddingError(Exception):
    """Raised when an embedding request fails."""


class NoopEmbeddingClient:
    """Returns zero vectors; for memory mode and tests."""

    def __init__(self, dim: int = DEFAULT_DIMENSION) -> None:
        self._dim = dim if dim > 0 else DEFAULT_DIMENSION

    def embed(self, texts: list[str]) -> list[list[float]]:
        return [[0.0] * self._dim for _ in texts]

    def dimension(self) -> int:
        return self._dim


class OpenAIEmbeddingClient:
    """Calls an OpenAI-compatible ``/v1/embeddings`` endpoint in batches."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "",
        model: str = "",
        dim: int = 0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        base = (base_url or DEFAULT_BASE_URL).rstrip("/")
        if base.endswith("/v1"):
            base = base[: -len("/v1")]
        self._api_key = api_key
        self._base_url = base
        self._model = model
        self._dim = dim
        self._client = http_client if http_client is not None else httpx.Client(timeout=None)

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), DEFAULT_BATCH_SIZE):
            vectors.extend(self._embed_batch(texts[start : start + DEFAULT_BATCH_SIZE]))
        return vectors

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        try:
            response = self._client.post(
                self._base_url + "/v1/embeddings",
                json={"model": self._model, "input": texts},
                headers={
                    "Content-Type": "application/json",
                    "Authorization": "Bearer " + self._api_key,
                },
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"send request: {exc}") from exc

        if response.status_code != 200:
            raise EmbeddingError(
                f"embedding API error {response.status_code}: {response.text}"
            )

        try:
            data: Any = response.json()
            items = data.get("data") or [] if isinstance(data, dict) else None
            if not isinstance(items, list):
                raise ValueError("data is not a list")
            vectors = [[float(x) for x in (item.get("embedding") or [])] for item in items]
        except (ValueError, TypeError, AttributeError) as exc:
            raise EmbeddingError(f"decode response: {exc}") from exc

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"unexpected embedding result length: got {len(vectors)}, want {len(texts)}"
            )
        return vectors

    def dimension(self) -> int:
        return self._dim