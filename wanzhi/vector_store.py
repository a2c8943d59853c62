"""In-memory vector collections with cosine-similarity search."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence


@dataclass
class VectorDoc:
    """A document with its embedding and string metadata."""

    id: str
    service: str = ""
    text: str = ""
    vector: list[float] = field(default_factory=list)
    meta: dict[str, str] = field(default_factory=dict)


@dataclass
class SearchResult:
    """A matching document and its similarity score."""

    doc: VectorDoc
    score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``.

    Zero when the lengths differ, the vectors are empty or either has zero norm.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    denom = norm_a * norm_b
    if denom == 0:
        return 0.0
    return dot / denom


def _matches(doc: VectorDoc, filters: Mapping[str, str]) -> bool:
    for key, value in filters.items():
        actual = doc.service if key == "service" else doc.meta.get(key, "")
        if actual != value:
            return False
    return True


class InMemoryVectorClient:
    """A vector database stand-in keeping collections in memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, VectorDoc]] = {}

    def upsert(self, collection: str, docs: Sequence[VectorDoc]) -> None:
        """Insert the documents, replacing any with the same id."""
        with self._lock:
            items = self._collections.setdefault(collection, {})
            for doc in docs:
                items[doc.id] = doc

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        top_k: int = 0,
        filters: Optional[Mapping[str, str]] = None,
    ) -> list[SearchResult]:
        """Documents matching ``filters``, most similar first; ``top_k`` of zero keeps all."""
        filters = filters or {}
        with self._lock:
            items = list(self._collections.get(collection, {}).values())
        results = [
            SearchResult(doc, cosine_similarity(vector, doc.vector))
            for doc in items
            if _matches(doc, filters)
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        if top_k > 0:
            results = results[:top_k]
        return results

    def query(self, collection: str) -> list[VectorDoc]:
        """All documents of the collection."""
        with self._lock:
            return list(self._collections.get(collection, {}).values())

    def delete_by_service(self, collection: str, service: str) -> None:
        """Remove every document belonging to ``service``."""
        with self._lock:
            items = self._collections.get(collection)
            if items is None:
                return
            for doc_id in [i for i, d in items.items() if d.service == service]:
                del items[doc_id]

    def delete_by_ids(self, collection: str, ids: Sequence[str]) -> None:
        """Remove the documents with the given ids."""
        if not ids:
            return
        with self._lock:
            items = self._collections.get(collection)
            if items is None:
                return
            for doc_id in ids:
                items.pop(doc_id, None)

    def close(self) -> None:
        """Release the in-memory collections."""
        with self._lock:
            self._collections.clear()