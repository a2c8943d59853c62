"""In-process metric collectors for requests, tool calls, LLM usage and search."""

from __future__ import annotations

import bisect
import math
import threading
from dataclasses import dataclass, field
from typing import Iterable, Sequence

DEFAULT_BUCKETS: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
LLM_BUCKETS: tuple[float, ...] = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


@dataclass(frozen=True)
class Sample:
    """One measured value with its labels."""

    name: str
    labels: dict[str, str]
    value: float


@dataclass(frozen=True)
class MetricFamily:
    """All samples of one named metric."""

    name: str
    help: str
    type: str
    samples: tuple[Sample, ...]


class _LabelledCollector:
    kind = ""

    def __init__(self, name: str, help: str, label_names: Sequence[str]) -> None:
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _key(self, labels: Sequence[str]) -> tuple[str, ...]:
        key = tuple(str(v) for v in labels)
        if len(key) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(key)}"
            )
        return key

    def _label_dict(self, key: tuple[str, ...]) -> dict[str, str]:
        return dict(zip(self.label_names, key))

    def collect(self) -> MetricFamily | None:
        raise NotImplementedError


class CounterVec(_LabelledCollector):
    """Monotonic counters partitioned by label values."""

    kind = "counter"

    def __init__(self, name: str, help: str, label_names: Sequence[str]) -> None:
        super().__init__(name, help, label_names)
        self._values: dict[tuple[str, ...], float] = {}

    def inc(self, labels: Sequence[str], amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError(f"{self.name}: counter cannot decrease")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Sequence[str]) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> MetricFamily | None:
        with self._lock:
            items = sorted(self._values.items())
        if not items:
            return None
        samples = tuple(Sample(self.name, self._label_dict(k), v) for k, v in items)
        return MetricFamily(self.name, self.help, self.kind, samples)


@dataclass
class _HistogramState:
    buckets: list[int]
    count: int = 0
    total: float = 0.0


class HistogramVec(_LabelledCollector):
    """Bucketed observations partitioned by label values."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        help: str,
        label_names: Sequence[str],
        buckets: Iterable[float] = DEFAULT_BUCKETS,
    ) -> None:
        super().__init__(name, help, label_names)
        bounds = sorted(set(float(b) for b in buckets))
        if not bounds:
            raise ValueError(f"{self.name}: at least one bucket is required")
        self.buckets = tuple(b for b in bounds if not math.isinf(b))
        self._states: dict[tuple[str, ...], _HistogramState] = {}

    def observe(self, labels: Sequence[str], value: float) -> None:
        key = self._key(labels)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = _HistogramState(buckets=[0] * len(self.buckets))
                self._states[key] = state
            index = bisect.bisect_left(self.buckets, value)
            if index < len(self.buckets):
                state.buckets[index] += 1
            state.count += 1
            state.total += float(value)

    def count(self, labels: Sequence[str]) -> int:
        key = self._key(labels)
        with self._lock:
            state = self._states.get(key)
            return state.count if state else 0

    def total(self, labels: Sequence[str]) -> float:
        key = self._key(labels)
        with self._lock:
            state = self._states.get(key)
            return state.total if state else 0.0

    def collect(self) -> MetricFamily | None:
        with self._lock:
            items = sorted(
                (k, list(s.buckets), s.count, s.total) for k, s in self._states.items()
            )
        if not items:
            return None
        samples: list[Sample] = []
        for key, bucket_counts, count, total in items:
            base = self._label_dict(key)
            cumulative = 0
            for bound, hits in zip(self.buckets, bucket_counts):
                cumulative += hits
                samples.append(Sample(f"{self.name}_bucket", {**base, "le": repr(bound)}, cumulative))
            samples.append(Sample(f"{self.name}_bucket", {**base, "le": "+Inf"}, count))
            samples.append(Sample(f"{self.name}_count", base, count))
            samples.append(Sample(f"{self.name}_sum", base, total))
        return MetricFamily(self.name, self.help, self.kind, tuple(samples))


@dataclass
class MetricsRegistry:
    """Holds collectors by unique name and gathers their current values."""

    _collectors: dict[str, _LabelledCollector] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def register(self, *collectors: _LabelledCollector) -> None:
        """Register collectors; raises ValueError if any name is already taken."""
        with self._lock:
            names = [c.name for c in collectors]
            for name in names:
                if name in self._collectors or names.count(name) > 1:
                    raise ValueError(f"duplicate metrics collector registration: {name}")
            for collector in collectors:
                self._collectors[collector.name] = collector

    def gather(self) -> list[MetricFamily]:
        """Return families that have at least one sample, sorted by name."""
        with self._lock:
            collectors = list(self._collectors.values())
        families = [f for f in (c.collect() for c in collectors) if f is not None]
        return sorted(families, key=lambda f: f.name)


class Metrics:
    """Application metrics; without a registry the collectors stay private."""

    def __init__(self, registry: MetricsRegistry | None = None) -> None:
        self.requests_total = CounterVec(
            "mcp_requests_total", "Total MCP JSON-RPC requests", ["method", "status"]
        )
        self.request_duration = HistogramVec(
            "mcp_request_duration_seconds", "MCP request latency distribution", ["method"]
        )
        self.tool_calls_total = CounterVec(
            "tool_calls_total", "Total tool invocations", ["tool", "status"]
        )
        self.tool_call_duration = HistogramVec(
            "tool_call_duration_seconds", "Tool call latency distribution", ["tool"]
        )
        self.llm_requests_total = CounterVec(
            "llm_requests_total", "Total LLM API calls", ["model", "status"]
        )
        self.llm_request_duration = HistogramVec(
            "llm_request_duration_seconds",
            "LLM API call latency distribution",
            ["model"],
            buckets=LLM_BUCKETS,
        )
        self.llm_tokens_total = CounterVec(
            "llm_tokens_total", "Total LLM tokens consumed", ["model", "type"]
        )
        self.rag_searches_total = CounterVec(
            "rag_searches_total", "Total RAG search operations", ["mode"]
        )
        if registry is not None:
            registry.register(
                self.requests_total,
                self.request_duration,
                self.tool_calls_total,
                self.tool_call_duration,
                self.llm_requests_total,
                self.llm_request_duration,
                self.llm_tokens_total,
                self.rag_searches_total,
            )

    def record_request(self, method: str, status: str, duration_sec: float) -> None:
        self.requests_total.inc((method, status))
        self.request_duration.observe((method,), duration_sec)

    def record_tool_call(self, tool: str, status: str, duration_sec: float) -> None:
        self.tool_calls_total.inc((tool, status))
        self.tool_call_duration.observe((tool,), duration_sec)

    def record_llm_request(self, model: str, status: str, duration_sec: float) -> None:
        self.llm_requests_total.inc((model, status))
        self.llm_request_duration.observe((model,), duration_sec)

    def record_llm_tokens(self, model: str, prompt_tokens: int, completion_tokens: int) -> None:
        self.llm_tokens_total.inc((model, "prompt"), float(prompt_tokens))
        self.llm_tokens_total.inc((model, "completion"), float(completion_tokens))

    def record_rag_search(self, mode: str) -> None:
        self.rag_searches_total.inc((mode,))