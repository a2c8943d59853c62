"""JSON-RPC and SSE handlers, webhook sync, rate limiting, resilience, observability, model clients and storage helpers for an API knowledge assistant."""

__version__ = "0.1.0"