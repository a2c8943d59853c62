"""Thin key-value layer over a Redis server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import redis


class RedisConfigError(Exception):
    """Raised when the Redis options are unusable or the server is unreachable."""


@dataclass
class RedisOptions:
    """Connection settings; ``address`` is ``host:port``."""

    mode: str = "redis"
    address: str = ""
    password: str = ""
    db: int = 0


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


class RedisKV:
    """The small set of Redis commands the knowledge store needs, as strings."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def set(self, key: str, value: str, ttl: float = 0) -> None:
        """Store ``value``; a positive ``ttl`` (seconds) makes it expire."""
        if ttl > 0:
            self._client.set(key, value, px=int(ttl * 1000))
        else:
            self._client.set(key, value)

    def get(self, key: str) -> Optional[str]:
        """The value, or ``None`` if the key does not exist."""
        value = self._client.get(key)
        return None if value is None else _text(value)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def sadd(self, key: str, *members: str) -> None:
        self._client.sadd(key, *members)

    def smembers(self, key: str) -> list[str]:
        return [_text(m) for m in self._client.smembers(key)]

    def hset(self, key: str, field: str, value: str) -> None:
        self._client.hset(key, field, value)

    def hget(self, key: str, field: str) -> Optional[str]:
        """The field's value, or ``None`` if it does not exist."""
        value = self._client.hget(key, field)
        return None if value is None else _text(value)

    def hgetall(self, key: str) -> dict[str, str]:
        return {_text(k): _text(v) for k, v in self._client.hgetall(key).items()}

    def rpush(self, key: str, *values: str) -> None:
        self._client.rpush(key, *values)

    def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return [_text(v) for v in self._client.lrange(key, start, stop)]

    def ping(self) -> None:
        self._client.ping()

    def close(self) -> None:
        self._client.close()


def _split_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, 6379
    try:
        return host.strip("[]") or "localhost", int(port)
    except ValueError as exc:
        raise RedisConfigError(f"invalid redis address: {address}") from exc


def new_redis_client(options: RedisOptions) -> RedisKV:
    """Connect to Redis, check it answers, and wrap the connection."""
    mode = (options.mode or "").strip().lower()
    if mode in ("", "memory"):
        raise RedisConfigError("memory mode is no longer supported, use mode=redis")
    if mode != "redis":
        raise RedisConfigError(
            f"unsupported redis mode: {options.mode} (only 'redis' is supported)"
        )
    address = (options.address or "").strip()
    if not address:
        raise RedisConfigError("redis address is required when mode=redis")
    host, port = _split_address(address)
    client = redis.Redis(
        host=host,
        port=port,
        password=options.password or None,
        db=options.db,
        decode_responses=True,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        client.close()
        raise RedisConfigError(f"redis ping failed: {exc}") from exc
    return RedisKV(client)