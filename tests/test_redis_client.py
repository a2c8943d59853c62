from unittest import mock

import pytest
import redis

from wanzhi.redis_client import RedisConfigError, RedisKV, RedisOptions, new_redis_client


class FakeRedis:
    """Stores data in dicts and answers in bytes, as a raw connection does."""

    def __init__(self):
        self.strings = {}
        self.expiry = {}
        self.sets = {}
        self.hashes = {}
        self.lists = {}
        self.closed = False
        self.pings = 0

    def set(self, key, value, px=None):
        self.strings[key] = value.encode()
        self.expiry[key] = px

    def get(self, key):
        return self.strings.get(key)

    def delete(self, key):
        for store in (self.strings, self.sets, self.hashes, self.lists):
            store.pop(key, None)

    def sadd(self, key, *members):
        self.sets.setdefault(key, set()).update(m.encode() for m in members)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field.encode()] = value.encode()

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field.encode())

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(v.encode() for v in values)

    def lrange(self, key, start, stop):
        items = self.lists.get(key, [])
        end = len(items) if stop == -1 else stop + 1
        return items[start:end]

    def ping(self):
        self.pings += 1

    def close(self):
        self.closed = True


@pytest.fixture
def kv_and_fake():
    fake = FakeRedis()
    return RedisKV(fake), fake


def test_set_get_roundtrip(kv_and_fake):
    kv, fake = kv_and_fake
    kv.set("kb:specs:petstore", "meta", 0)
    assert kv.get("kb:specs:petstore") == "meta"
    assert fake.expiry["kb:specs:petstore"] is None


def test_set_with_ttl_passes_milliseconds(kv_and_fake):
    kv, fake = kv_and_fake
    kv.set("k", "v", 2)
    assert fake.expiry["k"] == 2000


def test_get_missing_is_none(kv_and_fake):
    kv, _ = kv_and_fake
    assert kv.get("absent") is None
    assert kv.hget("absent", "field") is None


def test_delete_removes_key(kv_and_fake):
    kv, _ = kv_and_fake
    kv.set("k", "v")
    kv.delete("k")
    assert kv.get("k") is None


def test_set_members(kv_and_fake):
    kv, _ = kv_and_fake
    kv.sadd("kb:services", "petstore", "orders")
    kv.sadd("kb:services", "petstore")
    assert sorted(kv.smembers("kb:services")) == ["orders", "petstore"]


def test_hash_roundtrip(kv_and_fake):
    kv, _ = kv_and_fake
    kv.hset("kb:endpoints:petstore", "GET:/user/login", "{}")
    kv.hset("kb:endpoints:petstore", "POST:/user/register", "[]")
    assert kv.hget("kb:endpoints:petstore", "GET:/user/login") == "{}"
    assert kv.hgetall("kb:endpoints:petstore") == {
        "GET:/user/login": "{}",
        "POST:/user/register": "[]",
    }


def test_list_push_and_range(kv_and_fake):
    kv, _ = kv_and_fake
    kv.rpush("kb:chunks:petstore", "a", "b")
    kv.rpush("kb:chunks:petstore", "c")
    assert kv.lrange("kb:chunks:petstore", 0, -1) == ["a", "b", "c"]
    assert kv.lrange("kb:chunks:petstore", 1, 1) == ["b"]


def test_ping_and_close(kv_and_fake):
    kv, fake = kv_and_fake
    kv.ping()
    kv.close()
    assert fake.pings == 1
    assert fake.closed is True


@pytest.mark.parametrize("mode", ["", "memory", "  MEMORY "])
def test_memory_mode_rejected(mode):
    with pytest.raises(RedisConfigError, match="memory mode is no longer supported"):
        new_redis_client(RedisOptions(mode=mode, address="localhost:6379"))


def test_unsupported_mode_rejected():
    with pytest.raises(RedisConfigError, match="unsupported redis mode: cluster"):
        new_redis_client(RedisOptions(mode="cluster", address="localhost:6379"))


def test_missing_address_rejected():
    with pytest.raises(RedisConfigError, match="redis address is required"):
        new_redis_client(RedisOptions(mode="redis", address="  "))


def test_successful_connect_wraps_client():
    with mock.patch.object(redis, "Redis") as redis_cls:
        instance = redis_cls.return_value
        instance.get.return_value = "v"
        kv = new_redis_client(RedisOptions(mode="Redis", address="cache.example.com:6380", db=2))
        assert kv.get("k") == "v"
    kwargs = redis_cls.call_args.kwargs
    assert kwargs["host"] == "cache.example.com"
    assert kwargs["port"] == 6380
    assert kwargs["db"] == 2
    instance.ping.assert_called_once()


def test_ping_failure_closes_and_raises():
    with mock.patch.object(redis, "Redis") as redis_cls:
        instance = redis_cls.return_value
        instance.ping.side_effect = redis.ConnectionError("refused")
        with pytest.raises(RedisConfigError, match="redis ping failed"):
            new_redis_client(RedisOptions(mode="redis", address="localhost:6379"))
    instance.close.assert_called_once()