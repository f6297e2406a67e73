"""Tests for the Redis token bucket."""

from framecast.common import rate_limit
from framecast.common.rate_limit import TokenBucketLimiter


class FakeRedis:
    def __init__(self) -> None:
        self.hashes: dict[str, dict] = {}
        self.ttls: dict[str, int] = {}

    def hmget(self, key, *fields):
        values = self.hashes.get(key, {})
        return [values.get(field) for field in fields]

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        self.ttls[key] = seconds


def test_bucket_empties_then_refills(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(rate_limit, "time", lambda: clock[0])
    limiter = TokenBucketLimiter(FakeRedis(), limit_per_minute=2, prefix="webhook")

    assert limiter.allow("198.51.100.1") is True
    assert limiter.allow("198.51.100.1") is True
    assert limiter.allow("198.51.100.1") is False

    clock[0] += 31
    assert limiter.allow("198.51.100.1") is True
    assert limiter.allow("198.51.100.1") is False


def test_buckets_are_per_client():
    rdb = FakeRedis()
    limiter = TokenBucketLimiter(rdb, limit_per_minute=1, prefix="webhook")

    assert limiter.allow("a") is True
    assert limiter.allow("b") is True
    assert limiter.allow("a") is False
    assert set(rdb.hashes) == {"webhook:a", "webhook:b"}
    assert rdb.ttls["webhook:a"] == 120
