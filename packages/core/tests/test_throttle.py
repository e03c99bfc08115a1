"""Tests for the ingress rate limiter."""

from unittest.mock import MagicMock

import pytest

from chorus_core.connection import QueueConnection
from chorus_core.errors import ThrottleDenied
from chorus_core.events import Events
from chorus_core.throttle import ThrottleGuard, ThrottlerOptions, ThrottlerStorage


class _Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _conn(address=None, connection_id=None):
    conn = QueueConnection(connection_id=connection_id, address=address)
    conn.init()
    return conn


# ---------------------------------------------------------------------------
# ThrottlerStorage
# ---------------------------------------------------------------------------


class TestStorageMath:
    def test_blocks_after_limit_exceeded(self):
        storage = ThrottlerStorage(clock=_Clock())
        for _ in range(10):
            result = storage.increment("k", ttl=60000, limit=10, block_duration=30000, throttler_name="default")
            assert result.is_blocked is False

        result = storage.increment("k", ttl=60000, limit=10, block_duration=30000, throttler_name="default")

        assert result.is_blocked is True
        assert result.total_hits == 11
        assert result.time_to_block_expire == 30000

    def test_hits_not_counted_while_blocked(self):
        clock = _Clock()
        storage = ThrottlerStorage(clock=clock)
        for _ in range(3):
            storage.increment("k", ttl=1000, limit=2, block_duration=5000, throttler_name="t")
        clock.now = 100
        result = storage.increment("k", ttl=1000, limit=2, block_duration=5000, throttler_name="t")

        assert result.total_hits == 3
        assert result.time_to_block_expire == 4900

    def test_block_duration_defaults_to_ttl(self):
        storage = ThrottlerStorage(clock=_Clock())
        storage.increment("k", ttl=2000, limit=0, block_duration=0, throttler_name="t")
        result = storage.increment("k", ttl=2000, limit=0, block_duration=0, throttler_name="t")

        assert result.is_blocked is True
        assert result.time_to_block_expire == 2000

    def test_record_resets_after_block_expires(self):
        clock = _Clock()
        storage = ThrottlerStorage(clock=clock)
        for _ in range(3):
            storage.increment("k", ttl=1000, limit=2, block_duration=5000, throttler_name="t")
        clock.now = 5000

        result = storage.increment("k", ttl=1000, limit=2, block_duration=5000, throttler_name="t")

        assert result.is_blocked is False
        assert result.total_hits == 1

    def test_window_expiry_resets_hits(self):
        clock = _Clock()
        storage = ThrottlerStorage(clock=clock)
        storage.increment("k", ttl=1000, limit=5, block_duration=0, throttler_name="t")
        storage.increment("k", ttl=1000, limit=5, block_duration=0, throttler_name="t")
        clock.now = 1000

        result = storage.increment("k", ttl=1000, limit=5, block_duration=0, throttler_name="t")

        assert result.total_hits == 1
        assert result.time_to_expire == 1000

    def test_keys_are_independent(self):
        storage = ThrottlerStorage(clock=_Clock())
        for _ in range(3):
            storage.increment("a", ttl=1000, limit=1, block_duration=0, throttler_name="t")

        assert storage.increment("b", ttl=1000, limit=1, block_duration=0, throttler_name="t").is_blocked is False

    def test_get_returns_none_for_expired(self):
        clock = _Clock()
        storage = ThrottlerStorage(clock=clock)
        storage.increment("k", ttl=1000, limit=5, block_duration=0, throttler_name="t")
        assert storage.get("k").hits == 1

        clock.now = 1000
        assert storage.get("k") is None


# ---------------------------------------------------------------------------
# ThrottleGuard
# ---------------------------------------------------------------------------


class TestKeyDerivation:
    def test_tracker_prefers_address(self):
        assert ThrottleGuard.get_tracker(_conn(address="10.0.0.5", connection_id="abc")) == "10.0.0.5"

    def test_tracker_falls_back_to_connection_id(self):
        assert ThrottleGuard.get_tracker(_conn(connection_id="abc")) == "abc"

    def test_key_format(self):
        assert ThrottleGuard.generate_key("10.0.0.5", "short") == "short-10.0.0.5"

    def test_unnamed_throttler_uses_default_name(self):
        storage = MagicMock(wraps=ThrottlerStorage(clock=_Clock()))
        guard = ThrottleGuard(storage=storage, throttlers=[ThrottlerOptions(name=None)])

        guard.check(_conn(connection_id="abc"), "job:start")

        assert storage.increment.call_args.args[0] == "default-abc"


class TestGuard:
    def _guard(self, limit=10, ttl=60000, block=30000):
        return ThrottleGuard(
            storage=ThrottlerStorage(clock=_Clock()),
            throttlers=[ThrottlerOptions(name="default", limit=limit, ttl=ttl, block_duration=block)],
        )

    def test_allows_under_limit(self):
        guard = self._guard()
        conn = _conn(address="1.2.3.4")
        for _ in range(10):
            guard.check(conn, "job:start")
        assert conn.drain() == []

    def test_eleventh_request_is_denied_and_notified(self):
        guard = self._guard()
        conn = _conn(address="1.2.3.4")
        for _ in range(10):
            guard.check(conn, "job:start")

        with pytest.raises(ThrottleDenied) as exc_info:
            guard.check(conn, "job:start")

        assert conn.drain() == [(Events.THROTTLED, {"event": "job:start", "retryAfter": 30000})]
        assert exc_info.value.detail == {
            "limit": 10,
            "isBlocked": True,
            "totalHits": 11,
            "timeToExpire": 60000,
            "timeToBlockExpire": 30000,
        }

    def test_other_tracker_is_not_blocked(self):
        guard = self._guard(limit=1)
        noisy = _conn(address="1.2.3.4")
        guard.check(noisy, "job:start")
        with pytest.raises(ThrottleDenied):
            guard.check(noisy, "job:start")

        guard.check(_conn(address="5.6.7.8"), "job:start")

    def test_denied_even_when_notification_fails(self):
        guard = self._guard(limit=0)
        conn = _conn(address="1.2.3.4")
        conn.shutdown()  # send() now raises

        with pytest.raises(ThrottleDenied):
            guard.check(conn, "history:list")

    def test_every_throttler_must_allow(self):
        guard = ThrottleGuard(
            storage=ThrottlerStorage(clock=_Clock()),
            throttlers=[
                ThrottlerOptions(name="short", limit=100, ttl=1000),
                ThrottlerOptions(name="medium", limit=2, ttl=10000),
            ],
        )
        conn = _conn(address="1.2.3.4")
        guard.check(conn, "job:queue")
        guard.check(conn, "job:queue")

        with pytest.raises(ThrottleDenied) as exc_info:
            guard.check(conn, "job:queue")
        assert exc_info.value.detail["limit"] == 2
