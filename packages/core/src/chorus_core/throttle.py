"""Ingress rate limiting for client commands.

Every command on a connection passes through ThrottleGuard.check() before it
reaches the orchestrator. The guard does not care which command it is
gating: it is keyed only by the client (tracker) and the throttler name.

Counting is a fixed window per key. Once a key exceeds ``limit`` hits inside
its window it is blocked for ``block_duration`` milliseconds; hits are not
counted while blocked and the record starts over once the block expires.
All durations are milliseconds.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from chorus_core.errors import ThrottleDenied
from chorus_core.events import Events

if TYPE_CHECKING:
    from chorus_core.connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_THROTTLER_NAME = "default"

# Expired records are swept once the table grows past this size.
_PRUNE_THRESHOLD = 1024


@dataclass(frozen=True)
class ThrottlerOptions:
    name: str | None = DEFAULT_THROTTLER_NAME
    limit: int = 100
    ttl: int = 60_000
    block_duration: int = 0  # 0 = block for one ttl


@dataclass
class ThrottleRecord:
    key: str
    hits: int
    window_expires_at: float
    blocked_until: float | None = None


@dataclass(frozen=True)
class ThrottleResult:
    is_blocked: bool
    total_hits: int
    time_to_expire: int
    time_to_block_expire: int


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class ThrottlerStorage:
    """In-memory hit counter shared by every connection.

    ``increment`` is atomic across threads. ``clock`` returns milliseconds and
    is injectable so tests can move time without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = _monotonic_ms):
        self._clock = clock
        self._records: dict[str, ThrottleRecord] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, ttl: int, limit: int, block_duration: int, throttler_name: str) -> ThrottleResult:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is not None and self._expired(record, now):
                record = None
            if record is None:
                record = ThrottleRecord(key=key, hits=0, window_expires_at=now + ttl)
                self._records[key] = record

            if record.blocked_until is None:
                record.hits += 1
                if record.hits > limit:
                    record.blocked_until = now + (block_duration or ttl)
                    logger.info(
                        "Throttler %r blocked %s after %d hits (limit %d)", throttler_name, key, record.hits, limit
                    )

            result = ThrottleResult(
                is_blocked=record.blocked_until is not None,
                total_hits=record.hits,
                time_to_expire=max(0, int(record.window_expires_at - now)),
                time_to_block_expire=max(0, int(record.blocked_until - now)) if record.blocked_until else 0,
            )

            if len(self._records) > _PRUNE_THRESHOLD:
                self._prune(now)
            return result

    def get(self, key: str) -> ThrottleRecord | None:
        """Return the live record for ``key``; expired records are absent."""
        with self._lock:
            record = self._records.get(key)
            if record is None or self._expired(record, self._clock()):
                return None
            return record

    @staticmethod
    def _expired(record: ThrottleRecord, now: float) -> bool:
        if record.blocked_until is not None:
            return now >= record.blocked_until
        return now >= record.window_expires_at

    def _prune(self, now: float) -> None:
        for key in [k for k, r in self._records.items() if self._expired(r, now)]:
            del self._records[key]


class ThrottleGuard:
    """Gate in front of every inbound command.

    A command passes only if every configured throttler allows it. When one
    blocks, the client is told (best effort) via a ``ws:throttled`` event and
    the command is rejected with ThrottleDenied.
    """

    def __init__(self, storage: ThrottlerStorage | None = None, throttlers: list[ThrottlerOptions] | None = None):
        self.storage = storage or ThrottlerStorage()
        self.throttlers = throttlers if throttlers is not None else [ThrottlerOptions()]

    @staticmethod
    def get_tracker(connection: Connection) -> str:
        """The client's network address if known, otherwise its connection id."""
        return connection.address if connection.address else connection.id

    @staticmethod
    def generate_key(tracker: str, throttler_name: str) -> str:
        return f"{throttler_name}-{tracker}"

    def check(self, connection: Connection, command: str) -> None:
        for throttler in self.throttlers:
            self.handle_request(connection, command, throttler)

    def handle_request(self, connection: Connection, command: str, throttler: ThrottlerOptions) -> bool:
        name = throttler.name or DEFAULT_THROTTLER_NAME
        tracker = self.get_tracker(connection)
        key = self.generate_key(tracker, name)

        result = self.storage.increment(key, throttler.ttl, throttler.limit, throttler.block_duration, name)
        if not result.is_blocked:
            return True

        try:
            connection.send(Events.THROTTLED, {"event": command, "retryAfter": result.time_to_block_expire})
        except Exception as e:
            # The denial below must happen whether or not the client heard about it.
            logger.debug("Could not notify %s of throttling: %s", tracker, e)

        raise ThrottleDenied(
            {
                "limit": throttler.limit,
                "isBlocked": result.is_blocked,
                "totalHits": result.total_hits,
                "timeToExpire": result.time_to_expire,
                "timeToBlockExpire": result.time_to_block_expire,
            }
        )
