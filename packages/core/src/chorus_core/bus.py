"""Fan-out of job events to connected clients.

The bus owns no job state. It relays what the registry publishes to every
connection subscribed at publish time; late subscribers get no replay (the
history store covers completed work).

Ordering: all events for one key are published from the single worker
thread running that key's job, and each publish delivers synchronously to
every subscriber before returning. Steps therefore reach each client in
emission order and the terminal event after the last step.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import TYPE_CHECKING

from chorus_core.events import Events
from chorus_core.models import EntityKey, ErrorInfo, Outcome, Step

if TYPE_CHECKING:
    from chorus_core.connection import Connection
    from chorus_core.registry import JobSummary

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self):
        # Weak back-references: a connection dropped by its transport
        # disappears from here without any job-side bookkeeping.
        self._subscribers: weakref.WeakValueDictionary[str, Connection] = weakref.WeakValueDictionary()
        self._lock = threading.Lock()

    def subscribe(self, connection: Connection) -> None:
        with self._lock:
            self._subscribers[connection.id] = connection
        logger.debug("Subscribed connection %s", connection.id)

    def unsubscribe(self, connection_id: str) -> None:
        with self._lock:
            self._subscribers.pop(connection_id, None)
        logger.debug("Unsubscribed connection %s", connection_id)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish_step(self, key: EntityKey, step: Step) -> None:
        self._broadcast(Events.PROGRESS, {"entity": key.to_dict(), "step": step.to_dict()})

    def publish_terminal(self, key: EntityKey, result: Outcome | ErrorInfo) -> None:
        if isinstance(result, ErrorInfo):
            self._broadcast(
                Events.ERROR,
                {
                    "entity": key.to_dict(),
                    "error": result.message,
                    "errorType": result.error_type,
                    "cancelled": result.error_type == "Cancelled",
                },
            )
        else:
            self._broadcast(Events.COMPLETE, {"entity": key.to_dict(), "result": result.to_dict()})

    def publish_queue_snapshot(self, snapshot: list[JobSummary]) -> None:
        self._broadcast(Events.QUEUE_UPDATE, {"queue": [item.to_dict() for item in snapshot]})

    def _broadcast(self, event: str, payload: dict) -> None:
        with self._lock:
            targets = list(self._subscribers.values())

        for connection in targets:
            if connection.closed:
                self.unsubscribe(connection.id)
                continue
            try:
                with connection.send_lock:
                    connection.send(event, payload)
            except Exception as e:
                # One broken client must not stall the job or starve the others.
                logger.warning("Delivery of %s to connection %s failed: %s", event, connection.id, e)
                if connection.closed:
                    self.unsubscribe(connection.id)
