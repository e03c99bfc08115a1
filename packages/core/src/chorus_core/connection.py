"""Client connection handles.

A Connection is what the event bus delivers to and what the rate limiter
tracks. It replaces a process-wide socket object: each client gets its own
handle with an explicit ``init()`` / ``shutdown()`` lifecycle, and the bus
only ever holds weak references to it.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ConnectionClosed(Exception):
    pass


class Connection(ABC):
    """One persistent client connection.

    ``address`` is the client's network address when the transport knows it;
    in-process clients leave it as None and are tracked by ``id`` instead.
    """

    def __init__(self, connection_id: str | None = None, address: str | None = None):
        self.id = connection_id or uuid.uuid4().hex
        self.address = address
        self._closed = True
        # Frames from different worker threads must not interleave on the wire.
        self.send_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def init(self) -> None:
        self._closed = False
        logger.debug("Connection %s opened (address=%s)", self.id, self.address)

    def shutdown(self) -> None:
        self._closed = True
        logger.debug("Connection %s closed", self.id)

    def send(self, event: str, payload: dict) -> None:
        """Deliver one event. Raises ConnectionClosed once shut down."""
        if self._closed:
            raise ConnectionClosed(f"Connection {self.id} is closed")
        self._send(event, payload)

    @abstractmethod
    def _send(self, event: str, payload: dict) -> None:
        """Transport-specific delivery of a single event."""


class QueueConnection(Connection):
    """Buffers delivered events in a thread-safe queue.

    Used by in-process clients (the CLI, tests) that consume events on their
    own thread via ``get()`` or ``drain()``.
    """

    def __init__(self, connection_id: str | None = None, address: str | None = None):
        super().__init__(connection_id, address)
        self._events: queue.Queue[tuple[str, dict]] = queue.Queue()

    def _send(self, event: str, payload: dict) -> None:
        self._events.put((event, payload))

    def get(self, timeout: float | None = None) -> tuple[str, dict] | None:
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[tuple[str, dict]]:
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events
