"""Command gateway: the boundary between client connections and the orchestrator.

Each inbound command is rate limited first, then its payload is validated
and dispatched. Every command returns a response dict
``{"success": bool, "error"?: str, ...}``; a ChorusError (or a bad payload)
becomes ``success: False`` with its message, and anything unexpected is
logged and reported the same way so a single bad command never takes the
connection down.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from chorus_core.errors import ChorusError, ThrottleDenied
from chorus_core.events import Commands
from chorus_core.models import EntityKey

if TYPE_CHECKING:
    from chorus_core.connection import Connection
    from chorus_core.orchestrator import Orchestrator
    from chorus_core.throttle import ThrottleGuard

logger = logging.getLogger(__name__)


class Gateway:
    def __init__(self, orchestrator: Orchestrator, guard: ThrottleGuard):
        self.orchestrator = orchestrator
        self.guard = guard
        self._handlers: dict[str, Callable[[dict], dict]] = {
            Commands.START: self._start,
            Commands.RE_REVIEW: self._re_review,
            Commands.CANCEL: self._cancel,
            Commands.QUEUE: self._queue,
            Commands.HISTORY_LIST: self._history_list,
            Commands.HISTORY_LATEST: self._history_latest,
            Commands.HISTORY_DELETE: self._history_delete,
            Commands.HISTORY_CHAIN: self._history_chain,
            Commands.HISTORY_PUSH: self._history_push,
            Commands.HISTORY_IMPORT: self._history_import,
            Commands.LOG_ENTRIES: self._log_entries,
        }

    # ------------------------------------------------------------------ #
    # Connection lifecycle                                                 #
    # ------------------------------------------------------------------ #

    def connect(self, connection: Connection) -> None:
        connection.init()
        self.orchestrator.bus.subscribe(connection)
        logger.info("Client connected: %s", connection.id)

    def disconnect(self, connection: Connection) -> None:
        self.orchestrator.bus.unsubscribe(connection.id)
        connection.shutdown()
        logger.info("Client disconnected: %s", connection.id)

    # ------------------------------------------------------------------ #
    # Dispatch                                                             #
    # ------------------------------------------------------------------ #

    def handle(self, connection: Connection, command: str, payload: dict | None = None) -> dict:
        try:
            self.guard.check(connection, command)
        except ThrottleDenied as e:
            logger.info("Throttled %s from %s", command, self.guard.get_tracker(connection))
            return {"success": False, "error": str(e), "throttle": e.detail}

        handler = self._handlers.get(command)
        if handler is None:
            return {"success": False, "error": f"Unknown command: {command}"}

        try:
            return handler(payload or {})
        except (ChorusError, ValueError) as e:
            logger.info("%s rejected: %s", command, e)
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.exception("Unexpected error handling %s", command)
            return {"success": False, "error": str(e) or e.__class__.__name__}

    # ------------------------------------------------------------------ #
    # Handlers                                                             #
    # ------------------------------------------------------------------ #

    def _start(self, payload: dict) -> dict:
        handle = self.orchestrator.start(_entity(payload))
        return {"success": True, "jobId": handle.job_id}

    def _re_review(self, payload: dict) -> dict:
        previous_id = _required_str(payload, "previousEntryId")
        handle = self.orchestrator.re_review(_entity(payload), previous_id)
        return {"success": True, "jobId": handle.job_id}

    def _cancel(self, payload: dict) -> dict:
        return {"success": True, "cancelled": self.orchestrator.cancel(_entity(payload))}

    def _queue(self, payload: dict) -> dict:
        return {"success": True, "queue": [s.to_dict() for s in self.orchestrator.queue()]}

    def _history_list(self, payload: dict) -> dict:
        entries = self.orchestrator.history_list(
            limit=_optional_int(payload, "limit"),
            entity_number=_optional_int(payload, "number"),
            entity_kind=payload.get("kind"),
        )
        return {"success": True, "entries": [e.to_dict() for e in entries]}

    def _history_latest(self, payload: dict) -> dict:
        key = _entity(payload)
        entry = self.orchestrator.history_get_latest(key.number, key.kind.value)
        return {"success": True, "entry": entry.to_dict() if entry else None}

    def _history_delete(self, payload: dict) -> dict:
        entry_id = _required_str(payload, "entryId")
        deleted = self.orchestrator.history_delete(entry_id)
        if not deleted:
            return {"success": False, "error": f"History entry not found: {entry_id}"}
        return {"success": True}

    def _history_chain(self, payload: dict) -> dict:
        number = _required_int(payload, "number")
        limit = _optional_int(payload, "limit") or 10
        return {"success": True, "chain": [e.to_dict() for e in self.orchestrator.chain(number, limit=limit)]}

    def _history_push(self, payload: dict) -> dict:
        url = self.orchestrator.push(_required_str(payload, "entryId"))
        return {"success": True, "url": url}

    def _history_import(self, payload: dict) -> dict:
        entry = self.orchestrator.import_review(_required_int(payload, "number"))
        return {"success": True, "entry": entry.to_dict() if entry else None}

    def _log_entries(self, payload: dict) -> dict:
        limit = _optional_int(payload, "limit") or 100
        return {"success": True, "entries": self.orchestrator.log_entries(limit)}


def _entity(payload: dict) -> EntityKey:
    entity = payload.get("entity")
    if not isinstance(entity, dict):
        raise ValueError("Payload must include an 'entity' object with 'kind' and 'number'.")
    return EntityKey.parse(entity.get("kind"), entity.get("number"))


def _required_str(payload: dict, name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{name}' must be a non-empty string.")
    return value


def _required_int(payload: dict, name: str) -> int:
    value = payload.get(name)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{name}' must be a positive integer.")
    return value


def _optional_int(payload: dict, name: str) -> int | None:
    if payload.get(name) is None:
        return None
    return _required_int(payload, name)
