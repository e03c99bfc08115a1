"""Tests for the command gateway: throttling, payload validation and error mapping."""

from unittest.mock import MagicMock

import pytest

from chorus_core.bus import EventBus
from chorus_core.connection import QueueConnection
from chorus_core.errors import AlreadyActive, EntityNotFound
from chorus_core.events import Commands, Events
from chorus_core.gateway import Gateway
from chorus_core.models import EntityKey, EntityKind
from chorus_core.throttle import ThrottleGuard, ThrottlerOptions, ThrottlerStorage
from chorus_store.models import HistoryEntry

PR_ENTITY = {"kind": "pr", "number": 12}


def _entry(entry_id="e1", sequence=1):
    return HistoryEntry(
        id=entry_id,
        repository_full_name="owner/repo",
        entity_kind="pr",
        entity_number=12,
        persisted_at="2026-01-01T00:00:00+00:00",
        sequence=sequence,
    )


@pytest.fixture
def orchestrator():
    orch = MagicMock()
    orch.bus = EventBus()
    orch.start.return_value = MagicMock(job_id="job-1")
    orch.re_review.return_value = MagicMock(job_id="job-2")
    return orch


@pytest.fixture
def gateway(orchestrator):
    return Gateway(orchestrator, ThrottleGuard(throttlers=[ThrottlerOptions(limit=1000)]))


@pytest.fixture
def conn(gateway):
    c = QueueConnection(address="127.0.0.1")
    gateway.connect(c)
    return c


class TestLifecycle:
    def test_connect_opens_and_subscribes(self, gateway, orchestrator):
        conn = QueueConnection()
        gateway.connect(conn)

        assert conn.closed is False
        assert orchestrator.bus.subscriber_count() == 1

    def test_disconnect_closes_and_unsubscribes(self, gateway, orchestrator, conn):
        gateway.disconnect(conn)

        assert conn.closed is True
        assert orchestrator.bus.subscriber_count() == 0


class TestJobCommands:
    def test_start(self, gateway, orchestrator, conn):
        response = gateway.handle(conn, Commands.START, {"entity": PR_ENTITY})

        assert response == {"success": True, "jobId": "job-1"}
        orchestrator.start.assert_called_once_with(EntityKey(EntityKind.PR, 12))

    def test_start_conflict_maps_to_failure(self, gateway, orchestrator, conn):
        orchestrator.start.side_effect = AlreadyActive(EntityKey(EntityKind.PR, 12))

        response = gateway.handle(conn, Commands.START, {"entity": PR_ENTITY})

        assert response["success"] is False
        assert "already queued or running" in response["error"]

    def test_re_review_requires_previous_id(self, gateway, orchestrator, conn):
        response = gateway.handle(conn, Commands.RE_REVIEW, {"entity": PR_ENTITY})

        assert response["success"] is False
        orchestrator.re_review.assert_not_called()

    def test_re_review(self, gateway, orchestrator, conn):
        response = gateway.handle(conn, Commands.RE_REVIEW, {"entity": PR_ENTITY, "previousEntryId": "e1"})

        assert response == {"success": True, "jobId": "job-2"}
        orchestrator.re_review.assert_called_once_with(EntityKey(EntityKind.PR, 12), "e1")

    def test_cancel(self, gateway, orchestrator, conn):
        orchestrator.cancel.return_value = True
        assert gateway.handle(conn, Commands.CANCEL, {"entity": PR_ENTITY}) == {"success": True, "cancelled": True}

    def test_queue(self, gateway, orchestrator, conn):
        summary = MagicMock()
        summary.to_dict.return_value = {"jobId": "job-1"}
        orchestrator.queue.return_value = [summary]

        assert gateway.handle(conn, Commands.QUEUE) == {"success": True, "queue": [{"jobId": "job-1"}]}


class TestPayloadValidation:
    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"entity": "pr-12"},
            {"entity": {"kind": "commit", "number": 1}},
            {"entity": {"kind": "pr", "number": 0}},
            {"entity": {"kind": "pr", "number": "12"}},
            {"entity": {"kind": "pr", "number": True}},
        ],
    )
    def test_bad_entity_is_rejected(self, gateway, orchestrator, conn, payload):
        response = gateway.handle(conn, Commands.START, payload)

        assert response["success"] is False
        orchestrator.start.assert_not_called()

    def test_unknown_command(self, gateway, conn):
        response = gateway.handle(conn, "job:explode", {})
        assert response == {"success": False, "error": "Unknown command: job:explode"}

    def test_unexpected_error_is_reported_not_raised(self, gateway, orchestrator, conn):
        orchestrator.queue.side_effect = KeyError("boom")

        response = gateway.handle(conn, Commands.QUEUE)

        assert response["success"] is False


class TestHistoryCommands:
    def test_list(self, gateway, orchestrator, conn):
        orchestrator.history_list.return_value = [_entry()]

        response = gateway.handle(conn, Commands.HISTORY_LIST, {"number": 12, "kind": "pr", "limit": 5})

        assert response["entries"][0]["id"] == "e1"
        orchestrator.history_list.assert_called_once_with(limit=5, entity_number=12, entity_kind="pr")

    def test_latest_none(self, gateway, orchestrator, conn):
        orchestrator.history_get_latest.return_value = None
        assert gateway.handle(conn, Commands.HISTORY_LATEST, {"entity": PR_ENTITY}) == {"success": True, "entry": None}

    def test_delete_unknown_is_failure(self, gateway, orchestrator, conn):
        orchestrator.history_delete.return_value = False

        response = gateway.handle(conn, Commands.HISTORY_DELETE, {"entryId": "gone"})

        assert response["success"] is False
        assert "gone" in response["error"]

    def test_chain(self, gateway, orchestrator, conn):
        orchestrator.chain.return_value = [_entry("e1", 1), _entry("e2", 2)]

        response = gateway.handle(conn, Commands.HISTORY_CHAIN, {"number": 12})

        assert [e["sequence"] for e in response["chain"]] == [1, 2]
        orchestrator.chain.assert_called_once_with(12, limit=10)

    def test_push_not_found(self, gateway, orchestrator, conn):
        orchestrator.push.side_effect = EntityNotFound("History entry not found: x")

        response = gateway.handle(conn, Commands.HISTORY_PUSH, {"entryId": "x"})

        assert response == {"success": False, "error": "History entry not found: x"}

    def test_import(self, gateway, orchestrator, conn):
        orchestrator.import_review.return_value = _entry()

        response = gateway.handle(conn, Commands.HISTORY_IMPORT, {"number": 12})

        assert response["entry"]["id"] == "e1"

    def test_log_entries(self, gateway, orchestrator, conn):
        orchestrator.log_entries.return_value = [{"message": "hi"}]

        assert gateway.handle(conn, Commands.LOG_ENTRIES, {}) == {"success": True, "entries": [{"message": "hi"}]}
        orchestrator.log_entries.assert_called_once_with(100)


class TestThrottling:
    def test_throttled_command_never_reaches_orchestrator(self, orchestrator):
        guard = ThrottleGuard(
            storage=ThrottlerStorage(clock=lambda: 0.0),
            throttlers=[ThrottlerOptions(name="short", limit=2, ttl=1000, block_duration=5000)],
        )
        gateway = Gateway(orchestrator, guard)
        conn = QueueConnection(address="10.1.1.1")
        gateway.connect(conn)

        gateway.handle(conn, Commands.QUEUE)
        gateway.handle(conn, Commands.QUEUE)
        response = gateway.handle(conn, Commands.START, {"entity": PR_ENTITY})

        assert response["success"] is False
        assert response["throttle"]["totalHits"] == 3
        assert response["throttle"]["timeToBlockExpire"] == 5000
        orchestrator.start.assert_not_called()
        throttled = [p for e, p in conn.drain() if e == Events.THROTTLED]
        assert throttled == [{"event": Commands.START, "retryAfter": 5000}]
