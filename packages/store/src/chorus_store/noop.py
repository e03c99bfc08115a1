"""No-op store — for runs that should not keep any history.

Results are still streamed to clients and can be pushed to GitHub, but
nothing is persisted. Using a NoOpHistoryStore rather than None lets the
orchestrator always call store.record() without conditional checks.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from chorus_store.base import BaseHistoryStore, summarize_outcome
from chorus_store.models import HistoryEntry


class NoOpHistoryStore(BaseHistoryStore):
    """Discards every record — zero configuration required.

    record() still returns a well-formed entry (always sequence 1, since
    nothing can be chained to) so callers need no special case.
    """

    def record(
        self,
        outcome: dict,
        repository_full_name: str,
        entity_number: int,
        previous_entry_id: str | None = None,
        entity_kind: str = "pr",
        persisted_at: str | None = None,
    ) -> HistoryEntry:
        return HistoryEntry(
            id=str(uuid.uuid4()),
            repository_full_name=repository_full_name,
            entity_kind=entity_kind,
            entity_number=entity_number,
            persisted_at=persisted_at or datetime.now(timezone.utc).isoformat(),
            outcome=outcome,
            **summarize_outcome(outcome),
        )

    def list(
        self,
        repository_full_name: str,
        limit: int | None = None,
        entity_number: int | None = None,
        entity_kind: str | None = None,
    ) -> list[HistoryEntry]:
        return []

    def get(self, entry_id: str) -> HistoryEntry | None:
        return None

    def delete(self, entry_id: str) -> bool:
        return False

    def clear(self, repository_full_name: str | None = None) -> None:
        pass  # intentional no-op
