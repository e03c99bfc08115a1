"""Abstract history store interface.

Any storage backend (SQLite, Postgres, a JSON file) implements this
interface. The orchestrator depends on BaseHistoryStore — not on a concrete
backend — so backends are swappable without touching orchestration code.

Chain walking and staleness are defined once here on top of the abstract
primitives, so every backend links and ages entries the same way.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chorus_store.models import HistoryEntry

DEFAULT_CHAIN_LIMIT = 10


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_stale(entry: HistoryEntry, entity_updated_at: datetime | str) -> bool:
    """True iff the entity changed after the entry was persisted."""
    return parse_timestamp(entity_updated_at) > parse_timestamp(entry.persisted_at)


def summarize_outcome(outcome: dict) -> dict:
    """Pull the listing columns out of an outcome payload."""
    title = outcome.get("pr_title") or outcome.get("issue_title") or ""
    score = outcome.get("quality_score", outcome.get("confidence"))
    return {
        "title": title,
        "verdict": str(outcome.get("verdict") or ""),
        "score": score,
        "head_sha": outcome.get("head_commit_sha"),
    }


class BaseHistoryStore(ABC):
    """Pluggable persistence layer for validation and review history.

    Implementations must be safe to call from worker threads: the job
    registry records outcomes from its pool while clients list and delete
    from their own threads.
    """

    @abstractmethod
    def record(
        self,
        outcome: dict,
        repository_full_name: str,
        entity_number: int,
        previous_entry_id: str | None = None,
        entity_kind: str = "pr",
        persisted_at: str | None = None,
    ) -> HistoryEntry:
        """Persist an outcome and return the new entry.

        If ``previous_entry_id`` names an existing entry of the same
        repository the new entry continues its chain
        (``sequence = previous.sequence + 1``); otherwise it starts a new
        chain with ``sequence = 1``.
        """

    @abstractmethod
    def list(
        self,
        repository_full_name: str,
        limit: int | None = None,
        entity_number: int | None = None,
        entity_kind: str | None = None,
    ) -> list[HistoryEntry]:
        """Return entries for a repository, most recent first.

        Returns an empty list if no entries exist — never raises.
        """

    @abstractmethod
    def get(self, entry_id: str) -> HistoryEntry | None:
        """Return one entry by id, or None."""

    @abstractmethod
    def delete(self, entry_id: str) -> bool:
        """Delete an entry. Returns False (never raises) for unknown ids."""

    @abstractmethod
    def clear(self, repository_full_name: str | None = None) -> None:
        """Delete every entry, or every entry of one repository."""

    def latest(self, repository_full_name: str, entity_number: int, entity_kind: str | None = None) -> HistoryEntry | None:
        entries = self.list(repository_full_name, limit=1, entity_number=entity_number, entity_kind=entity_kind)
        return entries[0] if entries else None

    def chain(
        self, entity_number: int, repository_full_name: str, limit: int = DEFAULT_CHAIN_LIMIT
    ) -> list[HistoryEntry]:
        """Return the re-review chain ending at the PR's latest entry, oldest first.

        Follows ``previous_entry_id`` links back from the latest entry and
        stops at the first link that no longer resolves (e.g. deleted). At
        most ``limit`` entries are returned, keeping the most recent.
        """
        current = self.latest(repository_full_name, entity_number, entity_kind="pr")
        chain: list[HistoryEntry] = []
        seen: set[str] = set()
        while current is not None and current.id not in seen:
            chain.append(current)
            seen.add(current.id)
            if limit > 0 and len(chain) >= limit:
                break
            if not current.previous_entry_id:
                break
            current = self.get(current.previous_entry_id)
        chain.reverse()
        return chain

    def import_entry(
        self,
        outcome: dict,
        repository_full_name: str,
        entity_number: int,
        persisted_at: str,
        entity_kind: str = "pr",
    ) -> HistoryEntry | None:
        """Record an outcome found elsewhere (e.g. on GitHub) under its own timestamp.

        Returns None without writing if the entity already has an entry
        persisted at exactly that time, so repeated imports are harmless.
        The imported entry continues the entity's latest chain.
        """
        existing = self.list(repository_full_name, entity_number=entity_number, entity_kind=entity_kind)
        if any(e.persisted_at == persisted_at for e in existing):
            return None
        previous = existing[0].id if existing else None
        return self.record(
            outcome,
            repository_full_name,
            entity_number,
            previous_entry_id=previous,
            entity_kind=entity_kind,
            persisted_at=persisted_at,
        )

    def is_stale(self, entry: HistoryEntry, entity_updated_at: datetime | str) -> bool:
        return is_stale(entry, entity_updated_at)

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional — subclasses that need cleanup should override this.
        Default is a no-op so callers can always call close() safely.
        """
