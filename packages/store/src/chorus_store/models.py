"""History data models.

Decoupled from chorus_core so the store layer can be used independently
and chorus_core has no knowledge of persistence concerns. Outcomes arrive
here as the plain dicts produced by the core's ``to_dict``; the store keeps
a few summary columns for listing and the full payload as JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class HistoryEntry:
    """A persisted, uniquely identified outcome, optionally chained to a prior entry.

    ``sequence`` is 1 for the first entry of a chain and grows by one per
    re-review link (``previous_entry_id``).
    """

    id: str
    repository_full_name: str
    entity_kind: str  # "issue" | "pr"
    entity_number: int
    persisted_at: str  # ISO-8601 UTC timestamp
    sequence: int = 1
    previous_entry_id: str | None = None
    title: str = ""
    verdict: str = ""
    score: float | None = None
    head_sha: str | None = None
    outcome: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "repositoryFullName": self.repository_full_name,
            "entityKind": self.entity_kind,
            "entityNumber": self.entity_number,
            "persistedAt": self.persisted_at,
            "sequence": self.sequence,
            "previousEntryId": self.previous_entry_id,
            "title": self.title,
            "verdict": self.verdict,
            "score": self.score,
            "headSha": self.head_sha,
            "outcome": self.outcome,
        }
