"""Domain types shared by the registry, driver, bus and orchestrator.

Outcomes are plain dataclasses with explicit dict conversion rather than a
serialisation framework: the history store persists them as JSON and the
event bus sends them to clients as dicts, so ``to_dict`` is the one wire
format for both.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EntityKind(str, Enum):
    ISSUE = "issue"
    PR = "pr"


@dataclass(frozen=True)
class EntityKey:
    """The single-flight unit: at most one live job per key."""

    kind: EntityKind
    number: int

    @classmethod
    def parse(cls, kind: str, number: int) -> EntityKey:
        """Build a key from client input, raising ValueError on bad values."""
        try:
            entity_kind = EntityKind(kind)
        except ValueError:
            raise ValueError(f"Unknown entity kind: {kind!r}. Choose 'issue' or 'pr'.")
        if isinstance(number, bool) or not isinstance(number, int) or number <= 0:
            raise ValueError(f"Entity number must be a positive integer, got {number!r}.")
        return cls(entity_kind, number)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "number": self.number}

    def __str__(self) -> str:
        prefix = "issue" if self.kind is EntityKind.ISSUE else "PR"
        return f"{prefix} #{self.number}"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class StepKind(str, Enum):
    INIT = "init"
    READING = "reading"
    SEARCHING = "searching"
    TOOL_USE = "tool_use"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Step:
    """One progress step emitted by a provider. Never mutated after emission."""

    message: str
    kind: StepKind = StepKind.PROCESSING
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: str = field(default_factory=utc_now)
    tool_name: str | None = None
    file_path: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "message": self.message,
            "timestamp": self.timestamp,
            "kind": self.kind.value,
        }
        if self.tool_name is not None:
            data["toolName"] = self.tool_name
        if self.file_path is not None:
            data["filePath"] = self.file_path
        return data


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    error_type: str = "Error"

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        return cls(message=str(exc) or exc.__class__.__name__, error_type=exc.__class__.__name__)

    def to_dict(self) -> dict:
        return {"message": self.message, "errorType": self.error_type}


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

SEVERITIES = ("critical", "major", "minor", "nit")
VALIDATION_VERDICTS = ("confirmed", "likely", "uncertain", "unlikely", "invalid")


@dataclass
class AffectedFile:
    path: str
    reason: str = ""
    snippet: str = ""


@dataclass
class Finding:
    """A single review finding, optionally anchored to a file line."""

    severity: str
    title: str
    explanation: str
    category: str = "general"
    file: str = ""
    line: int | None = None
    code_snippet: str = ""
    suggested_fix: str = ""
    addressing_status: str | None = None  # "new" | "persisting" | "regression" on re-reviews


@dataclass
class ValidationOutcome:
    repository_full_name: str
    issue_number: int
    issue_title: str
    issue_type: str  # "bug" | "feature"
    verdict: str
    confidence: int  # 0-100
    reasoning: str = ""
    affected_files: list[AffectedFile] = field(default_factory=list)
    complexity: str = "medium"
    suggested_approach: str = ""
    provider_type: str = ""
    model: str = ""
    cost_usd: float = 0.0
    duration_ms: int = 0
    validated_at: str = field(default_factory=utc_now)

    kind = "validation"

    @property
    def entity_number(self) -> int:
        return self.issue_number

    @property
    def title(self) -> str:
        return self.issue_title

    @property
    def score(self) -> float:
        return self.confidence

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


@dataclass
class ReviewOutcome:
    repository_full_name: str
    pr_number: int
    pr_title: str
    verdict: str
    quality_score: int  # 1-10
    findings: list[Finding] = field(default_factory=list)
    provider_type: str = ""
    model: str = ""
    cost_usd: float = 0.0
    duration_ms: int = 0
    reviewed_at: str = field(default_factory=utc_now)
    head_commit_sha: str | None = None
    is_re_review: bool = False
    previous_review_id: str | None = None
    previous_score: int | None = None
    review_sequence: int = 1

    kind = "review"

    @property
    def entity_number(self) -> int:
        return self.pr_number

    @property
    def title(self) -> str:
        return self.pr_title

    @property
    def score(self) -> float:
        return self.quality_score

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


Outcome = ValidationOutcome | ReviewOutcome


def apply_severity_caps(score: int, findings: list[Finding]) -> int:
    """Cap a review score by its worst finding: critical -> 5, major -> 7."""
    severities = {f.severity for f in findings}
    if "critical" in severities:
        return min(score, 5)
    if "major" in severities:
        return min(score, 7)
    return score


def outcome_from_dict(data: dict) -> Outcome:
    """Rebuild an Outcome from the dict produced by ``to_dict``."""
    payload = {k: v for k, v in data.items() if k != "kind"}
    if data.get("kind") == "validation":
        payload["affected_files"] = [AffectedFile(**f) for f in payload.get("affected_files", [])]
        return ValidationOutcome(**payload)
    if data.get("kind") == "review":
        payload["findings"] = [Finding(**f) for f in payload.get("findings", [])]
        return ReviewOutcome(**payload)
    raise ValueError(f"Unknown outcome kind: {data.get('kind')!r}")
