"""Orchestrator: the one entry point clients talk to for a repository.

Wires the job registry, provider driver, event bus and history store
together for one repository context (full name, local checkout path and a
PyGithub repository object). Every public method maps to one client
command; the gateway adds rate limiting and error mapping on top.

Decoupled from the store implementation: any BaseHistoryStore works, and
NoOpHistoryStore turns persistence off without changing this code.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Iterator

from chorus_core.bus import EventBus
from chorus_core.driver import Completed, DriverEvent, ProviderDriver
from chorus_core.errors import EntityNotFound
from chorus_core.gh.client import (
    get_head_sha,
    get_incremental_diff,
    get_issue,
    get_pull,
    get_pull_diff,
    list_existing_review,
)
from chorus_core.gh.publish import push_review, push_validation
from chorus_core.models import (
    EntityKey,
    EntityKind,
    JobStatus,
    ReviewOutcome,
    ValidationOutcome,
    outcome_from_dict,
    utc_now,
)
from chorus_core.providers.base import BaseProvider, ExecutionParams
from chorus_core.registry import Job, JobHandle, JobRegistry, JobSummary
from chorus_core.utils.log_files import read_log_entries

if TYPE_CHECKING:
    from chorus_store.base import BaseHistoryStore
    from chorus_store.models import HistoryEntry

logger = logging.getLogger(__name__)


def get_provider(config: dict) -> BaseProvider:
    model = config["model"]
    model_name = config.get("model_name")
    if model == "anthropic":
        from chorus_core.providers.anthropic import AnthropicProvider

        provider: BaseProvider = AnthropicProvider(api_key=config["anthropic_api_key"], model=model_name)
    elif model == "openai":
        from chorus_core.providers.openai import OpenAIProvider

        provider = OpenAIProvider(api_key=config["openai_api_key"], model=model_name)
    else:
        raise ValueError(f"Unknown model provider: {model!r}. Choose 'anthropic' or 'openai'.")

    if config.get("max_retries"):
        provider.MAX_RETRIES = int(config["max_retries"])
    return provider


def enrich_review(outcome: ReviewOutcome, head_sha: str | None, previous: HistoryEntry | None) -> None:
    """Attach chain metadata to a finished review."""
    if head_sha:
        outcome.head_commit_sha = head_sha
    if previous is None:
        outcome.is_re_review = False
        outcome.previous_review_id = None
        outcome.previous_score = None
        outcome.review_sequence = 1
        return
    outcome.is_re_review = True
    outcome.previous_review_id = previous.id
    outcome.previous_score = int(previous.score) if previous.score is not None else None
    outcome.review_sequence = previous.sequence + 1


class Orchestrator:
    def __init__(
        self,
        repository_full_name: str,
        repo_path: str,
        github_repo,
        provider: BaseProvider,
        store: BaseHistoryStore,
        bus: EventBus | None = None,
        max_workers: int = 4,
        max_chars_per_diff: int = 60_000,
        log_dir: str | None = None,
    ):
        self.repository_full_name = repository_full_name
        self.repo_path = repo_path
        self.github_repo = github_repo
        self.store = store
        self.bus = bus or EventBus()
        self.driver = ProviderDriver(provider)
        self.registry = JobRegistry(self.bus, max_workers=max_workers, on_terminal=self._record_outcome)
        self.max_chars_per_diff = max_chars_per_diff
        self.log_dir = log_dir

    # ------------------------------------------------------------------ #
    # Jobs                                                                 #
    # ------------------------------------------------------------------ #

    def start(self, key: EntityKey) -> JobHandle:
        """Queue a validation (issue) or an initial review (PR)."""
        return self.registry.start(key, self._work(key, None))

    def re_review(self, key: EntityKey, previous_entry_id: str) -> JobHandle:
        """Queue a review of a PR that follows up an earlier history entry."""
        if key.kind is not EntityKind.PR:
            raise ValueError("Only pull requests can be re-reviewed.")
        return self.registry.start(key, self._work(key, previous_entry_id), previous_entry_id=previous_entry_id)

    def cancel(self, key: EntityKey) -> bool:
        return self.registry.cancel(key)

    def queue(self) -> list[JobSummary]:
        return self.registry.snapshot()

    def shutdown(self, wait: bool = True) -> None:
        self.registry.shutdown(wait=wait)

    # ------------------------------------------------------------------ #
    # History                                                              #
    # ------------------------------------------------------------------ #

    def history_list(
        self, limit: int | None = None, entity_number: int | None = None, entity_kind: str | None = None
    ) -> list[HistoryEntry]:
        return self.store.list(
            self.repository_full_name, limit=limit, entity_number=entity_number, entity_kind=entity_kind
        )

    def history_get_latest(self, entity_number: int, entity_kind: str | None = None) -> HistoryEntry | None:
        return self.store.latest(self.repository_full_name, entity_number, entity_kind=entity_kind)

    def history_delete(self, entry_id: str) -> bool:
        return self.store.delete(entry_id)

    def chain(self, pr_number: int, limit: int = 10) -> list[HistoryEntry]:
        return self.store.chain(pr_number, self.repository_full_name, limit=limit)

    def is_stale(self, entry_id: str, updated_at: str) -> bool:
        entry = self.store.get(entry_id)
        if entry is None:
            raise EntityNotFound(f"History entry not found: {entry_id}")
        return self.store.is_stale(entry, updated_at)

    def push(self, entry_id: str) -> str:
        """Publish a stored outcome to GitHub and return the resulting URL."""
        entry = self.store.get(entry_id)
        if entry is None:
            raise EntityNotFound(f"History entry not found: {entry_id}")
        outcome = outcome_from_dict(entry.outcome)
        if isinstance(outcome, ValidationOutcome):
            return push_validation(self.github_repo, outcome)
        return push_review(self.github_repo, outcome)

    def import_review(self, pr_number: int) -> HistoryEntry | None:
        """Import the latest review chorus posted on the PR into history.

        Returns None when the PR carries no chorus review or the review was
        already imported.
        """
        pr = get_pull(self.github_repo, pr_number)
        existing = list_existing_review(pr)
        if existing is None:
            logger.info("No chorus review found on PR #%d", pr_number)
            return None

        persisted_at = existing["submitted_at"] or utc_now()
        outcome = ReviewOutcome(
            repository_full_name=self.repository_full_name,
            pr_number=pr_number,
            pr_title=pr.title or "",
            verdict=_quoted_verdict(existing["body"]),
            quality_score=existing["score"],
            provider_type="github",
            reviewed_at=persisted_at,
            head_commit_sha=existing["head_sha"],
        )
        entry = self.store.import_entry(
            outcome.to_dict(), self.repository_full_name, pr_number, persisted_at=persisted_at, entity_kind="pr"
        )
        if entry is None:
            logger.info("Review on PR #%d already imported", pr_number)
        return entry

    def log_entries(self, limit: int = 100) -> list[dict]:
        if not self.log_dir:
            return []
        return read_log_entries(self.log_dir, limit=limit)

    # ------------------------------------------------------------------ #
    # Job work                                                             #
    # ------------------------------------------------------------------ #

    def _work(self, key: EntityKey, previous_entry_id: str | None):
        def work(job: Job, cancel_event: threading.Event) -> Iterator[DriverEvent]:
            params, previous = self._prepare(key, previous_entry_id)
            for event in self.driver.drive(params, cancel_event):
                if isinstance(event, Completed) and isinstance(event.outcome, ReviewOutcome):
                    enrich_review(event.outcome, params.head_sha, previous)
                yield event

        return work

    def _prepare(self, key: EntityKey, previous_entry_id: str | None) -> tuple[ExecutionParams, HistoryEntry | None]:
        if key.kind is EntityKind.ISSUE:
            issue = get_issue(self.github_repo, key.number)
            params = ExecutionParams(
                key=key,
                repository_full_name=self.repository_full_name,
                repo_path=self.repo_path,
                title=issue.title or "",
                body=issue.body or "",
            )
            return params, None

        pr = get_pull(self.github_repo, key.number)
        head_sha = get_head_sha(pr)
        params = ExecutionParams(
            key=key,
            repository_full_name=self.repository_full_name,
            repo_path=self.repo_path,
            title=pr.title or "",
            body=pr.body or "",
            diff=get_pull_diff(pr, self.max_chars_per_diff),
            head_sha=head_sha,
        )

        previous = self._resolve_previous(previous_entry_id, key)
        if previous is None:
            return params, None

        params.previous_entry_id = previous.id
        params.previous_outcome = outcome_from_dict(previous.outcome)
        params.previous_head_sha = previous.head_sha
        if previous.head_sha and head_sha and previous.head_sha != head_sha:
            try:
                params.incremental_diff = get_incremental_diff(
                    self.github_repo, previous.head_sha, head_sha, self.max_chars_per_diff
                )
                logger.info("Got incremental diff for %s: %s..%s", key, previous.head_sha[:7], head_sha[:7])
            except Exception as e:
                logger.warning("Failed to get incremental diff for %s, using full diff only: %s", key, e)
        return params, previous

    def _resolve_previous(self, previous_entry_id: str | None, key: EntityKey) -> HistoryEntry | None:
        if not previous_entry_id:
            return None
        entry = self.store.get(previous_entry_id)
        if (
            entry is None
            or entry.repository_full_name != self.repository_full_name
            or entry.outcome.get("kind") != "review"
        ):
            logger.warning("Previous review %s not found in history, running %s as an initial review", previous_entry_id, key)
            return None
        return entry

    def _record_outcome(self, job: Job) -> None:
        """Persist a completed job's outcome. Failures and cancellations are not kept."""
        if job.result is None or job.status is not JobStatus.COMPLETED:
            return
        previous_id = job.result.previous_review_id if isinstance(job.result, ReviewOutcome) else None
        try:
            entry = self.store.record(
                job.result.to_dict(),
                self.repository_full_name,
                job.key.number,
                previous_entry_id=previous_id,
                entity_kind=job.key.kind.value,
            )
        except Exception as e:
            logger.error("Failed to save %s to history: %s", job.key, e)
            return
        job.history_entry_id = entry.id


def _quoted_verdict(body: str) -> str:
    for line in (body or "").splitlines():
        if line.startswith("> "):
            return line[2:].strip()
    return "Imported from GitHub"
