"""Base provider implementing the Template Method pattern.

All providers share the same execution algorithm:
    execute() → progress steps
              → _build_*_prompt()
              → _call_with_retry() → _call_api()   ← only this differs per provider
              → _parse() → _build_*_outcome()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response + usage

execute() is a generator: it yields Step objects while it works and returns
the Outcome as the generator's return value. It raises on failure. The
cancel event it receives is polled between steps, interrupts retry backoff
and is handed to _call_api, which stops reading a streamed response once it
is set; the driver decides what a cancelled run looks like to the rest of
the system.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator

from chorus_core.errors import ProviderError
from chorus_core.models import (
    SEVERITIES,
    VALIDATION_VERDICTS,
    AffectedFile,
    EntityKey,
    EntityKind,
    Finding,
    Outcome,
    ReviewOutcome,
    Step,
    StepKind,
    ValidationOutcome,
    apply_severity_caps,
)

logger = logging.getLogger(__name__)

# Shared defaults — subclasses may override as class attributes if needed.
_MAX_RETRIES = 3
_MAX_TOKENS = 8192


@dataclass
class ExecutionParams:
    """Everything a provider needs for one run.

    For chained re-reviews ``previous_outcome`` is the review being followed
    up, ``previous_head_sha`` the commit it reviewed, and ``incremental_diff``
    the changes since then (None when it could not be computed).
    """

    key: EntityKey
    repository_full_name: str
    repo_path: str
    title: str
    body: str = ""
    diff: str = ""
    head_sha: str | None = None
    previous_entry_id: str | None = None
    previous_outcome: ReviewOutcome | None = None
    previous_head_sha: str | None = None
    incremental_diff: str | None = None

    @property
    def is_re_review(self) -> bool:
        return self.previous_outcome is not None


@dataclass
class ApiResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class BaseProvider(ABC):
    PROVIDER_TYPE: str = ""
    MODEL: str = ""
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    # USD per million (input, output) tokens; used for the cost metric only.
    PRICE_PER_MTOK: tuple[float, float] = (0.0, 0.0)

    def __init__(self, model: str | None = None):
        self.model = model or self.MODEL

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def execute(self, params: ExecutionParams, cancel_event: threading.Event) -> Iterator[Step]:
        """Run one validation or review, yielding progress and returning the Outcome."""
        started = time.monotonic()
        is_issue = params.key.kind is EntityKind.ISSUE

        yield Step(f"Starting {'validation' if is_issue else 'review'} of {params.key}", StepKind.INIT)

        if is_issue:
            system = self._build_validation_system_prompt()
            user = self._build_validation_user_prompt(params)
            yield Step(f"Reading issue: {params.title}", StepKind.READING)
        else:
            system = self._build_review_system_prompt(params.is_re_review)
            user = self._build_review_user_prompt(params)
            changed = _changed_files(params.diff)
            for path in changed:
                yield Step(f"Reading {path}", StepKind.READING, file_path=path)
            if params.is_re_review and params.previous_head_sha:
                yield Step(
                    f"Comparing against previous review at {params.previous_head_sha[:7]}",
                    StepKind.SEARCHING,
                )

        yield Step(f"Analyzing with {self.model}", StepKind.ANALYZING, tool_name=self.PROVIDER_TYPE)
        response = self._call_with_retry(system, user, cancel_event)

        yield Step("Processing structured result", StepKind.PROCESSING)
        data = self._parse(response.text)
        duration_ms = int((time.monotonic() - started) * 1000)
        cost = self._cost(response)

        if is_issue:
            outcome: Outcome = self._build_validation_outcome(data, params, cost, duration_ms)
        else:
            outcome = self._build_review_outcome(data, params, cost, duration_ms)

        yield Step("Analysis complete", StepKind.COMPLETE)
        return outcome

    # ------------------------------------------------------------------ #
    # Abstract — implement in each provider                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str, cancel_event: threading.Event) -> ApiResponse:
        """Make a single API call and return the raw text response.

        This is the only method subclasses must implement. It should raise
        on failure; _call_with_retry handles retries and logging. Once
        ``cancel_event`` is set the call must be abandoned (close the stream
        and raise) rather than run to completion.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, system_prompt: str, user_prompt: str, cancel_event: threading.Event) -> ApiResponse:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff.

        The backoff waits on the cancel event, so a cancellation during a
        retry pause ends the run immediately instead of after the sleep.
        """
        for attempt in range(self.MAX_RETRIES):
            if cancel_event.is_set():
                raise ProviderError(f"{self.__class__.__name__} call abandoned: run was cancelled")
            try:
                return self._call_api(system_prompt, user_prompt, cancel_event)
            except Exception as e:
                if cancel_event.is_set():
                    raise ProviderError(f"{self.__class__.__name__} call abandoned: run was cancelled") from e
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    raise ProviderError(f"{self.__class__.__name__} API failed: {e}") from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                if cancel_event.wait(delay):
                    raise ProviderError(f"{self.__class__.__name__} call abandoned: run was cancelled")
        raise ProviderError(f"{self.__class__.__name__} is configured with MAX_RETRIES={self.MAX_RETRIES}")

    def _cost(self, response: ApiResponse) -> float:
        input_price, output_price = self.PRICE_PER_MTOK
        return round((response.input_tokens * input_price + response.output_tokens * output_price) / 1_000_000, 6)

    def _build_validation_system_prompt(self) -> str:
        return """You are a senior engineer triaging GitHub issues against the repository they were filed on.

Decide whether the issue is a bug report or a feature request, then:
- For a bug: judge whether the described behaviour is real given the code.
- For a feature: judge whether it is feasible and how much work it implies.

Be honest: if you are uncertain, say so with lower confidence.
Respond with **only** a valid JSON object:

{
  "issueType": "bug" | "feature",
  "verdict": "confirmed" | "likely" | "uncertain" | "unlikely" | "invalid",
  "confidence": <integer 0-100>,
  "affectedFiles": [{"path": "<file>", "reason": "<why>", "snippet": "<code>"}],
  "complexity": "trivial" | "low" | "medium" | "high" | "very-high",
  "suggestedApproach": "<markdown>",
  "reasoning": "<markdown>"
}"""

    def _build_validation_user_prompt(self, params: ExecutionParams) -> str:
        return f"""## Repository
{params.repository_full_name}

## Issue #{params.key.number}: {params.title}
{params.body or "(no description)"}"""

    def _build_review_system_prompt(self, is_re_review: bool) -> str:
        follow_up = ""
        if is_re_review:
            follow_up = """
This is a follow-up review. For every finding set "addressingStatus":
- "new": not present in the previous review
- "persisting": reported before and still present
- "regression": introduced by the changes since the previous review
Score fairly relative to the previous score: fixed findings should raise it."""
        return f"""You are a strict and precise senior code reviewer.
Review the pull request diff and report concrete problems only.
{follow_up}
Respond with **only** a valid JSON object:

{{
  "verdict": "<one paragraph summary>",
  "qualityScore": <integer 1-10>,
  "findings": [
    {{
      "severity": "critical" | "major" | "minor" | "nit",
      "category": "<security|logic|performance|style|testing|general>",
      "title": "<short title>",
      "file": "<path>",
      "line": <line number in the new file>,
      "explanation": "<markdown>",
      "codeSnippet": "<offending code>",
      "suggestedFix": "<markdown>",
      "addressingStatus": "new" | "persisting" | "regression"
    }}
  ]
}}

Severity guide:
- critical: security vulnerability, data loss risk, crash
- major: logic bug, missing error handling, significant performance issue
- minor: code smell, unclear naming, missing type hint
- nit: style preference, minor formatting"""

    def _build_review_user_prompt(self, params: ExecutionParams) -> str:
        sections = [
            f"## Repository\n{params.repository_full_name}",
            f"## PR #{params.key.number}: {params.title}\n{params.body or '(no description)'}",
        ]
        previous = params.previous_outcome
        if previous is not None:
            prior = "\n".join(
                f"- [{f.severity}] {f.file}:{f.line} {f.title}" for f in previous.findings
            ) or "- (no findings)"
            sections.append(
                f"## Previous Review\n**Previous Score:** {previous.quality_score}/10\n"
                f"**Previous Verdict:** {previous.verdict}\n\n{prior}"
            )
            if params.incremental_diff:
                sections.append(f"## Changes Since Previous Review\n{params.incremental_diff}")
        sections.append(f"## Diff\n{params.diff}")
        return "\n\n".join(sections)

    def _parse(self, raw: str) -> dict:
        """Parse the model's raw text response into a dict.

        Kept in base because the expected JSON shape is identical for every
        provider — stripping markdown fences and loading JSON is not
        provider-specific behaviour.
        """
        # Strip only the outer ```json ... ``` fence, not fences inside string values.
        cleaned = re.sub(r"^```(?:json)?\s*", "", (raw or "").strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning("%s: failed to parse response as JSON: %s", self.__class__.__name__, (raw or "")[:200])
            raise ProviderError("Provider response was not valid JSON")
        if not isinstance(data, dict):
            raise ProviderError("Provider response was not a JSON object")
        return data

    def _build_validation_outcome(
        self, data: dict, params: ExecutionParams, cost: float, duration_ms: int
    ) -> ValidationOutcome:
        verdict = data.get("verdict")
        if verdict not in VALIDATION_VERDICTS:
            verdict = "uncertain"
        affected = [
            AffectedFile(path=f["path"], reason=f.get("reason", ""), snippet=f.get("snippet", ""))
            for f in data.get("affectedFiles") or []
            if isinstance(f, dict) and isinstance(f.get("path"), str)
        ]
        return ValidationOutcome(
            repository_full_name=params.repository_full_name,
            issue_number=params.key.number,
            issue_title=params.title,
            issue_type="feature" if data.get("issueType") == "feature" else "bug",
            verdict=verdict,
            confidence=_clamp(data.get("confidence"), 0, 100, default=50),
            reasoning=str(data.get("reasoning") or ""),
            affected_files=affected,
            complexity=str(data.get("complexity") or "medium"),
            suggested_approach=str(data.get("suggestedApproach") or ""),
            provider_type=self.PROVIDER_TYPE,
            model=self.model,
            cost_usd=cost,
            duration_ms=duration_ms,
        )

    def _build_review_outcome(
        self, data: dict, params: ExecutionParams, cost: float, duration_ms: int
    ) -> ReviewOutcome:
        findings = []
        for raw in data.get("findings") or []:
            if not isinstance(raw, dict) or not raw.get("explanation"):
                continue
            severity = raw.get("severity")
            if severity not in SEVERITIES:
                severity = "minor"
            line = raw.get("line")
            findings.append(
                Finding(
                    severity=severity,
                    title=str(raw.get("title") or raw["explanation"][:60]),
                    explanation=str(raw["explanation"]),
                    category=str(raw.get("category") or "general"),
                    file=str(raw.get("file") or ""),
                    line=line if isinstance(line, int) and not isinstance(line, bool) else None,
                    code_snippet=str(raw.get("codeSnippet") or ""),
                    suggested_fix=str(raw.get("suggestedFix") or ""),
                    addressing_status=raw.get("addressingStatus") if params.is_re_review else None,
                )
            )
        score = apply_severity_caps(_clamp(data.get("qualityScore"), 1, 10, default=5), findings)
        return ReviewOutcome(
            repository_full_name=params.repository_full_name,
            pr_number=params.key.number,
            pr_title=params.title,
            verdict=str(data.get("verdict") or "No verdict provided"),
            quality_score=score,
            findings=findings,
            provider_type=self.PROVIDER_TYPE,
            model=self.model,
            cost_usd=cost,
            duration_ms=duration_ms,
            head_commit_sha=params.head_sha,
        )


def _clamp(value, low: int, high: int, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(low, min(high, int(round(value))))


_DIFF_FILE_RE = re.compile(r"^diff --git a/(\S+) b/", re.MULTILINE)


def _changed_files(diff: str) -> list[str]:
    return _DIFF_FILE_RE.findall(diff or "")
