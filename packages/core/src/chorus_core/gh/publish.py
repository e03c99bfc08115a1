"""Publishing stored outcomes back to GitHub.

A validation is posted as one issue comment carrying VALIDATION_MARKER, so
pushing again updates that comment instead of stacking new ones. A review
is posted as a PR review whose body ends with a score/SHA marker; findings
that map onto a line in the PR diff become inline comments, the rest are
listed in the body.
"""

from __future__ import annotations

import logging

from chorus_core.gh.client import (
    VALIDATION_MARKER,
    create_comment,
    create_pr_review,
    get_issue,
    get_pull,
    list_comments,
    review_marker,
    update_comment,
)
from chorus_core.models import SEVERITIES, Finding, ReviewOutcome, ValidationOutcome

logger = logging.getLogger(__name__)

_SEVERITY_ICON = {"critical": "🔴", "major": "🟠", "minor": "🟡", "nit": "⚪"}


def determine_event(findings: list[Finding]) -> str:
    """Choose the GitHub review event based on the highest severity present."""
    severities = {f.severity for f in findings}
    if severities & {"critical", "major"}:
        return "REQUEST_CHANGES"
    return "COMMENT"


def get_diff_positions(patch_text: str) -> dict[int, int]:
    """
    Maps new-file line numbers to their cumulative GitHub diff positions.

    GitHub's review comment API requires positions that are cumulative across
    the entire patch, not reset per hunk. The @@ header line is NOT counted —
    position 1 is the first content line immediately below the @@ header.
    """
    positions: dict[int, int] = {}
    diff_position = 0
    file_line: int | None = None

    for line in patch_text.splitlines():
        if line.startswith("@@"):
            try:
                new_file_range = line.split("+")[1].split(" ")[0]
                file_line = int(new_file_range.split(",")[0])
            except (IndexError, ValueError):
                file_line = None
            continue

        diff_position += 1

        if line.startswith("+") and not line.startswith("+++"):
            if file_line is not None:
                positions[file_line] = diff_position
                file_line += 1
        elif line.startswith("-") and not line.startswith("---"):
            pass  # removed line
        elif file_line is not None:
            file_line += 1

    return positions


def format_validation_comment(outcome: ValidationOutcome) -> str:
    lines = [
        VALIDATION_MARKER,
        "## Issue validation\n",
        f"**Type:** {outcome.issue_type} · **Verdict:** {outcome.verdict} · "
        f"**Confidence:** {outcome.confidence}% · **Complexity:** {outcome.complexity}\n",
    ]
    if outcome.reasoning:
        lines.append(f"### Reasoning\n{outcome.reasoning}\n")
    if outcome.affected_files:
        lines.append("### Affected files")
        for f in outcome.affected_files:
            lines.append(f"- `{f.path}`" + (f": {f.reason}" if f.reason else ""))
        lines.append("")
    if outcome.suggested_approach:
        lines.append(f"### Suggested approach\n{outcome.suggested_approach}\n")
    lines.append(f"_Validated with {outcome.model}._")
    return "\n".join(lines)


def format_finding(finding: Finding) -> str:
    icon = _SEVERITY_ICON.get(finding.severity, "")
    parts = [f"{icon} **[{finding.severity}] {finding.title}**", "", finding.explanation]
    if finding.suggested_fix:
        parts += ["", f"**Suggested fix:** {finding.suggested_fix}"]
    return "\n".join(parts)


def format_review_body(outcome: ReviewOutcome, unanchored: list[Finding] | None = None) -> str:
    counts = {s: 0 for s in SEVERITIES}
    for f in outcome.findings:
        counts[f.severity] = counts.get(f.severity, 0) + 1

    lines = ["## Review summary\n"]
    if outcome.is_re_review and outcome.previous_score is not None:
        lines.append(
            f"_Re-review #{outcome.review_sequence}: score {outcome.previous_score}/10 → {outcome.quality_score}/10_\n"
        )
    lines.append(f"**Score:** {outcome.quality_score}/10\n")
    lines.append(f"> {outcome.verdict}\n")

    found = ", ".join(f"{n} {s}" for s, n in counts.items() if n)
    lines.append(f"**{len(outcome.findings)}** finding(s)" + (f": {found}" if found else ""))

    if unanchored:
        lines.append("\n### Other findings")
        for f in unanchored:
            location = f" (`{f.file}`" + (f":{f.line}" if f.line else "") + ")" if f.file else ""
            lines.append(f"- **[{f.severity}] {f.title}**{location}: {f.explanation}")

    lines.append("\n" + review_marker(outcome.quality_score, outcome.head_commit_sha))
    return "\n".join(lines)


def build_inline_comments(findings: list[Finding], pr_files) -> tuple[list[dict], list[Finding]]:
    """Split findings into inline review comments and those with no diff position."""
    positions = {f.filename: get_diff_positions(f.patch) for f in pr_files if f.patch}
    comments: list[dict] = []
    unanchored: list[Finding] = []
    for finding in findings:
        position = positions.get(finding.file, {}).get(finding.line) if finding.line else None
        if position is None:
            unanchored.append(finding)
            continue
        comments.append({"path": finding.file, "position": position, "body": format_finding(finding)})
    return comments, unanchored


def push_validation(repo, outcome: ValidationOutcome) -> str:
    """Post or update the validation comment on the issue. Returns its URL."""
    issue = get_issue(repo, outcome.issue_number)
    body = format_validation_comment(outcome)
    for comment in list_comments(issue):
        if VALIDATION_MARKER in (comment.body or ""):
            update_comment(comment, body)
            logger.info("Updated validation comment on issue #%d", outcome.issue_number)
            return comment.html_url
    comment = create_comment(issue, body)
    logger.info("Posted validation comment on issue #%d", outcome.issue_number)
    return comment.html_url


def push_review(repo, outcome: ReviewOutcome) -> str:
    """Post the review with inline comments on the PR. Returns its URL."""
    pr = get_pull(repo, outcome.pr_number)
    comments, unanchored = build_inline_comments(outcome.findings, pr.get_files())
    event = determine_event(outcome.findings)
    review = create_pr_review(pr, format_review_body(outcome, unanchored), event, comments)
    logger.info("Posted %s review on PR #%d with %d inline comment(s)", event, outcome.pr_number, len(comments))
    return review.html_url
