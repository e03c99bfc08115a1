from __future__ import annotations

import logging
import re

from github import Github, GithubException

from chorus_core.errors import EntityNotFound

logger = logging.getLogger(__name__)

VALIDATION_MARKER = "<!-- chorus-validation -->"
_REVIEW_MARKER_RE = re.compile(r"<!-- chorus-review: score=(\d+) sha=([0-9a-f]{7,40}|none) -->")


def review_marker(score: int, head_sha: str | None) -> str:
    return f"<!-- chorus-review: score={score} sha={head_sha or 'none'} -->"


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_issue(repo, issue_number: int):
    try:
        return repo.get_issue(issue_number)
    except GithubException as e:
        if e.status == 404:
            raise EntityNotFound(f"Issue #{issue_number} not found in {repo.full_name}") from e
        raise


def get_pull(repo, pr_number: int):
    try:
        return repo.get_pull(pr_number)
    except GithubException as e:
        if e.status == 404:
            raise EntityNotFound(f"PR #{pr_number} not found in {repo.full_name}") from e
        raise


def get_head_sha(pr) -> str:
    return pr.head.sha


def _files_to_diff(files, max_chars: int) -> str:
    """Join per-file patches into one unified diff, truncated at ``max_chars``."""
    parts = []
    for f in files:
        patch = f.patch or "(binary or too large to diff)"
        parts.append(f"diff --git a/{f.filename} b/{f.filename}\n{patch}")
    diff = "\n".join(parts)
    if max_chars and len(diff) > max_chars:
        logger.info("Diff truncated from %d to %d characters", len(diff), max_chars)
        diff = diff[:max_chars] + "\n... (diff truncated)"
    return diff


def get_pull_diff(pr, max_chars: int = 60_000) -> str:
    return _files_to_diff(pr.get_files(), max_chars)


def get_incremental_diff(repo, base_sha: str, head_sha: str, max_chars: int = 60_000) -> str:
    """Return the diff between two commits using GitHub's compare API."""
    comparison = repo.compare(base_sha, head_sha)
    return _files_to_diff(comparison.files, max_chars)


def list_comments(issue) -> list:
    return list(issue.get_comments())


def create_comment(issue, body: str):
    return issue.create_comment(body)


def update_comment(comment, body: str):
    comment.edit(body)
    return comment


def create_pr_review(pr, body: str, event: str, comments: list[dict] | None = None):
    return pr.create_review(body=body, event=event, comments=comments or [])


def list_existing_review(pr) -> dict | None:
    """Return the most recent chorus review posted on the PR, or None.

    The score and reviewed commit are read back from the marker that
    publishing embeds in every review body.
    """
    latest = None
    for review in pr.get_reviews():
        match = _REVIEW_MARKER_RE.search(review.body or "")
        if not match:
            continue
        sha = match.group(2)
        latest = {
            "body": review.body,
            "score": int(match.group(1)),
            "head_sha": None if sha == "none" else sha,
            "submitted_at": review.submitted_at.isoformat() if review.submitted_at else None,
            "html_url": review.html_url,
        }
    return latest
