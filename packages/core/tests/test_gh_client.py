"""Tests for the GitHub helpers: lookups, diff assembly and review markers."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from github import GithubException

from chorus_core.errors import EntityNotFound
from chorus_core.gh.client import (
    get_incremental_diff,
    get_issue,
    get_pull,
    get_pull_diff,
    list_existing_review,
    review_marker,
)


def _file(filename, patch):
    f = MagicMock()
    f.filename = filename
    f.patch = patch
    return f


def _review(body, submitted_at=None, url="https://x/r/1"):
    r = MagicMock()
    r.body = body
    r.submitted_at = submitted_at
    r.html_url = url
    return r


class TestLookups:
    def test_missing_pull_raises_entity_not_found(self):
        repo = MagicMock(full_name="owner/repo")
        repo.get_pull.side_effect = GithubException(404, {"message": "Not Found"}, None)

        with pytest.raises(EntityNotFound, match="PR #9"):
            get_pull(repo, 9)

    def test_missing_issue_raises_entity_not_found(self):
        repo = MagicMock(full_name="owner/repo")
        repo.get_issue.side_effect = GithubException(404, {"message": "Not Found"}, None)

        with pytest.raises(EntityNotFound, match="Issue #3"):
            get_issue(repo, 3)

    def test_other_github_errors_propagate(self):
        repo = MagicMock(full_name="owner/repo")
        repo.get_pull.side_effect = GithubException(502, {"message": "Bad Gateway"}, None)

        with pytest.raises(GithubException):
            get_pull(repo, 9)


class TestDiffs:
    def test_joins_file_patches(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("a.py", "+one"), _file("b.py", "+two")]

        diff = get_pull_diff(pr)

        assert diff == "diff --git a/a.py b/a.py\n+one\ndiff --git a/b.py b/b.py\n+two"

    def test_binary_files_get_placeholder(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("logo.png", None)]

        assert "(binary or too large to diff)" in get_pull_diff(pr)

    def test_truncates_long_diffs(self):
        pr = MagicMock()
        pr.get_files.return_value = [_file("big.py", "+" + "x" * 500)]

        diff = get_pull_diff(pr, max_chars=100)

        assert diff.endswith("... (diff truncated)")
        assert len(diff) < 150

    def test_incremental_diff_uses_compare(self):
        repo = MagicMock()
        repo.compare.return_value.files = [_file("a.py", "+fixed")]

        diff = get_incremental_diff(repo, "old", "new")

        repo.compare.assert_called_once_with("old", "new")
        assert "+fixed" in diff


class TestExistingReview:
    def test_returns_latest_marked_review(self):
        sha = "c" * 40
        pr = MagicMock()
        pr.get_reviews.return_value = [
            _review("first\n" + review_marker(4, "a" * 40), url="https://x/r/1"),
            _review("someone else's review"),
            _review(
                "second\n" + review_marker(8, sha),
                submitted_at=datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc),
                url="https://x/r/3",
            ),
        ]

        found = list_existing_review(pr)

        assert found["score"] == 8
        assert found["head_sha"] == sha
        assert found["submitted_at"] == "2026-02-01T09:30:00+00:00"
        assert found["html_url"] == "https://x/r/3"

    def test_marker_without_sha(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review(review_marker(6, None))]

        found = list_existing_review(pr)

        assert found["score"] == 6
        assert found["head_sha"] is None
        assert found["submitted_at"] is None

    def test_no_marked_review(self):
        pr = MagicMock()
        pr.get_reviews.return_value = [_review("LGTM"), _review(None)]

        assert list_existing_review(pr) is None
