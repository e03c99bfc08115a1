"""Tests for the daily JSONL log handler and reader."""

import json
import logging
from datetime import date, timedelta

import pytest

from chorus_core.utils.log_files import DailyJsonlHandler, log_file_path, read_log_entries

DAY = date(2026, 3, 10)


class _Today:
    def __init__(self, day):
        self.day = day

    def __call__(self):
        return self.day


@pytest.fixture
def today():
    return _Today(DAY)


@pytest.fixture
def handler(tmp_path, today):
    h = DailyJsonlHandler(tmp_path, today=today)
    yield h
    h.close()


@pytest.fixture
def test_logger(handler):
    log = logging.getLogger("chorus_core.tests.log_files")
    log.setLevel(logging.DEBUG)
    log.propagate = False
    log.addHandler(handler)
    yield log
    log.removeHandler(handler)


def _lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestEmit:
    def test_writes_one_json_object_per_record(self, tmp_path, test_logger):
        test_logger.info("Started %s", "PR #3")
        test_logger.warning("Slow response")

        entries = _lines(log_file_path(tmp_path, "chorus", DAY))
        assert [e["message"] for e in entries] == ["Started PR #3", "Slow response"]
        assert [e["level"] for e in entries] == ["info", "warning"]
        assert entries[0]["context"] == "chorus_core.tests.log_files"
        assert "timestamp" in entries[0]

    def test_exception_is_recorded(self, tmp_path, test_logger):
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            test_logger.exception("Job failed")

        (entry,) = _lines(log_file_path(tmp_path, "chorus", DAY))
        assert entry["level"] == "error"
        assert "RuntimeError: kaboom" in entry["error"]

    def test_switches_file_when_day_changes(self, tmp_path, today, test_logger):
        test_logger.info("day one")
        today.day = DAY + timedelta(days=1)
        test_logger.info("day two")

        assert [e["message"] for e in _lines(log_file_path(tmp_path, "chorus", DAY))] == ["day one"]
        assert [e["message"] for e in _lines(log_file_path(tmp_path, "chorus", today.day))] == ["day two"]


class TestCleanup:
    def test_removes_only_old_files_of_same_prefix(self, tmp_path, today):
        old = log_file_path(tmp_path, "chorus", DAY - timedelta(days=8))
        recent = log_file_path(tmp_path, "chorus", DAY - timedelta(days=7))
        other = log_file_path(tmp_path, "other", DAY - timedelta(days=30))
        unrelated = tmp_path / "notes.txt"
        for path in (old, recent, other, unrelated):
            path.write_text("{}\n")

        h = DailyJsonlHandler(tmp_path, today=today)
        h.close()

        assert not old.exists()
        assert recent.exists()
        assert other.exists()
        assert unrelated.exists()

    def test_returns_removed_count(self, handler, tmp_path):
        for days in (10, 20):
            log_file_path(tmp_path, "chorus", DAY - timedelta(days=days)).write_text("")
        assert handler.cleanup_old_logs() == 2

    def test_creates_missing_directory(self, tmp_path, today):
        h = DailyJsonlHandler(tmp_path / "nested" / "logs", today=today)
        h.close()
        assert (tmp_path / "nested" / "logs").is_dir()


class TestReadEntries:
    def test_missing_file_returns_empty(self, tmp_path):
        assert read_log_entries(tmp_path, day=DAY) == []

    def test_skips_malformed_lines(self, tmp_path):
        path = log_file_path(tmp_path, "chorus", DAY)
        path.write_text('{"message": "a"}\nnot json\n\n[1, 2]\n{"message": "b"}\n')

        assert [e["message"] for e in read_log_entries(tmp_path, day=DAY)] == ["a", "b"]

    def test_limit_keeps_most_recent(self, tmp_path):
        path = log_file_path(tmp_path, "chorus", DAY)
        path.write_text("".join(json.dumps({"message": str(i)}) + "\n" for i in range(10)))

        assert [e["message"] for e in read_log_entries(tmp_path, limit=3, day=DAY)] == ["7", "8", "9"]

    def test_reads_what_the_handler_wrote(self, tmp_path, test_logger):
        test_logger.info("hello")
        assert [e["message"] for e in read_log_entries(tmp_path, day=DAY)] == ["hello"]
