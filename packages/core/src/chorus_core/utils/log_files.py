"""Daily JSONL log files.

DailyJsonlHandler is a logging.Handler that appends one JSON object per
record to ``<log_dir>/<prefix>-YYYY-MM-DD.log``, switching files when the
date changes. Files of the same prefix older than MAX_LOG_DAYS are removed
when the handler is created. read_log_entries() serves the ``logs:entries``
command and the ``chorus logs`` CLI.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

MAX_LOG_DAYS = 7
DEFAULT_PREFIX = "chorus"


def _today() -> date:
    return datetime.now(timezone.utc).date()


def log_file_path(log_dir: str | Path, prefix: str, day: date) -> Path:
    return Path(log_dir) / f"{prefix}-{day.isoformat()}.log"


class DailyJsonlHandler(logging.Handler):
    def __init__(
        self,
        log_dir: str | Path,
        prefix: str = DEFAULT_PREFIX,
        level: int = logging.NOTSET,
        today: Callable[[], date] = _today,
    ):
        super().__init__(level)
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self._today = today
        self._pattern = re.compile(rf"^{re.escape(prefix)}-(\d{{4}}-\d{{2}}-\d{{2}})\.log$")
        self._current_day: date | None = None
        self._stream = None
        self._stream_lock = threading.Lock()

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.cleanup_old_logs()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "level": record.levelname.lower(),
                "context": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                entry["error"] = self.format_exception(record)
            line = json.dumps(entry, default=str) + "\n"
            with self._stream_lock:
                self._ensure_current_stream()
                self._stream.write(line)
                self._stream.flush()
        except Exception:
            self.handleError(record)

    def format_exception(self, record: logging.LogRecord) -> str:
        return logging.Formatter().formatException(record.exc_info)

    def close(self) -> None:
        with self._stream_lock:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
        super().close()

    def cleanup_old_logs(self) -> int:
        """Delete this prefix's log files older than MAX_LOG_DAYS. Returns the count."""
        cutoff = self._today() - timedelta(days=MAX_LOG_DAYS)
        removed = 0
        for path in self.log_dir.iterdir():
            match = self._pattern.match(path.name)
            if not match:
                continue
            try:
                day = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            if day < cutoff:
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning("Could not delete old log file %s: %s", path, e)
        if removed:
            logger.debug("Removed %d log file(s) older than %d days", removed, MAX_LOG_DAYS)
        return removed

    def _ensure_current_stream(self) -> None:
        today = self._today()
        if self._stream is None or today != self._current_day:
            if self._stream is not None:
                self._stream.close()
            self._current_day = today
            self._stream = open(log_file_path(self.log_dir, self.prefix, today), "a", encoding="utf-8")


def read_log_entries(
    log_dir: str | Path, prefix: str = DEFAULT_PREFIX, limit: int = 100, day: date | None = None
) -> list[dict]:
    """Return the last ``limit`` entries of the day's log file, oldest first.

    A missing file yields an empty list; malformed lines are skipped.
    """
    path = log_file_path(log_dir, prefix, day or _today())
    if not path.exists():
        return []
    lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
    entries = []
    for line in lines[-limit:] if limit > 0 else lines:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries
