"""Names of client commands and server events on a connection."""

from __future__ import annotations


class Commands:
    START = "job:start"
    RE_REVIEW = "job:re-review"
    CANCEL = "job:cancel"
    QUEUE = "job:queue"
    HISTORY_LIST = "history:list"
    HISTORY_LATEST = "history:latest"
    HISTORY_DELETE = "history:delete"
    HISTORY_CHAIN = "history:chain"
    HISTORY_PUSH = "history:push"
    HISTORY_IMPORT = "history:import"
    LOG_ENTRIES = "logs:entries"


class Events:
    PROGRESS = "job:progress"
    COMPLETE = "job:complete"
    ERROR = "job:error"
    QUEUE_UPDATE = "job:queue-update"
    THROTTLED = "ws:throttled"
