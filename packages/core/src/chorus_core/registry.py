"""Job registry: per-entity admission, execution and cancellation.

Handles:
- Admission (at most one queued/running job per EntityKey)
- Execution on a bounded worker pool
- Cooperative cancellation (flag + event, observed by the provider driver)
- Queue snapshots broadcast after every transition

Locking: every mutation of a key's job (admission, start of execution,
cancel, terminal transition) happens under that key's lock, so unrelated
keys never contend. Snapshots are copy-on-read; they are published under a
single publish lock so clients see each job's status move forward only.

Terminal resolution order: cancel() and the terminal transition both take
the key lock. If cancel() gets it first, the job ends ``cancelled`` whatever
the driver reported. If the terminal transition gets it first, the job is
no longer live-and-running and cancel() is a no-op.
"""

from __future__ import annotations

import logging
import threading
import uuid
import weakref
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator

from chorus_core.driver import Cancelled, Completed, DriverEvent, Failed, StepEvent, TerminalEvent
from chorus_core.errors import AlreadyActive, DispatchError
from chorus_core.models import EntityKey, ErrorInfo, JobStatus, Outcome, Step, utc_now

if TYPE_CHECKING:
    from chorus_core.bus import EventBus

logger = logging.getLogger(__name__)

CANCELLED_ERROR = ErrorInfo("Cancelled by user", "Cancelled")


@dataclass(eq=False)
class Job:
    key: EntityKey
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.QUEUED
    queued_at: str = field(default_factory=utc_now)
    started_at: str | None = None
    completed_at: str | None = None
    cancel_requested: bool = False
    previous_entry_id: str | None = None
    result: Outcome | None = None
    error: ErrorInfo | None = None
    history_entry_id: str | None = None
    steps: list[Step] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    done: threading.Event = field(default_factory=threading.Event, repr=False)


@dataclass(frozen=True)
class JobSummary:
    job_id: str
    key: EntityKey
    status: JobStatus
    queued_at: str
    started_at: str | None
    completed_at: str | None
    cancel_requested: bool
    step_count: int
    previous_entry_id: str | None = None
    error: str | None = None

    @classmethod
    def of(cls, job: Job) -> JobSummary:
        return cls(
            job_id=job.job_id,
            key=job.key,
            status=job.status,
            queued_at=job.queued_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            cancel_requested=job.cancel_requested,
            step_count=len(job.steps),
            previous_entry_id=job.previous_entry_id,
            error=job.error.message if job.error else None,
        )

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "entity": self.key.to_dict(),
            "status": self.status.value,
            "queuedAt": self.queued_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "cancelRequested": self.cancel_requested,
            "stepCount": self.step_count,
            "previousEntryId": self.previous_entry_id,
            "error": self.error,
        }


class JobHandle:
    """Caller-side view of an admitted job."""

    def __init__(self, job: Job):
        self._job = job
        self.job_id = job.job_id
        self.key = job.key

    @property
    def status(self) -> JobStatus:
        return self._job.status

    @property
    def result(self) -> Outcome | None:
        return self._job.result

    @property
    def error(self) -> ErrorInfo | None:
        return self._job.error

    @property
    def history_entry_id(self) -> str | None:
        return self._job.history_entry_id

    def wait(self, timeout: float | None = None) -> JobStatus | None:
        """Block until the job is terminal. Returns None on timeout."""
        if not self._job.done.wait(timeout):
            return None
        return self._job.status


WorkFn = Callable[[Job, threading.Event], Iterator[DriverEvent]]
TerminalHook = Callable[[Job], None]


class JobRegistry:
    def __init__(self, bus: EventBus, max_workers: int = 4, on_terminal: TerminalHook | None = None):
        self._bus = bus
        self._on_terminal = on_terminal
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="chorus-job")
        self._jobs: dict[EntityKey, Job] = {}
        # Entries vanish once no thread holds or waits on the lock.
        self._key_locks: weakref.WeakValueDictionary[EntityKey, threading.RLock] = weakref.WeakValueDictionary()
        self._key_locks_guard = threading.Lock()
        self._publish_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def start(self, key: EntityKey, work: WorkFn, previous_entry_id: str | None = None) -> JobHandle:
        """Admit and schedule a job for ``key``.

        Raises AlreadyActive if the key already has a live job, and
        DispatchError (leaving no job behind) if the pool refuses the work.
        """
        with self._lock_for(key):
            if key in self._jobs:
                logger.info("%s already %s, rejecting start", key, self._jobs[key].status.value)
                raise AlreadyActive(key)

            job = Job(key=key, previous_entry_id=previous_entry_id)
            self._jobs[key] = job
            try:
                self._executor.submit(self._run, job, work)
            except RuntimeError as e:
                del self._jobs[key]
                raise DispatchError(f"Could not schedule a job for {key}: {e}") from e

            logger.info("Queued job %s for %s", job.job_id, key)
            # Published while still holding the key lock: the worker cannot
            # report ``running`` before clients have seen ``queued``.
            self._publish_snapshot()
            return JobHandle(job)

    def cancel(self, key: EntityKey) -> bool:
        """Request cancellation of the live job for ``key``. No-op if there is none."""
        with self._lock_for(key):
            job = self._jobs.get(key)
            if job is None or job.status.is_terminal:
                logger.debug("Cancel for %s ignored: no live job", key)
                return False
            job.cancel_requested = True
            job.cancel_event.set()
            logger.info("Cancellation requested for %s (job %s, %s)", key, job.job_id, job.status.value)
            self._publish_snapshot()
            return True

    def get(self, key: EntityKey) -> JobSummary | None:
        job = self._jobs.get(key)
        return JobSummary.of(job) if job is not None else None

    def snapshot(self) -> list[JobSummary]:
        jobs = self._jobs.copy()
        return sorted((JobSummary.of(j) for j in jobs.values()), key=lambda s: s.queued_at)

    def shutdown(self, wait: bool = True) -> None:
        for key in list(self._jobs.copy()):
            self.cancel(key)
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------ #
    # Execution                                                            #
    # ------------------------------------------------------------------ #

    def _run(self, job: Job, work: WorkFn) -> None:
        try:
            with self._lock_for(job.key):
                if job.cancel_requested:
                    terminal: TerminalEvent | None = Cancelled()
                else:
                    terminal = None
                    job.status = JobStatus.RUNNING
                    job.started_at = utc_now()
                    self._publish_snapshot()

            if terminal is None:
                terminal = self._consume(job, work)
            self._finish(job, terminal)
        except Exception:
            logger.exception("Unexpected error finishing job %s for %s", job.job_id, job.key)
        finally:
            job.done.set()

    def _consume(self, job: Job, work: WorkFn) -> TerminalEvent:
        try:
            for event in work(job, job.cancel_event):
                if isinstance(event, StepEvent):
                    job.steps.append(event.step)
                    self._bus.publish_step(job.key, event.step)
                else:
                    return event
        except Exception as e:
            if job.cancel_event.is_set():
                return Cancelled()
            logger.error("Job %s for %s failed before completion: %s", job.job_id, job.key, e)
            return Failed(ErrorInfo.from_exception(e))
        return Failed(ErrorInfo("Job ended without a result", "ProviderError"))

    def _finish(self, job: Job, terminal: TerminalEvent) -> None:
        with self._lock_for(job.key):
            if job.cancel_requested or isinstance(terminal, Cancelled):
                job.status = JobStatus.CANCELLED
                job.error = CANCELLED_ERROR
            elif isinstance(terminal, Completed):
                job.status = JobStatus.COMPLETED
                job.result = terminal.outcome
            else:
                job.status = JobStatus.FAILED
                job.error = terminal.error
            job.completed_at = utc_now()
            logger.info("Job %s for %s %s", job.job_id, job.key, job.status.value)

            if self._on_terminal is not None:
                try:
                    self._on_terminal(job)
                except Exception:
                    logger.exception("Terminal hook failed for job %s", job.job_id)

            self._bus.publish_terminal(job.key, job.result if job.status is JobStatus.COMPLETED else job.error)
            self._publish_snapshot()
            if self._jobs.get(job.key) is job:
                del self._jobs[job.key]

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _lock_for(self, key: EntityKey) -> threading.RLock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.RLock()
            return lock

    def _publish_snapshot(self) -> None:
        with self._publish_lock:
            self._bus.publish_queue_snapshot(self.snapshot())
