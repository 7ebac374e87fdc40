"""
Background job registry.

Runs backtest, optimization, walk-forward, Monte Carlo and portfolio work on
a fixed thread pool and keeps one progress record per job. The progress
table is the only state shared between threads and every read or write of
it happens under a single lock.
"""

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict

from krx_engine.config import Settings, get_settings
from krx_engine.errors import (
    BacktestCancelled,
    BacktestError,
    JobNotFoundError,
    JobNotReadyError,
    JobRejectedError,
)
from krx_engine.logging import clear_job_id, get_logger, set_job_id

logger = get_logger(__name__)


class JobKind(str, Enum):
    BACKTEST = "BACKTEST"
    OPTIMIZATION = "OPTIMIZATION"
    WALK_FORWARD = "WALK_FORWARD"
    MONTE_CARLO = "MONTE_CARLO"
    PORTFOLIO = "PORTFOLIO"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobProgress(BaseModel):
    """Snapshot of one job. Replaced, never mutated, by the registry."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    kind: JobKind
    status: JobStatus = JobStatus.QUEUED
    percent: float = 0.0
    current: int = 0
    total: int = 0
    phase: str | None = None
    error: str | None = None
    queued_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


ProgressReporter = Callable[[int, int, str | None], None]
JobWork = Callable[[threading.Event, ProgressReporter], Any]


@dataclass
class _JobRecord:
    progress: JobProgress
    cancel_event: threading.Event = field(default_factory=threading.Event)
    result: Any = None


class JobRegistry:
    """
    Thread-pool job runner with a lock-guarded progress table.

    States move QUEUED -> RUNNING -> SUCCEEDED | FAILED | CANCELLED, and a
    terminal state is never left. Failed jobs are not retried.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.job_workers,
            thread_name_prefix="krx-job",
        )
        self._lock = threading.Lock()
        self._jobs: dict[str, _JobRecord] = {}
        self._closed = False

    def submit(self, kind: JobKind, work: JobWork) -> str:
        """
        Queue ``work`` and return its job id immediately.

        ``work`` is called as ``work(cancel_event, report)`` on a worker thread,
        where ``report(current, total, phase)`` updates the job's progress.

        Raises:
            JobRejectedError: The queue already holds ``job_queue_capacity`` jobs
                or the registry has been shut down
        """
        job_id = uuid4().hex
        with self._lock:
            if self._closed:
                raise JobRejectedError("Job registry is shut down")
            queued = sum(1 for r in self._jobs.values() if r.progress.status == JobStatus.QUEUED)
            if queued >= self._settings.job_queue_capacity:
                raise JobRejectedError(
                    f"Job queue full ({queued}/{self._settings.job_queue_capacity} queued)"
                )
            self._jobs[job_id] = _JobRecord(
                progress=JobProgress(job_id=job_id, kind=kind, queued_at=datetime.now(UTC))
            )
            self._executor.submit(self._execute, job_id, work)

        logger.info("Queued %s job %s", kind.value, job_id)
        return job_id

    def get_progress(self, job_id: str) -> JobProgress | None:
        with self._lock:
            record = self._jobs.get(job_id)
            return record.progress if record else None

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation.

        A queued job is cancelled at once; a running job is signalled and
        stops at its next bar. Returns False for unknown or finished jobs.
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None or record.progress.status.is_terminal:
                return False
            record.cancel_event.set()
            if record.progress.status == JobStatus.QUEUED:
                self._update(record, status=JobStatus.CANCELLED, completed_at=datetime.now(UTC))
        logger.info("Cancellation requested for job %s", job_id)
        return True

    def get_result(self, job_id: str) -> Any:
        """
        Return the value of a SUCCEEDED job.

        Raises:
            JobNotFoundError: Unknown job id
            JobNotReadyError: Job is not SUCCEEDED (still running, failed or cancelled)
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            if record.progress.status != JobStatus.SUCCEEDED:
                raise JobNotReadyError(job_id, record.progress.status.value)
            return record.result

    def list_jobs(self) -> list[JobProgress]:
        """All known jobs, oldest first."""
        with self._lock:
            return sorted((r.progress for r in self._jobs.values()), key=lambda p: p.queued_at)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; queued jobs are cancelled, running jobs are signalled."""
        with self._lock:
            self._closed = True
            for record in self._jobs.values():
                if record.progress.status.is_terminal:
                    continue
                record.cancel_event.set()
                if record.progress.status == JobStatus.QUEUED:
                    self._update(record, status=JobStatus.CANCELLED, completed_at=datetime.now(UTC))
        self._executor.shutdown(wait=wait, cancel_futures=True)

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _execute(self, job_id: str, work: JobWork) -> None:
        with self._lock:
            record = self._jobs[job_id]
            if record.progress.status != JobStatus.QUEUED:
                return
            self._update(record, status=JobStatus.RUNNING, started_at=datetime.now(UTC))

        def report(current: int, total: int, phase: str | None = None) -> None:
            self._report(job_id, current, total, phase)

        set_job_id(job_id)
        try:
            value = work(record.cancel_event, report)
        except BacktestCancelled:
            logger.info("Job %s cancelled", job_id)
            self._finish(job_id, JobStatus.CANCELLED)
        except BacktestError as exc:
            logger.warning("Job %s failed: %s", job_id, exc)
            self._finish(job_id, JobStatus.FAILED, error=f"{exc.code}: {exc}")
        except Exception as exc:
            logger.exception("Job %s crashed", job_id)
            self._finish(job_id, JobStatus.FAILED, error=f"{type(exc).__name__}: {exc}")
        else:
            self._finish(job_id, JobStatus.SUCCEEDED, result=value)
        finally:
            clear_job_id()

    def _report(self, job_id: str, current: int, total: int, phase: str | None) -> None:
        with self._lock:
            record = self._jobs[job_id]
            if record.progress.status != JobStatus.RUNNING:
                return
            percent = min(100.0, current / total * 100.0) if total > 0 else 0.0
            self._update(record, current=current, total=total, percent=percent, phase=phase)

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        result: Any = None,
    ) -> None:
        with self._lock:
            record = self._jobs[job_id]
            if record.progress.status.is_terminal:
                return
            record.result = result
            changes: dict[str, Any] = {
                "status": status,
                "error": error,
                "completed_at": datetime.now(UTC),
            }
            if status == JobStatus.SUCCEEDED:
                changes["percent"] = 100.0
            self._update(record, **changes)
        logger.info("Job %s finished: %s", job_id, status.value)

    @staticmethod
    def _update(record: _JobRecord, **changes: Any) -> None:
        """Caller holds the lock."""
        record.progress = record.progress.model_copy(update=changes)
