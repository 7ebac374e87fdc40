"""
Tests for the background job registry.
"""

import threading
from collections.abc import Generator

import pytest

from krx_engine.config import Settings
from krx_engine.errors import (
    BacktestCancelled,
    InvalidConfigError,
    JobNotFoundError,
    JobNotReadyError,
    JobRejectedError,
)
from krx_engine.logging import current_job_id
from krx_engine.runtime import JobKind, JobRegistry, JobStatus
from tests.conftest import wait_for


@pytest.fixture
def registry() -> Generator[JobRegistry, None, None]:
    reg = JobRegistry(Settings(job_workers=2, job_queue_capacity=10))
    yield reg
    reg.shutdown(wait=True)


def status_of(registry: JobRegistry, job_id: str) -> JobStatus:
    return registry.get_progress(job_id).status  # type: ignore[union-attr]


def until_cancelled(event: threading.Event, report) -> None:
    event.wait(10)
    raise BacktestCancelled()


class TestLifecycle:
    def test_success(self, registry: JobRegistry) -> None:
        def work(event, report):
            report(1, 2, "halfway")
            return 42

        job_id = registry.submit(JobKind.BACKTEST, work)

        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.SUCCEEDED)
        progress = registry.get_progress(job_id)
        assert progress.percent == 100.0  # type: ignore[union-attr]
        assert progress.started_at is not None  # type: ignore[union-attr]
        assert progress.completed_at is not None  # type: ignore[union-attr]
        assert registry.get_result(job_id) == 42

    def test_engine_error_fails_job(self, registry: JobRegistry) -> None:
        def work(event, report):
            raise InvalidConfigError("capital must be positive")

        job_id = registry.submit(JobKind.BACKTEST, work)

        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.FAILED)
        assert registry.get_progress(job_id).error == "invalid_config: capital must be positive"  # type: ignore[union-attr]
        with pytest.raises(JobNotReadyError):
            registry.get_result(job_id)

    def test_unexpected_error_fails_job(self, registry: JobRegistry) -> None:
        def work(event, report):
            raise RuntimeError("boom")

        job_id = registry.submit(JobKind.MONTE_CARLO, work)

        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.FAILED)
        assert registry.get_progress(job_id).error == "RuntimeError: boom"  # type: ignore[union-attr]

    def test_progress_visible_while_running(self, registry: JobRegistry, gate: threading.Event) -> None:
        def work(event, report):
            report(5, 10, "symbols")
            gate.wait(10)

        job_id = registry.submit(JobKind.PORTFOLIO, work)

        assert wait_for(lambda: registry.get_progress(job_id).current == 5)  # type: ignore[union-attr]
        progress = registry.get_progress(job_id)
        assert progress.status == JobStatus.RUNNING  # type: ignore[union-attr]
        assert progress.percent == 50.0  # type: ignore[union-attr]
        assert progress.phase == "symbols"  # type: ignore[union-attr]
        with pytest.raises(JobNotReadyError):
            registry.get_result(job_id)
        gate.set()

    def test_job_id_in_logging_context(self, registry: JobRegistry) -> None:
        job_id = registry.submit(JobKind.BACKTEST, lambda event, report: current_job_id.get())
        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.SUCCEEDED)
        assert registry.get_result(job_id) == job_id

    def test_unknown_job(self, registry: JobRegistry) -> None:
        assert registry.get_progress("nope") is None
        assert registry.cancel("nope") is False
        with pytest.raises(JobNotFoundError):
            registry.get_result("nope")

    def test_list_jobs_oldest_first(self, registry: JobRegistry) -> None:
        first = registry.submit(JobKind.BACKTEST, lambda event, report: 1)
        second = registry.submit(JobKind.OPTIMIZATION, lambda event, report: 2)
        assert [p.job_id for p in registry.list_jobs()] == [first, second]


class TestCancellation:
    def test_cancel_running_job(self, registry: JobRegistry) -> None:
        job_id = registry.submit(JobKind.WALK_FORWARD, until_cancelled)
        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.RUNNING)

        assert registry.cancel(job_id) is True
        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.CANCELLED)
        assert registry.cancel(job_id) is False

    def test_terminal_state_is_final(self, registry: JobRegistry) -> None:
        job_id = registry.submit(JobKind.BACKTEST, lambda event, report: "done")
        assert wait_for(lambda: status_of(registry, job_id) == JobStatus.SUCCEEDED)

        assert registry.cancel(job_id) is False
        assert status_of(registry, job_id) == JobStatus.SUCCEEDED


class TestQueue:
    @pytest.fixture
    def single(self) -> Generator[JobRegistry, None, None]:
        reg = JobRegistry(Settings(job_workers=1, job_queue_capacity=1))
        yield reg
        reg.shutdown(wait=True)

    def test_full_queue_rejects(self, single: JobRegistry, gate: threading.Event) -> None:
        running = single.submit(JobKind.BACKTEST, lambda event, report: gate.wait(10))
        assert wait_for(lambda: status_of(single, running) == JobStatus.RUNNING)

        queued = single.submit(JobKind.BACKTEST, lambda event, report: "later")
        assert status_of(single, queued) == JobStatus.QUEUED
        with pytest.raises(JobRejectedError):
            single.submit(JobKind.BACKTEST, lambda event, report: "rejected")

        gate.set()
        assert wait_for(lambda: status_of(single, queued) == JobStatus.SUCCEEDED)
        assert single.get_result(queued) == "later"

    def test_cancel_queued_job(self, single: JobRegistry, gate: threading.Event) -> None:
        ran: list[str] = []
        running = single.submit(JobKind.BACKTEST, lambda event, report: gate.wait(10))
        assert wait_for(lambda: status_of(single, running) == JobStatus.RUNNING)
        queued = single.submit(JobKind.BACKTEST, lambda event, report: ran.append("queued"))

        assert single.cancel(queued) is True
        assert status_of(single, queued) == JobStatus.CANCELLED

        gate.set()
        assert wait_for(lambda: status_of(single, running) == JobStatus.SUCCEEDED)
        single.shutdown(wait=True)
        assert ran == []
        assert status_of(single, queued) == JobStatus.CANCELLED

    def test_shutdown_cancels_queued(self, single: JobRegistry, gate: threading.Event) -> None:
        running = single.submit(JobKind.BACKTEST, until_cancelled)
        assert wait_for(lambda: status_of(single, running) == JobStatus.RUNNING)
        queued = single.submit(JobKind.BACKTEST, lambda event, report: "never")

        single.shutdown(wait=True)

        assert status_of(single, queued) == JobStatus.CANCELLED
        assert status_of(single, running) == JobStatus.CANCELLED

    def test_submit_after_shutdown_rejected(self, single: JobRegistry) -> None:
        single.shutdown(wait=True)

        with pytest.raises(JobRejectedError, match="shut down"):
            single.submit(JobKind.BACKTEST, lambda event, report: "late")
        assert single.list_jobs() == []
