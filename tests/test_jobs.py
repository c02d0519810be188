import asyncio
from typing import Any, Optional

import pytest

from app.core.exceptions import JobProtocolError
from app.core.jobs import (
    JobHandle,
    JobObservation,
    JobOutcome,
    JobRunner,
    JobStatus,
)


class ScriptedBackend:
    """미리 정한 상태 순서를 돌려주는 작업 백엔드"""

    def __init__(
        self,
        statuses: list[JobStatus],
        initial: JobStatus = JobStatus.QUEUED,
        payload: Any = "done",
    ):
        self.statuses = list(statuses)
        self.initial = initial
        self.payload = payload
        self.status_calls = 0
        self.fetch_calls = 0

    async def submit(self, job_input: Any) -> JobHandle:
        return JobHandle(job_id="job-1", status=self.initial, raw_status=self.initial.value)

    async def get_status(self, handle: JobHandle) -> JobObservation:
        status = self.statuses[self.status_calls]
        self.status_calls += 1
        return JobObservation(status=status, raw_status=status.value)

    async def fetch_result(self, handle: JobHandle) -> Any:
        self.fetch_calls += 1
        return self.payload


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _runner(backend, clock: FakeClock, max_wait_ms: Optional[int] = None) -> JobRunner:
    return JobRunner(
        backend,
        poll_interval_ms=1000,
        max_wait_ms=max_wait_ms,
        sleep=clock.sleep,
        clock=clock,
    )


async def test_completes_after_three_polls_at_interval() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS, JobStatus.IN_PROGRESS, JobStatus.COMPLETED])
    clock = FakeClock()
    runner = _runner(backend, clock)

    handle = await runner.submit("hello")
    result = await runner.await_completion(handle)

    assert result.outcome is JobOutcome.COMPLETED
    assert result.ok is True
    assert result.payload == "done"
    assert result.polls == 3
    assert backend.status_calls == 3
    assert backend.fetch_calls == 1
    assert clock.sleeps == [1.0, 1.0, 1.0]


async def test_failed_job_returns_status_without_fetching_result() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS, JobStatus.FAILED])
    clock = FakeClock()
    runner = _runner(backend, clock)

    result = await runner.run("hello")

    assert result.outcome is JobOutcome.FAILED
    assert result.status is JobStatus.FAILED
    assert result.raw_status == "failed"
    assert result.payload is None
    assert backend.fetch_calls == 0


async def test_fast_path_queued_to_completed() -> None:
    backend = ScriptedBackend([JobStatus.COMPLETED])
    clock = FakeClock()

    result = await _runner(backend, clock).run("hello")

    assert result.ok is True
    assert result.polls == 1


async def test_already_completed_handle_fetches_without_polling() -> None:
    backend = ScriptedBackend([], initial=JobStatus.COMPLETED)
    clock = FakeClock()

    result = await _runner(backend, clock).run("hello")

    assert result.ok is True
    assert result.polls == 0
    assert clock.sleeps == []


async def test_per_call_interval_overrides_default() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS, JobStatus.COMPLETED])
    clock = FakeClock()
    runner = _runner(backend, clock)

    handle = await runner.submit("hello")
    await runner.await_completion(handle, poll_interval_ms=250)

    assert clock.sleeps == [0.25, 0.25]


async def test_deadline_produces_timeout_distinct_from_failure() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS] * 10)
    clock = FakeClock()
    runner = _runner(backend, clock, max_wait_ms=2500)

    result = await runner.run("hello")

    assert result.outcome is JobOutcome.TIMED_OUT
    assert result.status is JobStatus.IN_PROGRESS
    assert result.ok is False
    assert clock.sleeps == [1.0, 1.0, 0.5]
    assert backend.fetch_calls == 0


async def test_zero_max_wait_means_unbounded() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS] * 5 + [JobStatus.COMPLETED])
    clock = FakeClock()
    runner = _runner(backend, clock, max_wait_ms=0)

    result = await runner.run("hello")

    assert result.ok is True
    assert result.polls == 6


async def test_unknown_status_is_protocol_error() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS, JobStatus.UNKNOWN])
    clock = FakeClock()

    with pytest.raises(JobProtocolError) as exc_info:
        await _runner(backend, clock).run("hello")

    assert exc_info.value.job_id == "job-1"


async def test_regression_to_queued_is_protocol_error() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS, JobStatus.QUEUED])
    clock = FakeClock()

    with pytest.raises(JobProtocolError, match="in_progress -> queued"):
        await _runner(backend, clock).run("hello")


async def test_completed_without_payload_is_protocol_error() -> None:
    backend = ScriptedBackend([JobStatus.COMPLETED], payload=None)
    clock = FakeClock()

    with pytest.raises(JobProtocolError):
        await _runner(backend, clock).run("hello")


async def test_submit_without_identifier_is_protocol_error() -> None:
    class NoIdBackend(ScriptedBackend):
        async def submit(self, job_input: Any) -> JobHandle:
            return JobHandle(job_id="", status=JobStatus.QUEUED)

    with pytest.raises(JobProtocolError):
        await _runner(NoIdBackend([]), FakeClock()).submit("hello")


async def test_submit_with_unknown_status_is_protocol_error() -> None:
    backend = ScriptedBackend([], initial=JobStatus.UNKNOWN)

    with pytest.raises(JobProtocolError):
        await _runner(backend, FakeClock()).submit("hello")


async def test_polling_is_cancellable() -> None:
    backend = ScriptedBackend([JobStatus.IN_PROGRESS] * 1000)
    runner = JobRunner(backend, poll_interval_ms=10)

    handle = await runner.submit("hello")
    task = asyncio.create_task(runner.await_completion(handle))
    await asyncio.sleep(0.03)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert backend.fetch_calls == 0


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        JobRunner(ScriptedBackend([]), poll_interval_ms=0)


def test_status_helpers() -> None:
    assert JobStatus.QUEUED.is_active
    assert JobStatus.IN_PROGRESS.is_active
    assert JobStatus.COMPLETED.is_terminal
    assert JobStatus.FAILED.is_terminal
    assert not JobStatus.UNKNOWN.is_active
    assert not JobStatus.UNKNOWN.is_terminal


@pytest.mark.parametrize("interval", [0, -50])
async def test_rejects_non_positive_per_call_interval(interval) -> None:
    backend = ScriptedBackend([JobStatus.COMPLETED])
    clock = FakeClock()
    runner = _runner(backend, clock)
    handle = await runner.submit("hello")

    with pytest.raises(ValueError):
        await runner.await_completion(handle, poll_interval_ms=interval)

    assert backend.status_calls == 0
    assert clock.sleeps == []
