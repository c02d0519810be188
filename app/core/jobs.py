"""외부 작업 실행기 (create → poll → complete)

에이전트 실행처럼 외부에서 수행되는 비동기 작업을 폴링으로 완료까지 추적
- 상태는 닫힌 집합(JobStatus)으로 표현
- 고정 간격 폴링, 선택적 대기 한도(deadline)
- failed / timed_out 은 결과로 반환, 프로토콜 위반은 예외
- 작업 자체는 재시도하지 않음 (호출자 결정)
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol
import asyncio
import time

from app.core.exceptions import JobProtocolError
from app.utils.logger import get_logger

logger = get_logger(__name__)


DEFAULT_POLL_INTERVAL_MS = 1000


class JobStatus(str, Enum):
    """작업 상태"""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.QUEUED, JobStatus.IN_PROGRESS)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# 관찰 가능한 상태 전이 (같은 상태 유지 포함)
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({
        JobStatus.QUEUED,
        JobStatus.IN_PROGRESS,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.IN_PROGRESS: frozenset({
        JobStatus.IN_PROGRESS,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.UNKNOWN: frozenset(),
}


class JobOutcome(str, Enum):
    """await_completion 결과 종류"""
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class JobHandle:
    """제출된 작업 핸들"""
    job_id: str
    status: JobStatus = JobStatus.QUEUED
    raw_status: Optional[str] = None
    context: dict = field(default_factory=dict)


@dataclass
class JobObservation:
    """한 번의 폴링으로 관찰한 상태"""
    status: JobStatus
    raw_status: Optional[str] = None


@dataclass
class JobResult:
    """작업 완료 대기 결과"""
    outcome: JobOutcome
    job_id: str
    status: JobStatus
    raw_status: Optional[str] = None
    payload: Any = None
    polls: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is JobOutcome.COMPLETED


class JobBackend(Protocol):
    """JobRunner가 요구하는 외부 작업 백엔드 계약"""

    async def submit(self, job_input: Any) -> JobHandle:
        ...

    async def get_status(self, handle: JobHandle) -> JobObservation:
        ...

    async def fetch_result(self, handle: JobHandle) -> Any:
        ...


class JobRunner:
    """외부 작업 제출 및 완료 대기"""

    def __init__(
        self,
        backend: JobBackend,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_wait_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            backend: 작업 백엔드
            poll_interval_ms: 기본 폴링 간격
            max_wait_ms: 기본 최대 대기 시간 (None 또는 0이면 무제한)
            sleep: 대기 함수 (테스트 주입용)
            clock: 단조 시계 (테스트 주입용)
        """
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        self.backend = backend
        self.poll_interval_ms = poll_interval_ms
        self.max_wait_ms = max_wait_ms
        self._sleep = sleep
        self._clock = clock

    async def submit(self, job_input: Any) -> JobHandle:
        """작업 제출"""
        handle = await self.backend.submit(job_input)

        if not handle.job_id:
            raise JobProtocolError("Submitted job has no identifier", status=handle.raw_status)
        if handle.status is JobStatus.UNKNOWN:
            raise JobProtocolError(
                f"Unexpected initial job status: {handle.raw_status}",
                job_id=handle.job_id,
                status=handle.raw_status,
            )

        logger.info(
            "Job submitted",
            job_id=handle.job_id,
            status=handle.status.value,
        )
        return handle

    async def await_completion(
        self,
        handle: JobHandle,
        poll_interval_ms: Optional[int] = None,
        max_wait_ms: Optional[int] = None,
    ) -> JobResult:
        """
        작업이 queued/in_progress를 벗어날 때까지 폴링

        Args:
            handle: submit()이 반환한 핸들
            poll_interval_ms: 폴링 간격 (기본값: 생성자 설정)
            max_wait_ms: 최대 대기 시간 (기본값: 생성자 설정, 0/None이면 무제한)

        Returns:
            JobResult (completed / failed / timed_out)

        Raises:
            ValueError: poll_interval_ms가 0 이하
            JobProtocolError: 알 수 없는 상태, 허용되지 않는 전이, 결과 누락
        """
        if poll_interval_ms is None:
            poll_interval_ms = self.poll_interval_ms
        elif poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        interval = poll_interval_ms / 1000
        wait_ms = max_wait_ms if max_wait_ms is not None else self.max_wait_ms
        deadline = self._clock() + wait_ms / 1000 if wait_ms else None

        status = handle.status
        raw_status = handle.raw_status
        polls = 0

        if status is JobStatus.UNKNOWN:
            raise JobProtocolError(
                f"Unexpected job status: {raw_status}",
                job_id=handle.job_id,
                status=raw_status,
            )

        try:
            while status.is_active:
                delay = interval
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        logger.warning(
                            "Job timed out",
                            job_id=handle.job_id,
                            status=status.value,
                            polls=polls,
                            max_wait_ms=wait_ms,
                        )
                        return JobResult(
                            outcome=JobOutcome.TIMED_OUT,
                            job_id=handle.job_id,
                            status=status,
                            raw_status=raw_status,
                            polls=polls,
                        )
                    delay = min(interval, remaining)

                await self._sleep(delay)

                observation = await self.backend.get_status(handle)
                polls += 1
                self._check_transition(handle, status, observation)

                status = observation.status
                raw_status = observation.raw_status or status.value
                handle.status = status
                handle.raw_status = raw_status

                logger.debug(
                    "Job polled",
                    job_id=handle.job_id,
                    status=status.value,
                    polls=polls,
                )

        except asyncio.CancelledError:
            logger.info("Job polling cancelled", job_id=handle.job_id, polls=polls)
            raise

        if status is JobStatus.FAILED:
            logger.info(
                "Job failed",
                job_id=handle.job_id,
                status=raw_status,
                polls=polls,
            )
            return JobResult(
                outcome=JobOutcome.FAILED,
                job_id=handle.job_id,
                status=status,
                raw_status=raw_status,
                polls=polls,
            )

        payload = await self.backend.fetch_result(handle)
        if payload is None:
            raise JobProtocolError(
                "Completed job returned no result",
                job_id=handle.job_id,
                status=raw_status,
            )

        logger.info("Job completed", job_id=handle.job_id, polls=polls)
        return JobResult(
            outcome=JobOutcome.COMPLETED,
            job_id=handle.job_id,
            status=status,
            raw_status=raw_status,
            payload=payload,
            polls=polls,
        )

    async def run(
        self,
        job_input: Any,
        poll_interval_ms: Optional[int] = None,
        max_wait_ms: Optional[int] = None,
    ) -> JobResult:
        """submit + await_completion"""
        handle = await self.submit(job_input)
        return await self.await_completion(handle, poll_interval_ms, max_wait_ms)

    @staticmethod
    def _check_transition(
        handle: JobHandle,
        previous: JobStatus,
        observation: JobObservation,
    ) -> None:
        if observation.status is JobStatus.UNKNOWN:
            raise JobProtocolError(
                f"Unexpected job status: {observation.raw_status}",
                job_id=handle.job_id,
                status=observation.raw_status,
            )
        if observation.status not in ALLOWED_TRANSITIONS[previous]:
            raise JobProtocolError(
                f"Illegal job status transition: {previous.value} -> {observation.status.value}",
                job_id=handle.job_id,
                status=observation.raw_status,
            )
