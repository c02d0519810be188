"""에이전트 대화 프록시

사용자 메시지를 호스팅된 에이전트로 전달하고 실행 완료까지 대기
- 대화별 스레드 재사용 (ConversationRecord.thread_id)
- 삭제된 스레드는 새로 생성
- 시간 초과 / 취소된 실행은 취소 요청
"""
from typing import Callable, Optional
import asyncio

from app.adapters.foundry import AgentRequest, AgentRunBackend, FoundryAgentsClient
from app.core.exceptions import BackendUnavailableError
from app.core.jobs import JobHandle, JobOutcome, JobResult, JobRunner
from app.core.state import ConversationRecord
from app.utils.logger import get_logger

logger = get_logger(__name__)


class AgentProxy:
    """에이전트 스레드/실행 관리"""

    def __init__(
        self,
        client_factory: Callable[[], FoundryAgentsClient],
        agent_id: str,
        poll_interval_ms: int = 1000,
        max_wait_ms: Optional[int] = None,
    ):
        """
        Args:
            client_factory: FoundryAgentsClient 생성 함수 (첫 사용 시 호출)
            agent_id: 에이전트 ID
            poll_interval_ms: 실행 상태 폴링 간격
            max_wait_ms: 실행 최대 대기 시간 (None/0이면 무제한)
        """
        self._client_factory = client_factory
        self._client: Optional[FoundryAgentsClient] = None
        self._backend: Optional[AgentRunBackend] = None
        self._runner: Optional[JobRunner] = None
        self.agent_id = agent_id
        self.poll_interval_ms = poll_interval_ms
        self.max_wait_ms = max_wait_ms

    @property
    def client(self) -> FoundryAgentsClient:
        """Foundry 클라이언트 (지연 초기화)"""
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    @property
    def backend(self) -> AgentRunBackend:
        if self._backend is None:
            self._backend = AgentRunBackend(self.client, self.agent_id)
        return self._backend

    @property
    def runner(self) -> JobRunner:
        if self._runner is None:
            self._runner = JobRunner(
                self.backend,
                poll_interval_ms=self.poll_interval_ms,
                max_wait_ms=self.max_wait_ms,
            )
        return self._runner

    async def ensure_thread(self, record: ConversationRecord) -> str:
        """저장된 스레드 확인 후 없으면 생성"""
        if record.thread_id:
            thread = await self.client.get_thread(record.thread_id)
            if thread:
                return record.thread_id
            logger.info("Stored agent thread not found, creating new one", thread_id=record.thread_id)

        thread = await self.client.create_thread()
        record.thread_id = thread["id"]
        return record.thread_id

    async def ask(self, record: ConversationRecord, text: str) -> JobResult:
        """
        메시지 전달 후 실행 완료 대기

        시간 초과 또는 취소 시 실행을 취소해 스레드가 다음 메시지를 받을 수 있게 한다.

        Returns:
            JobResult (payload: 에이전트 응답 텍스트)

        Raises:
            BackendUnavailableError: 클라이언트/스레드/메시지/실행 생성 실패
            JobProtocolError: 실행 상태 프로토콜 위반
        """
        thread_id = await self.ensure_thread(record)
        handle = await self.runner.submit(AgentRequest(thread_id=thread_id, text=text))

        try:
            result = await self.runner.await_completion(handle)
        except asyncio.CancelledError:
            await self._cancel_run(handle)
            raise

        if result.outcome is JobOutcome.TIMED_OUT:
            await self._cancel_run(handle)
        return result

    async def _cancel_run(self, handle: JobHandle) -> None:
        """실행 취소 (best-effort)"""
        try:
            await self.backend.cancel(handle)
            logger.info("Agent run cancelled", run_id=handle.job_id, thread_id=handle.context.get("thread_id"))
        except BackendUnavailableError as e:
            logger.warning("Failed to cancel agent run", run_id=handle.job_id, error=str(e))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
