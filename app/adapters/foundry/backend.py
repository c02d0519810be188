"""에이전트 실행 → JobRunner 백엔드 어댑터

스레드형 에이전트 실행을 JobBackend 계약(submit / get_status / fetch_result)에 맞춤
"""
from dataclasses import dataclass
from typing import Optional

from app.adapters.foundry.client import FoundryAgentsClient
from app.core.exceptions import JobProtocolError
from app.core.jobs import JobHandle, JobObservation, JobStatus
from app.utils.logger import get_logger

logger = get_logger(__name__)


# 실행 상태 문자열 → JobStatus
RUN_STATUS_MAP: dict[str, JobStatus] = {
    "queued": JobStatus.QUEUED,
    "in_progress": JobStatus.IN_PROGRESS,
    "cancelling": JobStatus.IN_PROGRESS,
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
    "expired": JobStatus.FAILED,
    "incomplete": JobStatus.FAILED,
}


def map_run_status(raw_status: Optional[str]) -> JobStatus:
    """실행 상태 매핑 (requires_action 등 미지원 상태는 UNKNOWN)"""
    if not raw_status:
        return JobStatus.UNKNOWN
    return RUN_STATUS_MAP.get(raw_status, JobStatus.UNKNOWN)


@dataclass
class AgentRequest:
    """에이전트 작업 입력"""
    thread_id: str
    text: str


class AgentRunBackend:
    """Foundry 에이전트 실행 기반 JobBackend"""

    def __init__(self, client: FoundryAgentsClient, agent_id: str):
        self.client = client
        self.agent_id = agent_id

    async def submit(self, job_input: AgentRequest) -> JobHandle:
        """메시지 게시 후 실행 생성"""
        await self.client.post_message(job_input.thread_id, job_input.text)
        run = await self.client.create_run(job_input.thread_id, self.agent_id)

        raw_status = run.get("status")
        return JobHandle(
            job_id=run.get("id", ""),
            status=map_run_status(raw_status),
            raw_status=raw_status,
            context={"thread_id": job_input.thread_id},
        )

    async def get_status(self, handle: JobHandle) -> JobObservation:
        run = await self.client.get_run(handle.context["thread_id"], handle.job_id)

        raw_status = run.get("status")
        if raw_status is None:
            raise JobProtocolError("Run status missing", job_id=handle.job_id)

        if raw_status in ("failed", "expired") and run.get("last_error"):
            handle.context["last_error"] = run["last_error"]

        return JobObservation(status=map_run_status(raw_status), raw_status=raw_status)

    async def cancel(self, handle: JobHandle) -> None:
        """실행 취소 요청"""
        await self.client.cancel_run(handle.context["thread_id"], handle.job_id)

    async def fetch_result(self, handle: JobHandle) -> Optional[str]:
        """이 실행이 만든 최신 assistant 메시지 텍스트 (없으면 None)"""
        messages = await self.client.list_messages(handle.context["thread_id"], order="desc")

        for message in messages:
            if message.get("role") != "assistant" or message.get("run_id") != handle.job_id:
                continue
            text = extract_message_text(message)
            if text:
                return text

        logger.warning("No assistant message found", run_id=handle.job_id)
        return None


def extract_message_text(message: dict) -> str:
    """메시지 content 블록에서 텍스트 추출"""
    parts: list[str] = []
    for block in message.get("content") or []:
        if block.get("type") != "text":
            continue
        text = block.get("text")
        if isinstance(text, dict):
            value = text.get("value")
        else:
            value = text
        if value:
            parts.append(value)
    return "\n\n".join(parts)
