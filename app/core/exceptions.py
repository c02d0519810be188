"""봇 코어 예외 정의"""
from typing import Optional


class BotError(Exception):
    """봇 코어 기본 예외"""


class JobError(BotError):
    """외부 작업(에이전트 실행) 관련 예외"""


class JobProtocolError(JobError):
    """작업 상태 프로토콜 위반

    알 수 없는 상태, 허용되지 않는 상태 전이, 필수 필드 누락 등.
    작업이 보고한 실패(failed)와는 구분된다.
    """

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        status: Optional[str] = None,
    ):
        super().__init__(message)
        self.job_id = job_id
        self.status = status


class BackendUnavailableError(BotError):
    """외부 백엔드 사용 불가 (자격 증명, 클라이언트, 스레드, 실행 생성 실패)

    user_message는 사용자에게 그대로 전달할 수 있는 안내 문구
    """

    def __init__(self, message: str, user_message: str):
        super().__init__(message)
        self.user_message = user_message
