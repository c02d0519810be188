"""대화 상태 스토어

대화 ID별 작은 레코드({count, threadId}) 관리
- 최초 접근 시 기본 레코드 생성
- 턴 단위 상태(TurnState) 래핑
- 대화 ID별 직렬화용 키 잠금(KeyedLock)

스토어 자체는 잠금을 제공하지 않는다. 같은 대화의 read-modify-write
직렬화는 BotService가 KeyedLock으로 보장한다.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import AsyncIterator, Optional
import asyncio

from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ConversationRecord:
    """대화별 상태 레코드"""
    count: int = 0
    thread_id: Optional[str] = None

    def to_dict(self) -> dict:
        """JSON 직렬화용 dict 변환"""
        return {
            "count": self.count,
            "threadId": self.thread_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationRecord":
        return cls(
            count=int(data.get("count", 0) or 0),
            thread_id=data.get("threadId"),
        )


class ConversationStateStore:
    """인메모리 대화 상태 스토어"""

    def __init__(self):
        self._records: dict[str, ConversationRecord] = {}

    async def get(self, conversation_id: str) -> ConversationRecord:
        """
        대화 레코드 조회 (없으면 기본 레코드 생성)

        반환값은 복사본이며, 변경 사항은 set()으로 저장해야 반영된다.
        """
        record = self._records.get(conversation_id)
        if record is None:
            record = ConversationRecord()
            self._records[conversation_id] = record
            logger.debug("Created conversation record", conversation_id=conversation_id)
        return replace(record)

    async def set(self, conversation_id: str, record: ConversationRecord) -> None:
        if record.count < 0:
            raise ValueError("count must be >= 0")
        self._records[conversation_id] = replace(record)

    async def delete(self, conversation_id: str) -> None:
        """레코드 삭제 (없어도 무시)"""
        if self._records.pop(conversation_id, None) is not None:
            logger.debug("Deleted conversation record", conversation_id=conversation_id)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._records

    def __len__(self) -> int:
        return len(self._records)


class TurnState:
    """한 턴(Activity 1건 처리) 동안 핸들러에 전달되는 상태"""

    def __init__(
        self,
        conversation_id: str,
        conversation: ConversationRecord,
        capabilities: Optional[dict[str, bool]] = None,
    ):
        self.conversation_id = conversation_id
        self.conversation = conversation
        self.capabilities: dict[str, bool] = capabilities or {}
        self._deleted = False

    @property
    def is_deleted(self) -> bool:
        return self._deleted

    def delete_conversation_state(self) -> None:
        """대화 상태 삭제 요청 (턴 종료 시 저장 대신 삭제)"""
        self._deleted = True
        self.conversation = ConversationRecord()

    def to_dict(self) -> dict:
        return {
            "conversationId": self.conversation_id,
            "conversation": self.conversation.to_dict(),
        }


class KeyedLock:
    """키별 비동기 상호 배제 (대화 ID 단위 single-flight)

    대기자가 없어지면 해당 키의 잠금을 제거한다.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
