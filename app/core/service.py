"""봇 서비스

Activity 1건을 라우터에 연결
- 대화 ID 단위 직렬화 (같은 대화의 Activity는 동시에 처리하지 않음)
- 상태 로드 → capability 스냅샷 → dispatch → 상태 저장/삭제
"""
from typing import Iterable, Optional, Protocol

from botbuilder.core import TurnContext

from app.core.router import ActivityRouter, DispatchResult
from app.core.state import ConversationStateStore, KeyedLock, TurnState
from app.utils.logger import get_logger

logger = get_logger(__name__)


class CapabilityProvider(Protocol):
    """capability 충족 여부 스냅샷 제공자 (인증 협력자)"""

    async def snapshot(
        self,
        context: TurnContext,
        capabilities: Iterable[str],
    ) -> dict[str, bool]:
        ...


class BotService:
    """Activity → ActivityRouter 브리지"""

    def __init__(
        self,
        router: ActivityRouter,
        store: Optional[ConversationStateStore] = None,
        authorization: Optional[CapabilityProvider] = None,
    ):
        self.router = router
        self.store = store or ConversationStateStore()
        self.authorization = authorization
        self._locks = KeyedLock()

    async def handle(self, context: TurnContext) -> DispatchResult:
        """
        Activity 처리 진입점

        모든 매칭 핸들러가 끝난 뒤(또는 처리 불가 오류 발생 시) 상태를 저장한다.
        reset 요청이 있으면 저장 대신 삭제한다.
        """
        activity = context.activity
        conversation_id = activity.conversation.id if activity.conversation else None

        if not conversation_id:
            logger.warning(
                "Activity without conversation id",
                activity_type=activity.type,
            )
            return DispatchResult()

        async with self._locks.hold(conversation_id):
            record = await self.store.get(conversation_id)
            capabilities = await self._snapshot_capabilities(context)
            state = TurnState(conversation_id, record, capabilities)

            try:
                result = await self.router.dispatch(context, state)
            finally:
                await self._persist(state)

        logger.debug(
            "Activity processed",
            conversation_id=conversation_id,
            activity_type=activity.type,
            handled=result.handled,
            failed=result.failed,
        )
        return result

    async def _snapshot_capabilities(self, context: TurnContext) -> dict[str, bool]:
        """턴당 1회 capability 스냅샷"""
        required = self.router.required_capabilities
        if not required or self.authorization is None:
            return {}

        try:
            return await self.authorization.snapshot(context, required)
        except Exception as e:
            logger.warning("Capability snapshot failed", error=str(e))
            return {capability: False for capability in required}

    async def _persist(self, state: TurnState) -> None:
        if state.is_deleted:
            await self.store.delete(state.conversation_id)
        else:
            await self.store.set(state.conversation_id, state.conversation)
