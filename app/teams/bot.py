"""Bot Framework 어댑터

주요 기능:
- Bot Framework SDK 래핑 (JWT 검증은 어댑터가 담당)
- Activity 처리 → BotService
- 턴 에러 처리
- 봇 서비스 구성 (라우터, 상태 스토어, 에이전트, 인증)
"""
from typing import Optional

from botbuilder.core import (
    BotFrameworkAdapter,
    BotFrameworkAdapterSettings,
    InvokeResponse,
    TurnContext,
)
from botbuilder.schema import Activity, ActivityTypes

from app.adapters.foundry import FoundryAgentsClient
from app.config import Settings, get_settings
from app.core.service import BotService
from app.core.state import ConversationStateStore
from app.teams.agent import AgentProxy
from app.teams.auth import TokenAuthorization
from app.teams.handlers import GRAPH_CAPABILITY, BotCommands, build_router, enabled_tags
from app.utils.logger import get_logger

logger = get_logger(__name__)


TURN_ERROR_MESSAGE = "Sorry, an error occurred. Please try again later."


def create_agent_proxy(settings: Settings) -> Optional[AgentProxy]:
    """AI 백엔드 활성 시 에이전트 프록시 생성"""
    if not settings.enable_ai_backend:
        return None

    if not settings.ai_backend_configured:
        logger.warning("AI backend enabled but AI_FOUNDRY_ENDPOINT / AI_FOUNDRY_AGENT_ID missing")

    return AgentProxy(
        client_factory=lambda: FoundryAgentsClient(
            endpoint=settings.ai_foundry_endpoint,
            api_version=settings.ai_foundry_api_version,
            client_id=settings.ai_foundry_client_id,
        ),
        agent_id=settings.ai_foundry_agent_id,
        poll_interval_ms=settings.agent_poll_interval_ms,
        max_wait_ms=settings.agent_max_wait_ms or None,
    )


def create_bot_service(
    settings: Settings,
    agent: Optional[AgentProxy] = None,
    store: Optional[ConversationStateStore] = None,
) -> BotService:
    """설정에 따라 바인딩 테이블을 선택해 BotService 구성"""
    authorization: Optional[TokenAuthorization] = None
    if settings.enable_auth_demo:
        authorization = TokenAuthorization({GRAPH_CAPABILITY: settings.graph_connection_name})

    commands = BotCommands(
        agent=agent,
        authorization=authorization,
        model_name=settings.ai_foundry_model_name or None,
    )
    router = build_router(commands, enabled_tags(settings))

    return BotService(router, store=store, authorization=authorization)


class TeamsBot:
    """Bot Framework 어댑터 + BotService"""

    def __init__(
        self,
        service: Optional[BotService] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()

        # Bot Framework 어댑터 설정
        adapter_settings = BotFrameworkAdapterSettings(
            app_id=settings.bot_app_id,
            app_password=settings.bot_app_password,
            channel_auth_tenant=(
                "organizations" if settings.bot_tenant_id == "common"
                else settings.bot_tenant_id
            ),
        )
        self.adapter = BotFrameworkAdapter(adapter_settings)
        self.adapter.on_turn_error = self._on_turn_error

        self.app_id = settings.bot_app_id
        self.agent: Optional[AgentProxy] = None
        if service is None:
            self.agent = create_agent_proxy(settings)
            service = create_bot_service(settings, agent=self.agent)
        self.service = service

    async def _on_turn_error(self, context: TurnContext, error: Exception) -> None:
        """에러 핸들러"""
        logger.error(
            "Bot turn error",
            error=str(error),
            error_type=type(error).__name__,
            conversation_id=context.activity.conversation.id if context.activity.conversation else None,
        )
        # 사용자에게 에러 메시지 전송
        try:
            await context.send_activity(TURN_ERROR_MESSAGE)
        except Exception as e:
            logger.warning("Failed to send turn error message", error=str(e))

    async def process_activity(self, activity: Activity, auth_header: str) -> Optional[InvokeResponse]:
        """채널에서 받은 Activity 처리 (invoke Activity는 InvokeResponse 반환)"""
        return await self.adapter.process_activity(
            activity,
            auth_header,
            self.handle_turn,
        )

    async def handle_turn(self, context: TurnContext) -> None:
        """Turn 핸들러"""
        activity = context.activity

        # 봇 자신의 메시지는 무시
        if activity.type == ActivityTypes.message and activity.from_property and activity.recipient:
            if activity.from_property.id == activity.recipient.id:
                return

        logger.info(
            "Received activity",
            activity_type=activity.type,
            conversation_id=activity.conversation.id if activity.conversation else None,
            text_preview=activity.text[:50] if activity.text else None,
        )

        await self.service.handle(context)

    async def close(self) -> None:
        if self.agent is not None:
            await self.agent.close()


# ===== 싱글톤 인스턴스 =====

_bot_instance: Optional[TeamsBot] = None


def get_teams_bot() -> TeamsBot:
    """TeamsBot 싱글톤 인스턴스 반환"""
    global _bot_instance
    if _bot_instance is None:
        _bot_instance = TeamsBot()
    return _bot_instance


async def shutdown_teams_bot() -> None:
    """싱글톤 정리 (애플리케이션 종료 시)"""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.close()
        _bot_instance = None
