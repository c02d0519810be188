"""사용자 토큰 기반 capability 관리

Bot Framework 어댑터의 사용자 토큰 API 래핑
- capability 이름 → OAuth 연결 이름 매핑
- 토큰 조회 / 교환 / 로그아웃
- 턴당 1회 capability 스냅샷

토큰이 없으면 capability 미충족으로 간주하며 재시도하지 않는다.
"""
from typing import Iterable, Optional

from botbuilder.core import TurnContext
from botframework.connector.token_api.models import TokenExchangeRequest

from app.utils.logger import get_logger

logger = get_logger(__name__)


class TokenAuthorization:
    """capability별 사용자 토큰 협력자"""

    def __init__(self, connections: dict[str, str]):
        """
        Args:
            connections: capability 이름 → OAuth 연결 이름
        """
        self.connections = dict(connections)

    def connection_name(self, capability: str) -> str:
        try:
            return self.connections[capability]
        except KeyError:
            raise ValueError(f"Unknown capability: {capability}") from None

    async def get_token(
        self,
        context: TurnContext,
        capability: str,
        magic_code: Optional[str] = None,
    ) -> Optional[str]:
        """사용자 토큰 조회 (없거나 실패하면 None)"""
        connection_name = self.connection_name(capability)
        try:
            response = await context.adapter.get_user_token(
                context,
                connection_name,
                magic_code,
            )
        except Exception as e:
            logger.warning(
                "Failed to get user token",
                capability=capability,
                connection_name=connection_name,
                error=str(e),
            )
            return None

        if response is None or not response.token:
            return None
        return response.token

    async def exchange_token(
        self,
        context: TurnContext,
        capability: str,
        scopes: Iterable[str],
    ) -> Optional[str]:
        """지정 scope로 토큰 교환 (실패하면 None)"""
        connection_name = self.connection_name(capability)
        user_id = context.activity.from_property.id if context.activity.from_property else None

        try:
            response = await context.adapter.exchange_token(
                context,
                connection_name,
                user_id,
                TokenExchangeRequest(uri=" ".join(scopes)),
            )
        except Exception as e:
            logger.warning(
                "Failed to exchange token",
                capability=capability,
                connection_name=connection_name,
                error=str(e),
            )
            return None

        if response is None or not response.token:
            return None
        return response.token

    async def get_sign_in_link(self, context: TurnContext, capability: str) -> str:
        return await context.adapter.get_oauth_sign_in_link(
            context,
            self.connection_name(capability),
        )

    async def sign_out(self, context: TurnContext, capability: str) -> None:
        await context.adapter.sign_out_user(context, self.connection_name(capability))
        logger.info("User signed out", capability=capability)

    async def snapshot(
        self,
        context: TurnContext,
        capabilities: Iterable[str],
    ) -> dict[str, bool]:
        """capability별 충족 여부"""
        result: dict[str, bool] = {}
        for capability in capabilities:
            if capability not in self.connections:
                result[capability] = False
                continue
            token = await self.get_token(context, capability)
            result[capability] = token is not None
        return result
