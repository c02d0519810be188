"""Microsoft Graph 클라이언트 (인증 데모용 최소 기능)"""
from typing import Optional

import httpx

from app.utils.logger import get_logger

logger = get_logger(__name__)


GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class GraphClient:
    """Microsoft Graph 호출"""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self._http = http_client
        self._timeout = timeout

    async def get_me(self, token: str) -> dict:
        """로그인 사용자 프로필 조회 (/me)"""
        headers = {"Authorization": f"Bearer {token}"}

        if self._http is not None:
            response = await self._http.get(f"{GRAPH_BASE_URL}/me", headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{GRAPH_BASE_URL}/me", headers=headers)

        response.raise_for_status()
        data = response.json()

        logger.debug("Fetched Graph profile", user_id=data.get("id"))
        return data
