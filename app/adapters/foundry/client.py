"""Azure AI Foundry Agents API 클라이언트

주요 기능:
- 스레드 생성/조회
- 메시지 게시 / 목록 조회
- 실행(run) 생성 / 상태 조회
- Azure AD 토큰 (azure-identity) 캐시

실패 지점마다 사용자 안내 문구를 담은 BackendUnavailableError 발생
"""
from typing import Any, Optional
import time

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError
from azure.identity.aio import DefaultAzureCredential, ManagedIdentityCredential
import httpx

from app.core.exceptions import BackendUnavailableError
from app.utils.logger import get_logger

logger = get_logger(__name__)


TOKEN_SCOPE = "https://ai.azure.com/.default"
# 만료 60초 전 갱신
TOKEN_REFRESH_MARGIN_SECONDS = 60


class FoundryAgentsClient:
    """Azure AI Foundry Agents REST 클라이언트"""

    def __init__(
        self,
        endpoint: str,
        api_version: str = "v1",
        credential: Optional[Any] = None,
        client_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            endpoint: 프로젝트 엔드포인트 (https://<resource>.services.ai.azure.com/api/projects/<project>)
            api_version: api-version 쿼리 파라미터
            credential: azure-identity 비동기 자격 증명 (없으면 생성)
            client_id: 사용자 할당 관리 ID 클라이언트 ID
            http_client: httpx.AsyncClient (테스트 주입용)
            timeout: 요청 타임아웃(초)
        """
        if not endpoint:
            raise BackendUnavailableError(
                "AI Foundry endpoint is not configured",
                user_message="The AI agent is not configured. Please contact your administrator.",
            )

        self.endpoint = endpoint.rstrip("/")
        self.api_version = api_version
        self._credential = credential
        self._owns_credential = credential is None
        self._client_id = client_id
        self._http = http_client
        self._owns_http = http_client is None
        self._timeout = timeout
        self._token: Optional[AccessToken] = None

    # ===== 내부 =====

    @property
    def credential(self) -> Any:
        """자격 증명 (지연 초기화)"""
        if self._credential is None:
            try:
                if self._client_id:
                    self._credential = ManagedIdentityCredential(client_id=self._client_id)
                else:
                    self._credential = DefaultAzureCredential()
            except Exception as e:
                raise BackendUnavailableError(
                    f"Failed to create credential: {e}",
                    user_message="Could not create credentials for the AI agent service.",
                ) from e
        return self._credential

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout)
        return self._http

    async def _get_token(self) -> str:
        now = time.time()
        if self._token and self._token.expires_on - TOKEN_REFRESH_MARGIN_SECONDS > now:
            return self._token.token

        try:
            self._token = await self.credential.get_token(TOKEN_SCOPE)
        except ClientAuthenticationError as e:
            logger.error("Failed to acquire AI Foundry token", error=str(e))
            raise BackendUnavailableError(
                f"Token acquisition failed: {e}",
                user_message="Could not authenticate with the AI agent service.",
            ) from e

        return self._token.token

    async def _request(
        self,
        method: str,
        path: str,
        user_message: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        allow_not_found: bool = False,
    ) -> Optional[dict]:
        token = await self._get_token()
        query = {"api-version": self.api_version}
        if params:
            query.update(params)

        try:
            response = await self.http.request(
                method,
                f"{self.endpoint}{path}",
                json=json,
                params=query,
                headers={"Authorization": f"Bearer {token}"},
            )
            if allow_not_found and response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                "AI Foundry API error",
                method=method,
                path=path,
                status=e.response.status_code,
                body=e.response.text[:200],
            )
            raise BackendUnavailableError(
                f"{method} {path} failed with {e.response.status_code}",
                user_message=user_message,
            ) from e
        except httpx.HTTPError as e:
            logger.error("AI Foundry request failed", method=method, path=path, error=str(e))
            raise BackendUnavailableError(
                f"{method} {path} failed: {e}",
                user_message=user_message,
            ) from e

    # ===== 스레드 =====

    async def create_thread(self) -> dict:
        """새 스레드 생성"""
        data = await self._request(
            "POST",
            "/threads",
            user_message="Could not start a conversation with the AI agent.",
            json={},
        )
        logger.info("Created agent thread", thread_id=data.get("id"))
        return data

    async def get_thread(self, thread_id: str) -> Optional[dict]:
        """스레드 조회 (없으면 None)"""
        return await self._request(
            "GET",
            f"/threads/{thread_id}",
            user_message="Could not load the AI agent conversation.",
            allow_not_found=True,
        )

    # ===== 메시지 =====

    async def post_message(self, thread_id: str, text: str) -> dict:
        """사용자 메시지 게시"""
        return await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            user_message="Could not send your message to the AI agent.",
            json={"role": "user", "content": text},
        )

    async def list_messages(self, thread_id: str, order: str = "desc") -> list[dict]:
        """스레드 메시지 목록 (기본: 최신순)"""
        data = await self._request(
            "GET",
            f"/threads/{thread_id}/messages",
            user_message="Could not read the AI agent response.",
            params={"order": order},
        )
        return data.get("data", [])

    # ===== 실행 =====

    async def create_run(self, thread_id: str, agent_id: str) -> dict:
        """에이전트 실행 생성"""
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            user_message="Could not start the AI agent run.",
            json={"assistant_id": agent_id},
        )

    async def get_run(self, thread_id: str, run_id: str) -> dict:
        """실행 상태 조회"""
        return await self._request(
            "GET",
            f"/threads/{thread_id}/runs/{run_id}",
            user_message="Could not check the AI agent run status.",
        )

    async def cancel_run(self, thread_id: str, run_id: str) -> dict:
        """실행 취소 (활성 실행이 남아 있으면 스레드에 새 메시지를 게시할 수 없음)"""
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/cancel",
            user_message="Could not cancel the AI agent run.",
        )

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        if self._credential is not None and self._owns_credential:
            await self._credential.close()
