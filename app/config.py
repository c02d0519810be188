"""애플리케이션 설정

환경 변수(.env 포함)에서 로드
"""
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """환경 변수 기반 설정"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # 서버
    port: int = Field(default=3978, validation_alias=AliasChoices("PORT", "port"))
    debug: bool = False
    log_level: str = "INFO"

    # Bot Framework 인증
    bot_app_id: str = Field(
        default="",
        validation_alias=AliasChoices("MicrosoftAppId", "BOT_APP_ID", "bot_app_id"),
    )
    bot_app_password: str = Field(
        default="",
        validation_alias=AliasChoices("MicrosoftAppPassword", "BOT_APP_PASSWORD", "bot_app_password"),
    )
    bot_tenant_id: str = Field(
        default="common",
        validation_alias=AliasChoices("MicrosoftAppTenantId", "BOT_TENANT_ID", "bot_tenant_id"),
    )

    # Azure AI Foundry 에이전트
    ai_foundry_endpoint: str = ""
    ai_foundry_model_name: str = ""
    ai_foundry_agent_id: str = ""
    ai_foundry_client_id: Optional[str] = None
    ai_foundry_api_version: str = "v1"

    # 에이전트 실행 폴링 (0 = 무제한 대기)
    agent_poll_interval_ms: int = 1000
    agent_max_wait_ms: int = 120_000

    # 기능 플래그
    enable_ai_backend: bool = False
    enable_auth_demo: bool = False
    enable_match_demo: bool = True

    # OAuth 연결 (인증 데모)
    graph_connection_name: str = "graph"

    @property
    def ai_backend_configured(self) -> bool:
        """AI 백엔드 필수 값 설정 여부"""
        return bool(self.ai_foundry_endpoint and self.ai_foundry_agent_id)


@lru_cache
def get_settings() -> Settings:
    """Settings 싱글톤"""
    return Settings()
