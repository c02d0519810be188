"""FastAPI 애플리케이션 진입점

- POST /api/messages : Bot Framework Activity 수신
- GET  /            : 헬스 체크 (텍스트)
- GET  /health      : 헬스 체크 (JSON)
"""
from contextlib import asynccontextmanager
import sys

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
import uvicorn

from app import __version__
from app.config import get_settings
from app.teams.bot import shutdown_teams_bot
from app.teams.routes import router as teams_router
from app.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.debug)
    logger.info(
        "Agent bot starting",
        port=settings.port,
        app_id=settings.bot_app_id,
        ai_backend=settings.enable_ai_backend,
        auth_demo=settings.enable_auth_demo,
        debug=settings.debug,
    )
    yield

    await shutdown_teams_bot()
    logger.info("Agent bot stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Agent Bot", version=__version__, lifespan=lifespan)
    app.include_router(teams_router, prefix="/api")

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Agent Bot Service is running."

    @app.get("/health")
    async def health() -> dict:
        settings = get_settings()
        return {
            "status": "ok",
            "version": __version__,
            "ai_backend": settings.enable_ai_backend,
            "ai_backend_configured": settings.ai_backend_configured,
            "auth_demo": settings.enable_auth_demo,
        }

    return app


app = create_app()


def run() -> None:
    """uvicorn 실행 (포트 바인딩 실패 시 종료 코드 1)"""
    settings = get_settings()
    configure_logging(settings.log_level, settings.debug)

    try:
        uvicorn.run(
            "app.main:app",
            host="0.0.0.0",
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except OSError as e:
        logger.error("Failed to start server", port=settings.port, error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    run()
