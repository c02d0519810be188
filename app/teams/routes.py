"""Bot 메시지 라우트"""
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from botbuilder.schema import Activity

from app.teams.bot import get_teams_bot
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/messages")
async def bot_messages(request: Request) -> Response:
    """Bot 메시지 엔드포인트

    Azure Bot Service에서 들어오는 Activity 처리
    """
    try:
        # 요청 본문 파싱
        body = await request.json()

        if body.get("type") == "message" and body.get("text") == "/diag":
            logger.info(
                "Received /diag request",
                body=body,
                headers={k: v for k, v in request.headers.items() if k.lower() != "authorization"},
            )

        activity = Activity().from_dict(body)

        # Auth 헤더 추출
        auth_header = request.headers.get("Authorization", "")

        bot = get_teams_bot()
        invoke_response = await bot.process_activity(activity, auth_header)

        # invoke Activity는 봇이 정한 상태 코드/본문으로 응답
        if invoke_response:
            if invoke_response.body is None:
                return Response(status_code=invoke_response.status)
            return JSONResponse(content=invoke_response.body, status_code=invoke_response.status)

        return Response(status_code=200)

    except PermissionError as e:
        logger.warning("Unauthorized bot request", error=str(e))
        return Response(status_code=401)
    except Exception as e:
        logger.error("Bot callback error", error=str(e), error_type=type(e).__name__)
        return Response(status_code=500)


@router.post("/callback")
async def bot_callback(request: Request) -> Response:
    """Bot 콜백 엔드포인트 (별칭)"""
    return await bot_messages(request)
