"""명령어 핸들러 및 바인딩 테이블

하나의 바인딩 테이블을 등록 순서대로 정의하고
기능 플래그(태그)로 사용할 부분 집합을 선택한다.

태그:
- core: 기본 명령어 (/reset, /count, /diag, /state, /runtime, /base64url, 환영 메시지)
- echo: 메시지 카운트 + 에코 (AI 백엔드 비활성 시)
- ai: 메시지 카운트 + 에이전트 프록시 (AI 백엔드 활성 시)
- auth: 로그인/로그아웃 (Teams signin/verifyState invoke 포함), Graph /me
- match-demo: 정규식 / predicate 매칭 데모
"""
from importlib import metadata
from typing import Optional
import base64
import json
import platform

from botbuilder.core import InvokeResponse, TurnContext
from botbuilder.schema import Activity, ActivityTypes
import httpx

from app.adapters.graph import GraphClient
from app.config import Settings
from app.core.exceptions import JobProtocolError
from app.core.jobs import JobOutcome
from app.core.router import (
    ActivityRouter,
    Binding,
    CommandMatcher,
    PredicateMatcher,
    RegexMatcher,
    activity_type,
    command_args,
    command_text,
)
from app.core.state import TurnState
from app.teams.agent import AgentProxy
from app.teams.auth import TokenAuthorization
from app.teams.cards import build_agent_answer_card, build_sign_in_card, card_attachment
from app.utils.logger import get_logger

logger = get_logger(__name__)


GRAPH_CAPABILITY = "graph"
SIGN_IN_VERIFY_STATE = "signin/verifyState"

TAG_CORE = "core"
TAG_ECHO = "echo"
TAG_AI = "ai"
TAG_AUTH = "auth"
TAG_MATCH_DEMO = "match-demo"


def sdk_version() -> str:
    """botbuilder-core 패키지 버전"""
    try:
        return metadata.version("botbuilder-core")
    except metadata.PackageNotFoundError:
        return "unknown"


def is_message(activity: Activity) -> bool:
    return activity.type == ActivityTypes.message


async def is_message_async(activity: Activity) -> bool:
    return activity.type == ActivityTypes.message


def is_sign_in_verify_state(activity: Activity) -> bool:
    """Teams 로그인 완료 invoke"""
    return activity.type == ActivityTypes.invoke and activity.name == SIGN_IN_VERIFY_STATE


class BotCommands:
    """바인딩 핸들러 모음"""

    def __init__(
        self,
        agent: Optional[AgentProxy] = None,
        authorization: Optional[TokenAuthorization] = None,
        graph: Optional[GraphClient] = None,
        model_name: Optional[str] = None,
    ):
        self.agent = agent
        self.authorization = authorization
        self.graph = graph or GraphClient()
        self.model_name = model_name

    # ===== core =====

    async def on_reset(self, context: TurnContext, state: TurnState) -> None:
        state.delete_conversation_state()
        await context.send_activity("Ok I've deleted the current conversation state.")

    async def on_count(self, context: TurnContext, state: TurnState) -> None:
        await context.send_activity(f"The count is {state.conversation.count}")

    async def on_diag(self, context: TurnContext, state: TurnState) -> None:
        activity = context.activity.serialize()
        logger.info("Received /diag request", activity=activity)
        await context.send_activity(json.dumps(activity, ensure_ascii=False, default=str))

    async def on_state(self, context: TurnContext, state: TurnState) -> None:
        await context.send_activity(json.dumps(state.to_dict(), ensure_ascii=False))

    async def on_runtime(self, context: TurnContext, state: TurnState) -> None:
        runtime = {
            "pythonversion": platform.python_version(),
            "sdkversion": sdk_version(),
        }
        await context.send_activity(json.dumps(runtime))

    async def on_base64url(self, context: TurnContext, state: TurnState) -> None:
        text = command_text(context.activity)
        if not text:
            await context.send_activity("Usage: /base64url <text>")
            return

        encoded = base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")
        await context.send_activity(encoded)

    async def on_members_added(self, context: TurnContext, state: TurnState) -> None:
        """새 멤버 환영 메시지 (봇 자신 제외)"""
        activity = context.activity

        for member in activity.members_added or []:
            if activity.recipient and member.id == activity.recipient.id:
                continue

            logger.info(
                "New member added to conversation",
                member_id=member.id,
                member_name=member.name,
                conversation_id=state.conversation_id,
            )
            await context.send_activity(
                f"Hello from the Agent Bot running Bot Framework SDK version: {sdk_version()}"
            )

    # ===== echo / ai =====

    async def on_message(self, context: TurnContext, state: TurnState) -> None:
        """메시지 카운트 증가 후 에코"""
        state.conversation.count += 1
        await context.send_activity(
            f"[{state.conversation.count}] you said: {context.activity.text}"
        )

    async def on_agent_message(self, context: TurnContext, state: TurnState) -> None:
        """메시지 카운트 증가 후 일반 텍스트를 에이전트로 전달"""
        state.conversation.count += 1

        text = (context.activity.text or "").strip()
        if not text or text.startswith("/"):
            return

        if self.agent is None:
            await context.send_activity("The AI agent is not enabled.")
            return

        await context.send_activity(Activity(type=ActivityTypes.typing))

        try:
            result = await self.agent.ask(state.conversation, text)
        except JobProtocolError as e:
            logger.error(
                "Agent run protocol violation",
                job_id=e.job_id,
                status=e.status,
                error=str(e),
            )
            await context.send_activity(
                f"The AI agent returned an unexpected response (status: {e.status or 'unknown'})."
            )
            return

        if result.outcome is JobOutcome.COMPLETED:
            card = build_agent_answer_card(result.payload, model_name=self.model_name)
            await context.send_activity(
                Activity(type=ActivityTypes.message, attachments=[card_attachment(card)])
            )
        elif result.outcome is JobOutcome.FAILED:
            await context.send_activity(
                f"The AI agent run ended with status: {result.raw_status}"
            )
        else:
            await context.send_activity(
                "The AI agent did not respond in time. Please try again."
            )

    # ===== auth =====

    async def on_sign_in(self, context: TurnContext, state: TurnState) -> None:
        """로그인 (인자로 매직 코드 전달 가능)"""
        args = command_args(context.activity)
        magic_code = args[0] if args else None

        token = await self.authorization.get_token(context, GRAPH_CAPABILITY, magic_code)
        if token:
            await context.send_activity("You are signed in. Try /me.")
            return

        link = await self.authorization.get_sign_in_link(context, GRAPH_CAPABILITY)
        card = build_sign_in_card(link, self.authorization.connection_name(GRAPH_CAPABILITY))
        await context.send_activity(
            Activity(type=ActivityTypes.message, attachments=[card_attachment(card)])
        )

    async def on_sign_in_verify_state(self, context: TurnContext, state: TurnState) -> None:
        """Teams 로그인 팝업 완료 (value.state = 매직 코드)

        토큰을 얻으면 200, 아니면 404 invoke 응답
        """
        value = context.activity.value or {}
        magic_code = value.get("state") if isinstance(value, dict) else None

        token = await self.authorization.get_token(context, GRAPH_CAPABILITY, magic_code)
        await context.send_activity(
            Activity(
                type=ActivityTypes.invoke_response,
                value=InvokeResponse(status=200 if token else 404),
            )
        )

        if token:
            await context.send_activity("You are signed in. Try /me.")
        else:
            logger.warning("Sign-in verification failed", conversation_id=state.conversation_id)

    async def on_sign_out(self, context: TurnContext, state: TurnState) -> None:
        await self.authorization.sign_out(context, GRAPH_CAPABILITY)
        await context.send_activity("You have been signed out.")

    async def on_me(self, context: TurnContext, state: TurnState) -> None:
        """Graph /me 조회 (graph capability 필요)"""
        token = await self.authorization.get_token(context, GRAPH_CAPABILITY)
        if not token:
            await context.send_activity("Please sign in first with /signin.")
            return

        try:
            profile = await self.graph.get_me(token)
        except httpx.HTTPError as e:
            logger.warning("Graph /me request failed", error=str(e))
            await context.send_activity("Could not read your profile from Microsoft Graph.")
            return

        await context.send_activity(
            f"You are signed in as {profile.get('displayName')} ({profile.get('userPrincipalName')})"
        )

    # ===== match-demo =====

    async def on_regex_match(self, context: TurnContext, state: TurnState) -> None:
        await context.send_activity(f"Matched with regex: {activity_type(context.activity)}")

    async def on_predicate_match(self, context: TurnContext, state: TurnState) -> None:
        await context.send_activity(f"Matched function: {activity_type(context.activity)}")

    # ===== 테이블 =====

    def binding_table(self) -> list[Binding]:
        """전체 바인딩 (등록 순서)"""
        return [
            Binding("reset", CommandMatcher("/reset"), self.on_reset, tags=frozenset({TAG_CORE})),
            Binding("count", CommandMatcher("/count"), self.on_count, tags=frozenset({TAG_CORE})),
            Binding("diag", CommandMatcher("/diag"), self.on_diag, tags=frozenset({TAG_CORE})),
            Binding("state", CommandMatcher("/state"), self.on_state, tags=frozenset({TAG_CORE})),
            Binding("runtime", CommandMatcher("/runtime"), self.on_runtime, tags=frozenset({TAG_CORE})),
            Binding("base64url", CommandMatcher("/base64url"), self.on_base64url, tags=frozenset({TAG_CORE})),
            Binding(
                "welcome",
                RegexMatcher(r"^conversationUpdate$", "type"),
                self.on_members_added,
                tags=frozenset({TAG_CORE}),
            ),
            Binding("signin", CommandMatcher("/signin"), self.on_sign_in, tags=frozenset({TAG_AUTH})),
            Binding(
                "verifystate",
                PredicateMatcher(is_sign_in_verify_state),
                self.on_sign_in_verify_state,
                tags=frozenset({TAG_AUTH}),
            ),
            Binding("signout", CommandMatcher("/signout"), self.on_sign_out, tags=frozenset({TAG_AUTH})),
            Binding(
                "me",
                CommandMatcher("/me"),
                self.on_me,
                required_capabilities=frozenset({GRAPH_CAPABILITY}),
                tags=frozenset({TAG_AUTH}),
            ),
            Binding("echo", PredicateMatcher(is_message), self.on_message, tags=frozenset({TAG_ECHO})),
            Binding("agent", PredicateMatcher(is_message), self.on_agent_message, tags=frozenset({TAG_AI})),
            Binding("regex", RegexMatcher(r"^message", "type"), self.on_regex_match, tags=frozenset({TAG_MATCH_DEMO})),
            Binding(
                "predicate",
                PredicateMatcher(is_message_async),
                self.on_predicate_match,
                tags=frozenset({TAG_MATCH_DEMO}),
            ),
        ]


def enabled_tags(settings: Settings) -> set[str]:
    """설정의 기능 플래그 → 활성 태그"""
    tags = {TAG_CORE}
    tags.add(TAG_AI if settings.enable_ai_backend else TAG_ECHO)
    if settings.enable_auth_demo:
        tags.add(TAG_AUTH)
    if settings.enable_match_demo:
        tags.add(TAG_MATCH_DEMO)
    return tags


def build_router(commands: BotCommands, tags: set[str]) -> ActivityRouter:
    """활성 태그에 해당하는 바인딩만 등록한 라우터 (읽기 전용)"""
    router = ActivityRouter(
        binding for binding in commands.binding_table() if binding.tags & tags
    )
    logger.info(
        "Activity router built",
        bindings=[binding.name for binding in router.bindings],
        tags=sorted(tags),
    )
    return router.freeze()
