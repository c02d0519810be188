"""Activity 라우터

들어온 Activity를 등록된 (matcher, handler) 바인딩에 매칭해 핸들러 실행
주요 기능:
- 명령어 / 정규식 / 비동기 predicate 매처
- 등록 순서대로 매칭되는 모든 핸들러를 순차 실행 (short-circuit 없음)
- capability 게이팅 (턴 시작 시 스냅샷 기준)
- 매처/핸들러 예외 격리 (로그 + 사용자 안내 후 다음 바인딩 계속)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Union
import inspect
import re

from botbuilder.core import TurnContext
from botbuilder.schema import Activity, ActivityTypes

from app.core.exceptions import BackendUnavailableError
from app.core.state import TurnState
from app.utils.logger import get_logger

logger = get_logger(__name__)


GENERIC_ERROR_MESSAGE = "Sorry, something went wrong while processing your message."

Handler = Callable[[TurnContext, TurnState], Awaitable[None]]
PredicateFn = Callable[[Activity], Union[bool, Awaitable[bool]]]


# ===== 매처 =====

class Matcher(ABC):
    """Activity 매처"""

    @abstractmethod
    async def test(self, activity: Activity) -> bool:
        ...

    def describe(self) -> str:
        return type(self).__name__


class CommandMatcher(Matcher):
    """명령어 매처 (message 텍스트의 첫 토큰 비교, 대소문자 구분)"""

    def __init__(self, command: str):
        if not command or command.split()[0] != command:
            raise ValueError(f"Invalid command: {command!r}")
        self.command = command

    async def test(self, activity: Activity) -> bool:
        if activity.type != ActivityTypes.message:
            return False
        tokens = (activity.text or "").split()
        return bool(tokens) and tokens[0] == self.command

    def describe(self) -> str:
        return f"command:{self.command}"


class RegexMatcher(Matcher):
    """정규식 매처 (type 또는 text 필드, 앵커는 패턴에 명시된 경우만)"""

    FIELDS = ("type", "text")

    def __init__(self, pattern: Union[str, re.Pattern], field_name: str = "type"):
        if field_name not in self.FIELDS:
            raise ValueError(f"Unsupported field: {field_name}")
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self.field_name = field_name

    async def test(self, activity: Activity) -> bool:
        value = getattr(activity, self.field_name, None)
        if value is None:
            return False
        if isinstance(value, Enum):
            value = value.value
        return self.pattern.search(str(value)) is not None

    def describe(self) -> str:
        return f"regex:{self.field_name}:{self.pattern.pattern}"


class PredicateMatcher(Matcher):
    """임의 predicate 매처 (동기/비동기 함수 모두 허용)"""

    def __init__(self, predicate: PredicateFn):
        self.predicate = predicate

    async def test(self, activity: Activity) -> bool:
        result = self.predicate(activity)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    def describe(self) -> str:
        return f"predicate:{getattr(self.predicate, '__name__', 'anonymous')}"


def activity_type(activity: Activity) -> str:
    """Activity type 문자열 (enum으로 생성된 경우 값 사용)"""
    value = activity.type
    return value.value if isinstance(value, Enum) else str(value)


def command_args(activity: Activity) -> list[str]:
    """명령어 뒤의 인자 토큰 반환"""
    tokens = (activity.text or "").split()
    return tokens[1:]


def command_text(activity: Activity) -> str:
    """명령어 뒤의 원문 텍스트 반환 (공백 보존)"""
    text = (activity.text or "").strip()
    parts = text.split(maxsplit=1)
    return parts[1] if len(parts) > 1 else ""


# ===== 바인딩 =====

@dataclass(frozen=True)
class Binding:
    """라우팅 테이블의 한 행"""
    name: str
    matcher: Matcher
    handler: Handler
    required_capabilities: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()


@dataclass
class DispatchResult:
    """dispatch 결과 (실행된 바인딩 이름 목록)"""
    handled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def matched(self) -> list[str]:
        return self.handled + self.failed


class ActivityRouter:
    """순서가 있는 바인딩 목록 기반 Activity 라우터

    바인딩은 시작 시 등록하고 freeze() 이후에는 읽기 전용.
    """

    def __init__(self, bindings: Iterable[Binding] = ()):
        self._bindings: list[Binding] = []
        self._frozen = False
        for binding in bindings:
            self.add(binding)

    # ===== 등록 =====

    def register(
        self,
        matcher: Matcher,
        handler: Handler,
        required_capabilities: Iterable[str] = (),
        name: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> Binding:
        binding = Binding(
            name=name or getattr(handler, "__name__", matcher.describe()),
            matcher=matcher,
            handler=handler,
            required_capabilities=frozenset(required_capabilities),
            tags=frozenset(tags),
        )
        return self.add(binding)

    def add(self, binding: Binding) -> Binding:
        if self._frozen:
            raise RuntimeError("Router is frozen; bindings are read-only after startup")
        self._bindings.append(binding)
        return binding

    def freeze(self) -> "ActivityRouter":
        self._frozen = True
        return self

    @property
    def bindings(self) -> tuple[Binding, ...]:
        return tuple(self._bindings)

    @property
    def required_capabilities(self) -> frozenset[str]:
        """전체 바인딩이 요구하는 capability 합집합"""
        result: set[str] = set()
        for binding in self._bindings:
            result |= binding.required_capabilities
        return frozenset(result)

    # ===== 디스패치 =====

    async def dispatch(self, context: TurnContext, state: TurnState) -> DispatchResult:
        """
        매칭되는 모든 바인딩의 핸들러를 등록 순서대로 순차 실행

        Args:
            context: TurnContext
            state: 턴 상태 (capability 스냅샷 포함)

        Returns:
            DispatchResult
        """
        activity = context.activity
        result = DispatchResult()

        for binding in self._bindings:
            if not self._capabilities_satisfied(binding, state):
                logger.debug(
                    "Binding skipped (capability unsatisfied)",
                    binding=binding.name,
                    required=sorted(binding.required_capabilities),
                )
                result.skipped.append(binding.name)
                continue

            try:
                matched = await binding.matcher.test(activity)
            except Exception as e:
                logger.warning(
                    "Matcher evaluation failed",
                    binding=binding.name,
                    matcher=binding.matcher.describe(),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if not matched:
                continue

            try:
                await binding.handler(context, state)
                result.handled.append(binding.name)
            except Exception as e:
                logger.error(
                    "Handler failed",
                    binding=binding.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    conversation_id=state.conversation_id,
                )
                result.failed.append(binding.name)
                await self._notify_failure(context, binding, e)

        return result

    @staticmethod
    def _capabilities_satisfied(binding: Binding, state: TurnState) -> bool:
        return all(state.capabilities.get(c, False) for c in binding.required_capabilities)

    @staticmethod
    async def _notify_failure(context: TurnContext, binding: Binding, error: Exception) -> None:
        """사용자에게 오류 안내 (best-effort)"""
        message = GENERIC_ERROR_MESSAGE
        if isinstance(error, BackendUnavailableError):
            message = error.user_message

        try:
            await context.send_activity(message)
        except Exception as e:
            logger.warning(
                "Failed to send error message",
                binding=binding.name,
                error=str(e),
            )
