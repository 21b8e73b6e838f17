"""세션과 서버가 발행하는 이벤트와 구독 인터페이스예요."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar, Union

from codial_mcp.app.mcp_protocol import Root
from codial_mcp.app.utils import maybe_await
from libs.common.logging import get_logger

if TYPE_CHECKING:
    from codial_mcp.app.session import McpSession

logger = get_logger("codial_mcp.events")

E = TypeVar("E")
Handler = Callable[[E], Union[Awaitable[None], None]]


class Signal(Generic[E]):
    """구독한 핸들러 모두에게 이벤트를 등록 순서대로 전달해요.

    핸들러는 동기 함수여도, 코루틴 함수여도 돼요. 핸들러가 예외를 던져도
    로그만 남기고 나머지 핸들러에게 계속 전달해요.

    사용법::

        unsubscribe = server.connected.subscribe(lambda event: print(event.session))
        ...
        unsubscribe()
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler[E]] = []

    def subscribe(self, handler: Handler[E]) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def emit(self, event: E) -> None:
        for handler in list(self._handlers):
            try:
                await maybe_await(handler(event))
            except Exception as exc:
                logger.exception("event_handler_failed", signal=self.name, error=str(exc))


@dataclass(slots=True, frozen=True)
class ConnectEvent:
    session: McpSession


@dataclass(slots=True, frozen=True)
class DisconnectEvent:
    session: McpSession


@dataclass(slots=True, frozen=True)
class SessionClosedEvent:
    session: McpSession


@dataclass(slots=True, frozen=True)
class RootsChangedEvent:
    roots: list[Root]


@dataclass(slots=True, frozen=True)
class SessionErrorEvent:
    error: BaseException
