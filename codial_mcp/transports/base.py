"""세션이 의존하는 전송 계층 인터페이스예요.

세션은 `Transport`만 알고, 멀티 세션 서버는 `Listener`만 알아요.
구체 구현(메모리, stdio, SSE)은 같은 패키지의 다른 모듈에 있어요.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol


class MessageDecodeError(Exception):
    """수신한 프레임을 JSON으로 해석하지 못했을 때 발생해요."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"메시지를 해석하지 못했어요: {reason}")
        self.raw = raw
        self.reason = reason


class Transport(Protocol):
    async def start(self) -> None: ...

    async def send(self, message: dict[str, Any]) -> None: ...

    async def receive(self) -> dict[str, Any] | None:
        """다음 메시지를 돌려줘요. 연결이 끝났으면 ``None``이에요."""
        ...

    async def close(self) -> None: ...


ConnectionHandler = Callable[[Transport], Awaitable[None]]


class Listener(Protocol):
    async def start(self, on_connection: ConnectionHandler) -> None: ...

    async def close(self) -> None: ...
