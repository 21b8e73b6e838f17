from __future__ import annotations

import asyncio
import contextlib
import itertools
import time
from collections.abc import Callable
from typing import Any

from codial_mcp.app.mcp_protocol import (
    MCP_PROTOCOL_VERSION,
    build_error,
    build_notification,
    build_request,
    build_result,
)
from codial_mcp.app.registry import CapabilityRegistry
from codial_mcp.app.session import McpSession, ServerInfo, SessionOptions
from codial_mcp.transports.memory import MemoryTransport
from libs.common.errors import McpError, MethodNotFoundError
from libs.common.retry import RetryPolicy


def fast_options(**overrides: Any) -> SessionOptions:
    """테스트용으로 대기 간격을 짧게 줄이고 ping을 끈 세션 옵션이에요."""
    values: dict[str, Any] = {
        "handshake": RetryPolicy(max_attempts=100, interval_seconds=0.01),
        "ping_interval_seconds": 0,
        "request_timeout_seconds": 1.0,
    }
    values.update(overrides)
    return SessionOptions(**values)


async def wait_until(predicate: Callable[[], bool], *, timeout_seconds: float = 2.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("조건이 시간 안에 충족되지 않았어요.")


class McpTestClient:
    """메모리 전송 위에서 동작하는 최소한의 MCP 클라이언트예요.

    서버가 보내는 ``roots/list``와 ``ping`` 요청에 자동으로 응답하고,
    받은 메시지를 순서대로 `messages`에 기록해요.
    """

    def __init__(
        self,
        transport: MemoryTransport,
        *,
        roots: list[dict[str, Any]] | None = None,
        capabilities: dict[str, Any] | None = None,
        answer_pings: bool = True,
        auto_answer: bool = True,
    ) -> None:
        self.transport = transport
        self.roots = roots
        if capabilities is None:
            capabilities = {"roots": {"listChanged": True}} if roots is not None else {}
        self.capabilities = capabilities
        self.answer_pings = answer_pings
        self.auto_answer = auto_answer
        self.messages: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.server_requests: list[dict[str, Any]] = []
        self.disconnected = False
        self._ids = itertools.count(1)
        self._pending: dict[Any, asyncio.Future[dict[str, Any]]] = {}
        self._reader: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._reader = asyncio.create_task(self._read_loop())

    async def initialize(self, *, protocol_version: str = MCP_PROTOCOL_VERSION) -> dict[str, Any]:
        result = await self.request(
            "initialize",
            {
                "protocolVersion": protocol_version,
                "capabilities": self.capabilities,
                "clientInfo": {"name": "test-client", "version": "1.0.0"},
            },
        )
        await self.notify("notifications/initialized")
        return result

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.request_raw(method, params)
        if "error" in response:
            raise McpError.from_error_object(response["error"])
        return response["result"]

    async def request_raw(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_seconds: float = 2.0,
    ) -> dict[str, Any]:
        request_id = next(self._ids)
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        await self.transport.send(build_request(request_id, method, params))
        return await asyncio.wait_for(future, timeout=timeout_seconds)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        await self.transport.send(build_notification(method, params))

    def messages_for(self, method: str) -> list[dict[str, Any]]:
        return [message for message in self.notifications if message["method"] == method]

    def index_of_response(self, request_id: Any) -> int:
        return next(
            index
            for index, message in enumerate(self.messages)
            if "method" not in message and message.get("id") == request_id
        )

    async def close(self) -> None:
        await self.transport.close()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

    async def _read_loop(self) -> None:
        while True:
            message = await self.transport.receive()
            if message is None:
                self.disconnected = True
                return
            self.messages.append(message)
            if "method" in message:
                if "id" in message:
                    self.server_requests.append(message)
                    if self.auto_answer:
                        await self._answer(message)
                else:
                    self.notifications.append(message)
                continue
            future = self._pending.pop(message.get("id"), None)
            if future is not None and not future.done():
                future.set_result(message)

    async def _answer(self, message: dict[str, Any]) -> None:
        method = message["method"]
        if method == "roots/list" and self.roots is not None:
            response = build_result(message["id"], {"roots": self.roots})
        elif method == "ping" and self.answer_pings:
            response = build_result(message["id"], {})
        else:
            response = build_error(message["id"], MethodNotFoundError(f"Method not found: {method}"))
        with contextlib.suppress(Exception):
            await self.transport.send(response)


async def open_client(
    registry: CapabilityRegistry,
    *,
    options: SessionOptions | None = None,
    instructions: str | None = None,
    **client_kwargs: Any,
) -> tuple[McpSession, McpTestClient]:
    """세션과 테스트 클라이언트를 연결하고 handshake까지 마친 상태로 돌려줘요."""
    client_transport, server_transport = MemoryTransport.create_pair()
    client = McpTestClient(client_transport, **client_kwargs)
    await client.start()
    session = McpSession(
        registry=registry,
        server_info=ServerInfo(name="test-server", version="1.0.0", instructions=instructions),
        options=options or fast_options(),
    )
    connecting = asyncio.create_task(session.connect(server_transport))
    await client.initialize()
    await connecting
    return session, client
