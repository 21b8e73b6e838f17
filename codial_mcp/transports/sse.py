"""HTTP + Server-Sent Events 전송이에요.

클라이언트는 ``GET <sse_endpoint>``로 이벤트 스트림을 열고, 첫 ``endpoint``
이벤트로 받은 주소에 JSON-RPC 메시지를 ``POST``해요. 서버 메시지는 모두
``message`` 이벤트로 스트림에 실려요.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from collections.abc import AsyncIterator
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import StreamingResponse

from codial_mcp.transports.base import ConnectionHandler
from libs.common.errors import ConfigurationError, NotFoundError, ParseError, TransportClosedError
from libs.common.http_handlers import register_exception_handlers
from libs.common.logging import get_logger
from libs.common.retry import RetryPolicy, poll_until

logger = get_logger("codial_mcp.transports.sse")


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"SSE 세션을 찾지 못했어요: {session_id}")
        self.session_id = session_id


def format_event(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


class SseServerTransport:
    """SSE 스트림 하나에 대응하는 서버 쪽 전송이에요.

    POST로 들어온 메시지는 `feed()`로 inbound 큐에, 세션이 보낸 메시지는
    outbound 큐에 쌓였다가 `events()` 제너레이터가 프레임으로 내보내요.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._inbound: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._outbound: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        return None

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise TransportClosedError()
        self._outbound.put_nowait(message)

    async def receive(self) -> dict[str, Any] | None:
        if self._closed and self._inbound.empty():
            return None
        return await self._inbound.get()

    def feed(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise TransportClosedError()
        self._inbound.put_nowait(message)

    async def events(self, endpoint_url: str) -> AsyncIterator[str]:
        yield format_event("endpoint", endpoint_url)
        while True:
            message = await self._outbound.get()
            if message is None:
                return
            yield format_event("message", json.dumps(message, ensure_ascii=False))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._inbound.put_nowait(None)
        self._outbound.put_nowait(None)


class SseListener:
    """FastAPI 앱을 uvicorn으로 띄워 SSE 연결을 받는 listener예요.

    `close()` 뒤에는 새 스트림을 받지 않아요. 열려 있는 스트림이 모두 끝나면
    HTTP 서버도 내려가요. 다른 ASGI 서버에 `app`을 직접 마운트하려면
    `start()` 대신 `bind()`로 연결 핸들러만 붙이면 돼요.
    """

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        port: int = 8080,
        sse_endpoint: str = "/sse",
        messages_endpoint: str = "/messages",
        startup_policy: RetryPolicy | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._sse_endpoint = sse_endpoint
        self._messages_endpoint = messages_endpoint
        self._startup_policy = startup_policy or RetryPolicy(max_attempts=50, interval_seconds=0.1)
        self._transports: dict[str, SseServerTransport] = {}
        self._on_connection: ConnectionHandler | None = None
        self._connection_tasks: set[asyncio.Task[None]] = set()
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._closing = False
        self.app = self._build_app()

    @property
    def transports(self) -> dict[str, SseServerTransport]:
        return dict(self._transports)

    def bind(self, on_connection: ConnectionHandler) -> None:
        self._on_connection = on_connection
        self._closing = False

    async def start(self, on_connection: ConnectionHandler) -> None:
        """연결 핸들러를 붙이고 uvicorn 서버가 뜰 때까지 기다려요.

        Raises:
            ConfigurationError: 제한 시간 안에 서버가 뜨지 않으면 발생해요.
        """
        self.bind(on_connection)
        config = uvicorn.Config(self.app, host=self._host, port=self._port, lifespan="off", log_config=None)
        server = uvicorn.Server(config)
        self._server = server
        serve_task = asyncio.create_task(server.serve())
        self._serve_task = serve_task

        await poll_until(lambda: server.started or serve_task.done(), policy=self._startup_policy)
        if not server.started:
            await self._shutdown_http()
            raise ConfigurationError(f"SSE 서버를 시작하지 못했어요: {self._host}:{self._port}")
        logger.info(
            "sse_listener_started",
            host=self._host,
            port=self._port,
            sse_endpoint=self._sse_endpoint,
            messages_endpoint=self._messages_endpoint,
        )

    async def close(self) -> None:
        self._on_connection = None
        self._closing = True
        logger.info("sse_listener_closing", open_streams=len(self._transports))
        if not self._transports:
            await self._shutdown_http()

    def open_transport(self) -> SseServerTransport:
        """새 SSE 세션용 전송을 만들고 연결 핸들러를 실행해요."""
        if self._on_connection is None:
            raise TransportClosedError("listener가 연결을 받고 있지 않아요.")
        transport = SseServerTransport(uuid.uuid4().hex)
        self._transports[transport.session_id] = transport
        task = asyncio.create_task(self._on_connection(transport))
        self._connection_tasks.add(task)
        task.add_done_callback(self._connection_tasks.discard)
        logger.info("sse_stream_opened", session_id=transport.session_id)
        return transport

    async def _stream(self, transport: SseServerTransport, endpoint_url: str) -> AsyncIterator[str]:
        try:
            async for frame in transport.events(endpoint_url):
                yield frame
        finally:
            self._transports.pop(transport.session_id, None)
            await transport.close()
            logger.info("sse_stream_closed", session_id=transport.session_id)
            if self._closing and not self._transports and self._server is not None:
                # 요청 처리 task 안이라서 서버 종료를 기다리지 않고 신호만 보내요.
                self._server.should_exit = True

    async def _shutdown_http(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._serve_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._serve_task
        self._server = None
        self._serve_task = None

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="codial-mcp")
        register_exception_handlers(app, "codial_mcp.transports.sse")

        @app.get(self._sse_endpoint)
        async def open_stream() -> StreamingResponse:
            transport = self.open_transport()
            endpoint_url = f"{self._messages_endpoint}?sessionId={transport.session_id}"
            return StreamingResponse(
                self._stream(transport, endpoint_url),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache"},
            )

        @app.post(self._messages_endpoint, status_code=202)
        async def post_message(request: Request, session_id: str = Query(alias="sessionId")) -> Response:
            transport = self._transports.get(session_id)
            if transport is None:
                raise SessionNotFoundError(session_id)
            body = await request.body()
            try:
                message = json.loads(body)
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise ParseError(f"Parse error: {exc}") from exc
            transport.feed(message)
            return Response(status_code=202)

        return app
