"""정의를 등록받고 연결마다 세션을 만들어 주는 MCP 서버예요."""

from __future__ import annotations

import asyncio
from typing import Any

from codial_mcp.app.definitions import (
    PromptDefinition,
    ResourceDefinition,
    ResourceTemplateDefinition,
    ToolDefinition,
)
from codial_mcp.app.events import ConnectEvent, DisconnectEvent, SessionClosedEvent, Signal
from codial_mcp.app.registry import CapabilityRegistry
from codial_mcp.app.session import HandshakeError, McpSession, ServerInfo, SessionOptions, SessionState
from codial_mcp.app.settings import Settings
from codial_mcp.app.settings import settings as default_settings
from codial_mcp.transports.base import Listener, Transport
from codial_mcp.transports.sse import SseListener
from codial_mcp.transports.stdio import StdioTransport
from libs.common.errors import ConfigurationError
from libs.common.logging import configure_logging, get_logger, logging_configured
from libs.common.retry import RetryPolicy

logger = get_logger("codial_mcp.server")


class McpServer:
    """MCP 서버예요.

    시작 전에 도구, 리소스, 리소스 템플릿, 프롬프트를 등록하고 `start()`로
    연결을 받아요. 전송 채널 하나를 주면 단일 세션으로, listener를 주면
    연결마다 새 세션을 만드는 멀티 세션으로 동작해요.

    사용법::

        server = McpServer(name="demo", version="1.0.0")
        server.add_tool(ToolDefinition(name="add", execute=add, parameters=PydanticSchema(AddParams)))
        server.connected.subscribe(lambda event: print(event.session.session_id))
        server.run()
    """

    def __init__(
        self,
        *,
        name: str | None = None,
        version: str | None = None,
        instructions: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self._server_info = ServerInfo(
            name=name or self._settings.server_name,
            version=version or self._settings.server_version,
            instructions=instructions,
        )
        self._registry = CapabilityRegistry()
        self._sessions: list[McpSession] = []
        self._listener: Listener | None = None
        self._stopped = asyncio.Event()

        self.connected: Signal[ConnectEvent] = Signal("connected")
        self.disconnected: Signal[DisconnectEvent] = Signal("disconnected")

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def sessions(self) -> list[McpSession]:
        return list(self._sessions)

    # ── 등록 ────────────────────────────────────────────────────────────────

    def add_tool(self, tool: ToolDefinition) -> None:
        self._registry.add_tool(tool)

    def add_resource(self, resource: ResourceDefinition) -> None:
        self._registry.add_resource(resource)

    def add_resource_template(self, template: ResourceTemplateDefinition) -> None:
        self._registry.add_resource_template(template)

    def add_prompt(self, prompt: PromptDefinition) -> None:
        self._registry.add_prompt(prompt)

    # ── 수명 주기 ───────────────────────────────────────────────────────────

    async def start(self, *, transport: Transport | None = None, listener: Listener | None = None) -> None:
        """서버를 시작해요.

        둘 다 주지 않으면 설정의 ``transport_type``에 맞는 전송을 만들어요.
        stdio 전송인데 로깅이 아직 설정되지 않았으면 stderr 로깅을 먼저 설정해요.

        Raises:
            ConfigurationError: ``transport``와 ``listener``를 함께 주면 발생해요.
            HandshakeError: 단일 세션 모드에서 handshake가 실패하면 그대로 전달돼요.
        """
        if transport is not None and listener is not None:
            raise ConfigurationError("transport와 listener 중 하나만 지정해야 해요.")
        if transport is None and listener is None:
            transport, listener = self._default_transport()

        # structlog 기본 로거는 stdout에 써서 stdio 프레임과 섞여요.
        if isinstance(transport, StdioTransport) and not logging_configured():
            configure_logging(self._settings.log_level)
        self._registry.freeze()
        self._stopped.clear()
        if transport is not None:
            await self._start_single(transport)
        else:
            assert listener is not None
            self._listener = listener
            await listener.start(self._accept)
            logger.info("server_listening", server=self._server_info.name, registered=len(self._registry))

    async def stop(self) -> None:
        """새 연결을 더 받지 않아요. 이미 연결된 세션은 그대로 둬요."""
        if self._listener is not None:
            await self._listener.close()
            self._listener = None
        self._stopped.set()
        logger.info("server_stopped", server=self._server_info.name, sessions=len(self._sessions))

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def run(self, **start_kwargs: Any) -> None:
        """로깅을 설정하고 `stop()`이 불릴 때까지 서버를 실행해요."""
        configure_logging(self._settings.log_level)
        asyncio.run(self._serve(**start_kwargs))

    async def _serve(self, **start_kwargs: Any) -> None:
        await self.start(**start_kwargs)
        await self.wait_stopped()

    def _default_transport(self) -> tuple[Transport | None, Listener | None]:
        if self._settings.transport_type == "sse":
            return None, SseListener(
                host=self._settings.host,
                port=self._settings.port,
                sse_endpoint=self._settings.sse_endpoint,
                messages_endpoint=self._settings.messages_endpoint,
            )
        return StdioTransport(line_limit=self._settings.stdio_line_limit_bytes), None

    # ── 세션 관리 ───────────────────────────────────────────────────────────

    def _new_session(self) -> McpSession:
        return McpSession(
            registry=self._registry,
            server_info=self._server_info,
            options=SessionOptions(
                handshake=RetryPolicy(
                    max_attempts=self._settings.handshake_max_attempts,
                    interval_seconds=self._settings.handshake_interval_seconds,
                ),
                ping_interval_seconds=self._settings.ping_interval_seconds,
                request_timeout_seconds=self._settings.request_timeout_seconds,
                completion_page_size=self._settings.completion_page_size,
            ),
        )

    async def _start_single(self, transport: Transport) -> None:
        session = self._new_session()
        await session.connect(transport)
        session.closed.subscribe(self._on_single_session_closed)
        if session.state is SessionState.CLOSED:
            self._stopped.set()
            return
        await self._add_session(session)

    async def _on_single_session_closed(self, event: SessionClosedEvent) -> None:
        await self._remove_session(event.session)
        self._stopped.set()

    async def _accept(self, transport: Transport) -> None:
        session = self._new_session()
        try:
            await session.connect(transport)
        except HandshakeError as exc:
            logger.warning("session_handshake_failed", session_id=session.session_id, error=str(exc))
            return
        session.closed.subscribe(self._on_session_closed)
        # handshake 직후에 연결이 끊겼으면 closed 이벤트를 이미 놓쳤어요.
        if session.state is SessionState.CLOSED:
            return
        await self._add_session(session)

    async def _on_session_closed(self, event: SessionClosedEvent) -> None:
        await self._remove_session(event.session)

    async def _add_session(self, session: McpSession) -> None:
        self._sessions.append(session)
        logger.info("session_added", session_id=session.session_id, active=len(self._sessions))
        await self.connected.emit(ConnectEvent(session=session))

    async def _remove_session(self, session: McpSession) -> None:
        if session not in self._sessions:
            return
        self._sessions.remove(session)
        logger.info("session_removed", session_id=session.session_id, active=len(self._sessions))
        await self.disconnected.emit(DisconnectEvent(session=session))
