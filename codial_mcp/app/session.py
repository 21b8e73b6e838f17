"""연결 하나를 관리하는 MCP 세션 상태 머신이에요.

상태는 ``DISCONNECTED → HANDSHAKING → ACTIVE → CLOSED`` 순서로만 바뀌어요.

세션은 전송 채널 위에서 세 개의 백그라운드 작업을 돌려요.

- reader: 메시지를 읽어 요청마다 별도 task로 처리해요. 요청끼리 서로 막지 않아요.
- writer: outbox에 쌓인 메시지를 순서대로 전송해요. 도구 실행 중 보낸 알림은
  항상 그 호출의 응답보다 먼저 나가요.
- ping: 일정 간격으로 클라이언트에 ``ping``을 보내요. 실패해도 세션은 유지돼요.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import itertools
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from codial_mcp.app.completion import complete_argument
from codial_mcp.app.content import error_result, normalize_resource_payloads, normalize_tool_result
from codial_mcp.app.definitions import ArgumentSpec
from codial_mcp.app.events import RootsChangedEvent, SessionClosedEvent, SessionErrorEvent, Signal
from codial_mcp.app.mcp_protocol import (
    MCP_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolParams,
    CompleteParams,
    GetPromptParams,
    InitializeParams,
    ListRootsResult,
    LoggingLevel,
    PromptReference,
    ReadResourceParams,
    RequestId,
    Root,
    SetLevelParams,
    build_error,
    build_notification,
    build_request,
    build_result,
    parse_params,
)
from codial_mcp.app.registry import CapabilityRegistry
from codial_mcp.app.tool_context import ToolContext, ToolLogger
from codial_mcp.app.utils import drop_none, maybe_await
from codial_mcp.transports.base import MessageDecodeError, Transport
from libs.common.errors import (
    JSONRPC_VERSION,
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    McpError,
    MethodNotFoundError,
    ParseError,
    RequestTimeoutError,
    TransportClosedError,
    UserError,
)
from libs.common.logging import get_logger
from libs.common.retry import RetryPolicy, SleepFunc, poll_until

logger = get_logger("codial_mcp.session")

RequestHandler = Callable[[Any], Awaitable[dict[str, Any]]]

_FLUSH_TIMEOUT_SECONDS = 1.0


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSED = "closed"


class SessionStateError(RuntimeError):
    """현재 상태에서 허용되지 않는 전이를 요청하면 발생해요."""


class HandshakeError(RuntimeError):
    """클라이언트와 capability 교환을 끝내지 못했을 때 발생해요."""


@dataclass(slots=True, frozen=True)
class ServerInfo:
    name: str
    version: str
    instructions: str | None = None


@dataclass(slots=True, frozen=True)
class SessionOptions:
    handshake: RetryPolicy = field(default_factory=RetryPolicy)
    ping_interval_seconds: float = 1.0
    request_timeout_seconds: float = 10.0
    completion_page_size: int = 100
    sleep: SleepFunc = field(default=asyncio.sleep)


class McpSession:
    def __init__(
        self,
        *,
        registry: CapabilityRegistry,
        server_info: ServerInfo,
        options: SessionOptions | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self._registry = registry
        self._server_info = server_info
        self._options = options or SessionOptions()
        self._state = SessionState.DISCONNECTED
        self._transport: Transport | None = None
        self._client_capabilities: dict[str, Any] | None = None
        self._client_info: dict[str, Any] | None = None
        self._protocol_version: str | None = None
        self._logging_level: LoggingLevel = "info"
        self._roots: list[Root] = []
        self._request_ids = itertools.count(1)
        self._pending: dict[RequestId, asyncio.Future[Any]] = {}
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._ping_task: asyncio.Task[None] | None = None
        # 클라이언트 연결이 끊겨도 실행 중인 요청은 취소하지 않아요.
        self._inflight: set[asyncio.Task[None]] = set()

        self.roots_changed: Signal[RootsChangedEvent] = Signal("roots_changed")
        self.errors: Signal[SessionErrorEvent] = Signal("session_error")
        self.closed: Signal[SessionClosedEvent] = Signal("session_closed")

        self._handlers: dict[str, RequestHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "resources/list": self._handle_list_resources,
            "resources/read": self._handle_read_resource,
            "resources/templates/list": self._handle_list_resource_templates,
            "prompts/list": self._handle_list_prompts,
            "prompts/get": self._handle_get_prompt,
            "completion/complete": self._handle_complete,
            "logging/setLevel": self._handle_set_level,
        }

    # ── 상태 조회 ───────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def client_capabilities(self) -> dict[str, Any] | None:
        return self._client_capabilities

    @property
    def client_info(self) -> dict[str, Any] | None:
        return self._client_info

    @property
    def protocol_version(self) -> str | None:
        return self._protocol_version

    @property
    def logging_level(self) -> LoggingLevel:
        return self._logging_level

    @property
    def roots(self) -> list[Root]:
        return list(self._roots)

    # ── 수명 주기 ───────────────────────────────────────────────────────────

    async def connect(self, transport: Transport) -> None:
        """전송 채널을 붙이고 handshake를 마칠 때까지 기다려요.

        Raises:
            SessionStateError: 이미 연결을 시도한 세션이면 발생해요.
            HandshakeError: 제한 안에 클라이언트 capability가 도착하지 않으면 발생해요.
        """
        if self._state is not SessionState.DISCONNECTED:
            raise SessionStateError(f"이미 연결된 세션이에요: {self.session_id} ({self._state.value})")

        self._state = SessionState.HANDSHAKING
        self._transport = transport
        try:
            await transport.start()
        except Exception:
            self._state = SessionState.CLOSED
            raise
        self._writer_task = asyncio.create_task(self._write_loop())
        self._reader_task = asyncio.create_task(self._read_loop())

        received = await poll_until(
            lambda: self._client_capabilities is not None or self._state is SessionState.CLOSED,
            policy=self._options.handshake,
        )
        if self._state is SessionState.CLOSED:
            raise HandshakeError("handshake 도중 연결이 끊겼어요.")
        if not received or self._client_capabilities is None:
            logger.warning(
                "handshake_timeout",
                session_id=self.session_id,
                attempts=self._options.handshake.max_attempts,
            )
            await self.close()
            raise HandshakeError("클라이언트 capability를 받지 못해서 연결을 닫았어요.")

        if self._client_capabilities.get("roots") is not None:
            try:
                await self._refresh_roots()
            except (McpError, TransportClosedError) as exc:
                logger.warning("roots_fetch_failed", session_id=self.session_id, error=str(exc))
                await self.errors.emit(SessionErrorEvent(error=exc))

        if self._state is SessionState.CLOSED:
            raise HandshakeError("handshake 도중 연결이 끊겼어요.")

        if self._options.ping_interval_seconds > 0:
            self._ping_task = asyncio.create_task(self._ping_loop())
        self._state = SessionState.ACTIVE
        logger.info(
            "session_connected",
            session_id=self.session_id,
            protocol_version=self._protocol_version,
            client=(self._client_info or {}).get("name"),
        )

    async def close(self) -> None:
        """세션을 닫아요. 여러 번 호출해도 한 번만 처리돼요."""
        if self._state is SessionState.CLOSED:
            return
        previous_state = self._state
        self._state = SessionState.CLOSED
        current = asyncio.current_task()

        await self._cancel_task(self._ping_task, current)
        await self._cancel_task(self._reader_task, current)
        await self._flush_outbox()
        await self._cancel_task(self._writer_task, current)

        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportClosedError())
        self._pending.clear()

        if self._transport is not None:
            try:
                await self._transport.close()
            except Exception as exc:
                logger.warning("transport_close_failed", session_id=self.session_id, error=str(exc))

        logger.info(
            "session_closed",
            session_id=self.session_id,
            previous_state=previous_state.value,
            inflight=len(self._inflight),
        )
        if previous_state is not SessionState.DISCONNECTED:
            await self.closed.emit(SessionClosedEvent(session=self))

    @staticmethod
    async def _cancel_task(task: asyncio.Task[None] | None, current: asyncio.Task[Any] | None) -> None:
        if task is None or task is current or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _flush_outbox(self) -> None:
        if self._writer_task is None or self._writer_task.done() or self._outbox.empty():
            return
        try:
            await asyncio.wait_for(self._outbox.join(), timeout=_FLUSH_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("outbox_flush_timeout", session_id=self.session_id, pending=self._outbox.qsize())

    # ── 송신 ────────────────────────────────────────────────────────────────

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """응답을 기다리지 않는 알림을 outbox에 넣어요."""
        self._enqueue(build_notification(method, params))

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """클라이언트에게 요청을 보내고 응답 결과를 기다려요.

        Raises:
            TransportClosedError: 세션이 닫혀 있으면 발생해요.
            RequestTimeoutError: 제한 시간 안에 응답이 없으면 발생해요.
            McpError: 클라이언트가 error 응답을 보내면 코드에 맞는 하위 클래스로 발생해요.
        """
        if self._state is SessionState.CLOSED or self._transport is None:
            raise TransportClosedError()
        request_id = next(self._request_ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._enqueue(build_request(request_id, method, params))
        try:
            return await asyncio.wait_for(future, timeout=self._options.request_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(
                f"Request timed out: {method}",
                {"timeout": self._options.request_timeout_seconds},
            ) from exc
        finally:
            self._pending.pop(request_id, None)

    def _enqueue(self, message: dict[str, Any]) -> None:
        if self._state is SessionState.CLOSED:
            logger.debug("message_dropped", session_id=self.session_id, method=message.get("method"))
            return
        self._outbox.put_nowait(message)

    async def _write_loop(self) -> None:
        assert self._transport is not None
        while True:
            message = await self._outbox.get()
            try:
                await self._transport.send(message)
            except Exception as exc:
                logger.warning("transport_send_failed", session_id=self.session_id, error=str(exc))
                await self.errors.emit(SessionErrorEvent(error=exc))
            finally:
                self._outbox.task_done()

    async def _ping_loop(self) -> None:
        while True:
            await self._options.sleep(self._options.ping_interval_seconds)
            try:
                await self.request("ping")
            except (McpError, TransportClosedError) as exc:
                logger.warning("ping_failed", session_id=self.session_id, error=str(exc))
                await self.errors.emit(SessionErrorEvent(error=exc))

    # ── 수신 ────────────────────────────────────────────────────────────────

    async def _read_loop(self) -> None:
        assert self._transport is not None
        try:
            while True:
                try:
                    message = await self._transport.receive()
                except MessageDecodeError as exc:
                    logger.warning("message_decode_failed", session_id=self.session_id, reason=exc.reason)
                    self._enqueue(build_error(None, ParseError(f"Parse error: {exc.reason}")))
                    continue
                if message is None:
                    break
                self._dispatch(message)
        except Exception as exc:
            logger.warning("transport_receive_failed", session_id=self.session_id, error=str(exc))
            await self.errors.emit(SessionErrorEvent(error=exc))
        logger.info("transport_disconnected", session_id=self.session_id)
        await self.close()

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict) or message.get("jsonrpc") != JSONRPC_VERSION:
            request_id = message.get("id") if isinstance(message, dict) else None
            self._enqueue(build_error(request_id, InvalidRequestError("Invalid JSON-RPC message")))
            return

        method = message.get("method")
        if method is not None:
            if not isinstance(method, str):
                self._enqueue(build_error(message.get("id"), InvalidRequestError("Method must be a string")))
            elif "id" in message:
                self._spawn(self._handle_request(message["id"], method, message.get("params")))
            else:
                self._spawn(self._handle_notification(method, message.get("params")))
            return

        if "id" in message and ("result" in message or "error" in message):
            self._resolve_response(message)
            return

        self._enqueue(build_error(message.get("id"), InvalidRequestError("Invalid JSON-RPC message")))

    def _spawn(self, coroutine: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coroutine)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _resolve_response(self, message: dict[str, Any]) -> None:
        future = self._pending.get(message["id"])
        if future is None or future.done():
            logger.warning("unexpected_response", session_id=self.session_id, request_id=message["id"])
            return
        error = message.get("error")
        if isinstance(error, dict):
            future.set_exception(McpError.from_error_object(error))
        else:
            future.set_result(message.get("result"))

    async def _handle_request(self, request_id: RequestId, method: str, params: Any) -> None:
        handler = self._handlers.get(method)
        try:
            if handler is None:
                raise MethodNotFoundError(f"Method not found: {method}")
            result = await handler(params)
        except McpError as exc:
            logger.info(
                "request_failed",
                session_id=self.session_id,
                method=method,
                code=exc.code,
                message=exc.message,
            )
            self._enqueue(build_error(request_id, exc))
            return
        except Exception as exc:
            logger.exception("request_handler_crashed", session_id=self.session_id, method=method, error=str(exc))
            self._enqueue(build_error(request_id, InternalError(f"Internal error: {exc}")))
            return
        self._enqueue(build_result(request_id, result))

    async def _handle_notification(self, method: str, params: Any) -> None:
        if method == "notifications/initialized":
            logger.info("client_initialized", session_id=self.session_id)
        elif method == "notifications/roots/list_changed":
            await self._on_roots_list_changed()
        elif method == "notifications/cancelled":
            details = params if isinstance(params, dict) else {}
            logger.info(
                "client_cancelled_request",
                session_id=self.session_id,
                request_id=details.get("requestId"),
                reason=details.get("reason"),
            )
        else:
            logger.debug("notification_ignored", session_id=self.session_id, method=method)

    # ── roots ───────────────────────────────────────────────────────────────

    async def _refresh_roots(self) -> None:
        result = await self.request("roots/list")
        self._roots = parse_params(ListRootsResult, result, method="roots/list").roots

    async def _on_roots_list_changed(self) -> None:
        try:
            await self._refresh_roots()
        except (McpError, TransportClosedError) as exc:
            logger.warning("roots_refresh_failed", session_id=self.session_id, error=str(exc))
            await self.errors.emit(SessionErrorEvent(error=exc))
            return
        logger.info("roots_changed", session_id=self.session_id, count=len(self._roots))
        await self.roots_changed.emit(RootsChangedEvent(roots=self.roots))

    # ── 요청 핸들러 ─────────────────────────────────────────────────────────

    async def _handle_initialize(self, params: Any) -> dict[str, Any]:
        parsed = parse_params(InitializeParams, params, method="initialize")
        self._client_info = parsed.client_info
        if parsed.protocol_version in SUPPORTED_PROTOCOL_VERSIONS:
            self._protocol_version = parsed.protocol_version
        else:
            self._protocol_version = MCP_PROTOCOL_VERSION
        # capability를 마지막에 기록해야 connect()가 응답 전에 진행하지 않아요.
        self._client_capabilities = parsed.capabilities
        return drop_none(
            {
                "protocolVersion": self._protocol_version,
                "capabilities": self._server_capabilities(),
                "serverInfo": {"name": self._server_info.name, "version": self._server_info.version},
                "instructions": self._server_info.instructions,
            }
        )

    def _server_capabilities(self) -> dict[str, Any]:
        capabilities: dict[str, Any] = {"logging": {}, "completions": {}}
        if self._registry.tools:
            capabilities["tools"] = {}
        if self._registry.resources or self._registry.resource_templates:
            capabilities["resources"] = {}
        if self._registry.prompts:
            capabilities["prompts"] = {}
        return capabilities

    async def _handle_ping(self, params: Any) -> dict[str, Any]:
        del params
        return {}

    async def _handle_list_tools(self, params: Any) -> dict[str, Any]:
        del params
        return {"tools": [tool.to_wire() for tool in self._registry.tools]}

    async def _handle_call_tool(self, params: Any) -> dict[str, Any]:
        parsed = parse_params(CallToolParams, params, method="tools/call")
        tool = self._registry.find_tool(parsed.name)
        if tool is None:
            raise MethodNotFoundError(f"Unknown tool: {parsed.name}")

        arguments: Any = parsed.arguments if parsed.arguments is not None else {}
        if tool.parameters is not None:
            outcome = tool.parameters.validate(arguments)
            if not outcome.success:
                raise InvalidParamsError(f"Invalid {parsed.name} parameters", {"errors": outcome.errors})
            arguments = outcome.data

        context = ToolContext(
            session=self,
            log=ToolLogger(self.notify),
            progress_token=parsed.meta.progress_token if parsed.meta is not None else None,
            notify=self.notify,
        )
        try:
            result = normalize_tool_result(await maybe_await(tool.execute(arguments, context)))
        except UserError as exc:
            logger.info("tool_user_error", session_id=self.session_id, tool=tool.name, message=exc.message)
            return error_result(exc.message).to_wire()
        except Exception as exc:
            logger.warning("tool_execution_failed", session_id=self.session_id, tool=tool.name, error=str(exc))
            return error_result(f"Error: {exc}").to_wire()
        return result.to_wire()

    async def _handle_list_resources(self, params: Any) -> dict[str, Any]:
        del params
        return {"resources": [resource.to_wire() for resource in self._registry.resources]}

    async def _handle_read_resource(self, params: Any) -> dict[str, Any]:
        parsed = parse_params(ReadResourceParams, params, method="resources/read")
        uri = parsed.uri

        resource = self._registry.find_resource(uri)
        if resource is not None:
            name, mime_type, load = resource.name, resource.mime_type, resource.load
        else:
            matched = self._registry.match_template(uri)
            if matched is None:
                raise MethodNotFoundError(f"Unknown resource: {uri}", {"uri": uri})
            template, values = matched
            name, mime_type = template.name, template.mime_type
            load = functools.partial(template.load, values)

        try:
            payloads = normalize_resource_payloads(await maybe_await(load()))
        except Exception as exc:
            raise InternalError(f"Error reading resource: {exc}", {"uri": uri}) from exc

        header = drop_none({"uri": uri, "name": name, "mimeType": mime_type})
        return {"contents": [{**header, **payload} for payload in payloads]}

    async def _handle_list_resource_templates(self, params: Any) -> dict[str, Any]:
        del params
        return {"resourceTemplates": [template.to_wire() for template in self._registry.resource_templates]}

    async def _handle_list_prompts(self, params: Any) -> dict[str, Any]:
        del params
        return {"prompts": [prompt.to_wire() for prompt in self._registry.prompts]}

    async def _handle_get_prompt(self, params: Any) -> dict[str, Any]:
        parsed = parse_params(GetPromptParams, params, method="prompts/get")
        prompt = self._registry.find_prompt(parsed.name)
        if prompt is None:
            raise MethodNotFoundError(f"Unknown prompt: {parsed.name}")

        arguments = parsed.arguments or {}
        for argument in prompt.arguments:
            if argument.required and argument.name not in arguments:
                raise InvalidParamsError(
                    f"Missing required argument: {argument.name}",
                    {"argument": argument.name},
                )

        try:
            text = await maybe_await(prompt.load(arguments))
        except Exception as exc:
            raise InternalError(f"Error loading prompt: {exc}", {"prompt": prompt.name}) from exc

        return drop_none(
            {
                "description": prompt.description,
                "messages": [{"role": "user", "content": {"type": "text", "text": text}}],
            }
        )

    async def _handle_complete(self, params: Any) -> dict[str, Any]:
        parsed = parse_params(CompleteParams, params, method="completion/complete")
        ref = parsed.ref
        argument: ArgumentSpec | None
        if isinstance(ref, PromptReference):
            prompt = self._registry.find_prompt(ref.name)
            if prompt is None:
                raise MethodNotFoundError(f"Unknown prompt: {ref.name}")
            argument = prompt.find_argument(parsed.argument.name)
        else:
            template = self._registry.find_template(ref.uri)
            if template is None:
                raise MethodNotFoundError(f"Unknown resource template: {ref.uri}", {"uri": ref.uri})
            argument = template.find_argument(parsed.argument.name)

        try:
            completion = await complete_argument(
                argument,
                parsed.argument.value,
                page_size=self._options.completion_page_size,
            )
        except Exception as exc:
            raise InternalError(f"Error completing argument: {exc}", {"argument": parsed.argument.name}) from exc
        return {"completion": completion}

    async def _handle_set_level(self, params: Any) -> dict[str, Any]:
        parsed = parse_params(SetLevelParams, params, method="logging/setLevel")
        self._logging_level = parsed.level
        logger.debug("logging_level_changed", session_id=self.session_id, level=parsed.level)
        return {}

    def __repr__(self) -> str:
        return f"McpSession(session_id={self.session_id!r}, state={self._state.value!r})"
