"""같은 프로세스 안에서 쓰는 메모리 전송이에요. 테스트와 임베딩 호스트용이에요."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from codial_mcp.transports.base import ConnectionHandler
from libs.common.errors import TransportClosedError
from libs.common.logging import get_logger

logger = get_logger("codial_mcp.transports.memory")


class MemoryTransport:
    """서로 연결된 한 쌍 중 한쪽 끝이에요.

    보낸 메시지는 JSON으로 직렬화했다가 다시 읽어서 상대 쪽 inbox에 넣어요.
    실제 전송과 같은 직렬화 제약을 받게 하려는 거예요.

    사용법::

        client, server = MemoryTransport.create_pair()
        await server_session.connect(server)
        await client.send({"jsonrpc": "2.0", "id": 1, "method": "ping"})
    """

    def __init__(self, name: str = "memory") -> None:
        self.name = name
        self._inbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._peer: MemoryTransport | None = None
        self._closed = False

    @classmethod
    def create_pair(cls) -> tuple[MemoryTransport, MemoryTransport]:
        client = cls("client")
        server = cls("server")
        client._peer = server
        server._peer = client
        return client, server

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        if self._peer is None:
            raise TransportClosedError("연결된 상대가 없는 메모리 전송이에요.")

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed or self._peer is None or self._peer._closed:
            raise TransportClosedError()
        self._peer._inbox.put_nowait(json.loads(json.dumps(message)))

    async def receive(self) -> dict[str, Any] | None:
        if self._closed and self._inbox.empty():
            return None
        return await self._inbox.get()

    async def close(self) -> None:
        """양쪽 끝을 모두 닫아요. 두 번 호출해도 안전해요."""
        if self._closed:
            return
        self._closed = True
        self._inbox.put_nowait(None)
        peer = self._peer
        if peer is not None and not peer._closed:
            peer._closed = True
            peer._inbox.put_nowait(None)
        logger.debug("memory_transport_closed", name=self.name)


class MemoryListener:
    """`connect()`를 부를 때마다 새 연결을 만들어 서버에 넘겨요."""

    def __init__(self) -> None:
        self._on_connection: ConnectionHandler | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self, on_connection: ConnectionHandler) -> None:
        self._on_connection = on_connection

    async def connect(self) -> MemoryTransport:
        """클라이언트 쪽 끝을 돌려주고 서버 쪽 끝은 연결 핸들러에 넘겨요.

        Raises:
            TransportClosedError: listener가 시작되지 않았거나 이미 닫혔으면 발생해요.
        """
        if self._on_connection is None:
            raise TransportClosedError("listener가 연결을 받고 있지 않아요.")
        client, server = MemoryTransport.create_pair()
        task = asyncio.create_task(self._on_connection(server))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return client

    async def close(self) -> None:
        self._on_connection = None
