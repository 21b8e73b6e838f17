from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, BinaryIO

from codial_mcp.transports.base import MessageDecodeError
from libs.common.errors import TransportClosedError
from libs.common.logging import get_logger

logger = get_logger("codial_mcp.transports.stdio")

DEFAULT_LINE_LIMIT_BYTES = 16 * 1024 * 1024


class StdioTransport:
    """줄 단위 JSON으로 표준 입출력에서 메시지를 주고받아요.

    한 줄에 JSON-RPC 메시지 하나예요. 빈 줄은 건너뛰어요.
    테스트에서는 `reader`와 `output`을 직접 넣어서 파이프 없이 쓸 수 있어요.
    한 줄이 `line_limit`보다 길면 그 줄만 버리고 해석 실패로 알려요.
    """

    def __init__(
        self,
        *,
        reader: asyncio.StreamReader | None = None,
        output: BinaryIO | None = None,
        line_limit: int = DEFAULT_LINE_LIMIT_BYTES,
    ) -> None:
        self._reader = reader
        self._output = output
        self.line_limit = line_limit
        self._closed = False

    async def start(self) -> None:
        if self._reader is None:
            reader = asyncio.StreamReader(limit=self.line_limit)
            protocol = asyncio.StreamReaderProtocol(reader)
            await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)
            self._reader = reader
        if self._output is None:
            self._output = sys.stdout.buffer

    async def send(self, message: dict[str, Any]) -> None:
        if self._closed or self._output is None:
            raise TransportClosedError()
        line = json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"
        self._output.write(line.encode("utf-8"))
        self._output.flush()

    async def receive(self) -> dict[str, Any] | None:
        if self._reader is None:
            raise TransportClosedError("시작하지 않은 stdio 전송이에요.")
        while not self._closed:
            try:
                line = await self._reader.readline()
            except ValueError as exc:
                # readline은 한도를 넘은 줄을 버퍼에서 지운 뒤 ValueError를 올려요.
                logger.warning("stdio_line_too_long", error=str(exc))
                raise MessageDecodeError("", f"line too long: {exc}") from exc
            if not line:
                return None
            text = line.strip()
            if not text:
                continue
            try:
                return json.loads(text.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise MessageDecodeError(text.decode("utf-8", errors="replace"), str(exc)) from exc
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("stdio_transport_closed")
