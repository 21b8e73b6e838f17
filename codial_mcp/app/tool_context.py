"""도구 실행 중에 쓰는 진행률 보고와 로그 전송 컨텍스트예요."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from codial_mcp.app.mcp_protocol import LoggingLevel, RequestId
from codial_mcp.app.utils import drop_none
from libs.common.logging import get_logger

if TYPE_CHECKING:
    from codial_mcp.app.session import McpSession

logger = get_logger("codial_mcp.tool_context")

Notify = Callable[[str, dict[str, Any]], None]


class ToolLogger:
    """클라이언트에게 ``notifications/message``를 보내는 로거예요.

    ``warn``은 와이어 레벨 ``warning``으로 나가요.
    """

    def __init__(self, notify: Notify) -> None:
        self._notify = notify

    def debug(self, message: str, context: Any = None) -> None:
        self._send("debug", message, context)

    def error(self, message: str, context: Any = None) -> None:
        self._send("error", message, context)

    def info(self, message: str, context: Any = None) -> None:
        self._send("info", message, context)

    def warn(self, message: str, context: Any = None) -> None:
        self._send("warning", message, context)

    def _send(self, level: LoggingLevel, message: str, context: Any) -> None:
        self._notify(
            "notifications/message",
            {"level": level, "data": drop_none({"message": message, "context": context})},
        )


@dataclass(slots=True)
class ToolContext:
    session: McpSession
    log: ToolLogger
    progress_token: RequestId | None
    notify: Notify = field(repr=False)
    _last_progress: float | None = field(default=None, repr=False)

    async def report_progress(self, progress: float, total: float | None = None) -> None:
        """진행률 알림을 보내요. 응답을 기다리지 않아요.

        호출자가 progress token을 주지 않았으면 보낼 대상이 없어서 건너뛰어요.
        """
        if self._last_progress is not None and progress < self._last_progress:
            logger.warning(
                "progress_decreased",
                session_id=self.session.session_id,
                previous=self._last_progress,
                progress=progress,
            )
        self._last_progress = progress
        if self.progress_token is None:
            return
        self.notify(
            "notifications/progress",
            drop_none({"progress": progress, "total": total, "progressToken": self.progress_token}),
        )
