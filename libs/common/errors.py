from __future__ import annotations

from dataclasses import dataclass
from typing import Any

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
REQUEST_TIMEOUT = -32001


@dataclass(slots=True)
class ErrorEnvelope:
    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


# ── JSON-RPC 프로토콜 오류 ────────────────────────────────────────────────────


class McpError(Exception):
    """클라이언트에게 JSON-RPC error 응답으로 전달되는 오류예요."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, data: Any = None, *, code: int | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.data = data

    def to_envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(code=self.code, message=self.message, data=self.data)

    @classmethod
    def from_error_object(cls, error: dict[str, Any]) -> "McpError":
        """상대방이 보낸 error 객체를 코드에 맞는 예외로 복원해요."""
        code_value = error.get("code")
        code = code_value if isinstance(code_value, int) else INTERNAL_ERROR
        message_value = error.get("message")
        message = message_value if isinstance(message_value, str) else "MCP error"
        error_class = _ERRORS_BY_CODE.get(code, McpError)
        return error_class(message, error.get("data"), code=code)


class ParseError(McpError):
    code = PARSE_ERROR


class InvalidRequestError(McpError):
    code = INVALID_REQUEST


class MethodNotFoundError(McpError):
    code = METHOD_NOT_FOUND


class InvalidParamsError(McpError):
    code = INVALID_PARAMS


class InternalError(McpError):
    code = INTERNAL_ERROR


class RequestTimeoutError(McpError):
    code = REQUEST_TIMEOUT


_ERRORS_BY_CODE: dict[int, type[McpError]] = {
    PARSE_ERROR: ParseError,
    INVALID_REQUEST: InvalidRequestError,
    METHOD_NOT_FOUND: MethodNotFoundError,
    INVALID_PARAMS: InvalidParamsError,
    INTERNAL_ERROR: InternalError,
    REQUEST_TIMEOUT: RequestTimeoutError,
}


# ── 도메인 오류 ──────────────────────────────────────────────────────────────


class DomainError(Exception):
    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class NotFoundError(DomainError):
    def __init__(self, message: str = "대상을 찾지 못했어요.") -> None:
        super().__init__("NOT_FOUND", message)


class ConfigurationError(DomainError):
    def __init__(self, message: str = "설정이 올바르지 않아요.") -> None:
        super().__init__("CONFIGURATION_ERROR", message)


class TransportClosedError(DomainError):
    def __init__(self, message: str = "전송 채널이 이미 닫혔어요.") -> None:
        super().__init__("TRANSPORT_CLOSED", message)


class UnexpectedStateError(Exception):
    """예상하지 못한 상태를 나타내요. `extras`에 진단용 부가 정보를 담아요."""

    def __init__(self, message: str, extras: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extras = extras


class UserError(UnexpectedStateError):
    """사용자에게 그대로 보여줄 메시지를 담은 오류예요.

    도구 실행 중에 이 오류를 던지면 메시지가 가공 없이 `isError` 결과로 전달돼요.
    """
