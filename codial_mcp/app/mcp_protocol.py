from __future__ import annotations

import json
from typing import Annotated, Any, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from libs.common.errors import JSONRPC_VERSION, InvalidParamsError, McpError

MCP_PROTOCOL_VERSION = "2025-11-25"
SUPPORTED_PROTOCOL_VERSIONS = (
    "2024-11-05",
    "2025-03-26",
    "2025-06-18",
    "2025-11-25",
)

LoggingLevel = Literal[
    "debug",
    "info",
    "notice",
    "warning",
    "error",
    "critical",
    "alert",
    "emergency",
]

RequestId = Union[str, int]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Root(_WireModel):
    uri: str
    name: str | None = None


class ListRootsResult(_WireModel):
    roots: list[Root] = Field(default_factory=list)


class InitializeParams(_WireModel):
    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: dict[str, Any] | None = Field(default=None, alias="clientInfo")


class RequestMeta(_WireModel):
    progress_token: RequestId | None = Field(default=None, alias="progressToken")


class CallToolParams(_WireModel):
    name: str
    arguments: dict[str, Any] | None = None
    meta: RequestMeta | None = Field(default=None, alias="_meta")


class ReadResourceParams(_WireModel):
    uri: str


class GetPromptParams(_WireModel):
    name: str
    arguments: dict[str, str] | None = None


class PromptReference(_WireModel):
    type: Literal["ref/prompt"]
    name: str


class ResourceReference(_WireModel):
    type: Literal["ref/resource"]
    uri: str


class CompletionArgument(_WireModel):
    name: str
    value: str


class CompleteParams(_WireModel):
    ref: Annotated[Union[PromptReference, ResourceReference], Field(discriminator="type")]
    argument: CompletionArgument


class SetLevelParams(_WireModel):
    level: LoggingLevel


_ModelT = TypeVar("_ModelT", bound=BaseModel)


def parse_params(model: type[_ModelT], params: Any, *, method: str) -> _ModelT:
    """요청 params를 모델로 검증해요. 실패하면 `InvalidParamsError`로 바꿔요."""
    try:
        return model.model_validate(params if params is not None else {})
    except ValidationError as exc:
        raise InvalidParamsError(
            f"Invalid params for {method}",
            {"errors": json.loads(exc.json(include_url=False))},
        ) from exc


# ── 메시지 빌더 ──────────────────────────────────────────────────────────────


def build_request(request_id: RequestId, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_result(request_id: RequestId | None, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def build_error(request_id: RequestId | None, error: McpError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_envelope().to_dict()}
