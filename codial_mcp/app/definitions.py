"""서버에 등록하는 도구, 리소스, 리소스 템플릿, 프롬프트 정의예요.

모든 정의는 불변(frozen) 데이터클래스예요. 등록한 뒤에는 바꿀 수 없어요.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from codial_mcp.app.content import ToolExecutionResult
from codial_mcp.app.schema import ParameterSchema
from codial_mcp.app.utils import drop_none

if TYPE_CHECKING:
    from codial_mcp.app.tool_context import ToolContext

ResourcePayload = Union[str, Mapping[str, str]]
ResourceLoadResult = Union[ResourcePayload, Sequence[ResourcePayload]]
CompletionResult = Mapping[str, Any]

ToolExecute = Callable[[Any, "ToolContext"], Union[Awaitable[ToolExecutionResult], ToolExecutionResult]]
ResourceLoad = Callable[[], Union[Awaitable[ResourceLoadResult], ResourceLoadResult]]
ResourceTemplateLoad = Callable[[dict[str, str]], Union[Awaitable[ResourceLoadResult], ResourceLoadResult]]
PromptLoad = Callable[[dict[str, str]], Union[Awaitable[str], str]]
CompleteFunc = Callable[[str], Union[Awaitable[CompletionResult], CompletionResult]]


@dataclass(slots=True, frozen=True)
class ArgumentSpec:
    """프롬프트나 리소스 템플릿이 받는 인자 하나를 설명해요."""

    name: str
    description: str | None = None
    required: bool = False
    enum: Sequence[str] | None = None
    """자동완성에 쓰는 고정 후보 목록이에요."""

    complete: CompleteFunc | None = None
    """부분 입력값을 받아 ``{"values": [...]}`` 형태를 돌려주는 자동완성 함수예요."""

    def to_wire(self) -> dict[str, Any]:
        wire = drop_none({"name": self.name, "description": self.description})
        if self.required:
            wire["required"] = True
        return wire


@dataclass(slots=True, frozen=True)
class ToolDefinition:
    name: str
    execute: ToolExecute
    description: str | None = None
    parameters: ParameterSchema | None = None
    """인자 검증과 ``inputSchema`` 생성에 쓰는 스키마예요. 없으면 인자를 그대로 넘겨요."""

    def to_wire(self) -> dict[str, Any]:
        return drop_none(
            {
                "name": self.name,
                "description": self.description,
                "inputSchema": self.parameters.describe() if self.parameters is not None else None,
            }
        )


@dataclass(slots=True, frozen=True)
class ResourceDefinition:
    uri: str
    name: str
    load: ResourceLoad
    description: str | None = None
    mime_type: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return drop_none(
            {
                "uri": self.uri,
                "name": self.name,
                "description": self.description,
                "mimeType": self.mime_type,
            }
        )


@dataclass(slots=True, frozen=True)
class ResourceTemplateDefinition:
    uri_template: str
    name: str
    load: ResourceTemplateLoad
    description: str | None = None
    mime_type: str | None = None
    arguments: Sequence[ArgumentSpec] = ()

    def to_wire(self) -> dict[str, Any]:
        wire = drop_none(
            {
                "uriTemplate": self.uri_template,
                "name": self.name,
                "description": self.description,
                "mimeType": self.mime_type,
            }
        )
        if self.arguments:
            wire["arguments"] = [argument.to_wire() for argument in self.arguments]
        return wire

    def find_argument(self, name: str) -> ArgumentSpec | None:
        return next((argument for argument in self.arguments if argument.name == name), None)


@dataclass(slots=True, frozen=True)
class PromptDefinition:
    name: str
    load: PromptLoad
    description: str | None = None
    arguments: Sequence[ArgumentSpec] = ()

    def to_wire(self) -> dict[str, Any]:
        wire = drop_none({"name": self.name, "description": self.description})
        if self.arguments:
            wire["arguments"] = [argument.to_wire() for argument in self.arguments]
        return wire

    def find_argument(self, name: str) -> ArgumentSpec | None:
        return next((argument for argument in self.arguments if argument.name == name), None)
