"""도구 결과와 리소스 페이로드를 와이어 형식으로 정규화해요.

도구는 문자열, 단일 콘텐츠, 또는 ``{content, isError}`` 형태를 돌려줄 수 있어요.
`normalize_tool_result` 하나가 이 세 가지 경우를 모두 `ContentResult`로 맞춰요.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_IMAGE_MIME_TYPE = "image/png"


class TextContent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    type: Literal["image"] = "image"
    data: str
    """base64로 인코딩한 이미지 데이터예요."""

    mime_type: str = Field(alias="mimeType")

    @field_validator("data")
    @classmethod
    def _require_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("data는 base64 문자열이어야 해요.") from exc
        return value


Content = Annotated[Union[TextContent, ImageContent], Field(discriminator="type")]


class ContentResult(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    content: list[Content]
    is_error: bool | None = Field(default=None, alias="isError")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


ToolExecutionResult = Union[str, TextContent, ImageContent, ContentResult, Mapping[str, Any]]


def normalize_tool_result(value: object) -> ContentResult:
    """도구가 돌려준 값을 `ContentResult`로 정규화해요.

    - 문자열이면 텍스트 콘텐츠 하나로 감싸요.
    - 단일 콘텐츠(``type`` 키가 있는 값)면 배열로 감싸요.
    - 이미 ``content`` 배열을 가진 값은 그대로 검증해요.

    Raises:
        TypeError: 지원하지 않는 형식이면 발생해요.
        pydantic.ValidationError: 콘텐츠 구조가 올바르지 않으면 발생해요.
    """
    if isinstance(value, str):
        return ContentResult(content=[TextContent(text=value)])
    if isinstance(value, (TextContent, ImageContent)):
        return ContentResult(content=[value])
    if isinstance(value, ContentResult):
        return value
    if isinstance(value, Mapping):
        if "type" in value:
            return ContentResult.model_validate({"content": [dict(value)]})
        return ContentResult.model_validate(dict(value))
    raise TypeError(f"지원하지 않는 도구 결과 형식이에요: {type(value).__name__}")


def error_result(text: str) -> ContentResult:
    return ContentResult(content=[TextContent(text=text)], is_error=True)


def normalize_resource_payloads(value: object) -> list[dict[str, str]]:
    """리소스 로더 결과를 ``{text}`` 또는 ``{blob}`` 딕셔너리 목록으로 바꿔요."""
    if isinstance(value, (str, Mapping)):
        items: Sequence[object] = [value]
    elif isinstance(value, Sequence):
        items = value
    else:
        raise TypeError(f"지원하지 않는 리소스 결과 형식이에요: {type(value).__name__}")

    payloads: list[dict[str, str]] = []
    for item in items:
        if isinstance(item, str):
            payloads.append({"text": item})
            continue
        if not isinstance(item, Mapping):
            raise TypeError(f"지원하지 않는 리소스 항목이에요: {type(item).__name__}")
        text_value = item.get("text")
        blob_value = item.get("blob")
        if isinstance(text_value, str):
            payloads.append({"text": text_value})
        elif isinstance(blob_value, str):
            payloads.append({"blob": blob_value})
        else:
            raise TypeError("리소스 항목에는 text 또는 blob 문자열이 필요해요.")
    return payloads


async def image_content(
    *,
    url: str | None = None,
    path: str | Path | None = None,
    data: bytes | None = None,
    mime_type: str | None = None,
    timeout_seconds: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ImageContent:
    """URL, 파일 경로, 바이트 중 하나에서 `ImageContent`를 만들어요.

    MIME 타입은 인자 → 응답 헤더 → 파일 확장자 순으로 정하고, 모두 없으면
    ``image/png``를 써요.
    """
    detected_mime: str | None = None
    if url is not None:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            response = await client.get(url)
        if response.is_error:
            raise ValueError(f"Failed to fetch image from URL: {response.reason_phrase}")
        raw = response.content
        header_value = response.headers.get("content-type")
        if header_value:
            detected_mime = header_value.split(";", 1)[0].strip() or None
    elif path is not None:
        raw = await asyncio.to_thread(Path(path).read_bytes)
        detected_mime, _ = mimetypes.guess_type(str(path))
    elif data is not None:
        raw = data
    else:
        raise ValueError("Invalid input: Provide a valid 'url', 'path', or 'data'")

    return ImageContent(
        data=base64.b64encode(raw).decode("ascii"),
        mime_type=mime_type or detected_mime or DEFAULT_IMAGE_MIME_TYPE,
    )
