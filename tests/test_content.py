from __future__ import annotations

import base64
from pathlib import Path

import httpx
import pytest
from pydantic import ValidationError

from codial_mcp.app.content import (
    ContentResult,
    ImageContent,
    TextContent,
    error_result,
    image_content,
    normalize_resource_payloads,
    normalize_tool_result,
)


def test_normalize_tool_result_wraps_plain_values() -> None:
    assert normalize_tool_result("hi").to_wire() == {"content": [{"type": "text", "text": "hi"}]}
    assert normalize_tool_result(TextContent(text="x")).to_wire() == {"content": [{"type": "text", "text": "x"}]}

    existing = ContentResult(content=[TextContent(text="a")], is_error=True)
    assert normalize_tool_result(existing) is existing


def test_normalize_tool_result_validates_mappings() -> None:
    result = normalize_tool_result({"content": [{"type": "image", "data": "aGk=", "mimeType": "image/gif"}]})
    assert result.content == [ImageContent(data="aGk=", mime_type="image/gif")]

    with pytest.raises(ValidationError):
        normalize_tool_result({"type": "audio", "data": "aGk="})
    with pytest.raises(TypeError):
        normalize_tool_result(42)


def test_image_content_requires_base64() -> None:
    with pytest.raises(ValidationError):
        ImageContent(data="###", mime_type="image/png")


def test_error_result_sets_flag() -> None:
    assert error_result("nope").to_wire() == {"content": [{"type": "text", "text": "nope"}], "isError": True}


def test_normalize_resource_payloads() -> None:
    assert normalize_resource_payloads("text") == [{"text": "text"}]
    assert normalize_resource_payloads({"blob": "aGk="}) == [{"blob": "aGk="}]
    assert normalize_resource_payloads(["a", {"text": "b"}]) == [{"text": "a"}, {"text": "b"}]
    with pytest.raises(TypeError):
        normalize_resource_payloads({"uri": "file:///x"})
    with pytest.raises(TypeError):
        normalize_resource_payloads(None)


@pytest.mark.asyncio
async def test_image_content_from_bytes_and_path(tmp_path: Path) -> None:
    image_path = tmp_path / "pixel.jpg"
    image_path.write_bytes(b"\xff\xd8\xff")

    from_bytes = await image_content(data=b"abc")
    from_path = await image_content(path=image_path)

    assert from_bytes == ImageContent(data=base64.b64encode(b"abc").decode("ascii"), mime_type="image/png")
    assert from_path.mime_type == "image/jpeg"
    assert base64.b64decode(from_path.data) == b"\xff\xd8\xff"


@pytest.mark.asyncio
async def test_image_content_from_url_uses_response_content_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/cat.webp"
        return httpx.Response(200, content=b"RIFF", headers={"content-type": "image/webp; charset=binary"})

    image = await image_content(url="http://images.test/cat.webp", transport=httpx.MockTransport(handler))

    assert image.mime_type == "image/webp"
    assert base64.b64decode(image.data) == b"RIFF"


@pytest.mark.asyncio
async def test_image_content_reports_failed_fetch_and_missing_source() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(404))

    with pytest.raises(ValueError, match="Failed to fetch image from URL"):
        await image_content(url="http://images.test/missing.png", transport=transport)
    with pytest.raises(ValueError, match="Invalid input"):
        await image_content()
