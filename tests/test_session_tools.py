from __future__ import annotations

import asyncio
from typing import Any

import pytest
from pydantic import BaseModel

from codial_mcp.app.content import ImageContent
from codial_mcp.app.definitions import ToolDefinition
from codial_mcp.app.registry import CapabilityRegistry
from codial_mcp.app.schema import PydanticSchema
from codial_mcp.app.tool_context import ToolContext
from libs.common.errors import INVALID_PARAMS, InvalidParamsError, MethodNotFoundError, UserError
from tests.helpers import open_client

_PIXEL = "iVBORw0KGgo="


class _AddParams(BaseModel):
    a: int
    b: int


def _add(params: _AddParams, context: ToolContext) -> str:
    del context
    return str(params.a + params.b)


def _registry_with(*tools: ToolDefinition) -> CapabilityRegistry:
    registry = CapabilityRegistry()
    for tool in tools:
        registry.add_tool(tool)
    registry.freeze()
    return registry


def _add_tool() -> ToolDefinition:
    return ToolDefinition(
        name="add",
        description="두 수를 더해요.",
        parameters=PydanticSchema(_AddParams),
        execute=_add,
    )


@pytest.mark.asyncio
async def test_tools_list_describes_input_schema() -> None:
    session, client = await open_client(_registry_with(_add_tool()))
    try:
        result = await client.request("tools/list")
    finally:
        await session.close()
        await client.close()

    [tool] = result["tools"]
    assert tool["name"] == "add"
    assert tool["description"] == "두 수를 더해요."
    assert tool["inputSchema"]["type"] == "object"
    assert set(tool["inputSchema"]["properties"]) == {"a", "b"}


@pytest.mark.asyncio
async def test_tools_call_validates_and_returns_text() -> None:
    session, client = await open_client(_registry_with(_add_tool()))
    try:
        result = await client.request("tools/call", {"name": "add", "arguments": {"a": 1, "b": 2}})
    finally:
        await session.close()
        await client.close()

    assert result == {"content": [{"type": "text", "text": "3"}]}


@pytest.mark.asyncio
async def test_tools_call_rejects_invalid_arguments() -> None:
    session, client = await open_client(_registry_with(_add_tool()))
    try:
        with pytest.raises(InvalidParamsError) as exc_info:
            await client.request("tools/call", {"name": "add", "arguments": {"a": "one"}})
    finally:
        await session.close()
        await client.close()

    assert exc_info.value.code == INVALID_PARAMS
    assert exc_info.value.message == "Invalid add parameters"
    assert exc_info.value.data["errors"]


@pytest.mark.asyncio
async def test_tools_call_unknown_tool_is_method_not_found() -> None:
    session, client = await open_client(_registry_with(_add_tool()))
    try:
        with pytest.raises(MethodNotFoundError) as exc_info:
            await client.request("tools/call", {"name": "missing", "arguments": {}})
    finally:
        await session.close()
        await client.close()

    assert exc_info.value.message == "Unknown tool: missing"


@pytest.mark.asyncio
async def test_user_error_message_is_returned_verbatim() -> None:
    async def refuse(arguments: Any, context: ToolContext) -> str:
        del arguments, context
        raise UserError("파일이 너무 커요.")

    session, client = await open_client(_registry_with(ToolDefinition(name="refuse", execute=refuse)))
    try:
        result = await client.request("tools/call", {"name": "refuse"})
    finally:
        await session.close()
        await client.close()

    assert result == {"content": [{"type": "text", "text": "파일이 너무 커요."}], "isError": True}


@pytest.mark.asyncio
async def test_unexpected_tool_error_is_prefixed() -> None:
    def explode(arguments: Any, context: ToolContext) -> str:
        del arguments, context
        raise RuntimeError("boom")

    session, client = await open_client(_registry_with(ToolDefinition(name="explode", execute=explode)))
    try:
        result = await client.request("tools/call", {"name": "explode", "arguments": {}})
    finally:
        await session.close()
        await client.close()

    assert result == {"content": [{"type": "text", "text": "Error: boom"}], "isError": True}


@pytest.mark.asyncio
async def test_tool_without_schema_receives_empty_arguments() -> None:
    received: list[Any] = []

    async def echo(arguments: Any, context: ToolContext) -> str:
        del context
        received.append(arguments)
        return "ok"

    session, client = await open_client(_registry_with(ToolDefinition(name="echo", execute=echo)))
    try:
        tools = await client.request("tools/list")
        await client.request("tools/call", {"name": "echo"})
        await client.request("tools/call", {"name": "echo", "arguments": {"x": 1}})
    finally:
        await session.close()
        await client.close()

    assert tools["tools"] == [{"name": "echo"}]
    assert received == [{}, {"x": 1}]


@pytest.mark.asyncio
async def test_tool_result_shapes_are_normalized() -> None:
    async def single_image(arguments: Any, context: ToolContext) -> Any:
        del arguments, context
        return ImageContent(data=_PIXEL, mime_type="image/png")

    async def content_dict(arguments: Any, context: ToolContext) -> Any:
        del arguments, context
        return {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}

    async def single_dict(arguments: Any, context: ToolContext) -> Any:
        del arguments, context
        return {"type": "text", "text": "only"}

    registry = _registry_with(
        ToolDefinition(name="image", execute=single_image),
        ToolDefinition(name="many", execute=content_dict),
        ToolDefinition(name="single", execute=single_dict),
    )
    session, client = await open_client(registry)
    try:
        image = await client.request("tools/call", {"name": "image"})
        many = await client.request("tools/call", {"name": "many"})
        single = await client.request("tools/call", {"name": "single"})
    finally:
        await session.close()
        await client.close()

    assert image == {"content": [{"type": "image", "data": _PIXEL, "mimeType": "image/png"}]}
    assert [item["text"] for item in many["content"]] == ["a", "b"]
    assert single == {"content": [{"type": "text", "text": "only"}]}


@pytest.mark.asyncio
async def test_progress_and_logs_arrive_before_the_response() -> None:
    async def work(arguments: Any, context: ToolContext) -> str:
        del arguments
        context.log.info("시작했어요.", {"step": 1})
        await context.report_progress(0, 2)
        context.log.warn("조금 느려요.")
        await context.report_progress(1, 2)
        await context.report_progress(2, 2)
        return "done"

    session, client = await open_client(_registry_with(ToolDefinition(name="work", execute=work)))
    try:
        response = await client.request_raw(
            "tools/call",
            {"name": "work", "_meta": {"progressToken": "tok-1"}},
        )
    finally:
        await session.close()
        await client.close()

    assert response["result"] == {"content": [{"type": "text", "text": "done"}]}
    response_index = client.index_of_response(response["id"])
    notifications = [message for message in client.messages[:response_index] if "method" in message]
    assert [message["method"] for message in notifications] == [
        "notifications/message",
        "notifications/progress",
        "notifications/message",
        "notifications/progress",
        "notifications/progress",
    ]
    assert notifications[0]["params"] == {"level": "info", "data": {"message": "시작했어요.", "context": {"step": 1}}}
    assert notifications[2]["params"]["level"] == "warning"
    assert [message["params"]["progress"] for message in client.messages_for("notifications/progress")] == [0, 1, 2]
    assert all(message["params"]["progressToken"] == "tok-1" for message in client.messages_for("notifications/progress"))


@pytest.mark.asyncio
async def test_progress_without_token_is_not_sent() -> None:
    async def work(arguments: Any, context: ToolContext) -> str:
        del arguments
        await context.report_progress(1, 1)
        return "done"

    session, client = await open_client(_registry_with(ToolDefinition(name="work", execute=work)))
    try:
        await client.request("tools/call", {"name": "work"})
    finally:
        await session.close()
        await client.close()

    assert client.messages_for("notifications/progress") == []


@pytest.mark.asyncio
async def test_slow_tool_does_not_block_other_requests() -> None:
    released = asyncio.Event()

    async def slow(arguments: Any, context: ToolContext) -> str:
        del arguments, context
        await released.wait()
        return "slow"

    async def fast(arguments: Any, context: ToolContext) -> str:
        del arguments, context
        released.set()
        return "fast"

    registry = _registry_with(ToolDefinition(name="slow", execute=slow), ToolDefinition(name="fast", execute=fast))
    session, client = await open_client(registry)
    try:
        slow_call = asyncio.create_task(client.request("tools/call", {"name": "slow"}))
        await asyncio.sleep(0.01)
        fast_result = await client.request("tools/call", {"name": "fast"})
        slow_result = await slow_call
    finally:
        await session.close()
        await client.close()

    assert fast_result["content"][0]["text"] == "fast"
    assert slow_result["content"][0]["text"] == "slow"
