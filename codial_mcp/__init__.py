"""세션 상태 머신과 정의 레지스트리로 이루어진 MCP 서버 코어예요."""

from codial_mcp.app.content import (
    ContentResult,
    ImageContent,
    TextContent,
    error_result,
    image_content,
)
from codial_mcp.app.definitions import (
    ArgumentSpec,
    PromptDefinition,
    ResourceDefinition,
    ResourceTemplateDefinition,
    ToolDefinition,
)
from codial_mcp.app.events import (
    ConnectEvent,
    DisconnectEvent,
    RootsChangedEvent,
    SessionClosedEvent,
    SessionErrorEvent,
)
from codial_mcp.app.mcp_protocol import MCP_PROTOCOL_VERSION, Root
from codial_mcp.app.registry import CapabilityRegistry, RegistryFrozenError
from codial_mcp.app.schema import PydanticSchema, ValidationOutcome
from codial_mcp.app.server import McpServer
from codial_mcp.app.session import HandshakeError, McpSession, SessionState, SessionStateError
from codial_mcp.app.settings import Settings
from codial_mcp.app.tool_context import ToolContext, ToolLogger
from libs.common.errors import UserError

__all__ = [
    "ArgumentSpec",
    "CapabilityRegistry",
    "ConnectEvent",
    "ContentResult",
    "DisconnectEvent",
    "HandshakeError",
    "ImageContent",
    "MCP_PROTOCOL_VERSION",
    "McpServer",
    "McpSession",
    "PromptDefinition",
    "PydanticSchema",
    "RegistryFrozenError",
    "ResourceDefinition",
    "ResourceTemplateDefinition",
    "Root",
    "RootsChangedEvent",
    "SessionClosedEvent",
    "SessionErrorEvent",
    "SessionState",
    "SessionStateError",
    "Settings",
    "TextContent",
    "ToolContext",
    "ToolDefinition",
    "ToolLogger",
    "UserError",
    "ValidationOutcome",
    "error_result",
    "image_content",
]
