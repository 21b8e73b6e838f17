from codial_mcp.transports.base import ConnectionHandler, Listener, MessageDecodeError, Transport
from codial_mcp.transports.memory import MemoryListener, MemoryTransport
from codial_mcp.transports.sse import SseListener, SseServerTransport, SessionNotFoundError
from codial_mcp.transports.stdio import StdioTransport

__all__ = [
    "ConnectionHandler",
    "Listener",
    "MemoryListener",
    "MemoryTransport",
    "MessageDecodeError",
    "SessionNotFoundError",
    "SseListener",
    "SseServerTransport",
    "StdioTransport",
    "Transport",
]
