"""
MCP client side of ToolBridge.

A ``Session`` spawns a tool server as a child process, talks JSON-RPC to it
over stdin/stdout through a ``StdioTransport``, and exposes
``list_tools()`` / ``invoke()`` to the orchestrator.

    Orchestrator --invoke()--> Session --JSON-RPC line--> server subprocess
"""

from toolbridge.mcp.schema import (
    ChatMessage,
    ContentBlock,
    Conversation,
    Role,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
)
from toolbridge.mcp.session import CallError, ConnectError, Session, SessionState
from toolbridge.mcp.transport import StdioTransport, TransportError

__all__ = [
    "ChatMessage",
    "ContentBlock",
    "Conversation",
    "Role",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "CallError",
    "ConnectError",
    "Session",
    "SessionState",
    "StdioTransport",
    "TransportError",
]
