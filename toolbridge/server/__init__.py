"""
ToolBridge tool server.

Serves a ``ToolRegistry`` over stdin/stdout. Run the built-in tools with
``python -m toolbridge.server`` or ``toolbridge-server``.
"""

from toolbridge.server.registry import ToolHandler, ToolRegistry
from toolbridge.server.stdio import StdioServer
from toolbridge.server.tools import ToolArgumentError, build_default_registry

__all__ = [
    "ToolHandler",
    "ToolRegistry",
    "StdioServer",
    "ToolArgumentError",
    "build_default_registry",
]
