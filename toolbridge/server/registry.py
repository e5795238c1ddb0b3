"""Tool registry: maps tool names to descriptors and handler functions."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from toolbridge.mcp.normalize import error_result, result_from_exception, text_result
from toolbridge.mcp.schema import ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)

HandlerReturn = Union[ToolCallResult, str]
ToolHandler = Callable[[Dict[str, Any]], HandlerReturn]


class ToolRegistry:
    """
    Name -> (descriptor, handler) mapping for the tool server.

    Tools are listed in registration order. ``dispatch()`` never raises:
    unknown names and handler failures come back as error-flagged results.
    Input schemas are advertised to the model but not enforced here;
    handlers validate their own arguments.
    """

    def __init__(self):
        self._descriptors: Dict[str, ToolDescriptor] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        if descriptor.name in self._descriptors:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._descriptors[descriptor.name] = descriptor
        self._handlers[descriptor.name] = handler

    def tool(
        self,
        name: str,
        description: str,
        properties: Optional[Dict[str, Any]] = None,
        required: Optional[List[str]] = None,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of ``register``."""
        schema: Dict[str, Any] = {"type": "object", "properties": properties or {}}
        if required:
            schema["required"] = list(required)
        descriptor = ToolDescriptor(name=name, description=description, input_schema=schema)

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(descriptor, handler)
            return handler

        return decorator

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        return self._descriptors.get(name)

    def list_tools(self) -> List[ToolDescriptor]:
        return list(self._descriptors.values())

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    # ── Dispatch ──────────────────────────────────────────────────────────

    def dispatch(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("Call for unknown tool %r", name)
            return error_result(f"Tool not found: {name}")

        try:
            outcome = handler(arguments or {})
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return result_from_exception(exc, tool_name=name)

        if isinstance(outcome, ToolCallResult):
            return outcome
        if isinstance(outcome, str):
            return text_result(outcome)
        return error_result(
            f"Tool '{name}' returned an unsupported value of type {type(outcome).__name__}"
        )
