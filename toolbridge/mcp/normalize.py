"""
Result normalization.

Everything that can go wrong while running a tool (a handler raising, a
severed transport, a malformed request) ends up as data: an error-flagged
``ToolCallResult`` on the server side, or a ``tool`` role message on the
client side. Nothing here raises past its caller except
``parse_call_result``, whose ``ValueError`` the session turns into a
``CallError``.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from toolbridge.mcp.schema import ChatMessage, ContentBlock, Role, ToolCallRequest, ToolCallResult


def text_result(text: str) -> ToolCallResult:
    return ToolCallResult(content=(ContentBlock(text=text),))


def error_result(text: str) -> ToolCallResult:
    return ToolCallResult(content=(ContentBlock(text=text),), is_error=True)


def describe_exception(exc: BaseException) -> str:
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def result_from_exception(exc: BaseException, tool_name: str = "") -> ToolCallResult:
    prefix = f"Error in tool '{tool_name}': " if tool_name else ""
    return error_result(prefix + describe_exception(exc))


def parse_call_result(raw: Any) -> ToolCallResult:
    """
    Parse a ``tools/call`` result object.

    An absent ``isError`` means success. Non-text blocks are kept with
    their type and an empty text; a block that is not an object is
    stringified.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"tool result must be an object, got {type(raw).__name__}")
    content = raw.get("content", [])
    if not isinstance(content, list):
        raise ValueError("tool result 'content' must be a list")

    blocks = []
    for part in content:
        if isinstance(part, dict):
            blocks.append(ContentBlock(type=part.get("type", "text"), text=str(part.get("text", ""))))
        else:
            blocks.append(ContentBlock(text=str(part)))
    return ToolCallResult(content=tuple(blocks), is_error=bool(raw.get("isError", False)))


def _blocks_payload(result: ToolCallResult) -> list:
    return [block.model_dump() for block in result.content]


def tool_message(request: ToolCallRequest, result: ToolCallResult) -> ChatMessage:
    """Fold a tool result into a ``tool`` message for the model."""
    if result.is_error:
        payload: Any = {"error": _blocks_payload(result)}
    else:
        payload = _blocks_payload(result)
    return ChatMessage(
        role=Role.TOOL,
        content=json.dumps(payload),
        tool_name=request.name,
        tool_call_id=request.id,
    )


def tool_error_message(request: ToolCallRequest, text: str) -> ChatMessage:
    payload: Dict[str, str] = {"error": text}
    return ChatMessage(
        role=Role.TOOL,
        content=json.dumps(payload),
        tool_name=request.name,
        tool_call_id=request.id,
    )
