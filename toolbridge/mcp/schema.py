"""Data models for tool descriptors, tool calls, results, and chat history."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class ToolDescriptor(BaseModel):
    """A named, schema-described tool as listed by the server."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @property
    def properties(self) -> Dict[str, Any]:
        return self.input_schema.get("properties", {})

    def required_params(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    def prompt_line(self) -> str:
        """One-line representation for listings."""
        return f"- {self.name}: {self.description}"

    def full_schema_text(self) -> str:
        """Full parameter schema as text (for on-demand lookup)."""
        required = set(self.required_params())
        lines = [f"Tool: {self.name}", f"  {self.description}", "  Parameters:"]
        if not self.properties:
            lines.append("    (none)")
        for pname, pinfo in self.properties.items():
            req = " (required)" if pname in required else ""
            ptype = pinfo.get("type", "any")
            lines.append(f"    - {pname}: {ptype}{req} - {pinfo.get('description', '')}")
        return "\n".join(lines)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=raw["name"],
            description=raw.get("description") or "",
            input_schema=raw.get("inputSchema") or {"type": "object", "properties": {}},
        )


class ContentBlock(BaseModel):
    """A typed piece of tool output. Only text is produced today."""

    model_config = ConfigDict(frozen=True)

    type: str = "text"
    text: str = ""


class ToolCallResult(BaseModel):
    """Outcome of one tool invocation. A missing error flag means success."""

    model_config = ConfigDict(frozen=True)

    content: Tuple[ContentBlock, ...] = ()
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if block.type == "text")

    def to_wire(self) -> Dict[str, Any]:
        return {
            "content": [block.model_dump() for block in self.content],
            "isError": self.is_error,
        }


class ToolCallRequest(BaseModel):
    """A model-issued request to invoke a tool."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None  # models occasionally omit it
    arguments: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None  # provider tool-call id, when the API issues one


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatMessage(BaseModel):
    """One entry of the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCallRequest]] = None) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls or ()))


class Conversation:
    """
    Append-only message history.

    There is no way to remove or replace a message once appended; the
    messages themselves are frozen models.
    """

    def __init__(self, messages: Optional[List[ChatMessage]] = None):
        self._messages: List[ChatMessage] = list(messages or [])

    def append(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def extend(self, messages: List[ChatMessage]) -> None:
        for message in messages:
            self.append(message)

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def last(self) -> Optional[ChatMessage]:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(tuple(self._messages))
