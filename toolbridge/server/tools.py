"""Built-in tools served by ``python -m toolbridge.server``."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from toolbridge.mcp.normalize import error_result, text_result
from toolbridge.mcp.schema import ToolCallResult
from toolbridge.server.registry import ToolRegistry


class ToolArgumentError(ValueError):
    """A tool was called with a missing or mistyped argument."""


def _require_str(arguments: Dict[str, Any], key: str) -> str:
    if key not in arguments:
        raise ToolArgumentError(f"missing required argument '{key}'")
    value = arguments[key]
    if not isinstance(value, str):
        raise ToolArgumentError(f"argument '{key}' must be a string, got {type(value).__name__}")
    return value


def build_default_registry(root: Optional[Path] = None) -> ToolRegistry:
    """
    Create a registry holding the built-in tools.

    Args:
        root: Directory that relative paths resolve against. Defaults to
            the server's working directory. Paths are not confined to it.
    """
    base = Path(root) if root is not None else Path.cwd()
    registry = ToolRegistry()

    def resolve(path: str) -> Path:
        candidate = Path(path).expanduser()
        return candidate if candidate.is_absolute() else base / candidate

    @registry.tool(
        "concat",
        "concatenates many string parts into one string",
        properties={
            "parts": {
                "type": "array",
                "description": "The parts to concatenate together",
                "items": {"type": "string"},
            }
        },
        required=["parts"],
    )
    def concat(arguments: Dict[str, Any]) -> ToolCallResult:
        parts = arguments.get("parts")
        if not isinstance(parts, list):
            raise ToolArgumentError("argument 'parts' must be a list of strings")
        if not all(isinstance(p, str) for p in parts):
            raise ToolArgumentError("every element of 'parts' must be a string")
        return text_result("".join(parts))

    @registry.tool(
        "listfiles",
        "returns a list of file names from the given filesystem path, "
        "defaults to current directory if no path is supplied",
        properties={
            "path": {"type": "string", "description": "The filesystem path to list files from"}
        },
        required=["path"],
    )
    def listfiles(arguments: Dict[str, Any]) -> ToolCallResult:
        path = arguments.get("path") or "."
        if not isinstance(path, str):
            raise ToolArgumentError("argument 'path' must be a string")
        directory = resolve(path)
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
        names = [entry.name + ("/" if entry.is_dir() else "") for entry in entries]
        return text_result("\n".join(names))

    @registry.tool(
        "readfile",
        "returns the contents of a text file specified by a path relative to the current directory",
        properties={
            "path": {"type": "string", "description": "The relative filesystem path to read from"}
        },
        required=["path"],
    )
    def readfile(arguments: Dict[str, Any]) -> ToolCallResult:
        path = _require_str(arguments, "path")
        try:
            contents = resolve(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return error_result(f'Error reading file "{path}": {type(exc).__name__} - {exc}')
        return text_result(contents)

    @registry.tool(
        "writefile",
        "writes text content to a file at the given path, creating parent directories as needed",
        properties={
            "path": {"type": "string", "description": "The relative filesystem path to write to"},
            "content": {"type": "string", "description": "The text to write"},
        },
        required=["path", "content"],
    )
    def writefile(arguments: Dict[str, Any]) -> ToolCallResult:
        path = _require_str(arguments, "path")
        content = _require_str(arguments, "content")
        target = resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return text_result(f"Wrote {len(content)} characters to {path}")

    return registry
