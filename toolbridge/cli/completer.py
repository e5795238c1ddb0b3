"""
ToolBridge CLI Completer - prompt_toolkit completion for the REPL.

Provides real-time dropdown suggestions for slash commands and tool names.
"""

from typing import Callable, List, Optional

from prompt_toolkit.completion import Completer, Completion


# (command, description) pairs for the dropdown
SLASH_COMMANDS = [
    ("/help", "Show help"),
    ("/?", "Show help"),
    ("/connect", "Start the tool server (optionally with a command)"),
    ("/disconnect", "Stop the tool server"),
    ("/status", "Connection state, server and model"),
    ("/tools", "List the server's tools"),
    ("/tools info", "Show schema for a tool"),
    ("/call", "Call a tool directly: /call <name> <json>"),
    ("/history", "Show the last conversation"),
    ("/model", "Switch model (provider/model-name)"),
    ("/clear", "Clear screen"),
    ("/exit", "Exit ToolBridge"),
    ("/quit", "Exit ToolBridge"),
    ("/q", "Exit ToolBridge"),
]


class ToolBridgeCompleter(Completer):
    """Completer for the ToolBridge REPL.

    Provides real-time dropdown suggestions:
    - Slash commands with descriptions when typing "/"
    - Tool names when typing "/call " or "/tools info "
    """

    def __init__(self, tool_names_fn: Optional[Callable[[], List[str]]] = None):
        self._tool_names_fn = tool_names_fn

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor

        # Only complete when starting with "/"
        if not text.startswith("/"):
            return

        for prefix in ("/call ", "/tools info "):
            if text.startswith(prefix):
                partial = text[len(prefix):]
                if " " not in partial:
                    yield from self._complete_tool_names(partial)
                return

        # Slash command completion
        for cmd, description in SLASH_COMMANDS:
            if cmd.startswith(text):
                yield Completion(
                    cmd,
                    start_position=-len(text),
                    display_meta=description,
                )

    def _complete_tool_names(self, prefix: str):
        """Yield names of the tools the connected server offers."""
        if not self._tool_names_fn:
            return
        for name in self._tool_names_fn():
            if name.startswith(prefix):
                yield Completion(
                    name,
                    start_position=-len(prefix),
                    display_meta="tool",
                )
