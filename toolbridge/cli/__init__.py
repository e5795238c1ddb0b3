"""ToolBridge command-line interface."""
