"""
ToolBridge providers module.

Chat-completion adapters for model APIs that support native tool calling.
"""

from toolbridge.providers.base import Provider, ProviderError, ProviderFactory, tool_declarations

__all__ = ["Provider", "ProviderError", "ProviderFactory", "tool_declarations"]
