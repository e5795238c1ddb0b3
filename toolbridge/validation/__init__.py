"""
ToolBridge validation module.

This module provides configuration loading and schema enforcement.
"""

from toolbridge.validation.config import Config, ConfigError, ToolBridgeConfig

__all__ = ["Config", "ConfigError", "ToolBridgeConfig"]
