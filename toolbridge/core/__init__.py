"""
ToolBridge core module.

Provides the bounded tool-calling loop that ties a model provider to a
tool session.
"""

from toolbridge.core.orchestrator import LoopEvent, Orchestrator, RunOutcome, RunResult

__all__ = ["LoopEvent", "Orchestrator", "RunOutcome", "RunResult"]
