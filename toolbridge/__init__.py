"""
ToolBridge - connect a chat model to an MCP tool server over stdio.

The model decides which tools to call; ToolBridge runs them through a
child-process tool server and feeds the results back, for a bounded
number of rounds.

Architecture:
- Session: spawns the tool server, performs the MCP handshake, owns the pipe
- Orchestrator: the multi-round tool-calling loop
- Providers: Ollama / OpenAI-compatible chat APIs
- Server: a JSON-RPC tool registry served over stdin/stdout
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from toolbridge.core.orchestrator import Orchestrator, RunOutcome, RunResult
from toolbridge.mcp.session import CallError, ConnectError, Session, SessionState

__all__ = [
    "Orchestrator",
    "RunOutcome",
    "RunResult",
    "CallError",
    "ConnectError",
    "Session",
    "SessionState",
    "__version__",
]
