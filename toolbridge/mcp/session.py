"""
Session manager: owns the tool server process, its transport, and the handshake.

State machine::

    disconnected -> connecting -> connected
         ^              |             |
         +--------------+-------------+   (failure, disconnect, transport loss)

``connect()`` and ``disconnect()`` are the only lifecycle entry points.
Listeners registered with ``add_listener()`` are told about every state
change, which is how the CLI renders connection status.
"""

from __future__ import annotations

import logging
import shlex
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from toolbridge.mcp.normalize import parse_call_result
from toolbridge.mcp.schema import ToolCallResult, ToolDescriptor
from toolbridge.mcp.transport import StdioTransport, TransportError

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]
CLIENT_INFO = {"name": "toolbridge", "version": "0.1.0"}


class ConnectError(Exception):
    """Spawning the server or completing the handshake failed."""


class CallError(Exception):
    """A request to a connected server failed (transport, protocol, or state)."""


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


StateListener = Callable[[SessionState], None]


class Session:
    """
    A live pairing of a tool server child process and its transport.

    Example:
        >>> session = Session()
        >>> session.connect("python -m toolbridge.server")
        >>> tools = session.list_tools()
        >>> result = session.invoke("concat", {"parts": ["a", "b"]})
        >>> session.disconnect()
    """

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        handshake_timeout: Optional[float] = 30.0,
        call_timeout: Optional[float] = 120.0,
        client_info: Optional[Dict[str, str]] = None,
    ):
        self.env = env or {}
        self.handshake_timeout = handshake_timeout
        self.call_timeout = call_timeout
        self.client_info = client_info or dict(CLIENT_INFO)

        self._state = SessionState.DISCONNECTED
        self._transport: Optional[StdioTransport] = None
        self._tools: List[ToolDescriptor] = []
        self._listeners: List[StateListener] = []
        self._lock = threading.RLock()

        self.launch_command: Optional[str] = None
        self.server_info: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}
        self.protocol_version: Optional[str] = None
        self.instructions: Optional[str] = None

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def tools(self) -> List[ToolDescriptor]:
        """Tools from the last successful ``list_tools()``."""
        return list(self._tools)

    @property
    def pid(self) -> Optional[int]:
        transport = self._transport
        return transport.pid if transport is not None else None

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Session state listener failed")

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def connect(self, launch_command: str) -> None:
        """
        Spawn the server and perform the initialize handshake.

        If a session is already live it is fully torn down first. On any
        failure the session is rolled back to ``disconnected`` and
        ``ConnectError`` is raised.
        """
        with self._lock:
            if self._state is not SessionState.DISCONNECTED:
                logger.info("Reconnecting: tearing down the current session first")
                self._teardown()

            self._set_state(SessionState.CONNECTING)
            try:
                try:
                    argv = shlex.split(launch_command)
                except ValueError as exc:
                    raise ConnectError(f"Cannot parse launch command: {exc}") from exc
                if not argv:
                    raise ConnectError("Launch command is empty")

                transport = StdioTransport(
                    command=argv[0],
                    args=argv[1:],
                    env=self.env,
                    on_close=self._handle_transport_closed,
                )
                self._transport = transport
                transport.start()
                self._handshake(transport)
                if not transport.is_running:
                    raise ConnectError("MCP server exited during the handshake")
            except ConnectError:
                self._teardown()
                raise
            except TransportError as exc:
                self._teardown()
                raise ConnectError(f"Failed to connect to MCP server: {exc}") from exc

            self.launch_command = launch_command
            self._set_state(SessionState.CONNECTED)
            logger.info(
                "Connected to %s %s (protocol %s)",
                self.server_info.get("name", "MCP server"),
                self.server_info.get("version", ""),
                self.protocol_version,
            )

    def _handshake(self, transport: StdioTransport) -> None:
        result = transport.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": self.client_info,
            },
            timeout=self.handshake_timeout,
        )
        if not isinstance(result, dict) or "protocolVersion" not in result:
            raise ConnectError(f"Malformed initialize response: {result!r}")
        if result["protocolVersion"] not in SUPPORTED_PROTOCOL_VERSIONS:
            raise ConnectError(f"Unsupported MCP protocol version: {result['protocolVersion']!r}")

        self.protocol_version = result["protocolVersion"]
        self.server_capabilities = result.get("capabilities") or {}
        self.server_info = result.get("serverInfo") or {}
        self.instructions = result.get("instructions")
        transport.notify("notifications/initialized")

    def disconnect(self) -> None:
        """Tear the session down. Never raises; safe when already disconnected."""
        with self._lock:
            self._teardown()

    def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            logger.info("Disconnecting from MCP server")
            try:
                transport.close()
            except Exception:
                logger.exception("Error while closing MCP transport")
        self._tools = []
        self.server_info = {}
        self.server_capabilities = {}
        self.protocol_version = None
        self.instructions = None
        self._set_state(SessionState.DISCONNECTED)

    def _handle_transport_closed(self, transport: StdioTransport) -> None:
        # Runs on the transport's reader thread, which close() may be joining
        # while it holds the session lock; teardown waits for the lock elsewhere.
        threading.Thread(
            target=self._drop_lost_transport,
            args=(transport,),
            name="mcp-session-lost",
            daemon=True,
        ).start()

    def _drop_lost_transport(self, transport: StdioTransport) -> None:
        with self._lock:
            if self._transport is not transport:
                return
            if self._state is SessionState.CONNECTED:
                logger.warning("MCP server went away; session disconnected")
                self._teardown()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    # ── Requests ──────────────────────────────────────────────────────────

    def _require_transport(self) -> StdioTransport:
        transport = self._transport
        if self._state is not SessionState.CONNECTED or transport is None:
            raise CallError("Not connected to an MCP server")
        return transport

    def list_tools(self) -> List[ToolDescriptor]:
        """Fetch the server's tools. The cache is replaced only on success."""
        transport = self._require_transport()
        tools: List[ToolDescriptor] = []
        cursor: Optional[str] = None
        try:
            while True:
                params = {"cursor": cursor} if cursor else None
                result = transport.request("tools/list", params, timeout=self.call_timeout)
                for raw in result.get("tools", []):
                    tools.append(ToolDescriptor.from_wire(raw))
                cursor = result.get("nextCursor")
                if not cursor:
                    break
        except TransportError as exc:
            raise CallError(f"tools/list failed: {exc}") from exc
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise CallError(f"Malformed tools/list response: {exc}") from exc

        self._tools = tools
        logger.info("Server offers %d tool(s)", len(tools))
        return list(tools)

    def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolCallResult:
        """Call one tool and wait for its matched response."""
        transport = self._require_transport()
        logger.debug("Calling tool %s with %s", name, arguments)
        try:
            raw = transport.request(
                "tools/call",
                {"name": name, "arguments": arguments or {}},
                timeout=self.call_timeout,
            )
        except TransportError as exc:
            raise CallError(f"Tool call '{name}' failed: {exc}") from exc

        try:
            return parse_call_result(raw)
        except ValueError as exc:
            raise CallError(f"Malformed result from tool '{name}': {exc}") from exc
