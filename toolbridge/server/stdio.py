"""JSON-RPC tool server over stdin/stdout, one message per line."""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO, Dict, Optional

from toolbridge.mcp.session import SUPPORTED_PROTOCOL_VERSIONS
from toolbridge.server.registry import ToolRegistry

logger = logging.getLogger(__name__)


PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


class StdioServer:
    """
    Serve a ``ToolRegistry`` to a single client over a pair of byte streams.

    ``tools/call`` requests run on a worker pool so a slow tool does not
    hold up the others; every response is written whole under a lock.
    Handler failures never reach this layer (``dispatch`` normalizes them),
    and protocol errors are answered, not raised.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        name: str = "toolbridge-server",
        version: str = "0.1.0",
        instructions: Optional[str] = "Just list and call the tools",
        max_workers: int = 8,
    ):
        self.registry = registry
        self.name = name
        self.version = version
        self.instructions = instructions
        self.max_workers = max_workers
        self.initialized = False
        self._write_lock = threading.Lock()
        self._stdout: Optional[BinaryIO] = None

    def serve(self, stdin: BinaryIO, stdout: BinaryIO) -> None:
        """Read requests until EOF, then wait for in-flight calls to finish."""
        self._stdout = stdout
        logger.info("%s serving %d tool(s)", self.name, len(self.registry))
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="tool") as pool:
            for raw in iter(stdin.readline, b""):
                if not raw.strip():
                    continue
                try:
                    message = json.loads(raw.decode())
                except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                    self._send_error(None, PARSE_ERROR, f"Parse error: {exc}")
                    continue
                self._handle(message, pool)
        logger.info("Client closed stdin; %s exiting", self.name)

    # ── Message handling ──────────────────────────────────────────────────

    def _handle(self, message: Any, pool: ThreadPoolExecutor) -> None:
        if not isinstance(message, dict) or not isinstance(message.get("method"), str):
            request_id = message.get("id") if isinstance(message, dict) else None
            self._send_error(request_id, INVALID_REQUEST, "Invalid request")
            return

        method = message["method"]
        request_id = message.get("id")
        params = message.get("params") or {}
        is_notification = "id" not in message

        if is_notification:
            if method == "notifications/initialized":
                self.initialized = True
                logger.debug("Client finished initialization")
            else:
                logger.debug("Ignoring notification %s", method)
            return

        if method == "initialize":
            self._send_result(request_id, self._initialize(params))
        elif method == "ping":
            self._send_result(request_id, {})
        elif method == "tools/list":
            tools = [descriptor.to_wire() for descriptor in self.registry.list_tools()]
            self._send_result(request_id, {"tools": tools})
        elif method == "tools/call":
            name = params.get("name") if isinstance(params, dict) else None
            if not isinstance(name, str) or not name:
                self._send_error(request_id, INVALID_PARAMS, "tools/call requires a tool name")
                return
            arguments = params.get("arguments") or {}
            if not isinstance(arguments, dict):
                self._send_error(request_id, INVALID_PARAMS, "tools/call arguments must be an object")
                return
            pool.submit(self._call_tool, request_id, name, arguments)
        else:
            self._send_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion") if isinstance(params, dict) else None
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            version = requested
        else:
            version = SUPPORTED_PROTOCOL_VERSIONS[0]
        client = (params.get("clientInfo") or {}) if isinstance(params, dict) else {}
        logger.info("Initialize from %s (protocol %s)", client.get("name", "unknown client"), version)

        result: Dict[str, Any] = {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.name, "version": self.version},
        }
        if self.instructions:
            result["instructions"] = self.instructions
        return result

    def _call_tool(self, request_id: Any, name: str, arguments: Dict[str, Any]) -> None:
        logger.debug("tools/call %s %s", name, arguments)
        result = self.registry.dispatch(name, arguments)
        self._send_result(request_id, result.to_wire())

    # ── Output ────────────────────────────────────────────────────────────

    def _send_result(self, request_id: Any, result: Dict[str, Any]) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _send_error(self, request_id: Any, code: int, message: str) -> None:
        self._write({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})

    def _write(self, message: Dict[str, Any]) -> None:
        line = (json.dumps(message) + "\n").encode()
        with self._write_lock:
            try:
                self._stdout.write(line)
                self._stdout.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                logger.warning("Could not write response: %s", exc)
