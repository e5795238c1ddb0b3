"""MCP server communication via stdio subprocess transport."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when MCP transport communication fails."""


class TransportClosedError(TransportError):
    """The child process exited or the channel was closed."""


class TransportTimeout(TransportError):
    """No response arrived within the allotted time."""


class RPCError(TransportError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(f"MCP error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class StdioTransport:
    """
    Communicate with an MCP server over stdin/stdout (JSON-RPC, one message per line).

    A reader thread owns the server's stdout and resolves pending requests
    by id, so several requests may be in flight at once. ``close()`` fails
    every pending request with ``TransportClosedError``. ``on_close`` is
    called with the transport when the server closes its output without
    ``close()`` having been called.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        on_close: Optional[Callable[["StdioTransport"], None]] = None,
    ):
        self.command = command
        self.args = args or []
        self.env = env or {}
        self._on_close = on_close
        self._process: Optional[subprocess.Popen] = None
        self._request_id = 0
        self._pending: Dict[int, Future] = {}
        self._pending_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._closed = False
        self._reader: Optional[threading.Thread] = None
        self._stderr_reader: Optional[threading.Thread] = None
        self._output_closed = threading.Event()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the MCP server subprocess and its reader threads."""
        if self._process is not None:
            raise TransportError("transport already started")

        merged_env = {**os.environ, **self.env}
        try:
            self._process = subprocess.Popen(
                [self.command] + self.args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=merged_env,
            )
        except FileNotFoundError as exc:
            raise TransportError(f"MCP server command not found: {self.command}") from exc
        except OSError as exc:
            raise TransportError(f"Failed to start MCP server '{self.command}': {exc}") from exc

        logger.info("Started MCP server %s (pid %s)", self.command, self._process.pid)

        self._reader = threading.Thread(
            target=self._read_loop, name=f"mcp-stdout-{self._process.pid}", daemon=True
        )
        self._stderr_reader = threading.Thread(
            target=self._drain_stderr, name=f"mcp-stderr-{self._process.pid}", daemon=True
        )
        self._reader.start()
        self._stderr_reader.start()

    def close(self) -> None:
        """Fail pending requests, terminate the subprocess, release the pipes."""
        if self._closed:
            return
        self._closed = True
        self._fail_pending(TransportClosedError("transport closed"))

        process = self._process
        if process is not None:
            if process.poll() is None:
                try:
                    process.terminate()
                    process.wait(timeout=5)
                except (subprocess.TimeoutExpired, OSError):
                    process.kill()
                    process.wait()
            for stream in (process.stdin, process.stdout, process.stderr):
                if stream is None:
                    continue
                try:
                    stream.close()
                except OSError:
                    pass
            logger.info("Stopped MCP server %s (exit code %s)", self.command, process.returncode)

        current = threading.current_thread()
        for thread in (self._reader, self._stderr_reader):
            if thread is not None and thread is not current:
                thread.join(timeout=2)

    @property
    def is_running(self) -> bool:
        if self._closed or self._output_closed.is_set() or self._process is None:
            return False
        return self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    def request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a JSON-RPC request and block until its response arrives."""
        future: Future = Future()
        with self._pending_lock:
            if self._closed or self._output_closed.is_set():
                raise TransportClosedError("transport closed")
            self._request_id += 1
            request_id = self._request_id
            self._pending[request_id] = future

        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            self._write(message)
        except TransportError:
            self._forget(request_id)
            raise

        try:
            response = future.result(timeout=timeout)
        except FutureTimeoutError:
            self._forget(request_id)
            raise TransportTimeout(f"No response to '{method}' within {timeout}s")

        if "error" in response:
            err = response["error"] or {}
            raise RPCError(err.get("code"), err.get("message", "unknown error"), err.get("data"))

        result = response.get("result", {})
        return result if result is not None else {}

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a JSON-RPC notification (no response expected)."""
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        self._write(message)

    def _write(self, message: Dict[str, Any]) -> None:
        if self._closed or self._process is None or self._process.stdin is None:
            raise TransportClosedError("transport is not running")

        line = json.dumps(message) + "\n"
        with self._write_lock:
            try:
                self._process.stdin.write(line.encode())
                self._process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise TransportClosedError(f"MCP transport error: {exc}") from exc

    def _forget(self, request_id: int) -> None:
        with self._pending_lock:
            self._pending.pop(request_id, None)

    def _fail_pending(self, exc: TransportError) -> None:
        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(exc)

    # ── Reader threads ────────────────────────────────────────────────────

    def _read_loop(self) -> None:
        stdout = self._process.stdout
        try:
            for raw in iter(stdout.readline, b""):
                if not raw.strip():
                    continue
                try:
                    message = json.loads(raw.decode())
                except (UnicodeDecodeError, json.JSONDecodeError):
                    logger.warning("Skipping malformed line from MCP server: %r", raw[:200])
                    continue
                self._route(message)
        except (OSError, ValueError) as exc:
            logger.debug("MCP stdout reader stopped: %s", exc)

        self._output_closed.set()
        self._fail_pending(TransportClosedError("MCP server closed connection"))
        if not self._closed:
            logger.warning("MCP server %s closed its output stream", self.command)
            if self._on_close is not None:
                self._on_close(self)

    def _route(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning("Ignoring non-object message from MCP server: %r", message)
            return

        request_id = message.get("id")
        if "method" in message:
            # Server-initiated requests and notifications are not supported by this client.
            logger.debug("Ignoring server message %s", message.get("method"))
            return

        with self._pending_lock:
            future = self._pending.pop(request_id, None)
        if future is None:
            logger.warning("Response for unknown request id %r", request_id)
            return
        if not future.done():
            future.set_result(message)

    def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        try:
            for raw in iter(stderr.readline, b""):
                logger.debug("[server stderr] %s", raw.decode(errors="replace").rstrip())
        except (OSError, ValueError):
            pass

    # ── Cleanup ───────────────────────────────────────────────────────────

    def __del__(self):
        if self._process is not None and not self._closed:
            self.close()
