"""Shared fixtures: server launch commands and in-process fakes."""

import shlex
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from toolbridge.mcp.schema import ChatMessage, ToolCallRequest, ToolCallResult, ToolDescriptor
from toolbridge.mcp.session import Session
from toolbridge.providers.base import Provider

FIXTURES = Path(__file__).parent / "fixtures"


def python_command(*args: str) -> str:
    return " ".join(shlex.quote(part) for part in (sys.executable,) + args)


@pytest.fixture
def server_command() -> str:
    """Launch command for the built-in tool server."""
    return python_command("-m", "toolbridge.server")


@pytest.fixture
def slow_server_command() -> str:
    return python_command(str(FIXTURES / "slow_server.py"))


def handshake_server_command(version: str, exit_after_handshake: bool = False) -> str:
    args = [str(FIXTURES / "handshake_server.py"), version]
    if exit_after_handshake:
        args.append("exit")
    return python_command(*args)


@pytest.fixture
def session():
    """A session that is always torn down after the test."""
    s = Session(handshake_timeout=15, call_timeout=15)
    yield s
    s.disconnect()


class ScriptedProvider(Provider):
    """
    Provider that replays canned assistant messages.

    Records a snapshot of the history it was given on every call.
    """

    def __init__(self, replies: Sequence[ChatMessage]):
        self._replies = list(replies)
        self.seen: List[tuple] = []
        self.seen_tools: List[List[ToolDescriptor]] = []
        self.base_url = "scripted://"

    @property
    def provider_name(self) -> str:
        return "scripted"

    def chat(self, messages, tools=()):
        self.seen.append(tuple(messages))
        self.seen_tools.append(list(tools))
        if not self._replies:
            raise AssertionError("ScriptedProvider ran out of replies")
        return self._replies.pop(0)

    def close(self) -> None:
        pass


class AlwaysCallsToolProvider(ScriptedProvider):
    """Never gives a final answer."""

    def __init__(self, call: ToolCallRequest):
        super().__init__([])
        self._call = call

    def chat(self, messages, tools=()):
        self.seen.append(tuple(messages))
        self.seen_tools.append(list(tools))
        return ChatMessage.assistant("", tool_calls=[self._call])


class FakeSession:
    """
    Stand-in for ``Session`` backed by plain functions.

    ``handlers`` maps tool name to a callable returning a ToolCallResult
    (or raising). ``completed`` records names in completion order.
    """

    def __init__(
        self,
        handlers: Dict[str, Callable[[dict], ToolCallResult]],
        tools: Optional[List[ToolDescriptor]] = None,
    ):
        self.handlers = handlers
        self.tools = tools or [ToolDescriptor(name=name) for name in handlers]
        self.completed: List[str] = []
        self.invocations = 0
        self._lock = threading.Lock()

    def invoke(self, name, arguments=None):
        with self._lock:
            self.invocations += 1
        result = self.handlers[name](arguments or {})
        with self._lock:
            self.completed.append(name)
        return result


def delayed(seconds: float, result: ToolCallResult) -> Callable[[dict], ToolCallResult]:
    def handler(arguments):
        time.sleep(seconds)
        return result

    return handler


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()
