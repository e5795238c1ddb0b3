"""
ToolBridge Orchestrator - bounded multi-round tool-calling loop.

Each round:
1. Send the full history plus tool declarations to the model
2. Append the model's reply to history
3. No tool calls in the reply -> that reply is the answer, stop
4. Otherwise run every requested call concurrently through the session
5. Append one ``tool`` message per call, in request order, and go again

The loop stops after ``max_rounds`` model turns at most. Tool failures of
any kind become ``tool`` messages; they never end a round early.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from toolbridge.mcp.normalize import describe_exception, tool_error_message, tool_message
from toolbridge.mcp.schema import ChatMessage, Conversation, ToolCallRequest, ToolDescriptor
from toolbridge.mcp.session import CallError
from toolbridge.providers.base import Provider

logger = logging.getLogger(__name__)

MAX_ROUNDS = 5


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

class RunOutcome(str, Enum):
    ANSWER = "answer"
    ROUND_LIMIT = "round_limit"


@dataclass
class RunResult:
    """Final state of one ``Orchestrator.run()``."""

    outcome: RunOutcome
    answer: Optional[str]
    rounds: int
    history: Conversation

    @property
    def reached_round_limit(self) -> bool:
        return self.outcome is RunOutcome.ROUND_LIMIT


@dataclass
class LoopEvent:
    """Progress notification emitted while a run is in flight."""

    kind: str  # model_response, tool_call, tool_result, final_answer, round_limit
    round: int
    message: Optional[ChatMessage] = None
    call: Optional[ToolCallRequest] = None


EventCallback = Callable[[LoopEvent], None]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class Orchestrator:
    """
    Drives one conversation between a model provider and a tool session.

    ``session`` needs ``invoke(name, arguments)`` and a ``tools`` list;
    ``Session`` provides both. The orchestrator never touches the server
    process itself.
    """

    def __init__(
        self,
        session,
        provider: Provider,
        max_rounds: int = MAX_ROUNDS,
        on_event: Optional[EventCallback] = None,
    ):
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.session = session
        self.provider = provider
        self.max_rounds = max_rounds
        self.on_event = on_event

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, prompt: str, tools: Optional[Sequence[ToolDescriptor]] = None) -> RunResult:
        """
        Run the tool-calling loop for one prompt.

        Args:
            prompt: The user's message.
            tools: Tools to offer the model. Defaults to the session's
                cached tool list.

        Returns:
            RunResult with the answer, or ``RunOutcome.ROUND_LIMIT`` if the
            model was still calling tools after ``max_rounds`` turns.

        Raises:
            ProviderError: If the model API call fails.
        """
        offered = list(tools) if tools is not None else list(self.session.tools)
        history = Conversation([ChatMessage.user(prompt)])
        logger.info("Starting tool-calling run with %d tool(s)", len(offered))

        for round_no in range(1, self.max_rounds + 1):
            reply = self.provider.chat(history.messages, offered)
            history.append(reply)
            self._emit(LoopEvent("model_response", round_no, message=reply))

            if not reply.tool_calls:
                logger.info("Final answer after %d round(s)", round_no)
                self._emit(LoopEvent("final_answer", round_no, message=reply))
                return RunResult(RunOutcome.ANSWER, reply.content, round_no, history)

            logger.info("Round %d: model requested %d tool call(s)", round_no, len(reply.tool_calls))
            history.extend(self._dispatch_round(reply.tool_calls, round_no))

        logger.warning("Reached max tool call rounds (%d). Ending conversation.", self.max_rounds)
        self._emit(LoopEvent("round_limit", self.max_rounds, message=history.last))
        return RunResult(RunOutcome.ROUND_LIMIT, None, self.max_rounds, history)

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    def _dispatch_round(self, calls: Sequence[ToolCallRequest], round_no: int) -> List[ChatMessage]:
        """Run all calls concurrently; return their messages in request order."""
        results: List[Optional[ChatMessage]] = [None] * len(calls)
        with ThreadPoolExecutor(max_workers=len(calls), thread_name_prefix="toolcall") as pool:
            futures = [pool.submit(self._execute_call, call, round_no) for call in calls]
            for index, future in enumerate(futures):
                results[index] = future.result()
        return results

    def _execute_call(self, call: ToolCallRequest, round_no: int) -> ChatMessage:
        self._emit(LoopEvent("tool_call", round_no, call=call))

        if not call.name:
            message = tool_error_message(call, "Missing tool name from LLM")
        else:
            try:
                result = self.session.invoke(call.name, call.arguments)
            except CallError as exc:
                logger.warning("Tool call %s failed: %s", call.name, exc)
                message = tool_error_message(call, f"Exception during tool call: {exc}")
            except Exception as exc:
                logger.exception("Unexpected error calling tool %s", call.name)
                message = tool_error_message(call, f"Exception during tool call: {describe_exception(exc)}")
            else:
                if result.is_error:
                    logger.warning("Tool %s reported an error: %s", call.name, result.text)
                message = tool_message(call, result)

        self._emit(LoopEvent("tool_result", round_no, message=message, call=call))
        return message

    def _emit(self, event: LoopEvent) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Event listener failed on %s", event.kind)
