"""Tests for tool schema models and result normalization."""

import json

import pytest

from toolbridge.mcp.normalize import (
    error_result,
    parse_call_result,
    result_from_exception,
    text_result,
    tool_error_message,
    tool_message,
)
from toolbridge.mcp.schema import (
    ChatMessage,
    Conversation,
    Role,
    ToolCallRequest,
    ToolDescriptor,
)


class TestToolDescriptor:
    def test_wire_round_trip_uses_input_schema_key(self):
        descriptor = ToolDescriptor(
            name="concat",
            description="joins strings",
            input_schema={"type": "object", "properties": {"parts": {"type": "array"}}, "required": ["parts"]},
        )
        wire = descriptor.to_wire()
        assert "inputSchema" in wire
        assert ToolDescriptor.from_wire(wire) == descriptor

    def test_from_wire_defaults(self):
        descriptor = ToolDescriptor.from_wire({"name": "bare"})
        assert descriptor.description == ""
        assert descriptor.input_schema == {"type": "object", "properties": {}}
        assert descriptor.required_params() == []

    def test_from_wire_requires_name(self):
        with pytest.raises(KeyError):
            ToolDescriptor.from_wire({"description": "nameless"})

    def test_full_schema_text_marks_required(self):
        descriptor = ToolDescriptor(
            name="readfile",
            description="reads",
            input_schema={
                "type": "object",
                "properties": {"path": {"type": "string", "description": "where"}},
                "required": ["path"],
            },
        )
        text = descriptor.full_schema_text()
        assert "Tool: readfile" in text
        assert "path: string (required) - where" in text

    def test_full_schema_text_without_parameters(self):
        assert "(none)" in ToolDescriptor(name="noop").full_schema_text()

    def test_prompt_line(self):
        descriptor = ToolDescriptor(name="concat", description="joins [strings]")
        assert descriptor.prompt_line() == "- concat: joins [strings]"


class TestParseCallResult:
    def test_absent_is_error_means_success(self):
        result = parse_call_result({"content": [{"type": "text", "text": "hi"}]})
        assert result.is_error is False
        assert result.text == "hi"

    def test_is_error_flag(self):
        result = parse_call_result({"content": [{"type": "text", "text": "bad"}], "isError": True})
        assert result.is_error is True

    def test_missing_content_is_empty(self):
        result = parse_call_result({})
        assert result.content == ()
        assert result.text == ""

    def test_non_object_block_is_stringified(self):
        result = parse_call_result({"content": [42]})
        assert result.content[0].text == "42"

    def test_non_text_blocks_do_not_contribute_text(self):
        result = parse_call_result({"content": [{"type": "image", "data": "..."}, {"type": "text", "text": "t"}]})
        assert result.content[0].type == "image"
        assert result.text == "t"

    @pytest.mark.parametrize("raw", [None, "text", [1, 2], {"content": "not a list"}])
    def test_malformed_results_raise(self, raw):
        with pytest.raises(ValueError):
            parse_call_result(raw)


class TestResults:
    def test_text_and_error_results(self):
        assert text_result("x").is_error is False
        assert error_result("x").is_error is True
        assert error_result("x").to_wire() == {
            "content": [{"type": "text", "text": "x"}],
            "isError": True,
        }

    def test_result_from_exception_names_tool_and_type(self):
        result = result_from_exception(FileNotFoundError("no such dir"), tool_name="listfiles")
        assert result.is_error
        assert result.text == "Error in tool 'listfiles': FileNotFoundError: no such dir"

    def test_result_from_exception_without_message(self):
        assert result_from_exception(KeyError()).text == "KeyError"


class TestToolMessages:
    def test_success_message_carries_content_blocks(self):
        request = ToolCallRequest(name="concat", arguments={"parts": ["a"]}, id="call_1")
        message = tool_message(request, text_result("a"))

        assert message.role is Role.TOOL
        assert message.tool_name == "concat"
        assert message.tool_call_id == "call_1"
        assert json.loads(message.content) == [{"type": "text", "text": "a"}]

    def test_error_result_is_wrapped_under_error_key(self):
        message = tool_message(ToolCallRequest(name="x"), error_result("broken"))
        assert json.loads(message.content) == {"error": [{"type": "text", "text": "broken"}]}

    def test_tool_error_message(self):
        message = tool_error_message(ToolCallRequest(), "Missing tool name from LLM")
        assert message.tool_name is None
        assert json.loads(message.content) == {"error": "Missing tool name from LLM"}


class TestConversation:
    def test_append_and_extend_preserve_order(self):
        history = Conversation([ChatMessage.user("1")])
        history.append(ChatMessage.assistant("2"))
        history.extend([ChatMessage.user("3"), ChatMessage.user("4")])

        assert [m.content for m in history] == ["1", "2", "3", "4"]
        assert history.last.content == "4"
        assert len(history) == 4

    def test_messages_snapshot_is_immutable(self):
        history = Conversation([ChatMessage.user("1")])
        snapshot = history.messages
        history.append(ChatMessage.user("2"))

        assert len(snapshot) == 1
        assert isinstance(snapshot, tuple)

    def test_empty_conversation(self):
        assert Conversation().last is None
