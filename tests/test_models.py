"""Tests for the message and tool value types."""

import pytest

from cairn.models import (
    Message,
    ToolCall,
    ToolParameters,
    ToolProperty,
    ToolResult,
    ToolSchema,
    parse_arguments,
)


class TestMessage:
    def test_tool_message_needs_id_and_name(self):
        with pytest.raises(ValueError):
            Message("tool", "out")
        with pytest.raises(ValueError):
            Message("tool", "out", tool_call_id="c1")

    def test_assistant_needs_content_or_calls(self):
        with pytest.raises(ValueError):
            Message("assistant")
        assert Message.assistant("").content == ""

    def test_unknown_role(self):
        with pytest.raises(ValueError, match="unknown message role"):
            Message("robot", "hi")

    def test_tool_calls_stored_as_tuple(self):
        msg = Message.assistant(None, tool_calls=[ToolCall("c1", "read_file")])
        assert isinstance(msg.tool_calls, tuple)

    def test_wire_form(self):
        call = ToolCall("c1", "read_file", '{"path": "a"}')
        assert Message.assistant(None, [call]).to_dict() == {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "c1",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": '{"path": "a"}'},
                }
            ],
        }
        assert Message.tool_result("c1", "read_file", "data").to_dict() == {
            "role": "tool",
            "content": "data",
            "tool_call_id": "c1",
            "name": "read_file",
        }


class TestToolResult:
    def test_success_content(self):
        assert ToolResult.ok("done").to_content() == "done"
        assert ToolResult.ok("").to_content() == "Success"

    def test_failure_content(self):
        assert ToolResult.fail("boom").to_content() == "Error: boom"


class TestSchema:
    def test_function_form(self):
        schema = ToolSchema(
            "greet",
            "Say hello",
            ToolParameters(
                {"who": ToolProperty("string", "Name", enum=("a", "b"))},
                required=("who",),
            ),
        )
        assert schema.to_dict() == {
            "type": "function",
            "function": {
                "name": "greet",
                "description": "Say hello",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "who": {"type": "string", "description": "Name", "enum": ["a", "b"]}
                    },
                    "required": ["who"],
                },
            },
        }


class TestParseArguments:
    def test_empty_string_is_no_arguments(self):
        assert parse_arguments("") == {}

    def test_object(self):
        assert parse_arguments('{"a": 1}') == {"a": 1}

    def test_invalid(self):
        with pytest.raises(ValueError, match="invalid JSON"):
            parse_arguments("{")

    def test_not_an_object(self):
        with pytest.raises(ValueError, match="expected a JSON object"):
            parse_arguments("3")
