"""Tests for external tool discovery and invocation."""

import json
import textwrap

import pytest

from cairn.executor import ToolExecutor
from cairn.external import (
    ExternalTool,
    discover_tools,
    parse_response,
    parse_schema,
    probe_schema,
)


def _script(path, body):
    path.write_text("#!/bin/sh\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return path


GREET_SCHEMA = {
    "name": "greet",
    "description": "Greet someone",
    "parameters": {
        "who": {"type": "string", "description": "Name", "required": True},
        "loud": {"type": "boolean", "description": "Shout"},
    },
}


def _greet_tool(tmp_path, reply='{"success": true, "result": "hello"}'):
    return _script(
        tmp_path / "greet",
        f"""\
        if [ "$1" = "--schema" ]; then
          echo '{json.dumps(GREET_SCHEMA)}'
          exit 0
        fi
        cat > /dev/null
        echo '{reply}'
        """,
    )


# ---------------------------------------------------------------------------
# Schema parsing
# ---------------------------------------------------------------------------


class TestParseSchema:
    def test_required_flags_collected(self):
        schema = parse_schema(GREET_SCHEMA)
        assert schema.name == "greet"
        assert schema.parameters.required == ("who",)
        assert set(schema.parameters.properties) == {"who", "loud"}

    def test_enum_kept(self):
        schema = parse_schema(
            {"name": "t", "parameters": {"mode": {"type": "string", "enum": ["a", "b"]}}}
        )
        assert schema.parameters.properties["mode"].enum == ("a", "b")

    @pytest.mark.parametrize(
        "doc",
        [
            [],
            {"description": "no name"},
            {"name": ""},
            {"name": "t", "parameters": []},
            {"name": "t", "parameters": {"x": "string"}},
        ],
    )
    def test_rejects_bad_shapes(self, doc):
        with pytest.raises(ValueError):
            parse_schema(doc)


class TestParseResponse:
    def test_success_string(self):
        result = parse_response('{"success": true, "result": "done"}')
        assert result.success and result.output == "done"

    def test_success_structured_result_serialized(self):
        result = parse_response('{"success": true, "result": {"n": 2}}')
        assert json.loads(result.output) == {"n": 2}

    def test_failure(self):
        result = parse_response('{"success": false, "error": "bad input"}')
        assert not result.success
        assert result.error == "bad input"

    def test_plain_text_is_success(self):
        result = parse_response("just text\n")
        assert result.success and result.output == "just text"

    def test_bare_number_is_text(self):
        result = parse_response("42\n")
        assert result.success and result.output == "42"

    def test_json_without_success_flag_is_text(self):
        result = parse_response('{"value": 1}')
        assert result.success
        assert result.output == '{"value": 1}'


# ---------------------------------------------------------------------------
# Discovery and execution
# ---------------------------------------------------------------------------


class TestDiscovery:
    def test_probe_schema(self, tmp_path):
        schema = probe_schema(_greet_tool(tmp_path))
        assert schema is not None and schema.name == "greet"

    def test_probe_rejects_bad_output(self, tmp_path):
        path = _script(tmp_path / "junk", "echo 'not json'\n")
        assert probe_schema(path) is None

    def test_probe_rejects_nonzero_exit(self, tmp_path):
        path = _script(tmp_path / "fails", "exit 3\n")
        assert probe_schema(path) is None

    def test_skips_non_executable_and_hidden(self, tmp_path):
        _greet_tool(tmp_path)
        (tmp_path / "readme.txt").write_text("not a tool")
        hidden = _script(tmp_path / ".secret", "exit 1\n")
        assert hidden.exists()
        tools = discover_tools([tmp_path])
        assert [t.name for t in tools] == ["greet"]

    def test_missing_directory_is_ignored(self, tmp_path):
        assert discover_tools([tmp_path / "nowhere"]) == []

    def test_executor_loads_and_lists(self, tmp_path):
        _greet_tool(tmp_path)
        executor = ToolExecutor()
        loaded = executor.load_external_tools([tmp_path])
        assert len(loaded) == 1
        assert executor.has_tool("greet")
        assert len(executor) == 7
        assert [t.name for t in executor.external_tools()] == ["greet"]


class TestExternalExecution:
    def test_json_reply(self, tmp_path):
        tool = ExternalTool(_greet_tool(tmp_path), parse_schema(GREET_SCHEMA))
        result = tool.execute('{"who": "ada"}')
        assert result.success
        assert result.output == "hello"

    def test_arguments_arrive_on_stdin(self, tmp_path):
        path = _script(tmp_path / "cat_tool", "cat\n")
        tool = ExternalTool(path, parse_schema({"name": "cat_tool"}))
        result = tool.execute('{"x": 1}')
        assert result.success
        assert result.output == '{"x": 1}'

    def test_nonzero_exit_reports_stderr(self, tmp_path):
        path = _script(tmp_path / "broken", "echo oops >&2\nexit 2\n")
        tool = ExternalTool(path, parse_schema({"name": "broken"}))
        result = tool.execute("{}")
        assert not result.success
        assert result.error == "Tool failed with exit code 2\nStderr: oops"

    def test_timeout(self, tmp_path):
        path = _script(tmp_path / "slow", "sleep 10\n")
        tool = ExternalTool(path, parse_schema({"name": "slow"}), timeout=1)
        result = tool.execute("{}")
        assert not result.success
        assert result.error == "Tool timed out after 1 seconds"
