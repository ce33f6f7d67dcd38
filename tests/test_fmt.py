"""Tests for the fmt module (Rich-formatted output helpers)."""

from io import StringIO

from rich.console import Console

from cairn import fmt


def _capture(func, *args, stream="_console", **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = getattr(fmt, stream)
    setattr(fmt, stream, Console(file=buf, no_color=True, width=80))
    try:
        func(*args, **kwargs)
    finally:
        setattr(fmt, stream, old)
    return buf.getvalue()


class TestDiagnostics:
    def test_warning(self):
        out = _capture(fmt.warning, "Maximum tool execution rounds reached")
        assert "Warning: Maximum tool execution rounds reached" in out

    def test_error(self):
        assert _capture(fmt.error, "boom").strip() == "Error: boom"

    def test_markup_is_not_interpreted(self):
        out = _capture(fmt.error, "bad [bold]input[/bold]")
        assert "[bold]input[/bold]" in out

    def test_banner(self):
        out = _capture(fmt.repl_banner, "ollama", "qwen2.5:14b", 6)
        assert "ollama/qwen2.5:14b, 6 tools." in out


class TestToolActivity:
    def test_tool_call_indents_arguments(self):
        out = _capture(fmt.tool_call, "read_file", '{\n  "path": "a.txt"\n}')
        lines = out.splitlines()
        assert "read_file" in lines[0]
        assert lines[2] == '      "path": "a.txt"'

    def test_tool_result_timing(self):
        out = _capture(fmt.tool_result, "list_files", 0.25, "a.txt")
        assert "list_files" in out
        assert "0.2s" in out or "0.3s" in out

    def test_tool_error(self):
        out = _capture(fmt.tool_error, "read_file", "File not found: x")
        assert "read_file" in out and "File not found: x" in out


class TestConversation:
    def test_tokens_join_without_newlines(self):
        def reply():
            fmt.assistant_prefix()
            for piece in ("Hel", "lo ", "[world]"):
                fmt.token(piece)
            fmt.end_response()

        out = _capture(reply, stream="_out")
        assert out == "AI: Hello [world]\n"

    def test_key_value_alignment(self):
        out = _capture(fmt.key_value, "user", 3, stream="_out")
        assert out == "  " + "user:".ljust(22) + "3\n"
