"""Tests for the built-in file, directory and search tools."""

import json
import logging

import pytest

from cairn.sandbox import Sandbox
from cairn.tools import (
    EditFileTool,
    ListFilesTool,
    ReadFileTool,
    SearchFilesTool,
    WriteFileTool,
    builtin_tools,
    human_size,
)


@pytest.fixture
def sandbox(tmp_path):
    return Sandbox(tmp_path)


def _call(tool, **args):
    return tool.execute(json.dumps(args))


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------


class TestArguments:
    def test_invalid_json(self, sandbox):
        result = ReadFileTool(sandbox).execute("{not json")
        assert not result.success
        assert result.error.startswith("Invalid arguments:")

    def test_non_object_json(self, sandbox):
        result = ReadFileTool(sandbox).execute("[1, 2]")
        assert not result.success
        assert "expected a JSON object" in result.error

    def test_missing_required(self, sandbox):
        result = ReadFileTool(sandbox).execute("{}")
        assert not result.success
        assert "missing required parameter(s): path" in result.error

    def test_wrong_type(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("x\n")
        result = _call(ReadFileTool(sandbox), path="f.txt", offset="abc")
        assert not result.success
        assert "offset must be an integer" in result.error

    def test_builtin_set(self):
        names = sorted(t.name for t in builtin_tools())
        assert names == [
            "edit_file",
            "list_files",
            "read_file",
            "run_shell",
            "search_files",
            "write_file",
        ]

    def test_schema_wire_form(self):
        schema = ReadFileTool().schema.to_dict()
        assert schema["type"] == "function"
        fn = schema["function"]
        assert fn["name"] == "read_file"
        assert fn["parameters"]["required"] == ["path"]
        assert fn["parameters"]["properties"]["limit"]["type"] == "integer"


# ---------------------------------------------------------------------------
# read_file
# ---------------------------------------------------------------------------


class TestReadFile:
    def test_reads_numbered_lines(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("one\ntwo\nthree\n")
        result = _call(ReadFileTool(sandbox), path="f.txt")
        assert result.success
        assert result.output == "File: f.txt\nLines: 1-3 of 3 total\n\n1: one\n2: two\n3: three"

    def test_offset_and_limit(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("one\ntwo\nthree\n")
        result = _call(ReadFileTool(sandbox), path="f.txt", offset=2, limit=1)
        assert "Lines: 2-2 of 3 total" in result.output
        assert result.output.endswith("2: two")

    def test_offset_past_end(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("one\ntwo\nthree\n")
        result = _call(ReadFileTool(sandbox), path="f.txt", offset=10)
        assert not result.success
        assert result.error == "Offset 10 exceeds file length (3 lines)"

    def test_missing_file(self, sandbox):
        result = _call(ReadFileTool(sandbox), path="nope.txt")
        assert result.error == "File not found: nope.txt"

    def test_directory(self, sandbox, tmp_path):
        (tmp_path / "d").mkdir()
        result = _call(ReadFileTool(sandbox), path="d")
        assert not result.success
        assert "directory" in result.error

    def test_not_utf8(self, sandbox, tmp_path):
        (tmp_path / "bin.dat").write_bytes(b"\xff\xfe\x00\x01")
        result = _call(ReadFileTool(sandbox), path="bin.dat")
        assert result.error == "File is not valid UTF-8 text: bin.dat"

    def test_empty_file(self, sandbox, tmp_path):
        (tmp_path / "empty.txt").write_text("")
        result = _call(ReadFileTool(sandbox), path="empty.txt")
        assert result.success
        assert "0 total" in result.output


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


class TestSandbox:
    def test_escape_rejected(self, sandbox, tmp_path):
        (tmp_path.parent / "outside.txt").write_text("secret")
        result = _call(ReadFileTool(sandbox), path="../outside.txt")
        assert not result.success
        assert "Sandbox violation" in result.error

    def test_symlink_escape_rejected(self, sandbox, tmp_path):
        outside = tmp_path.parent / "target.txt"
        outside.write_text("secret")
        (tmp_path / "link.txt").symlink_to(outside)
        result = _call(ReadFileTool(sandbox), path="link.txt")
        assert "Sandbox violation" in result.error

    def test_blocked_path(self, tmp_path):
        box = Sandbox(tmp_path, blocked_paths=["secret"])
        result = _call(WriteFileTool(box), path="secret/key.txt", content="x")
        assert "Sandbox violation" in result.error
        assert not (tmp_path / "secret").exists()

    def test_disabled_sandbox_allows_outside(self, tmp_path):
        box = Sandbox(tmp_path, enabled=False)
        (tmp_path.parent / "free.txt").write_text("ok\n")
        result = _call(ReadFileTool(box), path="../free.txt")
        assert result.success


# ---------------------------------------------------------------------------
# write_file / edit_file
# ---------------------------------------------------------------------------


class TestWriteFile:
    def test_creates_parents(self, sandbox, tmp_path):
        result = _call(WriteFileTool(sandbox), path="a/b/c.txt", content="hello")
        assert result.success
        assert result.output == "File written successfully: a/b/c.txt (5 bytes)"
        assert (tmp_path / "a" / "b" / "c.txt").read_text() == "hello"

    def test_overwrites(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("old")
        _call(WriteFileTool(sandbox), path="f.txt", content="new")
        assert (tmp_path / "f.txt").read_text() == "new"

    def test_empty_content_allowed(self, sandbox, tmp_path):
        result = _call(WriteFileTool(sandbox), path="e.txt", content="")
        assert result.success
        assert (tmp_path / "e.txt").read_text() == ""

    def test_human_size(self):
        assert human_size(12) == "12 bytes"
        assert human_size(1536) == "1.5 KB"
        assert human_size(3 * 1024 * 1024) == "3.0 MB"


class TestEditFile:
    def test_unique_edit(self, sandbox, tmp_path):
        (tmp_path / "f.py").write_text("a = 1\nb = 2\nc = 3\n")
        result = _call(EditFileTool(sandbox), path="f.py", search="b = 2", replace="b = 20")
        assert result.success
        assert result.output.startswith("File edited successfully: f.py\n\nChanges:\n")
        assert "- 2: b = 2" in result.output
        assert "+ 2: b = 20" in result.output
        assert (tmp_path / "f.py").read_text() == "a = 1\nb = 20\nc = 3\n"

    def test_ambiguous_edit_leaves_file_unchanged(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("ab ab ab")
        result = _call(EditFileTool(sandbox), path="f.txt", search="ab", replace="cd")
        assert not result.success
        assert result.error == (
            "Search text appears 3 times in file. "
            "Please provide more context to make search text unique."
        )
        assert (tmp_path / "f.txt").read_text() == "ab ab ab"

    def test_not_found(self, sandbox, tmp_path):
        (tmp_path / "f.txt").write_text("hello")
        result = _call(EditFileTool(sandbox), path="f.txt", search="bye", replace="x")
        assert result.error == "Search text not found in file"

    def test_fuzzy_flag(self, sandbox, tmp_path):
        (tmp_path / "f.py").write_text("x  =   1\n")
        result = _call(
            EditFileTool(sandbox), path="f.py", search="x = 1", replace="x = 2", fuzzy=True
        )
        assert result.success
        assert (tmp_path / "f.py").read_text() == "x = 2\n"

    def test_fuzzy_counts_exact_and_variant_occurrences(self, sandbox, tmp_path):
        (tmp_path / "f.py").write_text("x = 1\nx\t=  1\n")
        result = _call(
            EditFileTool(sandbox), path="f.py", search="x = 1", replace="x = 2", fuzzy=True
        )
        assert not result.success
        assert result.error.startswith("Search text appears 2 times in file.")
        assert (tmp_path / "f.py").read_text() == "x = 1\nx\t=  1\n"

    def test_missing_file(self, sandbox):
        result = _call(EditFileTool(sandbox), path="none.txt", search="a", replace="b")
        assert result.error == "File not found: none.txt"

    def test_empty_search_logged_with_code(self, sandbox, tmp_path, caplog):
        (tmp_path / "f.txt").write_text("hello")
        with caplog.at_level(logging.INFO, logger="cairn.tools"):
            result = _call(EditFileTool(sandbox), path="f.txt", search="", replace="x")
        assert result.error == "Search text must not be empty"
        assert "edit_file failed (code 9000)" in caplog.text


# ---------------------------------------------------------------------------
# list_files
# ---------------------------------------------------------------------------


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "a.txt").write_text("abc")
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "inner.txt").write_text("hello")
    (tmp_path / ".hidden").write_text("")
    return tmp_path


class TestListFiles:
    def test_flat_listing(self, sandbox, tree):
        result = _call(ListFilesTool(sandbox))
        assert result.output == "Contents of .:\na.txt (3 bytes)\nsub/"

    def test_show_hidden(self, sandbox, tree):
        result = _call(ListFilesTool(sandbox), show_hidden=True)
        assert ".hidden (0 bytes)" in result.output.splitlines()

    def test_recursive(self, sandbox, tree):
        result = _call(ListFilesTool(sandbox), recursive=True)
        lines = result.output.splitlines()[1:]
        assert lines == ["a.txt (3 bytes)", "sub/", "sub/inner.txt (5 bytes)"]

    def test_empty_directory(self, sandbox, tmp_path):
        (tmp_path / "empty").mkdir()
        result = _call(ListFilesTool(sandbox), path="empty")
        assert result.success
        assert result.output == "Directory is empty: empty"

    def test_missing_path(self, sandbox):
        result = _call(ListFilesTool(sandbox), path="nowhere")
        assert result.error == "Path not found: nowhere"

    def test_not_a_directory(self, sandbox, tree):
        result = _call(ListFilesTool(sandbox), path="a.txt")
        assert result.error == "Path is not a directory: a.txt"


# ---------------------------------------------------------------------------
# search_files
# ---------------------------------------------------------------------------


@pytest.fixture
def code(tmp_path):
    (tmp_path / "a.py").write_text("import os\nx = 1\nimport re\n")
    (tmp_path / "b.py").write_text("import sys\n")
    (tmp_path / "notes.txt").write_text("Import nothing\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config.py").write_text("import hidden\n")
    (tmp_path / "blob.bin").write_bytes(b"import\x00binary")
    return tmp_path


class TestSearchFiles:
    def test_grouped_results(self, sandbox, code):
        result = _call(SearchFilesTool(sandbox), pattern="^import")
        assert result.success
        lines = result.output.splitlines()
        assert lines[0] == "Found 3 matches:"
        assert "a.py (2 matches):" in lines
        assert "   1: import os" in lines
        assert "   3: import re" in lines
        assert "b.py (1 matches):" in lines
        assert "hidden" not in result.output
        assert "blob.bin" not in result.output

    def test_case_insensitive(self, sandbox, code):
        result = _call(SearchFilesTool(sandbox), pattern="^import", case_insensitive=True)
        assert "notes.txt (1 matches):" in result.output

    def test_file_pattern(self, sandbox, code):
        result = _call(SearchFilesTool(sandbox), pattern="import", file_pattern="b.*")
        assert result.output.splitlines()[0] == "Found 1 matches:"

    def test_max_results_stops_early(self, sandbox, code):
        result = _call(SearchFilesTool(sandbox), pattern="^import", max_results=1)
        assert result.output.splitlines()[0] == "Found 1 matches (showing first 1):"

    def test_no_matches(self, sandbox, code):
        result = _call(SearchFilesTool(sandbox), pattern="zzz")
        assert result.success
        assert result.output == "No matches found for pattern: zzz"

    def test_invalid_regex(self, sandbox, code):
        result = _call(SearchFilesTool(sandbox), pattern="(")
        assert result.error.startswith("Invalid regex pattern")

    def test_missing_directory(self, sandbox):
        result = _call(SearchFilesTool(sandbox), pattern="x", path="nowhere")
        assert result.error == "Path not found or not a directory: nowhere"
