"""Built-in tools: file I/O, directory listing, content search and shell."""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import subprocess
import sys
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

from .edit import diff_snippet, replace_unique
from .errors import (
    CairnError,
    FileIOError,
    InvalidInput,
    ToolInvalidArguments,
    ToolTimeout,
)
from .models import (
    ToolParameters,
    ToolProperty,
    ToolResult,
    ToolSchema,
    parse_arguments,
)
from .sandbox import Sandbox

logger = logging.getLogger(__name__)

DEFAULT_READ_LIMIT = 500
DEFAULT_MAX_RESULTS = 50
DEFAULT_SHELL_TIMEOUT = 60
MAX_LINE_LENGTH = 2000
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
MAX_CAPTURE_BYTES = 1024 * 1024  # 1 MB per stream


def human_size(n: int) -> str:
    if n < 1024:
        return f"{n} bytes"
    size = float(n)
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}"
    return f"{n} bytes"


def _is_binary(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return b"\x00" in f.read(BINARY_CHECK_BYTES)
    except OSError:
        return True


class Tool:
    """Base contract for everything the model can call.

    Subclasses set ``name``, ``description`` and ``parameters`` and implement
    ``run()``. ``execute()`` takes the raw JSON argument string from the model,
    validates it, and turns safety violations into failed results.
    """

    name: str = ""
    description: str = ""
    parameters: ToolParameters = ToolParameters()

    def __init__(self, sandbox: Sandbox | None = None):
        self.sandbox = sandbox

    @property
    def schema(self) -> ToolSchema:
        return ToolSchema(self.name, self.description, self.parameters)

    def execute(self, arguments: str) -> ToolResult:
        try:
            args = parse_arguments(arguments)
        except ValueError as e:
            return ToolResult.fail(f"Invalid arguments: {e}")
        missing = [p for p in self.parameters.required if args.get(p) is None]
        if missing:
            return ToolResult.fail(
                f"Invalid arguments: missing required parameter(s): {', '.join(missing)}"
            )
        try:
            return self.run(args)
        except CairnError as e:
            logger.info("%s failed (code %d): %s", self.name, e.code, e)
            return ToolResult.fail(str(e))

    def run(self, args: dict) -> ToolResult:
        raise NotImplementedError

    # --- helpers ---

    def _resolve(self, path: str) -> Path:
        sandbox = self.sandbox or Sandbox(enabled=False)
        return sandbox.resolve(path)

    def _int(self, args: dict, key: str, default: int) -> int:
        value = args.get(key, default)
        if value is None:
            return default
        if isinstance(value, bool):
            raise ToolInvalidArguments(self.name, f"{key} must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ToolInvalidArguments(self.name, f"{key} must be an integer")

    def _bool(self, args: dict, key: str, default: bool) -> bool:
        value = args.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)

    def _str(self, args: dict, key: str, default: str | None = None) -> str | None:
        value = args.get(key, default)
        if value is None:
            return default
        if not isinstance(value, str):
            raise ToolInvalidArguments(self.name, f"{key} must be a string")
        return value


def _props(**props: tuple[str, str]) -> dict[str, ToolProperty]:
    return {name: ToolProperty(t, desc) for name, (t, desc) in props.items()}


# ---------------------------------------------------------------------------
# File tools
# ---------------------------------------------------------------------------


class ReadFileTool(Tool):
    name = "read_file"
    description = (
        "Read the contents of a text file. Returns numbered lines. "
        "Use offset and limit to page through large files."
    )
    parameters = ToolParameters(
        _props(
            path=("string", "Path to the file, relative to the working directory"),
            offset=("integer", "1-based line to start reading from (default 1)"),
            limit=("integer", f"Maximum number of lines to return (default {DEFAULT_READ_LIMIT})"),
        ),
        required=("path",),
    )

    def run(self, args):
        path = self._str(args, "path")
        offset = max(self._int(args, "offset", 1), 1)
        limit = max(self._int(args, "limit", DEFAULT_READ_LIMIT), 1)

        resolved = self._resolve(path)
        if not resolved.exists():
            return ToolResult.fail(f"File not found: {path}")
        if resolved.is_dir():
            return ToolResult.fail(f"Path is a directory, not a file: {path}")
        try:
            text = resolved.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolResult.fail(f"File is not valid UTF-8 text: {path}")
        except OSError as e:
            raise FileIOError(f"Cannot read {path}: {e}") from e

        lines = text.splitlines()
        total = len(lines)
        if total == 0:
            return ToolResult.ok(f"File: {path}\nLines: 0-0 of 0 total\n\n(empty file)")
        if offset > total:
            return ToolResult.fail(
                f"Offset {offset} exceeds file length ({total} lines)"
            )

        start = offset - 1
        selected = lines[start : start + limit]
        end = start + len(selected)
        body = "\n".join(
            f"{i}: {line[:MAX_LINE_LENGTH]}"
            for i, line in enumerate(selected, start=offset)
        )
        return ToolResult.ok(f"File: {path}\nLines: {offset}-{end} of {total} total\n\n{body}")


class WriteFileTool(Tool):
    name = "write_file"
    description = (
        "Create or overwrite a file with the given content. "
        "Parent directories are created as needed."
    )
    parameters = ToolParameters(
        _props(
            path=("string", "Path to the file to write"),
            content=("string", "Full content of the file"),
        ),
        required=("path", "content"),
    )

    def run(self, args):
        path = self._str(args, "path")
        content = self._str(args, "content")
        resolved = self._resolve(path)
        if resolved.is_dir():
            return ToolResult.fail(f"Path is a directory: {path}")
        data = content.encode("utf-8")
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_bytes(data)
        except OSError as e:
            raise FileIOError(f"Failed to write {path}: {e}") from e
        return ToolResult.ok(
            f"File written successfully: {path} ({human_size(len(data))})"
        )


class EditFileTool(Tool):
    name = "edit_file"
    description = (
        "Replace a unique occurrence of search text in a file. "
        "The search text must appear exactly once; include surrounding lines "
        "to make it unique. Set fuzzy to ignore whitespace differences."
    )
    parameters = ToolParameters(
        _props(
            path=("string", "Path to the file to edit"),
            search=("string", "Exact text to find"),
            replace=("string", "Replacement text"),
            fuzzy=("boolean", "Treat any run of whitespace as equal (default false)"),
        ),
        required=("path", "search", "replace"),
    )

    def run(self, args):
        path = self._str(args, "path")
        search = self._str(args, "search")
        replacement = self._str(args, "replace")
        fuzzy = self._bool(args, "fuzzy", False)
        if not search:
            raise InvalidInput("Search text must not be empty")

        resolved = self._resolve(path)
        if not resolved.is_file():
            return ToolResult.fail(f"File not found: {path}")
        try:
            content = resolved.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError) as e:
            raise FileIOError(f"Cannot read {path}: {e}") from e

        try:
            updated = replace_unique(content, search, replacement, fuzzy=fuzzy)
        except ValueError as e:
            msg = str(e)
            if msg.startswith("multiple matches"):
                count = msg.rsplit(":", 1)[1].strip()
                return ToolResult.fail(
                    f"Search text appears {count} times in file. "
                    "Please provide more context to make search text unique."
                )
            return ToolResult.fail("Search text not found in file")

        try:
            resolved.write_text(updated, encoding="utf-8")
        except OSError as e:
            raise FileIOError(f"Failed to write {path}: {e}") from e
        return ToolResult.ok(
            f"File edited successfully: {path}\n\nChanges:\n{diff_snippet(content, updated)}"
        )


# ---------------------------------------------------------------------------
# Directory tools
# ---------------------------------------------------------------------------


class ListFilesTool(Tool):
    name = "list_files"
    description = (
        "List the contents of a directory. Directories end with '/', "
        "files show their size."
    )
    parameters = ToolParameters(
        _props(
            path=("string", "Directory to list (default: current directory)"),
            recursive=("boolean", "List subdirectories recursively (default false)"),
            show_hidden=("boolean", "Include entries starting with '.' (default false)"),
        ),
    )

    def run(self, args):
        path = self._str(args, "path", ".") or "."
        recursive = self._bool(args, "recursive", False)
        show_hidden = self._bool(args, "show_hidden", False)

        root = self._resolve(path)
        if not root.exists():
            return ToolResult.fail(f"Path not found: {path}")
        if not root.is_dir():
            return ToolResult.fail(f"Path is not a directory: {path}")

        try:
            entries = self._entries(root, recursive, show_hidden)
        except OSError as e:
            return ToolResult.fail(f"Cannot list {path}: {e}")
        if not entries:
            return ToolResult.ok(f"Directory is empty: {path}")
        return ToolResult.ok(f"Contents of {path}:\n" + "\n".join(entries))

    @staticmethod
    def _entries(root: Path, recursive: bool, show_hidden: bool) -> list[str]:
        def visible(name: str) -> bool:
            return show_hidden or not name.startswith(".")

        def describe(p: Path, rel: str) -> str:
            if p.is_dir():
                return f"{rel}/"
            try:
                return f"{rel} ({human_size(p.stat().st_size)})"
            except OSError:
                return rel

        if not recursive:
            return [
                describe(child, child.name)
                for child in sorted(root.iterdir(), key=lambda c: c.name)
                if visible(child.name)
            ]

        out = []
        for dirpath, dirs, files in os.walk(root):
            dirs[:] = sorted(d for d in dirs if visible(d))
            base = Path(dirpath)
            for name in sorted(dirs + [f for f in files if visible(f)]):
                p = base / name
                out.append(describe(p, str(p.relative_to(root))))
        return sorted(out)


class SearchFilesTool(Tool):
    name = "search_files"
    description = (
        "Search file contents for a regular expression. "
        "Returns matching lines grouped by file."
    )
    parameters = ToolParameters(
        _props(
            pattern=("string", "Regular expression to search for"),
            path=("string", "Directory to search (default: current directory)"),
            recursive=("boolean", "Search subdirectories (default true)"),
            case_insensitive=("boolean", "Ignore case (default false)"),
            file_pattern=("string", "Only search files whose name matches this glob, e.g. '*.py'"),
            max_results=("integer", f"Stop after this many matches (default {DEFAULT_MAX_RESULTS})"),
        ),
        required=("pattern",),
    )

    def run(self, args):
        pattern = self._str(args, "pattern")
        path = self._str(args, "path", ".") or "."
        recursive = self._bool(args, "recursive", True)
        flags = re.IGNORECASE if self._bool(args, "case_insensitive", False) else 0
        file_pattern = self._str(args, "file_pattern")
        max_results = max(self._int(args, "max_results", DEFAULT_MAX_RESULTS), 1)

        try:
            regex = re.compile(pattern, flags)
        except re.error as e:
            return ToolResult.fail(f"Invalid regex pattern: {e}")

        root = self._resolve(path)
        if not root.is_dir():
            return ToolResult.fail(f"Path not found or not a directory: {path}")

        matches: list[tuple[Path, int, str]] = []
        for filepath in self._files(root, recursive):
            if file_pattern and not fnmatch.fnmatch(filepath.name, file_pattern):
                continue
            if _is_binary(filepath):
                continue
            try:
                text = filepath.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for line_no, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    matches.append((filepath, line_no, line))
                    if len(matches) >= max_results:
                        break
            if len(matches) >= max_results:
                break

        if not matches:
            return ToolResult.ok(f"No matches found for pattern: {pattern}")

        grouped: OrderedDict[Path, list[tuple[int, str]]] = OrderedDict()
        for filepath, line_no, line in sorted(matches):
            grouped.setdefault(filepath, []).append((line_no, line))

        header = f"Found {len(matches)} matches"
        if len(matches) >= max_results:
            header += f" (showing first {max_results})"
        parts = [header + ":"]
        for filepath, file_matches in grouped.items():
            parts.append(f"\n{filepath.relative_to(root)} ({len(file_matches)} matches):")
            for line_no, line in file_matches:
                parts.append(f"   {line_no}: {line[:MAX_LINE_LENGTH]}")
        return ToolResult.ok("\n".join(parts))

    @staticmethod
    def _files(root: Path, recursive: bool):
        if not recursive:
            for child in sorted(root.iterdir(), key=lambda c: c.name):
                if not child.name.startswith(".") and child.is_file():
                    yield child
            return
        for dirpath, dirs, files in os.walk(root):
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            for name in sorted(files):
                if not name.startswith("."):
                    yield Path(dirpath) / name


# ---------------------------------------------------------------------------
# Shell
# ---------------------------------------------------------------------------

_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


def _kill_group(pid: int) -> None:
    if sys.platform == "win32":
        return
    import signal

    try:
        os.killpg(pid, signal.SIGKILL)
    except OSError:
        pass  # group already empty


def kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then wait for exit.

    Relies on the child having been started with start_new_session=True so
    the whole process group can be signalled.
    """
    _kill_group(proc.pid)
    try:
        proc.kill()
    except OSError:
        pass  # already dead
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("process %d did not exit after SIGKILL", proc.pid)


def _drain(stream, sink: list[bytes]) -> None:
    total = 0
    try:
        while True:
            chunk = stream.read(4096)
            if not chunk:
                break
            if total < MAX_CAPTURE_BYTES:
                sink.append(chunk[: MAX_CAPTURE_BYTES - total])
                total += len(sink[-1])
    except (OSError, ValueError):
        pass  # pipe closed after kill


def _feed(stream, data: bytes) -> None:
    try:
        if data:
            stream.write(data)
        stream.close()
    except (BrokenPipeError, OSError, ValueError):
        pass  # child exited without reading stdin


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


def communicate(
    proc: subprocess.Popen, timeout: float, stdin_data: bytes | None = None
) -> tuple[str, str, bool]:
    """Feed stdin, collect stdout and stderr, and enforce ``timeout``.

    Returns (stdout, stderr, timed_out). The process group is always killed
    once the child exits or times out, so background jobs it started cannot
    hold the pipes open. On KeyboardInterrupt the group is killed and the
    interrupt propagates.
    """
    out: list[bytes] = []
    err: list[bytes] = []
    readers = [
        (s, threading.Thread(target=_drain, args=(s, sink), daemon=True))
        for s, sink in ((proc.stdout, out), (proc.stderr, err))
        if s is not None
    ]
    for _, t in readers:
        t.start()

    if proc.stdin is not None:
        writer = threading.Thread(
            target=_feed, args=(proc.stdin, stdin_data or b""), daemon=True
        )
        writer.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        kill_process_tree(proc)
    except KeyboardInterrupt:
        kill_process_tree(proc)
        raise
    else:
        _kill_group(proc.pid)

    for s, t in readers:
        t.join(timeout=2)
        if t.is_alive():
            # a descendant outside the group still holds the pipe
            logger.warning("output pipe of process %d still open", proc.pid)
            continue
        s.close()

    return _decode(out), _decode(err), timed_out


_SHELL_OUTPUT_RE = re.compile(
    r"\A(?:STDOUT:\n(?P<out>.*?)\n\n?)?(?:STDERR:\n(?P<err>.*?)\n\n?)?"
    r"Exit code: (?P<code>-?\d+)\s*\Z",
    re.DOTALL,
)


@dataclass
class ShellOutput:
    stdout: str
    stderr: str
    exit_code: int

    def format(self) -> str:
        parts = []
        if self.stdout:
            out = self.stdout.rstrip("\n")
            parts.append(f"STDOUT:\n{out}\n")
        if self.stderr:
            err = self.stderr.rstrip("\n")
            parts.append(f"STDERR:\n{err}\n")
        parts.append(f"Exit code: {self.exit_code}")
        return "\n".join(parts)

    @classmethod
    def parse(cls, text: str) -> ShellOutput | None:
        """Recover the streams and exit code from ``format()`` output."""
        m = _SHELL_OUTPUT_RE.search(text)
        if m is None:
            return None
        return cls(m.group("out") or "", m.group("err") or "", int(m.group("code")))


class RunShellTool(Tool):
    name = "run_shell"
    description = (
        "Run a shell command with /bin/sh and return its stdout, stderr and "
        "exit code. The command is killed if it exceeds the timeout."
    )
    parameters = ToolParameters(
        _props(
            command=("string", "Shell command to execute"),
            working_dir=("string", "Directory to run in (default: current directory)"),
            timeout=("integer", f"Timeout in seconds (default {DEFAULT_SHELL_TIMEOUT})"),
        ),
        required=("command",),
    )

    def __init__(self, sandbox: Sandbox | None = None, default_timeout: int = DEFAULT_SHELL_TIMEOUT):
        super().__init__(sandbox)
        self.default_timeout = default_timeout

    def run(self, args):
        command = self._str(args, "command")
        working_dir = self._str(args, "working_dir")
        timeout = max(self._int(args, "timeout", self.default_timeout), 1)

        if not command.strip():
            raise InvalidInput("Command must not be empty")
        if self.sandbox is not None:
            self.sandbox.check_command(command)

        cwd = self._resolve(working_dir) if working_dir else Path.cwd()
        if not cwd.is_dir():
            return ToolResult.fail(f"Working directory not found: {working_dir}")

        logger.debug("run_shell: %s (cwd=%s, timeout=%ds)", command, cwd, timeout)
        try:
            proc = subprocess.Popen(
                ["/bin/sh", "-c", command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except OSError as e:
            return ToolResult.fail(f"Failed to start shell: {e}")

        stdout, stderr, timed_out = communicate(proc, timeout)
        if timed_out:
            raise ToolTimeout("Command", timeout)

        text = ShellOutput(stdout, stderr, proc.returncode).format()
        if proc.returncode != 0:
            return ToolResult.fail(text)
        return ToolResult.ok(text)


BUILTIN_TOOLS = (
    ReadFileTool,
    WriteFileTool,
    EditFileTool,
    ListFilesTool,
    SearchFilesTool,
    RunShellTool,
)


def builtin_tools(sandbox: Sandbox | None = None, shell_timeout: int = DEFAULT_SHELL_TIMEOUT) -> list[Tool]:
    tools = []
    for cls in BUILTIN_TOOLS:
        if cls is RunShellTool:
            tools.append(cls(sandbox, default_timeout=shell_timeout))
        else:
            tools.append(cls(sandbox))
    return tools
