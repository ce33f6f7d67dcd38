"""``!command`` lines: run a shell command and feed its output to the model."""

import json
import logging
import os

from . import fmt
from .errors import ToolNotFound
from .executor import ToolExecutor
from .tools import ShellOutput

DEFAULT_MAX_OUTPUT_CHARS = 10000


def truncate(text: str, limit: int) -> tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    return (
        text[:limit] + f"\n\n... (output truncated, {len(text)} total characters)",
        True,
    )


def format_injection(command: str, out: ShellOutput, truncated: bool) -> str:
    parts = [f"[Shell command output]\nCommand: {command}\nExit code: {out.exit_code}"]
    if out.stdout:
        parts.append(f"\n\nOutput:\n{out.stdout}")
    if out.stderr:
        parts.append(f"\n\nStderr:\n{out.stderr}")
    if not out.stdout and not out.stderr:
        parts.append("\n\n(No output)")
    if truncated:
        parts.append("\n\nNote: Output was truncated due to length.")
    return "".join(parts)


def format_failure(command: str, error: str) -> str:
    return f"[Shell command failed]\nCommand: {command}\nError: {error}"


class ShellInjectionHandler:
    """Runs ``!cmd`` through the run_shell tool and builds the context message."""

    def __init__(
        self,
        executor: ToolExecutor,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
        logger: logging.Logger | None = None,
    ):
        self.executor = executor
        self.max_output_chars = max_output_chars
        self.logger = logger or logging.getLogger(__name__)

    def handle(self, line: str) -> str | None:
        """Run the command after ``!`` and return the message to inject.

        Returns None when there is nothing to inject (empty command).
        """
        command = line.strip()[1:].strip()
        if not command:
            fmt.error("No command specified")
            fmt.info("Usage: !<command>")
            return None

        self.logger.info("shell injection: %s", command)
        args = json.dumps({"command": command, "working_dir": os.getcwd()})
        try:
            result = self.executor.execute("run_shell", args)
        except ToolNotFound as e:
            fmt.error(str(e))
            return format_failure(command, str(e))

        out = ShellOutput.parse(result.output if result.success else result.error or "")
        if out is None:
            error = result.error or result.output or "unknown error"
            fmt.error(error)
            return format_failure(command, error)

        stdout, out_cut = truncate(out.stdout, self.max_output_chars)
        stderr, err_cut = truncate(out.stderr, self.max_output_chars)
        shown = ShellOutput(stdout, stderr, out.exit_code)

        if stdout:
            fmt.output(stdout)
        if stderr:
            fmt.output("stderr:")
            fmt.output(stderr)
        if out.exit_code == 0:
            fmt.info(f"Exit code: {out.exit_code}")
        else:
            fmt.warning(f"Exit code: {out.exit_code}")
        return format_injection(command, shown, out_cut or err_cut)
