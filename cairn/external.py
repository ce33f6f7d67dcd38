"""External tools: standalone executables that describe themselves with --schema.

An external tool prints a JSON schema when run with ``--schema``::

    {"name": "...", "description": "...",
     "parameters": {"arg": {"type": "string", "description": "...", "required": true}}}

When called, it receives the argument JSON on stdin and answers on stdout,
either with ``{"success": bool, "result": ..., "error": ..., "metadata": ...}``
or with plain text.
"""

import json
import logging
import os
import subprocess
from pathlib import Path

from .errors import ToolTimeout
from .models import ToolParameters, ToolProperty, ToolResult, ToolSchema
from .tools import Tool, communicate

SCHEMA_TIMEOUT = 5
DEFAULT_TIMEOUT = 30

logger = logging.getLogger(__name__)


class ExternalTool(Tool):
    """Adapter that runs an executable as a tool, one process per call."""

    def __init__(
        self,
        path: str | os.PathLike,
        schema: ToolSchema,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(sandbox=None)
        self.path = Path(path)
        self.name = schema.name
        self.description = schema.description
        self.parameters = schema.parameters
        self.timeout = timeout

    def __repr__(self):
        return f"ExternalTool({self.name!r}, {str(self.path)!r})"

    def execute(self, arguments: str) -> ToolResult:
        payload = (arguments or "{}").encode("utf-8")
        try:
            proc = subprocess.Popen(
                [str(self.path)],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            return ToolResult.fail(f"Failed to start {self.path}: {e}")

        stdout, stderr, timed_out = communicate(proc, self.timeout, payload)
        if timed_out:
            return ToolResult.fail(str(ToolTimeout("Tool", self.timeout)))
        if proc.returncode != 0:
            msg = f"Tool failed with exit code {proc.returncode}"
            if stderr.strip():
                msg += f"\nStderr: {stderr.strip()}"
            return ToolResult.fail(msg)
        return parse_response(stdout)


def parse_response(stdout: str) -> ToolResult:
    """Interpret a tool's stdout: the JSON response object, else plain text."""
    text = stdout.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return ToolResult.ok(text)
    if not isinstance(data, dict) or not isinstance(data.get("success"), bool):
        return ToolResult.ok(text)

    if data["success"]:
        result = data.get("result")
        if result is None:
            return ToolResult.ok("")
        if not isinstance(result, str):
            result = json.dumps(result)
        return ToolResult.ok(result)
    return ToolResult.fail(str(data.get("error") or "Tool reported failure"))


def parse_schema(data) -> ToolSchema:
    """Build a ToolSchema from the --schema JSON document.

    Raises ValueError if the document does not have the expected shape.
    """
    if not isinstance(data, dict):
        raise ValueError("schema must be a JSON object")
    name = data.get("name")
    description = data.get("description", "")
    params = data.get("parameters", {})
    if not isinstance(name, str) or not name:
        raise ValueError("schema needs a non-empty 'name'")
    if not isinstance(description, str):
        raise ValueError("'description' must be a string")
    if not isinstance(params, dict):
        raise ValueError("'parameters' must be an object")

    properties = {}
    required = []
    for pname, spec in params.items():
        if not isinstance(spec, dict):
            raise ValueError(f"parameter {pname!r} must be an object")
        enum = spec.get("enum")
        properties[pname] = ToolProperty(
            type=str(spec.get("type", "string")),
            description=str(spec.get("description", "")),
            enum=tuple(enum) if isinstance(enum, list) else None,
        )
        if spec.get("required") is True:
            required.append(pname)
    return ToolSchema(name, description, ToolParameters(properties, tuple(required)))


def probe_schema(path: Path, timeout: float = SCHEMA_TIMEOUT) -> ToolSchema | None:
    """Run ``path --schema`` and parse its output, or return None."""
    try:
        proc = subprocess.Popen(
            [str(path), "--schema"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        logger.debug("cannot execute %s: %s", path, e)
        return None

    stdout, _, timed_out = communicate(proc, timeout)
    if timed_out:
        logger.warning("schema probe timed out after %gs: %s", timeout, path)
        return None
    if proc.returncode != 0:
        logger.debug("schema probe exited %d: %s", proc.returncode, path)
        return None
    try:
        return parse_schema(json.loads(stdout))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("invalid tool schema from %s: %s", path, e)
        return None


def _candidates(directory: Path):
    for dirpath, dirs, files in os.walk(directory):
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for name in sorted(files):
            if name.startswith("."):
                continue
            p = Path(dirpath) / name
            if p.is_file() and os.access(p, os.X_OK):
                yield p


def discover_tools(
    search_paths, timeout: float = DEFAULT_TIMEOUT
) -> list[ExternalTool]:
    """Find executables under ``search_paths`` that answer ``--schema``."""
    found = []
    for raw in search_paths:
        directory = Path(raw).expanduser()
        if not directory.is_dir():
            logger.debug("tool directory not found: %s", directory)
            continue
        for path in _candidates(directory):
            schema = probe_schema(path)
            if schema is None:
                continue
            logger.info("discovered external tool %s at %s", schema.name, path)
            found.append(ExternalTool(path, schema, timeout=timeout))
    return found
