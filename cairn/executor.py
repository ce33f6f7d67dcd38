"""Tool registry and executor."""

import logging
import time

from .errors import ToolExecutionFailed, ToolNotFound
from .external import DEFAULT_TIMEOUT, ExternalTool, discover_tools
from .models import ToolResult, ToolSchema
from .sandbox import Sandbox
from .tools import DEFAULT_SHELL_TIMEOUT, Tool, builtin_tools


class ToolExecutor:
    """Holds the tools the model may call and runs them by name.

    Registering a tool under an existing name replaces it, so an external
    tool can shadow a built-in one.
    """

    def __init__(
        self,
        sandbox: Sandbox | None = None,
        *,
        shell_timeout: int = DEFAULT_SHELL_TIMEOUT,
        external_timeout: float = DEFAULT_TIMEOUT,
        logger: logging.Logger | None = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.external_timeout = external_timeout
        self._tools: dict[str, Tool] = {}
        for tool in builtin_tools(sandbox, shell_timeout=shell_timeout):
            self.register(tool)
        self.builtin_names = frozenset(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            self.logger.debug("replacing tool %s", tool.name)
        else:
            self.logger.debug("registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def tool_schemas(self) -> list[ToolSchema]:
        return [self._tools[name].schema for name in sorted(self._tools)]

    def external_tools(self) -> list[ExternalTool]:
        return [
            t for _, t in sorted(self._tools.items()) if isinstance(t, ExternalTool)
        ]

    def execute(self, name: str, arguments: str) -> ToolResult:
        """Run tool ``name`` with its raw JSON argument string.

        Raises:
            ToolNotFound: If no tool is registered under ``name``.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)

        t0 = time.monotonic()
        try:
            result = tool.execute(arguments)
        except Exception as e:
            self.logger.exception("tool %s raised", name)
            return ToolResult.fail(str(ToolExecutionFailed(name, str(e))))
        elapsed = time.monotonic() - t0

        if result.success:
            self.logger.info("tool %s succeeded in %.2fs", name, elapsed)
        else:
            self.logger.info("tool %s failed in %.2fs: %s", name, elapsed, result.error)
        return result

    def execute_multiple(self, calls) -> list[ToolResult]:
        """Run (name, arguments) pairs in order."""
        results = []
        for name, arguments in calls:
            try:
                results.append(self.execute(name, arguments))
            except ToolNotFound as e:
                results.append(ToolResult.fail(str(e)))
        return results

    def load_external_tools(self, search_paths) -> list[Tool]:
        tools = discover_tools(search_paths, timeout=self.external_timeout)
        for tool in tools:
            self.register(tool)
        self.logger.info("loaded %d external tools", len(tools))
        return tools

    def reload_external_tools(self, search_paths) -> list[Tool]:
        """Rescan ``search_paths``, dropping external tools no longer found."""
        tools = discover_tools(search_paths, timeout=self.external_timeout)
        found = {t.name for t in tools}
        for stale in self.external_tools():
            if stale.name not in found:
                del self._tools[stale.name]
                self.logger.info("unregistered external tool %s", stale.name)
        for tool in tools:
            self.register(tool)
        self.logger.info("reloaded %d external tools", len(tools))
        return tools
