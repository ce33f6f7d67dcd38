"""Slash commands typed at the prompt (/help, /stats, /provider, ...)."""

import dataclasses
import logging
from dataclasses import dataclass

from . import fmt
from .config import Config, switch_provider
from .context import ConversationContext, ContextStats
from .errors import ConfigError
from .executor import ToolExecutor
from .llm import LLMClient, create_client
from .providers import PROVIDERS

HELP_TEXT = (
    "Available commands:\n"
    "  /help                Show this help message\n"
    "  /tools               List available tools\n"
    "  /stats               Show conversation statistics\n"
    "  /context [N]         Show context usage, or set the message limit to N\n"
    "  /provider [name]     List providers, or switch to one\n"
    "  /model [name]        Show the current model, or switch to another\n"
    "  /config              Show the current configuration\n"
    "  /clear               Reset the conversation to the system prompt\n"
    "  /reload-tools        Rescan tool directories for external tools\n"
    "  /quit, /exit         Exit\n"
    "\n"
    "  !<command>           Run a shell command and add its output to the conversation"
)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a slash command.

    ``config`` and ``client`` are what the loop should use from now on; they
    are the inputs unchanged unless the command switched provider or model.
    """

    handled: bool
    config: Config
    client: LLMClient


def parse_command(line: str) -> tuple[str, str]:
    """Split "/name rest" into ("name", "rest")."""
    parts = line.strip()[1:].split(None, 1)
    if not parts:
        return "", ""
    return parts[0].lower(), parts[1].strip() if len(parts) > 1 else ""


class MetaCommandHandler:
    def __init__(
        self,
        executor: ToolExecutor,
        context: ConversationContext,
        logger: logging.Logger | None = None,
    ):
        self.executor = executor
        self.context = context
        self.logger = logger or logging.getLogger(__name__)
        self._discovery = {
            "reload-tools": self._reload_tools,
            "rescan-tools": self._reload_tools,
        }
        self._commands = {
            "help": self._help,
            "tools": self._tools,
            "stats": self._stats,
            "context": self._context,
            "provider": self._provider,
            "model": self._model,
            "config": self._config,
            "clear": self._clear,
        }

    def handle(self, line: str, config: Config, client: LLMClient) -> CommandResult:
        """Run the slash command in ``line``.

        Unknown commands are reported and still count as handled, so they
        never reach the model.
        """
        name, arg = parse_command(line)
        self.logger.debug("command /%s %s", name, arg)
        handler = self._discovery.get(name) or self._commands.get(name)
        if handler is None:
            fmt.error(f"Unknown command: /{name}")
            fmt.info("Type /help for available commands")
            return CommandResult(True, config, client)
        result = handler(arg, config, client)
        return result or CommandResult(True, config, client)

    # --- discovery tier ---

    def _reload_tools(self, arg, config, client):
        fmt.info("Rescanning tool directories...")
        loaded = self.executor.reload_external_tools(config.tools.search_paths)
        external = self.executor.external_tools()
        fmt.output(f"Built-in tools: {len(self.executor.builtin_names)}")
        fmt.output(f"External tools: {len(external)}")
        for tool in external:
            fmt.output(f"  - {tool.name} ({tool.path})")
        self.logger.info("reloaded tools: %d discovered", len(loaded))

    # --- informational ---

    def _help(self, arg, config, client):
        fmt.output(HELP_TEXT)

    def _tools(self, arg, config, client):
        schemas = self.executor.tool_schemas()
        fmt.heading(f"Available tools ({len(schemas)})")
        for schema in schemas:
            params = schema.parameters
            names = [
                f"{p}*" if p in params.required else p for p in params.properties
            ]
            fmt.output(f"  {schema.name}({', '.join(names)})")
            if schema.description:
                fmt.output(f"      {schema.description}")
        fmt.output("  (* = required)")

    def _stats(self, arg, config, client):
        render_stats(self.context.stats())

    def _config(self, arg, config, client):
        llm = config.llm
        fmt.heading("Configuration")
        fmt.output("[llm]")
        fmt.key_value("provider", llm.provider)
        fmt.key_value("model", llm.model)
        fmt.key_value("endpoint", llm.endpoint or "(default)")
        fmt.key_value("api_key", llm.masked_key())
        fmt.key_value("temperature", llm.temperature)
        fmt.key_value("max_tokens", llm.max_tokens)
        fmt.key_value("timeout_seconds", llm.timeout_seconds)
        fmt.output("[context]")
        fmt.key_value("max_messages", self.context.max_messages)
        fmt.key_value("max_tool_output_chars", config.context.max_tool_output_chars)
        fmt.output("[agent]")
        fmt.key_value("max_tool_rounds", config.agent.max_tool_rounds)
        fmt.output("[safety]")
        fmt.key_value("sandbox_enabled", config.safety.sandbox_enabled)
        fmt.key_value("allowed_paths", ", ".join(config.safety.sandbox_allowed_paths))
        fmt.key_value("blocked_paths", ", ".join(config.safety.sandbox_blocked_paths))
        fmt.key_value("blocked_commands", ", ".join(config.safety.blocked_commands))
        fmt.key_value("shell_timeout_seconds", config.safety.shell_timeout_seconds)
        fmt.output("[tools]")
        fmt.key_value("search_paths", ", ".join(config.tools.search_paths))
        fmt.key_value("registered", len(self.executor))
        if config.sources:
            fmt.output("Loaded from: " + ", ".join(config.sources))

    # --- state changes ---

    def _clear(self, arg, config, client):
        removed = self.context.clear(keep_system_prompt=True)
        fmt.success(f"Conversation cleared ({removed} messages removed)")

    def _context(self, arg, config, client):
        if not arg:
            count = len(self.context)
            limit = self.context.max_messages
            pct = count / limit * 100 if limit else 0.0
            fmt.output(f"Context: {count}/{limit} messages ({pct:.1f}%)")
            fmt.output(
                f"Pruned: {self.context.prune_count} times, "
                f"{self.context.total_messages_pruned} messages total"
            )
            fmt.output("Usage: /context <max_messages>")
            return None
        try:
            limit = int(arg)
        except ValueError:
            limit = 0
        if limit <= 0:
            fmt.error(f"Invalid context limit: {arg} (must be a positive integer)")
            return None

        change = self.context.set_context_limit(limit)
        fmt.success(f"Context limit changed: {change.old} -> {change.new} messages")
        if change.new < change.old and change.pruned:
            fmt.warning(
                f"Reduced limit: pruned {change.pruned} messages "
                f"({change.before} -> {change.after})"
            )
        new_config = dataclasses.replace(
            config, context=dataclasses.replace(config.context, max_messages=limit)
        )
        return CommandResult(True, new_config, client)

    def _provider(self, arg, config, client):
        if not arg:
            fmt.heading("Providers")
            for name, info in PROVIDERS.items():
                marker = "  \u2190 current" if name == config.llm.provider else ""
                fmt.output(f"  {name:<10} {info.info}{marker}")
            fmt.output("Usage: /provider <name>")
            return None
        try:
            llm = switch_provider(config.llm, arg)
        except ConfigError as e:
            fmt.error(str(e))
            if arg.lower() not in PROVIDERS:
                fmt.info(f"Supported providers: {', '.join(PROVIDERS)}")
            return None
        return self._switch(config, llm, f"Switched to {llm.provider} ({llm.model})")

    def _model(self, arg, config, client):
        if not arg:
            fmt.output(f"Current model: {config.llm.model} ({config.llm.provider})")
            fmt.output("Usage: /model <name>")
            return None
        llm = dataclasses.replace(config.llm, model=arg)
        return self._switch(config, llm, f"Model set to {arg}")

    def _switch(self, config, llm, message):
        new_config = dataclasses.replace(config, llm=llm)
        new_client = create_client(llm, self.logger)
        self.context.update_provider(llm.provider, llm.model)
        self.logger.info("switched to %s/%s at %s", llm.provider, llm.model, llm.endpoint)
        fmt.success(message)
        return CommandResult(True, new_config, new_client)


def render_stats(s: ContextStats) -> None:
    fmt.heading("Conversation statistics")
    fmt.output("Messages")
    fmt.key_value("total", f"{s.message_count} / {s.max_messages} ({s.limit_percent:.1f}% of limit)")
    fmt.key_value("system", s.system_messages)
    fmt.key_value("user", s.user_messages)
    fmt.key_value("assistant", s.assistant_messages)
    fmt.key_value("tool calls", s.tool_calls)
    fmt.key_value("tool results", s.tool_results)
    fmt.key_value("pruned", f"{s.total_messages_pruned} messages in {s.prune_count} prunes")

    fmt.output("Size")
    fmt.key_value("characters", f"{s.total_chars:,}")
    fmt.key_value("estimated tokens", f"~{s.total_tokens:,}")
    fmt.key_value("average message", f"{s.average_chars:,} chars")
    fmt.key_value("largest message", f"{s.largest_message:,} chars")

    fmt.output("Rates")
    fmt.key_value("messages/min", f"{s.messages_per_minute:.1f}")
    fmt.key_value("tokens/min", f"{s.tokens_per_minute:.0f}")

    if s.tool_usage:
        fmt.output("Tool usage")
        for name, count in sorted(s.tool_usage.items(), key=lambda kv: (-kv[1], kv[0])):
            fmt.key_value(name, count)

    fmt.output("Cost estimate")
    fmt.key_value("input tokens", f"~{s.input_tokens:,}")
    fmt.key_value("output tokens", f"~{s.output_tokens:,}")
    if s.is_free:
        fmt.key_value("cost", "$0.00 USD (local/free)")
    else:
        fmt.key_value("cost", f"${s.estimated_cost:.4f} USD")

    fmt.output("Session")
    fmt.key_value("id", s.session_id)
    if s.started_at is not None:
        fmt.key_value("started", s.started_at.strftime("%Y-%m-%d %H:%M:%S"))
    minutes, seconds = divmod(int(s.duration_seconds), 60)
    fmt.key_value("duration", f"{minutes}m {seconds}s")
    fmt.key_value("provider", s.provider or "-")
    fmt.key_value("model", s.model or "-")
