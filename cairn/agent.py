"""Interactive agent loop and command-line entry point."""

import argparse
import json
import logging
import os
import sys
import time
from importlib import metadata

from . import fmt
from .commands import MetaCommandHandler
from .config import (
    Config,
    ConfigError,
    apply_cli_overrides,
    check_api_key,
    generate_config,
    load_config,
)
from .context import ConversationContext
from .errors import CairnError
from .executor import ToolExecutor
from .llm import LLMClient, create_client
from .log import init_logging
from .models import Message, ToolCall
from .providers import PROVIDERS
from .sandbox import Sandbox
from .shell import ShellInjectionHandler

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI coding assistant. You help users with programming tasks.\n"
    "\n"
    "You have access to tools for reading files, listing directories, and more.\n"
    "Use tools when appropriate to help answer user questions.\n"
    "\n"
    "Be concise, accurate, and helpful. If you're unsure, say so."
)
QUIT_WORDS = frozenset({"quit", "exit", "/quit", "/exit"})
MAX_ARG_LOG = 1000
MAX_RESULT_PREVIEW = 200
INTERRUPTED = "Error: interrupted"


class AgentLoop:
    """Reads user lines, dispatches them, and drives the tool-call rounds.

    The active LLM client is held in ``self.client`` and only ever replaced
    as a whole, together with ``self.config``, by a provider or model switch.
    """

    def __init__(
        self,
        config: Config,
        *,
        client: LLMClient | None = None,
        executor: ToolExecutor | None = None,
        logger: logging.Logger | None = None,
        verbose: bool = True,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.verbose = verbose
        if executor is None:
            safety = config.safety
            sandbox = Sandbox(
                enabled=safety.sandbox_enabled,
                allowed_paths=safety.sandbox_allowed_paths,
                blocked_paths=safety.sandbox_blocked_paths,
                blocked_commands=safety.blocked_commands,
            )
            executor = ToolExecutor(
                sandbox,
                shell_timeout=safety.shell_timeout_seconds,
                external_timeout=config.tools.external_timeout_seconds,
                logger=self.logger,
            )
        self.executor = executor
        self.context = ConversationContext(
            config.context.max_messages,
            provider=config.llm.provider,
            model=config.llm.model,
            logger=self.logger,
        )
        self.client = client or create_client(config.llm, self.logger)
        self.commands = MetaCommandHandler(self.executor, self.context, self.logger)
        self.shell = ShellInjectionHandler(
            self.executor, config.context.max_tool_output_chars, self.logger
        )

    @property
    def max_tool_rounds(self) -> int:
        return self.config.agent.max_tool_rounds

    def start(self) -> None:
        """Discover external tools and seed the conversation."""
        self.executor.load_external_tools(self.config.tools.search_paths)
        prompt = self.config.agent.system_prompt or DEFAULT_SYSTEM_PROMPT
        self.context.add_message(Message.system(prompt))

    # --- dispatch ---

    def handle_input(self, line: str) -> bool:
        """Process one input line. Returns False when the session should end."""
        line = line.strip()
        if not line:
            return True
        if line.lower() in QUIT_WORDS:
            self.goodbye()
            return False

        if line.startswith("/"):
            result = self.commands.handle(line, self.config, self.client)
            self.config, self.client = result.config, result.client
            return True

        if line.startswith("!"):
            injected = self.shell.handle(line)
            if injected is not None:
                self.context.add_message(Message.user(injected))
                self.process_with_tools()
            return True

        self.context.add_message(Message.user(line))
        self.process_with_tools()
        return True

    # --- tool rounds ---

    def process_with_tools(self) -> Message | None:
        """Ask the model, run any tools it calls, and repeat until it answers.

        Returns the last assistant message, or None if the cycle was aborted.
        """
        last = None
        try:
            for _ in range(self.max_tool_rounds):
                reply = self._request()
                if reply is None:
                    return None
                self.context.add_message(reply)
                last = reply
                if not reply.tool_calls:
                    return reply
                self.execute_tools(reply.tool_calls)
        except KeyboardInterrupt:
            fmt.end_response()
            fmt.warning("interrupted, request aborted.")
            self.logger.info("tool round interrupted by user")
            return None

        fmt.warning("Maximum tool execution rounds reached")
        self.logger.warning("maximum tool rounds (%d) reached", self.max_tool_rounds)
        return last

    def _request(self) -> Message | None:
        schemas = self.executor.tool_schemas()
        fmt.assistant_prefix()
        t0 = time.monotonic()
        try:
            reply = self.client.send_streaming_chat_request(
                self.context.messages, schemas, on_token=fmt.token
            )
        except CairnError as e:
            fmt.end_response()
            self.logger.error("LLM request failed (code %d): %s", e.code, e)
            fmt.error(str(e))
            return None
        except Exception as e:
            fmt.end_response()
            self.logger.exception("LLM request failed")
            fmt.error(f"LLM request failed: {e}")
            return None
        fmt.end_response()
        self.logger.debug(
            "LLM replied in %.1fs with %d tool calls",
            time.monotonic() - t0,
            len(reply.tool_calls or ()),
        )
        return reply

    def execute_tools(self, calls: tuple[ToolCall, ...]) -> None:
        """Run each call in order and append one tool message per call.

        On KeyboardInterrupt every call not yet answered gets an
        "Error: interrupted" message before the interrupt propagates.
        """
        for i, call in enumerate(calls):
            if self.verbose:
                pretty = call.arguments
                try:
                    pretty = json.dumps(json.loads(call.arguments), indent=2)
                except (json.JSONDecodeError, TypeError):
                    pass
                if len(pretty) > MAX_ARG_LOG:
                    pretty = pretty[:MAX_ARG_LOG] + "\n... (truncated)"
                fmt.tool_call(call.name, pretty)

            t0 = time.monotonic()
            try:
                result = self.executor.execute(call.name, call.arguments)
            except CairnError as e:
                content, ok = f"Error: {e}", False
            except KeyboardInterrupt:
                for pending in calls[i:]:
                    self.context.add_message(
                        Message.tool_result(pending.id, pending.name, INTERRUPTED)
                    )
                raise
            else:
                content, ok = result.to_content(), result.success
            elapsed = time.monotonic() - t0

            if self.verbose:
                if ok:
                    fmt.tool_result(call.name, elapsed, content[:MAX_RESULT_PREVIEW])
                else:
                    fmt.tool_error(call.name, content[:MAX_RESULT_PREVIEW])
            self.context.add_message(Message.tool_result(call.id, call.name, content))

    # --- session ---

    def goodbye(self) -> None:
        count, user, assistant = self.context.summary()
        fmt.output("Goodbye!")
        fmt.output(f"Messages: {count}, user turns: {user}, assistant turns: {assistant}")
        self.logger.info(
            "session ended: %d messages, %d user, %d assistant", count, user, assistant
        )

    def run(self, read_line) -> None:
        """Read lines with ``read_line`` until a quit command or end of input."""
        self.start()
        if self.verbose:
            fmt.repl_banner(self.config.llm.provider, self.config.llm.model, len(self.executor))
        while True:
            try:
                line = read_line()
            except (EOFError, KeyboardInterrupt):
                print(file=sys.stderr)  # newline after ^D / ^C
                self.goodbye()
                break
            if not self.handle_input(line):
                break


def _use_prompt_toolkit(enable_readline: bool) -> bool:
    if not enable_readline or not sys.stdin.isatty():
        return False
    if os.environ.get("TERM", "") in ("", "dumb"):
        return False
    return not os.environ.get("SSH_CONNECTION")


def make_reader(config: Config):
    """Return a zero-argument callable that reads one line of input."""
    if not _use_prompt_toolkit(config.ui.enable_readline):
        return lambda: input("You: ")

    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    history_path = os.path.expanduser(config.ui.history_file)
    os.makedirs(os.path.dirname(history_path) or ".", exist_ok=True)
    session = PromptSession(
        history=FileHistory(history_path),
        enable_history_search=True,
    )
    prompt_text = FormattedText([("bold fg:ansigreen", "You: ")])
    return lambda: session.prompt(prompt_text)


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="cairn",
        description="An interactive AI coding assistant with tool calling and pluggable LLM providers.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Extra TOML config file, applied over the global and project configs.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        default=None,
        help=f"LLM provider ({', '.join(PROVIDERS)}).",
    )
    parser.add_argument("-m", "--model", default=None, help="Model name.")
    parser.add_argument(
        "--endpoint", default=None, help="Provider base URL (default: provider default)."
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="API key for the provider (overrides env var and config).",
    )
    parser.add_argument(
        "--max-tool-rounds",
        type=int,
        default=None,
        help="Maximum LLM round-trips per user message (default: 10).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the resolved configuration and exit.",
    )
    parser.add_argument(
        "--no-sandbox",
        action="store_true",
        help="Disable path containment for file tools.",
    )
    parser.add_argument(
        "--no-readline",
        action="store_true",
        help="Read input with plain input() instead of prompt_toolkit.",
    )
    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color", action="store_true", help="Force ANSI color output."
    )
    color_group.add_argument(
        "--no-color", action="store_true", help="Disable ANSI color output."
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Hide tool activity and console logging.",
    )
    verbosity.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log debug messages to the console.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )
    return parser


def _print_resolved(config: Config) -> None:
    llm = config.llm
    print(f"provider: {llm.provider}")
    print(f"model:    {llm.model}")
    print(f"endpoint: {llm.endpoint}")
    print(f"api_key:  {llm.masked_key()}")
    print(f"sandbox:  {'on' if config.safety.sandbox_enabled else 'off'}")
    if config.sources:
        print(f"config:   {', '.join(config.sources)}")


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("cairn")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    fmt.init(color=args.color, no_color=args.no_color)

    try:
        config = apply_cli_overrides(load_config(".", args.config), args)
        if args.dry_run:
            _print_resolved(config)
            sys.exit(0)
        check_api_key(config.llm)
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)

    if not config.ui.color and not args.color:
        fmt.init(no_color=True)

    session = init_logging(config.ui.log_dir, config.ui.console_log_level)
    try:
        loop = AgentLoop(config, logger=session.logger, verbose=not args.quiet)
        loop.run(make_reader(config))
    finally:
        session.close()
        logging.shutdown()


if __name__ == "__main__":
    main()
