"""Terminal output using Rich.

Conversation text (assistant tokens, command output) goes to stdout;
tool activity and diagnostics go to stderr.
"""

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_out = Console()
_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _out, _console
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _out = Console(**kwargs)
    _console = Console(stderr=True, **kwargs)


# -- Conversation ------------------------------------------------------------


def assistant_prefix() -> None:
    _out.print(Text("AI: ", style="bold blue"), end="")


def token(text: str) -> None:
    """Print a streamed fragment as-is, without a trailing newline."""
    _out.print(text, end="", markup=False, highlight=False, soft_wrap=True)


def end_response() -> None:
    _out.print()


def output(text: str) -> None:
    """Plain command output on stdout."""
    _out.print(text, markup=False, highlight=False, soft_wrap=True)


def heading(title: str) -> None:
    _out.print(Rule(escape(title), style="cyan", align="left"))


def key_value(key: str, value, width: int = 22) -> None:
    line = Text()
    line.append(f"  {key + ':':<{width}}", style="bold")
    line.append(str(value))
    _out.print(line)


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, args_json: str) -> None:
    header = Text()
    header.append("  \u25b6 ", style="bold magenta")
    header.append(name, style="bold magenta")
    _console.print(header)
    if args_json:
        for line in args_json.splitlines():
            _console.print(Text(f"    {line}", style="dim"))


def tool_result(name: str, elapsed: float, preview: str) -> None:
    header = Text()
    header.append(f"  \u2713 {name}", style="green")
    header.append(f"  {elapsed:.1f}s", style="green")
    _console.print(header)
    if preview:
        _console.print(Text(f"    {preview}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  \u2717 {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def success(msg: str) -> None:
    _console.print(Text(f"  \u2713 {msg}", style="green"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(provider: str, model: str, tool_count: int) -> None:
    _console.print(
        Text(f"cairn: {provider}/{model}, {tool_count} tools.", style="bold cyan")
    )
    _console.print(
        Text("Type /help for commands, !cmd to run a shell command, /quit or Ctrl-D to exit.", style="dim")
    )
