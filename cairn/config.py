"""Configuration file loading and merging for cairn.

Reads TOML config from ~/.config/cairn/config.toml (global),
<base_dir>/cairn.toml (project) and an optional --config file.
Precedence: CLI > --config > project > global > defaults.
"""

import dataclasses
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError
from .providers import api_key_from_env, get_provider

PROJECT_CONFIG_NAME = "cairn.toml"

# --- Schema ---

CONFIG_KEYS: dict[str, dict[str, type | tuple[type, ...]]] = {
    "llm": {
        "provider": str,
        "model": str,
        "endpoint": str,
        "api_key": str,
        "temperature": (int, float),
        "max_tokens": int,
        "timeout_seconds": (int, float),
    },
    "context": {
        "max_messages": int,
        "max_tool_output_chars": int,
    },
    "agent": {
        "max_tool_rounds": int,
        "system_prompt": str,
    },
    "safety": {
        "sandbox_enabled": bool,
        "sandbox_allowed_paths": list,
        "sandbox_blocked_paths": list,
        "blocked_commands": list,
        "shell_timeout_seconds": int,
    },
    "tools": {
        "search_paths": list,
        "external_timeout_seconds": (int, float),
    },
    "ui": {
        "color": bool,
        "console_log_level": str,
        "enable_readline": bool,
        "history_file": str,
        "log_dir": str,
    },
}

_POSITIVE_KEYS = {
    "max_tokens",
    "timeout_seconds",
    "max_messages",
    "max_tool_output_chars",
    "max_tool_rounds",
    "shell_timeout_seconds",
    "external_timeout_seconds",
}

LOG_LEVELS = ("none", "debug", "info", "warning", "error")


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "cairn"
    return Path.home() / ".config" / "cairn"


# --- Typed configuration ---


@dataclass(frozen=True)
class LLMConfig:
    provider: str = "ollama"
    model: str = "qwen2.5:14b"
    endpoint: str = "http://localhost:11434/v1"
    api_key: str | None = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_seconds: float = 120

    def masked_key(self) -> str:
        if not self.api_key:
            return "(not set)"
        if len(self.api_key) <= 8:
            return "****"
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"


@dataclass(frozen=True)
class ContextConfig:
    max_messages: int = 50
    max_tool_output_chars: int = 10000


@dataclass(frozen=True)
class AgentConfig:
    max_tool_rounds: int = 10
    system_prompt: str = ""


@dataclass(frozen=True)
class SafetyConfig:
    sandbox_enabled: bool = True
    sandbox_allowed_paths: tuple[str, ...] = ("./",)
    sandbox_blocked_paths: tuple[str, ...] = ("~/.ssh", "~/.aws")
    blocked_commands: tuple[str, ...] = ("rm -rf /", "sudo", "chmod 777")
    shell_timeout_seconds: int = 60


def _default_search_paths() -> tuple[str, ...]:
    return (str(global_config_dir() / "tools"), "./tools")


@dataclass(frozen=True)
class ToolsConfig:
    search_paths: tuple[str, ...] = field(default_factory=_default_search_paths)
    external_timeout_seconds: float = 30


@dataclass(frozen=True)
class UIConfig:
    color: bool = True
    console_log_level: str = "none"
    enable_readline: bool = True
    history_file: str = field(default_factory=lambda: str(global_config_dir() / "history"))
    log_dir: str = field(default_factory=lambda: str(global_config_dir() / "logs"))


@dataclass(frozen=True)
class Config:
    llm: LLMConfig = field(default_factory=LLMConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    sources: tuple[str, ...] = ()


# --- Internal helpers ---


def _type_name(expected: type | tuple[type, ...]) -> str:
    """Format an expected type spec as a human-readable string."""
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> dict:
    """Validate a parsed config document and return its known sections.

    Raises ConfigError for type mismatches. Prints warnings for unknown
    sections and keys.
    """
    known: dict[str, dict] = {}
    for section, values in config.items():
        schema = CONFIG_KEYS.get(section)
        if schema is None:
            print(f"warning: {source}: unknown config section [{section}]", file=sys.stderr)
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"{source}: [{section}] must be a table")

        kept = {}
        for key, value in values.items():
            if key not in schema:
                print(
                    f"warning: {source}: unknown config key {section}.{key}",
                    file=sys.stderr,
                )
                continue
            expected = schema[key]
            # bool is a subclass of int; reject it for non-bool fields.
            if isinstance(value, bool) and expected is not bool:
                raise ConfigError(
                    f"{source}: {section}.{key} expected {_type_name(expected)}, got bool"
                )
            if not isinstance(value, expected):
                raise ConfigError(
                    f"{source}: {section}.{key} expected {_type_name(expected)}, "
                    f"got {type(value).__name__}"
                )
            if expected is list:
                for i, elem in enumerate(value):
                    if not isinstance(elem, str):
                        raise ConfigError(
                            f"{source}: {section}.{key}[{i}]: expected string, "
                            f"got {type(elem).__name__}"
                        )
                value = tuple(value)
            if key in _POSITIVE_KEYS and value <= 0:
                raise ConfigError(f"{source}: {section}.{key} must be positive")
            if key == "console_log_level" and value.lower() not in LOG_LEVELS:
                raise ConfigError(
                    f"{source}: ui.console_log_level must be one of {', '.join(LOG_LEVELS)}"
                )
            kept[key] = value
        known[section] = kept
    return known


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config.get("llm", {}):
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using an environment variable.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{label}: cannot read file: {e}") from e
    return _validate_config(config, label)


def _merge(base: dict, override: dict) -> dict:
    merged = {section: dict(values) for section, values in base.items()}
    for section, values in override.items():
        merged.setdefault(section, {}).update(values)
    return merged


# --- Public API ---


def load_config(base_dir: str | os.PathLike = ".", explicit: str | None = None) -> Config:
    """Load, merge and validate the configuration layers.

    Raises ConfigError if ``explicit`` does not exist or any file is invalid.
    """
    layers: list[tuple[Path, bool]] = [
        (global_config_dir() / "config.toml", False),
        (Path(base_dir).resolve() / PROJECT_CONFIG_NAME, True),
    ]
    if explicit is not None:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"config file not found: {explicit}")
        layers.append((path, False))

    merged: dict = {}
    sources = []
    for path, is_project in layers:
        raw = _load_single(path, str(path))
        if not raw and not path.is_file():
            continue
        if is_project:
            _check_api_key_in_git(raw, path)
        merged = _merge(merged, raw)
        sources.append(str(path))

    return build_config(merged, sources=tuple(sources))


def build_config(raw: dict, sources: tuple[str, ...] = ()) -> Config:
    """Turn validated section dicts into a Config, filling provider defaults."""
    llm_raw = dict(raw.get("llm", {}))
    provider = llm_raw.get("provider", LLMConfig.provider).lower()
    llm_raw["provider"] = provider
    info = get_provider(provider)
    if not llm_raw.get("endpoint"):
        llm_raw["endpoint"] = info.default_endpoint if info else LLMConfig.endpoint
    if "model" not in llm_raw and info is not None:
        llm_raw["model"] = info.default_model
    if not llm_raw.get("api_key"):
        llm_raw["api_key"] = api_key_from_env(provider)

    return Config(
        llm=LLMConfig(**llm_raw),
        context=ContextConfig(**raw.get("context", {})),
        agent=AgentConfig(**raw.get("agent", {})),
        safety=SafetyConfig(**raw.get("safety", {})),
        tools=ToolsConfig(**raw.get("tools", {})),
        ui=UIConfig(**raw.get("ui", {})),
        sources=sources,
    )


def switch_provider(llm: LLMConfig, provider: str) -> LLMConfig:
    """Return ``llm`` moved to ``provider`` with that provider's defaults.

    Raises ConfigError for unknown providers or a missing required API key.
    """
    name = provider.lower()
    info = get_provider(name)
    if info is None:
        raise ConfigError(f"Unknown provider: {provider}")
    api_key = api_key_from_env(name)
    if api_key is None and name == llm.provider:
        api_key = llm.api_key
    if info.requires_api_key and not api_key:
        raise ConfigError(
            f"Provider '{name}' requires an API key. Set {info.api_key_env} in your environment."
        )
    return dataclasses.replace(
        llm,
        provider=name,
        endpoint=info.default_endpoint,
        model=info.default_model,
        api_key=api_key,
    )


def check_api_key(llm: LLMConfig) -> None:
    info = get_provider(llm.provider)
    if info is not None and info.requires_api_key and not llm.api_key:
        raise ConfigError(
            f"Provider '{llm.provider}' requires an API key. "
            f"Set {info.api_key_env} or llm.api_key in the config file."
        )


def apply_cli_overrides(config: Config, args: Any) -> Config:
    """Overlay command-line flags on a loaded Config.

    A provider given on the command line without an explicit model or
    endpoint brings that provider's defaults with it.
    """
    llm = config.llm
    if getattr(args, "provider", None) and args.provider.lower() != llm.provider:
        name = args.provider.lower()
        info = get_provider(name)
        llm = dataclasses.replace(
            llm,
            provider=name,
            endpoint=info.default_endpoint if info else llm.endpoint,
            model=info.default_model if info else llm.model,
            api_key=api_key_from_env(name),
        )
    llm_overrides = {
        k: v
        for k, v in (
            ("model", getattr(args, "model", None)),
            ("endpoint", getattr(args, "endpoint", None)),
            ("api_key", getattr(args, "api_key", None)),
        )
        if v
    }
    if llm_overrides:
        llm = dataclasses.replace(llm, **llm_overrides)

    agent = config.agent
    if getattr(args, "max_tool_rounds", None):
        agent = dataclasses.replace(agent, max_tool_rounds=args.max_tool_rounds)

    safety = config.safety
    if getattr(args, "no_sandbox", False):
        safety = dataclasses.replace(safety, sandbox_enabled=False)

    ui = config.ui
    if getattr(args, "no_readline", False):
        ui = dataclasses.replace(ui, enable_readline=False)
    if getattr(args, "no_color", False):
        ui = dataclasses.replace(ui, color=False)
    elif getattr(args, "color", False):
        ui = dataclasses.replace(ui, color=True)
    if getattr(args, "verbose", False):
        ui = dataclasses.replace(ui, console_log_level="debug")
    elif getattr(args, "quiet", False):
        ui = dataclasses.replace(ui, console_log_level="none")

    return dataclasses.replace(config, llm=llm, agent=agent, safety=safety, ui=ui)


def generate_config() -> str:
    """Return a commented-out template config string."""
    lines = [
        "# cairn configuration file",
        "# Global: ~/.config/cairn/config.toml   Project: ./cairn.toml",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "[llm]",
        '# provider = "ollama"            # "ollama" | "openai" | "anthropic" | "apple"',
        '# model = "qwen2.5:14b"',
        '# endpoint = ""                  # empty: provider default',
        '# api_key = ""                   # prefer OPENAI_API_KEY / ANTHROPIC_API_KEY',
        "# temperature = 0.7",
        "# max_tokens = 4096",
        "# timeout_seconds = 120",
        "",
        "[context]",
        "# max_messages = 50",
        "# max_tool_output_chars = 10000",
        "",
        "[agent]",
        "# max_tool_rounds = 10",
        '# system_prompt = ""',
        "",
        "[safety]",
        "# sandbox_enabled = true",
        '# sandbox_allowed_paths = ["./"]',
        '# sandbox_blocked_paths = ["~/.ssh", "~/.aws"]',
        '# blocked_commands = ["rm -rf /", "sudo", "chmod 777"]',
        "# shell_timeout_seconds = 60",
        "",
        "[tools]",
        '# search_paths = ["~/.config/cairn/tools", "./tools"]',
        "# external_timeout_seconds = 30",
        "",
        "[ui]",
        "# color = true",
        '# console_log_level = "none"     # none | debug | info | warning | error',
        "# enable_readline = true",
        '# history_file = "~/.config/cairn/history"',
        '# log_dir = "~/.config/cairn/logs"',
        "",
    ]
    return "\n".join(lines)
