"""Static provider capability table."""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    label: str
    default_endpoint: str
    default_model: str
    requires_api_key: bool = False
    api_key_env: str | None = None
    input_price: float = 0.0  # USD per million tokens
    output_price: float = 0.0
    local: bool = False

    @property
    def info(self) -> str:
        return f"{self.label} - Default: {self.default_model}"


PROVIDERS: dict[str, ProviderInfo] = {
    "ollama": ProviderInfo(
        name="ollama",
        label="Ollama (local, free)",
        default_endpoint="http://localhost:11434/v1",
        default_model="qwen2.5:14b",
        local=True,
    ),
    "openai": ProviderInfo(
        name="openai",
        label="OpenAI (requires API key)",
        default_endpoint="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
        requires_api_key=True,
        api_key_env="OPENAI_API_KEY",
        input_price=2.50,
        output_price=10.00,
    ),
    "anthropic": ProviderInfo(
        name="anthropic",
        label="Anthropic Claude (requires API key)",
        default_endpoint="https://api.anthropic.com/v1",
        default_model="claude-3-5-sonnet-20241022",
        requires_api_key=True,
        api_key_env="ANTHROPIC_API_KEY",
        input_price=3.00,
        output_price=15.00,
    ),
    "apple": ProviderInfo(
        name="apple",
        label="Apple Foundation Models (macOS 15+, on-device)",
        default_endpoint="",
        default_model="foundation",
        local=True,
    ),
}


def get_provider(name: str) -> ProviderInfo | None:
    return PROVIDERS.get(name.lower())


def api_key_from_env(provider: str) -> str | None:
    """Return the provider's API key from its environment variable, if any."""
    info = get_provider(provider)
    if info is None or info.api_key_env is None:
        return None
    return os.environ.get(info.api_key_env) or None


def estimate_cost(provider: str, input_tokens: int, output_tokens: int) -> float:
    info = get_provider(provider)
    if info is None:
        return 0.0
    return (
        input_tokens / 1_000_000 * info.input_price
        + output_tokens / 1_000_000 * info.output_price
    )
