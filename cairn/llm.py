"""LLM clients: one synchronous interface over several provider wire formats.

The OpenAI-compatible family (OpenAI, local ollama servers, anything that
speaks /v1/chat/completions) goes through litellm. Anthropic's Messages API
is spoken directly over HTTP. Each call is a single round-trip; nothing here
retries.
"""

from __future__ import annotations

import json
import logging
import platform
import re
import sys
import uuid
from collections.abc import Callable

from .config import LLMConfig
from .errors import (
    LLMConnectionFailed,
    LLMError,
    LLMRateLimited,
    LLMRequestFailed,
    LLMResponseInvalid,
    LLMTimeout,
    ProviderUnavailable,
)
from .models import Message, ToolCall, ToolSchema
from .transport import post_json, stream_post

TokenCallback = Callable[[str], None]

ANTHROPIC_VERSION = "2023-06-01"
LOCAL_API_KEY = "ollama"  # local servers ignore the key but litellm wants one


def _get(obj, key, default=None):
    """Read ``key`` from a dict or an attribute from an object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class LLMClient:
    """Common interface of every provider client."""

    def __init__(self, config: LLMConfig, logger: logging.Logger | None = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    def __repr__(self):
        return f"{type(self).__name__}(provider={self.config.provider!r}, model={self.config.model!r})"

    def send_chat_request(
        self, messages: list[Message], tools: list[ToolSchema] | None = None
    ) -> Message:
        raise NotImplementedError

    def send_streaming_chat_request(
        self,
        messages: list[Message],
        tools: list[ToolSchema] | None = None,
        on_token: TokenCallback | None = None,
    ) -> Message:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Streaming tool-call assembly
# ---------------------------------------------------------------------------


class ToolCallAccumulator:
    """Rebuild complete tool calls from streamed deltas.

    A delta carrying an id (or index) different from the open call starts a
    new call; argument fragments append to the open call. ``finish()`` closes
    the last call.
    """

    def __init__(self):
        self._calls: list[ToolCall] = []
        self._current: dict | None = None

    def add(self, delta) -> None:
        call_id = _get(delta, "id")
        index = _get(delta, "index")
        fn = _get(delta, "function")
        name = _get(fn, "name")
        args = _get(fn, "arguments")

        cur = self._current
        starts_new = cur is None or (call_id and call_id != cur["id"] and cur["id"])
        if cur is not None and index is not None and cur["index"] is not None:
            starts_new = starts_new or index != cur["index"]
        if starts_new:
            self._finalize()
            self._current = cur = {"id": call_id or "", "index": index, "name": "", "args": []}
        elif call_id and not cur["id"]:
            cur["id"] = call_id

        if name and not cur["name"]:
            cur["name"] = name
        if args:
            cur["args"].append(args)

    def _finalize(self) -> None:
        cur = self._current
        self._current = None
        if cur is None or not cur["name"]:
            return
        call_id = cur["id"] or f"call_{uuid.uuid4().hex[:12]}"
        self._calls.append(ToolCall(call_id, cur["name"], "".join(cur["args"])))

    def finish(self) -> list[ToolCall]:
        self._finalize()
        return list(self._calls)


# ---------------------------------------------------------------------------
# OpenAI-compatible (litellm)
# ---------------------------------------------------------------------------


def _translate_litellm_error(e: Exception) -> LLMError:
    import litellm

    if isinstance(e, litellm.RateLimitError):
        return LLMRateLimited(str(e))
    if isinstance(e, litellm.Timeout):
        return LLMTimeout(str(e))
    if isinstance(e, litellm.APIConnectionError):
        return LLMConnectionFailed(str(e))
    status = getattr(e, "status_code", None)
    return LLMRequestFailed(str(e), status=status if isinstance(status, int) else None)


class OpenAICompatibleClient(LLMClient):
    """Chat completions through litellm's OpenAI adapter."""

    placeholder_key = "not-needed"

    def _completion_kwargs(self, messages, tools, stream: bool) -> dict:
        cfg = self.config
        kwargs = dict(
            model=f"openai/{cfg.model}",
            messages=[m.to_dict() for m in messages],
            api_base=cfg.endpoint,
            api_key=cfg.api_key or self.placeholder_key,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            timeout=cfg.timeout_seconds,
            stream=stream,
        )
        if tools:
            kwargs["tools"] = [t.to_dict() for t in tools]
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _completion(self, **kwargs):
        import litellm

        litellm.suppress_debug_info = True
        self.logger.debug(
            "calling %s at %s (%d messages, stream=%s)",
            kwargs["model"],
            kwargs["api_base"],
            len(kwargs["messages"]),
            kwargs["stream"],
        )
        try:
            return litellm.completion(**kwargs)
        except LLMError:
            raise
        except Exception as e:
            raise _translate_litellm_error(e) from e

    def send_chat_request(self, messages, tools=None):
        response = self._completion(**self._completion_kwargs(messages, tools, False))
        try:
            msg = response.choices[0].message
        except (AttributeError, IndexError, TypeError) as e:
            raise LLMResponseInvalid(f"unexpected response shape: {e}") from e

        calls = [
            ToolCall(tc.id, tc.function.name, tc.function.arguments or "")
            for tc in (_get(msg, "tool_calls") or [])
        ]
        content = _get(msg, "content") or None
        return Message.assistant(content if content or calls else "", calls or None)

    def send_streaming_chat_request(self, messages, tools=None, on_token=None):
        stream = self._completion(**self._completion_kwargs(messages, tools, True))
        parts: list[str] = []
        acc = ToolCallAccumulator()
        try:
            for chunk in stream:
                choices = _get(chunk, "choices") or []
                if not choices:
                    continue
                delta = _get(choices[0], "delta")
                text = _get(delta, "content")
                if text:
                    parts.append(text)
                    if on_token is not None:
                        on_token(text)
                for tc in _get(delta, "tool_calls") or []:
                    acc.add(tc)
        except LLMError:
            raise
        except Exception as e:
            raise _translate_litellm_error(e) from e

        content = "".join(parts) or None
        calls = acc.finish()
        return Message.assistant(content if content or calls else "", calls or None)


class LocalClient(OpenAICompatibleClient):
    """A local OpenAI-compatible server such as ollama."""

    placeholder_key = LOCAL_API_KEY


# ---------------------------------------------------------------------------
# Anthropic Messages API
# ---------------------------------------------------------------------------

_STREAM_TEXT_RE = re.compile(r'"text"\s*:\s*"((?:[^"\\]|\\.)*)"')


class AnthropicClient(LLMClient):
    """Anthropic Messages API. Text only: tools are not offered to the model."""

    @property
    def url(self) -> str:
        return self.config.endpoint.rstrip("/") + "/messages"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def build_payload(self, messages: list[Message], stream: bool) -> dict:
        system = [m.content for m in messages if m.role == "system" and m.content]
        turns = []
        for m in messages:
            if m.role == "system":
                continue
            if m.role == "tool":
                turns.append({"role": "user", "content": f"Tool result ({m.name}): {m.content or ''}"})
            elif m.content:
                role = "user" if m.role == "user" else "assistant"
                turns.append({"role": role, "content": m.content})
        payload = {
            "model": self.config.model,
            "messages": turns,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "stream": stream,
        }
        if system:
            payload["system"] = "\n\n".join(system)
        return payload

    def send_chat_request(self, messages, tools=None):
        data = post_json(
            self.url,
            self.build_payload(messages, stream=False),
            self._headers(),
            self.config.timeout_seconds,
        )
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise LLMResponseInvalid("response has no content blocks")
        text = "".join(
            b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"
        )
        return Message.assistant(text)

    def send_streaming_chat_request(self, messages, tools=None, on_token=None):
        parts: list[str] = []
        for data in stream_post(
            self.url,
            self.build_payload(messages, stream=True),
            self._headers(),
            self.config.timeout_seconds,
        ):
            if _is_error_event(data):
                raise LLMRequestFailed(_stream_error_message(data))
            for m in _STREAM_TEXT_RE.finditer(data):
                try:
                    fragment = json.loads(f'"{m.group(1)}"')
                except json.JSONDecodeError:
                    continue
                if fragment:
                    parts.append(fragment)
                    if on_token is not None:
                        on_token(fragment)
        return Message.assistant("".join(parts))


def _is_error_event(data: str) -> bool:
    if '"error"' not in data:
        return False
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        return False
    return isinstance(event, dict) and event.get("type") == "error"


def _stream_error_message(data: str) -> str:
    try:
        event = json.loads(data)
        return event["error"]["message"]
    except (json.JSONDecodeError, KeyError, TypeError):
        return data


# ---------------------------------------------------------------------------
# Platform-native model
# ---------------------------------------------------------------------------


class PlatformModelClient(LLMClient):
    """On-device Apple Foundation Models.

    The framework has no Python binding, so every request fails with an
    explanation of why and what to use instead.
    """

    def _unavailable(self):
        if sys.platform != "darwin":
            reason = f"requires macOS 15 or later, but this is {sys.platform}"
        else:
            release = platform.mac_ver()[0] or "unknown"
            try:
                major = int(release.split(".")[0])
            except ValueError:
                major = 0
            if major < 15:
                reason = f"requires macOS 15 or later, but this is macOS {release}"
            else:
                reason = "the Foundation Models framework is not reachable from this process"
        raise ProviderUnavailable(
            f"Apple Foundation Models unavailable: {reason}",
            remediation="Please use a different provider (ollama, openai, anthropic), e.g. /provider ollama",
        )

    def send_chat_request(self, messages, tools=None):
        self._unavailable()

    def send_streaming_chat_request(self, messages, tools=None, on_token=None):
        self._unavailable()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_CLIENTS: dict[str, type[LLMClient]] = {
    "anthropic": AnthropicClient,
    "apple": PlatformModelClient,
    "ollama": LocalClient,
    "openai": OpenAICompatibleClient,
    "openai-compatible": OpenAICompatibleClient,
}


def create_client(config: LLMConfig, logger: logging.Logger | None = None) -> LLMClient:
    logger = logger or logging.getLogger(__name__)
    cls = _CLIENTS.get(config.provider.lower())
    if cls is None:
        logger.warning(
            "unknown provider %r, using the OpenAI-compatible client", config.provider
        )
        cls = OpenAICompatibleClient
    logger.info("created %s for %s at %s", cls.__name__, config.model, config.endpoint or "-")
    return cls(config, logger)
