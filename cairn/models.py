"""Value types shared by the agent loop, the tools and the LLM clients."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

ROLES = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class Message:
    """One entry of the conversation.

    A tool message must carry tool_call_id and name. An assistant message
    has content, tool calls, or both.
    """

    role: str
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"unknown message role: {self.role!r}")
        if self.tool_calls is not None and not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        if self.role == "tool" and (not self.tool_call_id or not self.name):
            raise ValueError("tool messages need tool_call_id and name")
        if self.role == "assistant" and self.content is None and not self.tool_calls:
            raise ValueError("assistant messages need content or tool calls")

    @classmethod
    def system(cls, content: str) -> Message:
        return cls("system", content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls("user", content)

    @classmethod
    def assistant(
        cls, content: str | None, tool_calls: list[ToolCall] | None = None
    ) -> Message:
        return cls("assistant", content, tuple(tool_calls) if tool_calls else None)

    @classmethod
    def tool_result(cls, tool_call_id: str, name: str, content: str) -> Message:
        return cls("tool", content, tool_call_id=tool_call_id, name=name)

    def to_dict(self) -> dict:
        """OpenAI chat-completions wire form."""
        d: dict = {"role": self.role, "content": self.content}
        if self.tool_calls:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            d["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            d["name"] = self.name
        return d


@dataclass(frozen=True)
class ToolResult:
    success: bool
    output: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, output: str) -> ToolResult:
        return cls(True, output=output)

    @classmethod
    def fail(cls, error: str, output: str | None = None) -> ToolResult:
        return cls(False, output=output, error=error)

    def to_content(self) -> str:
        """Text placed into the conversation for this result."""
        if self.success:
            return self.output or "Success"
        return f"Error: {self.error}"


@dataclass(frozen=True)
class ToolProperty:
    type: str
    description: str
    enum: tuple[str, ...] | None = None

    def to_dict(self) -> dict:
        d = {"type": self.type, "description": self.description}
        if self.enum:
            d["enum"] = list(self.enum)
        return d


@dataclass(frozen=True)
class ToolParameters:
    properties: dict[str, ToolProperty] = field(default_factory=dict)
    required: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "type": "object",
            "properties": {k: v.to_dict() for k, v in self.properties.items()},
            "required": list(self.required),
        }


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: ToolParameters = field(default_factory=ToolParameters)

    def to_dict(self) -> dict:
        """OpenAI function-tool wire form."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.to_dict(),
            },
        }


def parse_arguments(arguments: str) -> dict:
    """Decode a tool-call argument string into a dict.

    An empty string is treated as no arguments. Raises ValueError when the
    text is not a JSON object.
    """
    if not arguments or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
