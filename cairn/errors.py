"""Error taxonomy for cairn.

Every error carries a numeric category code so log lines and user-facing
messages can be grouped without matching on class names.
"""


class CairnError(Exception):
    """Base class for reportable cairn failures."""

    code = 9000

    def __init__(self, message: str = "", *, remediation: str | None = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def __str__(self) -> str:
        if self.remediation:
            return f"{self.message}\n{self.remediation}"
        return self.message


class ConfigError(CairnError):
    """Raised for invalid configuration (bad TOML, wrong types, missing API key)."""

    code = 1000


class FileIOError(CairnError):
    code = 1100


class InvalidInput(CairnError):
    code = 9000


# --- Tools ---


class ToolError(CairnError):
    code = 2000


class ToolNotFound(ToolError):
    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name


class ToolExecutionFailed(ToolError):
    def __init__(self, name: str, reason: str):
        super().__init__(f"Tool '{name}' failed: {reason}")
        self.name = name
        self.reason = reason


class ToolInvalidArguments(ToolError):
    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid arguments for tool '{name}': {reason}")
        self.name = name
        self.reason = reason


class ToolTimeout(ToolError):
    """``subject`` names what was killed, e.g. "Command" or "Tool"."""

    def __init__(self, subject: str, seconds: float):
        super().__init__(f"{subject} timed out after {seconds:g} seconds")
        self.subject = subject
        self.seconds = seconds


# --- LLM ---


class LLMError(CairnError):
    code = 3000


class LLMConnectionFailed(LLMError):
    pass


class LLMRequestFailed(LLMError):
    def __init__(self, message: str, status: int | None = None):
        if status is not None:
            message = f"HTTP {status}: {message}"
        super().__init__(message)
        self.status = status


class LLMResponseInvalid(LLMError):
    pass


class LLMTimeout(LLMError):
    pass


class LLMRateLimited(LLMError):
    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        if retry_after is not None:
            message = f"{message} (retry after {retry_after:g}s)"
        super().__init__(message)
        self.retry_after = retry_after


class ProviderUnavailable(LLMError):
    """The selected provider cannot run on this machine."""


# --- Safety ---


class SafetyError(CairnError):
    code = 4000


class SandboxViolation(SafetyError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Sandbox violation: {path} ({reason})")
        self.path = path


class BlockedCommand(SafetyError):
    def __init__(self, command: str, pattern: str):
        super().__init__(f"Blocked command: {command!r} matches {pattern!r}")
        self.command = command
        self.pattern = pattern
