"""Bounded conversation history with pruning and usage statistics."""

import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from .models import Message
from .providers import estimate_cost, get_provider

DEFAULT_MAX_MESSAGES = 50
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Rough token count: one token per four characters."""
    return len(text or "") // CHARS_PER_TOKEN


@dataclass(frozen=True)
class LimitChange:
    old: int
    new: int
    before: int
    after: int

    @property
    def pruned(self) -> int:
        return self.before - self.after


@dataclass
class ContextStats:
    message_count: int = 0
    max_messages: int = DEFAULT_MAX_MESSAGES
    system_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    tool_calls: int = 0
    tool_results: int = 0
    total_chars: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    largest_message: int = 0
    tool_usage: dict[str, int] = field(default_factory=dict)
    prune_count: int = 0
    total_messages_pruned: int = 0
    session_id: str = ""
    started_at: datetime | None = None
    duration_seconds: float = 0.0
    provider: str = ""
    model: str = ""
    estimated_cost: float = 0.0

    @property
    def average_chars(self) -> int:
        return self.total_chars // self.message_count if self.message_count else 0

    @property
    def limit_percent(self) -> float:
        if self.max_messages <= 0:
            return 0.0
        return self.message_count / self.max_messages * 100

    @property
    def messages_per_minute(self) -> float:
        minutes = self.duration_seconds / 60
        return self.message_count / minutes if minutes > 0 else 0.0

    @property
    def tokens_per_minute(self) -> float:
        minutes = self.duration_seconds / 60
        return self.total_tokens / minutes if minutes > 0 else 0.0

    @property
    def is_free(self) -> bool:
        info = get_provider(self.provider)
        return info is not None and info.local


class ConversationContext:
    """Ordered message history capped at ``max_messages``.

    System messages always survive pruning; the oldest non-system messages
    are dropped first.
    """

    def __init__(
        self,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        *,
        provider: str = "",
        model: str = "",
        logger: logging.Logger | None = None,
    ):
        self.max_messages = max_messages
        self.provider = provider
        self.model = model
        self.logger = logger or logging.getLogger(__name__)
        self.session_id = uuid.uuid4().hex[:8]
        self.started_at = datetime.now()
        self._started_monotonic = time.monotonic()
        self.prune_count = 0
        self.total_messages_pruned = 0
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[Message]:
        """A copy of the current history, oldest first."""
        return list(self._messages)

    def add_message(self, message: Message) -> None:
        self._messages.append(message)
        if len(self._messages) > self.max_messages:
            self._prune()

    def add_messages(self, messages) -> None:
        for m in messages:
            self.add_message(m)

    def clear(self, keep_system_prompt: bool = True) -> int:
        """Drop the history, keeping the leading system prompt if asked.

        Returns the number of messages removed.
        """
        before = len(self._messages)
        if (
            keep_system_prompt
            and self._messages
            and self._messages[0].role == "system"
        ):
            self._messages = [self._messages[0]]
        else:
            self._messages = []
        removed = before - len(self._messages)
        self.logger.debug("context cleared (%d messages removed)", removed)
        return removed

    def set_context_limit(self, limit: int) -> LimitChange:
        old = self.max_messages
        before = len(self._messages)
        self.max_messages = limit
        if before > limit:
            self._prune()
        self.logger.info("context limit changed: %d -> %d", old, limit)
        return LimitChange(old, limit, before, len(self._messages))

    def update_provider(self, provider: str, model: str) -> None:
        self.provider = provider
        self.model = model

    def _prune(self) -> None:
        system = [m for m in self._messages if m.role == "system"]
        rest = [m for m in self._messages if m.role != "system"]
        keep = max(0, self.max_messages - len(system))
        recent = rest[-keep:] if keep else []
        removed = len(self._messages) - len(system) - len(recent)
        if removed <= 0:
            return
        self._messages = system + recent
        self.prune_count += 1
        self.total_messages_pruned += removed
        self.logger.info(
            "pruned %d messages (limit %d, %d remain, %d prunes so far)",
            removed,
            self.max_messages,
            len(self._messages),
            self.prune_count,
        )

    # --- Statistics ---

    def summary(self) -> tuple[int, int, int]:
        """(message count, user turns, assistant turns)."""
        roles = Counter(m.role for m in self._messages)
        return len(self._messages), roles["user"], roles["assistant"]

    def stats(self) -> ContextStats:
        s = ContextStats(
            message_count=len(self._messages),
            max_messages=self.max_messages,
            prune_count=self.prune_count,
            total_messages_pruned=self.total_messages_pruned,
            session_id=self.session_id,
            started_at=self.started_at,
            duration_seconds=time.monotonic() - self._started_monotonic,
            provider=self.provider,
            model=self.model,
        )
        usage: Counter = Counter()
        for m in self._messages:
            chars = len(m.content or "")
            tokens = estimate_tokens(m.content)
            s.total_chars += chars
            s.total_tokens += tokens
            s.largest_message = max(s.largest_message, chars)
            if m.role == "system":
                s.system_messages += 1
                s.input_tokens += tokens
            elif m.role == "user":
                s.user_messages += 1
                s.input_tokens += tokens
            elif m.role == "tool":
                s.tool_results += 1
                s.input_tokens += tokens
            else:
                s.assistant_messages += 1
                s.output_tokens += tokens
                for tc in m.tool_calls or ():
                    s.tool_calls += 1
                    usage[tc.name] += 1
        s.tool_usage = dict(usage)
        s.estimated_cost = estimate_cost(self.provider, s.input_tokens, s.output_tokens)
        return s
