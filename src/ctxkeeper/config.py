"""Immutable per-session settings for truncation and compaction.

Values can be given explicitly or read from ``CTXKEEPER_*`` environment
variables via the ``from_env()`` classmethods.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .errors import InvalidConfigError

DEFAULT_PROMPT_TEMPLATE = """The following is a conversation history between a user and an AI agent.
Summarize the conversation concisely, focusing on:
1. Key decisions and outcomes
2. Important context and state changes
3. Unresolved questions or pending tasks
4. Tool calls and their results

Keep the summary under 500 tokens while preserving critical information.

Conversation History:
{conversation}
"""

_DEFAULT_CONTEXT_WINDOW = 1_000_000


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer, got {raw!r}"
        raise InvalidConfigError(msg) from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        msg = f"{name} must be a number, got {raw!r}"
        raise InvalidConfigError(msg) from exc


def _env_bool(name: str, default: bool) -> bool:  # noqa: FBT001
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    msg = f"{name} must be a boolean, got {raw!r}"
    raise InvalidConfigError(msg)


@dataclass(frozen=True)
class CompactionConfig:
    """Sliding-window compaction settings.

    Attributes:
        invocation_threshold: new invocations since the last compaction that
            trigger a pass.
        overlap_size: invocations re-included from the previous window.
        safety_ratio: fraction of ``context_window`` that forces a pass
            regardless of the invocation count.
        token_threshold: absolute token count that also forces a pass.
        context_window: the model's context window in tokens.
        prompt_template: summarization prompt, must contain ``{conversation}``.
    """

    invocation_threshold: int = 5
    overlap_size: int = 2
    safety_ratio: float = 0.7
    token_threshold: int = 700_000
    context_window: int = _DEFAULT_CONTEXT_WINDOW
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE

    def __post_init__(self) -> None:
        if self.invocation_threshold <= 0:
            msg = "invocation_threshold must be positive"
            raise InvalidConfigError(msg)
        if self.overlap_size < 0:
            msg = "overlap_size must not be negative"
            raise InvalidConfigError(msg)
        if not 0.0 < self.safety_ratio <= 1.0:
            msg = "safety_ratio must be in (0, 1]"
            raise InvalidConfigError(msg)
        if self.token_threshold <= 0:
            msg = "token_threshold must be positive"
            raise InvalidConfigError(msg)
        if self.context_window <= 0:
            msg = "context_window must be positive"
            raise InvalidConfigError(msg)
        if "{conversation}" not in self.prompt_template:
            msg = "prompt_template must contain a {conversation} placeholder"
            raise InvalidConfigError(msg)

    @property
    def safety_tokens(self) -> int:
        """Token count above which a pass is forced."""
        return min(int(self.context_window * self.safety_ratio), self.token_threshold)

    @classmethod
    def from_env(cls) -> CompactionConfig:
        return cls(
            invocation_threshold=_env_int("CTXKEEPER_COMPACTION_THRESHOLD", 5),
            overlap_size=_env_int("CTXKEEPER_COMPACTION_OVERLAP", 2),
            safety_ratio=_env_float("CTXKEEPER_COMPACTION_SAFETY", 0.7),
            token_threshold=_env_int("CTXKEEPER_COMPACTION_TOKENS", 700_000),
            context_window=_env_int("CTXKEEPER_CONTEXT_WINDOW", _DEFAULT_CONTEXT_WINDOW),
        )


@dataclass(frozen=True)
class TruncationConfig:
    """Head+tail truncation limits for tool output."""

    max_bytes: int = 10 * 1024
    max_lines: int = 256
    head_lines: int = 128
    tail_lines: int = 128

    def __post_init__(self) -> None:
        if self.max_bytes <= 0:
            msg = "max_bytes must be positive"
            raise InvalidConfigError(msg)
        if self.max_lines <= 0:
            msg = "max_lines must be positive"
            raise InvalidConfigError(msg)
        if self.head_lines < 0 or self.tail_lines < 0:
            msg = "head_lines and tail_lines must not be negative"
            raise InvalidConfigError(msg)

    @classmethod
    def from_env(cls) -> TruncationConfig:
        return cls(
            max_bytes=_env_int("CTXKEEPER_TRUNCATE_MAX_BYTES", 10 * 1024),
            max_lines=_env_int("CTXKEEPER_TRUNCATE_MAX_LINES", 256),
            head_lines=_env_int("CTXKEEPER_TRUNCATE_HEAD_LINES", 128),
            tail_lines=_env_int("CTXKEEPER_TRUNCATE_TAIL_LINES", 128),
        )


@dataclass(frozen=True)
class ContextConfig:
    """Everything a :class:`~ctxkeeper.manager.ContextManager` needs."""

    model_name: str = "default"
    reserved_fraction: float = 0.10
    compaction_enabled: bool = True
    compaction: CompactionConfig = field(default_factory=CompactionConfig)
    truncation: TruncationConfig = field(default_factory=TruncationConfig)

    def __post_init__(self) -> None:
        if not 0.0 <= self.reserved_fraction < 1.0:
            msg = "reserved_fraction must be in [0, 1)"
            raise InvalidConfigError(msg)

    @property
    def context_window(self) -> int:
        return self.compaction.context_window

    @classmethod
    def from_env(cls) -> ContextConfig:
        return cls(
            model_name=os.environ.get("CTXKEEPER_MODEL", "default"),
            reserved_fraction=_env_float("CTXKEEPER_RESERVED_FRACTION", 0.10),
            compaction_enabled=_env_bool("CTXKEEPER_COMPACTION_ENABLED", True),
            compaction=CompactionConfig.from_env(),
            truncation=TruncationConfig.from_env(),
        )
