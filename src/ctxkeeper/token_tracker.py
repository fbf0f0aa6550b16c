"""Per-turn token accounting against a model's context window."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from pydantic import BaseModel, Field

from .events import TokenUsage

TokenEstimator = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Estimate token count from text. Rough heuristic: 4 characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


@dataclass(frozen=True)
class TurnTokenInfo:
    """Tokens consumed by a single turn."""

    turn_number: int
    input_tokens: int
    output_tokens: int
    total_tokens: int
    timestamp: float
    compaction_event: bool = False


class TokenInfo(BaseModel):
    """Snapshot of token state for display collaborators."""

    used_tokens: int
    available_tokens: int
    percentage_used: float
    estimated_turns_remaining: int
    total_turns: int
    context_window: int


@dataclass(frozen=True)
class RequestMetrics:
    """Cost of a single LLM request, by component."""

    prompt_tokens: int
    cached_tokens: int
    response_tokens: int
    thought_tokens: int
    tool_use_tokens: int
    total_tokens: int
    timestamp: float
    request_id: str = ""

    @property
    def used_tokens(self) -> int:
        """Tokens not served from cache."""
        return self.total_tokens - self.cached_tokens


class UsageSummary(BaseModel):
    """Session-wide totals over all recorded requests."""

    total_prompt_tokens: int = 0
    total_cached_tokens: int = 0
    total_response_tokens: int = 0
    total_thought_tokens: int = 0
    total_tool_use_tokens: int = 0
    total_tokens: int = 0
    request_count: int = 0
    avg_tokens_per_request: float = 0.0
    duration: float = 0.0
    requests: list[RequestMetrics] = Field(default_factory=list)

    @property
    def used_tokens(self) -> int:
        return self.total_prompt_tokens + self.total_response_tokens

    @property
    def processed_tokens(self) -> int:
        return self.used_tokens + self.total_cached_tokens

    @property
    def cache_percentage(self) -> float:
        if self.processed_tokens == 0:
            return 0.0
        return self.total_cached_tokens / self.processed_tokens * 100.0


def _delta(current: int, previous: int) -> int:
    # A drop means the backend restarted its running count.
    delta = current - previous
    return current if delta < 0 else delta


class TokenTracker:
    """Tracks token usage across turns. Safe to read while a turn records."""

    def __init__(self, session_id: str = "", model_name: str = "") -> None:
        self.session_id = session_id
        self.model_name = model_name
        self._lock = threading.RLock()
        self._turns: list[TurnTokenInfo] = []
        self._total = 0
        self._start_time = time.time()
        self._requests: list[RequestMetrics] = []
        self._last_usage = TokenUsage()

    def record_turn(self, input_tokens: int, output_tokens: int) -> TurnTokenInfo:
        if input_tokens < 0 or output_tokens < 0:
            msg = "token counts must not be negative"
            raise ValueError(msg)
        with self._lock:
            turn = TurnTokenInfo(
                turn_number=len(self._turns) + 1,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
                timestamp=time.time(),
            )
            self._turns.append(turn)
            self._total += turn.total_tokens
            return turn

    def record_usage(self, usage: TokenUsage) -> TurnTokenInfo:
        """Record a turn from LLM-reported usage."""
        return self.record_turn(usage.input_tokens, usage.output_tokens)

    def record_compaction(self) -> None:
        """Mark the latest turn as the one during which compaction happened."""
        with self._lock:
            if self._turns:
                self._turns[-1] = replace(self._turns[-1], compaction_event=True)

    def total(self) -> int:
        with self._lock:
            return self._total

    def turn_count(self) -> int:
        with self._lock:
            return len(self._turns)

    def turns(self) -> list[TurnTokenInfo]:
        with self._lock:
            return list(self._turns)

    def average_turn_size(self) -> int:
        with self._lock:
            if not self._turns:
                return 0
            return self._total // len(self._turns)

    def percentage_used(self, context_window: int) -> float:
        """Share of *context_window* consumed so far, in percent."""
        if context_window <= 0:
            return 0.0
        with self._lock:
            return self._total / context_window * 100.0

    def estimate_remaining_turns(self, context_window: int, reserved_fraction: float) -> int:
        """How many more average-sized turns fit before the reserved share."""
        with self._lock:
            available = context_window * (1.0 - reserved_fraction) - self._total
            avg = max(self.average_turn_size(), 1)
        return max(0, int(available // avg))

    def token_info(self, context_window: int, reserved_fraction: float = 0.10) -> TokenInfo:
        with self._lock:
            return TokenInfo(
                used_tokens=self._total,
                available_tokens=int(context_window * (1.0 - reserved_fraction)),
                percentage_used=self.percentage_used(context_window),
                estimated_turns_remaining=self.estimate_remaining_turns(
                    context_window, reserved_fraction
                ),
                total_turns=len(self._turns),
                context_window=context_window,
            )

    # -- per-request metrics -------------------------------------------------

    def record_metrics(self, usage: TokenUsage, request_id: str = "") -> RequestMetrics:
        """Record one request from usage the backend reports cumulatively.

        Each component is the difference from the previous report; when a
        count goes down the new value is taken as-is. These metrics are kept
        apart from the per-turn context accounting above.
        """
        with self._lock:
            prev = self._last_usage
            prompt = _delta(usage.input_tokens, prev.input_tokens)
            response = _delta(usage.output_tokens, prev.output_tokens)
            cached = _delta(usage.cached_tokens, prev.cached_tokens)
            thought = _delta(usage.thought_tokens, prev.thought_tokens)
            tool_use = _delta(usage.tool_use_tokens, prev.tool_use_tokens)
            metric = RequestMetrics(
                prompt_tokens=prompt,
                cached_tokens=cached,
                response_tokens=response,
                thought_tokens=thought,
                tool_use_tokens=tool_use,
                total_tokens=prompt + response + cached + thought + tool_use,
                timestamp=time.time(),
                request_id=request_id,
            )
            self._requests.append(metric)
            self._last_usage = usage
            return metric

    def summary(self) -> UsageSummary:
        with self._lock:
            requests = list(self._requests)
        total = sum(r.total_tokens for r in requests)
        return UsageSummary(
            total_prompt_tokens=sum(r.prompt_tokens for r in requests),
            total_cached_tokens=sum(r.cached_tokens for r in requests),
            total_response_tokens=sum(r.response_tokens for r in requests),
            total_thought_tokens=sum(r.thought_tokens for r in requests),
            total_tool_use_tokens=sum(r.tool_use_tokens for r in requests),
            total_tokens=total,
            request_count=len(requests),
            avg_tokens_per_request=total / len(requests) if requests else 0.0,
            duration=self.elapsed,
            requests=requests,
        )

    @property
    def elapsed(self) -> float:
        return time.time() - self._start_time
