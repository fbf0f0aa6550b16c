"""ContextManager — per-session facade over truncation, accounting and compaction."""

from __future__ import annotations

import asyncio
import logging

from .compaction.context_filter import filter_for_context
from .compaction.coordinator import CompactionCoordinator, CompactionReport
from .config import ContextConfig
from .events import Author, Event, Part, PartKind, TokenUsage
from .provider import LLMGenerator
from .session import Session
from .token_tracker import (
    RequestMetrics,
    TokenEstimator,
    TokenInfo,
    TokenTracker,
    TurnTokenInfo,
    UsageSummary,
    estimate_tokens,
)
from .truncation import TruncationRecord, Truncator

_log = logging.getLogger(__name__)


class ContextManager:
    """Maintains one session's history and enforces its context limits.

    The foreground agent loop calls :meth:`add_event` for every event of a
    turn, :meth:`record_turn` with the LLM's usage, and :meth:`end_turn` once
    the turn is complete. :meth:`build_context` yields the reduced history
    for the next LLM call.
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        generator: LLMGenerator | None = None,
        session: Session | None = None,
        estimator: TokenEstimator = estimate_tokens,
        coordinator: CompactionCoordinator | None = None,
    ) -> None:
        self._config = config or ContextConfig()
        self._session = session or Session()
        self._estimate = estimator
        self._truncator = Truncator(self._config.truncation)
        self._tracker = TokenTracker(
            session_id=self._session.session_id, model_name=self._config.model_name
        )
        if coordinator is None and generator is not None and self._config.compaction_enabled:
            coordinator = CompactionCoordinator(
                self._config.compaction, generator, estimator=estimator, tracker=self._tracker
            )
        self._coordinator = coordinator

    @property
    def config(self) -> ContextConfig:
        return self._config

    @property
    def session(self) -> Session:
        return self._session

    @property
    def tracker(self) -> TokenTracker:
        return self._tracker

    @property
    def coordinator(self) -> CompactionCoordinator | None:
        return self._coordinator

    # -- foreground writes ----------------------------------------------------

    def add_event(self, event: Event) -> Event:
        """Append *event*, truncating oversized tool results first."""
        if event.content is not None and any(
            p.kind == PartKind.TOOL_RESULT for p in event.content.parts
        ):
            parts = [
                p.model_copy(update={"text": self._truncator.truncate(p.text, event_id=event.id)})
                if p.kind == PartKind.TOOL_RESULT
                else p
                for p in event.content.parts
            ]
            content = event.content.model_copy(update={"parts": parts})
            event = event.model_copy(update={"content": content})
        return self._session.append_event(event)

    def add_tool_result(self, invocation_id: str, tool_name: str, output: str) -> Event:
        return self.add_event(
            Event.create(
                Author.USER,
                invocation_id=invocation_id,
                parts=[Part.tool_result(tool_name, output)],
            )
        )

    def record_turn(self, input_tokens: int, output_tokens: int) -> TurnTokenInfo:
        return self._tracker.record_turn(input_tokens, output_tokens)

    def record_usage(self, usage: TokenUsage) -> TurnTokenInfo:
        return self._tracker.record_usage(usage)

    def record_metrics(self, usage: TokenUsage, request_id: str = "") -> RequestMetrics:
        return self._tracker.record_metrics(usage, request_id)

    # -- reads ----------------------------------------------------------------

    def build_context(self) -> list[Event]:
        """Effective history for the next LLM call."""
        return filter_for_context(self._session.events())

    def context_tokens(self) -> int:
        return sum(self._estimate(e.text()) for e in self.build_context())

    def needs_compaction(self) -> bool:
        """True when the effective context is past the safety threshold."""
        return self.context_tokens() > self._config.compaction.safety_tokens

    def token_info(self) -> TokenInfo:
        return self._tracker.token_info(
            self._config.context_window, self._config.reserved_fraction
        )

    def usage_summary(self) -> UsageSummary:
        return self._tracker.summary()

    def truncate_log(self) -> list[TruncationRecord]:
        return self._truncator.truncate_log()

    # -- compaction -----------------------------------------------------------

    def end_turn(self) -> asyncio.Task[CompactionReport] | None:
        """Fire a background compaction pass for the finished turn.

        Selection sees the history as of this call, so events the next turn
        appends before the task runs are left for a later pass. Must be
        called from a running event loop. Returns None when compaction is
        disabled.
        """
        if self._coordinator is None:
            return None
        turns = self._tracker.turns()
        context_tokens = turns[-1].input_tokens if turns and turns[-1].input_tokens else None
        return self._coordinator.schedule(
            self._session, context_tokens, events=self._session.events()
        )

    async def wait_for_compaction(self) -> list[CompactionReport]:
        if self._coordinator is None:
            return []
        return await self._coordinator.wait(self._session.session_id)

    async def aclose(self) -> None:
        """Cancel any in-flight compaction for this session."""
        if self._coordinator is not None:
            await self._coordinator.cancel(self._session.session_id)
            _log.debug("Context manager for session %s closed", self._session.session_id)
