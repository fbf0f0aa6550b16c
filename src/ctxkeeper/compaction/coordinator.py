"""Background orchestration of compaction passes, one in flight per session."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum

from ..config import CompactionConfig
from ..errors import SummarizationFailed
from ..events import CompactionMetadata, Event, is_compaction_event
from ..provider import LLMGenerator
from ..session import Session
from ..telemetry import get_tracer, trace_compaction
from ..token_tracker import TokenEstimator, TokenTracker, estimate_tokens
from .context_filter import FilteredSession
from .selector import CompactionSelector
from .summarizer import Summarizer

_log = logging.getLogger(__name__)


class CoordinatorState(StrEnum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    SUMMARIZING = "summarizing"
    APPENDING = "appending"


class CompactionOutcome(StrEnum):
    COMPACTED = "compacted"
    NOTHING_TO_COMPACT = "nothing_to_compact"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    FAILED = "failed"


@dataclass
class CompactionReport:
    """Result of one :meth:`CompactionCoordinator.maybe_compact` call."""

    session_id: str
    outcome: CompactionOutcome
    event: Event | None = None
    metadata: CompactionMetadata | None = None
    error: str | None = None

    @property
    def compacted(self) -> bool:
        return self.outcome == CompactionOutcome.COMPACTED


class CompactionCoordinator:
    """Runs selection, summarization and append for a session.

    ``maybe_compact`` never raises for failures inside the pass: they are
    logged and reported as :attr:`CompactionOutcome.FAILED`, leaving the
    session untouched. Cancellation is propagated.
    """

    def __init__(
        self,
        config: CompactionConfig | None = None,
        generator: LLMGenerator | None = None,
        *,
        summarizer: Summarizer | None = None,
        selector: CompactionSelector | None = None,
        estimator: TokenEstimator = estimate_tokens,
        tracker: TokenTracker | None = None,
    ) -> None:
        self._config = config or CompactionConfig()
        if summarizer is None:
            if generator is None:
                msg = "either generator or summarizer is required"
                raise ValueError(msg)
            summarizer = Summarizer(generator, self._config, estimator)
        self._summarizer = summarizer
        self._selector = selector or CompactionSelector(self._config, estimator)
        self._tracker = tracker
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._states: dict[str, CoordinatorState] = {}
        self._tasks: dict[str, set[asyncio.Task[CompactionReport]]] = {}

    @property
    def config(self) -> CompactionConfig:
        return self._config

    def state(self, session_id: str) -> CoordinatorState:
        with self._lock:
            return self._states.get(session_id, CoordinatorState.IDLE)

    def is_in_flight(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._in_flight

    def _set_state(self, session_id: str, state: CoordinatorState) -> None:
        with self._lock:
            if state == CoordinatorState.IDLE:
                self._states.pop(session_id, None)
            else:
                self._states[session_id] = state

    async def maybe_compact(
        self,
        session: Session | FilteredSession,
        context_tokens: int | None = None,
        events: list[Event] | None = None,
    ) -> CompactionReport:
        """Compact *session* if a window is due. Safe to call after every turn.

        *events* is the history to select from, normally a snapshot taken when
        the turn finished; when omitted the session is read at evaluation time.
        """
        if isinstance(session, FilteredSession):
            session = session.underlying
        sid = session.session_id

        with self._lock:
            if sid in self._in_flight:
                _log.debug("Compaction already in flight for session %s, skipping", sid)
                return CompactionReport(sid, CompactionOutcome.SKIPPED_IN_FLIGHT)
            self._in_flight.add(sid)

        try:
            with trace_compaction(sid):
                return await self._run(session, context_tokens, events)
        finally:
            self._set_state(sid, CoordinatorState.IDLE)
            with self._lock:
                self._in_flight.discard(sid)

    async def _run(
        self, session: Session, context_tokens: int | None, events: list[Event] | None
    ) -> CompactionReport:
        sid = session.session_id
        self._set_state(sid, CoordinatorState.EVALUATING)
        try:
            window = self._selector.select(self._history(session, events), context_tokens)
        except Exception as exc:  # noqa: BLE001
            _log.warning("Compaction selection failed for session %s", sid, exc_info=True)
            return CompactionReport(sid, CompactionOutcome.FAILED, error=str(exc))

        if not window:
            return CompactionReport(sid, CompactionOutcome.NOTHING_TO_COMPACT)

        first_inv, last_inv = window[0].invocation_id, window[-1].invocation_id
        self._set_state(sid, CoordinatorState.SUMMARIZING)
        try:
            result = await self._summarizer.summarize(window)
        except SummarizationFailed as exc:
            _log.warning(
                "Summarization failed for session %s (invocations %s..%s): %s",
                sid, first_inv, last_inv, exc,
            )
            return CompactionReport(sid, CompactionOutcome.FAILED, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            _log.warning(
                "Unexpected summarizer error for session %s (invocations %s..%s)",
                sid, first_inv, last_inv, exc_info=True,
            )
            return CompactionReport(sid, CompactionOutcome.FAILED, error=str(exc))

        self._set_state(sid, CoordinatorState.APPENDING)
        try:
            session.append_event(result.event)
        except Exception as exc:  # noqa: BLE001
            _log.warning("Appending compaction event failed for session %s", sid, exc_info=True)
            return CompactionReport(sid, CompactionOutcome.FAILED, error=str(exc))

        if self._tracker is not None:
            self._tracker.record_compaction()
        metadata = result.metadata
        get_tracer().record_event(
            "compaction/appended",
            {"compaction.event_count": metadata.event_count,
             "compaction.ratio": metadata.compression_ratio},
        )
        _log.info(
            "Compacted session %s invocations %s..%s: %d events, %d -> %d tokens (%.1fx)",
            sid, metadata.start_invocation_id, metadata.end_invocation_id,
            metadata.event_count, metadata.original_tokens, metadata.compacted_tokens,
            metadata.compression_ratio,
        )
        return CompactionReport(
            sid, CompactionOutcome.COMPACTED, event=result.event, metadata=metadata
        )

    @staticmethod
    def _history(session: Session, snapshot: list[Event] | None) -> list[Event]:
        current = session.events()
        if snapshot is None:
            return current
        # The log is append-only, so the snapshot is a prefix of it. Summaries
        # appended since still bound the next window.
        later = [e for e in current[len(snapshot) :] if is_compaction_event(e)]
        return [*snapshot, *later]

    # -- background execution -------------------------------------------------

    def schedule(
        self,
        session: Session | FilteredSession,
        context_tokens: int | None = None,
        events: list[Event] | None = None,
    ) -> asyncio.Task[CompactionReport]:
        """Launch :meth:`maybe_compact` as a detached task on the running loop.

        Pass *events* to pin selection to the history as it is now rather
        than when the task first runs.
        """
        sid = session.session_id
        task = asyncio.get_running_loop().create_task(
            self.maybe_compact(session, context_tokens, events), name=f"compaction-{sid}"
        )
        with self._lock:
            self._tasks.setdefault(sid, set()).add(task)
        task.add_done_callback(lambda t: self._task_done(sid, t))
        return task

    def _task_done(self, session_id: str, task: asyncio.Task[CompactionReport]) -> None:
        with self._lock:
            pending = self._tasks.get(session_id)
            if pending is not None:
                pending.discard(task)
                if not pending:
                    del self._tasks[session_id]
        if task.cancelled():
            _log.debug("Compaction task for session %s cancelled", session_id)
        elif task.exception() is not None:
            _log.error(
                "Compaction task for session %s crashed", session_id,
                exc_info=task.exception(),
            )

    def pending(self, session_id: str) -> list[asyncio.Task[CompactionReport]]:
        with self._lock:
            return list(self._tasks.get(session_id, ()))

    async def wait(self, session_id: str) -> list[CompactionReport]:
        """Wait for the session's background passes and return their reports."""
        tasks = self.pending(session_id)
        if not tasks:
            return []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [r for r in results if isinstance(r, CompactionReport)]

    async def cancel(self, session_id: str) -> None:
        """Cancel background passes for a session being torn down."""
        tasks = self.pending(session_id)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        with self._lock:
            session_ids = list(self._tasks)
        for sid in session_ids:
            await self.cancel(sid)
