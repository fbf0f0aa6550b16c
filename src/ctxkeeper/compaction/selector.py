"""Sliding-window selection of the events to summarize next."""

from __future__ import annotations

import logging

from ..config import CompactionConfig
from ..events import Event, read_compaction_metadata
from ..token_tracker import TokenEstimator, estimate_tokens
from .context_filter import filter_for_context

_log = logging.getLogger(__name__)


class CompactionSelector:
    """Chooses the invocation window for the next compaction pass.

    A pass is due once ``invocation_threshold`` invocations have finished
    since the end of the most recent compaction, or earlier when the
    effective context grows past ``config.safety_tokens``. The window covers
    up to ``invocation_threshold`` of the oldest new invocations, extended
    backwards by ``overlap_size`` already-compacted invocations. The result
    is the contiguous run of plain events from the window's first event to
    its last.
    """

    def __init__(
        self,
        config: CompactionConfig | None = None,
        estimator: TokenEstimator = estimate_tokens,
    ) -> None:
        self._config = config or CompactionConfig()
        self._estimate = estimator

    @property
    def config(self) -> CompactionConfig:
        return self._config

    def select(self, events: list[Event], context_tokens: int | None = None) -> list[Event]:
        """Return the events to compact, or an empty list when no pass is due.

        *context_tokens* is the caller's measure of the current context size;
        when omitted it is estimated over the filtered history.
        """
        if not events:
            return []

        last_compacted_end = 0.0
        for event in reversed(events):
            metadata = read_compaction_metadata(event)
            if metadata is not None:
                last_compacted_end = metadata.end_timestamp
                break

        latest: dict[str, float] = {}
        plain: list[Event] = []
        for event in events:
            if read_compaction_metadata(event) is not None:
                continue
            plain.append(event)
            if not event.invocation_id:
                continue
            prev = latest.get(event.invocation_id)
            if prev is None or event.timestamp > prev:
                latest[event.invocation_id] = event.timestamp

        ordered = sorted(latest, key=latest.__getitem__)
        new = [inv for inv in ordered if latest[inv] > last_compacted_end]
        if not new:
            return []

        threshold = self._config.invocation_threshold
        if len(new) < threshold and not self._over_budget(events, context_tokens):
            return []

        window_new = new[:threshold]
        first_new_idx = ordered.index(window_new[0])
        end_idx = ordered.index(window_new[-1])
        start_idx = max(0, first_new_idx - self._config.overlap_size)
        in_window = set(ordered[start_idx : end_idx + 1])

        # Everything between the first and last event of the window goes in,
        # including events without an invocation; the filter hides them too.
        positions = [i for i, e in enumerate(plain) if e.invocation_id in in_window]
        selected = plain[positions[0] : positions[-1] + 1]
        _log.debug(
            "Selected %d events across invocations %s..%s (%d new, %d overlap)",
            len(selected),
            ordered[start_idx],
            ordered[end_idx],
            len(window_new),
            first_new_idx - start_idx,
        )
        return selected

    def _over_budget(self, events: list[Event], context_tokens: int | None) -> bool:
        if context_tokens is None:
            context_tokens = sum(self._estimate(e.text()) for e in filter_for_context(events))
        return context_tokens > self._config.safety_tokens
