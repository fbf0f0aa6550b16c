"""Compaction-aware view of a session's history.

Original events stay in storage; the view swaps every compacted range for the
summary event that covers it.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable, Iterator

from ..errors import MetadataDecodeError
from ..events import CompactionMetadata, Event, read_compaction_metadata
from ..session import Session

_log = logging.getLogger(__name__)

Range = tuple[float, float]


def merge_ranges(ranges: Iterable[Range]) -> list[Range]:
    """Union of closed ``[start, end]`` ranges, sorted by start."""
    merged: list[Range] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            prev_start, prev_end = merged[-1]
            merged[-1] = (prev_start, max(prev_end, end))
        else:
            merged.append((start, end))
    return merged


def _covered(timestamp: float, merged: list[Range], starts: list[float]) -> bool:
    idx = bisect.bisect_right(starts, timestamp) - 1
    return idx >= 0 and timestamp <= merged[idx][1]


def with_summary_content(event: Event, metadata: CompactionMetadata) -> Event:
    """Copy of a compaction event whose content is the stored summary."""
    try:
        summary = metadata.summary()
    except MetadataDecodeError:
        _log.warning("Compaction event %s has undecodable summary content", event.id)
        return event
    return event.model_copy(update={"content": summary})


def filter_for_context(events: Iterable[Event]) -> list[Event]:
    """Reduce *events* to the effective context for the next LLM call.

    Compaction events are always kept (carrying their summary) and placed at
    the start of the range they replace. Any other event is kept only when
    its timestamp lies outside every compacted range. Filtering an
    already-filtered list returns it unchanged.
    """
    all_events = list(events)

    decoded: dict[int, CompactionMetadata] = {}
    for idx, event in enumerate(all_events):
        metadata = read_compaction_metadata(event)
        if metadata is not None:
            decoded[idx] = metadata

    merged = merge_ranges((m.start_timestamp, m.end_timestamp) for m in decoded.values())
    starts = [start for start, _ in merged]

    kept: list[tuple[float, int, Event]] = []
    for idx, event in enumerate(all_events):
        metadata = decoded.get(idx)
        if metadata is not None:
            kept.append((metadata.start_timestamp, idx, with_summary_content(event, metadata)))
        elif not _covered(event.timestamp, merged, starts):
            kept.append((event.timestamp, idx, event))
    kept.sort(key=lambda item: (item[0], item[1]))
    return [event for _, _, event in kept]


class FilteredEvents:
    """Read-only event sequence with compacted ranges replaced by summaries."""

    def __init__(self, events: Iterable[Event]) -> None:
        self._filtered = filter_for_context(events)

    def all(self) -> list[Event]:
        return list(self._filtered)

    def __len__(self) -> int:
        return len(self._filtered)

    def __iter__(self) -> Iterator[Event]:
        return iter(self._filtered)

    def at(self, index: int) -> Event | None:
        if 0 <= index < len(self._filtered):
            return self._filtered[index]
        return None


class FilteredSession:
    """Wraps a :class:`Session`, exposing identity as-is and a filtered history."""

    def __init__(self, underlying: Session) -> None:
        self.underlying = underlying

    @property
    def session_id(self) -> str:
        return self.underlying.session_id

    @property
    def app_name(self) -> str:
        return self.underlying.app_name

    @property
    def user_id(self) -> str:
        return self.underlying.user_id

    @property
    def last_update_time(self) -> float:
        return self.underlying.last_update_time

    def events(self) -> FilteredEvents:
        return FilteredEvents(self.underlying.events())
