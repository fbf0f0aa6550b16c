"""Sliding-window compaction: selection, summarization, filtering, orchestration."""

from .context_filter import FilteredEvents, FilteredSession, filter_for_context, merge_ranges
from .coordinator import (
    CompactionCoordinator,
    CompactionOutcome,
    CompactionReport,
    CoordinatorState,
)
from .selector import CompactionSelector
from .service import CompactionSessionService
from .summarizer import Summarizer, SummaryResult

__all__ = [
    "CompactionCoordinator",
    "CompactionOutcome",
    "CompactionReport",
    "CompactionSelector",
    "CompactionSessionService",
    "CoordinatorState",
    "FilteredEvents",
    "FilteredSession",
    "Summarizer",
    "SummaryResult",
    "filter_for_context",
    "merge_ranges",
]
