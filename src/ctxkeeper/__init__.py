"""ctxkeeper — conversation context management for long-running agent sessions."""

from __future__ import annotations

__version__ = "0.1.0"

from .compaction import (
    CompactionCoordinator,
    CompactionOutcome,
    CompactionReport,
    CompactionSelector,
    CompactionSessionService,
    CoordinatorState,
    FilteredEvents,
    FilteredSession,
    Summarizer,
    SummaryResult,
    filter_for_context,
    merge_ranges,
)
from .config import DEFAULT_PROMPT_TEMPLATE, CompactionConfig, ContextConfig, TruncationConfig
from .display import (
    events_to_messages,
    format_compaction,
    format_request_metrics,
    format_token_info,
    format_truncation_log,
    format_usage_summary,
)
from .errors import (
    ContextKeeperError,
    DuplicateEventError,
    InvalidConfigError,
    MetadataDecodeError,
    SummarizationFailed,
)
from .events import (
    COMPACTION_KEY,
    Author,
    CompactionMetadata,
    Content,
    Event,
    Part,
    PartKind,
    TokenUsage,
    get_compaction_metadata,
    is_compaction_event,
    read_compaction_metadata,
    set_compaction_metadata,
)
from .manager import ContextManager
from .provider import CallableGenerator, GenerationResult, LLMGenerator, StubGenerator
from .session import EventLog, InMemoryEventLog, Session, SessionStore
from .telemetry import (
    ContextTracer,
    TelemetryConfig,
    configure_tracing,
    trace_compaction,
    trace_summarize,
)
from .token_tracker import (
    RequestMetrics,
    TokenInfo,
    TokenTracker,
    TurnTokenInfo,
    UsageSummary,
    estimate_tokens,
)
from .truncation import (
    TruncationRecord,
    Truncator,
    format_output_for_model,
    truncate_head_tail,
)

__all__ = [
    "COMPACTION_KEY",
    "DEFAULT_PROMPT_TEMPLATE",
    "Author",
    "CallableGenerator",
    "CompactionConfig",
    "CompactionCoordinator",
    "CompactionMetadata",
    "CompactionOutcome",
    "CompactionReport",
    "CompactionSelector",
    "CompactionSessionService",
    "Content",
    "ContextConfig",
    "ContextKeeperError",
    "ContextManager",
    "ContextTracer",
    "CoordinatorState",
    "DuplicateEventError",
    "Event",
    "EventLog",
    "FilteredEvents",
    "FilteredSession",
    "GenerationResult",
    "InMemoryEventLog",
    "InvalidConfigError",
    "LLMGenerator",
    "MetadataDecodeError",
    "Part",
    "PartKind",
    "RequestMetrics",
    "Session",
    "SessionStore",
    "StubGenerator",
    "SummarizationFailed",
    "Summarizer",
    "SummaryResult",
    "TelemetryConfig",
    "TokenInfo",
    "TokenTracker",
    "TokenUsage",
    "TruncationConfig",
    "TruncationRecord",
    "Truncator",
    "TurnTokenInfo",
    "UsageSummary",
    "configure_tracing",
    "estimate_tokens",
    "events_to_messages",
    "filter_for_context",
    "format_compaction",
    "format_output_for_model",
    "format_request_metrics",
    "format_token_info",
    "format_truncation_log",
    "format_usage_summary",
    "get_compaction_metadata",
    "is_compaction_event",
    "merge_ranges",
    "read_compaction_metadata",
    "set_compaction_metadata",
    "trace_compaction",
    "trace_summarize",
    "truncate_head_tail",
]
