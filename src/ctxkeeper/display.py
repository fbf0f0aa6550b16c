"""Plain-text renderings for REPL/CLI collaborators."""

from __future__ import annotations

from datetime import UTC, datetime

from .events import Author, Event, read_compaction_metadata
from .token_tracker import RequestMetrics, TokenInfo, UsageSummary
from .truncation import TruncationRecord

_ROLE_BY_AUTHOR = {
    Author.USER: "user",
    Author.MODEL: "assistant",
    Author.SYSTEM: "system",
}


def format_token_info(info: TokenInfo) -> str:
    return (
        f"Tokens: {info.used_tokens:,} / {info.available_tokens:,} available "
        f"({info.percentage_used:.1f}% of {info.context_window:,}), "
        f"~{info.estimated_turns_remaining} turns remaining over {info.total_turns} turns"
    )


def format_request_metrics(metric: RequestMetrics) -> str:
    """One-line breakdown of a request, listing only non-zero components."""
    parts = [
        f"{label}={value:,}"
        for label, value in (
            ("used", metric.used_tokens),
            ("prompt", metric.prompt_tokens),
            ("response", metric.response_tokens),
            ("cached", metric.cached_tokens),
            ("thoughts", metric.thought_tokens),
            ("tool_use", metric.tool_use_tokens),
        )
        if value > 0
    ]
    if not parts:
        return f"total={metric.total_tokens:,}"
    return f"[{', '.join(parts)}] (total={metric.total_tokens:,})"


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def format_usage_summary(summary: UsageSummary) -> str:
    lines = [
        "Token usage summary",
        f"  Actual tokens:    {summary.used_tokens:,} (prompt + response)",
        f"  Cached tokens:    {summary.total_cached_tokens:,} "
        f"({summary.cache_percentage:.1f}% of processed)",
        f"  Total processed:  {summary.processed_tokens:,}",
        f"  Prompt:           {summary.total_prompt_tokens:,}",
        f"  Response:         {summary.total_response_tokens:,}",
    ]
    if summary.total_thought_tokens:
        lines.append(f"  Thinking:         {summary.total_thought_tokens:,}")
    if summary.total_tool_use_tokens:
        lines.append(f"  Tool use:         {summary.total_tool_use_tokens:,}")
    lines += [
        f"  Requests:         {summary.request_count}",
        f"  Avg/request:      {summary.avg_tokens_per_request:,.0f} tokens",
        f"  Duration:         {_format_duration(summary.duration)}",
    ]
    return "\n".join(lines)


def format_truncation_log(records: list[TruncationRecord]) -> str:
    if not records:
        return "No tool output truncated."
    lines = [f"Truncated {len(records)} tool output(s):"]
    for rec in records:
        when = datetime.fromtimestamp(rec.timestamp, tz=UTC).strftime("%H:%M:%S")
        lines.append(
            f"- [{when}] {rec.event_id or '<unknown>'}: "
            f"{rec.original_size:,} -> {rec.result_size:,} bytes"
        )
    return "\n".join(lines)


def format_compaction(event: Event) -> str:
    """Describe a compaction event, or say it is not one."""
    metadata = read_compaction_metadata(event)
    if metadata is None:
        return f"Event {event.id} is not a compaction event."
    return (
        f"Compaction {event.id}: {metadata.event_count} events "
        f"({metadata.start_invocation_id or '?'}..{metadata.end_invocation_id or '?'}), "
        f"{metadata.original_tokens:,} -> {metadata.compacted_tokens:,} tokens "
        f"({metadata.compression_ratio:.1f}x)"
    )


def events_to_messages(events: list[Event]) -> list[dict[str, str]]:
    """Format filtered events as ``{"role", "content"}`` dicts for an LLM call."""
    messages: list[dict[str, str]] = []
    for event in events:
        text = event.text()
        if not text:
            continue
        if read_compaction_metadata(event) is not None:
            messages.append({"role": "user", "content": f"[Conversation summary]\n{text}"})
        else:
            messages.append({"role": _ROLE_BY_AUTHOR[event.author], "content": text})
    return messages
