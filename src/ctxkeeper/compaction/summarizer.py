"""Turns a window of events into a compaction event via the injected LLM."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from ..config import CompactionConfig
from ..errors import SummarizationFailed
from ..events import (
    Author,
    CompactionMetadata,
    Content,
    Event,
    Part,
    read_compaction_metadata,
    set_compaction_metadata,
)
from ..provider import GenerationResult, LLMGenerator
from ..telemetry import trace_summarize
from ..token_tracker import TokenEstimator, estimate_tokens

_log = logging.getLogger(__name__)


@dataclass
class SummaryResult:
    """A generated summary: its metadata and the synthetic event carrying it."""

    metadata: CompactionMetadata
    event: Event


class Summarizer:
    """Summarizes events with the model the agent is currently using."""

    def __init__(
        self,
        generator: LLMGenerator,
        config: CompactionConfig | None = None,
        estimator: TokenEstimator = estimate_tokens,
    ) -> None:
        self._generator = generator
        self._config = config or CompactionConfig()
        self._estimate = estimator

    def format_events(self, events: list[Event]) -> str:
        lines: list[str] = []
        for event in events:
            metadata = read_compaction_metadata(event)
            if metadata is not None:
                when = datetime.fromtimestamp(event.timestamp, tz=UTC).isoformat()
                lines.append(
                    f"[COMPACTED SUMMARY from {when}] Events: {metadata.event_count}, "
                    f"Tokens: {metadata.original_tokens}->{metadata.compacted_tokens}"
                )
                continue
            text = event.text()
            if text:
                lines.append(f"{event.author.value}: {text}")
        return "\n".join(lines)

    def build_prompt(self, events: list[Event]) -> str:
        return self._config.prompt_template.replace("{conversation}", self.format_events(events))

    async def summarize(self, events: list[Event]) -> SummaryResult:
        """Summarize *events* into a new compaction event.

        The input events are left untouched.

        Raises:
            SummarizationFailed: when generation raises or returns no text.
        """
        if not events:
            msg = "cannot summarize an empty event list"
            raise ValueError(msg)

        prompt = self.build_prompt(events)
        with trace_summarize(len(events)):
            try:
                result = await self._generator.generate(prompt)
            except Exception as exc:
                msg = f"generator {self._generator.name()!r} failed: {exc}"
                raise SummarizationFailed(msg, event_count=len(events)) from exc

        text = result.text.strip()
        if not text:
            msg = f"generator {self._generator.name()!r} returned an empty summary"
            raise SummarizationFailed(msg, event_count=len(events))

        summary = Content(role=Author.MODEL.value, parts=[Part.from_text(text)])
        original_tokens = sum(self._estimate(e.text()) for e in events)
        compacted_tokens = self._compacted_tokens(result, text)

        metadata = CompactionMetadata(
            start_timestamp=events[0].timestamp,
            end_timestamp=events[-1].timestamp,
            start_invocation_id=events[0].invocation_id,
            end_invocation_id=events[-1].invocation_id,
            summary_content=summary.model_dump_json(),
            event_count=len(events),
            original_tokens=original_tokens,
            compacted_tokens=compacted_tokens,
            compression_ratio=original_tokens / compacted_tokens,
        )
        event = set_compaction_metadata(Event(author=Author.USER, content=summary), metadata)
        _log.debug(
            "Summarized %d events: %d -> %d tokens (ratio %.2f)",
            len(events),
            original_tokens,
            compacted_tokens,
            metadata.compression_ratio,
        )
        return SummaryResult(metadata=metadata, event=event)

    def _compacted_tokens(self, result: GenerationResult, text: str) -> int:
        """Size of the summary: output tokens first, then total usage, then an estimate.

        Total usage includes the prompt, which would make every ratio look
        like no compression at all, so it is only used when output tokens are
        not reported.
        """
        usage = result.usage
        if usage is not None and usage.output_tokens > 0:
            return usage.output_tokens
        if usage is not None and usage.total > 0:
            return usage.total
        return max(self._estimate(text), 1)
