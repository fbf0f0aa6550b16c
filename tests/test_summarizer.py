"""Tests for the compaction summarizer."""

import pytest

from ctxkeeper.config import CompactionConfig
from ctxkeeper.errors import SummarizationFailed
from ctxkeeper.events import (
    Author,
    CompactionMetadata,
    Content,
    Event,
    Part,
    TokenUsage,
    get_compaction_metadata,
    is_compaction_event,
    set_compaction_metadata,
)
from ctxkeeper.provider import CallableGenerator, GenerationResult, StubGenerator
from ctxkeeper.compaction.summarizer import Summarizer
from ctxkeeper.token_tracker import estimate_tokens


def _make_event(inv: str, ts: float, text: str, author: str = "user") -> Event:
    return Event(
        invocation_id=inv,
        timestamp=ts,
        author=Author(author),
        content=Content(role=author, parts=[Part.from_text(text)]),
    )


def _window() -> list[Event]:
    return [
        _make_event("inv1", 1.0, "hello", "user"),
        _make_event("inv1", 2.0, "hi there, how can I help?", "model"),
        _make_event("inv2", 3.0, "list the files", "user"),
        _make_event("inv2", 4.0, "there are three files", "model"),
    ]


@pytest.mark.asyncio
async def test_summarize_builds_metadata_and_event():
    events = _window()
    snapshot = [e.model_copy() for e in events]
    summarizer = Summarizer(StubGenerator(response="short summary"))

    result = await summarizer.summarize(events)

    md = result.metadata
    assert md.start_timestamp == 1.0
    assert md.end_timestamp == 4.0
    assert md.start_invocation_id == "inv1"
    assert md.end_invocation_id == "inv2"
    assert md.event_count == 4
    assert md.original_tokens == sum(estimate_tokens(e.text()) for e in events)
    assert md.compacted_tokens == estimate_tokens("short summary")
    assert md.compression_ratio == pytest.approx(md.original_tokens / md.compacted_tokens)
    assert md.summary().text() == "short summary"

    event = result.event
    assert event.author == Author.USER
    assert event.invocation_id == ""
    assert event.content.role == "model"
    assert event.text() == "short summary"
    assert is_compaction_event(event)
    assert get_compaction_metadata(event) == md
    assert events == snapshot


@pytest.mark.asyncio
async def test_prompt_formats_author_and_text():
    stub = StubGenerator(response="ok")
    summarizer = Summarizer(stub)
    await summarizer.summarize(_window())

    prompt = stub.prompts[0]
    assert prompt.startswith("The following is a conversation history")
    assert "user: hello\nmodel: hi there, how can I help?\nuser: list the files" in prompt


def test_custom_prompt_template():
    config = CompactionConfig(prompt_template="SUMMARIZE:\n{conversation}\nEND")
    summarizer = Summarizer(StubGenerator(), config)
    prompt = summarizer.build_prompt(_window()[:1])
    assert prompt == "SUMMARIZE:\nuser: hello\nEND"


def test_compacted_summary_is_rendered_as_header():
    metadata = CompactionMetadata(
        start_timestamp=1.0,
        end_timestamp=2.0,
        summary_content=Content(parts=[Part.from_text("old")]).model_dump_json(),
        event_count=6,
        original_tokens=900,
        compacted_tokens=100,
        compression_ratio=9.0,
    )
    compaction = set_compaction_metadata(Event(timestamp=0.0), metadata)
    text = Summarizer(StubGenerator()).format_events([compaction, _make_event("inv3", 5.0, "next")])
    assert text.splitlines() == [
        "[COMPACTED SUMMARY from 1970-01-01T00:00:00+00:00] Events: 6, Tokens: 900->100",
        "user: next",
    ]


@pytest.mark.asyncio
async def test_compacted_tokens_prefer_output_over_total():
    async def generate(prompt: str) -> GenerationResult:
        usage = TokenUsage(input_tokens=5000, output_tokens=40, total_tokens=5040)
        return GenerationResult(text="summary", usage=usage)

    result = await Summarizer(CallableGenerator(generate)).summarize(_window())
    assert result.metadata.compacted_tokens == 40


@pytest.mark.asyncio
async def test_compacted_tokens_fall_back_to_total_usage():
    async def generate(prompt: str) -> GenerationResult:
        return GenerationResult(text="abc", usage=TokenUsage(input_tokens=0, total_tokens=50))

    result = await Summarizer(CallableGenerator(generate)).summarize(_window())
    assert result.metadata.compacted_tokens == 50


@pytest.mark.asyncio
async def test_compacted_tokens_estimated_without_usage():
    async def generate(prompt: str) -> str:
        return "abcdefgh"

    result = await Summarizer(CallableGenerator(generate)).summarize(_window())
    assert result.metadata.compacted_tokens == 2


@pytest.mark.asyncio
async def test_large_window_compresses():
    text = "word " * 4000
    events = [_make_event(f"inv{i // 2}", float(i), text) for i in range(10)]
    summarizer = Summarizer(StubGenerator(max_words=40))

    result = await summarizer.summarize(events)

    assert result.metadata.original_tokens == 50_000
    assert result.metadata.compacted_tokens < 5_000
    assert result.metadata.compression_ratio >= 3


@pytest.mark.asyncio
async def test_generator_failure_is_wrapped():
    summarizer = Summarizer(StubGenerator(error=RuntimeError("connection reset")))
    with pytest.raises(SummarizationFailed, match="connection reset") as excinfo:
        await summarizer.summarize(_window())
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.event_count == 4


@pytest.mark.asyncio
async def test_empty_response_fails():
    summarizer = Summarizer(StubGenerator(response="   "))
    with pytest.raises(SummarizationFailed, match="empty summary"):
        await summarizer.summarize(_window())


@pytest.mark.asyncio
async def test_empty_window_rejected():
    with pytest.raises(ValueError, match="empty event list"):
        await Summarizer(StubGenerator()).summarize([])
