"""Tests for the generation capability and its stub."""

import pytest

from ctxkeeper.events import TokenUsage
from ctxkeeper.provider import CallableGenerator, GenerationResult, LLMGenerator, StubGenerator


def test_stub_is_a_generator():
    stub = StubGenerator()
    assert isinstance(stub, LLMGenerator)
    assert stub.name() == "stub"


@pytest.mark.asyncio
async def test_stub_default_summary_takes_leading_words():
    stub = StubGenerator(max_words=3)
    result = await stub.generate("one two three four five")
    assert result.text == "Summary: one two three"
    assert stub.prompts == ["one two three four five"]
    assert result.usage is not None
    assert result.usage.output_tokens == 6
    assert result.usage.total == result.usage.input_tokens + result.usage.output_tokens


@pytest.mark.asyncio
async def test_stub_canned_response_without_usage():
    stub = StubGenerator(response="fixed", report_usage=False)
    result = await stub.generate("anything")
    assert result == GenerationResult(text="fixed")


@pytest.mark.asyncio
async def test_stub_raises_configured_error():
    stub = StubGenerator(error=TimeoutError("slow backend"))
    with pytest.raises(TimeoutError, match="slow backend"):
        await stub.generate("prompt")
    assert stub.prompts == ["prompt"]


@pytest.mark.asyncio
async def test_callable_generator_wraps_strings_and_results():
    async def plain(prompt: str) -> str:
        return prompt.upper()

    async def rich(prompt: str) -> GenerationResult:
        return GenerationResult(text="r", usage=TokenUsage(output_tokens=1))

    upper = CallableGenerator(plain, name="upper")
    assert upper.name() == "upper"
    assert await upper.generate("abc") == GenerationResult(text="ABC")
    assert (await CallableGenerator(rich).generate("x")).usage.output_tokens == 1
