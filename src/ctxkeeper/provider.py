"""LLM generation capability consumed by the summarizer.

The surrounding agent injects whichever model it is currently using; this
package never resolves a model from global state.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from .events import TokenUsage
from .token_tracker import estimate_tokens

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class GenerationResult(BaseModel):
    """Text returned by one generation call plus its reported usage."""

    text: str
    usage: TokenUsage | None = None


# ---------------------------------------------------------------------------
# LLMGenerator ABC
# ---------------------------------------------------------------------------


class LLMGenerator(ABC):
    """Abstract single-prompt generation capability."""

    @abstractmethod
    def name(self) -> str:
        """Return the model or backend name, for logs."""

    @abstractmethod
    async def generate(self, prompt: str) -> GenerationResult:
        """Generate a response for *prompt*. Raises on transport failure."""


class CallableGenerator(LLMGenerator):
    """Adapts an ``async def fn(prompt) -> GenerationResult | str`` to :class:`LLMGenerator`."""

    def __init__(
        self,
        fn: Callable[[str], Awaitable[GenerationResult | str]],
        name: str = "callable",
    ) -> None:
        self._fn = fn
        self._name = name

    def name(self) -> str:
        return self._name

    async def generate(self, prompt: str) -> GenerationResult:
        result = await self._fn(prompt)
        if isinstance(result, str):
            return GenerationResult(text=result)
        return result


# ---------------------------------------------------------------------------
# Stub implementation (for testing / offline development)
# ---------------------------------------------------------------------------


class StubGenerator(LLMGenerator):
    """Returns deterministic summaries without calling a model.

    With no canned *response*, the reply is the first *max_words* words of
    the prompt prefixed with ``"Summary:"``. *error* is raised from every call
    when set, and *delay* makes each call sleep first.
    """

    def __init__(
        self,
        response: str | None = None,
        max_words: int = 40,
        error: Exception | None = None,
        delay: float = 0.0,
        report_usage: bool = True,
    ) -> None:
        self._response = response
        self._max_words = max_words
        self._error = error
        self._delay = delay
        self._report_usage = report_usage
        self.prompts: list[str] = []

    def name(self) -> str:
        return "stub"

    async def generate(self, prompt: str) -> GenerationResult:
        self.prompts.append(prompt)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error

        if self._response is not None:
            text = self._response
        else:
            words = prompt.split()[: self._max_words]
            text = "Summary: " + " ".join(words)

        usage = None
        if self._report_usage:
            input_tokens = estimate_tokens(prompt)
            output_tokens = estimate_tokens(text)
            usage = TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            )
        return GenerationResult(text=text, usage=usage)
