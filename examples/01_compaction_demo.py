#!/usr/bin/env python3
"""01_compaction_demo.py — ctxkeeper sliding-window compaction demo.

Simulates an eight-turn agent session with oversized tool output, runs the
background compaction pass after every turn, and prints the effective
context that would be sent to the model next.

The summarizer uses the deterministic StubGenerator (no external calls).
Settings can be overridden with CTXKEEPER_* environment variables;
CTXKEEPER_TRACE_EXPORTER=stdout prints the compaction spans.

Prerequisites:
    pip install -e .[dev]

Usage:
    python examples/01_compaction_demo.py
    CTXKEEPER_COMPACTION_THRESHOLD=3 python examples/01_compaction_demo.py
    CTXKEEPER_TRACE_EXPORTER=stdout python examples/01_compaction_demo.py
"""

from __future__ import annotations

import asyncio
import logging

from ctxkeeper import (
    Author,
    ContextConfig,
    ContextManager,
    Event,
    StubGenerator,
    TokenUsage,
    configure_tracing,
    events_to_messages,
    format_compaction,
    format_token_info,
    format_truncation_log,
    format_usage_summary,
    is_compaction_event,
)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # ------------------------------------------------------------------
    # 1. Build a manager from the environment.
    #    Without overrides: compact every 5 new invocations, overlap 2.
    # ------------------------------------------------------------------
    tracer = configure_tracing()
    config = ContextConfig.from_env()
    manager = ContextManager(config, generator=StubGenerator(max_words=25))
    print(f"Session: {manager.session.session_id}")
    print()

    # ------------------------------------------------------------------
    # 2. Run the turns. Each one appends a user message, a large tool
    #    result (truncated inline) and the model's reply, then fires
    #    the background compaction check.
    # ------------------------------------------------------------------
    reported = TokenUsage()
    for n in range(1, 9):
        inv = f"inv{n}"
        manager.add_event(Event.create(Author.USER, f"Step {n}: run the test suite", invocation_id=inv))
        output = "\n".join(f"test_case_{i:04d} PASSED" for i in range(400))
        manager.add_tool_result(inv, "pytest", output)
        manager.add_event(Event.create(Author.MODEL, f"All 400 tests pass at step {n}.", invocation_id=inv))
        prompt_tokens = manager.context_tokens()
        manager.record_turn(input_tokens=prompt_tokens, output_tokens=40)
        # Providers report usage cumulatively over the session.
        reported = TokenUsage(
            input_tokens=reported.input_tokens + prompt_tokens,
            output_tokens=reported.output_tokens + 40,
        )
        manager.record_metrics(reported, request_id=inv)
        manager.end_turn()
        await manager.wait_for_compaction()

    # ------------------------------------------------------------------
    # 3. Inspect the results.
    # ------------------------------------------------------------------
    print("--- Token usage ---")
    print(format_token_info(manager.token_info()))
    print()
    print(format_usage_summary(manager.usage_summary()))
    print()

    print("--- Truncation audit ---")
    print(format_truncation_log(manager.truncate_log()))
    print()

    print("--- Compactions ---")
    for event in manager.session.events():
        if is_compaction_event(event):
            print(format_compaction(event))
    print()

    context = manager.build_context()
    print(f"--- Effective context ({len(context)} of {len(manager.session.events())} events) ---")
    for message in events_to_messages(context):
        first_line = message["content"].splitlines()[0]
        print(f"{message['role']:>9}: {first_line}")

    await manager.aclose()
    tracer.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
