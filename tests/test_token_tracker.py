"""Tests for per-turn token accounting."""

import threading

import pytest

from ctxkeeper.events import TokenUsage
from ctxkeeper.token_tracker import TokenTracker, estimate_tokens


def test_record_turn_updates_total_and_average():
    tracker = TokenTracker(session_id="s1", model_name="m")
    turn = tracker.record_turn(100, 50)
    tracker.record_turn(10, 5)

    assert turn.turn_number == 1
    assert turn.total_tokens == 150
    assert tracker.total() == 165
    assert tracker.turn_count() == 2
    assert tracker.average_turn_size() == 82  # integer division


def test_empty_tracker():
    tracker = TokenTracker()
    assert tracker.total() == 0
    assert tracker.average_turn_size() == 0
    assert tracker.percentage_used(1000) == 0.0
    info = tracker.token_info(1000, 0.1)
    assert info.used_tokens == 0
    assert info.percentage_used == 0.0
    assert info.total_turns == 0


def test_estimate_remaining_turns():
    tracker = TokenTracker()
    tracker.record_turn(100, 50)
    tracker.record_turn(10, 5)
    # (10000 * 0.9 - 165) // 82
    assert tracker.estimate_remaining_turns(10000, 0.1) == 107


def test_estimate_remaining_turns_never_negative():
    tracker = TokenTracker()
    tracker.record_turn(5000, 5000)
    assert tracker.estimate_remaining_turns(1000, 0.1) == 0


def test_token_info_snapshot():
    tracker = TokenTracker()
    tracker.record_usage(TokenUsage(input_tokens=120, output_tokens=45))
    info = tracker.token_info(10000, 0.1)
    assert info.used_tokens == 165
    assert info.available_tokens == 9000
    assert info.percentage_used == pytest.approx(1.65)
    assert info.context_window == 10000


def test_record_compaction_marks_latest_turn():
    tracker = TokenTracker()
    tracker.record_compaction()  # no turns yet: no-op
    tracker.record_turn(1, 1)
    tracker.record_turn(2, 2)
    tracker.record_compaction()
    turns = tracker.turns()
    assert [t.compaction_event for t in turns] == [False, True]


def test_negative_tokens_rejected():
    tracker = TokenTracker()
    with pytest.raises(ValueError, match="must not be negative"):
        tracker.record_turn(-1, 0)


def test_concurrent_recording():
    tracker = TokenTracker()

    def worker():
        for _ in range(200):
            tracker.record_turn(3, 2)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert tracker.turn_count() == 1600
    assert tracker.total() == 8000
    assert [t.turn_number for t in tracker.turns()] == list(range(1, 1601))


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("a" * 400) == 100


def test_record_metrics_turns_cumulative_usage_into_deltas():
    tracker = TokenTracker()
    first = tracker.record_metrics(TokenUsage(input_tokens=100, output_tokens=20), "req-1")
    second = tracker.record_metrics(
        TokenUsage(input_tokens=250, output_tokens=50, cached_tokens=30, thought_tokens=10),
        "req-2",
    )

    assert (first.prompt_tokens, first.response_tokens, first.total_tokens) == (100, 20, 120)
    assert first.request_id == "req-1"
    assert second.prompt_tokens == 150
    assert second.response_tokens == 30
    assert second.cached_tokens == 30
    assert second.thought_tokens == 10
    assert second.total_tokens == 220
    assert second.used_tokens == 190


def test_record_metrics_falls_back_when_count_drops():
    tracker = TokenTracker()
    tracker.record_metrics(TokenUsage(input_tokens=250, output_tokens=50, cached_tokens=30))
    reset = tracker.record_metrics(TokenUsage(input_tokens=40, output_tokens=5))

    assert reset.prompt_tokens == 40
    assert reset.response_tokens == 5
    assert reset.cached_tokens == 0
    assert reset.total_tokens == 45


def test_usage_summary():
    tracker = TokenTracker()
    assert tracker.summary().request_count == 0
    assert tracker.summary().avg_tokens_per_request == 0.0

    tracker.record_metrics(TokenUsage(input_tokens=100, output_tokens=20))
    tracker.record_metrics(TokenUsage(input_tokens=250, output_tokens=50, cached_tokens=30))
    summary = tracker.summary()

    assert summary.total_prompt_tokens == 250
    assert summary.total_response_tokens == 50
    assert summary.total_cached_tokens == 30
    assert summary.total_tokens == 330
    assert summary.request_count == 2
    assert summary.avg_tokens_per_request == pytest.approx(165.0)
    assert summary.used_tokens == 300
    assert summary.processed_tokens == 330
    assert summary.cache_percentage == pytest.approx(30 / 330 * 100)
    assert [r.total_tokens for r in summary.requests] == [120, 210]
    assert summary.duration >= 0
    # request metrics are separate from turn accounting
    assert tracker.total() == 0
    assert tracker.turn_count() == 0
