"""Tests for the sliding-window compaction selector."""

from ctxkeeper.config import CompactionConfig
from ctxkeeper.events import (
    COMPACTION_KEY,
    Author,
    CompactionMetadata,
    Content,
    Event,
    Part,
    set_compaction_metadata,
)
from ctxkeeper.compaction.selector import CompactionSelector


def _make_event(inv: str, ts: float, text: str = "msg", author: str = "user") -> Event:
    return Event(
        invocation_id=inv,
        timestamp=ts,
        author=Author(author),
        content=Content(role=author, parts=[Part.from_text(text)]),
    )


def _compaction_event(start: float, end: float, ts: float, start_inv: str, end_inv: str) -> Event:
    metadata = CompactionMetadata(
        start_timestamp=start,
        end_timestamp=end,
        start_invocation_id=start_inv,
        end_invocation_id=end_inv,
        summary_content=Content(role="model", parts=[Part.from_text("summary")]).model_dump_json(),
        event_count=4,
        original_tokens=40,
        compacted_tokens=4,
        compression_ratio=10.0,
    )
    return set_compaction_metadata(Event(timestamp=ts, content=Content()), metadata)


def _invocations(count: int, first: int = 1, per_inv: int = 2, start_ts: float = 1.0) -> list[Event]:
    events: list[Event] = []
    ts = start_ts
    for n in range(first, first + count):
        for k in range(per_inv):
            author = "user" if k == 0 else "model"
            events.append(_make_event(f"inv{n}", ts, f"turn {n} part {k}", author))
            ts += 1.0
    return events


def _invs(events: list[Event]) -> list[str]:
    seen: list[str] = []
    for e in events:
        if e.invocation_id not in seen:
            seen.append(e.invocation_id)
    return seen


def test_empty_log_selects_nothing():
    assert CompactionSelector().select([]) == []


def test_below_threshold_selects_nothing():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=5, overlap_size=2))
    assert selector.select(_invocations(4)) == []


def test_exact_threshold_selects_all_new():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=5, overlap_size=2))
    events = _invocations(5)
    selected = selector.select(events)
    assert selected == events


def test_six_invocations_window_covers_first_five():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=5, overlap_size=2))
    events = _invocations(6)
    selected = selector.select(events)
    assert _invs(selected) == ["inv1", "inv2", "inv3", "inv4", "inv5"]
    assert len(selected) == 10
    # original order is preserved
    assert selected == events[:10]


def test_second_pass_reincludes_overlap():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=5, overlap_size=2))
    first = _invocations(5)
    compaction = _compaction_event(first[0].timestamp, first[-1].timestamp, 100.0, "inv1", "inv5")
    later = _invocations(5, first=6, start_ts=11.0)
    events = [*first, compaction, *later]

    selected = selector.select(events)
    assert _invs(selected) == ["inv4", "inv5", "inv6", "inv7", "inv8", "inv9", "inv10"]
    assert compaction not in selected


def test_second_pass_waits_for_threshold():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=5, overlap_size=2))
    first = _invocations(5)
    compaction = _compaction_event(first[0].timestamp, first[-1].timestamp, 100.0, "inv1", "inv5")
    later = _invocations(4, first=6, start_ts=11.0)
    assert selector.select([*first, compaction, *later]) == []


def test_everything_compacted_selects_nothing():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=1, overlap_size=0))
    events = _invocations(3)
    compaction = _compaction_event(events[0].timestamp, events[-1].timestamp, 50.0, "inv1", "inv3")
    assert selector.select([*events, compaction]) == []


def test_most_recent_compaction_wins():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=2, overlap_size=0))
    events = _invocations(6)
    old = _compaction_event(1.0, 4.0, 50.0, "inv1", "inv2")
    new = _compaction_event(1.0, 8.0, 51.0, "inv1", "inv4")
    selected = selector.select([*events, old, new])
    assert _invs(selected) == ["inv5", "inv6"]


def test_overlap_clamped_at_start():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=2, overlap_size=10))
    events = _invocations(2)
    assert selector.select(events) == events


def test_single_invocation_window():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=1, overlap_size=0))
    events = _invocations(1, per_inv=6)
    assert selector.select(events) == events


def test_events_without_invocation_inside_window_are_selected():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=2, overlap_size=0))
    events = _invocations(2)
    stray = _make_event("", 2.5, "system note", "system")
    log = [*events[:2], stray, *events[2:]]
    assert selector.select(log) == log


def test_events_without_invocation_outside_window_are_left():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=2, overlap_size=0))
    events = _invocations(2)
    before = _make_event("", 0.5, "preamble", "system")
    after = _make_event("", 9.0, "trailing note", "system")
    selected = selector.select([before, *events, after])
    assert selected == events


def test_malformed_compaction_event_is_treated_as_plain():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=2, overlap_size=0))
    events = _invocations(2)
    broken = Event(
        invocation_id="inv2",
        timestamp=10.0,
        content=Content(parts=[Part.from_text("odd")]),
        annotations={COMPACTION_KEY: {"start_timestamp": "never"}},
    )
    selected = selector.select([*events, broken])
    assert broken in selected
    assert _invs(selected) == ["inv1", "inv2"]


def test_token_pressure_forces_pass_below_threshold():
    config = CompactionConfig(
        invocation_threshold=5, overlap_size=2, context_window=100, safety_ratio=0.5
    )
    selector = CompactionSelector(config)
    events = [
        _make_event("inv1", 1.0, "x" * 400),
        _make_event("inv2", 2.0, "y" * 400),
    ]
    assert selector.select(events) == events


def test_caller_token_count_forces_pass():
    selector = CompactionSelector(CompactionConfig(invocation_threshold=5))
    events = _invocations(2)
    assert selector.select(events, context_tokens=10) == []
    assert selector.select(events, context_tokens=800_000) == events


def test_custom_estimator_is_used():
    config = CompactionConfig(invocation_threshold=5, token_threshold=100)
    selector = CompactionSelector(config, estimator=lambda text: 1000)
    events = _invocations(1)
    assert selector.select(events) == events
