"""Head+tail truncation of oversized tool output, with an audit trail."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from .config import TruncationConfig

LENGTH_MARKER = "[... truncated for length ...]"


@dataclass(frozen=True)
class TruncationRecord:
    """One audit entry: a tool output that exceeded the configured limits."""

    event_id: str
    original_size: int
    result_size: int
    timestamp: float


def exceeds_limits(content: str, max_bytes: int, max_lines: int) -> bool:
    return len(content.encode("utf-8")) > max_bytes or content.count("\n") + 1 > max_lines


def truncate_head_tail(
    content: str,
    max_bytes: int,
    max_lines: int,
    head_lines: int,
    tail_lines: int,
) -> str:
    """Keep the first *head_lines* and last *tail_lines*, eliding the middle.

    Content within both limits is returned unchanged. Otherwise the omitted
    middle is replaced with ``[... omitted X of Y lines ...]``; if the result
    is still larger than *max_bytes* it is clipped and
    :data:`LENGTH_MARKER` is appended together with the clipped byte count.
    """
    if not exceeds_limits(content, max_bytes, max_lines):
        return content

    lines = content.split("\n")
    total = len(lines)

    if head_lines + tail_lines >= total:
        head, tail = lines, []
    else:
        head = lines[:head_lines]
        tail = lines[total - tail_lines :] if tail_lines else []
    omitted = total - len(head) - len(tail)

    if omitted > 0:
        marker = f"\n[... omitted {omitted} of {total} lines ...]\n"
        result = "\n".join(head) + marker + "\n".join(tail)
    else:
        result = "\n".join(head + tail)

    encoded = result.encode("utf-8")
    if len(encoded) > max_bytes:
        clipped = encoded[:max_bytes].decode("utf-8", errors="ignore")
        dropped = len(encoded) - len(clipped.encode("utf-8"))
        result = f"{clipped}\n{LENGTH_MARKER} ({dropped} of {len(encoded)} bytes omitted)"

    return result


def format_output_for_model(content: str, total_lines: int) -> str:
    """Prefix tool output with its original line count."""
    return f"Total output lines: {total_lines}\n\n{content}"


class Truncator:
    """Applies :func:`truncate_head_tail` and records every truncation."""

    def __init__(self, config: TruncationConfig | None = None) -> None:
        self._config = config or TruncationConfig()
        self._lock = threading.Lock()
        self._records: list[TruncationRecord] = []

    @property
    def config(self) -> TruncationConfig:
        return self._config

    def truncate(self, content: str, event_id: str = "") -> str:
        cfg = self._config
        if not exceeds_limits(content, cfg.max_bytes, cfg.max_lines):
            return content

        result = truncate_head_tail(
            content, cfg.max_bytes, cfg.max_lines, cfg.head_lines, cfg.tail_lines
        )
        record = TruncationRecord(
            event_id=event_id,
            original_size=len(content.encode("utf-8")),
            result_size=len(result.encode("utf-8")),
            timestamp=time.time(),
        )
        with self._lock:
            self._records.append(record)
        return result

    def truncate_log(self) -> list[TruncationRecord]:
        with self._lock:
            return list(self._records)
