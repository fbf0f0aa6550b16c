"""Conversation events and the compaction annotation side-channel.

An :class:`Event` has a fixed schema. Compaction data is attached through the
open ``annotations`` map under :data:`COMPACTION_KEY` so the event type never
needs to change; the typed helpers below read and write it.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from .errors import MetadataDecodeError

_log = logging.getLogger(__name__)

COMPACTION_KEY = "compaction"

# ---------------------------------------------------------------------------
# Identity helpers
# ---------------------------------------------------------------------------

_clock_lock = threading.Lock()
_last_timestamp = 0.0


def new_event_id() -> str:
    """Generate a time-sortable unique event ID."""
    return f"{int(time.time() * 1000):012x}-{uuid.uuid4().hex[:12]}"


def next_timestamp() -> float:
    """Wall-clock time that is strictly greater than any value returned before."""
    global _last_timestamp  # noqa: PLW0603
    with _clock_lock:
        now = time.time()
        if now <= _last_timestamp:
            now = _last_timestamp + 1e-6
        _last_timestamp = now
        return now


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class Author(StrEnum):
    """Who produced an event."""

    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class PartKind(StrEnum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


class Part(BaseModel):
    """One element of an event's content."""

    kind: PartKind = PartKind.TEXT
    text: str = ""
    tool_name: str | None = None
    arguments: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_text(cls, text: str) -> Part:
        return cls(kind=PartKind.TEXT, text=text)

    @classmethod
    def tool_call(cls, tool_name: str, arguments: dict[str, Any] | None = None) -> Part:
        return cls(kind=PartKind.TOOL_CALL, tool_name=tool_name, arguments=arguments or {})

    @classmethod
    def tool_result(cls, tool_name: str, output: str) -> Part:
        return cls(kind=PartKind.TOOL_RESULT, tool_name=tool_name, text=output)

    def to_text(self) -> str:
        """Plain-text rendering used for prompts and token estimation."""
        if self.kind == PartKind.TOOL_CALL:
            args = json.dumps(self.arguments, sort_keys=True, default=str)
            return f"[tool call] {self.tool_name}({args})"
        if self.kind == PartKind.TOOL_RESULT:
            return f"[tool result] {self.tool_name}: {self.text}"
        return self.text


class Content(BaseModel):
    """Ordered parts plus the role they are presented under."""

    role: str = Author.USER.value
    parts: list[Part] = Field(default_factory=list)

    def text(self) -> str:
        texts = [p.to_text() for p in self.parts]
        return "\n".join(t for t in texts if t)


class TokenUsage(BaseModel):
    """Token consumption reported by the LLM for one response.

    Some backends report these counts cumulatively across a conversation;
    :meth:`TokenTracker.record_metrics` turns them into per-request deltas.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    thought_tokens: int = 0
    tool_use_tokens: int = 0

    @property
    def total(self) -> int:
        return self.total_tokens or (self.input_tokens + self.output_tokens)


class Event(BaseModel):
    """One immutable unit of conversation history."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_event_id)
    invocation_id: str = ""
    timestamp: float = Field(default_factory=next_timestamp)
    author: Author = Author.USER
    content: Content | None = None
    token_usage: TokenUsage | None = None
    annotations: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("annotations", mode="after")
    @classmethod
    def _freeze_annotations(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_serializer("annotations")
    def _dump_annotations(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)

    @classmethod
    def create(
        cls,
        author: Author | str,
        text: str = "",
        invocation_id: str = "",
        parts: list[Part] | None = None,
        token_usage: TokenUsage | None = None,
    ) -> Event:
        """Build an event from plain text and/or explicit parts."""
        all_parts = list(parts or [])
        if text:
            all_parts.insert(0, Part.from_text(text))
        author = Author(author)
        return cls(
            invocation_id=invocation_id,
            author=author,
            content=Content(role=author.value, parts=all_parts),
            token_usage=token_usage,
        )

    def text(self) -> str:
        if self.content is None:
            return ""
        return self.content.text()


class CompactionMetadata(BaseModel):
    """Describes the range of events a compaction summary replaces."""

    start_timestamp: float
    end_timestamp: float
    start_invocation_id: str = ""
    end_invocation_id: str = ""
    summary_content: str
    event_count: int = Field(ge=0)
    original_tokens: int = Field(ge=0)
    compacted_tokens: int = Field(ge=0)
    compression_ratio: float = Field(ge=0.0)

    @model_validator(mode="after")
    def _check_range(self) -> CompactionMetadata:
        if self.end_timestamp < self.start_timestamp:
            msg = "end_timestamp precedes start_timestamp"
            raise ValueError(msg)
        return self

    def summary(self) -> Content:
        """Decode the serialized summary content."""
        try:
            return Content.model_validate_json(self.summary_content)
        except ValidationError as exc:
            msg = "summary_content is not valid serialized content"
            raise MetadataDecodeError(msg) from exc

    def covers(self, timestamp: float) -> bool:
        return self.start_timestamp <= timestamp <= self.end_timestamp


# ---------------------------------------------------------------------------
# Annotation helpers
# ---------------------------------------------------------------------------


def get_compaction_metadata(event: Event) -> CompactionMetadata:
    """Return the compaction metadata attached to *event*.

    Raises:
        MetadataDecodeError: if the event has no compaction annotation or the
            annotation does not decode.
    """
    if COMPACTION_KEY not in event.annotations:
        msg = f"event {event.id} is not a compaction event"
        raise MetadataDecodeError(msg)
    raw = event.annotations[COMPACTION_KEY]
    try:
        if isinstance(raw, (str, bytes)):
            return CompactionMetadata.model_validate_json(raw)
        return CompactionMetadata.model_validate(raw)
    except ValidationError as exc:
        msg = f"event {event.id} carries malformed compaction metadata"
        raise MetadataDecodeError(msg) from exc


def read_compaction_metadata(event: Event) -> CompactionMetadata | None:
    """Lenient variant of :func:`get_compaction_metadata` for history readers.

    Malformed annotations are logged and reported as ``None`` so the event is
    handled as a plain event.
    """
    if COMPACTION_KEY not in event.annotations:
        return None
    try:
        return get_compaction_metadata(event)
    except MetadataDecodeError:
        _log.warning(
            "Ignoring malformed compaction metadata on event %s (invocation=%r)",
            event.id,
            event.invocation_id,
            exc_info=True,
        )
        return None


def is_compaction_event(event: Event | None) -> bool:
    """True when *event* carries decodable compaction metadata."""
    if event is None:
        return False
    return read_compaction_metadata(event) is not None


def set_compaction_metadata(event: Event, metadata: CompactionMetadata) -> Event:
    """Return a copy of *event* with *metadata* attached."""
    annotations = dict(event.annotations)
    annotations[COMPACTION_KEY] = metadata.model_dump(mode="json")
    return event.model_copy(update={"annotations": MappingProxyType(annotations)})
