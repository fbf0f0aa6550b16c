"""Error taxonomy for context management and compaction."""

from __future__ import annotations


class ContextKeeperError(Exception):
    """Base class for all ctxkeeper errors."""


class InvalidConfigError(ContextKeeperError, ValueError):
    """Raised when a configuration value is out of range or unparseable."""


class SummarizationFailed(ContextKeeperError):
    """Raised when the LLM could not produce a summary for a compaction window."""

    def __init__(self, message: str, event_count: int = 0) -> None:
        self.event_count = event_count
        super().__init__(message)


class MetadataDecodeError(ContextKeeperError, ValueError):
    """Raised when an event's compaction annotation is missing or malformed."""


class DuplicateEventError(ContextKeeperError, ValueError):
    """Raised when an event with an already-stored ID is appended."""
