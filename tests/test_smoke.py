"""Smoke tests — the public API imports and fits together."""

from __future__ import annotations

import ctxkeeper


def test_version() -> None:
    assert ctxkeeper.__version__ == "0.1.0"


def test_public_names_resolve() -> None:
    for name in ctxkeeper.__all__:
        assert getattr(ctxkeeper, name) is not None, name


def test_errors_share_a_base() -> None:
    for exc in (
        ctxkeeper.InvalidConfigError,
        ctxkeeper.SummarizationFailed,
        ctxkeeper.MetadataDecodeError,
        ctxkeeper.DuplicateEventError,
    ):
        assert issubclass(exc, ctxkeeper.ContextKeeperError)
