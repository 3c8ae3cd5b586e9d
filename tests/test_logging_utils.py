from __future__ import annotations

import logging

from batteryfuse.logging_utils import resolve_log_level


def test_verbosity_overrides_configured_level() -> None:
    assert resolve_log_level(2, "ERROR") == logging.DEBUG
    assert resolve_log_level(1, "ERROR") == logging.INFO


def test_configured_level_is_used_without_verbosity() -> None:
    assert resolve_log_level(0, "error") == logging.ERROR
    assert resolve_log_level(0, "bogus") == logging.WARNING
