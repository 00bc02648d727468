"""
relaydesk Test Suite - Shared Fixtures and Configuration

Every test gets fresh settings rooted in its own tmp_path and a logging
setup that lets caplog see relaydesk records.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from relaydesk.core.config import reset_settings
from relaydesk.core.logging import reset_logging


@pytest.fixture(autouse=True)
def isolated_instance(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point the instance root at tmp_path so default store paths never escape it."""
    monkeypatch.setenv("RELAYDESK_INSTANCE_ROOT", str(tmp_path / "instance"))
    monkeypatch.delenv("RELAYDESK_RELAY_DB_PATH", raising=False)
    monkeypatch.delenv("RELAYDESK_APP_DB_PATH", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Restore propagation so caplog captures relaydesk loggers."""
    reset_logging()
    yield
    reset_logging()
