"""Fixtures for service and storage tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from relay_helpers import RelayDatabase

from relaydesk.services.storage import StoreManager


@pytest.fixture
def app_db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "relaydesk.db"


@pytest.fixture
def relay_db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "relay" / "nostr.db"


@pytest.fixture
def relay_db(relay_db_path: Path) -> RelayDatabase:
    """An empty event store."""
    return RelayDatabase(relay_db_path)


@pytest_asyncio.fixture
async def stores(
    app_db_path: Path,
    relay_db_path: Path,
    relay_db: RelayDatabase,
) -> AsyncGenerator[StoreManager, None]:
    """Opened manager with both stores connected."""
    manager = StoreManager(app_db_path, relay_db_path, relay_read_connections=2)
    await manager.open()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def app_only(app_db_path: Path, tmp_path: Path) -> AsyncGenerator[StoreManager, None]:
    """Opened manager whose event store does not exist yet."""
    manager = StoreManager(app_db_path, tmp_path / "missing" / "nostr.db")
    await manager.open()
    yield manager
    await manager.close()
