"""
Shared fixtures for command module tests.

Commands open their own stores, so fixtures here hand out paths and a
seeded event store rather than opened managers.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from relay_helpers import AUTHOR_A, AUTHOR_B, BASE_TS, RelayDatabase, make_event

from relaydesk.__main__ import build_parser


@pytest.fixture
def db_paths(tmp_path: Path) -> tuple[Path, Path]:
    """(control store, event store) paths under tmp_path."""
    return tmp_path / "relaydesk.db", tmp_path / "relay" / "nostr.db"


@pytest.fixture
def relay(db_paths: tuple[Path, Path]) -> RelayDatabase:
    """Event store with three events from two authors."""
    relay = RelayDatabase(db_paths[1])
    relay.insert(
        make_event(1, author=AUTHOR_A, kind=1, created_at=BASE_TS - 200),
        make_event(2, author=AUTHOR_A, kind=7, created_at=BASE_TS - 100),
        make_event(3, author=AUTHOR_B, kind=1, created_at=BASE_TS),
    )
    return relay


@pytest.fixture
def parse(db_paths: tuple[Path, Path]):
    """Parse CLI arguments with the test store paths prepended."""
    app_db, relay_db = db_paths
    parser = build_parser()

    def _parse(*argv: str):
        return parser.parse_args(["--app-db", str(app_db), "--relay-db", str(relay_db), *argv])

    return _parse
