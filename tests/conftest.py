"""Shared test fixtures for snapdash tests."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from snapdash.models import CommandResult, Snapshot, SnapshotType

SAMPLE_LISTING = """\
 # | Type   | Pre # | Date                     | User | Used Space | Cleanup | Description           | Userdata
---+--------+-------+--------------------------+------+------------+---------+-----------------------+--------------
0  | single |       |                          | root |            |         | current               |
1* | single |       | Mon 02 Oct 2023 10:00:00 | root | 1.50 MiB   | number  | first root filesystem |
2  | pre    |       | 2023-10-03 09:15:00      | root | 12.00 KiB  | number  | zypp(zypper)          | important=yes
3  | post   |     2 | 2023-10-03 09:16:30      | root | 4.00 KiB   | number  |                       | important=yes
"""


@pytest.fixture(scope="session", autouse=True)
def configure_test_logging() -> None:
    """Let snapdash debug logs show up in captured output."""
    logging.getLogger("snapdash").setLevel(logging.DEBUG)


@pytest.fixture
def mock_executor() -> MagicMock:
    """Create a mock executor whose commands succeed with no output."""
    executor = MagicMock()
    executor.run_command = AsyncMock(return_value=CommandResult(exit_code=0, stdout="", stderr=""))
    return executor


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncssh connection."""
    conn = MagicMock()
    conn.create_process = AsyncMock()
    conn.close = MagicMock()
    conn.wait_closed = AsyncMock()
    return conn


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    """Factory for snapshot records with sensible defaults."""

    def _make(snapshot_id: int, **overrides: Any) -> Snapshot:
        values: dict[str, Any] = {
            "id": snapshot_id,
            "type": SnapshotType.SINGLE,
            "date": datetime(2024, 1, 1, 12, 0, 0) if snapshot_id else None,
            "user": "root",
            "description": f"snapshot {snapshot_id}",
        }
        values.update(overrides)
        return Snapshot(**values)

    return _make


@pytest.fixture
def sample_listing() -> str:
    return SAMPLE_LISTING
