"""SSH connection management for dashboards that manage a remote host."""

from __future__ import annotations

import logging

import asyncssh

__all__ = ["Connection"]

logger = logging.getLogger(__name__)


class Connection:
    """Manages the SSH connection to the host whose snapshots are managed.

    Uses asyncssh with keepalive so a dead link surfaces as a failed command
    rather than a hung operation.
    """

    def __init__(
        self,
        host: str,
        keepalive_interval: int = 15,
        keepalive_count_max: int = 3,
    ) -> None:
        """Initialize connection parameters.

        Args:
            host: Hostname or SSH config alias
            keepalive_interval: Seconds between keepalive packets (default 15)
            keepalive_count_max: Max missed keepalives before disconnect (default 3)
        """
        self._host = host
        self._conn: asyncssh.SSHClientConnection | None = None
        self._keepalive_interval = keepalive_interval
        self._keepalive_count_max = keepalive_count_max

    @property
    def host(self) -> str:
        return self._host

    @property
    def connected(self) -> bool:
        """Check if connection is established."""
        return self._conn is not None

    @property
    def ssh_connection(self) -> asyncssh.SSHClientConnection:
        """Get the underlying SSH connection.

        Raises:
            RuntimeError: If not connected
        """
        if self._conn is None:
            raise RuntimeError(f"Not connected to {self._host}")
        return self._conn

    async def connect(self) -> None:
        """Establish the SSH connection.

        Respects ~/.ssh/config automatically via asyncssh.
        """
        self._conn = await asyncssh.connect(
            self._host,
            keepalive_interval=self._keepalive_interval,
            keepalive_count_max=self._keepalive_count_max,
        )
        logger.info("Connected to %s", self._host)

    async def disconnect(self) -> None:
        """Close the SSH connection gracefully."""
        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None
            logger.info("Disconnected from %s", self._host)
