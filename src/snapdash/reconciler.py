"""Main-loop consumer applying worker results to the dashboard state."""

from __future__ import annotations

from typing import TypeAlias

import logging
from collections import deque
from collections.abc import Callable

from snapdash.events import ResultChannel
from snapdash.models import (
    Applied,
    CancelledOperationError,
    Created,
    Deleted,
    Failed,
    Listed,
    OperationResult,
    StatusFetched,
)
from snapdash.state import AppState

__all__ = ["Reconciler", "describe_result"]

logger = logging.getLogger(__name__)

ResultListener: TypeAlias = Callable[[OperationResult], None]


def describe_result(result: OperationResult) -> str:
    """One-line, user-facing summary of a result."""
    match result:
        case Created(snapshot=snapshot):
            return f"Created snapshot #{snapshot.id}"
        case Deleted(ids=ids):
            numbers = ", ".join(f"#{i}" for i in sorted(ids))
            return f"Deleted {len(ids)} snapshot{'s' if len(ids) != 1 else ''} ({numbers})"
        case Applied(id=snapshot_id):
            return f"Rollback to #{snapshot_id} finished"
        case StatusFetched(id=snapshot_id, fields=fields):
            changed = fields.get("changed_files")
            suffix = f", {changed} changed file(s)" if changed is not None else ""
            return f"Status loaded for #{snapshot_id}{suffix}"
        case Listed(snapshots=snapshots, skipped=skipped):
            message = f"Loaded {len(snapshots)} snapshot{'s' if len(snapshots) != 1 else ''}"
            if skipped:
                message += f" ({skipped} unreadable row{'s' if skipped != 1 else ''} skipped)"
            return message
        case Failed(request=request, error=error):
            return f"{request.kind.value.capitalize()} failed: {error}"
    return repr(result)


class Reconciler:
    """Drains the result channel into AppState one result at a time.

    Runs on the main loop only, so it is serialized with every user-driven
    state change. Each applied result also produces a notice for the log
    panel, and listeners registered with ``add_listener`` are told about it
    afterwards (the dashboard uses this to schedule follow-up refreshes).
    """

    def __init__(self, state: AppState, channel: ResultChannel, max_notices: int = 50) -> None:
        self._state = state
        self._channel = channel
        self._notices: deque[str] = deque(maxlen=max_notices)
        self._listeners: list[ResultListener] = []
        self._applied = 0

    @property
    def notices(self) -> list[str]:
        return list(self._notices)

    @property
    def applied_count(self) -> int:
        return self._applied

    def add_listener(self, listener: ResultListener) -> None:
        self._listeners.append(listener)

    def notify(self, message: str) -> None:
        """Add a notice that did not come from a result (e.g. a refused action)."""
        self._notices.append(message)

    def on_result(self, result: OperationResult) -> None:
        """Apply one result to the state."""
        self._state.apply_result(result)
        self._applied += 1
        message = describe_result(result)
        if isinstance(result, Failed):
            level = logging.INFO if isinstance(result.error, CancelledOperationError) else logging.ERROR
            logger.log(level, message)
        else:
            logger.info(message)
        self._notices.append(message)
        for listener in self._listeners:
            listener(result)

    def drain(self) -> int:
        """Apply every queued result without waiting.

        Returns:
            Number of results applied
        """
        count = 0
        while (result := self._channel.get_nowait()) is not None:
            self.on_result(result)
            count += 1
        return count

    async def run(self) -> None:
        """Apply results as they arrive until the channel is closed."""
        while True:
            result = await self._channel.get()
            if result is None:  # Shutdown sentinel
                break
            self.on_result(result)
