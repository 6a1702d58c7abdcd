"""Background dispatch of backend operations.

Every accepted request runs in its own asyncio task so the main loop never
waits on a snapshot operation. Admission happens synchronously on the main
loop before the task exists, so there is no window between checking a
target and starting work on it.
"""

from __future__ import annotations

import asyncio
import logging

from snapdash.events import ResultChannel
from snapdash.gateway import CommandGateway
from snapdash.models import (
    BackendInvocationError,
    CancelledOperationError,
    Failed,
    OperationRequest,
    OperationResult,
)
from snapdash.state import AppState

__all__ = ["OperationHandle", "WorkerDispatcher"]

logger = logging.getLogger(__name__)


class OperationHandle:
    """Handle for one dispatched operation.

    A handle can be cancelled only while its operation has not reached the
    backend yet; once the external command is running it completes.
    """

    def __init__(self, request: OperationRequest) -> None:
        self.request = request
        self._started = False
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """Withdraw the operation if it has not started.

        Returns:
            True if the operation will not run
        """
        if self._started:
            return False
        self._cancelled = True
        return True

    async def wait(self) -> None:
        """Wait until the operation's result has been published."""
        if self._task is not None:
            await asyncio.shield(self._task)


class WorkerDispatcher:
    """Spawns one task per accepted request and publishes its result.

    Args:
        state: Dashboard state holding the in-flight registry
        gateway: Runs the backend for a request
        channel: Where results are delivered (consumed by the reconciler)
    """

    def __init__(self, state: AppState, gateway: CommandGateway, channel: ResultChannel) -> None:
        self._state = state
        self._gateway = gateway
        self._channel = channel
        self._handles: set[OperationHandle] = set()

    @property
    def channel(self) -> ResultChannel:
        return self._channel

    @property
    def active_count(self) -> int:
        return len(self._handles)

    def pending(self) -> list[OperationHandle]:
        """Handles whose operation has not reached the backend yet."""
        return [h for h in self._handles if not h.started and not h.cancelled]

    def dispatch(self, request: OperationRequest) -> OperationHandle:
        """Admit and start a request.

        Must be called from the main loop.

        Raises:
            ConflictError: If a target of the request already has an operation
                in flight; no background work is started
            RuntimeError: If no event loop is running; nothing is admitted
        """
        loop = asyncio.get_running_loop()
        self._state.begin(request)
        handle = OperationHandle(request)
        handle._task = loop.create_task(self._work(handle), name=f"snapdash-{request.kind.value}")
        self._handles.add(handle)
        logger.debug("Dispatched %s", request)
        return handle

    def cancel_pending(self) -> int:
        """Cancel every operation that has not started; returns how many were withdrawn."""
        return sum(1 for handle in self.pending() if handle.cancel())

    async def _work(self, handle: OperationHandle) -> None:
        request = handle.request
        try:
            if handle.cancelled:
                logger.info("%s cancelled before start", request.kind.value)
                result: OperationResult = Failed(request, CancelledOperationError(request))
            else:
                handle._started = True
                result = await self._run(request)
            self._channel.publish(result)
        finally:
            self._handles.discard(handle)

    async def _run(self, request: OperationRequest) -> OperationResult:
        try:
            return await self._gateway.execute(request)
        except asyncio.CancelledError:
            # Shutdown; still release the target for anyone draining the channel
            self._channel.publish(Failed(request, CancelledOperationError(request)))
            raise
        except Exception as e:
            logger.exception("Unexpected error while running %s", request.kind.value)
            return Failed(request, BackendInvocationError(None, str(e) or type(e).__name__))

    async def wait_idle(self) -> None:
        """Wait until every dispatched operation has published its result."""
        while self._handles:
            await asyncio.gather(*(h.wait() for h in list(self._handles)), return_exceptions=True)

    async def shutdown(self) -> None:
        """Let running operations finish, then close the result channel."""
        self.cancel_pending()
        await self.wait_idle()
        self._channel.close()
