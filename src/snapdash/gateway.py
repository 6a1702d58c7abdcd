"""Translation of operation requests into backend invocations.

The gateway is the only component that launches external processes (through
an Executor). It never retries and never touches dashboard state: every
outcome, good or bad, comes back as an OperationResult value.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Sequence
from datetime import datetime

from snapdash.executor import Executor
from snapdash.models import (
    Applied,
    ApplyRequest,
    BackendInvocationError,
    CommandResult,
    CreateRequest,
    Created,
    DeleteRequest,
    Deleted,
    Failed,
    Listed,
    OperationRequest,
    OperationResult,
    ParseError,
    RefreshRequest,
    Snapshot,
    SnapshotType,
    StatusFetched,
    StatusRequest,
    excerpt,
)
from snapdash.parser import parse_listing, parse_status

__all__ = ["CommandGateway"]

logger = logging.getLogger(__name__)


class _InvocationFailed(Exception):
    """Internal short-circuit carrying the error for a Failed result."""

    def __init__(self, error: BackendInvocationError | ParseError) -> None:
        self.error = error
        super().__init__(str(error))


class CommandGateway:
    """Runs the snapshot tool for one logical action at a time.

    Args:
        executor: Where commands run (local subprocess or SSH)
        tool: Backend program name or path
        config_name: Backend configuration to operate on (``-c NAME``)
        use_sudo: Prefix write operations with ``sudo -n``
        timeout: Optional per-invocation timeout; None lets operations run to completion
    """

    def __init__(
        self,
        executor: Executor,
        tool: str = "snapper",
        config_name: str | None = None,
        use_sudo: bool = False,
        timeout: float | None = None,
    ) -> None:
        self._executor = executor
        self._tool = tool
        self._config_name = config_name
        self._use_sudo = use_sudo
        self._timeout = timeout

    # Command shapes

    def _base(self, privileged: bool) -> list[str]:
        argv = ["sudo", "-n"] if privileged and self._use_sudo else []
        argv.append(self._tool)
        if self._config_name:
            argv += ["-c", self._config_name]
        return argv

    def build_command(self, request: OperationRequest) -> list[str]:
        """Return the exact argv for a request."""
        match request:
            case RefreshRequest():
                return [*self._base(privileged=False), "list"]
            case CreateRequest(description=description):
                return [*self._base(privileged=True), "create", "--description", description, "--print-number"]
            case DeleteRequest(ids=ids):
                return [*self._base(privileged=True), "delete", ",".join(str(i) for i in sorted(ids))]
            case ApplyRequest(id=snapshot_id):
                return [*self._base(privileged=True), "rollback", str(snapshot_id)]
            case StatusRequest(id=snapshot_id, since=since):
                target = f"{since}..{snapshot_id}" if since is not None else str(snapshot_id)
                return [*self._base(privileged=True), "status", target]
        raise TypeError(f"Unknown request: {request!r}")

    # Execution

    async def execute(self, request: OperationRequest) -> OperationResult:
        """Run the backend for a request and turn its output into a result."""
        try:
            match request:
                case RefreshRequest():
                    return await self._refresh()
                case CreateRequest():
                    return await self._create(request)
                case DeleteRequest(ids=ids):
                    await self._run(self.build_command(request))
                    return Deleted(ids)
                case ApplyRequest(id=snapshot_id):
                    await self._run(self.build_command(request))
                    return Applied(snapshot_id)
                case StatusRequest(id=snapshot_id):
                    result = await self._run(self.build_command(request), expect_output=True)
                    return StatusFetched(snapshot_id, parse_status(result.stdout))
        except _InvocationFailed as e:
            return Failed(request, e.error)
        except ParseError as e:
            logger.warning("Unparseable %s output: %s", request.kind.value, e.reason)
            return Failed(request, e)
        raise TypeError(f"Unknown request: {request!r}")

    async def _run(self, argv: Sequence[str], expect_output: bool = False) -> CommandResult:
        command = shlex.join(argv)
        logger.debug("Running %s", command)
        try:
            result = await self._executor.run_command(argv, timeout=self._timeout)
        except OSError as e:
            logger.error("Could not launch %s: %s", command, e)
            raise _InvocationFailed(BackendInvocationError(None, str(e), command)) from e
        except TimeoutError as e:
            logger.error("Timed out after %ss: %s", self._timeout, command)
            raise _InvocationFailed(BackendInvocationError(None, "timed out", command)) from e

        logger.debug("%s exited with %d", command, result.exit_code)
        if not result.success:
            detail = excerpt(result.stderr or result.stdout)
            logger.warning("%s failed with exit code %d: %s", command, result.exit_code, detail)
            raise _InvocationFailed(BackendInvocationError(result.exit_code, detail, command))
        if expect_output and not result.stdout.strip():
            raise _InvocationFailed(BackendInvocationError(result.exit_code, "no output", command))
        return result

    async def _refresh(self) -> Listed:
        result = await self._run(self.build_command(RefreshRequest()), expect_output=True)
        listing = parse_listing(result.stdout)
        if listing.skipped:
            logger.warning("Skipped %d unreadable listing row(s)", listing.skipped)
        _warn_dangling_pre_numbers(listing.snapshots)
        return Listed(tuple(listing.snapshots), listing.skipped)

    async def _create(self, request: CreateRequest) -> Created:
        argv = self.build_command(request)
        result = await self._run(argv, expect_output=True)
        number = result.stdout.strip().splitlines()[-1].strip()
        if not number.isdigit():
            raise _InvocationFailed(
                BackendInvocationError(result.exit_code, f"expected snapshot number, got {excerpt(number)!r}", shlex.join(argv))
            )
        new_id = int(number)
        logger.info("Created snapshot %d", new_id)

        # The snapshot exists now; a failing follow-up listing must not report the create as failed
        try:
            listed = await self._refresh()
        except (_InvocationFailed, ParseError) as e:
            logger.warning("Follow-up listing after create failed: %s", e)
        else:
            for snapshot in listed.snapshots:
                if snapshot.id == new_id:
                    return Created(snapshot)
        logger.warning("Snapshot %d missing from follow-up listing, using minimal record", new_id)
        return Created(
            Snapshot(
                id=new_id,
                type=SnapshotType.SINGLE,
                date=datetime.now(),
                user="",
                description=request.description,
            )
        )


def _warn_dangling_pre_numbers(snapshots: Sequence[Snapshot]) -> None:
    pre_ids = {s.id for s in snapshots if s.type is SnapshotType.PRE}
    for snapshot in snapshots:
        if snapshot.type is SnapshotType.POST and snapshot.pre_number is not None and snapshot.pre_number not in pre_ids:
            logger.warning("Post snapshot %d references missing pre snapshot %d", snapshot.id, snapshot.pre_number)
