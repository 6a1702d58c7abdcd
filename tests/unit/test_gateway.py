"""Unit tests for CommandGateway.

The executor is mocked; these tests check the exact argv produced for each
request and how every failure mode maps to a Failed result.
"""

from __future__ import annotations

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from freezegun import freeze_time

from snapdash.gateway import CommandGateway
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
    ParseError,
    RefreshRequest,
    SnapshotType,
    StatusFetched,
    StatusRequest,
)


def _ok(stdout: str = "") -> CommandResult:
    return CommandResult(exit_code=0, stdout=stdout, stderr="")


class TestBuildCommand:
    @pytest.mark.parametrize(
        ("request_", "expected"),
        [
            (RefreshRequest(), ["snapper", "list"]),
            (CreateRequest("before upgrade"), ["snapper", "create", "--description", "before upgrade", "--print-number"]),
            (DeleteRequest(frozenset({7})), ["snapper", "delete", "7"]),
            (DeleteRequest(frozenset({12, 3, 7})), ["snapper", "delete", "3,7,12"]),
            (ApplyRequest(4), ["snapper", "rollback", "4"]),
            (StatusRequest(5, since=4), ["snapper", "status", "4..5"]),
            (StatusRequest(5), ["snapper", "status", "5"]),
        ],
    )
    def test_invocation_shapes(self, mock_executor: MagicMock, request_: object, expected: list[str]) -> None:
        gateway = CommandGateway(mock_executor)

        assert gateway.build_command(request_) == expected  # type: ignore[arg-type]

    def test_config_name_is_passed(self, mock_executor: MagicMock) -> None:
        gateway = CommandGateway(mock_executor, config_name="home")

        assert gateway.build_command(RefreshRequest()) == ["snapper", "-c", "home", "list"]

    def test_sudo_only_for_privileged_operations(self, mock_executor: MagicMock) -> None:
        gateway = CommandGateway(mock_executor, tool="/usr/bin/snapper", use_sudo=True)

        assert gateway.build_command(RefreshRequest()) == ["/usr/bin/snapper", "list"]
        assert gateway.build_command(ApplyRequest(2)) == ["sudo", "-n", "/usr/bin/snapper", "rollback", "2"]
        assert gateway.build_command(DeleteRequest(frozenset({1})))[:3] == ["sudo", "-n", "/usr/bin/snapper"]


class TestExecuteSuccess:
    async def test_refresh_returns_listing(self, mock_executor: MagicMock, sample_listing: str) -> None:
        mock_executor.run_command = AsyncMock(return_value=_ok(sample_listing))
        gateway = CommandGateway(mock_executor, timeout=30)

        result = await gateway.execute(RefreshRequest())

        assert isinstance(result, Listed)
        assert [s.id for s in result.snapshots] == [0, 1, 2, 3]
        assert result.skipped == 0
        mock_executor.run_command.assert_awaited_once_with(["snapper", "list"], timeout=30)

    async def test_delete_returns_ids(self, mock_executor: MagicMock) -> None:
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(DeleteRequest(frozenset({2, 3})))

        assert result == Deleted(frozenset({2, 3}))
        mock_executor.run_command.assert_awaited_once_with(["snapper", "delete", "2,3"], timeout=None)

    async def test_apply_returns_id(self, mock_executor: MagicMock) -> None:
        gateway = CommandGateway(mock_executor)

        assert await gateway.execute(ApplyRequest(9)) == Applied(9)

    async def test_status_returns_fields(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(return_value=_ok("c..... /etc/fstab\n"))
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(StatusRequest(3, since=2))

        assert isinstance(result, StatusFetched)
        assert result.id == 3
        assert result.fields["changed_files"] == "1"

    async def test_create_uses_follow_up_listing(self, mock_executor: MagicMock, sample_listing: str) -> None:
        mock_executor.run_command = AsyncMock(side_effect=[_ok("2\n"), _ok(sample_listing)])
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(CreateRequest("zypp(zypper)"))

        assert isinstance(result, Created)
        assert result.snapshot.id == 2
        assert result.snapshot.type is SnapshotType.PRE
        assert mock_executor.run_command.await_args_list == [
            call(["snapper", "create", "--description", "zypp(zypper)", "--print-number"], timeout=None),
            call(["snapper", "list"], timeout=None),
        ]

    async def test_create_falls_back_when_id_missing_from_listing(
        self, mock_executor: MagicMock, sample_listing: str
    ) -> None:
        mock_executor.run_command = AsyncMock(side_effect=[_ok("42\n"), _ok(sample_listing)])
        gateway = CommandGateway(mock_executor)

        with freeze_time("2024-06-01 12:00:00"):
            result = await gateway.execute(CreateRequest("nightly"))

        assert isinstance(result, Created)
        assert result.snapshot.id == 42
        assert result.snapshot.type is SnapshotType.SINGLE
        assert result.snapshot.description == "nightly"
        assert result.snapshot.date == datetime(2024, 6, 1, 12, 0, 0)

    async def test_create_succeeds_when_follow_up_listing_fails(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(
            side_effect=[_ok("42\n"), CommandResult(exit_code=1, stdout="", stderr="busy")]
        )
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(CreateRequest("nightly"))

        assert isinstance(result, Created)
        assert result.snapshot.id == 42


class TestExecuteFailures:
    async def test_nonzero_exit_is_backend_error(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(
            return_value=CommandResult(exit_code=1, stdout="", stderr="Snapshot '99' not found.")
        )
        gateway = CommandGateway(mock_executor)
        request = DeleteRequest(frozenset({1, 99}))

        result = await gateway.execute(request)

        assert isinstance(result, Failed)
        assert result.request == request
        assert isinstance(result.error, BackendInvocationError)
        assert result.error.exit_code == 1
        assert result.error.stderr_excerpt == "Snapshot '99' not found."
        assert result.error.command == "snapper delete 1,99"

    async def test_nonzero_exit_fails_despite_stdout(self, mock_executor: MagicMock, sample_listing: str) -> None:
        mock_executor.run_command = AsyncMock(
            return_value=CommandResult(exit_code=3, stdout=sample_listing, stderr="")
        )
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(RefreshRequest())

        assert isinstance(result, Failed)
        assert isinstance(result.error, BackendInvocationError)
        assert result.error.exit_code == 3

    async def test_long_stderr_is_truncated(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(return_value=CommandResult(exit_code=1, stdout="", stderr="x" * 1000))
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(ApplyRequest(1))

        assert isinstance(result, Failed)
        assert isinstance(result.error, BackendInvocationError)
        assert len(result.error.stderr_excerpt) == 200

    async def test_launch_failure_has_no_exit_code(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(side_effect=FileNotFoundError("snapper"))
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(RefreshRequest())

        assert isinstance(result, Failed)
        assert isinstance(result.error, BackendInvocationError)
        assert result.error.exit_code is None

    async def test_timeout_is_backend_error(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(side_effect=TimeoutError())
        gateway = CommandGateway(mock_executor, timeout=1)

        result = await gateway.execute(ApplyRequest(1))

        assert isinstance(result, Failed)
        assert isinstance(result.error, BackendInvocationError)
        assert result.error.stderr_excerpt == "timed out"

    async def test_empty_listing_output_is_backend_error(self, mock_executor: MagicMock) -> None:
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(RefreshRequest())

        assert isinstance(result, Failed)
        assert isinstance(result.error, BackendInvocationError)
        assert result.error.stderr_excerpt == "no output"

    async def test_unintelligible_listing_is_parse_error(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(return_value=_ok("nothing to see here\n"))
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(RefreshRequest())

        assert isinstance(result, Failed)
        assert isinstance(result.error, ParseError)

    async def test_unintelligible_status_is_parse_error(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(return_value=_ok("???\n"))
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(StatusRequest(1))

        assert isinstance(result, Failed)
        assert isinstance(result.error, ParseError)

    async def test_create_without_number_fails(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(return_value=_ok("done\n"))
        gateway = CommandGateway(mock_executor)

        result = await gateway.execute(CreateRequest("x"))

        assert isinstance(result, Failed)
        assert isinstance(result.error, BackendInvocationError)
        mock_executor.run_command.assert_awaited_once()

    async def test_gateway_never_retries(self, mock_executor: MagicMock) -> None:
        mock_executor.run_command = AsyncMock(return_value=CommandResult(exit_code=1, stdout="", stderr="no"))
        gateway = CommandGateway(mock_executor)

        await gateway.execute(DeleteRequest(frozenset({1})))

        assert mock_executor.run_command.await_count == 1
