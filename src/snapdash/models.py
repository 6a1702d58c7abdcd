"""Core types and dataclasses for snapdash."""

from __future__ import annotations

from typing import TypeAlias

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

__all__ = [
    "BATCH",
    "EXCERPT_LIMIT",
    "PENDING_CREATE",
    "REFRESH",
    "Applied",
    "ApplyRequest",
    "BackendInvocationError",
    "CancelledOperationError",
    "CommandResult",
    "ConfigError",
    "ConflictError",
    "CreateRequest",
    "Created",
    "DeleteRequest",
    "Deleted",
    "Failed",
    "Listed",
    "OperationKind",
    "OperationRequest",
    "OperationResult",
    "ParseError",
    "RefreshRequest",
    "Slot",
    "Snapshot",
    "SnapdashError",
    "SnapshotType",
    "SortKey",
    "StatusFetched",
    "StatusRequest",
    "excerpt",
]

# Maximum characters of backend output carried inside an error
EXCERPT_LIMIT = 200

# In-flight slots for operations that have no single snapshot id
PENDING_CREATE = "pending-create"
BATCH = "batch"
REFRESH = "refresh"

Slot: TypeAlias = int | str


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Trim backend output to a short single-block excerpt for display."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


class SnapshotType(StrEnum):
    """Kind of snapshot as reported by the backend."""

    SINGLE = "single"
    PRE = "pre"
    POST = "post"


class SortKey(StrEnum):
    """Columns the snapshot table can be sorted by."""

    NUMBER = "number"
    TYPE = "type"
    DATE = "date"
    USER = "user"
    SPACE = "space"


class OperationKind(StrEnum):
    """Kinds of backend operation the dashboard can dispatch."""

    CREATE = "create"
    DELETE = "delete"
    APPLY = "apply"
    STATUS = "status"
    REFRESH = "refresh"


@dataclass(frozen=True)
class CommandResult:
    """Result of executing a command via LocalExecutor or RemoteExecutor."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class Snapshot:
    """One snapshot entry managed by the backend."""

    id: int
    type: SnapshotType
    date: datetime | None
    user: str
    description: str
    used_space: int | None = None  # bytes, None until known
    cleanup_algorithm: str | None = None
    pre_number: int | None = None  # only for POST snapshots
    userdata: dict[str, str] = field(default_factory=dict)
    default: bool = False
    active: bool = False
    details: dict[str, str] = field(default_factory=dict)  # merged from status queries

    def matches(self, needle: str) -> bool:
        """Case-insensitive match against description, type, user and id."""
        if not needle:
            return True
        needle = needle.lower()
        return (
            needle in self.description.lower()
            or needle in self.type.value
            or needle in self.user.lower()
            or needle in str(self.id)
        )


# Errors


class SnapdashError(Exception):
    """Base class for all errors surfaced to the user."""


class BackendInvocationError(SnapdashError):
    """The backend process ran (or failed to launch) and did not succeed."""

    def __init__(self, exit_code: int | None, stderr_excerpt: str, command: str = "") -> None:
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt
        self.command = command
        if exit_code is None:
            message = f"Could not run {command or 'backend'}: {stderr_excerpt}"
        else:
            message = f"{command or 'backend'} exited with {exit_code}"
            if stderr_excerpt:
                message += f": {stderr_excerpt}"
        super().__init__(message)


class ParseError(SnapdashError):
    """The backend succeeded but its output could not be understood."""

    def __init__(self, raw_excerpt: str, reason: str = "unrecognized output") -> None:
        self.raw_excerpt = raw_excerpt
        self.reason = reason
        super().__init__(f"Could not parse backend output ({reason}): {raw_excerpt!r}")


class ConflictError(SnapdashError):
    """Admission refused because a target already has an operation in flight."""

    def __init__(self, kind: OperationKind, targets: frozenset[Slot]) -> None:
        self.kind = kind
        self.targets = targets
        names = ", ".join(f"#{t}" if isinstance(t, int) else t for t in sorted(targets, key=str))
        super().__init__(f"Cannot {kind.value}: operation already in progress for {names}")


class CancelledOperationError(SnapdashError):
    """A pending operation was withdrawn before it reached the backend."""

    def __init__(self, request: OperationRequest) -> None:
        self.request = request
        super().__init__(f"{request.kind.value.capitalize()} cancelled before it started")


@dataclass(frozen=True)
class ConfigError:
    """Error from schema or value validation of the configuration file."""

    path: str  # JSON path to invalid value
    message: str


# Requests


@dataclass(frozen=True)
class CreateRequest:
    """Create a new single snapshot."""

    description: str

    @property
    def kind(self) -> OperationKind:
        return OperationKind.CREATE

    @property
    def targets(self) -> frozenset[Slot]:
        return frozenset({PENDING_CREATE})


@dataclass(frozen=True)
class DeleteRequest:
    """Delete one snapshot or a batch of snapshots in a single invocation."""

    ids: frozenset[int]

    def __post_init__(self) -> None:
        if not self.ids:
            raise ValueError("DeleteRequest needs at least one id")

    @property
    def kind(self) -> OperationKind:
        return OperationKind.DELETE

    @property
    def targets(self) -> frozenset[Slot]:
        if len(self.ids) > 1:
            return frozenset({BATCH, *self.ids})
        return frozenset(self.ids)


@dataclass(frozen=True)
class ApplyRequest:
    """Roll the system back to a snapshot."""

    id: int

    @property
    def kind(self) -> OperationKind:
        return OperationKind.APPLY

    @property
    def targets(self) -> frozenset[Slot]:
        return frozenset({self.id})


@dataclass(frozen=True)
class StatusRequest:
    """Query what changed in a snapshot.

    ``since`` is the snapshot to compare against; None queries the id alone.
    """

    id: int
    since: int | None = None

    @property
    def kind(self) -> OperationKind:
        return OperationKind.STATUS

    @property
    def targets(self) -> frozenset[Slot]:
        return frozenset({self.id})


@dataclass(frozen=True)
class RefreshRequest:
    """Reload the full snapshot listing."""

    @property
    def kind(self) -> OperationKind:
        return OperationKind.REFRESH

    @property
    def targets(self) -> frozenset[Slot]:
        return frozenset({REFRESH})


OperationRequest: TypeAlias = CreateRequest | DeleteRequest | ApplyRequest | StatusRequest | RefreshRequest


# Results


@dataclass(frozen=True)
class Created:
    snapshot: Snapshot


@dataclass(frozen=True)
class Deleted:
    ids: frozenset[int]


@dataclass(frozen=True)
class Applied:
    id: int


@dataclass(frozen=True)
class StatusFetched:
    id: int
    fields: dict[str, str]


@dataclass(frozen=True)
class Listed:
    snapshots: tuple[Snapshot, ...]
    skipped: int = 0  # malformed rows dropped by the parser


@dataclass(frozen=True)
class Failed:
    """Any failure, echoing the request so its in-flight slots can be released."""

    request: OperationRequest
    error: SnapdashError


OperationResult: TypeAlias = Created | Deleted | Applied | StatusFetched | Listed | Failed
