"""Dashboard state: the single source of truth the main loop owns.

AppState is only ever mutated from the main loop. User actions use the
synchronous mutators (filter, sort, selection, cursor); background work
changes state exclusively through ``apply_result``, which behaves as a
deterministic reducer: the same prior state and result always give the
same posterior state, and results naming unknown ids are harmless.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from snapdash.models import (
    BATCH,
    PENDING_CREATE,
    REFRESH,
    Applied,
    ConflictError,
    Created,
    Deleted,
    DeleteRequest,
    Failed,
    Listed,
    OperationKind,
    OperationRequest,
    OperationResult,
    Slot,
    SnapdashError,
    Snapshot,
    SortKey,
    StatusFetched,
)
from snapdash.parser import parse_size

__all__ = ["AppState"]


def _sort_value(snapshot: Snapshot, key: SortKey) -> object:
    match key:
        case SortKey.NUMBER:
            return snapshot.id
        case SortKey.TYPE:
            return snapshot.type.value
        case SortKey.DATE:
            return snapshot.date.timestamp() if snapshot.date is not None else float("-inf")
        case SortKey.USER:
            return snapshot.user
        case SortKey.SPACE:
            return snapshot.used_space or 0
    raise ValueError(f"Unknown sort key: {key}")


def _merge_status(snapshot: Snapshot, fields: dict[str, str]) -> Snapshot:
    """Fold status fields into a snapshot record, returning a new record."""
    updates: dict[str, object] = {}
    details = dict(snapshot.details)
    for key, value in fields.items():
        if key == "used_space" and (size := parse_size(value)) is not None:
            updates["used_space"] = size
        elif key in ("cleanup", "cleanup_algorithm"):
            updates["cleanup_algorithm"] = value or None
        elif key in ("description", "user"):
            updates[key] = value
        else:
            details[key] = value
    return replace(snapshot, details=details, **updates)  # type: ignore[arg-type]


@dataclass
class AppState:
    """Snapshot set plus everything the dashboard needs to display and act on it."""

    snapshots: list[Snapshot] = field(default_factory=list)
    selection: set[int] = field(default_factory=set)
    cursor: int | None = None  # id of the highlighted visible row
    filter: str = ""
    sort_key: SortKey = SortKey.NUMBER
    sort_ascending: bool = True
    in_flight: dict[Slot, OperationKind] = field(default_factory=dict)
    last_error: SnapdashError | None = None
    loaded: bool = False  # a listing has been applied at least once

    def __post_init__(self) -> None:
        self._reanchor_cursor(0)

    # Read accessors

    def visible_rows(self) -> list[Snapshot]:
        """Snapshots passing the filter, in display order.

        Ties on the sort key are always broken by ascending id, whatever the
        sort direction.
        """
        rows = sorted((s for s in self.snapshots if s.matches(self.filter)), key=lambda s: s.id)
        rows.sort(key=lambda s: _sort_value(s, self.sort_key), reverse=not self.sort_ascending)  # type: ignore[arg-type,return-value]
        return rows

    def get(self, snapshot_id: int) -> Snapshot | None:
        for snapshot in self.snapshots:
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def cursor_snapshot(self) -> Snapshot | None:
        return self.get(self.cursor) if self.cursor is not None else None

    def is_busy(self, slot: Slot) -> bool:
        return slot in self.in_flight

    @property
    def busy(self) -> bool:
        return bool(self.in_flight)

    def delete_targets(self) -> frozenset[int]:
        """Ids a delete would act on: the selection, else the highlighted row."""
        if self.selection:
            return frozenset(self.selection)
        if self.cursor is not None:
            return frozenset({self.cursor})
        return frozenset()

    def sort_indicator(self, key: SortKey) -> str:
        if key is not self.sort_key:
            return ""
        return " ↑" if self.sort_ascending else " ↓"

    def _cursor_index(self) -> int:
        ids = [s.id for s in self.visible_rows()]
        return ids.index(self.cursor) if self.cursor in ids else 0

    def _reanchor_cursor(self, previous_index: int) -> None:
        """Keep the cursor on a visible row, staying near its previous position."""
        rows = self.visible_rows()
        if not rows:
            self.cursor = None
        elif self.cursor is None or all(s.id != self.cursor for s in rows):
            self.cursor = rows[min(previous_index, len(rows) - 1)].id

    # Admission gate

    def begin_operation(self, kind: OperationKind, targets: Iterable[Slot]) -> None:
        """Admit an operation on ``targets`` or refuse it.

        Any delete also checks the batch slot, so a delete never overlaps a
        running batch delete.

        Raises:
            ConflictError: If any target already has an operation in flight
        """
        wanted = frozenset(targets)
        checked = wanted | {BATCH} if kind is OperationKind.DELETE else wanted
        conflicts = frozenset(slot for slot in checked if slot in self.in_flight)
        if conflicts:
            raise ConflictError(kind, conflicts)
        for slot in wanted:
            self.in_flight[slot] = kind

    def begin(self, request: OperationRequest) -> None:
        """Admit a request (see begin_operation)."""
        self.begin_operation(request.kind, request.targets)

    # Synchronous user mutations

    def set_filter(self, text: str) -> None:
        index = self._cursor_index()
        self.filter = text
        self._reanchor_cursor(index)

    def set_sort(self, key: SortKey, ascending: bool | None = None) -> None:
        """Sort by ``key``; repeating the current key without ``ascending`` flips direction."""
        index = self._cursor_index()
        if ascending is not None:
            self.sort_ascending = ascending
        elif key is self.sort_key:
            self.sort_ascending = not self.sort_ascending
        else:
            self.sort_ascending = True
        self.sort_key = key
        self._reanchor_cursor(index)

    def toggle_selection(self, snapshot_id: int | None = None) -> bool:
        """Toggle a visible row in the selection (default: the highlighted row).

        Returns:
            True if the row is selected afterwards
        """
        if snapshot_id is None:
            snapshot_id = self.cursor
        if snapshot_id is None or all(s.id != snapshot_id for s in self.visible_rows()):
            return False
        if snapshot_id in self.selection:
            self.selection.discard(snapshot_id)
            return False
        self.selection.add(snapshot_id)
        return True

    def clear_selection(self) -> None:
        self.selection.clear()

    def move_cursor(self, delta: int) -> None:
        """Move the highlight through the visible rows, wrapping at both ends."""
        rows = self.visible_rows()
        if not rows:
            self.cursor = None
            return
        ids = [s.id for s in rows]
        if self.cursor not in ids:
            self.cursor = ids[0]
            return
        self.cursor = ids[(ids.index(self.cursor) + delta) % len(ids)]

    # Reducer

    def apply_result(self, result: OperationResult) -> None:
        """Apply a worker result; the only way background work changes state."""
        index = self._cursor_index()
        match result:
            case Created(snapshot=snapshot):
                self.snapshots = [s for s in self.snapshots if s.id != snapshot.id] + [snapshot]
                self.in_flight.pop(PENDING_CREATE, None)
                self.last_error = None
            case Deleted(ids=ids):
                self.snapshots = [s for s in self.snapshots if s.id not in ids]
                self.selection -= ids
                if ids:
                    for slot in DeleteRequest(frozenset(ids)).targets:
                        self.in_flight.pop(slot, None)
            case Applied(id=snapshot_id):
                self.in_flight.pop(snapshot_id, None)
            case StatusFetched(id=snapshot_id, fields=fields):
                self.in_flight.pop(snapshot_id, None)
                self.snapshots = [_merge_status(s, fields) if s.id == snapshot_id else s for s in self.snapshots]
            case Listed(snapshots=snapshots):
                seen: set[int] = set()
                fresh: list[Snapshot] = []
                for snapshot in snapshots:
                    if snapshot.id not in seen:
                        seen.add(snapshot.id)
                        fresh.append(snapshot)
                self.snapshots = fresh
                self.selection &= seen
                self.in_flight.pop(REFRESH, None)
                self.loaded = True
            case Failed(request=request, error=error):
                for slot in request.targets:
                    self.in_flight.pop(slot, None)
                self.last_error = error
            case _:
                raise TypeError(f"Unknown result: {result!r}")
        self._reanchor_cursor(index)
