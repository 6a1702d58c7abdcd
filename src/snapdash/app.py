"""Interactive dashboard: key handling and the main loop.

The main loop is the only owner of AppState. Each iteration it handles at
most one key press, drains every finished operation result through the
reconciler, and redraws. Backend operations never block it; they run as
tasks started by the WorkerDispatcher.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol

from rich.console import RenderableType

from snapdash.config import DashboardConfig
from snapdash.dispatcher import OperationHandle, WorkerDispatcher
from snapdash.events import ResultChannel
from snapdash.gateway import CommandGateway
from snapdash.logger import get_logger
from snapdash.models import (
    REFRESH,
    Applied,
    ApplyRequest,
    BackendInvocationError,
    ConflictError,
    CreateRequest,
    DeleteRequest,
    Failed,
    OperationRequest,
    OperationResult,
    RefreshRequest,
    SortKey,
    StatusRequest,
)
from snapdash.reconciler import Reconciler
from snapdash.state import AppState
from snapdash.ui import DashboardView, Prompt

__all__ = ["Dashboard", "KeySource", "Mode"]

logger = logging.getLogger(__name__)

_SORT_KEYS = {str(i): key for i, key in enumerate(SortKey, start=1)}


class KeySource(Protocol):
    async def get(self, timeout: float | None = None) -> str | None: ...


class Mode(StrEnum):
    NORMAL = "normal"
    FILTER = "filter"
    CREATE = "create"
    CONFIRM = "confirm"


class Dashboard:
    """Maps key presses to state changes and backend operations.

    Args:
        gateway: Runs backend commands for dispatched operations
        view: Renders the state
        config: Dashboard settings
        state: Initial state (a fresh AppState by default)
    """

    def __init__(
        self,
        gateway: CommandGateway,
        view: DashboardView,
        config: DashboardConfig | None = None,
        state: AppState | None = None,
    ) -> None:
        self._config = config or DashboardConfig()
        self.state = state if state is not None else AppState()
        self.channel = ResultChannel()
        self.dispatcher = WorkerDispatcher(self.state, gateway, self.channel)
        self.reconciler = Reconciler(self.state, self.channel)
        self.reconciler.add_listener(self._after_result)
        self.view = view
        self.mode = Mode.NORMAL
        self.input_text = ""
        self.pending_confirmation: OperationRequest | None = None
        self.running = True
        self._log = get_logger(__name__, component="dashboard")

    # Operations

    def submit(self, request: OperationRequest) -> OperationHandle | None:
        """Dispatch a request; a refused admission is shown instead of raised."""
        try:
            return self.dispatcher.dispatch(request)
        except ConflictError as e:
            self.state.last_error = e
            self.reconciler.notify(str(e))
            logger.info("Refused: %s", e)
            return None

    def refresh(self) -> OperationHandle | None:
        return self.submit(RefreshRequest())

    def request_delete(self) -> None:
        """Ask for confirmation before deleting the selection (or highlighted row)."""
        targets = self.state.delete_targets()
        if not targets:
            self.reconciler.notify("Nothing to delete")
            return
        self._ask_confirmation(DeleteRequest(targets))

    def request_apply(self) -> None:
        """Ask for confirmation before rolling back to the highlighted snapshot."""
        snap = self.state.cursor_snapshot()
        if snap is None:
            self.reconciler.notify("Nothing to roll back to")
            return
        self._ask_confirmation(ApplyRequest(snap.id))

    def request_status(self) -> OperationHandle | None:
        """Load what changed in the highlighted snapshot.

        Post snapshots are compared with their pre snapshot, others with the
        previous number.
        """
        snap = self.state.cursor_snapshot()
        if snap is None:
            return None
        if snap.pre_number is not None:
            since: int | None = snap.pre_number
        else:
            since = snap.id - 1 if snap.id > 0 else None
        return self.submit(StatusRequest(snap.id, since))

    def request_create(self, description: str) -> OperationHandle | None:
        description = description.strip()
        if not description:
            self.reconciler.notify("A description is required")
            return None
        return self.submit(CreateRequest(description))

    def _ask_confirmation(self, request: OperationRequest) -> None:
        self.pending_confirmation = request
        self.mode = Mode.CONFIRM

    def confirm(self) -> OperationHandle | None:
        request = self.pending_confirmation
        self.pending_confirmation = None
        self.mode = Mode.NORMAL
        if request is None:
            return None
        self._log.info("confirmed", operation=request.kind.value)
        return self.submit(request)

    def cancel_prompt(self) -> None:
        self.pending_confirmation = None
        self.input_text = ""
        self.mode = Mode.NORMAL

    def _after_result(self, result: OperationResult) -> None:
        """Follow-up refreshes the backend state requires after some results."""
        if not self._config.auto_refresh or self.state.is_busy(REFRESH):
            return
        needs_refresh = isinstance(result, Applied) or (
            isinstance(result, Failed)
            and isinstance(result.request, DeleteRequest)
            and len(result.request.ids) > 1
            and isinstance(result.error, BackendInvocationError)
        )
        if needs_refresh:
            self.refresh()

    # Keys

    def handle_key(self, key: str) -> None:
        match self.mode:
            case Mode.CONFIRM:
                self._handle_confirm_key(key)
            case Mode.FILTER | Mode.CREATE:
                self._handle_input_key(key)
            case _:
                self._handle_normal_key(key)

    def _handle_normal_key(self, key: str) -> None:
        match key:
            case "q" | "ctrl-c":
                self.running = False
            case "r":
                self.refresh()
            case "up" | "k":
                self.state.move_cursor(-1)
            case "down" | "j":
                self.state.move_cursor(1)
            case "pgup":
                self.state.move_cursor(-10)
            case "pgdn":
                self.state.move_cursor(10)
            case " ":
                self.state.toggle_selection()
            case "c":
                self.state.clear_selection()
            case "/":
                self.mode = Mode.FILTER
                self.input_text = self.state.filter
            case "n":
                self.mode = Mode.CREATE
                self.input_text = ""
            case "d":
                self.request_delete()
            case "a":
                self.request_apply()
            case "s":
                self.request_status()
            case "esc":
                if self.state.last_error is not None:
                    self.state.last_error = None
                else:
                    self.state.set_filter("")
            case _ if key in _SORT_KEYS:
                self.state.set_sort(_SORT_KEYS[key])

    def _handle_input_key(self, key: str) -> None:
        if key == "esc":
            if self.mode is Mode.FILTER:
                self.state.set_filter("")
            self.cancel_prompt()
            return
        if key == "enter":
            if self.mode is Mode.CREATE:
                self.request_create(self.input_text)
            self.input_text = ""
            self.mode = Mode.NORMAL
            return
        if key == "backspace":
            self.input_text = self.input_text[:-1]
        elif len(key) == 1:
            self.input_text += key
        else:
            return
        if self.mode is Mode.FILTER:
            self.state.set_filter(self.input_text)

    def _handle_confirm_key(self, key: str) -> None:
        if key in ("enter", "y"):
            self.confirm()
        elif key in ("esc", "n", "q"):
            self.cancel_prompt()

    # Rendering

    def prompt(self) -> Prompt | None:
        match self.mode:
            case Mode.FILTER:
                return Prompt("Filter", f"/{self.input_text}▏")
            case Mode.CREATE:
                return Prompt("New snapshot description", f"{self.input_text}▏  (enter to create, esc to cancel)")
            case Mode.CONFIRM if self.pending_confirmation is not None:
                return Prompt("Confirm", self._describe_pending(self.pending_confirmation), confirm=True)
        return None

    def _describe_pending(self, request: OperationRequest) -> str:
        suffix = "  [y/enter] confirm  [n/esc] cancel"
        match request:
            case DeleteRequest(ids=ids):
                numbers = ", ".join(f"#{i}" for i in sorted(ids))
                return f"Delete {len(ids)} snapshot{'s' if len(ids) != 1 else ''} ({numbers})?{suffix}"
            case ApplyRequest(id=snapshot_id):
                snap = self.state.get(snapshot_id)
                label = f" '{snap.description}'" if snap is not None and snap.description else ""
                return f"Roll back to snapshot #{snapshot_id}{label}?{suffix}"
        return f"Run {request.kind.value}?{suffix}"

    def render(self) -> RenderableType:
        return self.view.render(self.state, self.reconciler.notices, self.prompt())

    # Main loop

    async def run(self, keys: KeySource) -> None:
        """Run until the user quits, then wait for running operations to finish."""
        interval = 1 / self._config.refresh_per_second
        self.refresh()
        self.view.start(self.render())
        try:
            while self.running:
                key = await keys.get(timeout=interval)
                if key is not None:
                    self.handle_key(key)
                self.reconciler.drain()
                if self.state.busy or not self.state.loaded:
                    self.view.tick()
                self.view.update(self.render())
        finally:
            self.view.stop()
            if self.dispatcher.active_count:
                logger.info("Waiting for %d running operation(s) to finish", self.dispatcher.active_count)
            await self.dispatcher.shutdown()
            self.reconciler.drain()
