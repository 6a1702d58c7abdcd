"""Terminal rendering of the dashboard with Rich."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import ClassVar

from rich.console import Console, Group, RenderableType
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from snapdash.models import SnapdashError, Snapshot, SnapshotType, SortKey
from snapdash.parser import format_date, format_size
from snapdash.state import AppState

__all__ = ["DashboardView", "Prompt"]


@dataclass(frozen=True)
class Prompt:
    """A line of user input or a confirmation shown in place of the footer."""

    title: str
    text: str
    confirm: bool = False  # destructive confirmation (rendered in red)


class DashboardView:
    """Rich layout showing the snapshot table, details, status and recent log lines.

    Layout:
    - header with counts, filter and connection target
    - snapshot table (left) next to details and status panels (right)
    - log panel with recent notices
    - footer with actions, replaced by a prompt while one is active
    """

    SPINNER_FRAMES: ClassVar[list[str]] = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    TYPE_STYLES: ClassVar[dict[SnapshotType, str]] = {
        SnapshotType.SINGLE: "white",
        SnapshotType.PRE: "yellow",
        SnapshotType.POST: "green",
    }

    COLUMNS: ClassVar[list[tuple[str, SortKey | None]]] = [
        ("#", SortKey.NUMBER),
        ("Type", SortKey.TYPE),
        ("Date", SortKey.DATE),
        ("User", SortKey.USER),
        ("Space", SortKey.SPACE),
        ("Cleanup", None),
        ("Description", None),
    ]

    def __init__(
        self,
        console: Console,
        max_log_lines: int = 6,
        refresh_per_second: float = 10,
        target: str = "localhost",
    ) -> None:
        """Initialize the dashboard view.

        Args:
            console: Rich console for rendering
            max_log_lines: Number of notices shown in the log panel
            refresh_per_second: Live display refresh rate
            target: Machine whose snapshots are shown (header text)
        """
        self._console = console
        self._max_log_lines = max_log_lines
        self._refresh_per_second = refresh_per_second
        self._target = target
        self._spinner_state = 0
        self._live: Live | None = None

    def tick(self) -> None:
        """Advance the busy spinner by one frame."""
        self._spinner_state = (self._spinner_state + 1) % len(self.SPINNER_FRAMES)

    @property
    def spinner(self) -> str:
        return self.SPINNER_FRAMES[self._spinner_state]

    # Live display

    def start(self, renderable: RenderableType) -> None:
        """Start the live display on the alternate screen."""
        self._live = Live(
            renderable,
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            screen=True,
            transient=True,
        )
        self._live.start()

    def update(self, renderable: RenderableType) -> None:
        if self._live:
            self._live.update(renderable)

    def stop(self) -> None:
        """Stop the live display."""
        if self._live:
            self._live.stop()
            self._live = None

    # Rendering

    def render(self, state: AppState, notices: Sequence[str] = (), prompt: Prompt | None = None) -> RenderableType:
        """Render the complete layout for the current state."""
        layout = Layout()
        layout.split_column(
            Layout(self._render_header(state), name="header", size=1),
            Layout(name="main", ratio=1),
            Layout(self._render_log_panel(notices), name="log", size=self._max_log_lines + 2),
            Layout(self._render_footer(prompt), name="footer", size=3),
        )
        layout["main"].split_row(
            Layout(self._render_table(state), name="table", ratio=3),
            Layout(name="side", ratio=2),
        )
        layout["side"].split_column(
            Layout(self._render_details(state.cursor_snapshot()), name="details", ratio=2),
            Layout(self._render_status(state), name="status", ratio=3),
        )
        return layout

    def _render_header(self, state: AppState) -> Text:
        text = Text()
        text.append(" snapdash ", style="bold black on cyan")
        text.append(f" {self._target} ", style="magenta")
        text.append(f" {len(state.snapshots)} snapshots", style="dim")
        if state.selection:
            text.append(f"  {len(state.selection)} selected", style="cyan")
        if state.busy:
            text.append(f"  {self.spinner} {len(state.in_flight)} running", style="yellow")
        if state.filter:
            text.append(f"  filter: {state.filter}", style="green")
        return text

    def render_table(self, state: AppState) -> Table:
        """Snapshot table alone (also used for one-shot listing output)."""
        table = Table(expand=True, box=None, header_style="bold black on cyan", pad_edge=False)
        table.add_column("", width=2, no_wrap=True)
        for name, key in self.COLUMNS:
            header = name + (state.sort_indicator(key) if key is not None else "")
            justify = "right" if name in ("#", "Space") else "left"
            table.add_column(header, justify=justify, no_wrap=name != "Description", overflow="ellipsis")

        for snap in state.visible_rows():
            marker = Text()
            if state.is_busy(snap.id):
                marker.append(self.spinner, style="yellow")
            elif snap.id in state.selection:
                marker.append("●", style="cyan")
            else:
                marker.append(" ")
            number = f"{snap.id}{'*' if snap.default else ''}"
            row_style = "reverse bold" if snap.id == state.cursor else ""
            table.add_row(
                marker,
                number,
                Text(snap.type.value, style=self.TYPE_STYLES[snap.type]),
                format_date(snap.date),
                snap.user,
                format_size(snap.used_space) if snap.used_space is not None else "",
                snap.cleanup_algorithm or "",
                snap.description,
                style=row_style,
            )
        return table

    def _render_table(self, state: AppState) -> RenderableType:
        if not state.loaded and not state.snapshots:
            body: RenderableType = Text(f"{self.spinner} Loading snapshots...", style="yellow")
        elif not state.visible_rows():
            body = Text("No snapshots match" if state.filter else "No snapshots", style="dim")
        else:
            body = self.render_table(state)
        return Panel(body, title="Snapshots", border_style="cyan")

    def _render_details(self, snap: Snapshot | None) -> Panel:
        if snap is None:
            return Panel(Text("Nothing selected", style="dim"), title="Details", border_style="blue")
        grid = Table.grid(padding=(0, 1))
        grid.add_column(style="cyan", no_wrap=True)
        grid.add_column()
        grid.add_row("Number", str(snap.id))
        grid.add_row("Type", snap.type.value)
        if snap.pre_number is not None:
            grid.add_row("Pre #", str(snap.pre_number))
        grid.add_row("Date", format_date(snap.date) or "-")
        grid.add_row("User", snap.user or "-")
        grid.add_row("Cleanup", snap.cleanup_algorithm or "-")
        grid.add_row("Used space", format_size(snap.used_space) if snap.used_space is not None else "-")
        grid.add_row("Description", snap.description or "-")
        if snap.userdata:
            grid.add_row("Userdata", ", ".join(f"{k}={v}" for k, v in snap.userdata.items()))
        flags = [name for name, on in (("default", snap.default), ("active", snap.active)) if on]
        if flags:
            grid.add_row("Flags", ", ".join(flags))
        return Panel(grid, title="Details", border_style="blue")

    def _render_status(self, state: AppState) -> Panel:
        parts: list[RenderableType] = []
        if state.last_error is not None:
            parts.append(self._render_error(state.last_error))
        snap = state.cursor_snapshot()
        if snap is not None and snap.details:
            changes = snap.details.get("changes")
            for key, value in snap.details.items():
                if key != "changes":
                    parts.append(Text.assemble((f"{key}: ", "cyan"), value))
            if changes:
                parts.append(Text(changes))
        elif snap is not None and state.is_busy(snap.id):
            parts.append(Text(f"{self.spinner} {state.in_flight[snap.id].value} in progress...", style="yellow"))
        if not parts:
            parts.append(Text("Press s to load status", style="dim"))
        return Panel(Group(*parts), title="Status", border_style="blue")

    @staticmethod
    def _render_error(error: SnapdashError) -> Text:
        return Text.assemble(("Error: ", "bold red"), (str(error), "red"))

    def _render_log_panel(self, notices: Sequence[str]) -> Panel:
        lines = list(notices)[-self._max_log_lines :]
        body = Text("\n".join(lines)) if lines else Text("No activity yet", style="dim")
        return Panel(body, title="Recent Activity", border_style="blue")

    def _render_footer(self, prompt: Prompt | None) -> Panel:
        if prompt is not None:
            style = "red" if prompt.confirm else "green"
            return Panel(Text(prompt.text), title=prompt.title, border_style=style)
        actions = Text()
        for key, label, style in (
            ("n", "new", "black on green"),
            ("d", "delete", "white on red"),
            ("a", "apply", "black on yellow"),
            ("s", "status", "white on blue"),
            ("r", "refresh", "black on cyan"),
            ("/", "filter", "black on white"),
            ("space", "select", "black on white"),
            ("1-5", "sort", "black on white"),
            ("q", "quit", "black on white"),
        ):
            actions.append(f" {key} ", style=f"bold {style}")
            actions.append(f" {label}  ")
        return Panel(actions, border_style="dim")
