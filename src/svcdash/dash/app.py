from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.logging import TextualHandler
from textual.timer import Timer
from textual.widgets import DataTable, Footer, Input, Label, RichLog

from ..engine import ServiceEngine
from ..errors import UnitBusy
from ..models import (
    ControlAction,
    ControlUpdated,
    Event,
    FailureKind,
    RefreshCompleted,
    RefreshFailed,
    RequestStatus,
)
from ..util import Settings, configure_logging
from ..view import StatusCategory, ViewOrder, ViewRow

# Number keys toggle status categories in this order
CATEGORY_KEYS = [
    StatusCategory.RUNNING,
    StatusCategory.EXITED,
    StatusCategory.DEAD,
    StatusCategory.ACTIVE,
    StatusCategory.INACTIVE,
    StatusCategory.FAILED,
    StatusCategory.PENDING,
]


class ServiceDashApp(App):
    CSS_PATH = Path(__file__).with_name("app.tcss")

    AUTO_FOCUS = "#units"

    BINDINGS = [
        Binding("s", "control('start')", "Start"),
        Binding("x", "control('stop')", "Stop"),
        Binding("r", "control('restart')", "Restart"),
        Binding("l", "control('reload')", "Reload"),
        Binding("ctrl+r", "do_refresh", "Refresh"),
        Binding("slash", "focus_search", "Search"),
        Binding("o", "cycle_order", "Order"),
        Binding("escape", "clear_filters", "Clear", show=False),
        *[
            Binding(str(i), f"toggle_status('{cat.value}')", cat.value, show=False)
            for i, cat in enumerate(CATEGORY_KEYS, start=1)
        ],
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, engine: ServiceEngine, refresh_every: float = 10.0) -> None:
        super().__init__()
        self.engine = engine
        self.refresh_every = refresh_every
        self.table: DataTable | None = None
        # Avoid clashing with Textual App.log (read-only property)
        self.log_widget: RichLog | None = None
        self._rows: list[str] = []  # maps row index -> unit name
        self._search_timer: Timer | None = None
        self._refresh_timer: Timer | None = None
        self._unsubscribe = None

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal():
                yield Label("svcdash", id="title")
                yield Input(placeholder="Filter units by name", id="search")
        yield Label(self._filters_text(), id="filters")

        self.table = DataTable(zebra_stripes=True, cursor_type="row", id="units")
        self.table.add_columns("State", "Unit", "Load", "Sub", "Description")
        yield self.table

        self.log_widget = RichLog(highlight=False, markup=False, wrap=False, id="events")
        yield self.log_widget

        yield Footer()

    async def on_mount(self) -> None:
        self._unsubscribe = self.engine.subscribe(self._on_engine_event)
        self.engine.request_refresh()
        if self.refresh_every > 0:
            self._refresh_timer = self.set_interval(self.refresh_every, self.engine.request_refresh)

    async def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        await self.engine.aclose()

    # -- engine events ------------------------------------------------------

    def _on_engine_event(self, event: Event) -> None:
        if isinstance(event, RefreshCompleted):
            if event.applied:
                self._rebuild_table()
                self._set_status(
                    f"{len(event.snapshot)} units, refreshed "
                    + time.strftime("%H:%M:%S", time.localtime(event.snapshot.taken_at))
                )
                if event.snapshot.warnings:
                    self._note(f"{len(event.snapshot.warnings)} unreadable record(s) skipped")
        elif isinstance(event, RefreshFailed):
            self._note(f"[error] refresh #{event.sequence}: {event.error}")
        elif isinstance(event, ControlUpdated):
            req = event.request
            if req.status is RequestStatus.PENDING and req.attempts == 0:
                self._note(f"$ systemctl {req.action.value} {req.unit}")
            elif req.status is RequestStatus.CONFIRMED:
                self._note(f"[ok] {req.action.value} {req.unit}")
            elif req.status is RequestStatus.FAILED and req.failure is FailureKind.SPAWN:
                self._note(f"[error] could not run systemctl for {req.action.value} {req.unit}: {req.message}")
            elif req.status is RequestStatus.FAILED:
                self._note(f"[failed] {req.action.value} {req.unit}: {req.message}")
            self._rebuild_table()

    # -- table --------------------------------------------------------------

    def _rebuild_table(self) -> None:
        if self.table is None:
            return
        selected = self._selected_unit()
        rows = self.engine.view()
        self.table.clear(columns=False)
        self._rows = []
        for row in rows:
            self._add_row(row)
            self._rows.append(row.name)
        if selected in self._rows:
            self.table.move_cursor(row=self._rows.index(selected))

    def _add_row(self, row: ViewRow) -> None:
        assert self.table
        u = row.unit
        if row.pending_action is not None:
            state = f"{row.pending_action.value}…"
        elif row.failure is not None:
            state = f"{u.active_state.value} !"
        else:
            state = u.active_state.value
        self.table.add_row(state, u.name, u.load_state, u.sub_state, u.description)

    def _selected_unit(self) -> Optional[str]:
        if not self.table or not self._rows:
            return None
        row = self.table.cursor_row
        if row is None or not (0 <= row < len(self._rows)):
            return None
        return self._rows[row]

    # -- actions ------------------------------------------------------------

    def action_control(self, action: str) -> None:
        unit = self._selected_unit()
        if not unit:
            return
        try:
            self.engine.request_action(unit, ControlAction(action))
        except UnitBusy as e:
            self._note(f"[busy] {e}")

    def action_do_refresh(self) -> None:
        self.engine.request_refresh()

    def action_focus_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_toggle_status(self, category: str) -> None:
        self.engine.filters.toggle_status(category)
        self._filters_changed()

    def action_cycle_order(self) -> None:
        orders = list(ViewOrder)
        cur = self.engine.filters.filters.order
        self.engine.filters.set_order(orders[(orders.index(cur) + 1) % len(orders)])
        self._filters_changed()

    def action_clear_filters(self) -> None:
        self.engine.filters.clear()
        self.query_one("#search", Input).value = ""
        self._filters_changed()

    @on(Input.Changed, "#search")
    def _on_search_changed(self, event: Input.Changed) -> None:
        self.engine.filters.set_query(event.value)
        if self._search_timer is not None:
            self._search_timer.stop()
        # Debounce table rebuild to reduce churn during typing
        self._search_timer = self.set_timer(0.2, self._rebuild_table)

    @on(Input.Submitted, "#search")
    def _on_search_submitted(self, event: Input.Submitted) -> None:
        if self.table is not None:
            self.table.focus()

    def _filters_changed(self) -> None:
        self.query_one("#filters", Label).update(self._filters_text())
        self._rebuild_table()

    def _filters_text(self) -> str:
        f = self.engine.filters.filters
        marks = " ".join(
            f"{i}:{cat.value}{'*' if cat in f.statuses else ''}"
            for i, cat in enumerate(CATEGORY_KEYS, start=1)
        )
        return f"status [{marks}]  order: {f.order.value}"

    def _set_status(self, text: str) -> None:
        self.sub_title = text

    def _note(self, msg: str) -> None:
        if self.log_widget is not None:
            self.log_widget.write(msg)


def run_dash(settings: Settings, refresh_every: float = 10.0) -> None:
    # stderr belongs to the terminal UI; route records to textual devtools
    configure_logging(settings.log_level, TextualHandler())
    engine = ServiceEngine(settings)
    app = ServiceDashApp(engine, refresh_every=refresh_every)
    app.run()
