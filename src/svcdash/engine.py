"""Service inventory and control engine.

All state changes run on one asyncio loop. Only subprocess execution is
awaited; every completion is applied to the owning component and then
published to subscribers as an event.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .controller import ConfirmPolicy, ServiceController
from .errors import ExecutorError, ParseError
from .executor import CommandExecutor
from .models import (
    ControlAction,
    ControlRequest,
    ControlUpdated,
    Event,
    InventorySnapshot,
    RefreshCompleted,
    RefreshFailed,
    UnitStatus,
)
from .refresh import RefreshCoordinator
from .systemctl import Systemctl, unit_status_from_show
from .util import Settings
from .view import ViewRow, ViewStateStore

logger = logging.getLogger(__name__)

Subscriber = Callable[[Event], None]


class ServiceEngine:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        executor: Optional[CommandExecutor] = None,
        policy: Optional[ConfirmPolicy] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.executor = executor or CommandExecutor(timeout=self.settings.command_timeout)
        self.systemctl = Systemctl.from_settings(self.settings)
        self.refresher = RefreshCoordinator(self.executor, self.systemctl)
        self.controller = ServiceController(
            self.executor,
            self.systemctl,
            confirm_refresh=self._confirm_refresh,
            policy=policy
            or ConfirmPolicy(
                attempts=self.settings.confirm_attempts,
                interval=self.settings.confirm_interval,
                timeout=self.settings.confirm_timeout,
            ),
            on_change=self._on_request_change,
        )
        self.filters = ViewStateStore()
        self.last_error: Exception | None = None
        self._subscribers: list[Subscriber] = []
        self._refresh_tasks: set[asyncio.Task] = set()

    # -- events ------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, event: Event) -> None:
        for cb in list(self._subscribers):
            try:
                cb(event)
            except Exception:
                logger.exception("subscriber %r failed on %s", cb, type(event).__name__)

    def _on_request_change(self, request: ControlRequest) -> None:
        self._emit(ControlUpdated(request))

    # -- inventory ---------------------------------------------------------

    @property
    def snapshot(self) -> InventorySnapshot | None:
        return self.refresher.snapshot

    async def refresh(self) -> InventorySnapshot | None:
        """Run one general refresh; failures are reported, never raised."""
        seq = self.refresher.next_sequence()
        try:
            snapshot = await self.refresher.refresh(seq)
        except (ExecutorError, ParseError) as e:
            logger.warning("refresh #%d failed: %s", seq, e)
            self.last_error = e
            self._emit(RefreshFailed(seq, e))
            return None
        applied = self.refresher.is_current(snapshot)
        if applied:
            self.last_error = None
        self._emit(RefreshCompleted(snapshot, applied))
        return snapshot

    def request_refresh(self) -> asyncio.Task:
        task = asyncio.create_task(self.refresh(), name="svcdash-refresh")
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)
        return task

    async def _confirm_refresh(self) -> InventorySnapshot:
        seq = self.refresher.next_sequence()
        try:
            snapshot = await self.refresher.refresh(seq)
        except (ExecutorError, ParseError) as e:
            self._emit(RefreshFailed(seq, e))
            raise
        self._emit(RefreshCompleted(snapshot, self.refresher.is_current(snapshot)))
        return snapshot

    async def status(self, unit: str) -> UnitStatus:
        result = await self.executor.run(self.systemctl.show_argv(unit))
        result.check()
        return unit_status_from_show(unit, result.stdout)

    # -- control -----------------------------------------------------------

    def request_action(self, unit: str, action: ControlAction | str) -> ControlRequest:
        """Dispatch a control action; raises UnitBusy if one is already pending."""
        return self.controller.request(unit, action)

    async def wait_for(self, unit: str) -> ControlRequest | None:
        return await self.controller.wait(unit)

    def acknowledge(self, unit: str) -> ControlRequest | None:
        return self.controller.acknowledge(unit)

    # -- view --------------------------------------------------------------

    def view(self) -> tuple[ViewRow, ...]:
        """Derived rows for rendering.

        Every resolved request is acknowledged once a render has observed it,
        including requests whose rows the current filter hides, so all of
        them go back to Idle.
        """
        overlay = self.controller.overlay()
        rows = self.filters.derive(self.snapshot, overlay)
        for name, req in overlay.items():
            if req.resolved:
                self.controller.acknowledge(name)
        return rows

    async def aclose(self) -> None:
        tasks = list(self._refresh_tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.controller.aclose()
