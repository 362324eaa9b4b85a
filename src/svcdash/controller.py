"""Start/stop/restart/reload requests and their confirmation lifecycle.

Each unit is Idle, Pending, or resolved (Confirmed/Failed) until the view
layer acknowledges the outcome. Only one request per unit may be Pending;
a second one is rejected with UnitBusy. The request table is owned here and
only frozen ControlRequest values leave this module.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Awaitable, Callable, Mapping, Optional

from .errors import CommandFailed, ExecutorError, ParseError, UnitBusy
from .executor import CommandExecutor
from .models import ControlAction, ControlRequest, FailureKind, InventorySnapshot, RequestStatus
from .systemctl import Systemctl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmPolicy:
    """How long a request may wait for the manager to report the expected state."""

    attempts: int = 5
    interval: float = 1.0
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


class ServiceController:
    def __init__(
        self,
        executor: CommandExecutor,
        systemctl: Systemctl,
        confirm_refresh: Callable[[], Awaitable[InventorySnapshot]],
        policy: Optional[ConfirmPolicy] = None,
        on_change: Optional[Callable[[ControlRequest], None]] = None,
    ) -> None:
        self.executor = executor
        self.systemctl = systemctl
        self.confirm_refresh = confirm_refresh
        self.policy = policy or ConfirmPolicy()
        self.on_change = on_change
        self._requests: dict[str, ControlRequest] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    # -- queries -----------------------------------------------------------

    def overlay(self) -> Mapping[str, ControlRequest]:
        """Read-only copy of the request table."""
        return MappingProxyType(dict(self._requests))

    def get(self, unit: str) -> ControlRequest | None:
        return self._requests.get(unit)

    def is_busy(self, unit: str) -> bool:
        req = self._requests.get(unit)
        return req is not None and req.status is RequestStatus.PENDING

    def pending(self) -> list[ControlRequest]:
        return [r for r in self._requests.values() if r.status is RequestStatus.PENDING]

    # -- mutations ---------------------------------------------------------

    def request(self, unit: str, action: ControlAction | str) -> ControlRequest:
        """Dispatch ``action`` for ``unit``; must be called on the running loop."""
        action = ControlAction(action)
        current = self._requests.get(unit)
        if current is not None and current.status is RequestStatus.PENDING:
            raise UnitBusy(unit, current.action.value)
        req = ControlRequest(unit=unit, action=action, issued_at=time.time())
        self._set(req)
        task = asyncio.create_task(self._run(req), name=f"svcdash-{action.value}-{unit}")
        self._tasks[unit] = task
        task.add_done_callback(lambda t, u=unit: self._forget_task(u, t))
        return req

    def acknowledge(self, unit: str) -> ControlRequest | None:
        """Drop a resolved request so the unit returns to Idle."""
        req = self._requests.get(unit)
        if req is None or not req.resolved:
            return None
        del self._requests[unit]
        return req

    async def wait(self, unit: str) -> ControlRequest | None:
        """Wait for the unit's outstanding request to resolve."""
        task = self._tasks.get(unit)
        if task is not None:
            # a renderer may already have acknowledged it
            return await asyncio.shield(task)
        return self._requests.get(unit)

    async def drain(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- internals ---------------------------------------------------------

    def _forget_task(self, unit: str, task: asyncio.Task) -> None:
        if self._tasks.get(unit) is task:
            del self._tasks[unit]

    def _set(self, req: ControlRequest) -> None:
        self._requests[req.unit] = req
        if self.on_change is not None:
            self.on_change(req)

    def _resolve(
        self,
        req: ControlRequest,
        status: RequestStatus,
        message: str | None = None,
        failure: FailureKind | None = None,
    ) -> ControlRequest:
        done = replace(req, status=status, message=message, failure=failure)
        if status is RequestStatus.FAILED:
            logger.warning(
                "%s %s failed (%s): %s", req.action.value, req.unit, failure.value, message
            )
        else:
            logger.info("%s %s confirmed", req.action.value, req.unit)
        self._set(done)
        return done

    async def _run(self, req: ControlRequest) -> ControlRequest:
        try:
            return await self._execute(req)
        except Exception as e:
            logger.exception("%s %s crashed", req.action.value, req.unit)
            current = self._requests.get(req.unit, req)
            return self._resolve(
                current, RequestStatus.FAILED, f"internal error: {e}", FailureKind.INTERNAL
            )

    async def _execute(self, req: ControlRequest) -> ControlRequest:
        argv = self.systemctl.control_argv(req.action, req.unit)
        try:
            result = await self.executor.run(argv)
            result.check()
        except CommandFailed as e:
            # Privilege and unit errors: keep the manager's own diagnostic
            return self._resolve(req, RequestStatus.FAILED, str(e), FailureKind.COMMAND)
        except ExecutorError as e:
            # not found, permission denied or timed out
            return self._resolve(req, RequestStatus.FAILED, str(e), FailureKind.SPAWN)

        try:
            if self.policy.timeout is None:
                return await self._confirm(req)
            return await asyncio.wait_for(self._confirm(req), self.policy.timeout)
        except asyncio.TimeoutError:
            current = self._requests.get(req.unit, req)
            return self._resolve(
                current,
                RequestStatus.FAILED,
                f"timed out after {self.policy.timeout:g}s waiting for "
                f"{req.unit} to become {req.action.expected_state.value}",
                FailureKind.UNCONFIRMED,
            )

    async def _confirm(self, req: ControlRequest) -> ControlRequest:
        expected = req.action.expected_state
        last_seen = "absent"
        for attempt in range(1, self.policy.attempts + 1):
            if attempt > 1 and self.policy.interval:
                await asyncio.sleep(self.policy.interval)
            req = replace(req, attempts=attempt)
            self._requests[req.unit] = req
            try:
                snapshot = await self.confirm_refresh()
            except (ExecutorError, ParseError) as e:
                logger.warning(
                    "confirmation refresh %d/%d for %s failed: %s",
                    attempt, self.policy.attempts, req.unit, e,
                )
                continue
            unit = snapshot.get(req.unit)
            if unit is not None:
                last_seen = f"{unit.active_state.value} ({unit.sub_state})"
                if unit.active_state is expected:
                    return self._resolve(req, RequestStatus.CONFIRMED)
        return self._resolve(
            req,
            RequestStatus.FAILED,
            f"{req.unit} did not become {expected.value} after "
            f"{self.policy.attempts} refresh(es); last seen {last_seen}",
            FailureKind.UNCONFIRMED,
        )
