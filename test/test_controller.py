import asyncio
from dataclasses import replace

import pytest

from svcdash.controller import ConfirmPolicy, ServiceController
from svcdash.errors import ExecutableNotFound, UnitBusy
from svcdash.models import ActiveState, ControlAction, FailureKind, RequestStatus
from svcdash.refresh import RefreshCoordinator
from svcdash.systemctl import Systemctl


def make_controller(executor, attempts=3, interval=0.0, timeout=None):
    changes = []
    systemctl = Systemctl()
    refresher = RefreshCoordinator(executor, systemctl)
    ctl = ServiceController(
        executor,
        systemctl,
        confirm_refresh=refresher.refresh,
        policy=ConfirmPolicy(attempts=attempts, interval=interval, timeout=timeout),
        on_change=changes.append,
    )
    return ctl, refresher, changes


@pytest.mark.asyncio
async def test_stop_is_confirmed_then_idle(fake_executor):
    ctl, refresher, changes = make_controller(fake_executor)

    req = ctl.request("foo.service", ControlAction.STOP)
    assert req.status is RequestStatus.PENDING
    assert ctl.is_busy("foo.service")
    assert ctl.overlay()["foo.service"].pending_action.value == "stopping"

    done = await ctl.wait("foo.service")
    assert done.status is RequestStatus.CONFIRMED
    assert done.attempts == 1
    assert refresher.snapshot.get("foo.service").active_state is ActiveState.INACTIVE
    assert fake_executor.control_calls("foo.service") == [
        ("systemctl", "--no-ask-password", "stop", "foo.service")
    ]
    assert [c.status for c in changes] == [RequestStatus.PENDING, RequestStatus.CONFIRMED]

    assert ctl.acknowledge("foo.service") is done
    assert ctl.get("foo.service") is None
    assert not ctl.is_busy("foo.service")


@pytest.mark.asyncio
async def test_second_request_while_pending_is_rejected(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    gate = fake_executor.gate("restart")

    first = ctl.request("bar.service", ControlAction.RESTART)
    await asyncio.sleep(0)
    with pytest.raises(UnitBusy):
        ctl.request("bar.service", ControlAction.RESTART)
    with pytest.raises(UnitBusy):
        ctl.request("bar.service", "stop")

    # the original request is untouched and still runs to completion
    assert ctl.get("bar.service") == first
    gate.set_result((0, b"", b""))
    fake_executor.set_state("bar.service", "active", "running")
    done = await ctl.wait("bar.service")
    assert done.status is RequestStatus.CONFIRMED
    assert len(fake_executor.control_calls("bar.service")) == 1


@pytest.mark.asyncio
async def test_requests_for_different_units_run_concurrently(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    gate_a = fake_executor.gate("start")
    gate_b = fake_executor.gate("stop")

    ctl.request("bar.service", ControlAction.START)
    ctl.request("foo.service", ControlAction.STOP)
    await asyncio.sleep(0)
    assert {r.unit for r in ctl.pending()} == {"bar.service", "foo.service"}

    fake_executor.set_state("foo.service", "inactive", "dead")
    gate_b.set_result((0, b"", b""))
    assert (await ctl.wait("foo.service")).status is RequestStatus.CONFIRMED
    assert ctl.is_busy("bar.service")

    fake_executor.set_state("bar.service", "active", "running")
    gate_a.set_result((0, b"", b""))
    assert (await ctl.wait("bar.service")).status is RequestStatus.CONFIRMED


@pytest.mark.asyncio
async def test_non_zero_exit_fails_with_manager_diagnostic(fake_executor):
    ctl, _, changes = make_controller(fake_executor)
    fake_executor.queue(
        "start", (4, b"", b"Failed to start bar.service: Access denied\n")
    )

    ctl.request("bar.service", ControlAction.START)
    done = await ctl.wait("bar.service")

    assert done.status is RequestStatus.FAILED
    assert "Access denied" in done.message
    assert done.failure is FailureKind.COMMAND
    # no confirmation refresh for a failed command
    assert not any(c[1] == "list-units" for c in fake_executor.calls)
    assert changes[-1].status is RequestStatus.FAILED


@pytest.mark.asyncio
async def test_spawn_error_fails_request(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    fake_executor.queue("start", ExecutableNotFound("systemctl"))

    ctl.request("bar.service", ControlAction.START)
    done = await ctl.wait("bar.service")
    assert done.status is RequestStatus.FAILED
    assert "not found" in done.message
    assert done.failure is FailureKind.SPAWN


@pytest.mark.asyncio
async def test_spawn_error_is_distinct_from_non_zero_exit(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    fake_executor.queue("start", ExecutableNotFound("systemctl"))
    fake_executor.queue("start", (1, b"", b"systemctl: executable not found"))

    ctl.request("bar.service", ControlAction.START)
    spawn = await ctl.wait("bar.service")
    ctl.request("bar.service", ControlAction.START)
    exited = await ctl.wait("bar.service")

    # same text, different cause
    assert spawn.message == exited.message
    assert spawn.failure is FailureKind.SPAWN
    assert exited.failure is FailureKind.COMMAND
    assert spawn != replace(exited, issued_at=spawn.issued_at)


@pytest.mark.asyncio
async def test_start_confirmed_only_when_active(fake_executor):
    ctl, _, _ = make_controller(fake_executor, attempts=3)
    fake_executor.frozen.add("bar.service")
    fake_executor.set_state("bar.service", "activating", "start")

    ctl.request("bar.service", ControlAction.START)
    done = await ctl.wait("bar.service")

    assert done.status is RequestStatus.FAILED
    assert done.attempts == 3
    assert "did not become active" in done.message
    assert done.failure is FailureKind.UNCONFIRMED
    assert "activating (start)" in done.message
    assert sum(1 for c in fake_executor.calls if c[1] == "list-units") == 3


@pytest.mark.asyncio
async def test_confirmation_on_a_later_attempt(fake_executor):
    ctl, _, _ = make_controller(fake_executor, attempts=3)
    fake_executor.frozen.add("bar.service")
    # first confirmation refresh still shows the unit inactive
    gate = fake_executor.gate("list-units")

    ctl.request("bar.service", ControlAction.START)
    for _ in range(5):
        await asyncio.sleep(0)
    gate.set_result((0, fake_executor.listing(), b""))
    fake_executor.set_state("bar.service", "active", "running")

    done = await ctl.wait("bar.service")
    assert done.status is RequestStatus.CONFIRMED
    assert done.attempts == 2


@pytest.mark.asyncio
async def test_failed_confirmation_refresh_consumes_an_attempt(fake_executor):
    ctl, _, _ = make_controller(fake_executor, attempts=2)
    fake_executor.queue("list-units", (1, b"", b"bus error"))

    ctl.request("bar.service", ControlAction.START)
    done = await ctl.wait("bar.service")
    assert done.status is RequestStatus.CONFIRMED
    assert done.attempts == 2


@pytest.mark.asyncio
async def test_confirmation_timeout(fake_executor):
    ctl, _, _ = make_controller(fake_executor, attempts=100, interval=0.05, timeout=0.2)
    fake_executor.frozen.add("bar.service")

    ctl.request("bar.service", ControlAction.START)
    done = await ctl.wait("bar.service")
    assert done.status is RequestStatus.FAILED
    assert "timed out" in done.message
    assert done.failure is FailureKind.UNCONFIRMED


@pytest.mark.asyncio
async def test_new_request_allowed_after_failure(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    fake_executor.queue("start", (1, b"", b"boom"))
    ctl.request("bar.service", ControlAction.START)
    assert (await ctl.wait("bar.service")).status is RequestStatus.FAILED

    # Failed does not retry on its own; a fresh request is accepted
    req = ctl.request("bar.service", ControlAction.START)
    assert req.status is RequestStatus.PENDING
    assert (await ctl.wait("bar.service")).status is RequestStatus.CONFIRMED


@pytest.mark.asyncio
async def test_acknowledge_ignores_pending(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    gate = fake_executor.gate("stop")
    ctl.request("foo.service", ControlAction.STOP)

    assert ctl.acknowledge("foo.service") is None
    assert ctl.is_busy("foo.service")
    gate.set_result((0, b"", b""))
    await ctl.drain()
    assert not ctl.is_busy("foo.service")


@pytest.mark.asyncio
async def test_aclose_cancels_outstanding(fake_executor):
    ctl, _, _ = make_controller(fake_executor)
    fake_executor.gate("stop")
    ctl.request("foo.service", ControlAction.STOP)
    await asyncio.sleep(0)

    await ctl.aclose()
    assert ctl.get("foo.service").status is RequestStatus.PENDING


def test_policy_validation():
    with pytest.raises(ValueError):
        ConfirmPolicy(attempts=0)
    with pytest.raises(ValueError):
        ConfirmPolicy(interval=-1)
