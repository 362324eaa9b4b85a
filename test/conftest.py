import asyncio
import json
import shlex
import sys
from collections import defaultdict
from pathlib import Path

import pytest

from svcdash.executor import CommandResult
from svcdash.util import Settings

FAKE_SYSTEMCTL = Path(__file__).with_name("fake_systemctl.py")

TRANSITIONS = {
    "start": ("active", "running"),
    "restart": ("active", "running"),
    "reload": ("active", "running"),
    "stop": ("inactive", "dead"),
}


def unit(name, active="active", sub="running", load="loaded", description=""):
    return {"unit": name, "load": load, "active": active, "sub": sub, "description": description}


class FakeExecutor:
    """Scripted stand-in for CommandExecutor.

    By default list-units returns ``inventory`` as JSON and control verbs
    succeed and move the unit to the expected state. ``queue(verb, outcome)``
    overrides the next call for that verb; an outcome is an
    ``(exit_code, stdout, stderr)`` tuple, an exception to raise, or a
    future to await (resolving to either).
    """

    def __init__(self, inventory=()):
        self.inventory = {u["unit"]: dict(u) for u in inventory}
        self.calls = []
        self.queued = defaultdict(list)
        self.frozen = set()

    def queue(self, verb, outcome):
        self.queued[verb].append(outcome)

    def gate(self, verb):
        fut = asyncio.get_running_loop().create_future()
        self.queue(verb, fut)
        return fut

    def set_state(self, name, active, sub):
        self.inventory[name]["active"] = active
        self.inventory[name]["sub"] = sub

    def listing(self):
        return json.dumps(list(self.inventory.values())).encode()

    def control_calls(self, unit_name=None):
        return [
            c for c in self.calls
            if c[-2] in TRANSITIONS and (unit_name is None or c[-1] == unit_name)
        ]

    async def run(self, argv):
        argv = tuple(argv)
        self.calls.append(argv)
        words = [a for a in argv[1:] if not a.startswith("-")]
        verb = words[0]
        target = words[1] if len(words) > 1 else None
        if self.queued[verb]:
            outcome = self.queued[verb].pop(0)
            if isinstance(outcome, asyncio.Future):
                outcome = await outcome
            if isinstance(outcome, BaseException):
                raise outcome
            rc, out, err = outcome
            return CommandResult(argv, rc, out, err)
        if verb == "list-units":
            return CommandResult(argv, 0, self.listing(), b"")
        if verb in TRANSITIONS:
            if target in self.inventory and target not in self.frozen:
                self.set_state(target, *TRANSITIONS[verb])
            return CommandResult(argv, 0, b"", b"")
        return CommandResult(argv, 1, b"", f"unknown verb {verb}".encode())


@pytest.fixture
def inventory():
    return [
        unit("sshd.service", description="OpenSSH server daemon"),
        unit("sshd-keygen.service", "inactive", "exited", description="OpenSSH host keys"),
        unit("cron.service", description="Regular background program processing daemon"),
        unit("foo.service", description="Foo"),
        unit("bar.service", "inactive", "dead", description="Bar"),
    ]


@pytest.fixture
def fake_executor(inventory):
    return FakeExecutor(inventory)


@pytest.fixture
def settings():
    return Settings(confirm_attempts=3, confirm_interval=0.0, command_timeout=None)


@pytest.fixture
def fake_systemctl(tmp_path, monkeypatch, inventory):
    """Route SVCDASH_SYSTEMCTL to the fake script with a fresh state file."""
    state = tmp_path / "units.json"
    state.write_text(
        json.dumps(
            {
                "units": inventory,
                "denied": ["bar.service"],
                "stuck": ["cron.service"],
            }
        )
    )
    monkeypatch.setenv("FAKE_SYSTEMCTL_STATE", str(state))
    monkeypatch.setenv(
        "SVCDASH_SYSTEMCTL", f"{shlex.quote(sys.executable)} {shlex.quote(str(FAKE_SYSTEMCTL))}"
    )
    monkeypatch.setenv("SVCDASH_CONFIRM_INTERVAL", "0")
    monkeypatch.setenv("SVCDASH_CONFIRM_ATTEMPTS", "2")
    return state
