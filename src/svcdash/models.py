from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


class ActiveState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    DEACTIVATING = "deactivating"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def from_token(cls, token: str | None) -> "ActiveState":
        """Map a manager token to a state; unrecognized tokens become UNKNOWN."""
        if not token:
            return cls.UNKNOWN
        try:
            return cls(token.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class PendingAction(str, Enum):
    STARTING = "starting"
    STOPPING = "stopping"
    RESTARTING = "restarting"
    RELOADING = "reloading"


class ControlAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    RELOAD = "reload"

    @property
    def pending(self) -> PendingAction:
        return _PENDING[self]

    @property
    def expected_state(self) -> ActiveState:
        """active_state a confirmation refresh must show for this action."""
        if self is ControlAction.STOP:
            return ActiveState.INACTIVE
        return ActiveState.ACTIVE


_PENDING = {
    ControlAction.START: PendingAction.STARTING,
    ControlAction.STOP: PendingAction.STOPPING,
    ControlAction.RESTART: PendingAction.RESTARTING,
    ControlAction.RELOAD: PendingAction.RELOADING,
}


class RequestStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a request ended Failed."""

    SPAWN = "spawn"  # systemctl could not be run at all
    COMMAND = "command"  # ran and exited non-zero
    UNCONFIRMED = "unconfirmed"
    INTERNAL = "internal"


@dataclass(frozen=True, slots=True)
class Unit:
    name: str
    description: str = ""
    load_state: str = "unknown"
    active_state: ActiveState = ActiveState.UNKNOWN
    sub_state: str = "unknown"

    @property
    def is_active(self) -> bool:
        return self.active_state is ActiveState.ACTIVE

    @property
    def is_running(self) -> bool:
        return self.sub_state == "running"


@dataclass(frozen=True, slots=True)
class ParseWarning:
    line: int
    text: str
    reason: str

    def __str__(self) -> str:
        return f"record {self.line}: {self.reason}: {self.text!r}"


@dataclass(frozen=True, slots=True)
class InventorySnapshot:
    sequence: int
    units: tuple[Unit, ...]
    warnings: tuple[ParseWarning, ...] = ()
    taken_at: float = field(default_factory=time.time)
    _by_name: dict[str, Unit] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {u.name: u for u in self.units})

    def get(self, name: str) -> Unit | None:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self.units)


@dataclass(frozen=True, slots=True)
class ControlRequest:
    unit: str
    action: ControlAction
    issued_at: float = field(default_factory=time.time)
    status: RequestStatus = RequestStatus.PENDING
    attempts: int = 0
    message: str | None = None
    failure: FailureKind | None = None

    @property
    def pending_action(self) -> PendingAction | None:
        if self.status is RequestStatus.PENDING:
            return self.action.pending
        return None

    @property
    def resolved(self) -> bool:
        return self.status is not RequestStatus.PENDING


@dataclass(frozen=True, slots=True)
class UnitStatus:
    """Detail for one unit as reported by ``systemctl show``."""

    name: str
    description: str = ""
    load_state: str = "unknown"
    active_state: ActiveState = ActiveState.UNKNOWN
    sub_state: str = "unknown"
    pid: int | None = None
    unit_file_state: str | None = None
    active_enter_timestamp: str | None = None

    @property
    def active(self) -> bool:
        return self.active_state is ActiveState.ACTIVE

    @property
    def running(self) -> bool:
        return self.sub_state == "running"


# Engine lifecycle events, delivered to front-end subscribers.


@dataclass(frozen=True, slots=True)
class RefreshCompleted:
    snapshot: InventorySnapshot
    applied: bool


@dataclass(frozen=True, slots=True)
class RefreshFailed:
    sequence: int
    error: Exception


@dataclass(frozen=True, slots=True)
class ControlUpdated:
    request: ControlRequest


Event = Union[RefreshCompleted, RefreshFailed, ControlUpdated]
