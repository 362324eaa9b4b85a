from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping, Optional

from .models import (
    ActiveState,
    ControlRequest,
    InventorySnapshot,
    PendingAction,
    RequestStatus,
    Unit,
)


class StatusCategory(str, Enum):
    RUNNING = "running"
    EXITED = "exited"
    DEAD = "dead"
    ACTIVE = "active"
    INACTIVE = "inactive"
    FAILED = "failed"
    PENDING = "pending"


class ViewOrder(str, Enum):
    SOURCE = "source"
    NAME = "name"
    STATE = "state"


@dataclass(frozen=True, slots=True)
class EffectiveState:
    active_state: ActiveState
    sub_state: str
    pending_action: PendingAction | None = None

    @property
    def label(self) -> str:
        if self.pending_action is not None:
            return self.pending_action.value
        return f"{self.active_state.value} ({self.sub_state})"

    def categories(self) -> frozenset[StatusCategory]:
        if self.pending_action is not None:
            return frozenset({StatusCategory.PENDING})
        sub = self.sub_state.lower()
        cats = set()
        if self.active_state is ActiveState.ACTIVE:
            cats.add(StatusCategory.ACTIVE)
            if sub == "running":
                cats.add(StatusCategory.RUNNING)
        elif self.active_state is ActiveState.INACTIVE:
            cats.add(StatusCategory.INACTIVE)
        elif self.active_state is ActiveState.FAILED:
            cats.add(StatusCategory.FAILED)
        if sub == "exited":
            cats.add(StatusCategory.EXITED)
        elif sub == "dead":
            cats.add(StatusCategory.DEAD)
        return frozenset(cats)


@dataclass(frozen=True, slots=True)
class ViewRow:
    unit: Unit
    effective_state: EffectiveState
    request: ControlRequest | None = None

    @property
    def name(self) -> str:
        return self.unit.name

    @property
    def pending_action(self) -> PendingAction | None:
        return self.effective_state.pending_action

    @property
    def failure(self) -> str | None:
        if self.request is not None and self.request.status is RequestStatus.FAILED:
            return self.request.message or "failed"
        return None


@dataclass(frozen=True, slots=True)
class FilterState:
    query: str = ""
    statuses: frozenset[StatusCategory] = field(default_factory=frozenset)
    order: ViewOrder = ViewOrder.SOURCE

    def matches_text(self, unit: Unit) -> bool:
        q = self.query.strip().lower()
        if not q:
            return True
        return q in unit.name.lower()

    def matches_status(self, state: EffectiveState) -> bool:
        if not self.statuses:
            return True
        return bool(self.statuses & state.categories())


_STATE_RANK = {
    ActiveState.FAILED: 0,
    ActiveState.ACTIVATING: 1,
    ActiveState.DEACTIVATING: 2,
    ActiveState.ACTIVE: 3,
    ActiveState.INACTIVE: 4,
    ActiveState.UNKNOWN: 5,
}


def effective_state(unit: Unit, request: ControlRequest | None) -> EffectiveState:
    pending = request.pending_action if request is not None else None
    return EffectiveState(unit.active_state, unit.sub_state, pending)


def derive(
    snapshot: Optional[InventorySnapshot],
    overlay: Mapping[str, ControlRequest],
    filters: FilterState,
) -> tuple[ViewRow, ...]:
    """Visible rows for the given inventory, request overlay and filters.

    Pure: only the arguments are read. Units missing from the snapshot are
    never shown, whatever the overlay says about them.
    """
    if snapshot is None:
        return ()
    rows = []
    for unit in snapshot.units:
        if not filters.matches_text(unit):
            continue
        request = overlay.get(unit.name)
        state = effective_state(unit, request)
        if not filters.matches_status(state):
            continue
        rows.append(ViewRow(unit, state, request))

    if filters.order is ViewOrder.NAME:
        rows.sort(key=lambda r: r.unit.name.lower())
    elif filters.order is ViewOrder.STATE:
        rows.sort(
            key=lambda r: (
                r.pending_action is None,
                _STATE_RANK[r.unit.active_state],
                r.unit.sub_state,
            )
        )
    return tuple(rows)


class ViewStateStore:
    """Owns the FilterState; mutated only by explicit user input."""

    def __init__(self, filters: Optional[FilterState] = None) -> None:
        self._filters = filters or FilterState()

    @property
    def filters(self) -> FilterState:
        return self._filters

    def set_query(self, query: str) -> FilterState:
        self._filters = replace(self._filters, query=query)
        return self._filters

    def toggle_status(self, category: StatusCategory | str) -> FilterState:
        cat = StatusCategory(category)
        statuses = set(self._filters.statuses)
        if cat in statuses:
            statuses.remove(cat)
        else:
            statuses.add(cat)
        self._filters = replace(self._filters, statuses=frozenset(statuses))
        return self._filters

    def set_statuses(self, categories: Iterable[StatusCategory | str]) -> FilterState:
        cats = frozenset(StatusCategory(c) for c in categories)
        self._filters = replace(self._filters, statuses=cats)
        return self._filters

    def set_order(self, order: ViewOrder | str) -> FilterState:
        self._filters = replace(self._filters, order=ViewOrder(order))
        return self._filters

    def clear(self) -> FilterState:
        self._filters = FilterState(order=self._filters.order)
        return self._filters

    def derive(
        self, snapshot: Optional[InventorySnapshot], overlay: Mapping[str, ControlRequest]
    ) -> tuple[ViewRow, ...]:
        return derive(snapshot, overlay, self._filters)
