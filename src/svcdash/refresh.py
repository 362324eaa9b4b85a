from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .executor import CommandExecutor
from .models import InventorySnapshot
from .parser import ParseResult, parse_units
from .systemctl import Systemctl

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """Owns the authoritative InventorySnapshot.

    Every refresh takes the next sequence number. A result is applied only
    when its number is higher than the last applied one, so a slow, older
    refresh can never overwrite a newer snapshot.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        systemctl: Systemctl,
        parser: Callable[[bytes], ParseResult] = parse_units,
    ) -> None:
        self.executor = executor
        self.systemctl = systemctl
        self.parser = parser
        self._issued = 0
        self._applied = 0
        self._snapshot: InventorySnapshot | None = None

    @property
    def snapshot(self) -> InventorySnapshot | None:
        return self._snapshot

    @property
    def last_issued(self) -> int:
        return self._issued

    @property
    def last_applied(self) -> int:
        return self._applied

    def next_sequence(self) -> int:
        self._issued += 1
        return self._issued

    async def refresh(self, sequence: Optional[int] = None) -> InventorySnapshot:
        """Fetch, parse and (if still newest) apply an inventory snapshot.

        Returns the snapshot even when it was superseded; ``is_current()``
        tells the caller whether it was applied. Executor, command and parse
        errors propagate and leave the current snapshot untouched.
        """
        seq = sequence if sequence is not None else self.next_sequence()
        result = await self.executor.run(self.systemctl.list_units_argv())
        result.check()
        parsed = self.parser(result.stdout)
        for w in parsed.warnings:
            logger.warning("refresh #%d skipped %s", seq, w)
        snapshot = InventorySnapshot(
            sequence=seq, units=parsed.units, warnings=parsed.warnings, taken_at=time.time()
        )
        self.apply(snapshot)
        return snapshot

    def apply(self, snapshot: InventorySnapshot) -> bool:
        if snapshot.sequence <= self._applied:
            logger.debug(
                "discarding refresh #%d (already at #%d)", snapshot.sequence, self._applied
            )
            return False
        self._applied = snapshot.sequence
        self._snapshot = snapshot
        logger.debug("applied refresh #%d (%d units)", snapshot.sequence, len(snapshot))
        return True

    def is_current(self, snapshot: InventorySnapshot) -> bool:
        return self._snapshot is snapshot
