from __future__ import annotations

import asyncio
import logging
from asyncio.subprocess import DEVNULL, PIPE
from contextlib import suppress
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from .errors import CommandFailed, CommandTimeout, ExecutableNotFound, SpawnError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    exit_code: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode(errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode(errors="replace")

    def check(self) -> "CommandResult":
        """Raise CommandFailed when the command exited non-zero."""
        if not self.ok:
            raise CommandFailed(self)
        return self


class CommandExecutor:
    """Run external commands as asyncio subprocesses.

    Output is captured whole and never interpreted here. A non-zero exit is
    a normal result; only spawn problems and timeouts raise.
    """

    def __init__(self, timeout: Optional[float] = None, env: Optional[Mapping[str, str]] = None) -> None:
        self.timeout = timeout
        self.env = dict(env) if env is not None else None
        self._live: set[asyncio.subprocess.Process] = set()

    @property
    def in_flight(self) -> int:
        return len(self._live)

    async def run(self, argv: Iterable[str]) -> CommandResult:
        args = tuple(argv)
        if not args:
            raise ValueError("empty argv")
        logger.debug("exec: %s", " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *args, stdin=DEVNULL, stdout=PIPE, stderr=PIPE, env=self.env
            )
        except FileNotFoundError as e:
            raise ExecutableNotFound(args[0]) from e
        except PermissionError as e:
            raise SpawnError(f"{args[0]}: permission denied") from e
        except OSError as e:
            raise SpawnError(f"{args[0]}: {e}") from e

        self._live.add(proc)
        try:
            if self.timeout is None:
                out, err = await proc.communicate()
            else:
                try:
                    out, err = await asyncio.wait_for(proc.communicate(), self.timeout)
                except asyncio.TimeoutError:
                    await self._reap(proc)
                    raise CommandTimeout(args, self.timeout) from None
        except asyncio.CancelledError:
            await self._reap(proc)
            raise
        except OSError as e:
            await self._reap(proc)
            raise SpawnError(f"{args[0]}: {e}") from e
        finally:
            self._live.discard(proc)

        rc = proc.returncode if proc.returncode is not None else -1
        logger.debug("exit %s: %s", rc, " ".join(args))
        return CommandResult(args, rc, out or b"", err or b"")

    async def check(self, argv: Iterable[str]) -> CommandResult:
        result = await self.run(argv)
        return result.check()

    @staticmethod
    async def _reap(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            with suppress(ProcessLookupError):
                proc.kill()
        # shielded: a second cancellation still lets the wait finish and reap
        await asyncio.shield(proc.wait())
