"""Exception taxonomy shared by the executor, parser and controller."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .executor import CommandResult


class SvcdashError(Exception):
    """Base class for every error raised by svcdash."""


class ExecutorError(SvcdashError):
    """The external command could not produce a result."""


class ExecutableNotFound(ExecutorError):
    def __init__(self, executable: str) -> None:
        super().__init__(f"{executable}: executable not found")
        self.executable = executable


class SpawnError(ExecutorError):
    """Permission denied or another OS-level failure around the child process."""


class CommandTimeout(ExecutorError):
    def __init__(self, argv: tuple[str, ...], timeout: float) -> None:
        super().__init__(f"{' '.join(argv)}: timed out after {timeout:g}s")
        self.argv = argv
        self.timeout = timeout


class CommandFailed(ExecutorError):
    """The command ran and exited non-zero; ``result`` keeps its output."""

    def __init__(self, result: CommandResult) -> None:
        detail = result.stderr_text.strip() or f"exit status {result.exit_code}"
        super().__init__(detail)
        self.result = result

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class ParseError(SvcdashError):
    """No unit records could be extracted from the inventory output."""


class UnitBusy(SvcdashError):
    def __init__(self, unit: str, action: str) -> None:
        super().__init__(f"{unit} is busy ({action} in progress)")
        self.unit = unit
        self.action = action
