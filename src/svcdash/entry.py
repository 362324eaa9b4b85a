import sys
from typing import List

from .cli import app
from .parser import is_unit_name


SUBCOMMANDS = {
    "ls",
    "status",
    "start",
    "stop",
    "restart",
    "reload",
    "dash",
    "version",
}

ACTIONS = {"start", "stop", "restart", "reload", "status"}


def rewrite_argv(argv: List[str]) -> List[str]:
    """Turn ``<unit> <action>`` into ``<action> <unit>``; other argv is kept.

    Global options before the unit are preserved. A unit given alone maps to
    ``status``.
    """
    opts = []
    rest = list(argv)
    while rest and rest[0].startswith("-"):
        opts.append(rest.pop(0))
    if not rest or rest[0] in SUBCOMMANDS or not is_unit_name(rest[0]):
        return list(argv)
    unit = rest[0]
    action = rest[1] if len(rest) > 1 else "status"
    if action not in ACTIONS:
        # Unknown action after a unit name; let Typer print help
        return list(argv)
    return opts + [action, unit] + rest[2:]


def main(argv: List[str] | None = None):
    if argv is None:
        argv = sys.argv[1:]

    # Handle version early to avoid Click group error
    if argv and argv[0] in {"--version", "-V"}:
        from . import __version__
        print(__version__)
        return

    return app(args=rewrite_argv(argv), prog_name="svcdash")
