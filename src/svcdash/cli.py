import asyncio
import dataclasses
import json
import logging
from typing import List, Optional

import typer

from . import __version__
from .engine import ServiceEngine
from .errors import ExecutorError, UnitBusy
from .models import ControlAction, FailureKind, RequestStatus
from .util import Settings, configure_logging, is_tty, json_line
from .view import StatusCategory, ViewOrder

logger = logging.getLogger(__name__)


app = typer.Typer(
    name="svcdash",
    add_completion=False,
    no_args_is_help=True,
    help=(
        "Inspect and control systemd service units.\n\n"
        "Usage:\n"
        "  svcdash ls [--filter TEXT] [--status CAT]   List units\n"
        "  svcdash status <unit>                     Show unit detail\n"
        "  svcdash start|stop|restart|reload <unit>  Control a unit and wait for confirmation\n"
        "  svcdash dash                              Open Textual dashboard\n"
        "  svcdash <unit> <action>                   Unit-first shorthand"
    ),
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback()
def _root(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit",
        is_eager=True,
    ),
    user: bool = typer.Option(False, "--user", help="Talk to the user service manager"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log debug output to stderr"),
):
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    try:
        settings = Settings.from_env()
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    if user:
        settings = dataclasses.replace(settings, user=True)
    if verbose:
        settings = dataclasses.replace(settings, log_level="DEBUG")
    configure_logging(settings.log_level)
    logger.debug("settings: %s", settings)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> Settings:
    if isinstance(ctx.obj, Settings):
        return ctx.obj
    return Settings.from_env()


def _fail(msg: str, code: int = 1):
    typer.echo(msg, err=True)
    raise typer.Exit(code=code)


_DONE = {
    ControlAction.START: "started",
    ControlAction.STOP: "stopped",
    ControlAction.RESTART: "restarted",
    ControlAction.RELOAD: "reloaded",
}


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def version():
    """Show CLI version (semver)."""
    typer.echo(__version__)


@app.command("ls")
def ls(
    ctx: typer.Context,
    filter: str = typer.Option("", "--filter", "-f", help="Case-insensitive substring of the unit name"),
    status: List[StatusCategory] = typer.Option([], "--status", "-s", help="Status category (repeatable)"),
    sort: ViewOrder = typer.Option(ViewOrder.SOURCE, "--sort", help="Row order"),
    as_json: bool = typer.Option(False, "--json", help="Print a JSON list"),
):
    """List units. Prints: unit\\tload\\tactive\\tsub\\tdescription"""
    settings = _settings(ctx)

    async def _ls():
        engine = ServiceEngine(settings)
        snapshot = await engine.refresh()
        if snapshot is None:
            _fail(f"refresh failed: {engine.last_error}")
        engine.filters.set_query(filter)
        engine.filters.set_statuses(status)
        engine.filters.set_order(sort)
        return engine.view(), snapshot

    rows, snapshot = asyncio.run(_ls())
    if as_json:
        typer.echo(
            json.dumps(
                [
                    {
                        "name": r.unit.name,
                        "description": r.unit.description,
                        "load_state": r.unit.load_state,
                        "active_state": r.unit.active_state.value,
                        "sub_state": r.unit.sub_state,
                    }
                    for r in rows
                ],
                indent=2,
            )
        )
        return
    for r in rows:
        u = r.unit
        typer.echo(f"{u.name}\t{u.load_state}\t{u.active_state.value}\t{u.sub_state}\t{u.description}")
    if snapshot.warnings:
        typer.echo(f"{len(snapshot.warnings)} record(s) skipped", err=True)


@app.command()
def status(ctx: typer.Context, unit: str):
    """Show detailed status for a unit."""
    settings = _settings(ctx)

    async def _status():
        return await ServiceEngine(settings).status(unit)

    try:
        st = asyncio.run(_status())
    except ExecutorError as e:
        _fail(str(e))
    typer.echo(f"name: {st.name}")
    if st.description:
        typer.echo(f"description: {st.description}")
    typer.echo(f"loaded: {st.load_state}" + (f" ({st.unit_file_state})" if st.unit_file_state else ""))
    typer.echo(f"state: {st.active_state.value} ({st.sub_state})")
    typer.echo(f"pid: {st.pid or 0}")
    if st.active_enter_timestamp:
        typer.echo(f"since: {st.active_enter_timestamp}")


def _control(ctx: typer.Context, unit: str, action: ControlAction) -> None:
    settings = _settings(ctx)

    async def _run():
        engine = ServiceEngine(settings)
        try:
            engine.request_action(unit, action)
        except UnitBusy as e:
            _fail(str(e))
        return await engine.wait_for(unit)

    req = asyncio.run(_run())
    if req is None or req.status is not RequestStatus.CONFIRMED:
        msg = req.message if req is not None else "request lost"
        kind = req.failure if req is not None and req.failure else FailureKind.INTERNAL
        if not is_tty():
            print(
                json_line(
                    {"name": unit, "action": action.value, "status": "failed", "failure": kind.value, "message": msg}
                )
            )
        if kind is FailureKind.SPAWN:
            _fail(f"could not run systemctl for {action.value} {unit}: {msg}")
        _fail(f"{action.value} {unit} failed: {msg}")
    typer.echo(f"{_DONE[action]} {unit}")
    if not is_tty():
        print(json_line({"name": unit, "action": action.value, "status": req.status.value, "attempts": req.attempts}))


@app.command()
def start(ctx: typer.Context, unit: str):
    """Start a unit and wait until it is active."""
    _control(ctx, unit, ControlAction.START)


@app.command()
def stop(ctx: typer.Context, unit: str):
    """Stop a unit and wait until it is inactive."""
    _control(ctx, unit, ControlAction.STOP)


@app.command()
def restart(ctx: typer.Context, unit: str):
    """Restart a unit (starts if inactive)."""
    _control(ctx, unit, ControlAction.RESTART)


@app.command()
def reload(ctx: typer.Context, unit: str):
    """Ask a unit to reload its configuration."""
    _control(ctx, unit, ControlAction.RELOAD)


@app.command()
def dash(
    ctx: typer.Context,
    refresh_every: float = typer.Option(10.0, "--refresh-every", help="Seconds between background refreshes (0 disables)"),
):
    """Open the svcdash dashboard (Textual UI)."""
    try:
        import textual  # noqa: F401
    except Exception:
        _fail("Dashboard requires 'textual'. Install it with 'pip install svcdash[dash]'.")

    # Lazy import to avoid importing Textual at module import time
    try:
        from .dash.app import run_dash
    except Exception as e:
        _fail(f"Failed to load dashboard: {e}")

    run_dash(_settings(ctx), refresh_every=refresh_every)
