from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .models import ActiveState, ControlAction, UnitStatus
from .util import Settings

SHOW_PROPERTIES = (
    "Id",
    "Description",
    "LoadState",
    "ActiveState",
    "SubState",
    "MainPID",
    "UnitFileState",
    "ActiveEnterTimestamp",
)


@dataclass(frozen=True)
class Systemctl:
    """Builds argv for the systemctl commands svcdash issues."""

    command: tuple[str, ...] = ("systemctl",)
    user: bool = False
    unit_type: str = "service"
    json_output: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "Systemctl":
        return cls(
            command=tuple(settings.systemctl),
            user=settings.user,
            unit_type=settings.unit_type,
            json_output=settings.json_output,
        )

    def _base(self) -> list[str]:
        argv = list(self.command)
        if self.user:
            argv.append("--user")
        return argv

    def list_units_argv(self) -> list[str]:
        argv = self._base() + [
            "list-units",
            f"--type={self.unit_type}",
            "--all",
            "--no-pager",
            "--plain",
            "--no-legend",
        ]
        if self.json_output:
            argv.append("--output=json")
        return argv

    def control_argv(self, action: ControlAction, unit: str) -> list[str]:
        # --no-ask-password: report privilege failures instead of prompting
        return self._base() + ["--no-ask-password", ControlAction(action).value, unit]

    def show_argv(self, unit: str, properties: Sequence[str] = SHOW_PROPERTIES) -> list[str]:
        return self._base() + ["show", unit, f"--property={','.join(properties)}", "--no-pager"]


def parse_show(raw: bytes | str) -> dict[str, str]:
    """Parse ``Key=Value`` lines from ``systemctl show``."""
    text = raw.decode(errors="replace") if isinstance(raw, bytes) else raw
    props: dict[str, str] = {}
    for line in text.splitlines():
        if "=" in line:
            key, value = line.split("=", 1)
            props[key.strip()] = value.strip()
    return props


def unit_status_from_show(unit: str, raw: bytes | str) -> UnitStatus:
    props = parse_show(raw)
    pid_str = props.get("MainPID", "")
    pid = int(pid_str) if pid_str.isdigit() and pid_str != "0" else None
    return UnitStatus(
        name=props.get("Id") or unit,
        description=props.get("Description", ""),
        load_state=props.get("LoadState") or "unknown",
        active_state=ActiveState.from_token(props.get("ActiveState")),
        sub_state=props.get("SubState") or "unknown",
        pid=pid,
        unit_file_state=props.get("UnitFileState") or None,
        active_enter_timestamp=props.get("ActiveEnterTimestamp") or None,
    )
