"""Parse ``systemctl list-units`` output into Unit records.

Two representations are understood:

- JSON (``--output=json``): a list of objects. systemctl's own keys
  (``unit``, ``load``, ``active``, ``sub``, ``description``), the model's
  field names and the D-Bus property names are all accepted.
- Plain columns (``--plain --no-legend``): ``UNIT LOAD ACTIVE SUB DESCRIPTION``
  separated by whitespace, the description running to end of line.

Records that cannot yield a valid unit name are skipped and reported as
warnings; the parse only fails when nothing at all could be extracted.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator, Union

from .errors import ParseError
from .models import ActiveState, ParseWarning, Unit

UNIT_TYPES = (
    "service",
    "socket",
    "target",
    "device",
    "mount",
    "automount",
    "swap",
    "timer",
    "path",
    "slice",
    "scope",
)

_UNIT_NAME_RE = re.compile(r"^[A-Za-z0-9:_.\\@-]+\.(?:%s)$" % "|".join(UNIT_TYPES))
_TOKEN_RE = re.compile(r"^[a-z][a-z0-9-]*$")
# Status bullets printed in front of failed/inactive units without --plain
_MARKERS = {"●", "○", "*", "×"}

_FIELD_KEYS = {
    "name": ("unit", "name", "Name", "Id", "id"),
    "description": ("description", "Description"),
    "load_state": ("load", "load_state", "LoadState"),
    "active_state": ("active", "active_state", "ActiveState"),
    "sub_state": ("sub", "sub_state", "SubState"),
}


@dataclass(frozen=True, slots=True)
class ParseResult:
    units: tuple[Unit, ...]
    warnings: tuple[ParseWarning, ...] = ()

    def __iter__(self) -> Iterator[Unit]:
        return iter(self.units)

    def __len__(self) -> int:
        return len(self.units)


def is_unit_name(name: str) -> bool:
    return bool(_UNIT_NAME_RE.match(name))


def _state_token(token: Any) -> str:
    if token is None:
        return "unknown"
    t = str(token).strip().lower()
    return t if _TOKEN_RE.match(t) else "unknown"


def _load_token(token: Any) -> str:
    if token is None:
        return "unknown"
    t = str(token).strip()
    return t or "unknown"


def _make_unit(name: str, description: Any, load: Any, active: Any, sub: Any) -> Unit:
    return Unit(
        name=name,
        description=str(description).strip() if description is not None else "",
        load_state=_load_token(load),
        active_state=ActiveState.from_token(None if active is None else str(active)),
        sub_state=_state_token(sub),
    )


class _Collector:
    def __init__(self) -> None:
        self.units: list[Unit] = []
        self.warnings: list[ParseWarning] = []
        self.candidates = 0
        self._seen: set[str] = set()

    def add(self, line: int, text: str, name: str, *fields: Any) -> None:
        self.candidates += 1
        if not name or not is_unit_name(name):
            self.warn(line, text, "invalid unit name")
            return
        if name in self._seen:
            self.warn(line, text, "duplicate unit name")
            return
        self._seen.add(name)
        self.units.append(_make_unit(name, *fields))

    def warn(self, line: int, text: str, reason: str) -> None:
        self.warnings.append(ParseWarning(line, text, reason))

    def result(self) -> ParseResult:
        if self.candidates and not self.units:
            first = self.warnings[0] if self.warnings else None
            raise ParseError(
                f"no valid unit records in {self.candidates} candidate(s)"
                + (f"; {first}" if first else "")
            )
        return ParseResult(tuple(self.units), tuple(self.warnings))


def _pick(record: dict, field: str) -> Any:
    for key in _FIELD_KEYS[field]:
        if key in record:
            return record[key]
    return None


def _parse_json(text: str) -> ParseResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON inventory: {e}") from e
    if isinstance(data, dict) and isinstance(data.get("units"), list):
        data = data["units"]
    if not isinstance(data, list):
        raise ParseError(f"expected a JSON list of units, got {type(data).__name__}")

    out = _Collector()
    for i, record in enumerate(data, start=1):
        if not isinstance(record, dict):
            out.candidates += 1
            out.warn(i, json.dumps(record)[:80], "record is not an object")
            continue
        name = _pick(record, "name")
        out.add(
            i,
            json.dumps(record, sort_keys=True)[:80],
            str(name).strip() if isinstance(name, str) else "",
            _pick(record, "description"),
            _pick(record, "load_state"),
            _pick(record, "active_state"),
            _pick(record, "sub_state"),
        )
    return out.result()


def _is_header(tokens: list[str]) -> bool:
    return [t.upper() for t in tokens[:4]] == ["UNIT", "LOAD", "ACTIVE", "SUB"]


def _parse_plain(text: str) -> ParseResult:
    out = _Collector()
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            # The legend follows the first blank line after the records
            if out.candidates:
                break
            continue
        tokens = line.split()
        if tokens[0] in _MARKERS:
            tokens = tokens[1:]
            line = line[1:].lstrip()
        if not tokens:
            continue
        if _is_header(tokens):
            continue
        parts = line.split(None, 4)
        parts += [None] * (5 - len(parts))
        name, load, active, sub, description = parts
        out.add(lineno, line, name or "", description, load, active, sub)
    return out.result()


def parse_units(raw: Union[bytes, str]) -> ParseResult:
    """Parse raw list-units output. Pure: equal input gives equal output."""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    stripped = text.lstrip()
    if not stripped:
        return ParseResult(())
    if stripped[0] in "[{":
        return _parse_json(stripped)
    return _parse_plain(text)
