import json
import logging
import os
import shlex
import sys
from dataclasses import dataclass
from typing import Optional


def is_tty() -> bool:
    try:
        return sys.stdout.isatty()
    except Exception:
        return False


def json_line(obj: dict) -> str:
    return json.dumps(obj, separators=(",", ":"))


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


def env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _resolve_systemctl() -> tuple[str, ...]:
    """systemctl command prefix. Honors SVCDASH_SYSTEMCTL (may hold arguments)."""
    prefer = os.getenv("SVCDASH_SYSTEMCTL", "systemctl").strip() or "systemctl"
    parts = shlex.split(prefer)
    if len(parts) == 1 and os.path.sep not in parts[0]:
        import shutil

        which = shutil.which(parts[0])
        return (which or parts[0],)
    return tuple(parts)


@dataclass(frozen=True)
class Settings:
    systemctl: tuple[str, ...] = ("systemctl",)
    user: bool = False
    unit_type: str = "service"
    json_output: bool = True
    confirm_attempts: int = 5
    confirm_interval: float = 1.0
    confirm_timeout: Optional[float] = None
    command_timeout: Optional[float] = 30.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        command_timeout = env_float("SVCDASH_COMMAND_TIMEOUT", 30.0)
        attempts = env_int("SVCDASH_CONFIRM_ATTEMPTS", 5)
        if attempts < 1:
            raise ValueError("SVCDASH_CONFIRM_ATTEMPTS must be at least 1")
        interval = env_float("SVCDASH_CONFIRM_INTERVAL", 1.0) or 0.0
        if interval < 0:
            raise ValueError("SVCDASH_CONFIRM_INTERVAL must not be negative")
        confirm_timeout = env_float("SVCDASH_CONFIRM_TIMEOUT", None)
        if confirm_timeout is not None and confirm_timeout < 0:
            raise ValueError("SVCDASH_CONFIRM_TIMEOUT must not be negative")
        return cls(
            systemctl=_resolve_systemctl(),
            user=env_flag("SVCDASH_USER", False),
            unit_type=os.getenv("SVCDASH_UNIT_TYPE", "service").strip() or "service",
            json_output=env_flag("SVCDASH_JSON", True),
            confirm_attempts=attempts,
            confirm_interval=interval,
            # 0 disables either timeout
            confirm_timeout=confirm_timeout or None,
            command_timeout=command_timeout or None,
            log_level=os.getenv("SVCDASH_LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
        )


def configure_logging(level: str, handler: Optional[logging.Handler] = None) -> None:
    handlers = [handler] if handler is not None else None
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
