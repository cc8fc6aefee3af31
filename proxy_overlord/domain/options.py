"""Typed per-command request options.

Each option-bearing command has a frozen dataclass whose fields declare the
option names it accepts (via the ``option`` field metadata). Raw options are
a case-insensitive name -> string mapping taken from request headers;
``from_options`` rejects names outside the command's vocabulary and converts
values with range/format checks.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

from proxy_overlord.domain.entities import (
    DEFAULT_LISTENING_PORTS,
    InstanceSettings,
    ShutdownManner,
)
from proxy_overlord.domain.exceptions import ProtocolError


def _option(name: str, **kwargs: Any) -> Any:
    return field(metadata={"option": name}, **kwargs)


def _parse_count(name: str, value: str, minimum: int) -> int:
    try:
        count = int(value.strip())
    except ValueError as e:
        raise ProtocolError(f"malformed {name} option value: {value!r}") from e
    if count < minimum:
        raise ProtocolError(f"{name} must be at least {minimum}, got {count}")
    return count


def _parse_ports(name: str, value: str) -> tuple[int, ...]:
    ports = []
    for item in value.split(","):
        port = _parse_count(name, item, 1)
        if port > 65535:
            raise ProtocolError(f"{name} contains an out-of-range port: {port}")
        ports.append(port)
    return tuple(ports)


def _parse_manner(name: str, value: str) -> ShutdownManner:
    try:
        return ShutdownManner(value.strip().lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in ShutdownManner)
        raise ProtocolError(
            f"unsupported {name} option value: {value!r}", hint=f"Use one of: {allowed}"
        ) from e


def _parse_path(name: str, value: str) -> str:
    path = value.strip()
    if not path.startswith("/"):
        raise ProtocolError(f"{name} must start with '/', got {value!r}")
    return path


def _parse_flag(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "yes", "true", "on"):
        return True
    if lowered in ("0", "no", "false", "off"):
        return False
    raise ProtocolError(f"malformed {name} option value: {value!r}")


class CommandOptions:
    """Base for typed command options."""

    _parsers: ClassVar[dict[str, Any]] = {}

    @classmethod
    def vocabulary(cls) -> frozenset[str]:
        """Option names (lowercase) this command accepts."""
        return frozenset(f.metadata["option"] for f in fields(cls))  # type: ignore[arg-type]

    @classmethod
    def from_options(cls, options: dict[str, str]) -> Any:
        """Build typed options from raw request options.

        Args:
            options: Option name -> raw value; names are matched case-insensitively.

        Returns:
            Instance of the concrete options class.

        Raises:
            ProtocolError: On an unknown option name or a malformed value.
        """
        by_option = {f.metadata["option"]: f for f in fields(cls)}  # type: ignore[arg-type]
        values: dict[str, Any] = {}
        for raw_name, raw_value in options.items():
            name = raw_name.lower()
            option_field = by_option.get(name)
            if option_field is None:
                raise ProtocolError(
                    f"unsupported option: {raw_name}",
                    hint=f"This command accepts: {', '.join(sorted(by_option)) or 'no options'}",
                )
            values[option_field.name] = cls._parsers[name](name, raw_value)
        return cls(**values)


@dataclass(frozen=True)
class NoOptions(CommandOptions):
    """Options of commands that accept none."""


@dataclass(frozen=True)
class ResetOptions(CommandOptions):
    """Options of the reset command."""

    listening_ports: tuple[int, ...] = _option("listening-ports", default=DEFAULT_LISTENING_PORTS)
    shutdown_manner: ShutdownManner = _option("shutdown-manner", default=ShutdownManner.IMMEDIATELY)
    workers: int = _option("worker-count", default=1)
    diskers: int = _option("disker-count", default=0)
    memory_checker: bool = _option("memory-checker-use", default=False)

    _parsers: ClassVar[dict[str, Any]] = {
        "listening-ports": _parse_ports,
        "shutdown-manner": _parse_manner,
        "worker-count": lambda name, value: _parse_count(name, value, 1),
        "disker-count": lambda name, value: _parse_count(name, value, 0),
        "memory-checker-use": _parse_flag,
    }

    def settings(self) -> InstanceSettings:
        return InstanceSettings(
            listening_ports=self.listening_ports,
            workers=self.workers,
            diskers=self.diskers,
            memory_checker=self.memory_checker,
        )


@dataclass(frozen=True)
class StopOptions(CommandOptions):
    """Options of the stop command."""

    shutdown_manner: ShutdownManner = _option("shutdown-manner", default=ShutdownManner.IMMEDIATELY)

    _parsers: ClassVar[dict[str, Any]] = {"shutdown-manner": _parse_manner}


@dataclass(frozen=True)
class ReconfigureOptions(CommandOptions):
    """Options of the reconfigure command; absent counts keep current settings."""

    workers: int | None = _option("worker-count", default=None)
    diskers: int | None = _option("disker-count", default=None)

    _parsers: ClassVar[dict[str, Any]] = {
        "worker-count": lambda name, value: _parse_count(name, value, 1),
        "disker-count": lambda name, value: _parse_count(name, value, 0),
    }


@dataclass(frozen=True)
class WaitActiveRequestsOptions(CommandOptions):
    """Options of the waitActiveRequests command."""

    request_path: str = _option("request-path", default="/")
    count: int = _option("active-requests-count", default=0)

    _parsers: ClassVar[dict[str, Any]] = {
        "request-path": _parse_path,
        "active-requests-count": lambda name, value: _parse_count(name, value, 0),
    }
