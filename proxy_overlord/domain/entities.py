"""Domain entities and value objects.

Core models describing the managed proxy instance and what the overlord
observes about it. Pure dataclasses and enums with no infrastructure
dependencies.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from proxy_overlord.domain.exceptions import LifecycleError

DEFAULT_LISTENING_PORTS: tuple[int, ...] = (3128,)


class ShutdownManner(str, Enum):
    """How forcefully the managed instance is asked to shut down.

    - GRACEFULLY: SIGTERM to the master process (waits for transactions)
    - URGENTLY: SIGINT to the master process (skips the shutdown lifetime)
    - IMMEDIATELY: SIGKILL to the whole process group
    """

    GRACEFULLY = "gracefully"
    URGENTLY = "urgently"
    IMMEDIATELY = "immediately"

    @property
    def signal(self) -> signal.Signals:
        """The signal that implements this manner."""
        return _MANNER_SIGNALS[self]

    @property
    def targets_group(self) -> bool:
        """Whether the signal goes to the entire process group."""
        return self is ShutdownManner.IMMEDIATELY

    @classmethod
    def default(cls) -> ShutdownManner:
        """The most forceful manner."""
        return cls.IMMEDIATELY


_MANNER_SIGNALS = {
    ShutdownManner.GRACEFULLY: signal.SIGTERM,
    ShutdownManner.URGENTLY: signal.SIGINT,
    ShutdownManner.IMMEDIATELY: signal.SIGKILL,
}


class LifecycleState(str, Enum):
    """Lifecycle controller states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RECONFIGURING = "reconfiguring"
    STOPPING = "stopping"


@dataclass(frozen=True)
class Instance:
    """A managed proxy instance, identified by the PID from the PID file."""

    pid: int

    def __str__(self) -> str:
        return f"instance {self.pid}"


@dataclass(frozen=True)
class InstanceSettings:
    """Deployment parameters the overlord needs to verify transitions.

    Attributes:
        listening_ports: Ports the proxy must accept connections on.
        workers: Number of worker kids.
        diskers: Number of disk I/O helper kids.
        memory_checker: Run the proxy under the memory checker when available.

    Raises:
        ValueError: If counts or ports are out of range.
    """

    listening_ports: tuple[int, ...] = DEFAULT_LISTENING_PORTS
    workers: int = 1
    diskers: int = 0
    memory_checker: bool = False

    def __post_init__(self) -> None:
        if not self.listening_ports:
            raise ValueError("at least one listening port is required")
        for port in self.listening_ports:
            if not 0 < port < 65536:
                raise ValueError(f"listening port out of range: {port}")
        if self.workers < 1:
            raise ValueError(f"workers must be positive, got {self.workers}")
        if self.diskers < 0:
            raise ValueError(f"diskers cannot be negative, got {self.diskers}")

    @property
    def kids(self) -> int:
        return self.workers + self.diskers

    @property
    def has_coordinator(self) -> bool:
        """A coordinator process exists only when there is more than one kid."""
        return self.kids > 1

    @property
    def expected_kid_sections(self) -> int:
        """Closed per-kid sections a fully registered instance reports.

        The coordinator aggregates the report and contributes no section
        of its own.
        """
        return self.kids

    @property
    def expected_reconfigurations(self) -> int:
        """Reconfiguration markers logged by one successful reconfiguration."""
        return self.kids + (1 if self.has_coordinator else 0)

    @property
    def expected_acceptances(self) -> int:
        """Accepting-connections markers logged by one successful reconfiguration."""
        return self.workers * len(self.listening_ports)


@dataclass(frozen=True)
class LogMarkerCounts:
    """Counts of lifecycle markers found in the general log.

    Attributes:
        reconfigurations: Lines announcing a reconfiguration.
        acceptances: Lines announcing that a listening socket accepts connections.
    """

    reconfigurations: int = 0
    acceptances: int = 0

    def since(self, baseline: LogMarkerCounts) -> LogMarkerCounts:
        """Delta between this sample and an earlier baseline.

        Raises:
            LifecycleError: If either count decreased (log rotated or corrupted).
        """
        if (
            self.reconfigurations < baseline.reconfigurations
            or self.acceptances < baseline.acceptances
        ):
            raise LifecycleError(
                f"log marker counts decreased from {baseline} to {self}",
                hint="The general log was rotated or truncated during the operation",
            )
        return LogMarkerCounts(
            reconfigurations=self.reconfigurations - baseline.reconfigurations,
            acceptances=self.acceptances - baseline.acceptances,
        )


@dataclass
class HealthReport:
    """Accumulated health of the managed instance.

    Attributes:
        problems: Human-readable problem descriptions, in discovery order.
        extras: Additional facts (e.g., transaction counts).
    """

    problems: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return not self.problems

    def to_dict(self) -> dict[str, Any]:
        return {"problems": list(self.problems), **self.extras}
