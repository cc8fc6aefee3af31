"""Lifecycle control of the managed proxy instance.

The controller composes process supervisor actions with readiness goals so
that every operation returns only after the transition is observed to have
completed, not merely requested.

State machine:
    STOPPED -> STARTING -> RUNNING             (start)
    RUNNING -> STOPPING -> STOPPED             (stop)
    RUNNING -> RECONFIGURING -> RUNNING        (reconfigure)

Mutating operations are serialized by an explicit guard; a conflicting
request fails immediately instead of interleaving with the one in progress.
"""

import contextlib
import logging
import os
import platform
import sys
import threading
from collections.abc import Callable, Iterator
from dataclasses import replace
from typing import Any

import psutil

from proxy_overlord.adapters.cachemgr.client import CacheManagerClient
from proxy_overlord.adapters.process.supervisor import ProcessSupervisor, accepts_connections
from proxy_overlord.core.health import HealthReporter
from proxy_overlord.core.log_events import count_markers
from proxy_overlord.core.readiness import Escape, ReadinessProber
from proxy_overlord.core.rotation import rotate_directory
from proxy_overlord.domain.config import ProxyConfig
from proxy_overlord.domain.entities import (
    HealthReport,
    Instance,
    InstanceSettings,
    LifecycleState,
    LogMarkerCounts,
    ShutdownManner,
)
from proxy_overlord.domain.exceptions import LifecycleError
from proxy_overlord.ports.instance import Diagnostics, Launcher
from proxy_overlord.shared.config_io import write_proxy_configuration

logger = logging.getLogger(__name__)

DiagnosticsFactory = Callable[[str, int], Diagnostics]
PortProbe = Callable[[str, int], bool]


class LifecycleController:
    """Owns the single managed instance and drives its transitions.

    Args:
        proxy: Proxy installation configuration
        supervisor: Reads the PID file and signals the instance
        launcher: Starts proxy processes
        health: Builds health reports
        prober: Polls readiness goals
        diagnostics_factory: Creates a diagnostics source for host and port
        port_probe: Checks whether host:port accepts connections
    """

    def __init__(
        self,
        proxy: ProxyConfig,
        supervisor: ProcessSupervisor,
        launcher: Launcher,
        health: HealthReporter,
        prober: ReadinessProber | None = None,
        diagnostics_factory: DiagnosticsFactory = CacheManagerClient,
        port_probe: PortProbe = accepts_connections,
    ) -> None:
        self.proxy = proxy
        self.supervisor = supervisor
        self.launcher = launcher
        self.health_reporter = health
        self.prober = prober or ReadinessProber()
        self.diagnostics_factory = diagnostics_factory
        self.port_probe = port_probe

        self.state = LifecycleState.STOPPED
        self.settings = InstanceSettings()
        self.instance: Instance | None = None
        self._guard = threading.Lock()

    # ------------------------------------------------------------------
    # state helpers
    # ------------------------------------------------------------------

    def _transition(self, state: LifecycleState) -> None:
        if state is not self.state:
            logger.info(f"Proxy state: {self.state.value} -> {state.value}")
            self.state = state

    def live_instance(self) -> Instance | None:
        """The instance named by the PID file, if its process exists."""
        instance = self.supervisor.current_instance()
        if instance is not None and not self.supervisor.is_alive(instance):
            instance = None
        self.instance = instance
        return instance

    def boot(self) -> LifecycleState:
        """Derive the initial state from the PID file and listening port."""
        instance = self.live_instance()
        if instance is None:
            self._transition(LifecycleState.STOPPED)
            return self.state

        port = self.settings.listening_ports[0]
        listening = self.port_probe(self.proxy.host, port)
        logger.info(
            f"Found running {instance}; port {port} accepts connections: "
            f"{'yes' if listening else 'no'}"
        )
        self._transition(LifecycleState.RUNNING)
        return self.state

    def _resync(self) -> None:
        """Re-derive the state after a failed operation."""
        try:
            running = self.live_instance() is not None
        except Exception as e:
            logger.warning(f"Cannot determine proxy state after a failed operation: {e}")
            return
        self._transition(LifecycleState.RUNNING if running else LifecycleState.STOPPED)

    @contextlib.contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._guard.acquire(blocking=False):
            raise LifecycleError(
                f"cannot {operation}: another lifecycle operation is in progress",
                hint="Wait for the previous request to finish",
            )
        try:
            yield
        except Exception:
            self._resync()
            raise
        finally:
            self._guard.release()

    def _prober(self, escape: Escape | None) -> ReadinessProber:
        return self.prober.with_escape(escape)

    def _diagnostics(self) -> Diagnostics:
        return self.diagnostics_factory(self.proxy.host, self.settings.listening_ports[0])

    def _require_running(self, operation: str) -> Instance:
        instance = self.live_instance()
        if instance is None:
            self._transition(LifecycleState.STOPPED)
            raise LifecycleError(f"cannot {operation}: the proxy is not running")
        return instance

    # ------------------------------------------------------------------
    # readiness goals
    # ------------------------------------------------------------------

    def _kids_registered(self, diagnostics: Diagnostics, expected: int) -> bool:
        kids = diagnostics.kid_sections()
        if len(kids) > expected:
            raise LifecycleError(
                f"found {len(kids)} kid reports (kids {kids}) but expected {expected}"
            )
        return len(kids) == expected

    def _reconfigured(self, baseline: LogMarkerCounts, expected: LogMarkerCounts) -> bool:
        delta = count_markers(self.proxy.general_log_path).since(baseline)
        if delta == expected:
            return True
        if (
            delta.reconfigurations > expected.reconfigurations
            or delta.acceptances > expected.acceptances
        ):
            raise LifecycleError(
                f"unexpected reconfiguration activity: saw {delta} but expected {expected}",
                hint="The proxy may have restarted instead of reconfiguring",
            )
        return False

    # ------------------------------------------------------------------
    # transitions (callers hold the guard)
    # ------------------------------------------------------------------

    def _start(self, settings: InstanceSettings, prober: ReadinessProber) -> None:
        if self.live_instance() is not None:
            raise LifecycleError(f"cannot start: {self.instance} is already running")

        self.settings = settings
        self._transition(LifecycleState.STARTING)
        self.launcher.launch(settings.memory_checker)

        prober.wait_for("running proxy", lambda: self.live_instance() is not None)
        for port in settings.listening_ports:
            prober.wait_for(
                f"proxy listening on port {port}",
                lambda port=port: self.port_probe(self.proxy.host, port),
            )
        if settings.kids > 1:
            diagnostics = self._diagnostics()
            expected = settings.expected_kid_sections
            prober.wait_for(
                f"{expected} kids to register",
                lambda: self._kids_registered(diagnostics, expected),
            )

        self._transition(LifecycleState.RUNNING)
        logger.info(f"Proxy is running ({self.instance})")

    def _stop(self, manner: ShutdownManner, prober: ReadinessProber) -> None:
        instance = self.live_instance()
        if instance is None:
            logger.warning("Proxy is not running")
            self._transition(LifecycleState.STOPPED)
            return

        self._transition(LifecycleState.STOPPING)
        logger.info(f"Shutting {instance} down {manner.value}...")
        if not self.supervisor.send_signal(instance, manner):
            logger.info(f"{instance} exited on its own")

        prober.wait_for(f"{instance} to exit", lambda: self.live_instance() is None)
        self._transition(LifecycleState.STOPPED)
        logger.info("Proxy is stopped")

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def start(self, settings: InstanceSettings | None = None, escape: Escape | None = None) -> None:
        """Start the proxy and wait until it is fully up.

        Args:
            settings: Deployment parameters (default: current settings)
            escape: Optional condition that aborts readiness waits

        Raises:
            LifecycleError: If the proxy is already running or misbehaves
            ProcessError: If the proxy cannot be launched
            DiagnosticsUnavailableError: If kid registration cannot be checked
        """
        with self._exclusive("start"):
            self._start(settings or self.settings, self._prober(escape))

    def stop(
        self, manner: ShutdownManner = ShutdownManner.IMMEDIATELY, escape: Escape | None = None
    ) -> None:
        """Stop the proxy and wait until its process is gone.

        Stopping a stopped proxy only logs a warning.
        """
        with self._exclusive("stop"):
            self._stop(manner, self._prober(escape))

    def restart(self, escape: Escape | None = None) -> None:
        """Stop (if running) and start again with the current settings."""
        with self._exclusive("restart"):
            prober = self._prober(escape)
            self._stop(ShutdownManner.default(), prober)
            self._start(self.settings, prober)

    def reconfigure(
        self,
        workers: int | None = None,
        diskers: int | None = None,
        escape: Escape | None = None,
    ) -> None:
        """Make the running proxy reread its configuration.

        Completion is detected by counting log markers: the markers are
        sampled before signaling so none emitted after the signal are
        missed, and both counts must grow by exactly the expected amounts.

        Args:
            workers: New worker count (default: unchanged)
            diskers: New disker count (default: unchanged)
            escape: Optional condition that aborts readiness waits

        Raises:
            LifecycleError: If the proxy is not running or reacts unexpectedly
        """
        with self._exclusive("reconfigure"):
            prober = self._prober(escape)
            instance = self._require_running("reconfigure")
            self._transition(LifecycleState.RUNNING)

            settings = replace(
                self.settings,
                workers=self.settings.workers if workers is None else workers,
                diskers=self.settings.diskers if diskers is None else diskers,
            )
            baseline = count_markers(self.proxy.general_log_path)
            expected = LogMarkerCounts(
                reconfigurations=settings.expected_reconfigurations,
                acceptances=settings.expected_acceptances,
            )

            self._transition(LifecycleState.RECONFIGURING)
            self.settings = settings
            if not self.supervisor.request_reconfiguration(instance):
                raise LifecycleError(f"{instance} exited before it could be reconfigured")

            prober.wait_for(
                "proxy reconfiguration",
                lambda: self._reconfigured(baseline, expected),
            )
            self._transition(LifecycleState.RUNNING)
            logger.info("Proxy is reconfigured")

    def reset(
        self,
        settings: InstanceSettings,
        configuration: str,
        manner: ShutdownManner = ShutdownManner.IMMEDIATELY,
        escape: Escape | None = None,
    ) -> None:
        """Restart the proxy from scratch with a new configuration.

        Stops the current instance (if any), installs the configuration,
        rotates the log and cache directories, initializes the cache, and
        starts a new instance.

        Args:
            settings: Deployment parameters of the new instance
            configuration: Complete proxy configuration text
            manner: How to stop the current instance
            escape: Optional condition that aborts readiness waits
        """
        with self._exclusive("reset"):
            prober = self._prober(escape)
            if self.live_instance() is not None:
                self._stop(manner, prober)
            write_proxy_configuration(self.proxy.configuration_path, configuration)
            rotate_directory(self.proxy.log_path)
            rotate_directory(self.proxy.cache_path)
            self.launcher.prime_cache()
            self._start(settings, prober)

    def finish_caching(self, escape: Escape | None = None) -> None:
        """Wait until the proxy has no transactions in progress."""
        self._require_running("wait for caching to finish")
        diagnostics = self._diagnostics()
        self._prober(escape).wait_for(
            "all transactions to finish",
            lambda: not diagnostics.active_request_uris(),
        )

    def wait_active_requests(self, path: str, count: int, escape: Escape | None = None) -> None:
        """Wait until exactly ``count`` transactions for ``path`` are in progress."""
        self._require_running("wait for active requests")
        diagnostics = self._diagnostics()
        self._prober(escape).wait_for(
            f"{count} active requests for {path}",
            lambda: diagnostics.active_requests_for(path) == count,
        )

    # ------------------------------------------------------------------
    # reports
    # ------------------------------------------------------------------

    def health(self) -> HealthReport:
        """Fresh health report; incomplete diagnostics matter once stopped."""
        return self.health_reporter.check(
            require_complete_diagnostics=self.state is LifecycleState.STOPPED
        )

    def access_records(self) -> list[str]:
        """Access log records of the current instance."""
        path = self.proxy.access_log_path
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\n") for line in f if line.strip()]

    def execution_environment(self) -> dict[str, Any]:
        """Facts about the host the overlord and the proxy run on."""
        memory = psutil.virtual_memory()
        checker = self.launcher.memory_checker_path()
        return {
            "platform": platform.platform(),
            "python": sys.version.split()[0],
            "cpu_count": os.cpu_count(),
            "total_memory_bytes": memory.total,
            "available_memory_bytes": memory.available,
            "proxy_executable": str(self.proxy.executable_path),
            "proxy_executable_exists": self.proxy.executable_path.exists(),
            "memory_checker": checker,
            "memory_checker_available": checker is not None,
            "state": self.state.value,
        }
