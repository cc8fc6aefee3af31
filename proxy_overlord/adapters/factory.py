"""Factory classes for component instantiation.

This module centralizes the wiring of the overlord's components, keeping the
CLI layer free from direct adapter construction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from proxy_overlord.adapters.config.toml_config_provider import TomlConfigProvider
    from proxy_overlord.adapters.process.supervisor import ProcessSupervisor
    from proxy_overlord.adapters.server.listener import OverlordServer
    from proxy_overlord.core.lifecycle import LifecycleController
    from proxy_overlord.domain.config import OverlordConfig


class ConfigFactory:
    """Factory for configuration-related components."""

    def create_config_provider(self) -> TomlConfigProvider:
        from proxy_overlord.adapters.config.toml_config_provider import TomlConfigProvider

        return TomlConfigProvider()


class OverlordFactory:
    """Factory for the lifecycle controller and the listener.

    Args:
        config: Complete overlord configuration.
    """

    def __init__(self, config: OverlordConfig) -> None:
        self._config = config

    def create_supervisor(self) -> ProcessSupervisor:
        from proxy_overlord.adapters.process.supervisor import ProcessSupervisor

        return ProcessSupervisor(self._config.proxy.pid_path)

    def create_controller(self) -> LifecycleController:
        """Create a controller for the configured proxy installation."""
        from proxy_overlord.adapters.process.launcher import ProxyLauncher
        from proxy_overlord.core.health import HealthReporter
        from proxy_overlord.core.lifecycle import LifecycleController

        proxy = self._config.proxy
        return LifecycleController(
            proxy=proxy,
            supervisor=self.create_supervisor(),
            launcher=ProxyLauncher(proxy, self._config.memory_checker),
            health=HealthReporter(proxy.log_path, proxy.access_log_path),
        )

    def create_server(self, controller: LifecycleController | None = None) -> OverlordServer:
        """Create the listener, serving the given (or a new) controller."""
        from proxy_overlord.adapters.server.handlers import RequestHandler
        from proxy_overlord.adapters.server.listener import OverlordServer

        server_config = self._config.server
        return OverlordServer(
            host=server_config.host,
            port=server_config.port,
            handler=RequestHandler(controller or self.create_controller()),
            worker_timeout=server_config.worker_timeout,
        )
