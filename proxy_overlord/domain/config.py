"""Config domain models for the overlord.

Configuration is stored in a TOML file and describes where the overlord
listens and where the managed proxy installation lives. This module defines
the validated configuration state.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the overlord's own listener.

    Attributes:
        host: Address to listen on.
        port: TCP port to listen on (default: 13128).
        worker_timeout: Seconds a single request may take before it is cancelled.

    Raises:
        ValueError: If port is out of range or worker_timeout is not positive.
    """

    host: str = "0.0.0.0"
    port: int = 13128
    worker_timeout: float = 60.0

    def __post_init__(self) -> None:
        """Validate server config after initialization."""
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.worker_timeout <= 0:
            raise ValueError(
                f"worker_timeout must be positive, got {self.worker_timeout}"
            )


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the managed proxy installation.

    Relative paths are resolved against the installation prefix.

    Attributes:
        prefix: Installation prefix (e.g., /usr/local/squid).
        host: Address the proxy listens on, used for readiness probes.
        executable: Proxy executable.
        pid_file: PID file maintained by the proxy.
        configuration_file: Configuration file maintained by the overlord.
        log_dir: Directory with the proxy's logs (rotated on reset).
        cache_dir: Cache directory (rotated and primed on reset).
        general_log: Name of the general log inside log_dir.
        access_log: Name of the access log inside log_dir.

    Raises:
        ValueError: If prefix is empty.
    """

    prefix: Path = Path("/usr/local/squid")
    host: str = "127.0.0.1"
    executable: Path = Path("sbin/squid")
    pid_file: Path = Path("var/run/squid.pid")
    configuration_file: Path = Path("etc/squid-overlord.conf")
    log_dir: Path = Path("var/logs")
    cache_dir: Path = Path("var/cache")
    general_log: str = "cache.log"
    access_log: str = "access.log"

    def __post_init__(self) -> None:
        """Validate proxy config after initialization."""
        if not str(self.prefix):
            raise ValueError("prefix must not be empty")

    def resolve(self, path: Path) -> Path:
        """Resolve a configured path against the installation prefix."""
        return path if path.is_absolute() else self.prefix / path

    @property
    def executable_path(self) -> Path:
        return self.resolve(self.executable)

    @property
    def pid_path(self) -> Path:
        return self.resolve(self.pid_file)

    @property
    def configuration_path(self) -> Path:
        return self.resolve(self.configuration_file)

    @property
    def log_path(self) -> Path:
        return self.resolve(self.log_dir)

    @property
    def cache_path(self) -> Path:
        return self.resolve(self.cache_dir)

    @property
    def general_log_path(self) -> Path:
        return self.log_path / self.general_log

    @property
    def access_log_path(self) -> Path:
        return self.log_path / self.access_log


@dataclass(frozen=True)
class MemoryCheckerConfig:
    """Configuration for the optional memory-checking wrapper.

    Attributes:
        executable: Memory checker executable, looked up on PATH when relative.
        options: Extra command-line options placed before the proxy command.
    """

    executable: str = "valgrind"
    options: list[str] = field(
        default_factory=lambda: [
            "--leak-check=full",
            "--show-leak-kinds=definite",
            "--trace-children=yes",
            "--num-callers=50",
        ]
    )


@dataclass(frozen=True)
class OverlordConfig:
    """Complete overlord configuration.

    Attributes:
        server: Listener configuration
        proxy: Managed proxy installation configuration
        memory_checker: Memory checker configuration
    """

    server: ServerConfig = field(default_factory=ServerConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    memory_checker: MemoryCheckerConfig = field(default_factory=MemoryCheckerConfig)

    @staticmethod
    def default() -> "OverlordConfig":
        """Create a config with all default values."""
        return OverlordConfig(
            server=ServerConfig(),
            proxy=ProxyConfig(),
            memory_checker=MemoryCheckerConfig(),
        )

    @staticmethod
    def from_partial(base: "OverlordConfig", data: dict[str, Any]) -> "OverlordConfig":
        """Apply section-level overrides from raw config data.

        Unknown sections and keys are ignored. Path-typed keys are converted
        to Path. Validation runs for every section that changed.

        Args:
            base: Configuration to start from
            data: Raw data (e.g., parsed TOML)

        Returns:
            New OverlordConfig with overrides applied

        Raises:
            ValueError: If an override fails validation
        """
        sections = {}
        for section_field in fields(base):
            section = getattr(base, section_field.name)
            overrides = data.get(section_field.name)
            if not isinstance(overrides, dict):
                continue
            known = {f.name: f for f in fields(section)}
            converted = {}
            for key, value in overrides.items():
                if key not in known:
                    continue
                if isinstance(getattr(section, key), Path):
                    value = Path(value)
                converted[key] = value
            sections[section_field.name] = replace(section, **converted)
        return replace(base, **sections)
