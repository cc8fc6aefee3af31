"""Configuration I/O utilities.

Reads and writes the overlord's own TOML configuration, and installs the
pre-rendered proxy configuration text received with reset requests.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

from proxy_overlord.domain.config import OverlordConfig

logger = logging.getLogger(__name__)


def get_global_config_path() -> Path:
    """Get the path to the global config file.

    Respects XDG_CONFIG_HOME: $XDG_CONFIG_HOME/proxy-overlord/config.toml or
    ~/.config/proxy-overlord/config.toml.

    Returns:
        Path to the global config file (may not exist)
    """
    xdg_config = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg_config:
        return Path(xdg_config) / "proxy-overlord" / "config.toml"
    return Path.home() / ".config" / "proxy-overlord" / "config.toml"


def load_config_data(path: Path) -> dict[str, Any]:
    """Load raw TOML data from a config file.

    Args:
        path: Path to config.toml file

    Returns:
        Dictionary with parsed TOML data

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is malformed
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in config file: {e}") from e


def config_to_data(config: OverlordConfig) -> dict[str, Any]:
    """Convert configuration to TOML-serializable data."""
    return {
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "worker_timeout": config.server.worker_timeout,
        },
        "proxy": {
            "prefix": str(config.proxy.prefix),
            "host": config.proxy.host,
            "executable": str(config.proxy.executable),
            "pid_file": str(config.proxy.pid_file),
            "configuration_file": str(config.proxy.configuration_file),
            "log_dir": str(config.proxy.log_dir),
            "cache_dir": str(config.proxy.cache_dir),
            "general_log": config.proxy.general_log,
            "access_log": config.proxy.access_log,
        },
        "memory_checker": {
            "executable": config.memory_checker.executable,
            "options": list(config.memory_checker.options),
        },
    }


def save_config(config: OverlordConfig, path: Path) -> None:
    """Save configuration to a TOML file.

    Args:
        config: OverlordConfig to save
        path: Destination path for config.toml
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        tomli_w.dump(config_to_data(config), f)


def write_proxy_configuration(path: Path, text: str) -> None:
    """Replace the proxy configuration file with the given text.

    Args:
        path: Proxy configuration file
        text: Complete configuration text

    Raises:
        OSError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info(f"Created {len(text)}-byte {path}")
