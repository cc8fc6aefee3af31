"""TOML-based configuration provider.

Config loading priority (highest to lowest):
1. Explicit file (--config)
2. Global: ~/.config/proxy-overlord/config.toml
3. Built-in defaults

Command-line overrides are applied on top by the CLI.
"""

import logging
from pathlib import Path

from proxy_overlord.domain.config import OverlordConfig
from proxy_overlord.shared.config_io import get_global_config_path, load_config_data

logger = logging.getLogger(__name__)


class TomlConfigProvider:
    """Configuration provider that loads from TOML files.

    A missing or invalid global config is ignored with a warning; an
    explicitly requested file must exist and be valid.
    """

    def load(self, path: Path | None = None) -> OverlordConfig:
        """Load configuration.

        Args:
            path: Explicit config file, or None to use the global config

        Returns:
            OverlordConfig with file values applied over defaults

        Raises:
            FileNotFoundError: If an explicit config file doesn't exist
            ValueError: If an explicit config file is malformed or invalid
        """
        config = OverlordConfig.default()

        if path is not None:
            data = load_config_data(path)
            logger.debug("Loaded config from %s", path)
            return OverlordConfig.from_partial(config, data)

        global_path = get_global_config_path()
        if global_path.exists():
            try:
                data = load_config_data(global_path)
                config = OverlordConfig.from_partial(config, data)
                logger.debug("Loaded global config from %s", global_path)
            except (FileNotFoundError, ValueError, TypeError) as e:
                logger.warning(
                    "Failed to parse global config at %s: %s. Ignoring global config.",
                    global_path,
                    e,
                )
        return config
