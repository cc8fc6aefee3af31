"""Version information for the proxy overlord.

Reads the package version from the installed package metadata
(pyproject.toml).
"""

from importlib.metadata import version

__version__ = version("proxy-overlord")
