"""Port interfaces for the managed instance.

Defines the protocols the lifecycle controller depends on, so the process
launcher and the diagnostics source can be replaced in tests.
"""

from typing import Any, Protocol


class Launcher(Protocol):
    """Protocol for starting proxy processes."""

    def memory_checker_path(self) -> str | None:
        """Locate the memory checker executable.

        Returns:
            Executable path, or None if the memory checker is unavailable
        """
        ...

    def launch(self, use_memory_checker: bool) -> Any:
        """Spawn the proxy.

        Args:
            use_memory_checker: Wrap the proxy with the memory checker if available

        Raises:
            ProcessError: If the proxy cannot be started
        """
        ...

    def prime_cache(self) -> None:
        """Initialize the cache directory with a one-shot proxy run.

        Raises:
            ProcessError: If the initialization run fails
        """
        ...


class Diagnostics(Protocol):
    """Protocol for querying the running proxy about itself."""

    def kid_sections(self) -> list[int]:
        """Kids that reported in the per-kid report.

        Raises:
            DiagnosticsUnavailableError: If the report cannot be obtained
        """
        ...

    def active_request_uris(self) -> list[str]:
        """URIs of transactions in progress (excluding diagnostic queries).

        Raises:
            DiagnosticsUnavailableError: If the report cannot be obtained
        """
        ...

    def active_requests_for(self, path: str) -> int:
        """Number of transactions in progress for the given URI path.

        Raises:
            DiagnosticsUnavailableError: If the report cannot be obtained
        """
        ...
