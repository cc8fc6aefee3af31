"""Launching the managed proxy process.

Builds the proxy command line (optionally wrapped by the memory checker),
spawns it detached from the overlord, and runs the one-shot cache
initialization. Readiness after launch is the lifecycle controller's job.
"""

import logging
import shutil
import subprocess
import time
from pathlib import Path

from proxy_overlord.domain.config import MemoryCheckerConfig, ProxyConfig
from proxy_overlord.domain.exceptions import ProcessError
from proxy_overlord.shared.timeouts import OverlordTimeouts

logger = logging.getLogger(__name__)

LAUNCH_OUTPUT = "squid.out"
PRIMING_OUTPUT = "squid-z.out"
MEMORY_CHECKER_LOG_PATTERN = "valgrind-%p.log"


class ProxyLauncher:
    """Starts proxy processes for one installation.

    Args:
        proxy: Proxy installation configuration.
        memory_checker: Memory checker configuration.
    """

    def __init__(self, proxy: ProxyConfig, memory_checker: MemoryCheckerConfig) -> None:
        self.proxy = proxy
        self.memory_checker = memory_checker

    def memory_checker_path(self) -> str | None:
        """Locate the memory checker executable, or None if it is unavailable."""
        return shutil.which(self.memory_checker.executable)

    def proxy_command(self, *flags: str) -> list[str]:
        """Proxy command line using the overlord-maintained configuration.

        Args:
            *flags: Extra proxy flags appended after the configuration file.
        """
        return [
            str(self.proxy.executable_path),
            "-C",  # prefer "raw" errors
            "-f",
            str(self.proxy.configuration_path),
            *flags,
        ]

    def launch_command(self, use_memory_checker: bool) -> tuple[list[str], bool]:
        """Full launch command line.

        Args:
            use_memory_checker: Whether the memory checker was requested.

        Returns:
            Command and whether it is wrapped by the memory checker.
        """
        if use_memory_checker:
            checker = self.memory_checker_path()
            if checker is not None:
                log_file = self.proxy.log_path / MEMORY_CHECKER_LOG_PATTERN
                wrapper = [checker, *self.memory_checker.options, f"--log-file={log_file}"]
                # stay attached to the memory checker but keep SMP kids ("-N" disables them)
                return [*wrapper, *self.proxy_command("--foreground")], True
            logger.warning(
                f"Memory checker {self.memory_checker.executable!r} requested but not found; "
                "running the proxy unwrapped"
            )
        return self.proxy_command(), False

    def _check_executable(self) -> None:
        if not self.proxy.executable_path.exists():
            raise ProcessError(
                f"cannot find the proxy executable at {self.proxy.executable_path}",
                hint="Check the [proxy] prefix and executable settings",
            )

    def _output_file(self, name: str) -> Path:
        self.proxy.log_path.mkdir(parents=True, exist_ok=True)
        return self.proxy.log_path / name

    def launch(self, use_memory_checker: bool) -> subprocess.Popen:
        """Spawn the proxy.

        The process runs in its own session so signals aimed at its process
        group never reach the overlord.

        Args:
            use_memory_checker: Whether to wrap the proxy with the memory checker.

        Returns:
            The spawned launcher process

        Raises:
            ProcessError: If the process cannot be spawned or fails instantly
        """
        self._check_executable()
        cmd, wrapped = self.launch_command(use_memory_checker)
        output_path = self._output_file(LAUNCH_OUTPUT)
        logger.info(f"Running: {' '.join(cmd)}")

        try:
            with output_path.open("ab") as output:
                process = subprocess.Popen(
                    cmd,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    cwd=self.proxy.prefix,
                    start_new_session=True,
                )
        except OSError as e:
            raise ProcessError(f"cannot start the proxy: {e}") from e

        self._check_instant_failure(process, output_path)
        if wrapped:
            logger.info(f"Proxy launched under the memory checker (PID {process.pid})")
        return process

    def _check_instant_failure(self, process: subprocess.Popen, output_path: Path) -> None:
        """Check if the launcher failed immediately after spawn.

        A daemonizing proxy's launcher exits with status zero; any other
        status means the proxy did not start.

        Raises:
            ProcessError: If the launcher exited with an error
        """
        time.sleep(OverlordTimeouts.PROBE_LAUNCH_FAILURE)
        exit_code = process.poll()
        if exit_code is not None and exit_code != 0:
            raise ProcessError(
                f"proxy failed to start (exit code: {exit_code})",
                hint=f"Check the proxy output at: {output_path}",
            )

    def prime_cache(self) -> None:
        """Run the proxy once to create its cache directory structures.

        Raises:
            ProcessError: If the initialization run fails
        """
        self._check_executable()
        cmd = self.proxy_command("-N", "-z")
        output_path = self._output_file(PRIMING_OUTPUT)
        logger.info(f"Running: {' '.join(cmd)}")
        try:
            with output_path.open("ab") as output:
                subprocess.run(
                    cmd,
                    stdout=output,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    cwd=self.proxy.prefix,
                    check=True,
                    timeout=OverlordTimeouts.PROBE_CACHE_PRIMING,
                )
        except subprocess.CalledProcessError as e:
            raise ProcessError(
                f"cache initialization failed (exit code: {e.returncode})",
                hint=f"Check the proxy output at: {output_path}",
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProcessError(f"cache initialization failed: {e}") from e
