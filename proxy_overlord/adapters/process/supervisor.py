"""Managed process identification and signaling.

The supervisor is the only code that reads or removes the proxy's PID file
and the only code that sends signals to the proxy.
"""

import contextlib
import logging
import os
import signal
import socket
import time
from pathlib import Path

from proxy_overlord.domain.entities import Instance, ShutdownManner
from proxy_overlord.domain.exceptions import ProcessError
from proxy_overlord.shared.timeouts import OverlordTimeouts

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Identifies the managed instance via its PID file and signals it.

    Args:
        pid_file: PID file written by the managed process.
        pid_file_grace: Seconds to wait before rereading an empty PID file.
    """

    def __init__(
        self,
        pid_file: Path,
        pid_file_grace: float = OverlordTimeouts.PID_FILE_GRACE,
    ) -> None:
        self.pid_file = pid_file
        self.pid_file_grace = pid_file_grace

    def _read_pid_text(self) -> str | None:
        try:
            return self.pid_file.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ProcessError(f"cannot read {self.pid_file}: {e}") from e

    def current_instance(self) -> Instance | None:
        """Get the instance named by the PID file.

        Returns:
            The instance, or None if there is no PID file or it stays empty.

        Raises:
            ProcessError: If the PID file content is malformed.
        """
        text = self._read_pid_text()
        if text is None:
            return None

        if not text.strip():
            # the proxy may be between creating and writing the file,
            # or in its final exit sequence
            time.sleep(self.pid_file_grace)
            text = self._read_pid_text()
            if text is None or not text.strip():
                logger.info(f"Assuming no running instance: {self.pid_file} is empty")
                return None

        pid_str = text.strip()
        if not pid_str.isdigit() or int(pid_str) <= 0:
            raise ProcessError(f"malformed PID value in {self.pid_file}: {pid_str!r}")
        return Instance(pid=int(pid_str))

    def _reap_zombie(self, pid: int) -> None:
        """Attempt to reap a zombie process if it's our child.

        Args:
            pid: Process ID to reap
        """
        with contextlib.suppress(ChildProcessError, OSError):
            os.waitpid(pid, os.WNOHANG)

    def is_alive(self, instance: Instance) -> bool:
        """Check whether the instance process exists.

        A process that definitely does not exist has its stale PID file
        removed. When existence cannot be determined (e.g., the process
        belongs to another user), the instance is assumed alive.

        Args:
            instance: Instance to probe

        Returns:
            False only if the process definitely does not exist

        Raises:
            ProcessError: If the stale PID file cannot be removed
        """
        self._reap_zombie(instance.pid)
        try:
            # Send signal 0 (no-op, just checks if process exists)
            os.kill(instance.pid, 0)
            return True
        except ProcessLookupError:
            logger.info(f"Assuming {instance} has died; removing stale {self.pid_file}")
            self._remove_stale_pid_file(instance)
            return False
        except OSError as e:
            logger.warning(f"Assuming {instance} is running: {e}")
            return True

    def _remove_stale_pid_file(self, instance: Instance) -> None:
        try:
            self.pid_file.unlink(missing_ok=True)
        except OSError as e:
            raise ProcessError(f"cannot remove stale {self.pid_file}: {e}") from e

        if self.current_instance() == instance:
            raise ProcessError(
                f"{self.pid_file} still names dead {instance} after removal"
            )

    def _check_signalable(self, instance: Instance) -> None:
        if not self.is_alive(instance):
            raise ProcessError(f"cannot signal {instance}: process does not exist")

    def _deliver(self, instance: Instance, sig: signal.Signals, whole_group: bool) -> bool:
        target = f"process group of {instance}" if whole_group else str(instance)
        logger.info(f"Sending {sig.name} to {target}")
        try:
            if whole_group:
                os.killpg(instance.pid, sig)
            else:
                os.kill(instance.pid, sig)
        except ProcessLookupError:
            logger.info(f"{instance} disappeared before receiving {sig.name}")
            return False
        except OSError as e:
            raise ProcessError(f"cannot send {sig.name} to {target}: {e}") from e
        return True

    def send_signal(self, instance: Instance, manner: ShutdownManner) -> bool:
        """Ask the instance to shut down in the given manner.

        Args:
            instance: Live instance to signal
            manner: Shutdown manner; IMMEDIATELY targets the process group

        Returns:
            True if the signal was delivered, False if the receiver is gone

        Raises:
            ProcessError: If the instance cannot be signaled
        """
        if not self.is_alive(instance):
            logger.info(f"{instance} is gone before receiving {manner.signal.name}")
            return False
        return self._deliver(instance, manner.signal, manner.targets_group)

    def request_reconfiguration(self, instance: Instance) -> bool:
        """Send the reconfiguration signal (SIGHUP) to the instance.

        Returns:
            True if the signal was delivered, False if the receiver vanished

        Raises:
            ProcessError: If the instance is not alive or cannot be signaled
        """
        self._check_signalable(instance)
        return self._deliver(instance, signal.SIGHUP, whole_group=False)


def accepts_connections(
    host: str, port: int, timeout: float = OverlordTimeouts.PROBE_CONNECT
) -> bool:
    """Check whether something accepts TCP connections at host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
