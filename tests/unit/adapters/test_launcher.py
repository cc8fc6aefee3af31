"""Unit tests for the proxy launcher."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from proxy_overlord.adapters.process.launcher import (
    LAUNCH_OUTPUT,
    PRIMING_OUTPUT,
    ProxyLauncher,
)
from proxy_overlord.domain.config import MemoryCheckerConfig, ProxyConfig
from proxy_overlord.domain.exceptions import ProcessError


@pytest.fixture
def launcher(proxy_config: ProxyConfig, memory_checker_config: MemoryCheckerConfig) -> ProxyLauncher:
    return ProxyLauncher(proxy_config, memory_checker_config)


class TestCommands:
    """Tests for command line construction."""

    def test_proxy_command(self, launcher: ProxyLauncher, prefix: Path) -> None:
        assert launcher.proxy_command() == [
            str(prefix / "sbin" / "squid"),
            "-C",
            "-f",
            str(prefix / "etc" / "squid-overlord.conf"),
        ]

    def test_extra_flags_follow_configuration(self, launcher: ProxyLauncher) -> None:
        assert launcher.proxy_command("-N", "-z")[-2:] == ["-N", "-z"]

    def test_memory_checker_not_requested(self, launcher: ProxyLauncher) -> None:
        cmd, wrapped = launcher.launch_command(use_memory_checker=False)

        assert not wrapped
        assert cmd == launcher.proxy_command()

    def test_missing_memory_checker_runs_unwrapped(self, launcher: ProxyLauncher) -> None:
        cmd, wrapped = launcher.launch_command(use_memory_checker=True)

        assert not wrapped
        assert cmd == launcher.proxy_command()

    def test_memory_checker_wraps_foreground_proxy(
        self, launcher: ProxyLauncher, prefix: Path
    ) -> None:
        with patch("shutil.which", return_value="/usr/bin/valgrind"):
            cmd, wrapped = launcher.launch_command(use_memory_checker=True)

        assert wrapped
        assert cmd[0] == "/usr/bin/valgrind"
        assert "--leak-check=full" in cmd
        assert f"--log-file={prefix / 'var' / 'logs' / 'valgrind-%p.log'}" in cmd
        assert cmd[-5:] == launcher.proxy_command("--foreground")

    def test_wrapped_proxy_keeps_smp_kids(self, launcher: ProxyLauncher) -> None:
        with patch("shutil.which", return_value="/usr/bin/valgrind"):
            cmd, _ = launcher.launch_command(use_memory_checker=True)

        assert "--foreground" in cmd
        assert "-N" not in cmd


class TestLaunch:
    """Tests for spawning the proxy."""

    def test_launch_detaches_and_captures_output(
        self, launcher: ProxyLauncher, prefix: Path
    ) -> None:
        process = MagicMock()
        process.poll.return_value = 0
        with patch("subprocess.Popen", return_value=process) as mock_popen, patch("time.sleep"):
            result = launcher.launch(use_memory_checker=False)

        assert result is process
        kwargs = mock_popen.call_args[1]
        assert kwargs["start_new_session"] is True
        assert kwargs["cwd"] == prefix
        assert (prefix / "var" / "logs" / LAUNCH_OUTPUT).exists()

    def test_instant_failure_raises(self, launcher: ProxyLauncher) -> None:
        process = MagicMock()
        process.poll.return_value = 1
        with patch("subprocess.Popen", return_value=process), patch("time.sleep"):
            with pytest.raises(ProcessError, match="exit code: 1"):
                launcher.launch(use_memory_checker=False)

    def test_still_running_launcher_is_fine(self, launcher: ProxyLauncher) -> None:
        process = MagicMock()
        process.poll.return_value = None
        with patch("subprocess.Popen", return_value=process), patch("time.sleep"):
            launcher.launch(use_memory_checker=False)

    def test_spawn_failure_raises(self, launcher: ProxyLauncher) -> None:
        with patch("subprocess.Popen", side_effect=PermissionError("denied")):
            with pytest.raises(ProcessError, match="cannot start the proxy"):
                launcher.launch(use_memory_checker=False)

    def test_missing_executable(self, tmp_path: Path, memory_checker_config: MemoryCheckerConfig) -> None:
        launcher = ProxyLauncher(ProxyConfig(prefix=tmp_path / "empty"), memory_checker_config)

        with pytest.raises(ProcessError, match="cannot find the proxy executable"):
            launcher.launch(use_memory_checker=False)


class TestPrimeCache:
    def test_runs_foreground_initialization(self, launcher: ProxyLauncher, prefix: Path) -> None:
        with patch("subprocess.run") as mock_run:
            launcher.prime_cache()

        cmd = mock_run.call_args[0][0]
        assert cmd == [*launcher.proxy_command(), "-N", "-z"]
        assert mock_run.call_args[1]["check"] is True
        assert (prefix / "var" / "logs" / PRIMING_OUTPUT).exists()

    def test_failed_initialization_raises(self, launcher: ProxyLauncher) -> None:
        error = subprocess.CalledProcessError(returncode=3, cmd=["squid", "-z"])
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(ProcessError, match="exit code: 3"):
                launcher.prime_cache()

    def test_hung_initialization_raises(self, launcher: ProxyLauncher) -> None:
        error = subprocess.TimeoutExpired(cmd=["squid", "-z"], timeout=300)
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(ProcessError, match="cache initialization failed"):
                launcher.prime_cache()
