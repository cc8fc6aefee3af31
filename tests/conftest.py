"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from proxy_overlord.domain.config import MemoryCheckerConfig, ProxyConfig

# ============================================================================
# Fake Proxy Installation
# ============================================================================
# Tests never run a real proxy. The fixtures below lay out an installation
# prefix with the directories the overlord reads and writes.


@pytest.fixture
def prefix(tmp_path: Path) -> Path:
    """Installation prefix with sbin/, etc/, var/logs/, and var/run/."""
    root = tmp_path / "squid"
    for sub in ("sbin", "etc", "var/logs", "var/cache", "var/run"):
        (root / sub).mkdir(parents=True)
    executable = root / "sbin" / "squid"
    executable.write_text("#!/bin/sh\nexit 0\n")
    executable.chmod(0o755)
    return root


@pytest.fixture
def proxy_config(prefix: Path) -> ProxyConfig:
    """Proxy configuration rooted at the fake prefix."""
    return ProxyConfig(prefix=prefix)


@pytest.fixture
def memory_checker_config() -> MemoryCheckerConfig:
    """Memory checker configuration pointing at a name that is never on PATH."""
    return MemoryCheckerConfig(executable="no-such-memory-checker", options=["--leak-check=full"])


def append_lines(path: Path, *lines: str) -> None:
    """Append lines to a (possibly new) log file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as f:
        for line in lines:
            f.write(line + "\n")
