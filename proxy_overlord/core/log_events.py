"""Classification of proxy log lines into typed events.

All log-matching rules live here as documented pattern constants. Callers
iterate over LogEvent objects instead of matching text themselves.
"""

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from proxy_overlord.domain.entities import LogMarkerCounts

logger = logging.getLogger(__name__)

# Severity markers in the general log, e.g. "2024/05/01 10:00:00 kid1| WARNING: ..."
WARNING_PATTERN = re.compile(r"\bWARNING\b")
ERROR_PATTERN = re.compile(r"\b(?:ERROR|FATAL)\b|\b[Aa]ssertion failed\b")

# Logged by every process that (re)reads its configuration.
RECONFIGURING_PATTERN = re.compile(r"Reconfiguring Squid Cache")

# Logged by a worker for each listening port once it accepts connections.
# The port description may span several words: "Accepting NAT intercepted HTTP Socket ...".
ACCEPTING_PATTERN = re.compile(r"Accepting .*connections at")

# Closes a per-kid section of an SMP cache manager report: "} by kid3".
KID_SECTION_CLOSED_PATTERN = re.compile(r"^\}\s+by\s+kid(\d+)\s*$")


class LogEventKind(str, Enum):
    """Kinds of interesting log lines."""

    WARNING = "warning"
    ERROR = "error"
    RECONFIGURING = "reconfiguring"
    ACCEPTING = "accepting"
    KID_SECTION_CLOSED = "kid_section_closed"


@dataclass(frozen=True)
class LogEvent:
    """A classified log line.

    Attributes:
        kind: What the line announces.
        line: The line text without the trailing newline.
        kid: Kid number for KID_SECTION_CLOSED events.
    """

    kind: LogEventKind
    line: str
    kid: int | None = None


def classify_line(line: str) -> LogEvent | None:
    """Classify one line; returns None for uninteresting lines.

    Errors take precedence over warnings ("WARNING: ... FATAL" is an error).
    """
    text = line.rstrip("\r\n")
    match = KID_SECTION_CLOSED_PATTERN.match(text)
    if match:
        return LogEvent(LogEventKind.KID_SECTION_CLOSED, text, kid=int(match.group(1)))
    if RECONFIGURING_PATTERN.search(text):
        return LogEvent(LogEventKind.RECONFIGURING, text)
    if ACCEPTING_PATTERN.search(text):
        return LogEvent(LogEventKind.ACCEPTING, text)
    if ERROR_PATTERN.search(text):
        return LogEvent(LogEventKind.ERROR, text)
    if WARNING_PATTERN.search(text):
        return LogEvent(LogEventKind.WARNING, text)
    return None


def classify_lines(lines: Iterable[str]) -> Iterator[LogEvent]:
    """Yield events for the interesting lines."""
    for line in lines:
        event = classify_line(line)
        if event is not None:
            yield event


def read_events(path: Path) -> Iterator[LogEvent]:
    """Yield events from a log file; a missing file yields nothing."""
    if not path.exists():
        return
    with path.open("r", encoding="utf-8", errors="replace") as f:
        yield from classify_lines(f)


def count_markers(path: Path) -> LogMarkerCounts:
    """Count reconfiguration and accepting-connections markers in a log file."""
    reconfigurations = 0
    acceptances = 0
    for event in read_events(path):
        if event.kind is LogEventKind.RECONFIGURING:
            reconfigurations += 1
        elif event.kind is LogEventKind.ACCEPTING:
            acceptances += 1
    return LogMarkerCounts(reconfigurations=reconfigurations, acceptances=acceptances)


def closed_kid_sections(text: str) -> list[int]:
    """Kid numbers of the per-kid sections closed in a cache manager report."""
    return [
        event.kid
        for event in classify_lines(text.splitlines())
        if event.kind is LogEventKind.KID_SECTION_CLOSED and event.kid is not None
    ]
