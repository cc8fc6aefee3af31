"""Instance health reporting.

Builds a fresh HealthReport from what the managed proxy left behind: problem
lines in its logs and, when it ran under the memory checker, the checker's
error and leak findings.
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from proxy_overlord.core.log_events import LogEventKind, read_events
from proxy_overlord.domain.entities import HealthReport

logger = logging.getLogger(__name__)

# Log lines reported per scan; the rest are summarized.
MAX_LOG_PROBLEMS = 10

MEMORY_CHECKER_LOG_GLOB = "valgrind-*.log"

# "==1234== text" -> "text"
CHECKER_PREFIX_PATTERN = re.compile(r"^==\d+==\s?")
CHECKER_FATAL_PATTERN = re.compile(
    r"the 'impossible' happened|Process terminating with default action of signal"
)
ERROR_SUMMARY_PATTERN = re.compile(r"ERROR SUMMARY:\s+([\d,]+)\s+errors?")
DEFINITELY_LOST_PATTERN = re.compile(r"definitely lost:\s+([\d,]+)\s+bytes")
ERROR_RECORD_PATTERN = re.compile(
    r"^(?:Invalid (?:read|write|free)|Mismatched free|Conditional jump|"
    r"Use of uninitialised|Syscall param|Source and destination overlap|"
    r"Argument '\w+' of function)"
)
LEAK_RECORD_PATTERN = re.compile(r"are definitely lost in loss record")


@dataclass(frozen=True)
class CheckerRecord:
    """A multi-line memory checker record.

    Attributes:
        heading: First line of the record.
        text: All record lines, prefix stripped, joined with newlines.
    """

    heading: str
    text: str


def checker_records(lines: list[str]) -> Iterator[CheckerRecord]:
    """Split memory checker output into records.

    A record starts after a blank ``==PID==`` line and ends at the next one.
    """
    block: list[str] = []
    for line in lines:
        if not CHECKER_PREFIX_PATTERN.match(line):
            continue
        text = CHECKER_PREFIX_PATTERN.sub("", line).rstrip()
        if text:
            block.append(text)
            continue
        if block:
            yield CheckerRecord(heading=block[0], text="\n".join(block))
            block = []
    if block:
        yield CheckerRecord(heading=block[0], text="\n".join(block))


def _count(value: str) -> int:
    return int(value.replace(",", ""))


def memory_checker_problems(path: Path) -> tuple[list[str], bool]:
    """Problems found in one memory checker log.

    Returns:
        Problem descriptions and whether an ERROR SUMMARY line was found.
    """
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    problems: list[str] = []
    summarized = False
    errors = 0
    leaked = 0

    for line in lines:
        if CHECKER_FATAL_PATTERN.search(line):
            problems.append(f"{path.name}: memory checker fatal error: {line.strip()}")
        match = ERROR_SUMMARY_PATTERN.search(line)
        if match:
            summarized = True
            errors = max(errors, _count(match.group(1)))
        match = DEFINITELY_LOST_PATTERN.search(line)
        if match:
            leaked = max(leaked, _count(match.group(1)))

    if errors:
        found = [r.text for r in checker_records(lines) if ERROR_RECORD_PATTERN.search(r.heading)]
        problems.append(
            f"{path.name}: memory checker found {errors} errors:\n" + "\n\n".join(found)
        )
    if leaked:
        found = [r.text for r in checker_records(lines) if LEAK_RECORD_PATTERN.search(r.heading)]
        problems.append(
            f"{path.name}: memory checker found {leaked} definitely lost bytes:\n"
            + "\n\n".join(found)
        )
    return problems, summarized


class HealthReporter:
    """Scans proxy logs for problems.

    Args:
        log_dir: Directory with the proxy's logs.
        access_log: Access log path (not scanned for problems; counted).
    """

    def __init__(self, log_dir: Path, access_log: Path) -> None:
        self.log_dir = log_dir
        self.access_log = access_log

    def _general_logs(self) -> list[Path]:
        if not self.log_dir.is_dir():
            return []
        checker_logs = set(self._checker_logs())
        return sorted(
            path
            for path in self.log_dir.glob("*.log")
            if path != self.access_log and path not in checker_logs
        )

    def _checker_logs(self) -> list[Path]:
        if not self.log_dir.is_dir():
            return []
        return sorted(self.log_dir.glob(MEMORY_CHECKER_LOG_GLOB))

    def log_problems(self) -> list[str]:
        """Problem lines from the general logs, capped at MAX_LOG_PROBLEMS."""
        problems: list[str] = []
        skipped = 0
        for path in self._general_logs():
            for event in read_events(path):
                if event.kind not in (LogEventKind.WARNING, LogEventKind.ERROR):
                    continue
                if len(problems) < MAX_LOG_PROBLEMS:
                    problems.append(f"{path.name}: {event.line}")
                else:
                    skipped += 1
        if skipped:
            problems.append(f"... and {skipped} more problem lines")
        return problems

    def transactions(self) -> int | None:
        """Number of access log records, or None without an access log."""
        if not self.access_log.exists():
            return None
        with self.access_log.open("r", encoding="utf-8", errors="replace") as f:
            return sum(1 for line in f if line.strip())

    def check(self, require_complete_diagnostics: bool = False) -> HealthReport:
        """Build a fresh health report.

        Args:
            require_complete_diagnostics: Treat memory checker logs without a
                final summary as a problem (set once the instance has exited).

        Returns:
            HealthReport with problems in discovery order
        """
        report = HealthReport(problems=self.log_problems())

        checker_logs = self._checker_logs()
        summarized = False
        for path in checker_logs:
            problems, has_summary = memory_checker_problems(path)
            report.problems.extend(problems)
            summarized = summarized or has_summary
        if checker_logs and require_complete_diagnostics and not summarized:
            report.problems.append(
                "memory checker logs have no ERROR SUMMARY; the checked run is incomplete"
            )

        transactions = self.transactions()
        if transactions is not None:
            report.extras["transactions"] = transactions

        if report.problems:
            logger.info(f"Health check found {len(report.problems)} problems")
        return report
