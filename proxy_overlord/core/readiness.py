"""Readiness polling.

Every "did the transition actually happen?" check in the overlord is a
predicate polled by wait_for(). Polling never times out on its own; callers
that need a bound pass an escape condition such as a cancellation token's
``is_set``.
"""

import logging
import time
from collections.abc import Callable

from proxy_overlord.domain.exceptions import ReadinessTimeoutError
from proxy_overlord.shared.timeouts import OverlordTimeouts

logger = logging.getLogger(__name__)

Escape = Callable[[], bool]


def any_of(*escapes: Escape | None) -> Escape | None:
    """Compose escape conditions; the result fires when any of them does."""
    active = [escape for escape in escapes if escape is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]
    return lambda: any(escape() for escape in active)


class ReadinessProber:
    """Polls readiness goals at a fixed cadence.

    Args:
        interval: Seconds between predicate evaluations.
        report_every: Attempts between "waiting for" progress lines.
        escape: Default escape condition applied to every wait.
    """

    def __init__(
        self,
        interval: float = OverlordTimeouts.READY_CHECK_INTERVAL,
        report_every: int = OverlordTimeouts.READY_REPORT_EVERY,
        escape: Escape | None = None,
    ) -> None:
        self.interval = interval
        self.report_every = report_every
        self.escape = escape

    def with_escape(self, escape: Escape | None) -> "ReadinessProber":
        """Return a prober that also gives up when ``escape`` fires."""
        return ReadinessProber(
            interval=self.interval,
            report_every=self.report_every,
            escape=any_of(self.escape, escape),
        )

    def wait_for(
        self,
        description: str,
        predicate: Callable[[], bool],
        escape: Escape | None = None,
    ) -> int:
        """Block until ``predicate()`` returns true.

        The predicate must be free of side effects that matter to the
        caller; it may be evaluated any number of times.

        Args:
            description: What we are waiting for (used in progress logs).
            predicate: The readiness goal.
            escape: Optional extra condition that aborts the wait.

        Returns:
            Number of failed attempts before the goal held.

        Raises:
            ReadinessTimeoutError: If an escape condition fired first.
        """
        give_up = any_of(self.escape, escape)
        attempts = 0
        while not predicate():
            if attempts % self.report_every == 0:
                logger.info(f"waiting for {description}")
            attempts += 1
            if give_up is not None and give_up():
                raise ReadinessTimeoutError(
                    f"gave up waiting for {description} after {attempts} attempts",
                    hint="The request deadline expired or the request was cancelled",
                )
            time.sleep(self.interval)

        if attempts:
            logger.info(f"done waiting for {description} ({attempts} attempts)")
        return attempts
