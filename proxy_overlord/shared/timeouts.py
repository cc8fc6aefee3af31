"""Centralized timing configuration for overlord operations.

All overlord timing values are defined here to:
1. Provide a single source of truth for tuning
2. Document the purpose of each value
3. Enable easy adjustment for slower test environments
"""


class OverlordTimeouts:
    """Centralized timing configuration for overlord operations.

    All values are in seconds unless otherwise noted.

    Groups:
        READY_*: Polling the managed instance until a goal holds
        PID_*: Reading the PID file
        WORKER_*: Per-connection request handling
        SERVER_*: Listener timeouts
        PROBE_*: Individual probes of the managed instance
    """

    # =========================================================================
    # Readiness Polling
    # =========================================================================

    READY_CHECK_INTERVAL: float = 1.0
    """Interval between evaluations of a readiness goal.

    Goals are cheap (a signal-0 probe, a TCP connect, a log scan), so a
    one-second cadence detects transitions promptly without busy looping.
    """

    READY_REPORT_EVERY: int = 60
    """Number of attempts between "still waiting" log lines.

    With the default interval this logs roughly once a minute, which keeps
    long waits observable without flooding the log.
    """

    # =========================================================================
    # PID File
    # =========================================================================

    PID_FILE_GRACE: float = 1.0
    """Time to wait before rereading an empty PID file.

    A freshly started proxy creates the PID file before writing its PID,
    and an exiting proxy may truncate it. If the file is still empty after
    this delay, the instance is treated as absent.
    """

    # =========================================================================
    # Request Handling
    # =========================================================================

    WORKER_WATCHDOG: float = 60.0
    """Wall-clock limit for handling a single request.

    When it expires, the request's cancellation token is set; any readiness
    wait in progress aborts and the client receives a failure response.
    """

    WORKER_JOIN: float = 5.0
    """Time to wait for a cancelled worker to notice cancellation."""

    # =========================================================================
    # Listener
    # =========================================================================

    SERVER_ACCEPT: float = 1.0
    """Timeout for listener accept() calls.

    Lets the accept loop periodically notice shutdown requests and reap
    finished workers.
    """

    SERVER_CLIENT_IO: float = 30.0
    """Timeout for reading a request from and writing a response to a client."""

    # =========================================================================
    # Instance Probes
    # =========================================================================

    PROBE_CONNECT: float = 1.0
    """Timeout for a TCP connect used to check that a port accepts connections."""

    PROBE_CACHE_MANAGER: float = 10.0
    """Timeout for fetching a cache manager page from the proxy."""

    PROBE_LAUNCH_FAILURE: float = 0.5
    """Time to wait after launching before checking for an instant failure."""

    PROBE_CACHE_PRIMING: float = 300.0
    """Upper bound for the one-shot cache directory initialization run."""
