"""Overlord listener.

The listener:
1. Accepts client connections one at a time on a TCP socket
2. Hands each connection to its own worker thread
3. Arms a per-connection watchdog that cancels the worker's request when it
   runs too long
4. Reaps finished workers between accepts
"""

import logging
import signal
import socket
import threading
import time

from proxy_overlord.adapters.server.handlers import RequestHandler
from proxy_overlord.adapters.server.protocol import (
    ProtocolError,
    Response,
    receive_request,
    send_response,
)
from proxy_overlord.shared.timeouts import OverlordTimeouts

logger = logging.getLogger(__name__)


class ConnectionWorker:
    """Serves one client connection in a dedicated thread.

    The watchdog does not kill the thread; it sets the cancellation token,
    which makes any readiness wait in progress give up so the worker can
    report the failure and exit.

    Args:
        client_socket: Accepted client connection (owned by the worker)
        client_address: Peer address, for logging
        handler: Request handler
        timeout: Seconds before the request is cancelled
    """

    def __init__(
        self,
        client_socket: socket.socket,
        client_address: tuple,
        handler: RequestHandler,
        timeout: float = OverlordTimeouts.WORKER_WATCHDOG,
    ):
        self.client_socket = client_socket
        self.client_address = client_address
        self.handler = handler
        self.timeout = timeout
        self.cancelled = threading.Event()
        self.thread = threading.Thread(
            target=self.run, name=f"overlord-worker-{client_address}", daemon=True
        )
        self.watchdog = threading.Timer(timeout, self._expire)
        self.watchdog.daemon = True

    def start(self) -> None:
        self.watchdog.start()
        self.thread.start()

    def _expire(self) -> None:
        logger.warning(
            f"Request from {self.client_address} exceeded {self.timeout:.0f}s; cancelling it"
        )
        self.cancelled.set()

    def cancel(self) -> None:
        self.cancelled.set()

    def _serve(self) -> Response:
        try:
            self.client_socket.settimeout(OverlordTimeouts.SERVER_CLIENT_IO)
            with self.client_socket.makefile("rb") as stream:
                request = receive_request(stream)
        except ProtocolError as e:
            logger.error(f"Protocol error: {e}")
            return Response.failure(str(e))
        except OSError as e:
            logger.error(f"Cannot receive request from {self.client_address}: {e}")
            return Response.failure(f"cannot receive request: {e}")

        return self.handler.handle(request, escape=self.cancelled.is_set)

    def run(self) -> None:
        """Receive, handle, and answer one request."""
        try:
            response = self._serve()
            try:
                send_response(self.client_socket, response)
            except ProtocolError as e:
                # the client is gone; nobody is left to tell
                logger.error(f"Cannot answer {self.client_address}: {e}")
        except Exception as e:
            logger.exception(f"Error handling client {self.client_address}: {e}")
        finally:
            self.watchdog.cancel()
            try:
                self.client_socket.close()
            except OSError as e:
                logger.warning(f"Cannot close client connection: {e}")

    def finished(self) -> bool:
        return not self.thread.is_alive()

    def reap(self, timeout: float | None = None) -> bool:
        """Join the worker thread.

        Returns:
            True if the worker has finished
        """
        self.thread.join(timeout)
        return self.finished()


class OverlordServer:
    """Accepts overlord protocol connections."""

    def __init__(
        self,
        host: str,
        port: int,
        handler: RequestHandler,
        worker_timeout: float = OverlordTimeouts.WORKER_WATCHDOG,
    ):
        """Initialize the server.

        Args:
            host: Address to listen on
            port: TCP port to listen on (0 picks a free port)
            handler: Request handler shared by all workers
            worker_timeout: Per-connection watchdog timeout in seconds
        """
        self.host = host
        self.port = port
        self.handler = handler
        self.worker_timeout = worker_timeout

        self.server_socket: socket.socket | None = None
        self.workers: list[ConnectionWorker] = []
        self.running = False

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.stop()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def create_socket(self) -> None:
        """Create and bind the listening socket.

        Raises:
            OSError: If the port cannot be bound
        """
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, self.port))
        self.server_socket.listen(10)
        self.server_socket.settimeout(OverlordTimeouts.SERVER_ACCEPT)
        self.port = self.server_socket.getsockname()[1]

        logger.info(f"Overlord listens on {self.host}:{self.port}")

    def spawn_worker(self, client_socket: socket.socket, client_address: tuple) -> ConnectionWorker:
        """Start an isolated worker for an accepted connection."""
        worker = ConnectionWorker(
            client_socket, client_address, self.handler, timeout=self.worker_timeout
        )
        self.workers.append(worker)
        worker.start()
        return worker

    def reap_workers(self) -> None:
        """Forget workers that have finished."""
        self.workers = [worker for worker in self.workers if not worker.finished()]

    def serve_forever(self) -> None:
        """Main server loop.

        Handles client connections until asked to stop.
        """
        logger.info("Overlord server started")
        self.running = True

        while self.running:
            try:
                # Accept connection (with timeout to allow periodic checks)
                try:
                    client_socket, client_address = self.server_socket.accept()
                except TimeoutError:
                    continue
                finally:
                    self.reap_workers()
                logger.info(f"Accepted connection from {client_address}")
                self.spawn_worker(client_socket, client_address)

            except Exception as e:
                if self.running:
                    logger.exception(f"Error in server loop: {e}")
                    # Add backoff to prevent tight loop on persistent errors
                    time.sleep(0.1)

        logger.info("Overlord server stopped")

    def stop(self) -> None:
        """Ask serve_forever() to return (safe to call from any thread)."""
        self.running = False

    def cleanup(self) -> None:
        """Close the listening socket and cancel outstanding workers."""
        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None

        for worker in self.workers:
            worker.cancel()
        for worker in self.workers:
            if not worker.reap(OverlordTimeouts.WORKER_JOIN):
                logger.warning(f"Worker for {worker.client_address} did not finish")
        self.workers = []

    def run(self) -> None:
        """Run the overlord server until it receives a shutdown signal."""
        try:
            self.setup_signal_handlers()
            self.create_socket()
            self.serve_forever()
        finally:
            self.cleanup()
