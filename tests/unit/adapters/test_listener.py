"""Unit tests for the overlord listener."""

import signal
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from proxy_overlord.adapters.server.listener import ConnectionWorker, OverlordServer
from proxy_overlord.adapters.server.protocol import Request, Response


def read_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


class TestConnectionWorker:
    """Tests for per-connection workers."""

    def test_serves_one_request(self) -> None:
        handler = MagicMock()
        handler.handle.return_value = Response.success({"problems": []})
        server_side, client_side = socket.socketpair()

        worker = ConnectionWorker(server_side, ("test", 0), handler, timeout=5)
        client_side.sendall(Request("GET", "/check", {"overlord-version": "1"}).to_bytes())
        worker.start()

        reply = read_all(client_side)
        assert worker.reap(5)
        assert reply.startswith(b"HTTP/1.1 200 OK\r\n")
        request = handler.handle.call_args[0][0]
        assert request.command == ("GET", "/check")
        client_side.close()

    def test_protocol_error_answered_with_555(self) -> None:
        handler = MagicMock()
        server_side, client_side = socket.socketpair()

        worker = ConnectionWorker(server_side, ("test", 0), handler, timeout=5)
        client_side.sendall(b"GET /check HTTP/1.1\r\n\r\n")
        worker.start()

        reply = read_all(client_side)
        assert worker.reap(5)
        assert reply.startswith(b"HTTP/1.1 555 External Server Error\r\n")
        assert b"missing Overlord-Version" in reply
        handler.handle.assert_not_called()
        client_side.close()

    def test_watchdog_cancels_request(self) -> None:
        """The handler sees its escape condition fire once the watchdog expires."""
        observed = threading.Event()

        def handle(request: Request, escape) -> Response:
            while not escape():
                observed.wait(0.01)
            observed.set()
            return Response.failure("gave up waiting")

        handler = MagicMock()
        handler.handle.side_effect = handle
        server_side, client_side = socket.socketpair()

        worker = ConnectionWorker(server_side, ("test", 0), handler, timeout=0.1)
        client_side.sendall(Request("GET", "/restart", {"overlord-version": "1"}).to_bytes())
        worker.start()

        reply = read_all(client_side)
        assert worker.reap(5)
        assert observed.is_set()
        assert worker.cancelled.is_set()
        assert b"gave up waiting" in reply
        client_side.close()

    def test_finished_request_disarms_watchdog(self) -> None:
        handler = MagicMock()
        handler.handle.return_value = Response.success({"problems": []})
        server_side, client_side = socket.socketpair()

        worker = ConnectionWorker(server_side, ("test", 0), handler, timeout=5)
        client_side.sendall(Request("GET", "/check", {"overlord-version": "1"}).to_bytes())
        worker.start()
        read_all(client_side)
        worker.reap(5)
        worker.watchdog.join(5)

        assert not worker.watchdog.is_alive()
        assert not worker.cancelled.is_set()
        client_side.close()


class TestServeForever:
    """Tests for the accept loop."""

    @pytest.fixture
    def server(self) -> OverlordServer:
        return OverlordServer(host="127.0.0.1", port=0, handler=MagicMock())

    def test_accept_timeouts_are_survived(self, server: OverlordServer) -> None:
        mock_socket = MagicMock(spec=socket.socket)
        call_count = 0

        def accept_side_effect():
            nonlocal call_count
            call_count += 1
            if call_count >= 3:
                server.running = False
            raise TimeoutError("timed out")

        mock_socket.accept.side_effect = accept_side_effect
        server.server_socket = mock_socket

        server.serve_forever()

        assert call_count == 3

    def test_accepted_connection_gets_worker(self, server: OverlordServer) -> None:
        mock_socket = MagicMock(spec=socket.socket)
        client = MagicMock()

        def accept_side_effect():
            server.running = False
            return client, ("127.0.0.1", 50000)

        mock_socket.accept.side_effect = accept_side_effect
        server.server_socket = mock_socket
        server.spawn_worker = MagicMock()

        server.serve_forever()

        server.spawn_worker.assert_called_once_with(client, ("127.0.0.1", 50000))

    def test_create_socket_picks_free_port(self, server: OverlordServer) -> None:
        try:
            server.create_socket()
            assert server.port > 0
        finally:
            server.cleanup()

        assert server.server_socket is None

    def test_cleanup_cancels_workers(self, server: OverlordServer) -> None:
        worker = MagicMock()
        worker.reap.return_value = True
        server.workers = [worker]

        server.cleanup()

        worker.cancel.assert_called_once_with()
        assert server.workers == []

    def test_shutdown_signal_stops_loop(self, server: OverlordServer) -> None:
        with patch("signal.signal") as mock_signal:
            server.setup_signal_handlers()

        handlers = {call.args[0]: call.args[1] for call in mock_signal.call_args_list}
        assert set(handlers) == {signal.SIGTERM, signal.SIGINT}

        server.running = True
        handlers[signal.SIGTERM](signal.SIGTERM, None)

        assert not server.running
