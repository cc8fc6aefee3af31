"""Unit tests for the Proxy Overlord Protocol messages."""

import io
import json
from unittest.mock import MagicMock

import pytest

from proxy_overlord.adapters.server.protocol import (
    MAX_LINE_BYTES,
    ProtocolError,
    Request,
    Response,
    receive_request,
    send_response,
)


def stream_of(*lines: str, body: bytes = b"") -> io.BytesIO:
    return io.BytesIO(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body)


class TestReceiveRequest:
    """Tests for request parsing and validation."""

    def test_get_with_options(self) -> None:
        request = receive_request(
            stream_of(
                "GET /stop HTTP/1.1",
                "Host: overlord",
                "Overlord-Version: 1",
                "Overlord-Shutdown-Manner: urgently",
            )
        )

        assert request.command == ("GET", "/stop")
        assert request.options == {"shutdown-manner": "urgently"}

    def test_post_reads_body(self) -> None:
        body = b"http_port 3128\nworkers 2\n"
        request = receive_request(
            stream_of(
                "POST /reset HTTP/1.1",
                "Overlord-Version: 1",
                f"Content-Length: {len(body)}",
                body=body,
            )
        )

        assert request.text() == "http_port 3128\nworkers 2\n"

    def test_missing_version_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="missing Overlord-Version"):
            receive_request(stream_of("GET /check HTTP/1.1", "Host: overlord"))

    def test_version_mismatch_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="unsupported protocol version: 2"):
            receive_request(stream_of("GET /check HTTP/1.1", "Overlord-Version: 2"))

    def test_truncated_body_rejected(self) -> None:
        stream = stream_of(
            "POST /reset HTTP/1.1",
            "Overlord-Version: 1",
            "Content-Length: 100",
            body=b"http_port 3128\n",
        )

        with pytest.raises(ProtocolError, match="truncated request body: 15 vs. the expected 100"):
            receive_request(stream)

    def test_post_without_content_length_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="missing Content-Length"):
            receive_request(stream_of("POST /reset HTTP/1.1", "Overlord-Version: 1"))

    def test_malformed_request_line(self) -> None:
        with pytest.raises(ProtocolError, match="malformed request line"):
            receive_request(stream_of("HELLO"))

    def test_connection_closed_mid_header(self) -> None:
        with pytest.raises(ProtocolError, match="connection closed"):
            receive_request(io.BytesIO(b"GET /check HTTP/1.1\r\nOverlord-Version: 1"))

    def test_overlong_line_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="too long"):
            receive_request(io.BytesIO(b"GET /" + b"a" * MAX_LINE_BYTES + b" HTTP/1.1\r\n\r\n"))

    def test_malformed_header(self) -> None:
        with pytest.raises(ProtocolError, match="malformed request header"):
            receive_request(stream_of("GET /check HTTP/1.1", "no colon here"))


class TestRequest:
    def test_version_header_is_not_an_option(self) -> None:
        request = Request("GET", "/check", {"overlord-version": "1", "host": "x"})

        assert request.options == {}

    def test_invalid_utf8_body(self) -> None:
        with pytest.raises(ProtocolError, match="UTF-8"):
            Request("POST", "/reset", body=b"\xff\xfe").text()

    def test_serialized_request_parses_back(self) -> None:
        original = Request(
            "POST", "/reset", {"overlord-version": "1", "overlord-worker-count": "2"}, b"conf\n"
        )

        parsed = receive_request(io.BytesIO(original.to_bytes()))

        assert parsed.command == ("POST", "/reset")
        assert parsed.options == {"worker-count": "2"}
        assert parsed.body == b"conf\n"


class TestResponse:
    """Tests for response construction."""

    def test_success_carries_health(self) -> None:
        response = Response.success({"problems": []})

        assert response.status == 200
        assert json.loads(response.body) == {"health": {"problems": []}}

    def test_success_with_answer(self) -> None:
        response = Response.success({"problems": []}, ["record"], has_answer=True)

        assert json.loads(response.body)["answer"] == ["record"]

    def test_failure_uses_external_server_error(self) -> None:
        response = Response.failure("proxy failed to start")

        assert response.is_failure()
        wire = response.to_bytes()
        assert wire.startswith(b"HTTP/1.1 555 External Server Error\r\n")
        assert b"Connection: close\r\n" in wire
        assert wire.endswith(b"\r\n\r\nproxy failed to start")

    def test_content_length_matches_body(self) -> None:
        response = Response.failure("café")

        assert f"Content-Length: {len(response.body)}".encode() in response.to_bytes()

    def test_send_failure_raises_protocol_error(self) -> None:
        sock = MagicMock()
        sock.sendall.side_effect = BrokenPipeError("gone")

        with pytest.raises(ProtocolError, match="failed to write a 200 response"):
            send_response(sock, Response.success({"problems": []}))
