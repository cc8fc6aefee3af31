"""Proxy Overlord Protocol messages.

Requests and responses are minimal HTTP/1 messages, one exchange per
connection. Request options travel as headers under a reserved prefix; the
reset configuration travels as the request body.
"""

import json
import logging
import re
from typing import Any, BinaryIO

from proxy_overlord.domain.exceptions import ProtocolError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1"
VERSION_HEADER = "overlord-version"
OPTION_PREFIX = "overlord-"

MAX_LINE_BYTES = 8192
MAX_HEADER_LINES = 100

REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) +(/\S*) +HTTP/1\.[01]$")

FAILURE_STATUS = (555, "External Server Error")


class Request:
    """A parsed client request."""

    def __init__(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
    ):
        """Create a request.

        Args:
            method: Request method (e.g., "POST")
            path: Request path (e.g., "/reset")
            headers: Header name (lowercase) -> value
            body: Request body
        """
        self.method = method
        self.path = path
        self.headers = headers or {}
        self.body = body

    @property
    def command(self) -> tuple[str, str]:
        return self.method, self.path

    @property
    def options(self) -> dict[str, str]:
        """Option headers with the reserved prefix removed; names lowercase."""
        return {
            name[len(OPTION_PREFIX):]: value
            for name, value in self.headers.items()
            if name.startswith(OPTION_PREFIX) and name != VERSION_HEADER
        }

    def text(self) -> str:
        """The body decoded as UTF-8."""
        try:
            return self.body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"request body is not valid UTF-8: {e}") from e

    def to_bytes(self) -> bytes:
        """Serialize (used by clients and tests)."""
        lines = [f"{self.method} {self.path} HTTP/1.1"]
        headers = dict(self.headers)
        if self.body or self.method == "POST":
            headers["content-length"] = str(len(self.body))
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + self.body


class Response:
    """A response to a client request."""

    def __init__(self, status: int, reason: str, body: bytes, content_type: str):
        self.status = status
        self.reason = reason
        self.body = body
        self.content_type = content_type

    @classmethod
    def success(cls, health: dict[str, Any], answer: Any = None, has_answer: bool = False) -> "Response":
        """Create a success response carrying a health report and an optional answer."""
        data: dict[str, Any] = {"health": health}
        if has_answer:
            data["answer"] = answer
        body = (json.dumps(data) + "\n").encode("utf-8")
        return cls(200, "OK", body, "application/json")

    @classmethod
    def failure(cls, message: str) -> "Response":
        """Create a failure response carrying the error description."""
        status, reason = FAILURE_STATUS
        return cls(status, reason, message.encode("utf-8"), "text/plain; charset=utf-8")

    def is_failure(self) -> bool:
        return self.status != 200

    def to_bytes(self) -> bytes:
        head = (
            f"HTTP/1.1 {self.status} {self.reason}\r\n"
            "Connection: close\r\n"
            f"Content-Type: {self.content_type}\r\n"
            f"Content-Length: {len(self.body)}\r\n"
            "\r\n"
        )
        return head.encode("latin-1") + self.body


def _read_line(stream: BinaryIO) -> str:
    raw = stream.readline(MAX_LINE_BYTES + 1)
    if len(raw) > MAX_LINE_BYTES:
        raise ProtocolError("request line or header is too long")
    if not raw.endswith(b"\n"):
        raise ProtocolError("connection closed in the middle of the request header")
    return raw.decode("latin-1").rstrip("\r\n")


def _read_body(stream: BinaryIO, length: int) -> bytes:
    body = b""
    while len(body) < length:
        chunk = stream.read(length - len(body))
        if not chunk:
            break
        body += chunk
    if len(body) != length:
        raise ProtocolError(
            f"received truncated request body: {len(body)} vs. the expected {length} bytes"
        )
    return body


def receive_request(stream: BinaryIO) -> Request:
    """Read and validate one request.

    Args:
        stream: Buffered binary stream of the client connection

    Returns:
        Parsed request

    Raises:
        ProtocolError: If the request is malformed, truncated, or carries an
            unsupported protocol version
    """
    request_line = _read_line(stream)
    match = REQUEST_LINE_PATTERN.match(request_line)
    if not match:
        raise ProtocolError(f"malformed request line: {request_line!r}")
    method, path = match.groups()

    headers: dict[str, str] = {}
    while True:
        line = _read_line(stream)
        if not line.strip():
            break
        if len(headers) >= MAX_HEADER_LINES:
            raise ProtocolError("too many request headers")
        name, sep, value = line.partition(":")
        if not sep or not name.strip() or name != name.strip():
            raise ProtocolError(f"malformed request header: {line!r}")
        headers[name.lower()] = value.strip()

    version = headers.get(VERSION_HEADER)
    if version is None:
        raise ProtocolError(
            "missing Overlord-Version request header",
            hint=f"This overlord speaks protocol version {PROTOCOL_VERSION}",
        )
    if version != PROTOCOL_VERSION:
        raise ProtocolError(
            f"unsupported protocol version: {version}",
            hint=f"This overlord speaks protocol version {PROTOCOL_VERSION}",
        )

    body = b""
    if method == "POST":
        length_text = headers.get("content-length")
        if length_text is None:
            raise ProtocolError(f"{method} {path} request is missing Content-Length")
        if not length_text.isdigit():
            raise ProtocolError(f"malformed Content-Length: {length_text!r}")
        body = _read_body(stream, int(length_text))

    logger.debug(f"Received request: {method} {path}")
    return Request(method=method, path=path, headers=headers, body=body)


def send_response(sock: Any, response: Response) -> None:
    """Send a response over a socket.

    Raises:
        ProtocolError: If send fails
    """
    try:
        sock.sendall(response.to_bytes())
    except OSError as e:
        raise ProtocolError(f"failed to write a {response.status} response: {e}") from e
    logger.info(f"Responded with {response.status} {response.reason}")
