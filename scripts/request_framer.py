"""
Request framing for the relay's hand-rolled HTTP subset.

The framer is an explicit two-state machine. It buffers bytes until the
``\\r\\n\\r\\n`` header terminator shows up (AWAITING_HEADERS), then waits for
``Content-Length`` body bytes (HAVE_HEADERS). The result does not depend on how
the bytes were split into chunks.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field

HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADERS = 100
MAX_HEADER_BYTES = 65_536
MAX_BODY_SIZE = 1_048_576  # 1MB
READ_CHUNK_SIZE = 65_536

# Methods that never carry a body when Content-Length is absent
_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


class FramingError(Exception):
    """The byte stream could not be framed into a request."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


class EmptyRequest(FramingError):
    """The peer closed the connection without sending anything."""


@dataclass
class RawRequest:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)


class FramerState(enum.Enum):
    AWAITING_HEADERS = "awaiting_headers"
    HAVE_HEADERS = "have_headers"
    COMPLETE = "complete"


def parse_header_block(block: bytes) -> tuple[str, str, dict[str, str]]:
    """Split a header block into (method, path, headers)."""
    try:
        text = block.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FramingError(f"Undecodable request bytes: {e}") from e

    lines = text.split("\r\n")
    parts = lines[0].split(" ")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise FramingError("Malformed request line")

    if len(lines) - 1 > MAX_HEADERS:
        raise FramingError("Too many headers", status=431)

    headers: dict[str, str] = {}
    for line in lines[1:]:
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()
    return parts[0], parts[1], headers


class RequestFramer:
    """Accumulates chunks from one connection into a single RawRequest."""

    def __init__(self, max_body_size: int = MAX_BODY_SIZE):
        self.max_body_size = max_body_size
        self.state = FramerState.AWAITING_HEADERS
        self._buffer = bytearray()
        self._method = ""
        self._path = ""
        self._headers: dict[str, str] = {}
        self._body_start = 0
        self._content_length: int | None = None
        self._request: RawRequest | None = None

    def feed(self, chunk: bytes) -> RawRequest | None:
        """Add received bytes. Returns the request once framing is complete."""
        if self.state is FramerState.COMPLETE:
            return self._request
        self._buffer.extend(chunk)

        if self.state is FramerState.AWAITING_HEADERS:
            idx = self._buffer.find(HEADER_TERMINATOR)
            if idx < 0:
                if len(self._buffer) > MAX_HEADER_BYTES + len(HEADER_TERMINATOR):
                    raise FramingError("Request header block too large", status=431)
                return None
            if idx > MAX_HEADER_BYTES:
                raise FramingError("Request header block too large", status=431)
            self._accept_headers(bytes(self._buffer[:idx]))
            self._body_start = idx + len(HEADER_TERMINATOR)

        return self._try_complete(at_eof=False)

    def finish(self) -> RawRequest:
        """Frame whatever was buffered when the stream ends or errors."""
        if self.state is FramerState.COMPLETE:
            return self._request  # type: ignore[return-value]
        if self.state is FramerState.AWAITING_HEADERS:
            if not self._buffer:
                raise EmptyRequest("Empty request")
            # No terminator: the whole buffer is the header block
            self._accept_headers(bytes(self._buffer).rstrip(b"\r\n"))
            self._body_start = len(self._buffer)
        return self._try_complete(at_eof=True)  # type: ignore[return-value]

    def _accept_headers(self, block: bytes) -> None:
        self._method, self._path, self._headers = parse_header_block(block)
        raw_length = self._headers.get("content-length")
        if raw_length is not None:
            try:
                length = int(raw_length)
            except ValueError:
                raise FramingError("Invalid Content-Length") from None
            if length < 0:
                raise FramingError("Invalid Content-Length")
            if length > self.max_body_size:
                raise FramingError("Payload too large", status=413)
            self._content_length = length
        self.state = FramerState.HAVE_HEADERS

    def _try_complete(self, at_eof: bool) -> RawRequest | None:
        available = len(self._buffer) - self._body_start
        if self._content_length is not None:
            if available < self._content_length and not at_eof:
                return None
            end = self._body_start + min(available, self._content_length)
        elif self._method.upper() in _BODYLESS_METHODS:
            end = self._body_start
        else:
            if available > self.max_body_size:
                raise FramingError("Payload too large", status=413)
            if not at_eof:
                return None
            end = len(self._buffer)

        self._request = RawRequest(
            method=self._method,
            path=self._path,
            headers=self._headers,
            body=bytes(self._buffer[self._body_start : end]),
        )
        self.state = FramerState.COMPLETE
        return self._request


async def read_request(
    reader: asyncio.StreamReader,
    max_body_size: int = MAX_BODY_SIZE,
    timeout: float | None = None,
) -> RawRequest:
    """Read from *reader* until one request is framed.

    Raises FramingError for malformed input. A reset or end-of-stream before
    framing completes yields a best-effort request from the buffered bytes.
    """
    framer = RequestFramer(max_body_size=max_body_size)
    while True:
        try:
            chunk = await asyncio.wait_for(reader.read(READ_CHUNK_SIZE), timeout=timeout)
        except asyncio.TimeoutError:
            # An OSError subclass on 3.11+; must not fall through to finish()
            raise
        except (OSError, asyncio.IncompleteReadError):
            return framer.finish()
        if not chunk:
            return framer.finish()
        request = framer.feed(chunk)
        if request is not None:
            return request
