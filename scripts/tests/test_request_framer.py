"""
Tests for request_framer.py: two-state framing, header parsing, Content-Length
handling, best-effort framing at end-of-stream, and the async read loop.
"""

from __future__ import annotations

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from request_framer import (  # noqa: E402
    MAX_HEADERS,
    EmptyRequest,
    FramerState,
    FramingError,
    RawRequest,
    RequestFramer,
    parse_header_block,
    read_request,
)

BODY = b'{"notification":{"title":"T","message":"M"}}'
POST = (
    b"POST /notify HTTP/1.1\r\n"
    b"Host: 127.0.0.1:8889\r\n"
    b"Authorization: Bearer abc\r\n"
    b"Content-Type: application/json\r\n"
    b"Content-Length: " + str(len(BODY)).encode() + b"\r\n"
    b"\r\n" + BODY
)


def frame_chunks(chunks) -> RawRequest | None:
    framer = RequestFramer()
    result = None
    for chunk in chunks:
        result = framer.feed(chunk)
    return result


def stream_reader(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


# ---------------------------------------------------------------------------
# Header parsing
# ---------------------------------------------------------------------------


class TestParseHeaderBlock:
    def test_request_line_and_headers(self):
        method, path, headers = parse_header_block(b"GET /health HTTP/1.1\r\nHost: x\r\nX-Thing:  v ")
        assert method == "GET"
        assert path == "/health"
        assert headers == {"host": "x", "x-thing": "v"}

    def test_keys_are_lowercased(self):
        _, _, headers = parse_header_block(b"GET / HTTP/1.1\r\nAUTHORIZATION: Bearer t")
        assert headers["authorization"] == "Bearer t"

    def test_duplicate_headers_last_wins(self):
        _, _, headers = parse_header_block(b"GET / HTTP/1.1\r\nX-A: 1\r\nx-a: 2")
        assert headers["x-a"] == "2"

    def test_value_split_on_first_colon(self):
        _, _, headers = parse_header_block(b"GET / HTTP/1.1\r\nHost: 127.0.0.1:8889")
        assert headers["host"] == "127.0.0.1:8889"

    def test_lines_without_colon_skipped(self):
        _, _, headers = parse_header_block(b"GET / HTTP/1.1\r\ngarbage\r\nA: b")
        assert headers == {"a": "b"}

    def test_request_line_without_version_accepted(self):
        method, path, _ = parse_header_block(b"GET /health")
        assert (method, path) == ("GET", "/health")

    def test_single_token_request_line_rejected(self):
        with pytest.raises(FramingError) as exc:
            parse_header_block(b"GARBAGE")
        assert exc.value.status == 400

    def test_undecodable_bytes_rejected(self):
        with pytest.raises(FramingError):
            parse_header_block(b"GET /\xff\xfe HTTP/1.1")

    def test_too_many_headers(self):
        lines = [b"GET / HTTP/1.1"] + [f"X-{i}: v".encode() for i in range(MAX_HEADERS + 1)]
        with pytest.raises(FramingError) as exc:
            parse_header_block(b"\r\n".join(lines))
        assert exc.value.status == 431


# ---------------------------------------------------------------------------
# RequestFramer state machine
# ---------------------------------------------------------------------------


class TestRequestFramer:
    def test_single_chunk(self):
        req = frame_chunks([POST])
        assert req.method == "POST"
        assert req.path == "/notify"
        assert req.headers["authorization"] == "Bearer abc"
        assert req.body == BODY

    def test_waits_for_terminator(self):
        framer = RequestFramer()
        assert framer.feed(b"GET /health HTTP/1.1\r\n") is None
        assert framer.state is FramerState.AWAITING_HEADERS
        req = framer.feed(b"\r\n")
        assert req is not None
        assert framer.state is FramerState.COMPLETE

    def test_waits_for_full_body(self):
        framer = RequestFramer()
        split = POST.index(b"\r\n\r\n") + 4 + 5
        assert framer.feed(POST[:split]) is None
        assert framer.state is FramerState.HAVE_HEADERS
        req = framer.feed(POST[split:])
        assert req.body == BODY

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 64])
    def test_chunk_boundary_independence(self, size):
        whole = frame_chunks([POST])
        chunks = [POST[i : i + size] for i in range(0, len(POST), size)]
        assert frame_chunks(chunks) == whole

    def test_split_inside_terminator(self):
        idx = POST.index(b"\r\n\r\n")
        req = frame_chunks([POST[: idx + 2], POST[idx + 2 : idx + 3], POST[idx + 3 :]])
        assert req == frame_chunks([POST])

    def test_extra_bytes_after_body_ignored(self):
        req = frame_chunks([POST + b"TRAILING"])
        assert req.body == BODY

    def test_get_without_content_length_has_empty_body(self):
        req = frame_chunks([b"GET /health HTTP/1.1\r\n\r\n"])
        assert req.body == b""

    def test_post_without_content_length_reads_to_eof(self):
        framer = RequestFramer()
        assert framer.feed(b"POST /notify HTTP/1.1\r\n\r\n" + BODY) is None
        req = framer.finish()
        assert req.body == BODY

    def test_invalid_content_length(self):
        with pytest.raises(FramingError) as exc:
            frame_chunks([b"POST /notify HTTP/1.1\r\nContent-Length: abc\r\n\r\n"])
        assert exc.value.status == 400

    def test_negative_content_length(self):
        with pytest.raises(FramingError):
            frame_chunks([b"POST /notify HTTP/1.1\r\nContent-Length: -1\r\n\r\n"])

    def test_oversized_content_length(self):
        framer = RequestFramer(max_body_size=10)
        with pytest.raises(FramingError) as exc:
            framer.feed(b"POST /notify HTTP/1.1\r\nContent-Length: 11\r\n\r\n")
        assert exc.value.status == 413

    def test_oversized_body_without_content_length(self):
        framer = RequestFramer(max_body_size=10)
        with pytest.raises(FramingError) as exc:
            framer.feed(b"POST /notify HTTP/1.1\r\n\r\n" + b"x" * 11)
        assert exc.value.status == 413

    def test_unterminated_header_block_too_large(self):
        framer = RequestFramer()
        with pytest.raises(FramingError) as exc:
            framer.feed(b"GET / HTTP/1.1\r\nX-Big: " + b"a" * 70_000)
        assert exc.value.status == 431

    def test_feed_after_complete_returns_same_request(self):
        framer = RequestFramer()
        req = framer.feed(b"GET /health HTTP/1.1\r\n\r\n")
        assert framer.feed(b"more") is req


class TestFinish:
    def test_best_effort_without_terminator(self):
        framer = RequestFramer()
        framer.feed(b"GET /health HTTP/1.1\r\nHost: x\r\n")
        req = framer.finish()
        assert (req.method, req.path) == ("GET", "/health")
        assert req.headers == {"host": "x"}
        assert req.body == b""

    def test_short_body_accepted(self):
        framer = RequestFramer()
        framer.feed(POST[:-5])
        req = framer.finish()
        assert req.body == BODY[:-5]

    def test_empty_stream(self):
        with pytest.raises(EmptyRequest):
            RequestFramer().finish()

    def test_malformed_partial_request(self):
        framer = RequestFramer()
        framer.feed(b"NOPE")
        with pytest.raises(FramingError):
            framer.finish()


# ---------------------------------------------------------------------------
# read_request
# ---------------------------------------------------------------------------


class TestReadRequest:
    @pytest.mark.asyncio
    async def test_reads_complete_request(self):
        req = await read_request(stream_reader(POST, eof=False))
        assert req.body == BODY

    @pytest.mark.asyncio
    async def test_eof_before_terminator(self):
        req = await read_request(stream_reader(b"GET /version HTTP/1.1"))
        assert req.path == "/version"

    @pytest.mark.asyncio
    async def test_empty_connection(self):
        with pytest.raises(EmptyRequest):
            await read_request(stream_reader(b""))

    @pytest.mark.asyncio
    async def test_body_arrives_later(self):
        reader = stream_reader(POST[:-10], eof=False)

        async def late():
            await asyncio.sleep(0.01)
            reader.feed_data(POST[-10:])

        task = asyncio.create_task(late())
        req = await read_request(reader)
        await task
        assert req.body == BODY

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(asyncio.TimeoutError):
            await read_request(stream_reader(b"GET /", eof=False), timeout=0.05)
