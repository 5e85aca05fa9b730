"""Minimal HTTP/1.1 framing on top of AnyIO byte streams.

- Request line + headers parsing
- Optional Content-Length body (no chunked request bodies)
- One request per connection (connection: close)
- Responses are written through an ``HttpResponse`` writer whose chunks are
  buffered in a memory object stream and pumped to the socket by the
  connection task
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

import anyio
from anyio.abc import ByteReceiveStream, ByteSendStream

from ..config import ServerOptions


HeaderMap = dict[str, str]

HEAD_TERMINATOR = b"\r\n\r\n"


class RequestError(ValueError):
    """A request that must be answered by the server itself, never the handler."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True, slots=True)
class HttpRequest:
    method: str
    path: str
    version: str
    headers: HeaderMap
    body: bytes = b""
    query: str = ""
    client: Any = field(default=None, compare=False)


def _status_line(status: int, version: str = "HTTP/1.1") -> str:
    try:
        text = HTTPStatus(status).phrase
    except ValueError:
        text = "Unknown"
    return f"{version} {status} {text}\r\n"


def _to_bytes(data: bytes | bytearray | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


class HttpResponse:
    """
    Response writer handed to request handlers.

    ``write()`` and ``end()`` never block: chunks are queued and the owning
    connection sends them. The head (status line + headers) is frozen by the
    first ``write()`` or by ``end()``.
    """

    def __init__(self, version: str = "HTTP/1.1"):
        self.status = 200
        self.headers: HeaderMap = {}
        self._version = version
        self._send, self._receive = anyio.create_memory_object_stream[bytes](math.inf)
        self._headers_sent = False
        self._finished = False
        self._broken = False

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent

    @property
    def finished(self) -> bool:
        return self._finished

    def set_header(self, name: str, value: str) -> None:
        if self._headers_sent:
            raise RuntimeError("cannot set headers after they are sent")
        self.headers[name.lower()] = str(value)

    def write(self, data: bytes | bytearray | str) -> bool:
        """Queue a body chunk. Returns False once the connection is gone."""
        if self._finished:
            raise RuntimeError("write after end")
        if not self._headers_sent:
            self._queue(self._head())
        chunk = _to_bytes(data)
        if chunk:
            self._queue(chunk)
        return not self._broken

    def end(self, data: bytes | bytearray | str = b"") -> None:
        """Finish the response. Safe to call more than once."""
        if self._finished:
            return
        body = _to_bytes(data)
        if not self._headers_sent:
            self.headers.setdefault("content-length", str(len(body)))
            self._queue(self._head())
        if body:
            self._queue(body)
        self._finished = True
        self._send.close()

    def _head(self) -> bytes:
        self._headers_sent = True
        headers = {k.lower(): v for k, v in self.headers.items()}
        headers.setdefault("connection", "close")
        self.headers = headers
        start = _status_line(self.status, self._version)
        lines = "".join(f"{k}: {v}\r\n" for k, v in headers.items())
        return (start + lines + "\r\n").encode("latin-1")

    def _queue(self, chunk: bytes) -> None:
        if self._broken:
            return
        try:
            self._send.send_nowait(chunk)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self._broken = True

    async def transmit(self, stream: ByteSendStream) -> None:
        """Send queued chunks until the response ends or the peer goes away."""
        async with self._receive:
            async for chunk in self._receive:
                parts = [chunk]
                while True:
                    try:
                        parts.append(self._receive.receive_nowait())
                    except (anyio.WouldBlock, anyio.EndOfStream):
                        break
                try:
                    await stream.send(b"".join(parts))
                except (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError):
                    self._broken = True
                    return

    def abandon(self) -> None:
        """Mark the connection gone; later writes report False."""
        self._broken = True
        self._send.close()
        self._receive.close()


async def _read_until(stream: ByteReceiveStream, marker: bytes, max_bytes: int) -> tuple[bytes, bytes]:
    """Read up to and including ``marker``; also return whatever was read past it."""
    buf = bytearray()
    while True:
        idx = buf.find(marker)
        if idx != -1:
            end = idx + len(marker)
            return bytes(buf[:end]), bytes(buf[end:])
        if len(buf) > max_bytes:
            raise RequestError("request head too large", status=431)
        try:
            chunk = await stream.receive(4096)
        except anyio.EndOfStream:
            return bytes(buf), b""
        if not chunk:
            return bytes(buf), b""
        buf.extend(chunk)


def _parse_headers(block: bytes) -> tuple[str, str, str, HeaderMap]:
    # block contains request line + headers ending with \r\n\r\n
    head = block.decode("iso-8859-1")

    lines = head.split("\r\n")
    if not lines or not lines[0]:
        raise RequestError("missing request line")

    parts = lines[0].split(" ")
    if len(parts) != 3:
        raise RequestError("invalid request line")
    method, target, version = parts
    if not version.startswith("HTTP/"):
        raise RequestError("invalid http version")

    headers: HeaderMap = {}
    for line in lines[1:]:
        if line == "":
            break
        if ":" not in line:
            raise RequestError("invalid header line")
        k, v = line.split(":", 1)
        headers[k.strip().lower()] = v.strip()
    return method, target, version, headers


async def _read_exact(stream: ByteReceiveStream, n: int, initial: bytes = b"") -> bytes:
    buf = bytearray(initial[:n])
    while len(buf) < n:
        try:
            chunk = await stream.receive(n - len(buf))
        except anyio.EndOfStream:
            break
        if not chunk:
            break
        buf.extend(chunk)
    if len(buf) < n:
        raise RequestError("request body shorter than content-length")
    return bytes(buf)


async def read_request(
    stream: ByteReceiveStream,
    options: ServerOptions,
    client: Any = None,
) -> HttpRequest | None:
    """
    Read one request from ``stream``.

    Returns None when the peer closed without sending anything. Raises
    ``RequestError`` for anything the server must reject itself.
    """
    header_block, rest = await _read_until(stream, HEAD_TERMINATOR, options.max_header_bytes)
    if not header_block:
        return None
    if not header_block.endswith(HEAD_TERMINATOR):
        raise RequestError("incomplete request head")

    method, target, version, headers = _parse_headers(header_block)

    if "transfer-encoding" in headers:
        raise RequestError("chunked request bodies are not supported", status=501)
    try:
        content_length = int(headers.get("content-length", "0") or "0")
    except ValueError as e:
        raise RequestError("invalid content-length") from e
    if content_length < 0:
        raise RequestError("invalid content-length")
    if content_length > options.max_body_bytes:
        raise RequestError("payload too large", status=413)

    body = b""
    if content_length:
        body = await _read_exact(stream, content_length, rest)

    path, _, query = target.partition("?")
    return HttpRequest(
        method=method.upper(),
        path=path,
        version=version,
        headers=headers,
        body=body,
        query=query,
        client=client,
    )
