"""
Minimal HTTP/1.1 server on top of asyncio streams.

Both services expose a handful of GET endpoints (health, readiness, metrics,
quotes). Each connection carries one request and is closed after the
response, which keeps the parser small:

- request line, headers (lower-cased), query string
- peer address for rate limiting
- no request bodies
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

log = logging.getLogger("fpc.http")

MAX_HEADER_BYTES = 16 * 1024
READ_TIMEOUT_SEC = 10.0


@dataclass
class HttpRequest:
    method: str
    path: str
    query: Dict[str, List[str]] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    remote_addr: Optional[str] = None

    def query_param(self, name: str) -> Optional[str]:
        values = self.query.get(name)
        if not values:
            return None
        return values[0]


@dataclass
class HttpResponse:
    status: int
    body: bytes = b""
    content_type: str = "application/json; charset=utf-8"
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def json(cls, status: int, payload: Any, headers: Optional[Dict[str, str]] = None) -> "HttpResponse":
        return cls(status=status, body=json.dumps(payload).encode(), headers=dict(headers or {}))

    @classmethod
    def text(cls, status: int, body: bytes | str, content_type: str) -> "HttpResponse":
        if isinstance(body, str):
            body = body.encode()
        return cls(status=status, body=body, content_type=content_type)

    def encode(self) -> bytes:
        try:
            reason = HTTPStatus(self.status).phrase
        except ValueError:
            reason = "Unknown"
        lines = [
            f"HTTP/1.1 {self.status} {reason}",
            f"Content-Type: {self.content_type}",
            f"Content-Length: {len(self.body)}",
            "Connection: close",
        ]
        lines.extend(f"{k}: {v}" for k, v in self.headers.items())
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + self.body


Handler = Callable[[HttpRequest], Awaitable[HttpResponse]]


class RequestParseError(ValueError):
    pass


def parse_request(raw: bytes, remote_addr: Optional[str] = None) -> HttpRequest:
    """Parse the head of an HTTP request (everything before the blank line)."""
    head = raw.split(b"\r\n\r\n", 1)[0]
    lines = head.split(b"\r\n")
    parts = lines[0].split(b" ")
    if len(parts) != 3 or not parts[2].startswith(b"HTTP/"):
        raise RequestParseError("malformed request line")

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if b":" not in line:
            continue
        k, v = line.split(b":", 1)
        headers[k.strip().lower().decode("latin-1")] = v.strip().decode("latin-1")

    target = urlparse(parts[1].decode("utf-8", errors="replace"))
    return HttpRequest(
        method=parts[0].decode("ascii", errors="replace").upper(),
        path=target.path or "/",
        query=parse_qs(target.query),
        headers=headers,
        remote_addr=remote_addr,
    )


def error_body(code: str, message: str) -> Dict[str, Any]:
    return {"error": {"code": code, "message": message}}


async def start_http_server(handler: Handler, host: str, port: int) -> asyncio.AbstractServer:
    """
    Serve `handler` on host:port.

    Handler exceptions become an opaque 500; the traceback is logged.
    """

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        remote_addr = peer[0] if isinstance(peer, tuple) and peer else None
        try:
            try:
                raw = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout=READ_TIMEOUT_SEC)
                request = parse_request(raw, remote_addr)
            except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, asyncio.TimeoutError, RequestParseError):
                response = HttpResponse.json(400, error_body("BAD_REQUEST", "Malformed HTTP request"))
            else:
                try:
                    response = await handler(request)
                except Exception:
                    log.exception("unhandled error serving %s", request.path)
                    response = HttpResponse.json(500, error_body("INTERNAL_ERROR", "Internal server error"))
            writer.write(response.encode())
            await writer.drain()
        except ConnectionError as exc:
            log.debug("client %s disconnected before response: %s", remote_addr, exc)
        finally:
            writer.close()

    return await asyncio.start_server(handle, host, port, limit=MAX_HEADER_BYTES)


def bound_port(server: asyncio.AbstractServer) -> Optional[int]:
    for sock in server.sockets or ():
        return sock.getsockname()[1]
    return None
