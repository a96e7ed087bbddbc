"""WebSocket handshakes and a stream connection carried over WebSocket frames."""

from __future__ import annotations

import base64
import hashlib
import os
import struct
import threading
import time
from typing import Any, Mapping
from urllib.parse import urlsplit

from tsunami.frontauth import sign_request
from tsunami.frontconfig import DEFAULT_USER_AGENT

WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
MAX_FRAME_SIZE = 16 * 1024 * 1024

_OP_CONTINUATION = 0x0
_OP_TEXT = 0x1
_OP_BINARY = 0x2
_OP_CLOSE = 0x8
_OP_PING = 0x9
_OP_PONG = 0xA

_MAX_HEADER_LINES = 100


class WebSocketError(Exception):
    """Raised on a failed handshake or a malformed WebSocket frame."""


def _header(headers: Mapping[str, str], name: str) -> str:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value or ""
    return ""


def _contains_token(value: str, token: str) -> bool:
    return any(part.strip().lower() == token.lower() for part in value.split(","))


def _apply_mask(data: bytes, mask: bytes) -> bytes:
    if not data:
        return b""
    size = len(data)
    key = (mask * (size // 4 + 1))[:size]
    return (int.from_bytes(data, "big") ^ int.from_bytes(key, "big")).to_bytes(size, "big")


def websocket_accept(key: str) -> str:
    """The Sec-WebSocket-Accept value answering a Sec-WebSocket-Key."""
    digest = hashlib.sha1((key + WEBSOCKET_GUID).encode("ascii"), usedforsecurity=False).digest()
    return base64.b64encode(digest).decode("ascii")


def is_websocket_upgrade(headers: Mapping[str, str]) -> bool:
    """Whether request headers ask for a WebSocket upgrade."""
    return _header(headers, "Upgrade").lower() == "websocket" and _contains_token(
        _header(headers, "Connection"), "upgrade"
    )


class WebSocketConn:
    """A byte stream carried in WebSocket binary frames.

    ``sock`` needs ``sendall`` and ``close``; ``reader`` is a binary file
    positioned after the handshake, by default ``sock.makefile("rb")``.
    """

    def __init__(self, sock: Any, reader: Any = None, mask_writes: bool = False) -> None:
        self._sock = sock
        self._reader = reader if reader is not None else sock.makefile("rb")
        self._mask_writes = mask_writes
        self._buffer = b""
        self._write_lock = threading.Lock()

    def read(self, size: int = -1) -> bytes:
        """Read payload bytes; b"" once the peer closes."""
        while not self._buffer:
            payload = self._read_frame()
            if payload is None:
                return b""
            self._buffer = payload
        if size is None or size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def write(self, data: bytes) -> int:
        """Send data as one binary frame."""
        with self._write_lock:
            self._write_frame(_OP_BINARY, bytes(data))
        return len(data)

    def close(self) -> None:
        """Send a close frame and close the underlying socket."""
        with self._write_lock:
            try:
                self._write_frame(_OP_CLOSE, b"")
            except OSError:
                pass
        try:
            self._reader.close()
        except Exception:
            pass
        self._sock.close()

    def __enter__(self) -> WebSocketConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read_exact(self, size: int, at_frame_start: bool = False) -> bytes | None:
        chunks = []
        got = 0
        while got < size:
            chunk = self._reader.read(size - got)
            if not chunk:
                if at_frame_start and got == 0:
                    return None
                raise EOFError("fronting: unexpected EOF in websocket frame")
            chunks.append(chunk)
            got += len(chunk)
        return b"".join(chunks)

    def _read_frame(self) -> bytes | None:
        while True:
            head = self._read_exact(2, at_frame_start=True)
            if head is None:
                return None
            b1, b2 = head
            opcode = b1 & 0x0F
            masked = bool(b2 & 0x80)
            length = b2 & 0x7F
            if length == 126:
                (length,) = struct.unpack(">H", self._read_exact(2))
            elif length == 127:
                (length,) = struct.unpack(">Q", self._read_exact(8))
            if length > MAX_FRAME_SIZE:
                raise WebSocketError("fronting: websocket frame too large")

            mask = self._read_exact(4) if masked else b""
            payload = self._read_exact(length) if length else b""
            if masked:
                payload = _apply_mask(payload, mask)

            if opcode in (_OP_CONTINUATION, _OP_TEXT, _OP_BINARY):
                return payload
            if opcode == _OP_CLOSE:
                return None
            if opcode == _OP_PING:
                with self._write_lock:
                    try:
                        self._write_frame(_OP_PONG, payload)
                    except OSError:
                        pass
                continue
            if opcode == _OP_PONG:
                continue
            raise WebSocketError(f"fronting: unsupported websocket opcode 0x{opcode:x}")

    def _write_frame(self, opcode: int, payload: bytes) -> None:
        first = 0x80 | opcode
        size = len(payload)
        if size < 126:
            header = bytes([first, size])
        elif size <= 0xFFFF:
            header = struct.pack(">BBH", first, 126, size)
        else:
            header = struct.pack(">BBQ", first, 127, size)

        if self._mask_writes:
            mask = os.urandom(4)
            header = bytes([header[0], header[1] | 0x80]) + header[2:] + mask
            payload = _apply_mask(payload, mask)
        self._sock.sendall(header + payload)


def upgrade_server(sock: Any, headers: Mapping[str, str], server_header: str = "") -> WebSocketConn:
    """Answer an upgrade request already read from sock and return the connection."""
    key = _header(headers, "Sec-WebSocket-Key").strip()
    if not key:
        raise WebSocketError("fronting: missing websocket key")
    version = _header(headers, "Sec-WebSocket-Version")
    if version != "13":
        raise WebSocketError(f"fronting: unsupported websocket version {version!r}")

    lines = [
        "HTTP/1.1 101 Switching Protocols",
        "Upgrade: websocket",
        "Connection: Upgrade",
        f"Sec-WebSocket-Accept: {websocket_accept(key)}",
    ]
    if server_header:
        lines.append(f"Server: {server_header}")
    response = "\r\n".join(lines) + "\r\n\r\n"
    try:
        sock.sendall(response.encode("latin-1"))
    except OSError as exc:
        sock.close()
        raise WebSocketError(f"fronting: websocket upgrade: {exc}") from exc
    return WebSocketConn(sock, None, False)


def _read_response_head(reader: Any) -> tuple[int, str, dict[str, str]]:
    status_line = reader.readline().decode("latin-1").rstrip("\r\n")
    if not status_line:
        raise WebSocketError("fronting: websocket response: unexpected EOF")
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise WebSocketError(f"fronting: websocket response: malformed status {status_line!r}")
    code = int(parts[1])
    reason = parts[2] if len(parts) > 2 else ""

    headers: dict[str, str] = {}
    for _ in range(_MAX_HEADER_LINES):
        line = reader.readline().decode("latin-1")
        if not line:
            raise WebSocketError("fronting: websocket response: unexpected EOF")
        line = line.rstrip("\r\n")
        if not line:
            return code, reason, headers
        name, sep, value = line.partition(":")
        if not sep:
            raise WebSocketError(f"fronting: websocket response: malformed header {line!r}")
        headers.setdefault(name.strip().lower(), value.strip())
    raise WebSocketError("fronting: websocket response: too many headers")


def client_handshake(sock: Any, endpoint: str, host: str, key: bytes) -> WebSocketConn:
    """Perform a signed WebSocket client handshake on sock."""
    parts = urlsplit(endpoint)
    ws_key = base64.b64encode(os.urandom(16)).decode("ascii")
    request_host = host or parts.netloc
    target = (parts.path or "/") + (f"?{parts.query}" if parts.query else "")

    headers = {
        "Upgrade": "websocket",
        "Connection": "Upgrade",
        "Sec-WebSocket-Version": "13",
        "Sec-WebSocket-Key": ws_key,
        "User-Agent": DEFAULT_USER_AGENT,
    }
    sign_request(headers, "GET", parts.path, request_host, key, time.time())

    lines = [f"GET {target} HTTP/1.1", f"Host: {request_host}"]
    lines += [f"{name}: {value}" for name, value in headers.items()]
    try:
        sock.sendall(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))
    except OSError as exc:
        raise WebSocketError(f"fronting: websocket request: {exc}") from exc

    reader = sock.makefile("rb")
    try:
        code, reason, response_headers = _read_response_head(reader)
    except OSError as exc:
        raise WebSocketError(f"fronting: websocket response: {exc}") from exc

    if code != 101:
        raise WebSocketError(f"fronting: websocket status {code} {reason}".rstrip())
    if response_headers.get("upgrade", "").lower() != "websocket" or not _contains_token(
        response_headers.get("connection", ""), "upgrade"
    ):
        raise WebSocketError("fronting: invalid websocket upgrade response")
    if response_headers.get("sec-websocket-accept", "") != websocket_accept(ws_key):
        raise WebSocketError("fronting: invalid websocket accept")

    return WebSocketConn(sock, reader, True)