"""Fallback proxying that makes failed handshakes look like a web server."""

from __future__ import annotations

import socket
import ssl
import threading
from email.utils import formatdate

_BUFFER_SIZE = 32 * 1024

_BODY = """<!DOCTYPE html>
<html>
<head>
	<title>Caddy - Welcome</title>
	<style>
	body {
		font-family: system-ui, -apple-system, "Segoe UI", Roboto, "Helvetica Neue", Arial, sans-serif;
		text-align: center;
		padding: 50px;
		background: #fff;
		color: #434343;
	}
	h1 { font-size: 2em; font-weight: 300; }
	p { color: #666; }
	a { color: #0076d1; }
	</style>
</head>
<body>
	<h1>Caddy is working!</h1>
	<p>Congratulations, your Caddy web server is running.</p>
	<p><a href="https://caddyserver.com/docs/">View the Caddy documentation</a></p>
</body>
</html>
"""


def _copy(src: socket.socket, dst: socket.socket) -> None:
    try:
        while True:
            data = src.recv(_BUFFER_SIZE)
            if not data:
                break
            dst.sendall(data)
    except OSError:
        pass


def _half_close(sock: socket.socket) -> None:
    if isinstance(sock, ssl.SSLSocket):
        return
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError:
        pass


class FallbackHandler:
    """Proxies a connection to a backend HTTP server."""

    def __init__(self, backend_addr: str, dial_timeout: float = 5.0) -> None:
        self.backend_addr = backend_addr
        self.dial_timeout = dial_timeout

    def _address(self) -> tuple[str, int]:
        host, sep, port = self.backend_addr.rpartition(":")
        if not sep:
            raise ConnectionError(f"tsunami fallback: invalid backend address {self.backend_addr}")
        return host.strip("[]"), int(port)

    def handle(self, client_sock: socket.socket, pre_read: bytes = b"") -> None:
        """Forward pre-read bytes, then relay both directions until done."""
        try:
            backend = socket.create_connection(self._address(), timeout=self.dial_timeout)
        except (OSError, ValueError) as exc:
            raise ConnectionError(
                f"tsunami fallback: dial backend {self.backend_addr}: {exc}"
            ) from exc

        with backend:
            backend.settimeout(None)
            if pre_read:
                try:
                    backend.sendall(pre_read)
                except OSError as exc:
                    raise ConnectionError(
                        f"tsunami fallback: write pre-read data: {exc}"
                    ) from exc

            def upstream() -> None:
                _copy(client_sock, backend)
                _half_close(backend)

            def downstream() -> None:
                _copy(backend, client_sock)
                _half_close(client_sock)

            threads = [threading.Thread(target=upstream, daemon=True),
                       threading.Thread(target=downstream, daemon=True)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()


def build_default_page() -> bytes:
    """A complete HTTP response mimicking Caddy's welcome page."""
    body = _BODY.encode("utf-8")
    header = (
        "HTTP/1.1 200 OK\r\n"
        "Server: Caddy\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"Date: {formatdate(usegmt=True)}\r\n"
        "Connection: close\r\n"
        "X-Content-Type-Options: nosniff\r\n"
        "\r\n"
    )
    return header.encode("ascii") + body


def handle_default(conn: socket.socket) -> None:
    """Send the default page, drain the connection and close it."""
    try:
        conn.sendall(build_default_page())
        while conn.recv(_BUFFER_SIZE):
            pass
    except OSError:
        pass
    finally:
        conn.close()