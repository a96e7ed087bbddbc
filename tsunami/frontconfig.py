"""Shared settings for the HTTPS/HTTP2/WebSocket camouflage layer."""

from __future__ import annotations

import dataclasses
import hashlib
import os
import ssl
from dataclasses import dataclass
from urllib.parse import quote

TRANSPORT_H2 = "h2"
TRANSPORT_WEBSOCKET = "websocket"

DEFAULT_PATH = "/assets/update"
DEFAULT_SERVER_HEADER = "Caddy"
DEFAULT_SITE_NAME = "Welcome"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

H2_FLOW_CONTROL_WINDOW = 4 << 20
H2_CLIENT_FLOW_CONTROL_WINDOW = 4 << 20
H2_MAX_FRAME_SIZE = 32 << 10
HTTP_FLUSH_THRESHOLD = 1 << 20

CLOCK_SKEW = 120.0
"""Accepted HTTP-layer auth timestamp window, in seconds."""

_CADDY_CIPHERS = ":".join(
    [
        "ECDHE-ECDSA-AES256-GCM-SHA384",
        "ECDHE-RSA-AES256-GCM-SHA384",
        "ECDHE-ECDSA-AES128-GCM-SHA256",
        "ECDHE-RSA-AES128-GCM-SHA256",
        "ECDHE-ECDSA-CHACHA20-POLY1305",
        "ECDHE-RSA-CHACHA20-POLY1305",
    ]
)


def _clean_rooted_path(path: str) -> str:
    parts: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return "/" + "/".join(parts)


def _split_host_port(addr: str) -> tuple[str, str] | None:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or addr[end + 1:end + 2] != ":":
            return None
        return addr[1:end], addr[end + 2:]
    if addr.count(":") != 1:
        return None
    host, _, port = addr.partition(":")
    return host, port


@dataclass
class FrontingConfig:
    """Fronting settings shared by client and server."""

    enabled: bool = False
    path: str = ""
    host: str = ""
    secret: str = ""
    transport: str = ""
    server_header: str = ""
    site_name: str = ""
    decoy_proxy: str = ""

    def normalize(self) -> None:
        """Fill in default values and clean the path."""
        if not self.path:
            self.path = DEFAULT_PATH
        if not self.path.startswith("/"):
            self.path = "/" + self.path
        self.path = _clean_rooted_path(self.path)
        if not self.transport:
            self.transport = TRANSPORT_H2
        if not self.server_header:
            self.server_header = DEFAULT_SERVER_HEADER
        if not self.site_name:
            self.site_name = DEFAULT_SITE_NAME

    def url(self, server_addr: str) -> str:
        """The HTTPS fronting endpoint URL; this config is left unchanged."""
        cfg = dataclasses.replace(self)
        cfg.normalize()
        host = server_addr
        split = _split_host_port(server_addr)
        if split is not None:
            h, p = split
            if ":" in h and not h.startswith("["):
                host = f"[{h}]:{p}"
        return "https://" + host + quote(cfg.path, safe="/!$&'()*+,;=:@~")


def key_from_secret(secret: str) -> bytes:
    """The fixed-size HTTP-layer HMAC key derived from a secret."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def validate_transport(transport: str) -> None:
    """Raise ValueError for an unsupported fronting transport."""
    if transport not in ("", TRANSPORT_H2, TRANSPORT_WEBSOCKET):
        raise ValueError(f"fronting: unsupported transport {transport!r}")


def auth_jitter() -> float:
    """A random delay of 1-5 ms, in seconds, for the decoy response path."""
    ms = 1 + int.from_bytes(os.urandom(2), "little") % 5
    return ms / 1000


def caddy_like_tls_context(certfile: str | None = None, keyfile: str | None = None) -> ssl.SSLContext:
    """A server TLS context shaped like a standard Caddy deployment."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.maximum_version = ssl.TLSVersion.TLSv1_3
    context.set_ciphers(_CADDY_CIPHERS)
    context.set_alpn_protocols(["h2", "http/1.1"])
    if certfile:
        context.load_cert_chain(certfile, keyfile or None)
    return context