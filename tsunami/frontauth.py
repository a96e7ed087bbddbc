"""HTTP-layer request signing and verification for fronting tunnels."""

from __future__ import annotations

import hashlib
import hmac
import math
import re
import secrets
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Iterable, MutableMapping

from tsunami.frontconfig import CLOCK_SKEW

HEADER_VERSION = "X-Api-Version"
HEADER_DATE = "X-Date"
HEADER_NONCE = "X-Trace-Id"
HEADER_AUTH = "Authorization"
AUTH_VERSION = "v1"

_SIG_PREFIX = "HMAC-SHA256 Signature="
_EVICT_INTERVAL = 30.0
_INT_RE = re.compile(r"[+-]?[0-9]+")
_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})*")


class NonceCache:
    """Recently seen nonces, used to reject replayed requests."""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = _seconds(ttl)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, float] = {}
        self._last_evict = clock()

    def add(self, nonce: str) -> bool:
        """Record a nonce; False when it was already seen."""
        with self._lock:
            now = self._clock()
            if now - self._last_evict >= _EVICT_INTERVAL:
                cutoff = now - self._ttl
                self._entries = {k: t for k, t in self._entries.items() if t >= cutoff}
                self._last_evict = now
            if nonce in self._entries:
                return False
            self._entries[nonce] = now
            return True


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _unix(now: float | datetime) -> float:
    if isinstance(now, datetime):
        return now.timestamp()
    return float(now)


def _get(headers: MutableMapping[str, str], name: str) -> str:
    lowered = name.lower()
    for key in list(headers.keys()):
        if key.lower() == lowered:
            return headers[key] or ""
    return ""


def _delete(headers: MutableMapping[str, str], name: str) -> None:
    lowered = name.lower()
    for key in list(headers.keys()):
        if key.lower() == lowered and key in headers:
            del headers[key]


def _set(headers: MutableMapping[str, str], name: str, value: str) -> None:
    _delete(headers, name)
    headers[name] = value


def strip_auth_headers(headers: MutableMapping[str, str]) -> None:
    """Remove fronting-only auth headers before forwarding to a decoy origin."""
    for name in (HEADER_VERSION, HEADER_DATE, HEADER_NONCE, HEADER_AUTH):
        _delete(headers, name)


def _compute_mac(method: str, path: str, host: str, ts: str, nonce: str, key: bytes) -> str:
    message = f"{method}\n{path}\n{host.lower()}\n{ts}\n{nonce}"
    return hmac.new(bytes(key), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_request(
    headers: MutableMapping[str, str],
    method: str,
    path: str,
    host: str,
    key: bytes,
    now: float | datetime,
) -> None:
    """Add HTTP-layer authentication headers for a request."""
    nonce = secrets.token_hex(16)
    ts = str(math.floor(_unix(now)))
    _set(headers, HEADER_VERSION, AUTH_VERSION)
    _set(headers, HEADER_DATE, ts)
    _set(headers, HEADER_NONCE, nonce)
    signature = _compute_mac(method, path, host, ts, nonce, key)
    _set(headers, HEADER_AUTH, _SIG_PREFIX + signature)


def verify_request(
    headers: MutableMapping[str, str],
    method: str,
    path: str,
    host: str,
    keys: Iterable[bytes],
    now: float | datetime,
    skew: float | timedelta = CLOCK_SKEW,
    nonce_cache: NonceCache | None = None,
) -> bool:
    """Check request auth headers against any of the accepted keys."""
    keys = list(keys)
    if not keys:
        return False
    if _get(headers, HEADER_VERSION) != AUTH_VERSION:
        return False
    ts = _get(headers, HEADER_DATE)
    nonce = _get(headers, HEADER_NONCE)
    auth = _get(headers, HEADER_AUTH)
    if not ts or not nonce or not auth:
        return False
    if not auth.startswith(_SIG_PREFIX):
        return False
    got = auth[len(_SIG_PREFIX):]
    if not 16 <= len(nonce) <= 128:
        return False
    if not _INT_RE.fullmatch(ts):
        return False
    when = int(ts)
    current = _unix(now)
    window = _seconds(skew)
    if when > current + window or when < current - window:
        return False
    if not _HEX_RE.fullmatch(got):
        return False

    if nonce_cache is not None and not nonce_cache.add(nonce):
        return False

    candidate = got.lower().encode("ascii")
    for key in keys:
        want = _compute_mac(method, path, host, ts, nonce, key)
        if hmac.compare_digest(candidate, want.encode("ascii")):
            return True
    return False