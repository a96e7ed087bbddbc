"""Per-user traffic accounting and speed limiting for relay paths.

Users are duck-typed objects exposing ``identity()`` and, for limiting,
``speed_limit_bps`` and ``bandwidth`` (Mbit/s) attributes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

_MIN_BURST = 64 * 1024


class Direction(str, Enum):
    """Traffic direction from the user's point of view."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class TrafficPolicy:
    """Wires usage accounting and limiting into readers and streams.

    ``limiter`` needs ``wait(user, direction, n)``; ``usage`` needs
    ``record(user, direction, n)``. Either may be None.
    """

    limiter: Any = None
    usage: Any = None

    def _inactive(self) -> bool:
        return self.limiter is None and self.usage is None

    def wrap_reader(self, reader: Any, user: Any, direction: Direction) -> Any:
        """Wrap a reader so every read is limited and recorded."""
        if reader is None or self._inactive():
            return reader
        return _TrafficReader(reader, self, user, direction)

    def wrap_stream(self, stream: Any, user: Any) -> Any:
        """Wrap a stream whose reads are uploads and writes are downloads."""
        if stream is None or self._inactive():
            return stream
        return _TrafficStream(stream, self, user)

    def _wait(self, user: Any, direction: Direction, n: int) -> None:
        if self.limiter is None or n <= 0:
            return
        self.limiter.wait(user, direction, n)

    def _record(self, user: Any, direction: Direction, n: int) -> None:
        if self.usage is None or n <= 0:
            return
        self.usage.record(user, direction, n)


class _TrafficReader:
    def __init__(self, reader: Any, policy: TrafficPolicy, user: Any, direction: Direction) -> None:
        self._reader = reader
        self._policy = policy
        self._user = user
        self._direction = direction

    def read(self, size: int = -1) -> bytes:
        data = self._reader.read(size)
        if data:
            self._policy._wait(self._user, self._direction, len(data))
            self._policy._record(self._user, self._direction, len(data))
        return data


class _TrafficStream:
    def __init__(self, stream: Any, policy: TrafficPolicy, user: Any) -> None:
        self._stream = stream
        self._policy = policy
        self._user = user

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self._policy._wait(self._user, Direction.UPLOAD, len(data))
            self._policy._record(self._user, Direction.UPLOAD, len(data))
        return data

    def write(self, data: bytes) -> int:
        if data:
            self._policy._wait(self._user, Direction.DOWNLOAD, len(data))
        written = self._stream.write(data)
        if written is None:
            written = len(data)
        if written > 0:
            self._policy._record(self._user, Direction.DOWNLOAD, written)
        return written

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> _TrafficStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass
class UsageDelta:
    """One user's usage over a reporting interval."""

    user_id: str
    upload_bytes: int = 0
    download_bytes: int = 0


class UsageTracker:
    """Accumulates per-user usage deltas for panel reporting."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._deltas: dict[str, UsageDelta] = {}

    def record(self, user: Any, direction: Direction, n: int) -> None:
        """Add n bytes of traffic in a direction for a user."""
        if user is None or n <= 0:
            return
        key = user.identity()
        with self._lock:
            delta = self._deltas.setdefault(key, UsageDelta(user_id=key))
            if direction == Direction.UPLOAD:
                delta.upload_bytes += n
            elif direction == Direction.DOWNLOAD:
                delta.download_bytes += n

    def snapshot(self) -> list[UsageDelta]:
        """Current deltas sorted by user id, without resetting them."""
        with self._lock:
            return self._copy()

    def snapshot_and_reset(self) -> list[UsageDelta]:
        """Current deltas sorted by user id; the tracker is then cleared."""
        with self._lock:
            deltas = self._copy()
            self._deltas = {}
            return deltas

    def _copy(self) -> list[UsageDelta]:
        deltas = [
            UsageDelta(d.user_id, d.upload_bytes, d.download_bytes)
            for d in self._deltas.values()
        ]
        deltas.sort(key=lambda d: d.user_id)
        return deltas


@dataclass
class _Bucket:
    rate: float
    burst: float
    tokens: float
    last: float


class UserLimiter:
    """Per-user token-bucket limiter shared across all of a user's streams.

    Setting ``cancel`` aborts pending waits with InterruptedError.
    """

    def __init__(
        self,
        cancel: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}
        self._cancel = cancel
        self._clock = clock

    def wait(self, user: Any, direction: Direction, n: int) -> None:
        """Block until n bytes are allowed for the user."""
        if user is None or n <= 0:
            return
        rate = user_limit_bps(user)
        if rate <= 0:
            return
        delay = self._reserve(user.identity(), rate, n)
        if delay <= 0:
            return
        if self._cancel is None:
            time.sleep(delay)
        elif self._cancel.wait(delay):
            raise InterruptedError("control: limiter wait cancelled")

    def _reserve(self, key: str, rate_bps: int, n: int) -> float:
        with self._lock:
            now = self._clock()
            rate = float(rate_bps)
            burst = max(rate, float(_MIN_BURST))
            bucket = self._buckets.get(key)
            if bucket is None or bucket.rate != rate:
                bucket = _Bucket(rate=rate, burst=burst, tokens=burst, last=now)
                self._buckets[key] = bucket

            elapsed = now - bucket.last
            if elapsed > 0:
                bucket.tokens = min(bucket.tokens + elapsed * bucket.rate, bucket.burst)
                bucket.last = now

            bucket.tokens -= n
            if bucket.tokens >= 0:
                return 0.0
            return -bucket.tokens / bucket.rate


def user_limit_bps(user: Any) -> int:
    """A user's speed limit in bytes per second, 0 when unlimited."""
    speed = getattr(user, "speed_limit_bps", 0) or 0
    if speed > 0:
        return speed
    bandwidth = getattr(user, "bandwidth", 0) or 0
    if bandwidth > 0:
        return bandwidth * 1000 * 1000 // 8
    return 0