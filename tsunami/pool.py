"""Session pool for connection multiplexing.

Sessions are duck-typed objects with ``is_closed()``, ``is_idle()``,
``seq()``, ``active_stream_count()``, ``idle_since()`` (a clock value or
None), ``send_heartbeat()``, ``is_alive(timeout)`` and ``close()``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 15.0
HEARTBEAT_TIMEOUT = 30.0


class PoolError(Exception):
    """Raised when the pool cannot supply a session."""


@dataclass(frozen=True)
class PoolConfig:
    """Pool behaviour; durations are in seconds."""

    min_idle_session: int = 1
    idle_check_interval: float = 30.0
    idle_timeout: float = 60.0


class Pool:
    """A pool of reusable sessions."""

    def __init__(
        self,
        config: PoolConfig | None = None,
        dial_fn: Callable[[], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or PoolConfig()
        self._dial_fn = dial_fn
        self._clock = clock
        self._sessions: list[Any] = []
        self._lock = threading.Lock()
        self._create_lock = threading.Lock()
        self._seq = itertools.count(1)
        self._seq_lock = threading.Lock()
        self._stop = threading.Event()
        threading.Thread(target=self._idle_checker, daemon=True).start()
        threading.Thread(target=self._heartbeat_loop, daemon=True).start()

    def get_or_create_session(self) -> Any:
        """Newest idle session, else newest open one, else a freshly dialled one."""
        best_idle = None
        best_any = None
        with self._lock:
            for session in self._sessions:
                if session.is_closed():
                    continue
                if best_any is None or session.seq() > best_any.seq():
                    best_any = session
                if session.is_idle() and (best_idle is None or session.seq() > best_idle.seq()):
                    best_idle = session
        if best_idle is not None:
            return best_idle
        if best_any is not None:
            return best_any

        with self._create_lock:
            with self._lock:
                for session in self._sessions:
                    if not session.is_closed():
                        return session
            return self._create_session()

    def get_least_loaded_session(self) -> Any:
        """The open session with the fewest active streams."""
        with self._lock:
            open_sessions = [s for s in self._sessions if not s.is_closed()]
            if not open_sessions:
                raise PoolError("tsunami: no available sessions in pool")
            return min(open_sessions, key=lambda s: s.active_stream_count())

    def _create_session(self) -> Any:
        if self._dial_fn is None:
            raise PoolError("tsunami: dial new session: no dial function")
        try:
            session = self._dial_fn()
        except Exception as exc:
            raise PoolError(f"tsunami: dial new session: {exc}") from exc
        with self._lock:
            self._sessions.append(session)
        return session

    def create_new_session(self) -> Any:
        """Always dial a new session and add it to the pool."""
        with self._create_lock:
            return self._create_session()

    def add_session(self, session: Any) -> None:
        """Add an externally created session."""
        with self._lock:
            self._sessions.append(session)

    def session_count(self) -> int:
        """Number of open sessions."""
        with self._lock:
            return sum(1 for s in self._sessions if not s.is_closed())

    def active_stream_count(self) -> int:
        """Total active streams across open sessions."""
        with self._lock:
            return sum(s.active_stream_count() for s in self._sessions if not s.is_closed())

    def next_seq(self) -> int:
        """Next monotonically increasing session sequence number."""
        with self._seq_lock:
            return next(self._seq)

    def _idle_checker(self) -> None:
        while not self._stop.wait(self._config.idle_check_interval):
            self._cleanup_idle()

    def _heartbeat_loop(self) -> None:
        while not self._stop.wait(HEARTBEAT_INTERVAL):
            self._send_heartbeats()
            self._cleanup_dead()

    def _send_heartbeats(self) -> None:
        with self._lock:
            sessions = [s for s in self._sessions if not s.is_closed()]
        for session in sessions:
            try:
                session.send_heartbeat()
            except Exception as exc:
                log.warning("tsunami: heartbeat send failed session=%s: %s", session.seq(), exc)

    def _cleanup_dead(self) -> None:
        with self._lock:
            remaining = []
            for session in self._sessions:
                if session.is_closed():
                    continue
                if not session.is_alive(HEARTBEAT_TIMEOUT):
                    log.warning(
                        "tsunami: closing dead session %s (no heartbeat response for %ss)",
                        session.seq(), HEARTBEAT_TIMEOUT,
                    )
                    session.close()
                    continue
                remaining.append(session)
            self._sessions = remaining

    def _expired(self, session: Any, now: float, limit: float) -> bool:
        idle_since = session.idle_since()
        return idle_since is not None and now - idle_since > limit

    def _cleanup_idle(self) -> None:
        with self._lock:
            now = self._clock()
            idle_count = sum(1 for s in self._sessions if not s.is_closed() and s.is_idle())
            closeable = idle_count - self._config.min_idle_session
            remaining = []
            for session in self._sessions:
                if session.is_closed():
                    continue
                if (
                    session.is_idle()
                    and closeable > 0
                    and self._expired(session, now, self._config.idle_timeout)
                ):
                    session.close()
                    closeable -= 1
                    continue
                remaining.append(session)
            self._sessions = remaining

    def close_idle_sessions(self, idle_duration: float, min_keep: int) -> None:
        """Close sessions idle longer than idle_duration, keeping min_keep open."""
        with self._lock:
            now = self._clock()
            active = sum(1 for s in self._sessions if not s.is_closed())
            remaining = []
            for session in self._sessions:
                if session.is_closed():
                    continue
                if (
                    session.is_idle()
                    and active > min_keep
                    and self._expired(session, now, idle_duration)
                ):
                    session.close()
                    active -= 1
                    continue
                remaining.append(session)
            self._sessions = remaining

    def close(self) -> None:
        """Close every session and stop background work."""
        if self._stop.is_set():
            return
        self._stop.set()
        with self._lock:
            for session in self._sessions:
                session.close()
            self._sessions = []

    def __enter__(self) -> Pool:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()