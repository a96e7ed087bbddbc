"""Stream connections carried over HTTP request and response bodies."""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from typing import Any

from tsunami.frontconfig import HTTP_FLUSH_THRESHOLD

_SMALL_WRITE = 4096


def _closed_error() -> ConnectionError:
    return ConnectionError("fronting: use of closed connection")


class HTTPServerConn:
    """A connection reading a request body and writing a response body.

    ``body`` needs ``read(size)`` and ``close()``; ``writer`` needs
    ``write(data)`` and may offer ``flush()``.
    """

    def __init__(self, writer: Any, body: Any, remote_addr: str = "", local_addr: str = "") -> None:
        self._writer = writer
        self._body = body
        self._flush = getattr(writer, "flush", None)
        self.remote_addr = remote_addr
        self.local_addr = local_addr
        self._write_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        self._bytes_since_flush = 0

    def read(self, size: int = -1) -> bytes:
        """Read from the request body."""
        return self._body.read(size)

    def write(self, data: bytes) -> int:
        """Write to the response, flushing small writes promptly."""
        with self._close_lock:
            if self._closed:
                raise _closed_error()
        with self._write_lock:
            written = self._writer.write(data)
            if written is None:
                written = len(data)
            self._bytes_since_flush += written
            if self._should_flush(written):
                self._do_flush()
            return written

    def _should_flush(self, last_write: int) -> bool:
        if self._flush is None or last_write <= 0:
            return False
        return last_write < _SMALL_WRITE or self._bytes_since_flush >= HTTP_FLUSH_THRESHOLD

    def _do_flush(self) -> None:
        self._flush()
        self._bytes_since_flush = 0

    def close(self) -> None:
        """Flush pending output and close the request body."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            with self._write_lock:
                if self._flush is not None and self._bytes_since_flush > 0:
                    self._do_flush()
            self._body.close()

    def __enter__(self) -> HTTPServerConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass(frozen=True)
class HTTPResponseResult:
    """A pending tunnel response, or the error that replaced it."""

    response: Any = None
    error: BaseException | None = None


class HTTPClientConn:
    """A connection reading a response body and writing a request body pipe."""

    def __init__(self, response: Any, writer: Any, remote: str = "") -> None:
        self._reader = response
        self._writer = writer
        self._responses: queue.Queue | None = None
        self.remote_addr = remote
        self.local_addr = ""
        self._init_lock = threading.Lock()
        self._init_done = False
        self._init_error: BaseException | None = None
        self._close_lock = threading.Lock()
        self._close_done = False
        self._close_error: BaseException | None = None

    @classmethod
    def pending(cls, responses: queue.Queue | None, writer: Any, remote: str = "") -> HTTPClientConn:
        """A connection that may write before the response arrives; reads wait for it."""
        conn = cls(None, writer, remote)
        conn._responses = responses
        return conn

    def _ensure_reader(self) -> None:
        if self._reader is not None:
            return
        with self._init_lock:
            if not self._init_done:
                self._init_done = True
                if self._responses is None:
                    self._init_error = _closed_error()
                else:
                    result = self._responses.get()
                    if result.error is not None:
                        self._init_error = result.error
                    elif result.response is None:
                        self._init_error = EOFError("fronting: unexpected EOF")
                    else:
                        self._reader = result.response
        if self._init_error is not None:
            raise self._init_error

    def read(self, size: int = -1) -> bytes:
        """Read from the response body, waiting for it if still pending."""
        self._ensure_reader()
        return self._reader.read(size)

    def write(self, data: bytes) -> int:
        """Write to the request body pipe."""
        if self._writer is None:
            raise _closed_error()
        written = self._writer.write(data)
        return len(data) if written is None else written

    def close(self) -> None:
        """Close the request pipe and the response body, once."""
        with self._close_lock:
            if not self._close_done:
                self._close_done = True
                errors = []
                for part in (self._writer, self._reader):
                    if part is None:
                        continue
                    try:
                        part.close()
                    except Exception as exc:
                        errors.append(exc)
                if errors:
                    self._close_error = errors[0]
        if self._close_error is not None:
            raise self._close_error

    def __enter__(self) -> HTTPClientConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()