"""Frame serialization, padding-aware writing and idle keepalives."""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

from tsunami.scheme import KeepaliveConfig, Scheme, Segment, random_in_range

FRAME_HEADER_LEN = 7
_HEADER = struct.Struct(">BIH")


@dataclass(frozen=True)
class Frame:
    """A protocol frame: command byte, 32-bit stream id and payload."""

    command: int
    stream_id: int
    data: bytes = b""

    def encode(self) -> bytes:
        """Wire form: 1-byte command, 4-byte stream id, 2-byte length, data."""
        if len(self.data) > 0xFFFF:
            raise ValueError(f"frame payload too large: {len(self.data)} bytes")
        return _HEADER.pack(self.command, self.stream_id, len(self.data)) + bytes(self.data)


def serialize_frames(frames: Iterable[Frame]) -> bytes:
    """Concatenate the wire forms of frames."""
    return b"".join(frame.encode() for frame in frames)


def waste_frame(size: int, command: int) -> Frame:
    """A padding frame carrying size zero bytes."""
    return Frame(command, 0, bytes(max(size, 0)))


class PaddingWriter:
    """Applies a padding scheme to outgoing frame batches."""

    def __init__(self, stream, scheme: Scheme, waste_command: int) -> None:
        self._stream = stream
        self._scheme = scheme
        self._waste_command = waste_command
        self._lock = threading.Lock()
        self._packet_idx = 0

    def update_scheme(self, scheme: Scheme) -> None:
        """Replace the scheme; it applies from the next write."""
        with self._lock:
            self._scheme = scheme

    def write_frames(self, frames: Iterable[Frame]) -> None:
        """Serialize frames and write them according to the current scheme."""
        with self._lock:
            user_data = serialize_frames(frames)
            segments = self._scheme.get_segments(self._packet_idx)
            self._packet_idx += 1
            if segments is None:
                self._stream.write(user_data)
                return
            self._apply_splitting(user_data, segments)

    def _apply_splitting(self, user_data: bytes, segments: list[Segment]) -> None:
        offset = 0
        for seg in segments:
            remaining = len(user_data) - offset
            if seg.is_check:
                if remaining <= 0:
                    return
                continue

            target = random_in_range(seg.min_size, seg.max_size)
            if remaining >= target:
                self._stream.write(user_data[offset:offset + target])
                offset += target
            elif remaining > 0:
                padding = waste_frame(target - remaining - FRAME_HEADER_LEN, self._waste_command)
                self._stream.write(user_data[offset:] + padding.encode())
                offset = len(user_data)
            else:
                padding = waste_frame(target - FRAME_HEADER_LEN, self._waste_command)
                self._stream.write(padding.encode())

        if offset < len(user_data):
            self._stream.write(user_data[offset:])

    def write_raw(self, data: bytes) -> None:
        """Write bytes directly, bypassing padding."""
        with self._lock:
            self._stream.write(data)

    def packet_index(self) -> int:
        """Number of padded writes performed so far."""
        with self._lock:
            return self._packet_idx


class KeepaliveGenerator:
    """Sends small padding frames at random intervals while streams are idle."""

    def __init__(
        self,
        config: KeepaliveConfig | None,
        write_fn: Callable[[Frame], object],
        waste_command: int,
    ) -> None:
        self._config = config
        self._write_fn = write_fn
        self._waste_command = waste_command
        self._stop = threading.Event()
        self._active = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background keepalive thread, if configured."""
        if self._config is None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop generating keepalives."""
        self._stop.set()

    def set_active(self, active: bool) -> None:
        """Mark whether streams are active; keepalives only flow when idle."""
        if active:
            self._active.set()
        else:
            self._active.clear()

    def _run(self) -> None:
        config = self._config
        while True:
            interval_ms = random_in_range(config.interval_min_ms, config.interval_max_ms)
            if self._stop.wait(interval_ms / 1000):
                return
            if self._active.is_set():
                continue
            size = random_in_range(config.size_min, config.size_max)
            try:
                self._write_fn(waste_frame(size, self._waste_command))
            except Exception:
                pass