"""Programmable padding schemes: parsing, lookup and random sizing."""

from __future__ import annotations

import hashlib
import random
import re
from dataclasses import dataclass, field

_INT_RE = re.compile(r"[+-]?[0-9]+")

_DEFAULT_TEXT = """stop=8
0=30-30
1=100-400
2=400-500,c,500-1000,c,500-1000,c,500-1000,c,500-1000
3=9-9,500-1000
4=500-1000
5=500-1000
6=500-1000
7=500-1000
keepalive=30000-60000:4-8"""


class SchemeError(ValueError):
    """Raised when a padding scheme text cannot be parsed."""


@dataclass(frozen=True)
class Segment:
    """One segment of a packet's padding strategy."""

    min_size: int = 0
    max_size: int = 0
    is_check: bool = False


@dataclass(frozen=True)
class KeepaliveConfig:
    """Idle-period keepalive timing and size ranges."""

    interval_min_ms: int
    interval_max_ms: int
    size_min: int
    size_max: int


@dataclass
class Scheme:
    """A parsed padding scheme."""

    stop: int = 8
    rules: dict[int, list[Segment]] = field(default_factory=dict)
    keepalive: KeepaliveConfig | None = None
    raw: str = ""

    def md5(self) -> str:
        """Lowercase hex MD5 digest of the raw scheme text."""
        return hashlib.md5(self.raw.encode("utf-8"), usedforsecurity=False).hexdigest()

    def get_segments(self, packet_idx: int) -> list[Segment] | None:
        """Segments for a packet index, or None when no rule applies."""
        if packet_idx >= self.stop:
            return None
        return self.rules.get(packet_idx)

    def encode(self) -> str:
        """Serialize the scheme back to its text form."""
        return self.raw


def _atoi(text: str) -> int:
    if not _INT_RE.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def _parse_range(text: str) -> tuple[int, int]:
    lo, sep, hi = text.partition("-")
    if not sep:
        raise ValueError(f"padding: invalid range: {text}")
    return _atoi(lo.strip()), _atoi(hi.strip())


def _parse_segments(text: str) -> list[Segment]:
    segments = []
    for part in text.split(","):
        part = part.strip()
        if part == "c":
            segments.append(Segment(is_check=True))
            continue
        lo, hi = _parse_range(part)
        segments.append(Segment(min_size=lo, max_size=hi))
    return segments


def parse(text: str) -> Scheme:
    """Parse a padding scheme text definition."""
    scheme = Scheme(raw=text)
    for line in text.strip().split("\n"):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, val = line.partition("=")
        if not sep:
            continue

        if key == "stop":
            try:
                scheme.stop = _atoi(val)
            except ValueError as exc:
                raise SchemeError(f"padding: invalid stop value: {exc}") from exc
        elif key == "keepalive":
            interval_text, sep, size_text = val.partition(":")
            if not sep:
                continue
            try:
                interval = _parse_range(interval_text)
                size = _parse_range(size_text)
            except ValueError:
                continue
            scheme.keepalive = KeepaliveConfig(
                interval_min_ms=interval[0],
                interval_max_ms=interval[1],
                size_min=size[0],
                size_max=size[1],
            )
        else:
            try:
                idx = _atoi(key)
            except ValueError:
                continue
            try:
                scheme.rules[idx] = _parse_segments(val)
            except ValueError as exc:
                raise SchemeError(
                    f"padding: invalid rule for packet {idx}: {exc}"
                ) from exc
    return scheme


def default_scheme() -> Scheme:
    """The built-in default padding scheme."""
    return parse(_DEFAULT_TEXT)


def random_in_range(lo: int, hi: int) -> int:
    """Random integer in [lo, hi]; lo when lo >= hi."""
    if lo >= hi:
        return lo
    return random.randint(lo, hi)