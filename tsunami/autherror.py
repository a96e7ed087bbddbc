"""Classified authentication failures reported by the client."""

from __future__ import annotations

from enum import Enum
from typing import Iterator


class AuthFailureReason(str, Enum):
    """Why the expected server-settings frame did not arrive after auth."""

    TIMEOUT = "timeout_waiting_for_server_settings"
    CONNECTION_CLOSED = "connection_closed_during_auth_confirmation"
    UNEXPECTED_FRAME = "unexpected_auth_confirmation_frame"
    READ_ERROR = "invalid_auth_confirmation_frame"


_HINTS = {
    AuthFailureReason.TIMEOUT: "wrong password, fallback response, or non-TSUNAMI service",
    AuthFailureReason.CONNECTION_CLOSED: "wrong password or server closed the auth connection",
    AuthFailureReason.UNEXPECTED_FRAME: (
        "server returned non-auth settings, likely fallback bytes or protocol mismatch"
    ),
}
_DEFAULT_HINT = "invalid or truncated auth confirmation from server"


class AuthFailedError(Exception):
    """Authentication with the server failed."""

    def __init__(self, message: str = "tsunami: authentication failed") -> None:
        super().__init__(message)


class AuthError(AuthFailedError):
    """Authentication failure carrying a machine-readable reason."""

    def __init__(
        self,
        server_addr: str,
        reason: AuthFailureReason,
        err: BaseException | None = None,
        *,
        command: int = 0,
        stream_id: int = 0,
        data_len: int = 0,
    ) -> None:
        self.server_addr = server_addr
        self.reason = reason
        self.err = err
        self.command = command
        self.stream_id = stream_id
        self.data_len = data_len
        super().__init__(self._message())
        if err is not None:
            self.__cause__ = err

    def hint(self) -> str:
        """A human-readable guess at the cause."""
        return _HINTS.get(self.reason, _DEFAULT_HINT)

    def _message(self) -> str:
        base = (
            f"tsunami: authentication failed server={self.server_addr} "
            f'reason={self.reason.value} hint="{self.hint()}"'
        )
        if self.reason is AuthFailureReason.UNEXPECTED_FRAME:
            return (
                f"{base} command={int(self.command)} stream_id={self.stream_id} "
                f"data_len={self.data_len}"
            )
        if self.err is not None:
            return f"{base} cause={self.err}"
        return base

    def __str__(self) -> str:
        return self._message()


def _chain(err: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def auth_read_error(server_addr: str, err: BaseException) -> AuthError:
    """Classify an error raised while reading the auth confirmation."""
    chain = list(_chain(err))
    reason = AuthFailureReason.READ_ERROR
    if any(isinstance(e, (EOFError, ConnectionError)) for e in chain):
        reason = AuthFailureReason.CONNECTION_CLOSED
    elif any(isinstance(e, TimeoutError) for e in chain):
        reason = AuthFailureReason.TIMEOUT
    return AuthError(server_addr, reason, err)


def unexpected_auth_frame_error(server_addr: str, frame) -> AuthError:
    """An auth failure caused by receiving the wrong kind of frame."""
    if frame is None:
        return AuthError(server_addr, AuthFailureReason.UNEXPECTED_FRAME)
    return AuthError(
        server_addr,
        AuthFailureReason.UNEXPECTED_FRAME,
        command=frame.command,
        stream_id=frame.stream_id,
        data_len=len(frame.data),
    )