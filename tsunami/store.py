"""Atomically replaceable runtime user table."""

from __future__ import annotations

import copy
import hmac
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from tsunami.snapshot import ControlError, Snapshot


@dataclass(frozen=True)
class _Entry:
    auth_hash: bytes
    user: Any


@dataclass(frozen=True)
class _State:
    version: str = ""
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entries: tuple[_Entry, ...] = ()
    by_id: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthResult:
    """An authentication decision: the user, or the reason for rejection."""

    user: Any = None
    reason: str = ""


def _store_key(user: Any, auth_hash: bytes) -> str:
    if user.id:
        return user.id
    if user.name:
        return user.name
    return auth_hash.hex()


class UserStore:
    """A user table that is replaced whole on each snapshot."""

    def __init__(self, users: list[Any] | None = None) -> None:
        self._lock = threading.Lock()
        self._state = _State()
        if users is not None:
            self.apply_snapshot(Snapshot(full=True, users=users))

    def apply_snapshot(self, snapshot: Snapshot | None) -> None:
        """Apply a full or incremental snapshot; the table is unchanged on error."""
        if snapshot is None:
            raise ControlError("control: nil snapshot")

        with self._lock:
            current = self._state
            next_by_id: dict[str, Any] = {}
            if not snapshot.full:
                next_by_id = {key: copy.deepcopy(user) for key, user in current.by_id.items()}

            for user_id in snapshot.deleted_user_ids:
                next_by_id.pop(user_id, None)

            for user in snapshot.users:
                if user is None:
                    raise ControlError("control: nil user in snapshot")
                auth_hash = bytes(user.auth_hash())
                next_by_id[_store_key(user, auth_hash)] = copy.deepcopy(user)

            entries = []
            seen: dict[bytes, str] = {}
            for key, user in next_by_id.items():
                auth_hash = bytes(user.auth_hash())
                if auth_hash in seen:
                    raise ControlError(
                        f'control: duplicate auth hash for users "{seen[auth_hash]}" and "{key}"'
                    )
                seen[auth_hash] = key
                entries.append(_Entry(auth_hash, copy.deepcopy(user)))
            entries.sort(key=lambda entry: entry.user.identity())

            self._state = _State(
                version=snapshot.version or current.version,
                updated_at=datetime.now(timezone.utc),
                entries=tuple(entries),
                by_id=next_by_id,
            )

    def authenticate(self, auth_hash: bytes) -> Any:
        """The matching usable user, or None."""
        return self.authenticate_detailed(auth_hash).user

    def authenticate_detailed(self, auth_hash: bytes) -> AuthResult:
        """The matching user, or the reason authentication was refused."""
        state = self._state
        now = datetime.now(timezone.utc)
        candidate = bytes(auth_hash)
        for entry in state.entries:
            if not hmac.compare_digest(candidate, entry.auth_hash):
                continue
            ok, reason = entry.user.is_usable(now)
            if not ok:
                return AuthResult(reason=reason)
            return AuthResult(user=copy.deepcopy(entry.user))
        return AuthResult(reason="not found")

    def snapshot(self) -> Snapshot:
        """A full snapshot of the current table."""
        state = self._state
        return Snapshot(
            version=state.version,
            full=True,
            fetched_at=state.updated_at,
            users=[copy.deepcopy(entry.user) for entry in state.entries],
        )

    def version(self) -> str:
        """The last applied config version."""
        return self._state.version