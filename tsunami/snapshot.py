"""Normalized control-plane snapshots and the adapter interface."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class ControlError(Exception):
    """Raised when control-plane data is missing or inconsistent."""


def _clone_user(user: Any) -> Any:
    return copy.deepcopy(user)


@dataclass
class Snapshot:
    """The normalized user/config view produced by an adapter.

    Users are duck-typed objects exposing ``id``, ``name``, ``auth_hash()``,
    ``identity()`` and ``is_usable(now)``.
    """

    source: str = ""
    version: str = ""
    full: bool = False
    fetched_at: datetime | None = None
    users: list[Any] = field(default_factory=list)
    deleted_user_ids: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    def clone(self) -> Snapshot:
        """A copy whose users, deletions and metadata are independent."""
        return Snapshot(
            source=self.source,
            version=self.version,
            full=self.full,
            fetched_at=self.fetched_at,
            users=[_clone_user(user) for user in self.users],
            deleted_user_ids=list(self.deleted_user_ids),
            metadata=dict(self.metadata),
        )


class Adapter(ABC):
    """Fetches panel or board data and converts it to a Snapshot."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter's name."""

    @abstractmethod
    def fetch_snapshot(self) -> Snapshot | None:
        """Fetch the current snapshot."""


class StaticAdapter(Adapter):
    """Serves an in-memory user list through the adapter interface."""

    def __init__(self, name: str = "", users: list[Any] | None = None) -> None:
        self._name = name or "static"
        self._snapshot = Snapshot(
            source=self._name,
            full=True,
            fetched_at=datetime.now(timezone.utc),
            users=list(users or []),
        )

    @property
    def name(self) -> str:
        return self._name or "static"

    def fetch_snapshot(self) -> Snapshot:
        """A fresh copy of the static snapshot, stamped with the current time."""
        snapshot = self._snapshot.clone()
        if not snapshot.source:
            snapshot.source = self.name
        snapshot.fetched_at = datetime.now(timezone.utc)
        return snapshot