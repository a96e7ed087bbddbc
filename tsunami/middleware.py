"""Middleware chains that transform or validate snapshots."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from tsunami.snapshot import Adapter, ControlError, Snapshot


class Middleware(ABC):
    """Transforms or validates a Snapshot before it reaches the user store."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The middleware's name."""

    @abstractmethod
    def apply(self, snapshot: Snapshot) -> None:
        """Apply the middleware, raising on rejection."""


class FunctionMiddleware(Middleware):
    """A named middleware backed by a plain function."""

    def __init__(self, name: str, fn: Callable[[Snapshot], None] | None) -> None:
        self._name = name
        self._fn = fn

    @property
    def name(self) -> str:
        return self._name or "middleware"

    def apply(self, snapshot: Snapshot) -> None:
        """Run the wrapped function, if any."""
        if self._fn is not None:
            self._fn(snapshot)


class Pipeline:
    """One adapter followed by a middleware chain."""

    def __init__(self, adapter: Adapter | None, *middlewares: Middleware | None) -> None:
        if adapter is None:
            raise ControlError("control: adapter is required")
        self._adapter = adapter
        self._middlewares = middlewares

    def fetch_snapshot(self) -> Snapshot:
        """Fetch, normalize and validate a snapshot."""
        snapshot = self._adapter.fetch_snapshot()
        if snapshot is None:
            raise ControlError(
                f"control: adapter {self._adapter.name} returned nil snapshot"
            )
        if not snapshot.source:
            snapshot.source = self._adapter.name
        apply_middleware(snapshot, *self._middlewares)
        return snapshot


def apply_middleware(snapshot: Snapshot, *args: Middleware | None) -> None:
    """Apply each middleware in order; None entries are skipped."""
    for middleware in args:
        if middleware is None:
            continue
        try:
            middleware.apply(snapshot)
        except Exception as exc:
            raise ControlError(f"control: middleware {middleware.name}: {exc}") from exc


def _normalize(snapshot: Snapshot) -> None:
    for user in snapshot.users:
        if user is None:
            continue
        if not user.name and user.id:
            user.name = user.id
        if not user.id and user.name:
            user.id = user.name


def _validate(snapshot: Snapshot) -> None:
    seen: dict[bytes, str] = {}
    for idx, user in enumerate(snapshot.users):
        if user is None:
            raise ControlError(f"user[{idx}] is nil")
        auth_hash = bytes(user.auth_hash())
        identity = user.identity()
        if auth_hash in seen:
            raise ControlError(
                f'duplicate auth hash for users "{seen[auth_hash]}" and "{identity}"'
            )
        seen[auth_hash] = identity


def normalize_users() -> Middleware:
    """Fill missing user ids from names and names from ids."""
    return FunctionMiddleware("normalize-users", _normalize)


def validate_users() -> Middleware:
    """Require every user to authenticate and no auth hash to repeat."""
    return FunctionMiddleware("validate-users", _validate)