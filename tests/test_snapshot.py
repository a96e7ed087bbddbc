import hashlib
from dataclasses import dataclass, field
from datetime import datetime

import pytest

from tsunami.snapshot import Adapter, Snapshot, StaticAdapter


@dataclass
class _User:
    id: str = ""
    name: str = ""
    digest: bytes = b""
    metadata: dict = field(default_factory=dict)


def _digest(label):
    return hashlib.sha256(label.encode()).digest()


def test_clone_is_independent():
    original = Snapshot(
        source="panel",
        version="7",
        full=True,
        users=[_User(id="u1", name="alice", digest=_digest("a"), metadata={"k": "v"})],
        deleted_user_ids=["u9"],
        metadata={"region": "eu"},
    )
    cloned = original.clone()
    assert cloned == original

    cloned.users[0].name = "changed"
    cloned.users[0].metadata["k"] = "other"
    cloned.users.append(_User(id="u2"))
    cloned.deleted_user_ids.append("u10")
    cloned.metadata["region"] = "us"

    assert original.users[0].name == "alice"
    assert original.users[0].metadata == {"k": "v"}
    assert len(original.users) == 1
    assert original.deleted_user_ids == ["u9"]
    assert original.metadata == {"region": "eu"}


def test_clone_keeps_scalar_fields():
    original = Snapshot(source="s", version="v", full=False)
    cloned = original.clone()
    assert (cloned.source, cloned.version, cloned.full) == ("s", "v", False)


def test_static_adapter_default_name():
    adapter = StaticAdapter("", [])
    assert adapter.name == "static"
    assert adapter.fetch_snapshot().source == "static"


def test_static_adapter_fetch_returns_full_copy():
    user = _User(id="u1", name="alice", digest=_digest("a"))
    adapter = StaticAdapter("test", [user])
    snapshot = adapter.fetch_snapshot()
    assert snapshot.source == "test"
    assert snapshot.full is True
    assert isinstance(snapshot.fetched_at, datetime)
    assert snapshot.users == [user]

    snapshot.users[0].name = "mutated"
    again = adapter.fetch_snapshot()
    assert again.users[0].name == "alice"


def test_static_adapter_refreshes_timestamp():
    adapter = StaticAdapter("test", [])
    first = adapter.fetch_snapshot().fetched_at
    second = adapter.fetch_snapshot().fetched_at
    assert second >= first


def test_adapter_is_abstract():
    with pytest.raises(TypeError):
        Adapter()