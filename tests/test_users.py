import json
from pathlib import Path

import pytest

from ollama_webui.users import (
    InvalidCredentials,
    InvalidUserData,
    SessionSigner,
    UserExists,
    UserStore,
    UserStoreUnavailable,
)


@pytest.fixture
def store(tmp_path: Path) -> UserStore:
    return UserStore(tmp_path / "users.json", min_password_length=6)


def test_passwords_are_hashed_on_disk(store: UserStore) -> None:
    store.create("alice", "wonderland")
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    stored = raw["users"]["alice"]["password_hash"]
    assert stored != "wonderland"
    assert stored.startswith("$2")
    assert store.verify("alice", "wonderland")
    assert not store.verify("alice", "Wonderland")
    assert not store.verify("bob", "wonderland")


def test_create_rejects_duplicates_and_bad_input(store: UserStore) -> None:
    store.create("alice", "wonderland")
    with pytest.raises(UserExists):
        store.create("alice", "another-one")
    with pytest.raises(InvalidUserData):
        store.create("al", "wonderland")
    with pytest.raises(InvalidUserData):
        store.create("has space", "wonderland")
    with pytest.raises(InvalidUserData):
        store.create("carol", "short")


def test_change_password(store: UserStore) -> None:
    store.create("alice", "wonderland")
    with pytest.raises(InvalidCredentials):
        store.change_password("alice", "wrong-one", "looking-glass")
    with pytest.raises(InvalidUserData):
        store.change_password("alice", "wonderland", "tiny")
    store.change_password("alice", "wonderland", "looking-glass")
    assert store.verify("alice", "looking-glass")
    assert not store.verify("alice", "wonderland")


def test_delete(store: UserStore) -> None:
    store.create("alice", "wonderland")
    store.create("bob", "builder-bob")
    with pytest.raises(InvalidCredentials):
        store.delete("alice", "nope-nope")
    store.delete("alice", "wonderland")
    assert not store.exists("alice")
    assert store.exists("bob")


def test_corrupt_hash_does_not_verify(store: UserStore) -> None:
    store.path.write_text(json.dumps({"users": {"alice": {"password_hash": "plain"}}}), encoding="utf-8")
    assert not store.verify("alice", "plain")


def test_session_round_trip_and_tampering() -> None:
    signer = SessionSigner("secret", max_age=60)
    cookie = signer.issue("alice")
    assert signer.read(cookie) == "alice"
    assert signer.read(cookie + "x") is None
    assert signer.read("") is None
    assert signer.read(None) is None
    assert SessionSigner("other-secret", max_age=60).read(cookie) is None


def test_expired_session(monkeypatch: pytest.MonkeyPatch) -> None:
    signer = SessionSigner("secret", max_age=10)
    cookie = signer.issue("alice")
    real_loads = signer._serializer.loads

    def loads_later(value, max_age=None):
        return real_loads(value, max_age=-1)

    monkeypatch.setattr(signer._serializer, "loads", loads_later)
    assert signer.read(cookie) is None


def test_unreadable_store_fails_closed(store: UserStore) -> None:
    store.create("alice", "wonderland")
    store.path.write_text("{not json", encoding="utf-8")
    with pytest.raises(UserStoreUnavailable):
        store.verify("alice", "wonderland")
    with pytest.raises(UserStoreUnavailable):
        store.exists("alice")
    with pytest.raises(UserStoreUnavailable):
        store.create("bob", "builder-bob")
    assert store.path.read_text(encoding="utf-8") == "{not json"
