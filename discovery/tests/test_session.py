import pytest

from discovery.session.store import (
    CancellationToken,
    InMemorySessionCache,
    RequestGate,
    RequestSuperseded,
    SessionRegistry,
)


def test_session_cache_stores_json_values():
    store = InMemorySessionCache()
    store.set("k", {"ids": ["a", "b"]})
    assert store.get("k") == {"ids": ["a", "b"]}
    store.delete("k")
    assert store.get("k") is None
    store.delete("missing")


def test_newer_request_supersedes_older():
    gate = RequestGate()
    first = gate.begin("search")
    assert not first.cancelled
    second = gate.begin("search")
    assert first.cancelled
    assert not second.cancelled
    with pytest.raises(RequestSuperseded):
        first.raise_if_cancelled()


def test_channels_are_independent():
    gate = RequestGate()
    search = gate.begin("search")
    gate.begin("discover")
    assert not search.cancelled


def test_manual_cancel():
    token = CancellationToken()
    assert not token.cancelled
    token.cancel()
    assert token.cancelled


def test_registry_reuses_and_drops_sessions():
    registry = SessionRegistry()
    first = registry.get("s1")
    assert registry.get("s1") is first
    assert registry.get("s2") is not first
    assert len(registry) == 2
    registry.drop("s1")
    assert registry.get("s1") is not first
