#!/usr/bin/env python3
"""
Unit Tests for the Link State Store
"""

import pytest

from services.link_state import LinkStateStore


class FakeTimer:
    """Monotonic clock the tests can move forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def store(timer):
    return LinkStateStore(ttl_seconds=600, timer=timer)


class TestLinkStateStore:

    def test_access_token_per_owner(self, store):
        store.set_access_token("client-a", "access-a")
        store.set_access_token("client-b", "access-b")
        assert store.get_access_token("client-a") == "access-a"
        assert store.get_access_token("client-b") == "access-b"

    def test_clear_access_token(self, store):
        store.set_access_token("client-a", "access-a")
        assert store.clear_access_token("client-a") is True
        assert store.get_access_token("client-a") is None
        assert store.clear_access_token("client-a") is False

    def test_empty_access_token_rejected(self, store):
        with pytest.raises(ValueError):
            store.set_access_token("client-a", "")

    def test_link_config_is_copied(self, store):
        config = {"client_name": "Test", "products": ["auth"]}
        store.set_link_config("client-a", config)
        config["client_name"] = "Changed"
        assert store.get_link_config("client-a")["client_name"] == "Test"
        assert store.get_link_config("client-b") is None

    def test_state_expires(self, store, timer):
        store.set_access_token("client-a", "access-a")
        store.set_link_config("client-a", {"client_name": "Test"})
        timer.advance(601)
        assert store.get_access_token("client-a") is None
        assert store.get_link_config("client-a") is None

    def test_clear_owner(self, store):
        store.set_access_token("client-a", "access-a")
        store.set_link_config("client-a", {"client_name": "Test"})
        store.clear_owner("client-a")
        assert store.get_access_token("client-a") is None
        assert store.get_link_config("client-a") is None
