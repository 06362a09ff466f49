#!/usr/bin/env python3
"""
Unit Tests for the Item Registry
"""

import pytest

from services.credential_codec import CredentialRecord
from services.errors import RegistryFullError
from services.item_registry import ItemRegistry


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
def registry(timer):
    return ItemRegistry(ttl_seconds=3600, max_items=100, timer=timer)


OTHER = CredentialRecord(api_key_id="other-client-id", api_secret="other-secret")


# =============================================================================
# ITEM REGISTRY
# =============================================================================

class TestItemRegistry:

    def test_register_and_lookup(self, registry, owner):
        assert registry.register("item-1", owner) is True
        assert registry.lookup("item-1") == owner
        assert registry.has("item-1")
        assert len(registry) == 1

    def test_unknown_item(self, registry):
        assert registry.lookup("missing") is None
        assert not registry.has("missing")

    def test_first_writer_wins(self, registry, owner):
        assert registry.register("item-1", owner) is True
        assert registry.register("item-1", OTHER) is False
        assert registry.lookup("item-1") == owner

    def test_empty_item_id_rejected(self, registry, owner):
        with pytest.raises(ValueError):
            registry.register("", owner)

    def test_entry_expires_after_ttl(self, registry, timer, owner):
        registry.register("item-1", owner)
        timer.advance(3599)
        assert registry.has("item-1")
        timer.advance(2)
        assert registry.lookup("item-1") is None

    def test_expired_item_can_be_registered_again(self, registry, timer, owner):
        registry.register("item-1", owner)
        timer.advance(3601)
        assert registry.register("item-1", OTHER) is True
        assert registry.lookup("item-1") == OTHER

    def test_sweep_removes_expired(self, registry, timer, owner):
        registry.register("item-1", owner)
        registry.register("item-2", owner)
        timer.advance(3601)
        registry.sweep()
        assert len(registry) == 0

    def test_sweep_keeps_live_entries(self, registry, timer, owner):
        registry.register("item-1", owner)
        timer.advance(1800)
        registry.register("item-2", owner)
        timer.advance(1801)
        registry.sweep()
        assert not registry.has("item-1")
        assert registry.has("item-2")

    def test_seed(self, registry, owner):
        assert registry.seed("item-seeded", owner) is True
        assert registry.seed("item-seeded", OTHER) is False
        assert registry.lookup("item-seeded") == owner


# =============================================================================
# CAPACITY
# =============================================================================

class TestCapacity:

    @pytest.fixture
    def small(self, timer):
        return ItemRegistry(ttl_seconds=3600, max_items=3, timer=timer)

    def test_full_registry_keeps_first_owner(self, small, owner):
        small.register("item-victim", owner)
        small.register("item-filler-1", OTHER)
        small.register("item-filler-2", OTHER)

        with pytest.raises(RegistryFullError):
            small.register("item-filler-3", OTHER)

        assert small.register("item-victim", OTHER) is False
        assert small.lookup("item-victim") == owner
        assert len(small) == 3

    def test_expired_entries_free_capacity(self, small, timer, owner):
        for i in range(3):
            small.register(f"item-{i}", owner)
        timer.advance(3601)
        assert small.register("item-new", OTHER) is True
        assert small.lookup("item-new") == OTHER
