"""Tests for the subscription registry."""
import pytest

from farm_sync.models import Subscription, TopicKind
from farm_sync.subscriptions import SubscriptionRegistry


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


def test_add_is_idempotent(registry):
    assert registry.add(TopicKind.DEVICE, "dev-1")
    assert not registry.add(TopicKind.DEVICE, "dev-1")
    assert len(registry) == 1


def test_same_id_different_kind_are_distinct(registry):
    registry.add(TopicKind.DEVICE, "7")
    registry.add(TopicKind.FARM, "7")
    assert len(registry) == 2


def test_ids_and_kinds_are_normalized(registry):
    registry.add("device", 42)
    assert Subscription(kind=TopicKind.DEVICE, id="42") in registry
    assert not registry.add(TopicKind.DEVICE, "42")


def test_remove(registry):
    registry.add(TopicKind.FARM, "farm-1")
    assert registry.remove(TopicKind.FARM, "farm-1")
    assert not registry.remove(TopicKind.FARM, "farm-1")
    assert len(registry) == 0


def test_replay_all_is_stable(registry):
    registry.add(TopicKind.FARM, "b")
    registry.add(TopicKind.DEVICE, "z")
    registry.add(TopicKind.DEVICE, "a")

    replay = registry.replay_all()
    assert [(s.kind, s.id) for s in replay] == [
        (TopicKind.DEVICE, "a"),
        (TopicKind.DEVICE, "z"),
        (TopicKind.FARM, "b"),
    ]
    assert list(registry) == replay


def test_unknown_kind_raises(registry):
    with pytest.raises(ValueError):
        registry.add("sensor", "dev-1")


def test_clear(registry):
    registry.add(TopicKind.DEVICE, "dev-1")
    registry.clear()
    assert registry.replay_all() == []
