"""Registry of desired real-time subscriptions."""
from typing import Iterator, List, Set, Union

from farm_sync.models import Subscription, TopicKind


class SubscriptionRegistry:
    """Set of (kind, id) topics the session wants to receive.

    Independent of the connection: the connection manager replays the whole
    set after every successful (re)connect.
    """

    def __init__(self):
        self._subscriptions: Set[Subscription] = set()

    @staticmethod
    def _key(kind: Union[TopicKind, str], topic_id) -> Subscription:
        return Subscription(kind=TopicKind(kind), id=str(topic_id))

    def add(self, kind: Union[TopicKind, str], topic_id) -> bool:
        """Add a topic; returns False if it was already desired."""
        key = self._key(kind, topic_id)
        if key in self._subscriptions:
            return False
        self._subscriptions.add(key)
        return True

    def remove(self, kind: Union[TopicKind, str], topic_id) -> bool:
        """Remove a topic; returns False if it was not desired."""
        key = self._key(kind, topic_id)
        if key not in self._subscriptions:
            return False
        self._subscriptions.discard(key)
        return True

    def replay_all(self) -> List[Subscription]:
        """All desired topics in a stable order."""
        return sorted(self._subscriptions, key=lambda s: (s.kind.value, s.id))

    def clear(self) -> None:
        self._subscriptions.clear()

    def __contains__(self, item: Subscription) -> bool:
        return item in self._subscriptions

    def __iter__(self) -> Iterator[Subscription]:
        return iter(self.replay_all())

    def __len__(self) -> int:
        return len(self._subscriptions)
