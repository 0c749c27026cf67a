"""
Topic subscription bookkeeping.

The registry only decides when a wire frame is needed; sending frames and
registering listeners with the dispatcher is left to the client.
"""

import logging
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from .emitter import ListenerHandle, same_callable

logger = logging.getLogger(__name__)

# Topics the server pushes without subscribe/unsubscribe frames
AUTO_SUBSCRIBED_TOPICS: FrozenSet[str] = frozenset({"messages", "logs"})


class Subscription:
    """
    Token returned by Client.subscribe.

    Stays valid across reconnects; pass it to Client.unsubscribe to stop
    receiving the topic.
    """

    __slots__ = ("topic", "listener", "handle", "deferred")

    def __init__(self, topic: str, listener: Callable):
        self.topic = topic
        self.listener = listener
        # Dispatcher registration while the subscription is live
        self.handle: Optional[ListenerHandle] = None
        # Pending "connected" replay while waiting for a connection
        self.deferred: Optional[ListenerHandle] = None

    @property
    def active(self) -> bool:
        return self.handle is not None and self.handle.active

    @property
    def pending(self) -> bool:
        return self.deferred is not None and self.deferred.active

    def __repr__(self) -> str:
        return f"<Subscription topic={self.topic!r} active={self.active} pending={self.pending}>"


class SubscriptionRegistry:
    """Ordered topic -> subscriptions mapping. A topic exists only while it has listeners."""

    def __init__(self, auto_subscribed: Iterable[str] = AUTO_SUBSCRIBED_TOPICS):
        self.auto_subscribed = frozenset(auto_subscribed)
        self._topics: Dict[str, List[Subscription]] = {}

    def is_auto_subscribed(self, topic: str) -> bool:
        return topic in self.auto_subscribed

    def find(self, topic: str, listener: Callable) -> Optional[Subscription]:
        for subscription in self._topics.get(topic, ()):
            if same_callable(subscription.listener, listener):
                return subscription
        return None

    def add(self, subscription: Subscription) -> bool:
        """
        Append subscription to its topic.

        Returns:
            True if this is the first listener on a topic that needs an
            explicit subscribe frame
        """
        existing = self._topics.get(subscription.topic)
        if existing is not None:
            existing.append(subscription)
            return False
        self._topics[subscription.topic] = [subscription]
        return not self.is_auto_subscribed(subscription.topic)

    def remove(self, subscription: Subscription) -> bool:
        """
        Remove subscription from its topic.

        Returns:
            True if the topic lost its last listener and needs an explicit
            unsubscribe frame
        """
        existing = self._topics.get(subscription.topic)
        if existing is None:
            return False
        remaining = [s for s in existing if s is not subscription]
        if remaining:
            self._topics[subscription.topic] = remaining
            return False
        del self._topics[subscription.topic]
        return not self.is_auto_subscribed(subscription.topic)

    def drain(self) -> List[Subscription]:
        """Empty the registry, returning every subscription in per-topic order."""
        drained = [s for subscriptions in self._topics.values() for s in subscriptions]
        self._topics = {}
        logger.debug(f"Drained {len(drained)} subscriptions for replay")
        return drained

    def get(self, topic: str) -> List[Subscription]:
        return list(self._topics.get(topic, ()))

    def topics(self) -> List[str]:
        return list(self._topics)

    def __contains__(self, topic: str) -> bool:
        return topic in self._topics

    def __len__(self) -> int:
        return sum(len(s) for s in self._topics.values())
