import threading
from typing import Tuple

from extask_worker.errors import DuplicateTopicError
from extask_worker.topic.models import TopicSubscription


class SubscriptionRegistry:
    """
    Copy-on-write set of subscriptions. Writers rebuild the tuple under a
    short lock; readers grab the current tuple without locking, so a
    snapshot never changes underneath the cycle iterating it.
    """
    def __init__(self):
        self._subscriptions: Tuple[TopicSubscription, ...] = ()
        self._lock = threading.Lock()

    def add(self, subscription: TopicSubscription):
        with self._lock:
            for existing in self._subscriptions:
                if existing.topic_name == subscription.topic_name:
                    raise DuplicateTopicError(subscription.topic_name)
            self._subscriptions = self._subscriptions + (subscription,)

    def remove(self, subscription: TopicSubscription) -> bool:
        with self._lock:
            remaining = tuple(s for s in self._subscriptions if s is not subscription)
            removed = len(remaining) != len(self._subscriptions)
            self._subscriptions = remaining
        return removed

    def snapshot(self) -> Tuple[TopicSubscription, ...]:
        return self._subscriptions

    def __len__(self):
        return len(self._subscriptions)

    def __contains__(self, subscription):
        return any(s is subscription for s in self._subscriptions)
