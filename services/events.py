import logging
from collections import defaultdict
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)


class Subscription:
    """
    Handle returned by every subscribe call. Closing it detaches the listener;
    closing twice is harmless.
    """

    def __init__(self, on_close: Callable[[], None]):
        self._on_close = on_close
        self.closed = False

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._on_close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class ChangeFeed:
    """
    In-process publish/subscribe hub. Topics are tuples such as
    ("relationships", user_id, kind) or ("quests", quest_id).
    """

    def __init__(self):
        self._handlers = defaultdict(list)

    def subscribe(self, topic: Hashable, handler: Callable[[Any], None]) -> Subscription:
        self._handlers[topic].append(handler)

        def detach():
            handlers = self._handlers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[topic]

        return Subscription(detach)

    def publish(self, topic: Hashable, payload: Any = None):
        # Copy so handlers may unsubscribe while being notified
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Listener on %s failed", topic)

    def listener_count(self, topic: Hashable) -> int:
        return len(self._handlers.get(topic, ()))
