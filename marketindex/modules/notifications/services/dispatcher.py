import logging
from typing import Callable, Dict, Iterable, Optional

from marketindex.core.subscriptions import Subscription

logger = logging.getLogger(__name__)

EventHandler = Callable[[object], None]


class EventDispatcher:
    """
    Delivers committed notification events to in-process subscribers
    (push delivery, websocket fan-out, logging).

    subscribe() returns a Subscription; the caller keeps it in a
    SubscriptionScope and cancels it when its own lifecycle ends.
    """

    def __init__(self):
        self._handlers: Dict[int, tuple] = {}
        self._next_id = 0

    def subscribe(self, handler: EventHandler, kinds: Optional[Iterable[str]] = None) -> Subscription:
        token = self._next_id
        self._next_id += 1
        self._handlers[token] = (handler, frozenset(kinds) if kinds else None)

        def _cancel():
            self._handlers.pop(token, None)

        return Subscription(_cancel, name=getattr(handler, "__name__", "handler"))

    def dispatch(self, event) -> int:
        """Call every matching subscriber; returns how many were called"""
        delivered = 0
        for handler, kinds in list(self._handlers.values()):
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                # The transition is already committed; one broken subscriber
                # must not starve the others
                logger.error(f"Subscriber {getattr(handler, '__name__', handler)} failed on {event.kind}: {e}")
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)


def log_event(event) -> None:
    logger.info(f"Notification event: {event.kind} {event.model_dump(exclude={'kind'})}")


event_dispatcher = EventDispatcher()
