"""
Explicit subscription handles.

Every subscribe call hands back a Subscription the caller owns. Handles are
gathered into a SubscriptionScope tied to whatever lifecycle created them
(the application, a websocket session...) and disposed together when that
lifecycle ends.
"""
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Subscription:
    """Cancellation handle for a single listener"""

    def __init__(self, cancel: Callable[[], None], name: Optional[str] = None):
        self._cancel = cancel
        self.name = name or getattr(cancel, "__name__", "subscription")
        self.active = True

    def cancel(self) -> None:
        """Detach the listener. Cancelling twice is a no-op."""
        if not self.active:
            return
        self.active = False
        self._cancel()

    def __repr__(self) -> str:
        return f"<Subscription {self.name} active={self.active}>"


class SubscriptionScope:
    """Owns a group of subscriptions and disposes them deterministically"""

    def __init__(self, name: str = "scope"):
        self.name = name
        self._subscriptions: List[Subscription] = []
        self.disposed = False

    def add(self, subscription: Subscription) -> Subscription:
        if self.disposed:
            # Late registrations must not outlive the scope
            subscription.cancel()
            raise RuntimeError(f"Scope {self.name} is already disposed")
        self._subscriptions.append(subscription)
        return subscription

    def dispose(self) -> int:
        """Cancel every handle in reverse registration order"""
        count = 0
        errors = []
        while self._subscriptions:
            subscription = self._subscriptions.pop()
            try:
                subscription.cancel()
                count += 1
            except Exception as e:
                errors.append(e)
                logger.warning(f"Error cancelling {subscription!r} in {self.name}: {e}")
        self.disposed = True
        logger.info(f"Disposed {count} subscriptions in {self.name}")
        if errors:
            raise errors[0]
        return count

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __enter__(self) -> "SubscriptionScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
