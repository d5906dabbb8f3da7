"""
============================================================================
Centennial Activity Map v1.2.0
Change Notifier - In-Process "projects-updated" Broadcasting
============================================================================

Reliability Level: L5 Core
Traceability: Each publish carries a correlation_id in the logs

This module implements the ChangeNotifier service:
- Subscribers register a callable taking the event name
- publish() calls every subscriber synchronously, in attach order
- A failing subscriber is logged and skipped; the rest still get the event
- unsubscribe() is idempotent

EVENT TYPES:
    - projects-updated: the cached record set changed (payload-free)

The HTTP stream layer wraps each connected client in a subscriber.
============================================================================
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import threading
import uuid

# Configure module logger
logger = logging.getLogger(__name__)


PROJECTS_UPDATED_EVENT = "projects-updated"

Subscriber = Callable[[str], Any]


# =============================================================================
# ChangeNotifier Class
# =============================================================================

class ChangeNotifier:
    """
    Broadcasts change events to in-process subscribers.

    THREAD SAFETY:
        The subscriber list is guarded by a lock. Delivery runs on a snapshot
        of the list, outside the lock, so a subscriber may unsubscribe itself
        while being called.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._publish_count = 0
        self._failure_count = 0

        logger.info("[CHANGE-NOTIFIER-INIT] Change notifier initialized")

    # =========================================================================
    # Subscriber Management
    # =========================================================================

    def subscribe(self, subscriber: Subscriber) -> Subscriber:
        """
        Attach a subscriber.

        Returns:
            The subscriber, for use as an unsubscribe handle
        """
        with self._subscribers_lock:
            self._subscribers.append(subscriber)
            count = len(self._subscribers)

        logger.debug(f"[CHANGE-NOTIFIER] Subscriber added | total={count}")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """
        Detach a subscriber. Unknown subscribers are ignored.

        Returns:
            True if the subscriber was attached
        """
        with self._subscribers_lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                return False
            count = len(self._subscribers)

        logger.debug(f"[CHANGE-NOTIFIER] Subscriber removed | total={count}")
        return True

    def get_subscriber_count(self) -> int:
        with self._subscribers_lock:
            return len(self._subscribers)

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(
        self,
        event_type: str = PROJECTS_UPDATED_EVENT,
        correlation_id: Optional[str] = None
    ) -> int:
        """
        Deliver one event to every current subscriber.

        Args:
            event_type: Event name
            correlation_id: Audit trail identifier

        Returns:
            Number of subscribers that received the event
        """
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        with self._subscribers_lock:
            snapshot = list(self._subscribers)

        notified = 0
        failed = 0
        for subscriber in snapshot:
            try:
                subscriber(event_type)
                notified += 1
            except Exception as e:
                failed += 1
                logger.warning(
                    f"[CHANGE-NOTIFIER] Subscriber failed | "
                    f"event={event_type} | "
                    f"error={e} | "
                    f"correlation_id={correlation_id}"
                )

        self._publish_count += 1
        self._failure_count += failed

        logger.info(
            f"[CHANGE-NOTIFIER] Event published | "
            f"event={event_type} | "
            f"notified={notified} | "
            f"failed={failed} | "
            f"correlation_id={correlation_id}"
        )
        return notified

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "subscribers": self.get_subscriber_count(),
            "publish_count": self._publish_count,
            "failure_count": self._failure_count,
        }


# =============================================================================
# Singleton Instance
# =============================================================================

_notifier_instance: Optional[ChangeNotifier] = None
_notifier_lock = threading.Lock()


def get_change_notifier() -> ChangeNotifier:
    """Get or create the process-wide ChangeNotifier."""
    global _notifier_instance
    with _notifier_lock:
        if _notifier_instance is None:
            _notifier_instance = ChangeNotifier()
        return _notifier_instance


def reset_change_notifier() -> None:
    """Drop the singleton (for testing)."""
    global _notifier_instance
    with _notifier_lock:
        _notifier_instance = None
