"""
Fire-and-forget notifications for external subscribers (audit logs, indexers,
dashboards). Delivery sits outside the transactional contract: a subscriber
that raises is logged and skipped, and ledger state is never touched.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetCreated:
    asset_id: int
    name: str
    creator: str


@dataclass(frozen=True)
class AssetTransferred:
    asset_id: int
    from_owner: str
    to_owner: str
    fingerprint: str


@dataclass(frozen=True)
class AssetVerified:
    asset_id: int
    verifier: Optional[str]


@dataclass(frozen=True)
class AssetDeactivated:
    asset_id: int
    by: str


Event = Union[AssetCreated, AssetTransferred, AssetVerified, AssetDeactivated]
Subscriber = Callable[[Event], None]


class EventBus:
    """Synchronous observer list. Publishing never raises."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("Publishing %s", event)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, type(event).__name__)
