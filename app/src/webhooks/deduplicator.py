"""
Short-lived cache of webhook delivery IDs.

GitHub may redeliver the same event; the first sighting of a delivery ID
within the TTL window is accepted and every later one rejected. Expired
entries are evicted on every call, so memory stays bounded by the number
of distinct deliveries seen within one window.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()


class DeliveryDeduplicator:
    """Thread-safe delivery ID -> expiry map."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = cfg.DELIVERY_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._expiries: Dict[str, float] = {}
        self._lock = threading.Lock()

    def accept(self, delivery_id: Optional[str]) -> bool:
        """
        True the first time ``delivery_id`` is seen within the window.

        A missing ID cannot be deduplicated and is always accepted.
        """
        if not delivery_id:
            return True

        with self._lock:
            now = self._clock()
            self._sweep(now)
            if delivery_id in self._expiries:
                logger.info("Duplicate webhook delivery %s rejected", delivery_id)
                return False
            self._expiries[delivery_id] = now + self._ttl
            return True

    def forget(self, delivery_id: Optional[str]) -> None:
        """Release an accepted ID whose work failed, so a redelivery runs."""
        if not delivery_id:
            return
        with self._lock:
            if self._expiries.pop(delivery_id, None) is not None:
                logger.info("Delivery %s released for redelivery", delivery_id)

    def _sweep(self, now: float) -> None:
        expired = [key for key, expiry in self._expiries.items() if expiry <= now]
        for key in expired:
            del self._expiries[key]
        if expired:
            logger.debug("Evicted %d expired delivery IDs", len(expired))

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiries)
