import logging
import time
from typing import Callable, Optional

from pricecheck.models.session import SessionSnapshot

logger = logging.getLogger(__name__)


class ResultsStore:
    """Last known snapshot per request_id, kept for a limited time.

    Feeds the flight-results widget resource. Entries expire ``ttl_seconds``
    after their last update and are evicted lazily on access.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, SessionSnapshot]] = {}

    def put(self, snapshot: SessionSnapshot) -> None:
        self._evict_expired()
        self._entries[snapshot.request_id] = (self.clock() + self.ttl_seconds, snapshot)

    def get(self, request_id: str) -> Optional[SessionSnapshot]:
        self._evict_expired()
        entry = self._entries.get(request_id)
        return entry[1] if entry else None

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._entries)

    def _evict_expired(self) -> None:
        now = self.clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired result snapshot(s)")
