"""
Scheduler - Lease Map.

============================================================
PURPOSE
============================================================
Exclusive, expiring claims on indicators. An indicator with a
live lease is running and must not be dispatched again.

- try_acquire is atomic; at most one live lease per indicator
- every lease carries an ownership token; releasing with a
  stale token is a no-op
- an expired lease may be taken over by the next acquirer

============================================================
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.clock import to_iso8601


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    """A claim on one indicator."""

    indicator_id: int
    token: str
    acquired_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def age(self, now: datetime) -> timedelta:
        return now - self.acquired_at

    def to_dict(self) -> Dict[str, object]:
        return {
            "indicator_id": self.indicator_id,
            "token": self.token,
            "acquired_at": to_iso8601(self.acquired_at),
            "expires_at": to_iso8601(self.expires_at),
        }


class LeaseMap:
    """Thread-safe map of indicator id to lease."""

    def __init__(self, ttl_seconds: float):
        if ttl_seconds <= 0:
            raise ValueError("lease ttl must be positive")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._leases: Dict[int, Lease] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def try_acquire(self, indicator_id: int, now: datetime) -> Optional[Lease]:
        """Claim the indicator, or return None if a live lease exists."""
        with self._lock:
            held = self._leases.get(indicator_id)
            if held is not None and not held.is_expired(now):
                return None
            if held is not None:
                logger.warning(
                    f"Taking over expired lease for indicator {indicator_id} "
                    f"(acquired {held.acquired_at.isoformat()})"
                )

            lease = Lease(
                indicator_id=indicator_id,
                token=uuid.uuid4().hex,
                acquired_at=now,
                expires_at=now + self._ttl,
            )
            self._leases[indicator_id] = lease
            return lease

    def release(self, lease: Lease) -> bool:
        """Drop the lease if it is still the current one for its indicator."""
        with self._lock:
            held = self._leases.get(lease.indicator_id)
            if held is None or held.token != lease.token:
                return False
            del self._leases[lease.indicator_id]
            return True

    def is_held(self, indicator_id: int, now: datetime) -> bool:
        with self._lock:
            held = self._leases.get(indicator_id)
            return held is not None and not held.is_expired(now)

    def active(self, now: Optional[datetime] = None) -> List[Lease]:
        """Current leases; with `now`, only the unexpired ones."""
        with self._lock:
            leases = list(self._leases.values())
        if now is not None:
            leases = [lease for lease in leases if not lease.is_expired(now)]
        return sorted(leases, key=lambda lease: lease.acquired_at)

    def reclaim_stuck(self, now: datetime, older_than: timedelta) -> List[Lease]:
        """Remove and return leases acquired more than `older_than` ago."""
        with self._lock:
            stuck = [
                lease for lease in self._leases.values()
                if lease.age(now) >= older_than
            ]
            for lease in stuck:
                del self._leases[lease.indicator_id]
        return stuck

    def __len__(self) -> int:
        with self._lock:
            return len(self._leases)


__all__ = [
    "Lease",
    "LeaseMap",
]
