"""
Quote Cache
===========

Short-TTL, in-process store of computed breakdowns keyed by a request
fingerprint.  Writes are last-write-wins; concurrent recomputation of the
same key is harmless because a quote is a pure function of its inputs and
the surge snapshot.

A hit returns a shallow copy with ``locked`` forced to False, so a cached
quote is never presented as locked even if the caller later locked the
instance it originally received.

Expired entries are swept on write, at most once per TTL, so the map holds
roughly one TTL worth of distinct requests.
"""

from __future__ import annotations

import dataclasses
import threading
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from dispatch_pricing.schemas.pricing import PricingContext

if TYPE_CHECKING:
    from dispatch_pricing.services.pricingEngine import PricingBreakdown

DEFAULT_TTL_SECONDS = 300


def make_cache_key(context: PricingContext) -> str:
    """``serviceType_jobType_lat_lng_customer`` with ``guest`` for anonymous requests."""
    customer = str(context.customer_id) if context.customer_id else "guest"
    return (
        f"{context.service_type_id}_{context.job_type.value}_"
        f"{context.location.lat}_{context.location.lng}_{customer}"
    )


class QuoteCache:
    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._entries: dict[str, tuple["PricingBreakdown", datetime]] = {}
        self._lock = threading.Lock()
        self._next_sweep: Optional[datetime] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str, now: Optional[datetime] = None) -> Optional["PricingBreakdown"]:
        """Return an unlocked copy of a live entry, or None on miss/expiry."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        breakdown, expires_at = entry
        if expires_at <= now:
            return None
        return dataclasses.replace(breakdown, locked=False)

    def put(self, key: str, breakdown: "PricingBreakdown", now: Optional[datetime] = None) -> None:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            if self._next_sweep is None or now >= self._next_sweep:
                self._drop_expired(now)
                self._next_sweep = now + self._ttl
            self._entries[key] = (dataclasses.replace(breakdown), now + self._ttl)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop expired entries and return how many were removed."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: datetime) -> int:
        stale = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
