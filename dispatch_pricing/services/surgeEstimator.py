"""
Surge Estimator
===============

Combines two supply/demand signals into one surge multiplier:

1. **Zone map** -- per grid cell (0.1 deg x 0.1 deg by default) multipliers
   written by the background refresher (``dispatch_pricing.jobs.surgeRefresher``).
   Reads never wait for a refresh; entries stay valid until overwritten,
   and the grid policy overwrites a cell with 1.0x once its demand clears.
2. **On-demand ratio** -- assigned jobs vs. available contractors within
   ``demand_radius_miles`` of the request, computed per request:

   ======================  ==========
   jobs / contractors      multiplier
   ======================  ==========
   no contractors          2.5x
   > 5                     2.5x
   > 3                     2.0x
   > 2                     1.5x
   > 1.5                   1.25x
   otherwise               1.0x
   ======================  ==========

Final multiplier = ``min(max(zone, ratio), cap)`` with a 3.0x cap.  Demand
lookups that fail degrade the ratio signal to 1.0x instead of failing the
price calculation.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Protocol

from dispatch_pricing.models import JobStatus
from dispatch_pricing.schemas.pricing import PricingContext
from dispatch_pricing.services.geoService import filter_within_radius, zone_cell, zone_key
from dispatch_pricing.services.pricingStore import PricingStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NO_SURGE = Decimal("1.0")
SURGE_CAP = Decimal("3.0")
NO_SUPPLY_MULTIPLIER = Decimal("2.5")

# (ratio strictly above, multiplier), checked in order
RATIO_SURGE_TABLE: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("5"), Decimal("2.5")),
    (Decimal("3"), Decimal("2.0")),
    (Decimal("2"), Decimal("1.5")),
    (Decimal("1.5"), Decimal("1.25")),
)

DEMAND_RADIUS_MILES = 50.0
DEMAND_QUERY_LIMIT = 1000
ZONE_CELL_DEGREES = 0.1


def ratio_multiplier(active_jobs: int, available_contractors: int) -> Decimal:
    """Map a jobs-to-contractors ratio onto the surge table."""
    if available_contractors == 0:
        return NO_SUPPLY_MULTIPLIER
    ratio = Decimal(active_jobs) / Decimal(available_contractors)
    for threshold, multiplier in RATIO_SURGE_TABLE:
        if ratio > threshold:
            return multiplier
    return NO_SURGE


@dataclass(frozen=True)
class DemandStats:
    active_jobs: int
    available_contractors: int


# ---------------------------------------------------------------------------
# Zone map
# ---------------------------------------------------------------------------

class ZoneSurgeMap:
    """Thread-safe ``zone key -> multiplier`` map.

    Writers merge a whole refresh result under the lock; readers take the
    lock only for a single dict lookup.
    """

    def __init__(self) -> None:
        self._zones: dict[str, Decimal] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Decimal:
        with self._lock:
            return self._zones.get(key, NO_SURGE)

    def merge(self, values: Mapping[str, Decimal]) -> None:
        with self._lock:
            self._zones.update(values)

    def snapshot(self) -> dict[str, Decimal]:
        with self._lock:
            return dict(self._zones)


# ---------------------------------------------------------------------------
# Zone refresh policies
# ---------------------------------------------------------------------------

class ZoneSurgePolicy(Protocol):
    """Computes fresh multipliers for some set of zones."""

    async def compute(self) -> dict[str, Decimal]: ...


class NullZonePolicy:
    """Reports no zones; the ratio signal alone drives surge."""

    async def compute(self) -> dict[str, Decimal]:
        return {}


class DemandGridZonePolicy:
    """Bucket assigned jobs and available contractors into grid cells and
    apply the ratio table per cell that has any demand.

    Supply is pooled over each cell and its eight neighbours, so a
    contractor just across a cell boundary still counts.  Cells reported on
    the previous cycle that no longer have demand are reset to ``NO_SURGE``.
    """

    def __init__(
        self,
        store: PricingStore,
        cell_size: float = ZONE_CELL_DEGREES,
        query_limit: int = DEMAND_QUERY_LIMIT,
    ) -> None:
        self._store = store
        self._cell_size = cell_size
        self._query_limit = query_limit
        self._reported: set[str] = set()

    async def compute(self) -> dict[str, Decimal]:
        jobs = await self._store.find_jobs(status=JobStatus.ASSIGNED, limit=self._query_limit)
        contractors = await self._store.find_contractors(is_available=True, limit=self._query_limit)

        demand: Counter[tuple[int, int]] = Counter()
        for job in jobs:
            if job.service_latitude is None or job.service_longitude is None:
                continue
            demand[zone_cell(float(job.service_latitude), float(job.service_longitude), self._cell_size)] += 1

        supply: Counter[tuple[int, int]] = Counter()
        for contractor in contractors:
            if contractor.current_latitude is None or contractor.current_longitude is None:
                continue
            supply[
                zone_cell(
                    float(contractor.current_latitude),
                    float(contractor.current_longitude),
                    self._cell_size,
                )
            ] += 1

        zones: dict[str, Decimal] = {}
        for (row, col), count in demand.items():
            nearby_supply = sum(
                supply.get((row + d_row, col + d_col), 0)
                for d_row in (-1, 0, 1)
                for d_col in (-1, 0, 1)
            )
            zones[f"{row}_{col}"] = ratio_multiplier(count, nearby_supply)

        cleared = {key: NO_SURGE for key in self._reported - zones.keys()}
        self._reported = set(zones)
        return {**cleared, **zones}


# ---------------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------------

class SurgeEstimator:
    def __init__(
        self,
        store: PricingStore,
        zone_map: ZoneSurgeMap | None = None,
        cap: Decimal = SURGE_CAP,
        demand_radius_miles: float = DEMAND_RADIUS_MILES,
        query_limit: int = DEMAND_QUERY_LIMIT,
        cell_size: float = ZONE_CELL_DEGREES,
    ) -> None:
        self._store = store
        self.zone_map = zone_map if zone_map is not None else ZoneSurgeMap()
        self._cap = cap
        self._radius = demand_radius_miles
        self._query_limit = query_limit
        self._cell_size = cell_size

    async def demand_stats(self, lat: float, lng: float) -> DemandStats:
        """Assigned jobs and available contractors near a point."""
        jobs = await self._store.find_jobs(
            status=JobStatus.ASSIGNED,
            limit=self._query_limit,
            near=(lat, lng),
            radius_miles=self._radius,
        )
        contractors = await self._store.find_contractors(
            is_available=True,
            limit=self._query_limit,
            near=(lat, lng),
            radius_miles=self._radius,
        )

        nearby_jobs = filter_within_radius(
            jobs, lat, lng, self._radius,
            position=lambda j: (j.service_latitude, j.service_longitude),
        )
        nearby_contractors = filter_within_radius(
            contractors, lat, lng, self._radius,
            position=lambda c: (c.current_latitude, c.current_longitude),
        )
        return DemandStats(
            active_jobs=len(nearby_jobs),
            available_contractors=len(nearby_contractors),
        )

    async def demand_multiplier(self, lat: float, lng: float) -> Decimal:
        try:
            stats = await self.demand_stats(lat, lng)
        except Exception:
            logger.warning(
                "Demand stats unavailable near (%s, %s); surge ratio defaults to 1.0",
                lat,
                lng,
                exc_info=True,
            )
            return NO_SURGE
        return ratio_multiplier(stats.active_jobs, stats.available_contractors)

    def zone_multiplier(self, lat: float, lng: float) -> Decimal:
        return self.zone_map.get(zone_key(lat, lng, self._cell_size))

    async def multiplier(self, context: PricingContext) -> Decimal:
        """Final multiplier for a request, always within ``[1.0, cap]``."""
        lat, lng = context.location.lat, context.location.lng
        zone_surge = self.zone_multiplier(lat, lng)
        demand_surge = await self.demand_multiplier(lat, lng)
        combined = max(zone_surge, demand_surge, NO_SURGE)
        return min(combined, self._cap)
