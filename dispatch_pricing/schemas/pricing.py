"""
Pydantic v2 schemas for pricing requests.

``PricingContext`` is the single input to ``PricingEngine.calculate_price``.
Optional estimates default to absent, which yields no distance/time charge
and a lower confidence band.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from dispatch_pricing.models.job import JobType


class GeoPoint(BaseModel):
    """A WGS84 coordinate pair."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90, description="Latitude in decimal degrees")
    lng: float = Field(ge=-180, le=180, description="Longitude in decimal degrees")
    address: Optional[str] = Field(default=None, description="Free-form address, informational only")


class PricingContext(BaseModel):
    """Everything the engine needs to know about a job to price it."""

    model_config = ConfigDict(frozen=True)

    job_type: JobType
    service_type_id: uuid.UUID
    location: GeoPoint
    scheduled_for: Optional[datetime] = Field(
        default=None,
        description="Requested start for scheduled jobs (timezone-aware)",
    )
    customer_id: Optional[uuid.UUID] = None
    fleet_account_id: Optional[uuid.UUID] = None
    vehicle_count: Optional[int] = Field(default=None, ge=1)
    estimated_duration: Optional[float] = Field(
        default=None,
        ge=0,
        description="Estimated job duration in minutes",
    )
    estimated_distance: Optional[float] = Field(
        default=None,
        ge=0,
        description="Estimated travel distance in miles",
    )
    referral_code: Optional[str] = None
    is_first_time: bool = False
    loyalty_points: Optional[int] = Field(default=None, ge=0)
