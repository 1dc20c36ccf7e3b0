"""
Typed rule conditions.

``PricingRule.conditions`` is stored as JSON with camelCase keys::

    {
        "timeOfDay": {"start": "06:00", "end": "09:00"},
        "dayOfWeek": ["Saturday", "Sunday"],
        "location": {"type": "coordinates", "value": {"lat": 40.7, "lng": -74.0, "radius": 10}},
        "urgency": {"type": "scheduled", "hours": 24},
        "customerType": "new",
        "fleetTier": "gold",
        "serviceType": ["<service type id>"]
    }

Every key is optional.  ``RuleConditions.clauses()`` flattens a parsed
payload into one clause object per declared condition kind so the
evaluator can dispatch on the clause type.  Unknown keys are ignored;
anything else that does not validate raises ``pydantic.ValidationError``.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from dispatch_pricing.models.pricing import FleetPricingTier

_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


class CustomerType(str, enum.Enum):
    NEW = "new"
    RETURNING = "returning"
    VIP = "vip"
    FLEET = "fleet"


class _Clause(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Time clauses
# ---------------------------------------------------------------------------

class TimeOfDayCondition(_Clause):
    """Local HH:MM window, compared lexically (no overnight wrap)."""

    start: str = Field(pattern=_HHMM)
    end: str = Field(pattern=_HHMM)


class DayOfWeekCondition(_Clause):
    days: tuple[str, ...]


class ValidityWindow(_Clause):
    """Built from the rule row itself rather than from the JSON payload."""

    is_active: bool
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Location clauses (discriminated on ``type``)
# ---------------------------------------------------------------------------

class DistanceFromHubCondition(_Clause):
    """Matches when the job is farther than ``value`` miles from every hub."""

    type: Literal["distance"]
    value: float = Field(ge=0)


class Coordinates(_Clause):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    radius: float = Field(ge=0)


class CoordinatesCondition(_Clause):
    type: Literal["coordinates"]
    value: Coordinates


class ZoneCondition(_Clause):
    """Named service zone.  Zone geometry is not modelled; always matches."""

    type: Literal["zone"]
    value: Optional[str] = None


LocationCondition = Annotated[
    Union[DistanceFromHubCondition, CoordinatesCondition, ZoneCondition],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Urgency clauses (discriminated on ``type``)
# ---------------------------------------------------------------------------

class ImmediateUrgency(_Clause):
    type: Literal["immediate"]


class WithinHoursUrgency(_Clause):
    type: Literal["within_hours"]
    hours: Optional[float] = Field(default=None, ge=0)


class ScheduledUrgency(_Clause):
    """Scheduled job booked more than ``hours`` ahead."""

    type: Literal["scheduled"]
    hours: Optional[float] = Field(default=None, ge=0)


UrgencyCondition = Annotated[
    Union[ImmediateUrgency, WithinHoursUrgency, ScheduledUrgency],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Customer / fleet / service clauses
# ---------------------------------------------------------------------------

class CustomerTypeCondition(_Clause):
    customer_type: CustomerType


class FleetTierCondition(_Clause):
    tier: FleetPricingTier


class ServiceTypeCondition(_Clause):
    service_type_ids: frozenset[str]


Clause = Union[
    TimeOfDayCondition,
    DayOfWeekCondition,
    DistanceFromHubCondition,
    CoordinatesCondition,
    ZoneCondition,
    ImmediateUrgency,
    WithinHoursUrgency,
    ScheduledUrgency,
    CustomerTypeCondition,
    FleetTierCondition,
    ServiceTypeCondition,
    ValidityWindow,
]


class RuleConditions(BaseModel):
    """Parsed form of a rule's stored conditions payload."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    time_of_day: Optional[TimeOfDayCondition] = Field(default=None, alias="timeOfDay")
    day_of_week: Optional[list[str]] = Field(default=None, alias="dayOfWeek")
    location: Optional[LocationCondition] = None
    urgency: Optional[UrgencyCondition] = None
    customer_type: Optional[CustomerType] = Field(default=None, alias="customerType")
    fleet_tier: Optional[FleetPricingTier] = Field(default=None, alias="fleetTier")
    service_type: Optional[list[str]] = Field(default=None, alias="serviceType")

    def clauses(self) -> list[Clause]:
        """Return one clause per declared condition.  Empty lists are not constraints."""
        result: list[Clause] = []
        if self.time_of_day is not None:
            result.append(self.time_of_day)
        if self.day_of_week:
            result.append(DayOfWeekCondition(days=tuple(self.day_of_week)))
        if self.location is not None:
            result.append(self.location)
        if self.urgency is not None:
            result.append(self.urgency)
        if self.customer_type is not None:
            result.append(CustomerTypeCondition(customer_type=self.customer_type))
        if self.fleet_tier is not None:
            result.append(FleetTierCondition(tier=self.fleet_tier))
        if self.service_type:
            result.append(
                ServiceTypeCondition(service_type_ids=frozenset(s.lower() for s in self.service_type))
            )
        return result
