"""
Condition Evaluator
===================

Decides whether a pricing rule applies to a request at a given instant.

A rule matches only when it is inside its validity window and *every*
clause it declares is satisfied; undeclared clauses are not constraints.
A conditions payload that cannot be parsed never matches -- the rule is
skipped and the calculation carries on.

Known limitation: ``timeOfDay`` windows are compared lexically on the
local ``HH:MM`` string, so a window that crosses midnight (``22:00`` to
``06:00``) can never match.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone, tzinfo
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError

from dispatch_pricing.models.job import JobType
from dispatch_pricing.models.pricing import FleetAccount, PricingRule
from dispatch_pricing.schemas.conditions import (
    Clause,
    CoordinatesCondition,
    CustomerType,
    CustomerTypeCondition,
    DayOfWeekCondition,
    DistanceFromHubCondition,
    FleetTierCondition,
    ImmediateUrgency,
    RuleConditions,
    ScheduledUrgency,
    ServiceTypeCondition,
    TimeOfDayCondition,
    ValidityWindow,
    WithinHoursUrgency,
    ZoneCondition,
)
from dispatch_pricing.schemas.pricing import PricingContext
from dispatch_pricing.services.geoService import (
    DEFAULT_HUBS,
    Hub,
    haversine_distance,
    nearest_hub_distance,
)

logger = logging.getLogger(__name__)

FleetLookup = Callable[[uuid.UUID], Awaitable[Optional[FleetAccount]]]

# Indexed by ``datetime.weekday()``; independent of the process locale
DAY_NAMES: tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def _as_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def parse_conditions(raw: Any) -> Optional[RuleConditions]:
    """Parse a stored conditions payload, or return None if it is malformed."""
    if not isinstance(raw, dict):
        return None
    try:
        return RuleConditions.model_validate(raw)
    except ValidationError:
        return None


# ---------------------------------------------------------------------------
# Clause checks (pure)
# ---------------------------------------------------------------------------

def _check_validity_window(window: ValidityWindow, now: datetime) -> bool:
    if not window.is_active:
        return False
    if window.start_date is not None and _as_aware(window.start_date) > now:
        return False
    if window.end_date is not None and _as_aware(window.end_date) < now:
        return False
    return True


def _check_time_of_day(clause: TimeOfDayCondition, local_now: datetime) -> bool:
    current = local_now.strftime("%H:%M")
    return not (current < clause.start or current > clause.end)


def _check_day_of_week(clause: DayOfWeekCondition, local_now: datetime) -> bool:
    return DAY_NAMES[local_now.weekday()] in clause.days


def _check_customer_type(clause: CustomerTypeCondition, context: PricingContext) -> bool:
    """All declared customer-type constraints must hold at once.

    ``new`` needs a first-time customer, any other type excludes first-timers,
    ``fleet`` needs a fleet account, and fleet customers only match ``fleet``.
    """
    wanted = clause.customer_type
    has_fleet = context.fleet_account_id is not None

    if wanted is CustomerType.NEW and not context.is_first_time:
        return False
    if wanted is not CustomerType.NEW and context.is_first_time:
        return False
    if wanted is CustomerType.FLEET and not has_fleet:
        return False
    if has_fleet and wanted is not CustomerType.FLEET:
        return False
    return True


def _check_urgency(
    clause: ImmediateUrgency | WithinHoursUrgency | ScheduledUrgency,
    context: PricingContext,
    now: datetime,
) -> bool:
    if isinstance(clause, (ImmediateUrgency, WithinHoursUrgency)):
        return context.job_type is JobType.EMERGENCY

    # Scheduled: booked more than ``hours`` ahead
    if context.job_type is not JobType.SCHEDULED or not clause.hours:
        return False
    if context.scheduled_for is None:
        hours_until = 0.0
    else:
        hours_until = (_as_aware(context.scheduled_for) - now).total_seconds() / 3600
    return hours_until > clause.hours


def _check_location(
    clause: DistanceFromHubCondition | CoordinatesCondition | ZoneCondition,
    context: PricingContext,
    hubs: Sequence[Hub],
) -> bool:
    lat, lng = context.location.lat, context.location.lng

    if isinstance(clause, DistanceFromHubCondition):
        return nearest_hub_distance(lat, lng, hubs) > clause.value

    if isinstance(clause, CoordinatesCondition):
        target = clause.value
        return haversine_distance(lat, lng, target.lat, target.lng) <= target.radius

    # ZoneCondition: zone geometry is not modelled
    return True


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class ConditionEvaluator:
    """Match rules against a pricing context.

    Args:
        fleet_lookup: Coroutine returning the ``FleetAccount`` for an id,
            used only by ``fleetTier`` clauses.
        local_tz: Zone in which time-of-day and weekday clauses are read.
        hubs: Reference points for ``distance`` location clauses.
    """

    def __init__(
        self,
        fleet_lookup: FleetLookup,
        local_tz: tzinfo = timezone.utc,
        hubs: Sequence[Hub] = DEFAULT_HUBS,
    ) -> None:
        self._fleet_lookup = fleet_lookup
        self._local_tz = local_tz
        self._hubs = tuple(hubs)

    async def matches(self, rule: PricingRule, context: PricingContext, now: datetime) -> bool:
        now = _as_aware(now)
        window = ValidityWindow(
            is_active=bool(rule.is_active),
            start_date=rule.start_date,
            end_date=rule.end_date,
        )
        if not _check_validity_window(window, now):
            return False

        conditions = parse_conditions(rule.conditions)
        if conditions is None:
            logger.warning(
                "Pricing rule %s (%s) has malformed conditions; skipping",
                rule.id,
                rule.name,
            )
            return False

        for clause in conditions.clauses():
            if not await self._check_clause(clause, context, now):
                logger.debug("Rule %s rejected by %s", rule.name, type(clause).__name__)
                return False
        return True

    async def _check_clause(self, clause: Clause, context: PricingContext, now: datetime) -> bool:
        local_now = now.astimezone(self._local_tz)

        if isinstance(clause, TimeOfDayCondition):
            return _check_time_of_day(clause, local_now)
        if isinstance(clause, DayOfWeekCondition):
            return _check_day_of_week(clause, local_now)
        if isinstance(clause, (DistanceFromHubCondition, CoordinatesCondition, ZoneCondition)):
            return _check_location(clause, context, self._hubs)
        if isinstance(clause, (ImmediateUrgency, WithinHoursUrgency, ScheduledUrgency)):
            return _check_urgency(clause, context, now)
        if isinstance(clause, CustomerTypeCondition):
            return _check_customer_type(clause, context)
        if isinstance(clause, FleetTierCondition):
            return await self._check_fleet_tier(clause, context)
        if isinstance(clause, ServiceTypeCondition):
            return str(context.service_type_id).lower() in clause.service_type_ids
        if isinstance(clause, ValidityWindow):
            return _check_validity_window(clause, now)
        raise TypeError(f"Unhandled condition clause: {type(clause).__name__}")

    async def _check_fleet_tier(self, clause: FleetTierCondition, context: PricingContext) -> bool:
        if context.fleet_account_id is None:
            return False
        fleet = await self._fleet_lookup(context.fleet_account_id)
        return fleet is not None and fleet.pricing_tier == clause.tier
