"""
Dynamic Pricing Engine.

Computes the price of an emergency or scheduled service job as a fixed
pipeline:

1. Base price for the service type (missing pricing is a hard error)
2. + distance charge (miles x per-mile rate)
3. + time charge (hours x per-hour rate)
4. Active pricing rules, highest priority first, each compounding on the
   running total (see ``ruleApplicator``)
5. Fleet contract override: a flat rate replaces the total, otherwise a
   percentage discount is deducted
6. Surge (zone map vs. live supply/demand, capped at 3.0x)
7. Minimum-charge floor
8. Flat 8% tax

Every fresh breakdown is cached for five minutes under the request
fingerprint and handed to the audit sink in the background.  A breakdown
becomes authoritative only through ``lock_price``.

One ``PricingEngine`` is built at startup and shared by request handlers;
``start()``/``stop()`` own the background surge refresher.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dispatch_pricing.core.config import Settings, settings
from dispatch_pricing.jobs.surgeRefresher import SurgeZoneRefresher
from dispatch_pricing.models import FleetAccount, JobType, PricingRule, PricingRuleType
from dispatch_pricing.schemas.pricing import PricingContext
from dispatch_pricing.services.auditSink import AuditSink, MemoryAuditSink
from dispatch_pricing.services.conditionEvaluator import ConditionEvaluator
from dispatch_pricing.services.defaultPricingRules import DEFAULT_PRICING_RULES
from dispatch_pricing.services.geoService import DEFAULT_HUBS, Hub
from dispatch_pricing.services.pricingAnalytics import PricingAnalytics, summarize_quotes
from dispatch_pricing.services.pricingStore import PricingStore
from dispatch_pricing.services.quoteCache import QuoteCache, make_cache_key
from dispatch_pricing.services.ruleApplicator import apply_rule, order_rules
from dispatch_pricing.services.surgeEstimator import (
    DemandGridZonePolicy,
    SurgeEstimator,
    ZoneSurgePolicy,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SURGE_RULE_ID = "surge"
FLEET_OVERRIDE_RULE_ID = "fleet-override"


class Confidence(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# +/- spread applied to the pre-tax total for the displayed price range
PRICE_RANGE_VARIANCE: dict[Confidence, Decimal] = {
    Confidence.HIGH: Decimal("0.10"),
    Confidence.MEDIUM: Decimal("0.20"),
    Confidence.LOW: Decimal("0.30"),
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PricingNotFoundError(Exception):
    """Raised when no base pricing is configured for a service type."""

    def __init__(self, service_type_id: uuid.UUID) -> None:
        self.service_type_id = service_type_id
        super().__init__(f"No pricing found for service type '{service_type_id}'.")


class QuoteLockedError(Exception):
    """Raised when locking a breakdown that is already locked."""

    def __init__(self, quote_id: uuid.UUID) -> None:
        self.quote_id = quote_id
        super().__init__(f"Quote '{quote_id}' is already locked.")


# ---------------------------------------------------------------------------
# Response DTOs
# ---------------------------------------------------------------------------

def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class RuleApplied:
    """One adjustment that changed the running total."""
    rule_id: str
    rule_name: str
    rule_type: str
    impact: Decimal
    multiplier: Optional[Decimal] = None
    fixed_amount: Optional[Decimal] = None
    # None for the fleet-override and surge entries
    priority: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "rule_type": self.rule_type,
            "multiplier": _money(self.multiplier),
            "fixed_amount": _money(self.fixed_amount),
            "priority": self.priority,
            "impact": str(self.impact),
        }


@dataclass(frozen=True)
class PriceRange:
    min: Decimal
    max: Decimal


@dataclass
class PricingBreakdown:
    """Full price breakdown for a quote.

    ``subtotal`` is the pre-tax total after rules, fleet override, surge and
    the minimum-charge floor; ``total_amount == subtotal + tax_amount``.
    """
    base_price: Decimal
    rules_applied: list[RuleApplied]
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    confidence: Confidence
    created_at: datetime
    expires_at: datetime
    distance_charge: Optional[Decimal] = None
    time_charge: Optional[Decimal] = None
    surge_amount: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    price_range: Optional[PriceRange] = None
    locked: bool = False
    quote_id: uuid.UUID = field(default_factory=uuid.uuid4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "quote_id": str(self.quote_id),
            "base_price": str(self.base_price),
            "distance_charge": _money(self.distance_charge),
            "time_charge": _money(self.time_charge),
            "rules_applied": [r.to_dict() for r in self.rules_applied],
            "subtotal": str(self.subtotal),
            "surge_amount": _money(self.surge_amount),
            "discount_amount": _money(self.discount_amount),
            "tax_amount": str(self.tax_amount),
            "total_amount": str(self.total_amount),
            "confidence": self.confidence.value,
            "price_range": (
                {"min": str(self.price_range.min), "max": str(self.price_range.max)}
                if self.price_range is not None
                else None
            ),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "locked": self.locked,
        }


# ---------------------------------------------------------------------------
# Confidence helpers
# ---------------------------------------------------------------------------

def determine_confidence(context: PricingContext) -> Confidence:
    """Low without both estimates; high for a dated scheduled job; else medium."""
    if not context.estimated_distance or not context.estimated_duration:
        return Confidence.LOW
    if context.job_type is JobType.SCHEDULED and context.scheduled_for is not None:
        return Confidence.HIGH
    return Confidence.MEDIUM


def price_range_for(amount: Decimal, confidence: Confidence) -> PriceRange:
    variance = PRICE_RANGE_VARIANCE[confidence]
    return PriceRange(min=amount * (1 - variance), max=amount * (1 + variance))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _load_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown pricing timezone %r; reading rule clocks in UTC", name)
        return timezone.utc


class PricingEngine:
    """Owns the quote cache, the surge zone state and the refresher task.

    Args:
        store: Persistence collaborator for pricing, rules, fleets, jobs
            and contractors.
        audit_sink: Receives every computed quote.  Defaults to an
            in-memory sink.
        config: Settings instance (tax rate, TTLs, surge parameters).
        zone_policy: Zone refresh algorithm; defaults to
            ``DemandGridZonePolicy`` over ``store``.
        hubs: Reference hubs for remote-area rules.
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: PricingStore,
        audit_sink: Optional[AuditSink] = None,
        *,
        config: Settings = settings,
        zone_policy: Optional[ZoneSurgePolicy] = None,
        hubs: Sequence[Hub] = DEFAULT_HUBS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._audit = audit_sink if audit_sink is not None else MemoryAuditSink()
        self._config = config
        self._hubs = tuple(hubs)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._local_tz = _load_timezone(config.pricing_timezone)
        self._quote_ttl = timedelta(seconds=config.quote_ttl_seconds)

        self.cache = QuoteCache(ttl_seconds=config.quote_ttl_seconds)
        self.surge = SurgeEstimator(
            store,
            cap=config.surge_multiplier_cap,
            demand_radius_miles=config.demand_radius_miles,
            query_limit=config.demand_query_limit,
            cell_size=config.surge_zone_size_degrees,
        )
        self.refresher = SurgeZoneRefresher(
            self.surge.zone_map,
            zone_policy
            if zone_policy is not None
            else DemandGridZonePolicy(
                store,
                cell_size=config.surge_zone_size_degrees,
                query_limit=config.demand_query_limit,
            ),
            interval_seconds=config.surge_refresh_interval_seconds,
        )
        self._audit_tasks: set[asyncio.Task[None]] = set()

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        await self.refresher.start()

    async def stop(self) -> None:
        await self.refresher.stop()
        await self.flush_audit()

    async def flush_audit(self) -> None:
        """Wait for in-flight audit emits to finish."""
        if self._audit_tasks:
            await asyncio.gather(*list(self._audit_tasks))

    # -- Pricing ------------------------------------------------------------

    async def calculate_price(
        self,
        context: PricingContext,
        now: Optional[datetime] = None,
    ) -> PricingBreakdown:
        """Price a job request.

        Returns an unlocked cached breakdown when one exists for the same
        fingerprint within the quote TTL.

        Raises:
            PricingNotFoundError: No pricing is configured for the service type.
        """
        now = _as_utc(now or self._clock())
        cache_key = make_cache_key(context)
        cached = self.cache.get(cache_key, now)
        if cached is not None:
            logger.debug("Quote cache hit for %s", cache_key)
            return cached

        pricing = await self._store.get_current_pricing(context.service_type_id)
        if pricing is None:
            raise PricingNotFoundError(context.service_type_id)

        base_price = Decimal(pricing.base_price)
        total = base_price
        rules_applied: list[RuleApplied] = []

        distance_charge: Optional[Decimal] = None
        if context.estimated_distance and pricing.per_mile_rate is not None:
            distance_charge = Decimal(str(context.estimated_distance)) * Decimal(pricing.per_mile_rate)
            total += distance_charge

        time_charge: Optional[Decimal] = None
        if context.estimated_duration and pricing.per_hour_rate is not None:
            hours = Decimal(str(context.estimated_duration)) / Decimal("60")
            time_charge = hours * Decimal(pricing.per_hour_rate)
            total += time_charge

        # Rules, compounding in priority order
        evaluator = ConditionEvaluator(self._fleet_lookup(), self._local_tz, self._hubs)
        for rule in order_rules(await self._store.get_active_pricing_rules()):
            if not await evaluator.matches(rule, context, now):
                continue
            impact = apply_rule(rule, total, self._config.rule_impact_cap_ratio)
            if impact == 0:
                continue
            rules_applied.append(self._rule_entry(rule, impact))
            total += impact

        total = await self._apply_fleet_override(context, total, rules_applied)

        surge_amount: Optional[Decimal] = None
        surge_multiplier = await self.surge.multiplier(context)
        if surge_multiplier > 1:
            surge_amount = total * (surge_multiplier - 1)
            total += surge_amount
            rules_applied.append(
                RuleApplied(
                    rule_id=SURGE_RULE_ID,
                    rule_name="Surge Pricing",
                    rule_type=PricingRuleType.DEMAND_BASED.value,
                    multiplier=surge_multiplier,
                    impact=surge_amount,
                )
            )

        if pricing.minimum_charge is not None and total < Decimal(pricing.minimum_charge):
            total = Decimal(pricing.minimum_charge)

        tax_amount = total * self._config.tax_rate
        discount_total = sum((-r.impact for r in rules_applied if r.impact < 0), Decimal("0"))
        confidence = determine_confidence(context)

        breakdown = PricingBreakdown(
            base_price=base_price,
            distance_charge=distance_charge,
            time_charge=time_charge,
            rules_applied=rules_applied,
            subtotal=total,
            surge_amount=surge_amount,
            discount_amount=discount_total or None,
            tax_amount=tax_amount,
            total_amount=total + tax_amount,
            confidence=confidence,
            price_range=price_range_for(total, confidence),
            created_at=now,
            expires_at=now + self._quote_ttl,
        )

        self.cache.put(cache_key, breakdown, now)
        snapshot = dataclasses.replace(breakdown)
        self._spawn_audit(
            lambda: self._audit.record_quote(context, snapshot),
            f"quote {breakdown.quote_id}",
        )
        return breakdown

    async def lock_price(self, job_id: uuid.UUID, breakdown: PricingBreakdown) -> None:
        """Freeze a quote onto a job and persist its total as the job's estimate.

        The quote cache is neither read nor written.

        Raises:
            QuoteLockedError: The breakdown was already locked.
        """
        if breakdown.locked:
            raise QuoteLockedError(breakdown.quote_id)

        await self._store.update_job_estimated_cost(job_id, breakdown.total_amount)
        breakdown.locked = True
        logger.info(
            "Locked quote %s onto job %s at %s",
            breakdown.quote_id,
            job_id,
            breakdown.total_amount,
        )
        self._spawn_audit(
            lambda: self._audit.record_lock(job_id, breakdown),
            f"lock of quote {breakdown.quote_id}",
        )

    async def get_surge_multiplier(self, context: PricingContext) -> Decimal:
        return await self.surge.multiplier(context)

    async def test_pricing_rules(self, scenarios: Sequence[PricingContext]) -> list[PricingBreakdown]:
        """Price each scenario in order through ``calculate_price``."""
        results: list[PricingBreakdown] = []
        for scenario in scenarios:
            results.append(await self.calculate_price(scenario))
        return results

    async def get_pricing_analytics(self, start_date: datetime, end_date: datetime) -> PricingAnalytics:
        """Aggregate the audited quotes created in ``[start_date, end_date]``.

        Naive bounds are read as UTC.
        """
        quotes = await self._audit.list_quotes(_as_utc(start_date), _as_utc(end_date))
        return summarize_quotes(quotes)

    async def create_default_pricing_rules(self) -> list[PricingRule]:
        """Insert the baseline rule set.  Not idempotent."""
        created: list[PricingRule] = []
        for definition in DEFAULT_PRICING_RULES:
            created.append(
                await self._store.create_pricing_rule({**definition, "is_active": True})
            )
        logger.info("Seeded %d default pricing rules", len(created))
        return created

    # -- Internal helpers ---------------------------------------------------

    def _fleet_lookup(self) -> Callable[[uuid.UUID], Awaitable[Optional[FleetAccount]]]:
        """Fleet account fetcher memoised for one calculation."""
        seen: dict[uuid.UUID, Optional[FleetAccount]] = {}

        async def lookup(fleet_account_id: uuid.UUID) -> Optional[FleetAccount]:
            if fleet_account_id not in seen:
                seen[fleet_account_id] = await self._store.get_fleet_account(fleet_account_id)
            return seen[fleet_account_id]

        return lookup

    @staticmethod
    def _rule_entry(rule: PricingRule, impact: Decimal) -> RuleApplied:
        return RuleApplied(
            rule_id=str(rule.id),
            rule_name=rule.name,
            rule_type=PricingRuleType(rule.rule_type).value,
            multiplier=Decimal(rule.multiplier) if rule.multiplier is not None else None,
            fixed_amount=Decimal(rule.fixed_amount) if rule.fixed_amount is not None else None,
            priority=rule.priority,
            impact=impact,
        )

    async def _apply_fleet_override(
        self,
        context: PricingContext,
        total: Decimal,
        rules_applied: list[RuleApplied],
    ) -> Decimal:
        if context.fleet_account_id is None:
            return total

        overrides = await self._store.get_fleet_pricing_overrides(context.fleet_account_id)
        override = next(
            (o for o in overrides if str(o.service_type_id) == str(context.service_type_id)),
            None,
        )
        if override is None:
            return total

        if override.flat_rate_override is not None:
            logger.debug(
                "Fleet %s flat rate %s replaces %s",
                context.fleet_account_id,
                override.flat_rate_override,
                total,
            )
            return Decimal(override.flat_rate_override)

        if override.discount_percentage:
            fraction = Decimal(override.discount_percentage) / Decimal("100")
            discount = total * fraction
            rules_applied.append(
                RuleApplied(
                    rule_id=FLEET_OVERRIDE_RULE_ID,
                    rule_name="Fleet Account Discount",
                    rule_type="fleet_discount",
                    multiplier=1 - fraction,
                    impact=-discount,
                )
            )
            return total - discount

        return total

    def _spawn_audit(self, emit: Callable[[], Awaitable[None]], what: str) -> None:
        async def run() -> None:
            try:
                await emit()
            except Exception:
                logger.exception("Audit sink failed to record %s", what)

        task = asyncio.create_task(run())
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_tasks.discard)
