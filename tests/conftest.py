"""
Shared pytest fixtures for pricing engine unit tests.

Provides a mock ``PricingStore`` and sample ORM objects that mirror
production rows without requiring a live database connection.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from dispatch_pricing.models import (
    ContractorProfile,
    FleetAccount,
    FleetPricingOverride,
    FleetPricingTier,
    Job,
    JobStatus,
    JobType,
    PricingRule,
    PricingRuleType,
    ServicePricing,
)
from dispatch_pricing.schemas.pricing import GeoPoint, PricingContext
from dispatch_pricing.services.auditSink import MemoryAuditSink

# Wednesday 2025-03-12, 14:00 UTC
NOW = datetime(2025, 3, 12, 14, 0, tzinfo=timezone.utc)

# Midtown Manhattan, a few miles from the NYC hub
JOB_LAT = 40.7580
JOB_LNG = -73.9855


# ---------------------------------------------------------------------------
# Clock / identifiers
# ---------------------------------------------------------------------------


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def service_type_id() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# ORM object factories
# ---------------------------------------------------------------------------


@pytest.fixture
def service_pricing(service_type_id) -> ServicePricing:
    """$100 base, $50 minimum, no per-mile or per-hour rate."""
    return ServicePricing(
        id=uuid.uuid4(),
        service_type_id=service_type_id,
        base_price=Decimal("100.00"),
        per_mile_rate=None,
        per_hour_rate=None,
        minimum_charge=Decimal("50.00"),
        effective_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_rule():
    """Factory for active ``PricingRule`` rows with no conditions."""

    def _make(
        name: str = "Test Rule",
        *,
        multiplier: Optional[str] = None,
        fixed_amount: Optional[str] = None,
        priority: int = 0,
        conditions: Any = None,
        rule_type: PricingRuleType = PricingRuleType.TIME_BASED,
        is_active: bool = True,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> PricingRule:
        return PricingRule(
            id=uuid.uuid4(),
            name=name,
            rule_type=rule_type,
            conditions={} if conditions is None else conditions,
            multiplier=Decimal(multiplier) if multiplier is not None else None,
            fixed_amount=Decimal(fixed_amount) if fixed_amount is not None else None,
            priority=priority,
            is_active=is_active,
            start_date=start_date,
            end_date=end_date,
        )

    return _make


@pytest.fixture
def make_context(service_type_id):
    """Factory for ``PricingContext`` at the default job location."""

    def _make(**overrides: Any) -> PricingContext:
        values: dict[str, Any] = {
            "job_type": JobType.EMERGENCY,
            "service_type_id": service_type_id,
            "location": GeoPoint(lat=JOB_LAT, lng=JOB_LNG),
        }
        values.update(overrides)
        return PricingContext(**values)

    return _make


@pytest.fixture
def make_job():
    def _make(lat: Optional[float] = JOB_LAT, lng: Optional[float] = JOB_LNG) -> Job:
        return Job(
            id=uuid.uuid4(),
            job_type=JobType.EMERGENCY,
            status=JobStatus.ASSIGNED,
            service_type_id=uuid.uuid4(),
            service_latitude=Decimal(str(lat)) if lat is not None else None,
            service_longitude=Decimal(str(lng)) if lng is not None else None,
        )

    return _make


@pytest.fixture
def make_contractor():
    def _make(lat: Optional[float] = JOB_LAT, lng: Optional[float] = JOB_LNG) -> ContractorProfile:
        return ContractorProfile(
            id=uuid.uuid4(),
            user_id=uuid.uuid4(),
            is_available=True,
            current_latitude=Decimal(str(lat)) if lat is not None else None,
            current_longitude=Decimal(str(lng)) if lng is not None else None,
        )

    return _make


@pytest.fixture
def gold_fleet() -> FleetAccount:
    return FleetAccount(
        id=uuid.uuid4(),
        company_name="Acme Logistics",
        pricing_tier=FleetPricingTier.GOLD,
        is_active=True,
    )


@pytest.fixture
def make_fleet_override(service_type_id):
    def _make(
        fleet_account_id: uuid.UUID,
        *,
        discount_percentage: Optional[str] = None,
        flat_rate_override: Optional[str] = None,
        for_service_type: Optional[uuid.UUID] = None,
    ) -> FleetPricingOverride:
        return FleetPricingOverride(
            id=uuid.uuid4(),
            fleet_account_id=fleet_account_id,
            service_type_id=for_service_type or service_type_id,
            discount_percentage=Decimal(discount_percentage) if discount_percentage else None,
            flat_rate_override=Decimal(flat_rate_override) if flat_rate_override else None,
        )

    return _make


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Individual tests configure ``mock_db.execute.return_value`` to control
    query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    return session


@pytest.fixture
def session_factory(mock_db) -> MagicMock:
    """Stands in for ``async_sessionmaker``; every session is ``mock_db``."""
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_db
    return factory


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_store(service_pricing, make_contractor) -> AsyncMock:
    """Async mock of ``PricingStore``.

    Defaults: pricing configured, no rules, no fleets, no assigned jobs and
    one available contractor at the job location (so no surge applies).
    Individual tests override ``return_value`` as needed.
    """
    store = AsyncMock()
    store.get_current_pricing.return_value = service_pricing
    store.get_active_pricing_rules.return_value = []
    store.get_fleet_pricing_overrides.return_value = []
    store.get_fleet_account.return_value = None
    store.find_jobs.return_value = []
    store.find_contractors.return_value = [make_contractor()]
    store.update_job_estimated_cost.return_value = None
    store.create_pricing_rule.side_effect = lambda values: PricingRule(id=uuid.uuid4(), **values)
    return store


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()
