"""
Pricing Store
=============

Persistence collaborator consumed by the pricing engine.  The engine only
depends on the ``PricingStore`` protocol; ``SqlPricingStore`` is the
PostgreSQL implementation built on async SQLAlchemy.

Each call opens its own short-lived session from the supplied factory.
Errors are not caught here: retries and timeouts belong to the caller's
infrastructure, and the engine lets them propagate.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Protocol, Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_pricing.models import (
    ContractorProfile,
    FleetAccount,
    FleetPricingOverride,
    Job,
    JobStatus,
    PricingRule,
    ServicePricing,
)
from dispatch_pricing.services.geoService import bounding_box

logger = logging.getLogger(__name__)


def _within_box(
    lat_column: Any,
    lng_column: Any,
    near: tuple[float, float],
    radius_miles: float,
) -> list[Any]:
    """Bounding-box predicates for an indexed prefilter on lat/lng columns.

    Rows without a location never satisfy ``BETWEEN``.
    """
    min_lat, max_lat, min_lng, max_lng = bounding_box(near[0], near[1], radius_miles)
    return [
        lat_column.between(min_lat, max_lat),
        lng_column.between(min_lng, max_lng),
    ]


class PricingStore(Protocol):
    """Read/write operations the engine needs from storage."""

    async def get_current_pricing(self, service_type_id: uuid.UUID) -> Optional[ServicePricing]: ...

    async def get_active_pricing_rules(self) -> Sequence[PricingRule]: ...

    async def get_fleet_pricing_overrides(
        self, fleet_account_id: uuid.UUID
    ) -> Sequence[FleetPricingOverride]: ...

    async def get_fleet_account(self, fleet_account_id: uuid.UUID) -> Optional[FleetAccount]: ...

    async def find_jobs(
        self,
        status: JobStatus,
        limit: int,
        near: Optional[tuple[float, float]] = None,
        radius_miles: Optional[float] = None,
    ) -> Sequence[Job]: ...

    async def find_contractors(
        self,
        is_available: bool,
        limit: int,
        near: Optional[tuple[float, float]] = None,
        radius_miles: Optional[float] = None,
    ) -> Sequence[ContractorProfile]: ...

    async def update_job_estimated_cost(self, job_id: uuid.UUID, amount: Decimal) -> None: ...

    async def create_pricing_rule(self, values: dict[str, Any]) -> PricingRule: ...


class SqlPricingStore:
    """``PricingStore`` backed by PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_current_pricing(self, service_type_id: uuid.UUID) -> Optional[ServicePricing]:
        """Latest pricing row in effect now for a service type."""
        now = datetime.now(timezone.utc)
        stmt = (
            select(ServicePricing)
            .where(
                and_(
                    ServicePricing.service_type_id == service_type_id,
                    ServicePricing.effective_date <= now,
                    or_(
                        ServicePricing.expiry_date.is_(None),
                        ServicePricing.expiry_date >= now,
                    ),
                )
            )
            .order_by(ServicePricing.effective_date.desc())
            .limit(1)
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def get_active_pricing_rules(self) -> Sequence[PricingRule]:
        """Active rules inside their validity window.

        Ordered by priority (highest first), then creation time, so that
        equal-priority rules keep insertion order.
        """
        now = datetime.now(timezone.utc)
        stmt = (
            select(PricingRule)
            .where(
                and_(
                    PricingRule.is_active == True,  # noqa: E712
                    or_(PricingRule.start_date.is_(None), PricingRule.start_date <= now),
                    or_(PricingRule.end_date.is_(None), PricingRule.end_date >= now),
                )
            )
            .order_by(PricingRule.priority.desc(), PricingRule.created_at.asc())
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalars().all()

    async def get_fleet_pricing_overrides(
        self, fleet_account_id: uuid.UUID
    ) -> Sequence[FleetPricingOverride]:
        stmt = select(FleetPricingOverride).where(
            FleetPricingOverride.fleet_account_id == fleet_account_id
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalars().all()

    async def get_fleet_account(self, fleet_account_id: uuid.UUID) -> Optional[FleetAccount]:
        stmt = select(FleetAccount).where(FleetAccount.id == fleet_account_id)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()

    async def find_jobs(
        self,
        status: JobStatus,
        limit: int,
        near: Optional[tuple[float, float]] = None,
        radius_miles: Optional[float] = None,
    ) -> Sequence[Job]:
        """Jobs in ``status``, optionally prefiltered to a box around ``near``."""
        conditions = [Job.status == status]
        if near is not None and radius_miles is not None:
            conditions.extend(
                _within_box(Job.service_latitude, Job.service_longitude, near, radius_miles)
            )
        stmt = select(Job).where(and_(*conditions)).limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalars().all()

    async def find_contractors(
        self,
        is_available: bool,
        limit: int,
        near: Optional[tuple[float, float]] = None,
        radius_miles: Optional[float] = None,
    ) -> Sequence[ContractorProfile]:
        conditions = [ContractorProfile.is_available == is_available]
        if near is not None and radius_miles is not None:
            conditions.extend(
                _within_box(
                    ContractorProfile.current_latitude,
                    ContractorProfile.current_longitude,
                    near,
                    radius_miles,
                )
            )
        stmt = select(ContractorProfile).where(and_(*conditions)).limit(limit)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return result.scalars().all()

    async def update_job_estimated_cost(self, job_id: uuid.UUID, amount: Decimal) -> None:
        stmt = update(Job).where(Job.id == job_id).values(estimated_cost=amount)
        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()
        logger.info("Persisted locked estimate %s for job %s", amount, job_id)

    async def create_pricing_rule(self, values: dict[str, Any]) -> PricingRule:
        rule = PricingRule(**values)
        async with self._session_factory() as db:
            db.add(rule)
            await db.commit()
            await db.refresh(rule)
        return rule
