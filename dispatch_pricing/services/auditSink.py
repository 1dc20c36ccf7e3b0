"""
Audit Sink
==========

Receives every freshly computed quote (and every lock) for compliance
logging and later analytics.  The engine calls the sink from background
tasks and swallows its failures, so implementations are free to raise.

- ``MemoryAuditSink``: logs and keeps a bounded in-process history.
- ``SqlAuditSink``: appends ``PricingAudit`` rows.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol, Sequence

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch_pricing.models import PricingAudit
from dispatch_pricing.schemas.pricing import PricingContext

if TYPE_CHECKING:
    from dispatch_pricing.services.pricingEngine import PricingBreakdown

logger = logging.getLogger(__name__)

MEMORY_HISTORY_LIMIT = 10_000


@dataclass(frozen=True)
class AuditedQuote:
    """Analytics view of one audited quote."""

    quote_id: uuid.UUID
    created_at: datetime
    subtotal: Decimal
    total_amount: Decimal
    surge_applied: bool
    locked: bool
    rule_impacts: tuple[tuple[str, Decimal], ...] = ()


def _rule_impacts(rules: Sequence[dict[str, Any]]) -> tuple[tuple[str, Decimal], ...]:
    return tuple((r["rule_name"], Decimal(str(r["impact"]))) for r in rules)


class AuditSink(Protocol):
    async def record_quote(self, context: PricingContext, breakdown: "PricingBreakdown") -> None: ...

    async def record_lock(self, job_id: uuid.UUID, breakdown: "PricingBreakdown") -> None: ...

    async def list_quotes(self, start: datetime, end: datetime) -> Sequence[AuditedQuote]: ...


class MemoryAuditSink:
    """Log each quote and keep the most recent ones in memory."""

    def __init__(self, limit: int = MEMORY_HISTORY_LIMIT) -> None:
        self._quotes: deque[AuditedQuote] = deque(maxlen=limit)
        self._locked: set[uuid.UUID] = set()

    async def record_quote(self, context: PricingContext, breakdown: "PricingBreakdown") -> None:
        logger.info(
            "Pricing audit: quote=%s service_type=%s job_type=%s total=%s rules=%d",
            breakdown.quote_id,
            context.service_type_id,
            context.job_type.value,
            breakdown.total_amount,
            len(breakdown.rules_applied),
        )
        self._quotes.append(
            AuditedQuote(
                quote_id=breakdown.quote_id,
                created_at=breakdown.created_at,
                subtotal=breakdown.subtotal,
                total_amount=breakdown.total_amount,
                surge_applied=breakdown.surge_amount is not None,
                locked=False,
                rule_impacts=tuple((r.rule_name, r.impact) for r in breakdown.rules_applied),
            )
        )

    async def record_lock(self, job_id: uuid.UUID, breakdown: "PricingBreakdown") -> None:
        logger.info("Pricing audit: quote=%s locked onto job %s", breakdown.quote_id, job_id)
        self._locked.add(breakdown.quote_id)

    async def list_quotes(self, start: datetime, end: datetime) -> Sequence[AuditedQuote]:
        return [
            AuditedQuote(
                quote_id=q.quote_id,
                created_at=q.created_at,
                subtotal=q.subtotal,
                total_amount=q.total_amount,
                surge_applied=q.surge_applied,
                locked=q.quote_id in self._locked,
                rule_impacts=q.rule_impacts,
            )
            for q in list(self._quotes)
            if start <= q.created_at <= end
        ]


class SqlAuditSink:
    """Persist audits to the ``pricing_audits`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record_quote(self, context: PricingContext, breakdown: "PricingBreakdown") -> None:
        row = PricingAudit(
            quote_id=breakdown.quote_id,
            service_type_id=context.service_type_id,
            job_type=context.job_type.value,
            subtotal=breakdown.subtotal,
            total_amount=breakdown.total_amount,
            surge_applied=breakdown.surge_amount is not None,
            context_json=context.model_dump(mode="json"),
            breakdown_json=breakdown.to_dict(),
            created_at=breakdown.created_at,
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()

    async def record_lock(self, job_id: uuid.UUID, breakdown: "PricingBreakdown") -> None:
        stmt = (
            update(PricingAudit)
            .where(PricingAudit.quote_id == breakdown.quote_id)
            .values(job_id=job_id, locked_at=datetime.now(timezone.utc))
        )
        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()

    async def list_quotes(self, start: datetime, end: datetime) -> Sequence[AuditedQuote]:
        stmt = (
            select(PricingAudit)
            .where(and_(PricingAudit.created_at >= start, PricingAudit.created_at <= end))
            .order_by(PricingAudit.created_at.asc())
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            rows = result.scalars().all()

        return [
            AuditedQuote(
                quote_id=row.quote_id,
                created_at=row.created_at,
                subtotal=row.subtotal,
                total_amount=row.total_amount,
                surge_applied=row.surge_applied,
                locked=row.locked_at is not None,
                rule_impacts=_rule_impacts((row.breakdown_json or {}).get("rules_applied", [])),
            )
            for row in rows
        ]
