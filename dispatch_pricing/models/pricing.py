"""
SQLAlchemy models for service_pricing, pricing_rules, fleet_accounts,
fleet_pricing_overrides, and pricing_audits.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PricingRuleType(str, enum.Enum):
    TIME_BASED = "time_based"
    LOCATION_BASED = "location_based"
    URGENCY_BASED = "urgency_based"
    CUSTOMER_BASED = "customer_based"
    FLEET_BASED = "fleet_based"
    DEMAND_BASED = "demand_based"


class FleetPricingTier(str, enum.Enum):
    STANDARD = "standard"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class ServicePricing(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "service_pricing"

    service_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    per_mile_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    per_hour_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    minimum_charge: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    effective_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    expiry_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("idx_service_pricing_dates", "effective_date", "expiry_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<ServicePricing(service_type={self.service_type_id}, "
            f"base={self.base_price}, min={self.minimum_charge})>"
        )


class PricingRule(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "pricing_rules"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rule_type: Mapped[PricingRuleType] = mapped_column(
        Enum(PricingRuleType, name="pricing_rule_type", create_type=False),
        nullable=False,
        index=True,
    )

    # Structured predicate; parsed by dispatch_pricing.schemas.conditions
    conditions: Mapped[Any] = mapped_column(
        JSONB, server_default=text("'{}'::jsonb"), nullable=False
    )

    # Either or both may be set
    multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    fixed_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Higher is evaluated first
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<PricingRule(id={self.id}, name={self.name}, "
            f"type={self.rule_type}, priority={self.priority}, active={self.is_active})>"
        )


class FleetAccount(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "fleet_accounts"

    company_name: Mapped[str] = mapped_column(Text, nullable=False)
    pricing_tier: Mapped[FleetPricingTier] = mapped_column(
        Enum(FleetPricingTier, name="fleet_pricing_tier", create_type=False),
        nullable=False,
        server_default="STANDARD",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    overrides: Mapped[list["FleetPricingOverride"]] = relationship(
        "FleetPricingOverride", back_populates="fleet_account"
    )

    def __repr__(self) -> str:
        return f"<FleetAccount(id={self.id}, company={self.company_name}, tier={self.pricing_tier})>"


class FleetPricingOverride(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Contractual price for a fleet on one service type.

    ``flat_rate_override`` wins over ``discount_percentage`` when both are set.
    """

    __tablename__ = "fleet_pricing_overrides"

    fleet_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("fleet_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    service_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    discount_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    flat_rate_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    fleet_account: Mapped["FleetAccount"] = relationship(
        "FleetAccount", back_populates="overrides"
    )

    __table_args__ = (
        Index(
            "idx_fleet_pricing_overrides",
            "fleet_account_id",
            "service_type_id",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<FleetPricingOverride(fleet={self.fleet_account_id}, "
            f"service_type={self.service_type_id})>"
        )


class PricingAudit(Base):
    """
    Append-only record of every computed quote.
    ``job_id``/``locked_at`` are filled in once when the quote is locked.
    """

    __tablename__ = "pricing_audits"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, unique=True
    )
    service_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    surge_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    context_json: Mapped[Any] = mapped_column(
        JSONB, server_default=text("'{}'::jsonb"), nullable=False
    )
    breakdown_json: Mapped[Any] = mapped_column(
        JSONB, server_default=text("'{}'::jsonb"), nullable=False
    )

    job_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    locked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<PricingAudit(quote={self.quote_id}, total={self.total_amount}, "
            f"locked={self.locked_at is not None})>"
        )
