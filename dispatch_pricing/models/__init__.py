"""
Dispatch Pricing SQLAlchemy Models
==================================

Central import point for all ORM models. Import ``Base`` from here for
Alembic auto-generation and for the ``create_all`` convenience in tests.

Usage::

    from dispatch_pricing.models import Base, PricingRule, ServicePricing
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Jobs --
from .job import Job, JobStatus, JobType

# -- Contractors --
from .contractor import ContractorProfile

# -- Pricing --
from .pricing import (
    FleetAccount,
    FleetPricingOverride,
    FleetPricingTier,
    PricingAudit,
    PricingRule,
    PricingRuleType,
    ServicePricing,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "Job",
    "JobStatus",
    "JobType",
    "ContractorProfile",
    "FleetAccount",
    "FleetPricingOverride",
    "FleetPricingTier",
    "PricingAudit",
    "PricingRule",
    "PricingRuleType",
    "ServicePricing",
]
