"""
Baseline pricing rule set used to seed a fresh installation.

Seeding is not idempotent: each call inserts the full set again, so callers
must check for existing rules themselves.

Note: "Night Service Premium" declares a 22:00-06:00 window, which never
matches under the lexical time-of-day comparison (see conditionEvaluator).
"""

from decimal import Decimal
from typing import Any

from dispatch_pricing.models.pricing import PricingRuleType

DEFAULT_PRICING_RULES: tuple[dict[str, Any], ...] = (
    {
        "name": "Rush Hour Emergency",
        "description": "Peak hours surcharge for emergency services",
        "rule_type": PricingRuleType.TIME_BASED,
        "conditions": {
            "timeOfDay": {"start": "06:00", "end": "09:00"},
            "urgency": {"type": "immediate"},
        },
        "multiplier": Decimal("1.5"),
        "priority": 100,
    },
    {
        "name": "Night Service Premium",
        "description": "Premium pricing for night-time services",
        "rule_type": PricingRuleType.TIME_BASED,
        "conditions": {"timeOfDay": {"start": "22:00", "end": "06:00"}},
        "multiplier": Decimal("1.25"),
        "priority": 90,
    },
    {
        "name": "Weekend Surcharge",
        "description": "Additional charge for weekend services",
        "rule_type": PricingRuleType.TIME_BASED,
        "conditions": {"dayOfWeek": ["Saturday", "Sunday"]},
        "multiplier": Decimal("1.15"),
        "priority": 80,
    },
    {
        "name": "Immediate Service Premium",
        "description": "Premium for immediate emergency service",
        "rule_type": PricingRuleType.URGENCY_BASED,
        "conditions": {"urgency": {"type": "immediate"}},
        "multiplier": Decimal("1.5"),
        "priority": 110,
    },
    {
        "name": "Advance Booking Discount",
        "description": "Discount for services scheduled 24+ hours in advance",
        "rule_type": PricingRuleType.URGENCY_BASED,
        "conditions": {"urgency": {"type": "scheduled", "hours": 24}},
        "multiplier": Decimal("0.95"),
        "priority": 70,
    },
    {
        "name": "Remote Area Surcharge",
        "description": "Additional charge for remote locations",
        "rule_type": PricingRuleType.LOCATION_BASED,
        "conditions": {"location": {"type": "distance", "value": 50}},
        "fixed_amount": Decimal("100"),
        "priority": 85,
    },
    {
        "name": "First Time Customer Discount",
        "description": "Welcome discount for new customers",
        "rule_type": PricingRuleType.CUSTOMER_BASED,
        "conditions": {"customerType": "new"},
        "multiplier": Decimal("0.9"),
        "priority": 60,
    },
    {
        "name": "Fleet Gold Tier Discount",
        "description": "Discount for gold tier fleet accounts",
        "rule_type": PricingRuleType.FLEET_BASED,
        "conditions": {"customerType": "fleet", "fleetTier": "gold"},
        "multiplier": Decimal("0.85"),
        "priority": 95,
    },
)
