"""
Rule Applicator
===============

Turns a matched rule into a signed price impact.

Rules compound: each impact is computed against the running total that
already includes every previously applied rule, in descending priority.
Equal priorities keep the order the store returned them in (insertion
order for the SQL store); ``order_rules`` relies on ``sorted`` being stable.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from dispatch_pricing.models.pricing import PricingRule

DEFAULT_IMPACT_CAP_RATIO = Decimal("2")


def order_rules(rules: Iterable[PricingRule]) -> list[PricingRule]:
    """Sort rules by descending priority, ties kept in input order."""
    return sorted(rules, key=lambda rule: -rule.priority)


def compute_impact(
    running_total: Decimal,
    multiplier: Optional[Decimal] = None,
    fixed_amount: Optional[Decimal] = None,
    cap_ratio: Decimal = DEFAULT_IMPACT_CAP_RATIO,
) -> Decimal:
    """Impact of one rule on the running total.

    ``running_total * (multiplier - 1)`` when a multiplier is set, plus
    ``fixed_amount`` when set.  The combined value is capped at
    ``cap_ratio * running_total``; negative impacts are not capped.
    """
    impact = Decimal("0")
    if multiplier is not None:
        impact = running_total * (Decimal(multiplier) - 1)
    if fixed_amount is not None:
        impact += Decimal(fixed_amount)

    max_impact = running_total * cap_ratio
    if impact > max_impact:
        impact = max_impact
    return impact


def apply_rule(
    rule: PricingRule,
    running_total: Decimal,
    cap_ratio: Decimal = DEFAULT_IMPACT_CAP_RATIO,
) -> Decimal:
    return compute_impact(running_total, rule.multiplier, rule.fixed_amount, cap_ratio)
