"""
Pricing analytics over audited quotes.

- ``average_price``: mean quoted total.
- ``rule_effectiveness``: per rule name, the mean share of the subtotal the
  rule contributed (impact / subtotal) across the quotes it appeared in.
- ``surge_frequency``: share of quotes that carried a surge charge.
- ``price_elasticity``: arc elasticity of conversion (locked quotes) between
  the cheaper and the more expensive half of the quotes.  0.0 when there is
  not enough data to compare.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence

from dispatch_pricing.services.auditSink import AuditedQuote


@dataclass
class PricingAnalytics:
    average_price: Decimal
    surge_frequency: float
    price_elasticity: float
    quote_count: int
    conversion_rate: float
    rule_effectiveness: dict[str, float] = field(default_factory=dict)


def _conversion(quotes: Sequence[AuditedQuote]) -> float:
    if not quotes:
        return 0.0
    return sum(1 for q in quotes if q.locked) / len(quotes)


def _mean_price(quotes: Sequence[AuditedQuote]) -> Decimal:
    return sum((q.total_amount for q in quotes), Decimal("0")) / len(quotes)


def price_elasticity(quotes: Sequence[AuditedQuote]) -> float:
    """Midpoint elasticity of conversion with respect to price."""
    if len(quotes) < 2:
        return 0.0

    ordered = sorted(quotes, key=lambda q: q.total_amount)
    half = len(ordered) // 2
    cheap, expensive = ordered[:half], ordered[half:]

    p_low, p_high = _mean_price(cheap), _mean_price(expensive)
    c_low, c_high = _conversion(cheap), _conversion(expensive)

    avg_price = (p_low + p_high) / 2
    avg_conversion = (c_low + c_high) / 2
    if p_high == p_low or avg_price == 0 or avg_conversion == 0:
        return 0.0

    price_change = float((p_high - p_low) / avg_price)
    conversion_change = (c_high - c_low) / avg_conversion
    return round(conversion_change / price_change, 4)


def summarize_quotes(quotes: Sequence[AuditedQuote]) -> PricingAnalytics:
    if not quotes:
        return PricingAnalytics(
            average_price=Decimal("0"),
            surge_frequency=0.0,
            price_elasticity=0.0,
            quote_count=0,
            conversion_rate=0.0,
        )

    shares: dict[str, list[float]] = defaultdict(list)
    for quote in quotes:
        if quote.subtotal <= 0:
            continue
        for rule_name, impact in quote.rule_impacts:
            shares[rule_name].append(float(impact / quote.subtotal))

    return PricingAnalytics(
        average_price=_mean_price(quotes),
        surge_frequency=sum(1 for q in quotes if q.surge_applied) / len(quotes),
        price_elasticity=price_elasticity(quotes),
        quote_count=len(quotes),
        conversion_rate=_conversion(quotes),
        rule_effectiveness={
            name: round(sum(values) / len(values), 4) for name, values in shares.items()
        },
    )
