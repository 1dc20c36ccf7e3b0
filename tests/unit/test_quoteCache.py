"""
Unit tests for the quote cache and its request fingerprint.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from dispatch_pricing.models import JobType
from dispatch_pricing.schemas.pricing import GeoPoint
from dispatch_pricing.services.pricingEngine import Confidence, PricingBreakdown
from dispatch_pricing.services.quoteCache import QuoteCache, make_cache_key


@pytest.fixture
def breakdown(now) -> PricingBreakdown:
    return PricingBreakdown(
        base_price=Decimal("100"),
        rules_applied=[],
        subtotal=Decimal("100"),
        tax_amount=Decimal("8.00"),
        total_amount=Decimal("108.00"),
        confidence=Confidence.LOW,
        created_at=now,
        expires_at=now + timedelta(minutes=5),
    )


# ---------------------------------------------------------------------------
# make_cache_key
# ---------------------------------------------------------------------------


class TestMakeCacheKey:
    def test_guest_key(self, make_context, service_type_id):
        key = make_cache_key(make_context(location=GeoPoint(lat=40.5, lng=-74.25)))
        assert key == f"{service_type_id}_emergency_40.5_-74.25_guest"

    def test_customer_key(self, make_context):
        customer_id = uuid.uuid4()
        key = make_cache_key(make_context(customer_id=customer_id))
        assert key.endswith(f"_{customer_id}")

    def test_job_type_changes_key(self, make_context, now):
        emergency = make_cache_key(make_context())
        scheduled = make_cache_key(make_context(job_type=JobType.SCHEDULED, scheduled_for=now))
        assert emergency != scheduled

    def test_estimates_do_not_change_key(self, make_context):
        assert make_cache_key(make_context()) == make_cache_key(
            make_context(estimated_distance=12.0, estimated_duration=90)
        )


# ---------------------------------------------------------------------------
# QuoteCache
# ---------------------------------------------------------------------------


class TestQuoteCache:
    def test_miss(self, now):
        assert QuoteCache().get("missing", now) is None

    def test_hit_within_ttl(self, breakdown, now):
        cache = QuoteCache(ttl_seconds=300)
        cache.put("k", breakdown, now)

        hit = cache.get("k", now + timedelta(seconds=299))
        assert hit is not None
        assert hit.quote_id == breakdown.quote_id
        assert hit.total_amount == Decimal("108.00")

    def test_expired_at_ttl(self, breakdown, now):
        cache = QuoteCache(ttl_seconds=300)
        cache.put("k", breakdown, now)
        assert cache.get("k", now + timedelta(seconds=300)) is None

    def test_hit_is_never_locked(self, breakdown, now):
        cache = QuoteCache()
        cache.put("k", breakdown, now)
        breakdown.locked = True

        hit = cache.get("k", now)
        assert hit.locked is False

    def test_hit_is_a_copy(self, breakdown, now):
        cache = QuoteCache()
        cache.put("k", breakdown, now)

        hit = cache.get("k", now)
        hit.locked = True
        assert hit is not breakdown
        assert cache.get("k", now).locked is False

    def test_last_write_wins(self, breakdown, now):
        cache = QuoteCache()
        newer = PricingBreakdown(
            base_price=Decimal("120"),
            rules_applied=[],
            subtotal=Decimal("120"),
            tax_amount=Decimal("9.60"),
            total_amount=Decimal("129.60"),
            confidence=Confidence.LOW,
            created_at=now,
            expires_at=now + timedelta(minutes=5),
        )
        cache.put("k", breakdown, now)
        cache.put("k", newer, now)
        assert cache.get("k", now).total_amount == Decimal("129.60")
        assert len(cache) == 1

    def test_purge_expired(self, breakdown, now):
        cache = QuoteCache(ttl_seconds=60)
        cache.put("old", breakdown, now - timedelta(seconds=61))
        cache.put("fresh", breakdown, now - timedelta(seconds=30))

        assert cache.purge_expired(now) == 1
        assert len(cache) == 1
        assert cache.get("fresh", now) is not None

    def test_put_sweeps_expired_entries(self, breakdown, now):
        cache = QuoteCache(ttl_seconds=60)
        for i in range(10):
            cache.put(f"k{i}", breakdown, now)

        cache.put("later", breakdown, now + timedelta(hours=1))

        assert len(cache) == 1
        assert cache.get("later", now + timedelta(hours=1)) is not None

    def test_put_sweep_keeps_live_entries(self, breakdown, now):
        cache = QuoteCache(ttl_seconds=60)
        cache.put("a", breakdown, now)
        cache.put("b", breakdown, now + timedelta(seconds=30))
        cache.put("c", breakdown, now + timedelta(seconds=60))

        assert len(cache) == 2
        assert cache.get("a", now + timedelta(seconds=60)) is None
        assert cache.get("b", now + timedelta(seconds=60)) is not None

    def test_clear(self, breakdown, now):
        cache = QuoteCache()
        cache.put("k", breakdown, now)
        cache.clear()
        assert len(cache) == 0
