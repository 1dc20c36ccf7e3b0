"""
Unit tests for the Surge Estimator: the ratio table, the zone map, the
grid refresh policy and the combined, capped multiplier.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from dispatch_pricing.models import JobStatus
from dispatch_pricing.services.geoService import zone_key
from dispatch_pricing.services.surgeEstimator import (
    NO_SUPPLY_MULTIPLIER,
    NO_SURGE,
    SURGE_CAP,
    DemandGridZonePolicy,
    NullZonePolicy,
    SurgeEstimator,
    ZoneSurgeMap,
    ratio_multiplier,
)

JOB_LAT = 40.7580
JOB_LNG = -73.9855


# ---------------------------------------------------------------------------
# ratio_multiplier
# ---------------------------------------------------------------------------


class TestRatioMultiplier:
    def test_no_contractors(self):
        assert ratio_multiplier(3, 0) == NO_SUPPLY_MULTIPLIER

    def test_no_contractors_and_no_jobs(self):
        assert ratio_multiplier(0, 0) == Decimal("2.5")

    def test_above_five(self):
        assert ratio_multiplier(11, 2) == Decimal("2.5")

    def test_exactly_five_falls_to_next_band(self):
        assert ratio_multiplier(10, 2) == Decimal("2.0")

    def test_above_three(self):
        assert ratio_multiplier(7, 2) == Decimal("2.0")

    def test_above_two(self):
        assert ratio_multiplier(5, 2) == Decimal("1.5")

    def test_above_one_and_a_half(self):
        assert ratio_multiplier(4, 2) == Decimal("1.25")

    def test_exactly_one_and_a_half(self):
        assert ratio_multiplier(3, 2) == NO_SURGE

    def test_balanced(self):
        assert ratio_multiplier(1, 4) == NO_SURGE
        assert ratio_multiplier(0, 4) == NO_SURGE


# ---------------------------------------------------------------------------
# ZoneSurgeMap
# ---------------------------------------------------------------------------


class TestZoneSurgeMap:
    def test_unknown_zone_is_no_surge(self):
        assert ZoneSurgeMap().get("407_-740") == NO_SURGE

    def test_merge_overwrites_and_keeps_others(self):
        zones = ZoneSurgeMap()
        zones.merge({"a": Decimal("1.5"), "b": Decimal("2.0")})
        zones.merge({"a": Decimal("1.25")})
        assert zones.snapshot() == {"a": Decimal("1.25"), "b": Decimal("2.0")}

    def test_snapshot_is_a_copy(self):
        zones = ZoneSurgeMap()
        zones.merge({"a": Decimal("1.5")})
        zones.snapshot()["a"] = Decimal("9")
        assert zones.get("a") == Decimal("1.5")


# ---------------------------------------------------------------------------
# Zone policies
# ---------------------------------------------------------------------------


class TestZonePolicies:
    @pytest.mark.asyncio
    async def test_null_policy_reports_no_zones(self):
        assert await NullZonePolicy().compute() == {}

    @pytest.mark.asyncio
    async def test_grid_policy_per_cell_ratio(self, mock_store, make_job, make_contractor):
        mock_store.find_jobs.return_value = [make_job(), make_job(), make_job(), make_job(lat=None)]
        mock_store.find_contractors.return_value = [make_contractor(), make_contractor(lat=34.05, lng=-118.24)]

        zones = await DemandGridZonePolicy(mock_store).compute()

        # 3 jobs / 1 contractor in the Midtown cell; LA has supply but no demand
        assert zones == {zone_key(JOB_LAT, JOB_LNG): Decimal("1.5")}
        mock_store.find_jobs.assert_awaited_once_with(status=JobStatus.ASSIGNED, limit=1000)
        mock_store.find_contractors.assert_awaited_once_with(is_available=True, limit=1000)

    @pytest.mark.asyncio
    async def test_grid_policy_cell_without_supply(self, mock_store, make_job):
        mock_store.find_jobs.return_value = [make_job(lat=47.0, lng=-109.0)]
        mock_store.find_contractors.return_value = []

        zones = await DemandGridZonePolicy(mock_store).compute()
        assert zones == {zone_key(47.0, -109.0): NO_SUPPLY_MULTIPLIER}

    @pytest.mark.asyncio
    async def test_grid_policy_counts_supply_in_neighbouring_cells(self, mock_store, make_job, make_contractor):
        # One cell north of the job's cell
        mock_store.find_jobs.return_value = [make_job()]
        mock_store.find_contractors.return_value = [make_contractor(lat=JOB_LAT + 0.1)]

        zones = await DemandGridZonePolicy(mock_store).compute()
        assert zones == {zone_key(JOB_LAT, JOB_LNG): NO_SURGE}

    @pytest.mark.asyncio
    async def test_grid_policy_resets_cells_whose_demand_cleared(self, mock_store, make_job):
        policy = DemandGridZonePolicy(mock_store)
        mock_store.find_jobs.return_value = [make_job(lat=47.0, lng=-109.0)]
        mock_store.find_contractors.return_value = []
        await policy.compute()

        mock_store.find_jobs.return_value = []
        zones = await policy.compute()
        assert zones == {zone_key(47.0, -109.0): NO_SURGE}

        # Reset is reported once, not on every later cycle
        assert await policy.compute() == {}


# ---------------------------------------------------------------------------
# SurgeEstimator
# ---------------------------------------------------------------------------


class TestSurgeEstimator:
    @pytest.mark.asyncio
    async def test_balanced_supply_is_no_surge(self, mock_store, make_context):
        estimator = SurgeEstimator(mock_store)
        assert await estimator.multiplier(make_context()) == NO_SURGE

    @pytest.mark.asyncio
    async def test_no_contractors_nearby(self, mock_store, make_context, make_contractor):
        # The only contractor is in Los Angeles
        mock_store.find_contractors.return_value = [make_contractor(lat=34.05, lng=-118.24)]
        estimator = SurgeEstimator(mock_store)
        assert await estimator.multiplier(make_context()) == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_only_nearby_jobs_count(self, mock_store, make_context, make_job):
        far = [make_job(lat=34.05, lng=-118.24) for _ in range(10)]
        near = [make_job(), make_job()]
        mock_store.find_jobs.return_value = far + near

        stats = await SurgeEstimator(mock_store).demand_stats(JOB_LAT, JOB_LNG)
        assert stats.active_jobs == 2
        assert stats.available_contractors == 1

    @pytest.mark.asyncio
    async def test_demand_lookup_is_bounded_to_the_radius(self, mock_store):
        await SurgeEstimator(mock_store, demand_radius_miles=25.0).demand_stats(JOB_LAT, JOB_LNG)

        mock_store.find_jobs.assert_awaited_once_with(
            status=JobStatus.ASSIGNED, limit=1000, near=(JOB_LAT, JOB_LNG), radius_miles=25.0
        )
        mock_store.find_contractors.assert_awaited_once_with(
            is_available=True, limit=1000, near=(JOB_LAT, JOB_LNG), radius_miles=25.0
        )

    @pytest.mark.asyncio
    async def test_demand_ratio_surge(self, mock_store, make_context, make_job):
        mock_store.find_jobs.return_value = [make_job() for _ in range(4)]
        estimator = SurgeEstimator(mock_store)
        assert await estimator.multiplier(make_context()) == Decimal("2.0")

    @pytest.mark.asyncio
    async def test_zone_value_wins_when_higher(self, mock_store, make_context):
        estimator = SurgeEstimator(mock_store)
        estimator.zone_map.merge({zone_key(JOB_LAT, JOB_LNG): Decimal("1.75")})
        assert await estimator.multiplier(make_context()) == Decimal("1.75")

    @pytest.mark.asyncio
    async def test_zone_in_other_cell_is_ignored(self, mock_store, make_context):
        estimator = SurgeEstimator(mock_store)
        estimator.zone_map.merge({zone_key(34.05, -118.24): Decimal("2.0")})
        assert await estimator.multiplier(make_context()) == NO_SURGE

    @pytest.mark.asyncio
    async def test_capped_at_three(self, mock_store, make_context):
        estimator = SurgeEstimator(mock_store)
        estimator.zone_map.merge({zone_key(JOB_LAT, JOB_LNG): Decimal("4.5")})
        assert await estimator.multiplier(make_context()) == SURGE_CAP

    @pytest.mark.asyncio
    async def test_zone_below_one_is_floored(self, mock_store, make_context):
        estimator = SurgeEstimator(mock_store)
        estimator.zone_map.merge({zone_key(JOB_LAT, JOB_LNG): Decimal("0.5")})
        assert await estimator.multiplier(make_context()) == NO_SURGE

    @pytest.mark.asyncio
    async def test_demand_lookup_failure_degrades_to_no_surge(self, make_context):
        store = AsyncMock()
        store.find_jobs.side_effect = ConnectionError("database unavailable")
        estimator = SurgeEstimator(store)
        assert await estimator.multiplier(make_context()) == NO_SURGE

    @pytest.mark.asyncio
    async def test_demand_failure_keeps_zone_value(self, make_context):
        store = AsyncMock()
        store.find_contractors.side_effect = TimeoutError()
        estimator = SurgeEstimator(store)
        estimator.zone_map.merge({zone_key(JOB_LAT, JOB_LNG): Decimal("1.5")})
        assert await estimator.multiplier(make_context()) == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_custom_radius(self, mock_store, make_context, make_contractor):
        # Contractor ~20 miles away: outside a 10 mile radius
        mock_store.find_contractors.return_value = [make_contractor(lat=41.05, lng=-73.9855)]
        estimator = SurgeEstimator(mock_store, demand_radius_miles=10)
        assert await estimator.multiplier(make_context()) == Decimal("2.5")
