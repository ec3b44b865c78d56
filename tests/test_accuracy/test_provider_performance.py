"""
Provider Performance Tests.
"""

from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest

from etocal.accuracy.constants import (
    COLD_START_WEIGHTS,
    UNRANKED_PROVIDER_WEIGHT,
    WeatherProvider,
)
from etocal.accuracy.performance import ProviderPerformanceTracker, blend, build_performance
from etocal.common.exceptions import PersistenceError, ValidationError

OM = WeatherProvider.OPEN_METEO
WB = WeatherProvider.WEATHERBIT
VC = WeatherProvider.VISUAL_CROSSING


class TestBuildPerformance:
    """Aggregating validations into a performance row."""

    def test_monsoon_records(self, monsoon_records):
        row = build_performance("19,72.5", OM, monsoon_records, now=datetime(2024, 9, 1))

        assert row.validation_count == 3
        assert row.rmse == 0.87
        assert row.mae == 0.83
        assert row.accuracy_score == pytest.approx(0.826)
        assert row.r_squared == pytest.approx(-2.375)
        assert row.period_start == date(2024, 6, 10)
        assert row.period_end == date(2024, 8, 10)

    def test_perfect_provider(self, make_record):
        records = [make_record(3.0, 3.0), make_record(5.0, 5.0, day=date(2024, 7, 2))]

        row = build_performance("19,72.5", OM, records)

        assert row.accuracy_score == 1.0
        assert row.r_squared == 1.0

    def test_no_validations(self):
        assert build_performance("19,72.5", OM, []) is None


class TestBlend:
    """Weighted ensemble."""

    def test_equal_weights(self):
        result = blend({OM: 5.0, WB: 4.0}, {OM: 1.0, WB: 1.0})

        assert result.eto == 4.5
        assert result.confidence == 0.89
        assert result.estimated_error_percent == 11.1
        assert [c.weight for c in result.contributors] == [0.5, 0.5]

    def test_weights_are_normalised(self):
        result = blend({OM: 5.0, WB: 4.0}, {OM: 3.0, WB: 1.0})

        assert result.eto == 4.75
        assert result.confidence == 0.91
        assert sum(c.weight for c in result.contributors) == pytest.approx(1.0)

    def test_missing_weight_uses_neutral(self):
        result = blend({OM: 5.0, VC: 4.0}, {OM: UNRANKED_PROVIDER_WEIGHT})
        assert result.eto == 4.5

    def test_all_zero_weights_fall_back_to_equal(self):
        result = blend({OM: 5.0, WB: 3.0}, {OM: 0.0, WB: 0.0})
        assert result.eto == 4.0

    def test_single_estimate_full_confidence(self):
        result = blend({OM: 5.0}, {})
        assert result.eto == 5.0
        assert result.confidence == 1.0
        assert result.estimated_error_percent == 0.0

    def test_zero_mean(self):
        result = blend({OM: 0.0, WB: 0.0}, {})
        assert result.eto == 0.0
        assert result.confidence == 0.0

    def test_empty_rejected(self):
        with pytest.raises(ValidationError):
            blend({}, {OM: 1.0})


class TestTracker:
    """Persisted ranking and weights."""

    @pytest.mark.asyncio
    async def test_cold_start_weights(self, repository):
        tracker = ProviderPerformanceTracker(repository)

        assert await tracker.weights(19.07, 72.87) == COLD_START_WEIGHTS
        assert await tracker.best(19.07, 72.87) is None

    @pytest.mark.asyncio
    async def test_weights_after_recompute(self, repository, monsoon_records):
        tracker = ProviderPerformanceTracker(repository)

        await tracker.recompute(19.07, 72.87, OM, monsoon_records)
        weights = await tracker.weights(19.07, 72.87)

        assert weights[OM] == pytest.approx(0.826)
        assert weights[WB] == UNRANKED_PROVIDER_WEIGHT
        assert set(weights) == set(WeatherProvider)

    @pytest.mark.asyncio
    async def test_ranked_best_first(self, repository, make_record, monsoon_records):
        tracker = ProviderPerformanceTracker(repository)
        exact = [
            make_record(4.0, 4.0, provider=WB),
            make_record(5.0, 5.0, provider=WB, day=date(2024, 7, 2)),
        ]

        await tracker.recompute(19.07, 72.87, OM, monsoon_records)
        await tracker.recompute(19.07, 72.87, WB, exact)

        ranked = await tracker.ranked(19.2, 72.6)
        assert [p.provider for p in ranked] == [WB, OM]
        assert await tracker.best(19.07, 72.87) == WB

    @pytest.mark.asyncio
    async def test_recompute_without_validations_writes_nothing(self, repository):
        tracker = ProviderPerformanceTracker(repository)

        assert await tracker.recompute(19.07, 72.87, OM, []) is None
        assert await tracker.ranked(19.07, 72.87) == []

    @pytest.mark.asyncio
    async def test_ranking_failure_degrades(self):
        repository = AsyncMock()
        repository.performance_for_region.side_effect = RuntimeError("timeout")
        tracker = ProviderPerformanceTracker(repository)

        assert await tracker.ranked(19.07, 72.87) == []
        assert await tracker.weights(19.07, 72.87) == COLD_START_WEIGHTS

    @pytest.mark.asyncio
    async def test_upsert_failure_raises(self, monsoon_records):
        repository = AsyncMock()
        repository.upsert_performance.side_effect = RuntimeError("deadlock")
        tracker = ProviderPerformanceTracker(repository)

        with pytest.raises(PersistenceError) as exc_info:
            await tracker.recompute(19.07, 72.87, OM, monsoon_records)

        assert exc_info.value.operation == "upsert_provider_performance"
