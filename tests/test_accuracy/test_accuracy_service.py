"""
Accuracy Service Tests.

End-to-end flows over the in-memory repository.
"""

from datetime import date
from typing import Dict, Optional, Union
from unittest.mock import AsyncMock

import pytest

from etocal.accuracy.constants import (
    AccuracyLevel,
    Season,
    ValidationSource,
    WeatherProvider,
)
from etocal.accuracy.eto import estimate_eto
from etocal.accuracy.schemas import ProviderDay, StationDay
from etocal.accuracy.service import AccuracyService
from etocal.common.exceptions import AuthenticationError, ValidationError
from etocal.core.config import settings

OM = WeatherProvider.OPEN_METEO
WB = WeatherProvider.WEATHERBIT
VC = WeatherProvider.VISUAL_CROSSING


def _weather(day: date, eto: Optional[float] = None, provider=OM) -> ProviderDay:
    return ProviderDay(
        provider=provider,
        day=day,
        tmax=32.0,
        tmin=24.0,
        rh_mean=70.0,
        wind_speed=2.5,
        solar_radiation=20.0,
        eto=eto,
        latitude=19.07,
        longitude=72.87,
        elevation=10.0,
    )


class FakeProviderManager:
    """
    Serves canned provider weather; raises for days listed in `failing`.

    A float stands for a day on which the provider reports its own ETo.
    """

    def __init__(
        self,
        weather_by_day: Dict[date, Union[float, ProviderDay, None]],
        failing=(),
    ):
        self.weather_by_day = weather_by_day
        self.failing = set(failing)
        self.calls = []

    async def get_daily_weather(self, latitude, longitude, day, provider):
        self.calls.append((day, provider))
        if day in self.failing:
            raise ConnectionError("provider unavailable")
        weather = self.weather_by_day.get(day)
        if isinstance(weather, float):
            return _weather(day, eto=weather, provider=provider)
        return weather


class PerProviderManager:
    """Serves a different ETo series per provider."""

    def __init__(self, eto_by_provider: Dict[WeatherProvider, Dict[date, float]]):
        self.eto_by_provider = eto_by_provider

    async def get_daily_weather(self, latitude, longitude, day, provider):
        eto = self.eto_by_provider.get(provider, {}).get(day)
        return _weather(day, eto=eto, provider=provider) if eto is not None else None


async def _record(service, actor, api_eto, measured_eto, day, provider=OM, farm_id=1):
    return await service.record_validation(
        actor,
        farm_id=farm_id,
        provider=provider,
        api_eto=api_eto,
        measured_eto=measured_eto,
        latitude=19.07,
        longitude=72.87,
        day=day,
        source=ValidationSource.WEATHER_STATION,
    )


class TestRecordValidation:
    """Recording keeps derived rows in step."""

    @pytest.mark.asyncio
    async def test_calibration_appears_at_third_sample(self, service, actor):
        first = await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))
        second = await _record(service, actor, 6.0, 5.0, date(2024, 7, 10))
        third = await _record(service, actor, 4.5, 4.0, date(2024, 8, 10))

        assert first.calibrations == []
        assert second.calibrations == []
        assert len(third.calibrations) == 1
        assert third.calibrations[0].correction_factor == 0.841
        assert third.performance.validation_count == 3

        found = await service.lookup_calibration(19.2, 72.6, OM, Season.MONSOON)
        assert found.sample_size == 3

    @pytest.mark.asyncio
    async def test_performance_from_first_sample(self, service, actor):
        result = await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))

        assert result.performance.validation_count == 1
        assert await service.best_provider(19.07, 72.87) == OM

    @pytest.mark.asyncio
    async def test_unauthenticated(self, service):
        with pytest.raises(AuthenticationError):
            await _record(service, None, 5.0, 4.0, date(2024, 6, 10))

        assert await service.validation_history(1) == []

    @pytest.mark.asyncio
    async def test_other_farms_feed_regional_calibration(self, service, actor):
        await _record(service, actor, 5.0, 4.0, date(2024, 6, 10), farm_id=1)
        await _record(service, actor, 6.0, 5.0, date(2024, 7, 10), farm_id=2)
        result = await _record(service, actor, 4.5, 4.0, date(2024, 8, 10), farm_id=3)

        assert result.calibrations[0].sample_size == 3


class TestRecomputeFailure:
    """A stored validation survives a failed refresh of derived rows."""

    @pytest.mark.asyncio
    async def test_performance_upsert_failure(self, service, repository, actor, monkeypatch):
        monkeypatch.setattr(
            repository,
            "upsert_performance",
            AsyncMock(side_effect=RuntimeError("deadlock detected")),
        )

        first = await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))
        assert await service.ledger.count(1) == 1
        second = await _record(service, actor, 6.0, 5.0, date(2024, 7, 10))

        assert await service.ledger.count(1) == 2
        assert first.recompute_pending is True
        assert first.record.id is not None
        assert first.performance is None
        assert first.calibrations == []
        assert second.recompute_pending is True
        assert await service.provider_ranking(19.07, 72.87) == []

    @pytest.mark.asyncio
    async def test_calibration_upsert_failure(self, service, repository, actor, monkeypatch):
        await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))
        await _record(service, actor, 6.0, 5.0, date(2024, 7, 10))
        monkeypatch.setattr(
            repository,
            "upsert_calibration",
            AsyncMock(side_effect=RuntimeError("connection reset")),
        )

        third = await _record(service, actor, 4.5, 4.0, date(2024, 8, 10))

        assert third.recompute_pending is True
        assert await service.ledger.count(1) == 3
        assert await service.lookup_calibration(19.07, 72.87, OM, Season.MONSOON) is None

    @pytest.mark.asyncio
    async def test_regional_read_failure(self, service, repository, actor, monkeypatch):
        monkeypatch.setattr(
            repository,
            "validations_in_cell",
            AsyncMock(side_effect=RuntimeError("timeout")),
        )

        result = await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))

        assert result.recompute_pending is True
        assert await service.ledger.count(1) == 1

    @pytest.mark.asyncio
    async def test_next_validation_catches_up(self, service, repository, actor, monkeypatch):
        upsert_calibration = repository.upsert_calibration
        await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))
        await _record(service, actor, 6.0, 5.0, date(2024, 7, 10))
        monkeypatch.setattr(
            repository,
            "upsert_calibration",
            AsyncMock(side_effect=RuntimeError("connection reset")),
        )
        await _record(service, actor, 4.5, 4.0, date(2024, 8, 10))
        monkeypatch.setattr(repository, "upsert_calibration", upsert_calibration)

        fourth = await _record(service, actor, 5.0, 4.0, date(2024, 9, 10))

        assert fourth.recompute_pending is False
        assert fourth.calibrations[0].sample_size == 4
        assert fourth.performance.validation_count == 4


class TestHistoryAndBias:
    """Per-farm reads."""

    @pytest.mark.asyncio
    async def test_history_and_stats(self, service, actor):
        await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))
        await _record(service, actor, 6.0, 6.5, date(2024, 6, 11), provider=WB)

        history = await service.validation_history(1)
        stats = await service.validation_stats(1)
        wb_stats = await service.validation_stats(1, provider=WB)

        assert [r.provider for r in history] == [WB, OM]
        assert stats.rmse == 0.79
        assert wb_stats.count == 1
        assert wb_stats.avg_error == -0.5

    @pytest.mark.asyncio
    async def test_provider_history_limit(self, service, actor):
        for day in range(1, 5):
            await _record(service, actor, 5.0, 4.0, date(2024, 6, day))

        history = await service.validation_history(1, limit=2, provider=OM)

        assert [r.day for r in history] == [date(2024, 6, 4), date(2024, 6, 3)]

    @pytest.mark.asyncio
    async def test_detect_bias_uses_recent_window(self, service, actor):
        # Older accurate readings fall outside the 3-day window
        for day in range(1, 4):
            await _record(service, actor, 4.0, 4.0, date(2024, 6, day))
        for day in range(10, 13):
            await _record(service, actor, 5.0, 4.0, date(2024, 6, day))

        report = await service.detect_bias(1, window=3)

        assert report.has_bias is True
        assert report.bias_amount == 1.0
        assert report.sample_size == 3


class TestValidateProvider:
    """Bulk comparison against a station series."""

    @pytest.mark.asyncio
    async def test_skips_unavailable_days(self, repository, actor):
        days = [date(2024, 7, d) for d in (1, 2, 3, 4)]
        manager = FakeProviderManager(
            {days[0]: 5.0, days[1]: 6.0, days[2]: None, days[3]: 4.0},
            failing=[days[3]],
        )
        service = AccuracyService(repository, provider_manager=manager)

        report = await service.validate_provider(
            actor,
            farm_id=1,
            provider=OM,
            latitude=19.07,
            longitude=72.87,
            station_days=[
                StationDay(day=days[0], reference_eto=4.0),
                StationDay(day=days[1], reference_eto=6.5),
                StationDay(day=days[2], reference_eto=4.0),
                StationDay(day=days[3], reference_eto=4.0),
            ],
        )

        assert report.requested_days == 4
        assert report.compared_days == 2
        assert report.stats.rmse == 0.79
        assert report.rating == 1
        assert len(manager.calls) == 4
        assert len(await service.validation_history(1)) == 2
        assert await service.best_provider(19.07, 72.87) == OM

    @pytest.mark.asyncio
    async def test_nothing_compared(self, repository, actor):
        service = AccuracyService(repository, provider_manager=FakeProviderManager({}))

        report = await service.validate_provider(
            actor, 1, OM, 19.07, 72.87, [StationDay(day=date(2024, 7, 1), reference_eto=4.0)]
        )

        assert report.compared_days == 0
        assert report.stats.count == 0
        assert report.r_squared is None

    @pytest.mark.asyncio
    async def test_estimates_eto_from_weather_variables(self, repository, actor):
        day = date(2024, 7, 1)
        weather = _weather(day)
        service = AccuracyService(repository, provider_manager=FakeProviderManager({day: weather}))

        report = await service.validate_provider(
            actor, 1, OM, 19.07, 72.87, [StationDay(day=day, reference_eto=4.0)]
        )

        stored = (await service.validation_history(1))[0]
        expected = estimate_eto(weather.weather_inputs(), settings.default_wind_speed)
        assert report.compared_days == 1
        assert stored.api_eto == pytest.approx(expected)
        assert stored.measured_eto == 4.0
        assert stored.notes == "station:station"

    @pytest.mark.asyncio
    async def test_provider_eto_preferred_over_estimate(self, repository, actor):
        day = date(2024, 7, 1)
        manager = FakeProviderManager({day: _weather(day, eto=5.5)})
        service = AccuracyService(repository, provider_manager=manager)

        await service.validate_provider(
            actor, 1, OM, 19.07, 72.87, [StationDay(day=day, reference_eto=4.0)]
        )

        assert (await service.validation_history(1))[0].api_eto == 5.5

    @pytest.mark.asyncio
    async def test_inverted_provider_temperatures_skipped(self, repository, actor):
        day = date(2024, 7, 1)
        weather = _weather(day).model_copy(update={"tmax": 20.0, "tmin": 25.0})
        service = AccuracyService(repository, provider_manager=FakeProviderManager({day: weather}))

        report = await service.validate_provider(
            actor, 1, OM, 19.07, 72.87, [StationDay(day=day, reference_eto=4.0)]
        )

        assert report.compared_days == 0
        assert await service.validation_history(1) == []

    @pytest.mark.asyncio
    async def test_recompute_failure_reported(self, repository, actor, monkeypatch):
        day = date(2024, 7, 1)
        monkeypatch.setattr(
            repository,
            "upsert_performance",
            AsyncMock(side_effect=RuntimeError("deadlock detected")),
        )
        service = AccuracyService(repository, provider_manager=FakeProviderManager({day: 5.0}))

        report = await service.validate_provider(
            actor, 1, OM, 19.07, 72.87, [StationDay(day=day, reference_eto=4.0)]
        )

        assert report.recompute_pending is True
        assert report.compared_days == 1
        assert await service.ledger.count(1) == 1

    @pytest.mark.asyncio
    async def test_requires_provider_manager(self, service, actor):
        with pytest.raises(ValidationError):
            await service.validate_provider(actor, 1, OM, 19.07, 72.87, [])

    @pytest.mark.asyncio
    async def test_requires_actor(self, repository):
        service = AccuracyService(repository, provider_manager=FakeProviderManager({}))
        with pytest.raises(AuthenticationError):
            await service.validate_provider(None, 1, OM, 19.07, 72.87, [])


class TestCompareProviders:
    """Several providers against the same station series."""

    DAYS = [date(2024, 7, d) for d in (1, 2, 3)]
    STATION = [StationDay(day=d, reference_eto=eto) for d, eto in zip(DAYS, (4.0, 5.0, 6.0))]

    def _manager(self, *providers):
        series = {
            OM: (4.2, 5.1, 6.2),
            WB: (5.0, 6.5, 7.0),
        }
        return PerProviderManager({p: dict(zip(self.DAYS, series[p])) for p in providers})

    @pytest.mark.asyncio
    async def test_best_by_rmse(self, repository, actor):
        service = AccuracyService(repository, provider_manager=self._manager(OM, WB))

        comparison = await service.compare_providers(
            actor, 1, [OM, WB, VC], 19.07, 72.87, self.STATION
        )

        assert [r.provider for r in comparison.reports] == [OM, WB, VC]
        assert comparison.best_provider == OM
        om, wb, vc = comparison.reports
        assert om.stats.rmse == 0.17
        assert om.rating == 5
        assert wb.rating == 1
        assert vc.compared_days == 0
        assert comparison.recommendations == [
            "Free option: open-meteo (RMSE 0.17 mm/day)",
            "Best accuracy: open-meteo (RMSE 0.17 mm/day)",
            "Precision irrigation: open-meteo",
        ]
        assert await service.best_provider(19.07, 72.87) == OM

    @pytest.mark.asyncio
    async def test_no_precise_provider(self, repository, actor):
        service = AccuracyService(repository, provider_manager=self._manager(WB))

        comparison = await service.compare_providers(actor, 1, [WB], 19.07, 72.87, self.STATION)

        assert comparison.best_provider == WB
        assert comparison.recommendations[-1].startswith(
            "Precision irrigation: use a local weather station"
        )

    @pytest.mark.asyncio
    async def test_nothing_matched(self, repository, actor):
        service = AccuracyService(repository, provider_manager=self._manager())

        comparison = await service.compare_providers(actor, 1, [OM, WB], 19.07, 72.87, self.STATION)

        assert comparison.best_provider is None
        assert len(comparison.recommendations) == 1

    @pytest.mark.asyncio
    async def test_duplicate_providers_validated_once(self, repository, actor):
        service = AccuracyService(repository, provider_manager=self._manager(OM))

        comparison = await service.compare_providers(actor, 1, [OM, OM], 19.07, 72.87, self.STATION)

        assert len(comparison.reports) == 1
        assert await service.ledger.count(1) == 3

    @pytest.mark.asyncio
    async def test_rejects_empty_and_anonymous(self, repository, actor):
        service = AccuracyService(repository, provider_manager=self._manager(OM))

        with pytest.raises(ValidationError):
            await service.compare_providers(actor, 1, [], 19.07, 72.87, self.STATION)
        with pytest.raises(AuthenticationError):
            await service.compare_providers(None, 1, [OM], 19.07, 72.87, self.STATION)


class TestEnsembleAndLevel:
    """Calibrated ensemble and accuracy level."""

    @pytest.mark.asyncio
    async def test_calibrated_ensemble(self, service, actor):
        # 16 samples: confidence 0.53, above the 0.5 needed to apply
        for day in range(1, 17):
            await _record(service, actor, 5.0, 4.0, date(2024, 6, day))

        corrected, ensemble = await service.calibrated_ensemble(
            19.07, 72.87, {OM: 6.0, WB: 4.6}, on=date(2024, 7, 20)
        )

        assert corrected[0].applied is True
        assert corrected[0].confidence == 0.53
        assert corrected[0].corrected_eto == 4.8
        assert corrected[1].applied is False
        assert {c.provider for c in ensemble.contributors} == {OM, WB}
        assert 4.6 < ensemble.eto < 4.8

    @pytest.mark.asyncio
    async def test_low_confidence_calibration_held_back(self, service, actor):
        await _record(service, actor, 5.0, 4.0, date(2024, 6, 10))
        await _record(service, actor, 6.0, 5.0, date(2024, 7, 10))
        await _record(service, actor, 4.5, 4.0, date(2024, 8, 10))

        corrected, _ = await service.calibrated_ensemble(
            19.07, 72.87, {OM: 6.0}, on=date(2024, 7, 20)
        )

        assert corrected[0].applied is False
        assert corrected[0].confidence == 0.1
        assert corrected[0].corrected_eto == 6.0

    @pytest.mark.asyncio
    async def test_cold_start_ensemble(self, service):
        corrected, ensemble = await service.calibrated_ensemble(19.07, 72.87, {OM: 5.0, WB: 3.3})

        assert all(not c.applied for c in corrected)
        # cold-start weights 1.0 and 0.7
        assert ensemble.eto == 4.3

    @pytest.mark.asyncio
    async def test_empty_ensemble_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.calibrated_ensemble(19.07, 72.87, {})

    @pytest.mark.asyncio
    async def test_level_climbs_with_validations(self, service, actor):
        for day in range(1, 6):
            await _record(service, actor, 5.0, 4.0, date(2024, 6, day))

        result = await service.accuracy_level(1)

        assert result.level == AccuracyLevel.GOOD
        assert result.progress_to_next == 50.0
        assert service.progress_to_next_level(AccuracyLevel.GOOD, 5, False) == 50.0
