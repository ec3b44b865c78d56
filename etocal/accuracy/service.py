"""
Accuracy Service.

Single entry point for consumers of the calibration engine. Wires the
ledger, sensor service, calibration store, performance tracker and level
classifier over one repository, and keeps derived state in step with the
ledger: every recorded validation triggers a recompute of the calibration
and performance rows for its cell and provider.
"""

import asyncio
from datetime import date
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

import structlog

from etocal.accuracy.calibration import RegionalCalibrationStore
from etocal.accuracy.classifier import AccuracyLevelClassifier
from etocal.accuracy.constants import (
    AccuracyLevel,
    CorrectionMethod,
    Season,
    ValidationSource,
    WeatherProvider,
)
from etocal.accuracy.eto import estimate_eto
from etocal.accuracy.ledger import ValidationLedger
from etocal.accuracy.performance import ProviderPerformanceTracker
from etocal.accuracy.repository import AccuracyRepository
from etocal.accuracy.schemas import (
    AccuracyLevelResult,
    BiasReport,
    CorrectedEstimate,
    EnsembleEstimate,
    ProviderComparison,
    ProviderDay,
    ProviderPerformance,
    ProviderValidationReport,
    RecordedValidation,
    RefinedEstimate,
    RegionalCalibration,
    SensorReading,
    StationDay,
    ValidationContext,
    ValidationRecord,
    ValidationStats,
)
from etocal.accuracy.sensors import SensorReadingService
from etocal.accuracy.statistics import (
    detect_bias,
    provider_rating,
    r_squared,
    validate_with_crop_stress,
)
from etocal.common.exceptions import (
    AuthenticationError,
    PersistenceError,
    ValidationError,
)
from etocal.core.auth import Actor
from etocal.core.config import settings

logger = structlog.get_logger(__name__)


class WeatherProviderManager(Protocol):
    """Source of daily provider weather, with the provider's own ETo when it has one."""

    async def get_daily_weather(
        self,
        latitude: float,
        longitude: float,
        day: date,
        provider: WeatherProvider,
    ) -> Optional[ProviderDay]:
        ...


class AccuracyService:
    """Facade over the calibration components."""

    def __init__(
        self,
        repository: AccuracyRepository,
        provider_manager: Optional[WeatherProviderManager] = None,
    ):
        self.ledger = ValidationLedger(repository)
        self.sensors = SensorReadingService(repository)
        self.calibration = RegionalCalibrationStore(repository)
        self.performance = ProviderPerformanceTracker(repository)
        self.classifier = AccuracyLevelClassifier(self.ledger, self.sensors)
        self._provider_manager = provider_manager

    # ========================================================================
    # VALIDATIONS
    # ========================================================================

    async def record_validation(
        self,
        actor: Optional[Actor],
        farm_id: int,
        provider: WeatherProvider,
        api_eto: float,
        measured_eto: float,
        latitude: float,
        longitude: float,
        day: date,
        source: ValidationSource,
        confidence: Optional[float] = None,
        context: Optional[ValidationContext] = None,
    ) -> RecordedValidation:
        """
        Record a validation, then refresh its cell's derived rows.

        The stored validation is never rolled back: if the refresh fails the
        result comes back with `recompute_pending` set, so a retry by the
        caller does not duplicate the ledger entry.
        """
        record = await self.ledger.record(
            actor,
            farm_id=farm_id,
            provider=provider,
            api_eto=api_eto,
            measured_eto=measured_eto,
            latitude=latitude,
            longitude=longitude,
            day=day,
            source=source,
            confidence=confidence,
            context=context,
        )
        try:
            calibrations, performance = await self._recompute(latitude, longitude, provider)
        except PersistenceError as e:
            self._log_deferred(record.farm_id, provider, e)
            return RecordedValidation(record=record, recompute_pending=True)

        return RecordedValidation(
            record=record,
            calibrations=calibrations,
            performance=performance,
        )

    async def _recompute(
        self,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
    ):
        validations = await self.ledger.in_region(latitude, longitude, provider)
        calibrations = await self.calibration.recompute(latitude, longitude, provider, validations)
        performance = await self.performance.recompute(latitude, longitude, provider, validations)
        return calibrations, performance

    @staticmethod
    def _log_deferred(farm_id: int, provider: WeatherProvider, error: PersistenceError) -> None:
        logger.warning(
            "validation_recompute_deferred",
            farm_id=farm_id,
            provider=provider.value,
            operation=error.operation,
            error=error.message,
        )

    async def validation_history(
        self,
        farm_id: int,
        limit: Optional[int] = None,
        provider: Optional[WeatherProvider] = None,
    ) -> List[ValidationRecord]:
        if provider is not None:
            return await self.ledger.by_provider(farm_id, provider, limit=limit)
        return await self.ledger.history(farm_id, limit)

    async def validation_stats(
        self,
        farm_id: int,
        provider: Optional[WeatherProvider] = None,
    ) -> ValidationStats:
        if provider is not None:
            records = await self.ledger.by_provider(farm_id, provider)
        else:
            records = await self.ledger.history(farm_id)
        return self.ledger.stats(records)

    async def validate_provider(
        self,
        actor: Optional[Actor],
        farm_id: int,
        provider: WeatherProvider,
        latitude: float,
        longitude: float,
        station_days: Sequence[StationDay],
    ) -> ProviderValidationReport:
        """
        Compare a provider with station-measured ETo over several days.

        Each day the provider answers for becomes a validation. The
        provider's own ETo is used when it reports one; otherwise ETo is
        estimated from its weather variables. Days it cannot answer for are
        skipped. Derived rows are recomputed once at the end.

        Raises:
            AuthenticationError: If no actor is resolved.
            ValidationError: If no provider manager is configured.
        """
        self._check_can_validate(actor)

        recorded: List[ValidationRecord] = []
        for station_day in station_days:
            try:
                weather = await self._provider_manager.get_daily_weather(
                    latitude, longitude, station_day.day, provider
                )
            except Exception as e:
                logger.warning(
                    "provider_weather_fetch_failed",
                    provider=provider.value,
                    day=station_day.day.isoformat(),
                    error=str(e),
                )
                continue
            if weather is None:
                continue

            api_eto = weather.eto
            if api_eto is None:
                try:
                    api_eto = estimate_eto(weather.weather_inputs(), settings.default_wind_speed)
                except ValidationError as e:
                    logger.warning(
                        "provider_weather_rejected",
                        provider=provider.value,
                        day=station_day.day.isoformat(),
                        error=e.message,
                    )
                    continue

            recorded.append(await self.ledger.record(
                actor,
                farm_id=farm_id,
                provider=provider,
                api_eto=api_eto,
                measured_eto=station_day.reference_eto,
                latitude=latitude,
                longitude=longitude,
                day=station_day.day,
                source=ValidationSource.WEATHER_STATION,
                context=ValidationContext(notes=f"station:{station_day.source}"),
            ))

        pending = False
        if recorded:
            try:
                await self._recompute(latitude, longitude, provider)
            except PersistenceError as e:
                self._log_deferred(farm_id, provider, e)
                pending = True

        r2 = r_squared(recorded)
        stats = self.ledger.stats(recorded)
        report = ProviderValidationReport(
            provider=provider,
            requested_days=len(station_days),
            compared_days=len(recorded),
            stats=stats,
            r_squared=round(r2, 3) if r2 is not None else None,
            rating=provider_rating(stats.rmse, r2) if recorded else 1,
            recompute_pending=pending,
        )
        logger.info(
            "provider_validated",
            provider=provider.value,
            requested_days=report.requested_days,
            compared_days=report.compared_days,
            rmse=report.stats.rmse,
        )
        return report

    async def compare_providers(
        self,
        actor: Optional[Actor],
        farm_id: int,
        providers: Sequence[WeatherProvider],
        latitude: float,
        longitude: float,
        station_days: Sequence[StationDay],
    ) -> ProviderComparison:
        """
        Validate several providers against the same station days and pick
        the one with the lowest RMSE.

        Providers that matched no station day are reported but never chosen.

        Raises:
            AuthenticationError: If no actor is resolved.
            ValidationError: If no provider manager is configured or no
                provider is given.
        """
        self._check_can_validate(actor)
        providers = list(dict.fromkeys(providers))
        if not providers:
            raise ValidationError("At least one provider is required", field="providers")

        reports = await asyncio.gather(*[
            self.validate_provider(actor, farm_id, provider, latitude, longitude, station_days)
            for provider in providers
        ])

        compared = [r for r in reports if r.compared_days > 0]
        best = min(compared, key=lambda r: r.stats.rmse) if compared else None

        logger.info(
            "providers_compared",
            providers=[p.value for p in providers],
            best_provider=best.provider.value if best else None,
            station_days=len(station_days),
        )
        return ProviderComparison(
            reports=list(reports),
            best_provider=best.provider if best else None,
            recommendations=_recommendations(compared),
        )

    def _check_can_validate(self, actor: Optional[Actor]) -> None:
        if actor is None:
            raise AuthenticationError()
        if self._provider_manager is None:
            raise ValidationError("No weather provider manager configured", field="provider")

    async def detect_bias(
        self,
        farm_id: int,
        provider: Optional[WeatherProvider] = None,
        window: int = 7,
    ) -> BiasReport:
        """Check the farm's `window` most recent validations for systematic bias."""
        records = await self.validation_history(farm_id, limit=window, provider=provider)
        return detect_bias(records)

    validate_with_crop_stress = staticmethod(validate_with_crop_stress)

    # ========================================================================
    # SENSORS
    # ========================================================================

    async def save_sensor_reading(
        self,
        actor: Optional[Actor],
        reading: SensorReading,
    ) -> SensorReading:
        return await self.sensors.save(actor, reading)

    async def get_sensor_reading(self, farm_id: int, day: date) -> Optional[SensorReading]:
        return await self.sensors.get(farm_id, day)

    async def refine_estimate(
        self,
        farm_id: int,
        provider_day: ProviderDay,
    ) -> Optional[RefinedEstimate]:
        return await self.sensors.refine(farm_id, provider_day)

    # ========================================================================
    # ACCURACY LEVEL
    # ========================================================================

    async def accuracy_level(self, farm_id: int) -> AccuracyLevelResult:
        return await self.classifier.accuracy_level(farm_id)

    @staticmethod
    def progress_to_next_level(
        level: AccuracyLevel,
        validation_count: int,
        has_sensor_data: bool,
    ) -> float:
        return AccuracyLevelClassifier.progress_to_next(level, validation_count, has_sensor_data)

    # ========================================================================
    # CALIBRATION & PROVIDERS
    # ========================================================================

    async def lookup_calibration(
        self,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
        season: Optional[Season] = None,
    ) -> Optional[RegionalCalibration]:
        return await self.calibration.lookup(latitude, longitude, provider, season)

    async def region_calibrations(
        self,
        latitude: float,
        longitude: float,
    ) -> List[RegionalCalibration]:
        return await self.calibration.for_region(latitude, longitude)

    async def corrected_estimate(
        self,
        api_eto: float,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
        on: Optional[date] = None,
        method: CorrectionMethod = CorrectionMethod.MULTIPLICATIVE,
    ) -> CorrectedEstimate:
        return await self.calibration.correct(api_eto, latitude, longitude, provider, on, method)

    async def provider_ranking(self, latitude: float, longitude: float) -> List[ProviderPerformance]:
        return await self.performance.ranked(latitude, longitude)

    async def best_provider(self, latitude: float, longitude: float) -> Optional[WeatherProvider]:
        return await self.performance.best(latitude, longitude)

    async def provider_weights(
        self,
        latitude: float,
        longitude: float,
    ) -> Dict[WeatherProvider, float]:
        return await self.performance.weights(latitude, longitude)

    async def calibrated_ensemble(
        self,
        latitude: float,
        longitude: float,
        estimates: Mapping[WeatherProvider, float],
        on: Optional[date] = None,
        method: CorrectionMethod = CorrectionMethod.MULTIPLICATIVE,
    ) -> tuple[List[CorrectedEstimate], EnsembleEstimate]:
        """
        Calibrate each provider's estimate, then blend them by regional weight.

        Raises:
            ValidationError: If no estimates are given.
        """
        if not estimates:
            raise ValidationError("At least one provider estimate is required", field="estimates")

        corrected = [
            await self.corrected_estimate(eto, latitude, longitude, provider, on, method)
            for provider, eto in estimates.items()
        ]
        weights = await self.provider_weights(latitude, longitude)
        ensemble = self.performance.blend(
            {provider: c.corrected_eto for provider, c in zip(estimates, corrected)},
            weights,
        )
        return corrected, ensemble


# RMSE (mm/day) below which a provider is fit for precision irrigation
PRECISION_RMSE = 1.0


def _recommendations(reports: Sequence[ProviderValidationReport]) -> List[str]:
    if not reports:
        return ["No provider matched any station day; use a local weather station"]

    lines = []
    free = [r for r in reports if r.provider == WeatherProvider.OPEN_METEO]
    if free:
        lines.append(f"Free option: {free[0].provider.value} (RMSE {free[0].stats.rmse:.2f} mm/day)")

    best = min(reports, key=lambda r: r.stats.rmse)
    lines.append(f"Best accuracy: {best.provider.value} (RMSE {best.stats.rmse:.2f} mm/day)")

    precise = [r.provider.value for r in reports if r.stats.rmse < PRECISION_RMSE]
    if precise:
        lines.append(f"Precision irrigation: {' or '.join(precise)}")
    else:
        lines.append(
            f"Precision irrigation: use a local weather station "
            f"(every provider RMSE >= {PRECISION_RMSE:.1f} mm/day)"
        )
    return lines
