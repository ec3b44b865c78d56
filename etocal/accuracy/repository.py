"""
Accuracy Repository.

Storage for sensor readings, validations, calibrations and provider
performance, with:
- An abstract interface the services depend on
- A PostgreSQL implementation over an async session factory
- An in-memory implementation for tests and local runs

Repositories raise whatever the backend raises; the services decide which
failures degrade softly and which propagate.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from itertools import count
from typing import Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
import structlog

from etocal.accuracy.constants import Season, WeatherProvider
from etocal.accuracy.models import (
    EToValidationModel,
    ProviderPerformanceModel,
    RegionalCalibrationModel,
    SensorReadingModel,
)
from etocal.accuracy.schemas import (
    ProviderPerformance,
    RegionalCalibration,
    SensorReading,
    ValidationRecord,
)

logger = structlog.get_logger(__name__)


class CellBounds(NamedTuple):
    """Grid cell extent; south/west inclusive, north/east exclusive."""

    south: float
    west: float
    north: float
    east: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.south <= latitude < self.north
            and self.west <= longitude < self.east
        )


# ============================================================================
# REPOSITORY INTERFACE
# ============================================================================


class AccuracyRepository(ABC):
    """Abstract base class for accuracy storage."""

    # Sensor readings

    @abstractmethod
    async def upsert_sensor_reading(self, reading: SensorReading) -> SensorReading:
        """Insert or replace the reading for (farm_id, day)."""
        pass

    @abstractmethod
    async def get_sensor_reading(self, farm_id: int, day: date) -> Optional[SensorReading]:
        pass

    @abstractmethod
    async def sensor_readings_since(self, farm_id: int, since: date) -> List[SensorReading]:
        """Readings on or after `since`, newest first."""
        pass

    @abstractmethod
    async def has_sensor_readings(self, farm_id: int) -> bool:
        pass

    @abstractmethod
    async def delete_sensor_reading(self, farm_id: int, day: date) -> bool:
        pass

    # Validations

    @abstractmethod
    async def add_validation(self, record: ValidationRecord) -> ValidationRecord:
        """Append a validation and return it with its id."""
        pass

    @abstractmethod
    async def validations_for_farm(
        self,
        farm_id: int,
        limit: Optional[int] = None,
        provider: Optional[WeatherProvider] = None,
    ) -> List[ValidationRecord]:
        """Validations for a farm, newest day first."""
        pass

    @abstractmethod
    async def count_validations(self, farm_id: int) -> int:
        pass

    @abstractmethod
    async def validations_in_cell(
        self,
        bounds: CellBounds,
        provider: WeatherProvider,
    ) -> List[ValidationRecord]:
        """Every validation for `provider` located inside `bounds`."""
        pass

    # Calibrations

    @abstractmethod
    async def upsert_calibration(self, calibration: RegionalCalibration) -> RegionalCalibration:
        """Insert or fully replace the row for (region_key, provider, season)."""
        pass

    @abstractmethod
    async def get_calibration(
        self,
        region_key: str,
        provider: WeatherProvider,
        season: Season,
    ) -> Optional[RegionalCalibration]:
        pass

    @abstractmethod
    async def calibrations_for_region(self, region_key: str) -> List[RegionalCalibration]:
        pass

    # Provider performance

    @abstractmethod
    async def upsert_performance(self, performance: ProviderPerformance) -> ProviderPerformance:
        """Insert or fully replace the row for (region_key, provider)."""
        pass

    @abstractmethod
    async def performance_for_region(self, region_key: str) -> List[ProviderPerformance]:
        pass


# ============================================================================
# CONVERSIONS
# ============================================================================


def _sensor_to_domain(model: SensorReadingModel) -> SensorReading:
    return SensorReading(
        id=model.id,
        farm_id=model.farm_id,
        user_id=model.user_id,
        day=model.date,
        temperature_max=model.temperature_max,
        temperature_min=model.temperature_min,
        temperature_current=model.temperature_current,
        humidity=model.humidity,
        wind_speed=model.wind_speed,
        solar_radiation=model.solar_radiation,
        rainfall=model.rainfall,
        soil_moisture=model.soil_moisture,
        source=model.source,
        device_id=model.device_id,
        quality_checked=model.quality_checked,
        notes=model.notes,
        created_at=model.created_at,
    )


def _validation_to_domain(model: EToValidationModel) -> ValidationRecord:
    return ValidationRecord(
        id=model.id,
        farm_id=model.farm_id,
        user_id=model.user_id,
        day=model.date,
        latitude=model.latitude,
        longitude=model.longitude,
        provider=model.provider,
        api_eto=model.api_eto,
        measured_eto=model.measured_eto,
        validation_source=model.validation_source,
        confidence=model.confidence,
        weather_conditions=model.weather_conditions,
        crop_type=model.crop_type,
        irrigation_status=model.irrigation_status,
        notes=model.notes,
        created_at=model.created_at,
    )


def _sensor_values(reading: SensorReading) -> dict:
    return {
        "farm_id": reading.farm_id,
        "user_id": reading.user_id,
        "date": reading.day,
        "temperature_max": reading.temperature_max,
        "temperature_min": reading.temperature_min,
        "temperature_current": reading.temperature_current,
        "humidity": reading.humidity,
        "wind_speed": reading.wind_speed,
        "solar_radiation": reading.solar_radiation,
        "rainfall": reading.rainfall,
        "soil_moisture": reading.soil_moisture,
        "source": reading.source.value,
        "device_id": reading.device_id,
        "quality_checked": reading.quality_checked,
        "notes": reading.notes,
    }


def _calibration_values(calibration: RegionalCalibration) -> dict:
    return {
        "region_key": calibration.region_key,
        "provider": calibration.provider.value,
        "season": calibration.season.value,
        "correction_factor": calibration.correction_factor,
        "bias": calibration.bias,
        "sample_size": calibration.sample_size,
        "confidence": calibration.confidence,
        "rmse": calibration.rmse,
        "mae": calibration.mae,
        "last_updated": calibration.last_updated,
    }


def _performance_values(performance: ProviderPerformance) -> dict:
    return {
        "region_key": performance.region_key,
        "provider": performance.provider.value,
        "validation_count": performance.validation_count,
        "avg_error": performance.avg_error,
        "avg_error_percent": performance.avg_error_percent,
        "rmse": performance.rmse,
        "mae": performance.mae,
        "r_squared": performance.r_squared,
        "accuracy_score": performance.accuracy_score,
        "period_start": performance.period_start,
        "period_end": performance.period_end,
        "last_updated": performance.last_updated,
    }


# ============================================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================================


class SqlAlchemyAccuracyRepository(AccuracyRepository):
    """PostgreSQL-backed repository using an async session factory."""

    def __init__(self, session_factory):
        """
        Args:
            session_factory: Callable returning an AsyncSession context manager
        """
        self._session_factory = session_factory

    # ------------------------------------------------------------------------
    # Sensor readings
    # ------------------------------------------------------------------------

    async def upsert_sensor_reading(self, reading: SensorReading) -> SensorReading:
        values = _sensor_values(reading)
        stmt = pg_insert(SensorReadingModel).values(**values, created_at=datetime.utcnow())
        stmt = stmt.on_conflict_do_update(
            constraint="uq_sensor_readings_farm_date",
            set_={k: v for k, v in values.items() if k not in ("farm_id", "date")},
        ).returning(SensorReadingModel)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            model = result.scalar_one()
            await session.commit()
            return _sensor_to_domain(model)

    async def get_sensor_reading(self, farm_id: int, day: date) -> Optional[SensorReading]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SensorReadingModel).where(
                    SensorReadingModel.farm_id == farm_id,
                    SensorReadingModel.date == day,
                )
            )
            model = result.scalar_one_or_none()
            return _sensor_to_domain(model) if model else None

    async def sensor_readings_since(self, farm_id: int, since: date) -> List[SensorReading]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SensorReadingModel)
                .where(
                    SensorReadingModel.farm_id == farm_id,
                    SensorReadingModel.date >= since,
                )
                .order_by(SensorReadingModel.date.desc())
            )
            return [_sensor_to_domain(m) for m in result.scalars().all()]

    async def has_sensor_readings(self, farm_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(SensorReadingModel.id)).where(
                    SensorReadingModel.farm_id == farm_id
                )
            )
            return (result.scalar() or 0) > 0

    async def delete_sensor_reading(self, farm_id: int, day: date) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SensorReadingModel).where(
                    SensorReadingModel.farm_id == farm_id,
                    SensorReadingModel.date == day,
                )
            )
            await session.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------------
    # Validations
    # ------------------------------------------------------------------------

    async def add_validation(self, record: ValidationRecord) -> ValidationRecord:
        async with self._session_factory() as session:
            model = EToValidationModel(
                farm_id=record.farm_id,
                user_id=record.user_id,
                date=record.day,
                latitude=record.latitude,
                longitude=record.longitude,
                provider=record.provider.value,
                api_eto=record.api_eto,
                measured_eto=record.measured_eto,
                validation_source=record.validation_source.value,
                confidence=record.confidence,
                weather_conditions=record.weather_conditions,
                crop_type=record.crop_type,
                irrigation_status=record.irrigation_status,
                notes=record.notes,
                created_at=record.created_at or datetime.utcnow(),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _validation_to_domain(model)

    async def validations_for_farm(
        self,
        farm_id: int,
        limit: Optional[int] = None,
        provider: Optional[WeatherProvider] = None,
    ) -> List[ValidationRecord]:
        query = select(EToValidationModel).where(EToValidationModel.farm_id == farm_id)
        if provider is not None:
            query = query.where(EToValidationModel.provider == provider.value)
        query = query.order_by(EToValidationModel.date.desc(), EToValidationModel.id.desc())
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_validation_to_domain(m) for m in result.scalars().all()]

    async def count_validations(self, farm_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(EToValidationModel.id)).where(
                    EToValidationModel.farm_id == farm_id
                )
            )
            return result.scalar() or 0

    async def validations_in_cell(
        self,
        bounds: CellBounds,
        provider: WeatherProvider,
    ) -> List[ValidationRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EToValidationModel)
                .where(
                    EToValidationModel.provider == provider.value,
                    EToValidationModel.latitude >= bounds.south,
                    EToValidationModel.latitude < bounds.north,
                    EToValidationModel.longitude >= bounds.west,
                    EToValidationModel.longitude < bounds.east,
                )
                .order_by(EToValidationModel.date, EToValidationModel.id)
            )
            return [_validation_to_domain(m) for m in result.scalars().all()]

    # ------------------------------------------------------------------------
    # Calibrations
    # ------------------------------------------------------------------------

    async def upsert_calibration(self, calibration: RegionalCalibration) -> RegionalCalibration:
        values = _calibration_values(calibration)
        stmt = pg_insert(RegionalCalibrationModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_regional_calibrations_key",
            set_={
                k: v for k, v in values.items()
                if k not in ("region_key", "provider", "season")
            },
        )

        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
        return calibration

    async def get_calibration(
        self,
        region_key: str,
        provider: WeatherProvider,
        season: Season,
    ) -> Optional[RegionalCalibration]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RegionalCalibrationModel).where(
                    RegionalCalibrationModel.region_key == region_key,
                    RegionalCalibrationModel.provider == provider.value,
                    RegionalCalibrationModel.season == season.value,
                )
            )
            model = result.scalar_one_or_none()
            return RegionalCalibration.model_validate(model) if model else None

    async def calibrations_for_region(self, region_key: str) -> List[RegionalCalibration]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(RegionalCalibrationModel)
                .where(RegionalCalibrationModel.region_key == region_key)
                .order_by(RegionalCalibrationModel.provider, RegionalCalibrationModel.season)
            )
            return [RegionalCalibration.model_validate(m) for m in result.scalars().all()]

    # ------------------------------------------------------------------------
    # Provider performance
    # ------------------------------------------------------------------------

    async def upsert_performance(self, performance: ProviderPerformance) -> ProviderPerformance:
        values = _performance_values(performance)
        stmt = pg_insert(ProviderPerformanceModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_provider_performance_key",
            set_={k: v for k, v in values.items() if k not in ("region_key", "provider")},
        )

        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
        return performance

    async def performance_for_region(self, region_key: str) -> List[ProviderPerformance]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProviderPerformanceModel)
                .where(ProviderPerformanceModel.region_key == region_key)
                .order_by(ProviderPerformanceModel.accuracy_score.desc().nulls_last())
            )
            return [ProviderPerformance.model_validate(m) for m in result.scalars().all()]


# ============================================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================================


class InMemoryAccuracyRepository(AccuracyRepository):
    """
    In-memory repository for testing and local development.

    Keyed the same way as the database constraints so upsert semantics match.
    """

    def __init__(self):
        self._sensors: Dict[Tuple[int, date], SensorReading] = {}
        self._validations: List[ValidationRecord] = []
        self._calibrations: Dict[Tuple[str, WeatherProvider, Season], RegionalCalibration] = {}
        self._performance: Dict[Tuple[str, WeatherProvider], ProviderPerformance] = {}
        self._ids = count(1)

    async def upsert_sensor_reading(self, reading: SensorReading) -> SensorReading:
        key = (reading.farm_id, reading.day)
        existing = self._sensors.get(key)
        stored = reading.model_copy(update={
            "id": existing.id if existing else next(self._ids),
            "created_at": existing.created_at if existing else datetime.utcnow(),
        })
        self._sensors[key] = stored
        return stored

    async def get_sensor_reading(self, farm_id: int, day: date) -> Optional[SensorReading]:
        return self._sensors.get((farm_id, day))

    async def sensor_readings_since(self, farm_id: int, since: date) -> List[SensorReading]:
        readings = [
            r for (f, d), r in self._sensors.items()
            if f == farm_id and d >= since
        ]
        return sorted(readings, key=lambda r: r.day, reverse=True)

    async def has_sensor_readings(self, farm_id: int) -> bool:
        return any(f == farm_id for f, _ in self._sensors)

    async def delete_sensor_reading(self, farm_id: int, day: date) -> bool:
        return self._sensors.pop((farm_id, day), None) is not None

    async def add_validation(self, record: ValidationRecord) -> ValidationRecord:
        stored = record.model_copy(update={
            "id": next(self._ids),
            "created_at": record.created_at or datetime.utcnow(),
        })
        self._validations.append(stored)
        return stored

    async def validations_for_farm(
        self,
        farm_id: int,
        limit: Optional[int] = None,
        provider: Optional[WeatherProvider] = None,
    ) -> List[ValidationRecord]:
        records = [
            r for r in self._validations
            if r.farm_id == farm_id and (provider is None or r.provider == provider)
        ]
        records.sort(key=lambda r: (r.day, r.id), reverse=True)
        return records[:limit] if limit is not None else records

    async def count_validations(self, farm_id: int) -> int:
        return sum(1 for r in self._validations if r.farm_id == farm_id)

    async def validations_in_cell(
        self,
        bounds: CellBounds,
        provider: WeatherProvider,
    ) -> List[ValidationRecord]:
        records = [
            r for r in self._validations
            if r.provider == provider and bounds.contains(r.latitude, r.longitude)
        ]
        return sorted(records, key=lambda r: (r.day, r.id))

    async def upsert_calibration(self, calibration: RegionalCalibration) -> RegionalCalibration:
        key = (calibration.region_key, calibration.provider, calibration.season)
        self._calibrations[key] = calibration
        return calibration

    async def get_calibration(
        self,
        region_key: str,
        provider: WeatherProvider,
        season: Season,
    ) -> Optional[RegionalCalibration]:
        return self._calibrations.get((region_key, provider, season))

    async def calibrations_for_region(self, region_key: str) -> List[RegionalCalibration]:
        rows = [c for (k, _, _), c in self._calibrations.items() if k == region_key]
        return sorted(rows, key=lambda c: (c.provider.value, c.season.value))

    async def upsert_performance(self, performance: ProviderPerformance) -> ProviderPerformance:
        self._performance[(performance.region_key, performance.provider)] = performance
        return performance

    async def performance_for_region(self, region_key: str) -> List[ProviderPerformance]:
        rows = [p for (k, _), p in self._performance.items() if k == region_key]
        return sorted(
            rows,
            key=lambda p: p.accuracy_score if p.accuracy_score is not None else -1.0,
            reverse=True,
        )
