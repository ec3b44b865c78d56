"""
Sensor Reading Service.

Stores one local weather observation per farm per day and uses it to refine
provider ETo.
"""

from datetime import date, timedelta
from typing import List, Optional

import structlog

from etocal.accuracy.eto import refine_with_sensors
from etocal.accuracy.repository import AccuracyRepository
from etocal.accuracy.schemas import ProviderDay, RefinedEstimate, SensorReading
from etocal.common.exceptions import AuthenticationError, PersistenceError, ValidationError
from etocal.core.auth import Actor
from etocal.core.config import settings

logger = structlog.get_logger(__name__)


class SensorReadingService:
    """Upserts and reads farm sensor readings."""

    def __init__(self, repository: AccuracyRepository):
        self._repository = repository

    async def save(self, actor: Optional[Actor], reading: SensorReading) -> SensorReading:
        """
        Store a reading, replacing any earlier one for the same farm and day.

        Raises:
            AuthenticationError: If no actor is resolved.
            ValidationError: If max temperature is below min temperature.
            PersistenceError: If the write fails.
        """
        if actor is None:
            raise AuthenticationError()

        if (
            reading.temperature_max is not None
            and reading.temperature_min is not None
            and reading.temperature_max < reading.temperature_min
        ):
            raise ValidationError(
                "Maximum temperature must not be below minimum temperature",
                field="temperature_max",
            )

        reading = reading.model_copy(update={"user_id": actor.user_id})
        try:
            stored = await self._repository.upsert_sensor_reading(reading)
        except Exception as e:
            logger.error(
                "sensor_reading_save_failed",
                farm_id=reading.farm_id,
                day=reading.day.isoformat(),
                error=str(e),
            )
            raise PersistenceError("save_sensor_reading", details={"farm_id": reading.farm_id}) from e

        logger.info(
            "sensor_reading_saved",
            farm_id=stored.farm_id,
            day=stored.day.isoformat(),
            source=stored.source.value,
        )
        return stored

    async def get(self, farm_id: int, day: date) -> Optional[SensorReading]:
        try:
            return await self._repository.get_sensor_reading(farm_id, day)
        except Exception as e:
            logger.warning("sensor_reading_unavailable", farm_id=farm_id, error=str(e))
            return None

    async def recent(
        self,
        farm_id: int,
        days: Optional[int] = None,
        today: Optional[date] = None,
    ) -> List[SensorReading]:
        """Readings from the last `days` days, newest first."""
        days = days if days is not None else settings.sensor_lookback_days
        since = (today or date.today()) - timedelta(days=days)
        try:
            return await self._repository.sensor_readings_since(farm_id, since)
        except Exception as e:
            logger.warning("sensor_readings_unavailable", farm_id=farm_id, error=str(e))
            return []

    async def has_sensor_data(self, farm_id: int) -> bool:
        try:
            return await self._repository.has_sensor_readings(farm_id)
        except Exception as e:
            logger.warning("sensor_presence_unavailable", farm_id=farm_id, error=str(e))
            return False

    async def delete(self, actor: Optional[Actor], farm_id: int, day: date) -> bool:
        if actor is None:
            raise AuthenticationError()
        try:
            deleted = await self._repository.delete_sensor_reading(farm_id, day)
        except Exception as e:
            logger.error("sensor_reading_delete_failed", farm_id=farm_id, error=str(e))
            raise PersistenceError("delete_sensor_reading", details={"farm_id": farm_id}) from e
        logger.info("sensor_reading_deleted", farm_id=farm_id, day=day.isoformat(), deleted=deleted)
        return deleted

    async def refine(self, farm_id: int, provider_day: ProviderDay) -> Optional[RefinedEstimate]:
        """
        Refine a provider day with the farm's reading for that day.

        Returns None when the farm has no reading for the day.
        """
        reading = await self.get(farm_id, provider_day.day)
        if reading is None:
            return None
        return refine_with_sensors(
            provider_day,
            reading,
            default_wind_speed=settings.default_wind_speed,
        )
