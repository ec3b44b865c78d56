"""
Validation Ledger.

Append-only store of provider ETo estimates paired with ground truth.

Reads degrade softly: a failed lookup is logged and answered with an empty
result so irrigation logic keeps running on uncalibrated data. Writes never
degrade; a failed append is logged and raised.
"""

from datetime import date
from typing import List, Optional, Sequence

import structlog

from etocal.accuracy.constants import (
    REGION_CELL_DEGREES,
    ValidationSource,
    WeatherProvider,
)
from etocal.accuracy.repository import AccuracyRepository, CellBounds
from etocal.accuracy.schemas import ValidationContext, ValidationRecord, ValidationStats
from etocal.accuracy.statistics import validation_stats
from etocal.common.exceptions import AuthenticationError, PersistenceError
from etocal.core.auth import Actor
from etocal.core.config import settings

logger = structlog.get_logger(__name__)


def cell_bounds(latitude: float, longitude: float) -> CellBounds:
    """The 0.5° cell containing a point."""
    south = REGION_CELL_DEGREES * (latitude // REGION_CELL_DEGREES)
    west = REGION_CELL_DEGREES * (longitude // REGION_CELL_DEGREES)
    return CellBounds(
        south=south,
        west=west,
        north=south + REGION_CELL_DEGREES,
        east=west + REGION_CELL_DEGREES,
    )


class ValidationLedger:
    """Records and reads ETo validations."""

    def __init__(self, repository: AccuracyRepository):
        self._repository = repository

    async def record(
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
    ) -> ValidationRecord:
        """
        Append one validation.

        Raises:
            AuthenticationError: If no actor is resolved; nothing is written.
            ValidationError: If a value is out of range.
            PersistenceError: If the write fails.
        """
        if actor is None:
            raise AuthenticationError()

        context = context or ValidationContext()
        record = ValidationRecord(
            farm_id=farm_id,
            user_id=actor.user_id,
            day=day,
            latitude=latitude,
            longitude=longitude,
            provider=provider,
            api_eto=api_eto,
            measured_eto=measured_eto,
            validation_source=source,
            confidence=(
                confidence if confidence is not None
                else settings.default_validation_confidence
            ),
            weather_conditions=context.weather_conditions,
            crop_type=context.crop_type,
            irrigation_status=context.irrigation_status,
            notes=context.notes,
        )

        try:
            stored = await self._repository.add_validation(record)
        except Exception as e:
            logger.error(
                "validation_record_failed",
                farm_id=farm_id,
                provider=provider.value,
                error=str(e),
            )
            raise PersistenceError("record_validation", details={"farm_id": farm_id}) from e

        logger.info(
            "validation_recorded",
            validation_id=stored.id,
            farm_id=farm_id,
            provider=provider.value,
            api_eto=api_eto,
            measured_eto=measured_eto,
            error=round(stored.error, 2),
        )
        return stored

    async def history(self, farm_id: int, limit: Optional[int] = None) -> List[ValidationRecord]:
        """Most recent validations for a farm, newest day first."""
        limit = limit if limit is not None else settings.history_limit
        try:
            return await self._repository.validations_for_farm(farm_id, limit=limit)
        except Exception as e:
            logger.warning("validation_history_unavailable", farm_id=farm_id, error=str(e))
            return []

    async def count(self, farm_id: int) -> int:
        try:
            return await self._repository.count_validations(farm_id)
        except Exception as e:
            logger.warning("validation_count_unavailable", farm_id=farm_id, error=str(e))
            return 0

    async def by_provider(
        self,
        farm_id: int,
        provider: WeatherProvider,
        limit: Optional[int] = None,
    ) -> List[ValidationRecord]:
        """A farm's validations for one provider, newest day first; unbounded without `limit`."""
        try:
            return await self._repository.validations_for_farm(
                farm_id, limit=limit, provider=provider
            )
        except Exception as e:
            logger.warning(
                "validation_history_unavailable",
                farm_id=farm_id,
                provider=provider.value,
                error=str(e),
            )
            return []

    async def in_region(
        self,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
    ) -> List[ValidationRecord]:
        """
        Every validation for `provider` in the cell containing the point.

        Feeds calibration recompute, so a failed read propagates instead of
        silently producing an empty aggregate.
        """
        try:
            return await self._repository.validations_in_cell(
                cell_bounds(latitude, longitude), provider
            )
        except Exception as e:
            logger.error(
                "regional_validations_failed",
                latitude=latitude,
                longitude=longitude,
                provider=provider.value,
                error=str(e),
            )
            raise PersistenceError("read_regional_validations") from e

    @staticmethod
    def stats(records: Sequence[ValidationRecord]) -> ValidationStats:
        return validation_stats(records)
