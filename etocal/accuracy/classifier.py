"""
Accuracy-Level Classifier.

A farm's calibration maturity, derived fresh on every query from its
validation count and whether it has any sensor readings. Nothing is stored,
so a level can fall as well as rise.

| Level        | Condition                              |
|--------------|----------------------------------------|
| professional | sensor data AND >= 20 validations      |
| excellent    | sensor data OR >= 10 validations       |
| good         | >= 5 validations                       |
| basic        | otherwise                              |

The estimated error percentages attached to each level are published
heuristics for user messaging, not measurements of the farm's own error.
"""

import asyncio

import structlog

from etocal.accuracy.constants import (
    EXCELLENT_THRESHOLD,
    GOOD_THRESHOLD,
    HEURISTIC_ERROR_PERCENT,
    PROFESSIONAL_THRESHOLD,
    AccuracyLevel,
)
from etocal.accuracy.ledger import ValidationLedger
from etocal.accuracy.schemas import AccuracyLevelResult
from etocal.accuracy.sensors import SensorReadingService

logger = structlog.get_logger(__name__)


def classify(validation_count: int, has_sensor_data: bool) -> AccuracyLevel:
    if has_sensor_data and validation_count >= PROFESSIONAL_THRESHOLD:
        return AccuracyLevel.PROFESSIONAL
    if has_sensor_data or validation_count >= EXCELLENT_THRESHOLD:
        return AccuracyLevel.EXCELLENT
    if validation_count >= GOOD_THRESHOLD:
        return AccuracyLevel.GOOD
    return AccuracyLevel.BASIC


def _percent(count: int, threshold: int) -> float:
    return min(100.0, count / threshold * 100)


def progress_to_next(
    level: AccuracyLevel,
    validation_count: int,
    has_sensor_data: bool,
) -> float:
    """
    Percentage (0-100) of the way to the next level.

    Reaching professional needs a sensor, so an excellent farm without one
    makes no progress however many validations it adds.
    """
    if level == AccuracyLevel.BASIC:
        return _percent(validation_count, GOOD_THRESHOLD)
    if level == AccuracyLevel.GOOD:
        # A sensor alone lifts a farm to excellent
        if has_sensor_data:
            return 100.0
        return _percent(validation_count, EXCELLENT_THRESHOLD)
    if level == AccuracyLevel.EXCELLENT:
        if not has_sensor_data:
            return 0.0
        return _percent(validation_count, PROFESSIONAL_THRESHOLD)
    return 100.0


def evaluate(validation_count: int, has_sensor_data: bool) -> AccuracyLevelResult:
    level = classify(validation_count, has_sensor_data)
    return AccuracyLevelResult(
        level=level,
        validation_count=validation_count,
        has_sensor_data=has_sensor_data,
        estimated_error_percent=HEURISTIC_ERROR_PERCENT[level],
        progress_to_next=progress_to_next(level, validation_count, has_sensor_data),
    )


class AccuracyLevelClassifier:
    """Evaluates farms against the level table."""

    def __init__(self, ledger: ValidationLedger, sensors: SensorReadingService):
        self._ledger = ledger
        self._sensors = sensors

    classify = staticmethod(classify)
    progress_to_next = staticmethod(progress_to_next)

    async def accuracy_level(self, farm_id: int) -> AccuracyLevelResult:
        """
        Current level for a farm.

        Count and sensor presence are fetched concurrently; both degrade to
        0/False on failure, which yields basic.
        """
        validation_count, has_sensor_data = await asyncio.gather(
            self._ledger.count(farm_id),
            self._sensors.has_sensor_data(farm_id),
        )
        result = evaluate(validation_count, has_sensor_data)
        logger.debug(
            "accuracy_level_evaluated",
            farm_id=farm_id,
            level=result.level.value,
            validation_count=validation_count,
            has_sensor_data=has_sensor_data,
        )
        return result
