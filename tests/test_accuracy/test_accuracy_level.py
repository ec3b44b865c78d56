"""
Accuracy Level Tests.
"""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from etocal.accuracy.classifier import (
    AccuracyLevelClassifier,
    classify,
    evaluate,
    progress_to_next,
)
from etocal.accuracy.constants import AccuracyLevel
from etocal.accuracy.ledger import ValidationLedger
from etocal.accuracy.schemas import SensorReading
from etocal.accuracy.sensors import SensorReadingService


class TestClassify:
    """Level table."""

    @pytest.mark.parametrize(
        "count,has_sensor,level",
        [
            (0, False, AccuracyLevel.BASIC),
            (4, False, AccuracyLevel.BASIC),
            (5, False, AccuracyLevel.GOOD),
            (9, False, AccuracyLevel.GOOD),
            (10, False, AccuracyLevel.EXCELLENT),
            (25, False, AccuracyLevel.EXCELLENT),
            (0, True, AccuracyLevel.EXCELLENT),
            (9, True, AccuracyLevel.EXCELLENT),
            (20, True, AccuracyLevel.PROFESSIONAL),
        ],
    )
    def test_levels(self, count, has_sensor, level):
        assert classify(count, has_sensor) == level

    def test_error_heuristic_attached(self):
        assert evaluate(4, False).estimated_error_percent == 18
        assert evaluate(20, True).estimated_error_percent == 4


class TestProgress:
    """Progress toward the next level."""

    def test_basic(self):
        assert progress_to_next(AccuracyLevel.BASIC, 2, False) == 40.0

    def test_good_without_sensor(self):
        assert progress_to_next(AccuracyLevel.GOOD, 7, False) == 70.0

    def test_excellent_with_sensor(self):
        assert progress_to_next(AccuracyLevel.EXCELLENT, 15, True) == 75.0

    def test_excellent_without_sensor_is_stuck(self):
        assert progress_to_next(AccuracyLevel.EXCELLENT, 19, False) == 0.0

    def test_professional_is_complete(self):
        assert progress_to_next(AccuracyLevel.PROFESSIONAL, 40, True) == 100.0


class TestClassifier:
    """Evaluation against live storage."""

    @pytest.mark.asyncio
    async def test_new_farm_is_basic(self, repository):
        classifier = AccuracyLevelClassifier(
            ValidationLedger(repository), SensorReadingService(repository)
        )

        result = await classifier.accuracy_level(1)

        assert result.level == AccuracyLevel.BASIC
        assert result.progress_to_next == 0.0

    @pytest.mark.asyncio
    async def test_sensor_lifts_to_excellent(self, repository, actor):
        sensors = SensorReadingService(repository)
        classifier = AccuracyLevelClassifier(ValidationLedger(repository), sensors)
        await sensors.save(actor, SensorReading(farm_id=1, day=date(2024, 7, 1), humidity=70))

        result = await classifier.accuracy_level(1)

        assert result.level == AccuracyLevel.EXCELLENT
        assert result.has_sensor_data is True

    @pytest.mark.asyncio
    async def test_storage_failure_yields_basic(self):
        repository = AsyncMock()
        repository.count_validations.side_effect = RuntimeError("timeout")
        repository.has_sensor_readings.side_effect = RuntimeError("timeout")
        classifier = AccuracyLevelClassifier(
            ValidationLedger(repository), SensorReadingService(repository)
        )

        result = await classifier.accuracy_level(1)

        assert result.level == AccuracyLevel.BASIC
        assert result.validation_count == 0
