"""
Regional-Seasonal Calibration Store.

Aggregates validations into correction parameters per 0.5° cell, provider
and season:

    correction_factor = mean(measured / api)
    bias              = mean(api - measured)
    confidence        = min(0.95, n / 30)

A recompute replaces each qualifying row in full from the entire current
validation set. Season groups below the minimum sample size are skipped and
any existing row for them is left as it was. This component is the only
writer of calibration rows.
"""

import math
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

import structlog

from etocal.accuracy.constants import (
    REGION_CELL_DEGREES,
    CorrectionMethod,
    Season,
    WeatherProvider,
    season_for,
)
from etocal.accuracy.ledger import cell_bounds
from etocal.accuracy.repository import AccuracyRepository, CellBounds
from etocal.accuracy.schemas import CorrectedEstimate, RegionalCalibration, ValidationRecord
from etocal.accuracy.statistics import (
    calibration_confidence,
    mean_bias,
    mean_ratio,
    validation_stats,
)
from etocal.common.exceptions import PersistenceError
from etocal.core.config import settings

logger = structlog.get_logger(__name__)


def _format_coordinate(value: float) -> str:
    # 19.0 -> "19", 72.5 -> "72.5"
    return f"{value:g}"


def region_key(latitude: float, longitude: float) -> str:
    """Identifier of the 0.5° cell containing a point, e.g. ``"19,72.5"``."""
    scale = 1 / REGION_CELL_DEGREES
    lat_cell = math.floor(latitude * scale) / scale
    lon_cell = math.floor(longitude * scale) / scale
    return f"{_format_coordinate(lat_cell)},{_format_coordinate(lon_cell)}"


def region_bounds(latitude: float, longitude: float) -> CellBounds:
    return cell_bounds(latitude, longitude)


def build_calibrations(
    key: str,
    provider: WeatherProvider,
    validations: Sequence[ValidationRecord],
    min_samples: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[RegionalCalibration]:
    """
    Compute calibration rows for every season group large enough to keep.

    Pure; groups are emitted in season order so identical input always
    yields identical output.
    """
    min_samples = min_samples if min_samples is not None else settings.min_calibration_samples
    now = now or datetime.utcnow()

    groups: Dict[Season, List[ValidationRecord]] = defaultdict(list)
    for record in validations:
        groups[season_for(record.day)].append(record)

    rows: List[RegionalCalibration] = []
    for season in Season:
        group = groups.get(season, [])
        if len(group) < min_samples:
            if group:
                logger.debug(
                    "calibration_group_skipped",
                    region_key=key,
                    provider=provider.value,
                    season=season.value,
                    sample_size=len(group),
                )
            continue

        stats = validation_stats(group)
        rows.append(RegionalCalibration(
            region_key=key,
            provider=provider,
            season=season,
            correction_factor=round(mean_ratio(group), 3),
            bias=round(mean_bias(group), 2),
            sample_size=len(group),
            confidence=round(
                calibration_confidence(
                    len(group),
                    saturation=settings.confidence_saturation_samples,
                    cap=settings.max_calibration_confidence,
                ),
                2,
            ),
            rmse=stats.rmse,
            mae=stats.mae,
            last_updated=now,
        ))
    return rows


def apply_calibration(
    api_eto: float,
    calibration: RegionalCalibration,
    method: CorrectionMethod = CorrectionMethod.MULTIPLICATIVE,
) -> float:
    """Correct a provider estimate; never negative, rounded to 2 dp."""
    if method == CorrectionMethod.ADDITIVE:
        corrected = api_eto - calibration.bias
    else:
        corrected = api_eto * calibration.correction_factor
    return round(max(0.0, corrected), 2)


class RegionalCalibrationStore:
    """Recomputes, stores and applies regional calibrations."""

    def __init__(
        self,
        repository: AccuracyRepository,
        min_apply_confidence: Optional[float] = None,
    ):
        self._repository = repository
        self.min_apply_confidence = (
            min_apply_confidence
            if min_apply_confidence is not None
            else settings.min_apply_confidence
        )

    region_key = staticmethod(region_key)
    region_bounds = staticmethod(region_bounds)
    season_for = staticmethod(season_for)
    apply = staticmethod(apply_calibration)

    async def recompute(
        self,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
        validations: Sequence[ValidationRecord],
    ) -> List[RegionalCalibration]:
        """
        Rebuild calibrations for a cell and provider from `validations`.

        Every row is computed before the first write. Returns the rows
        written; skipped seasons are absent.

        Raises:
            PersistenceError: If an upsert fails.
        """
        key = region_key(latitude, longitude)
        rows = build_calibrations(key, provider, validations)

        written: List[RegionalCalibration] = []
        for row in rows:
            try:
                written.append(await self._repository.upsert_calibration(row))
            except Exception as e:
                logger.error(
                    "calibration_upsert_failed",
                    region_key=key,
                    provider=provider.value,
                    season=row.season.value,
                    error=str(e),
                )
                raise PersistenceError(
                    "upsert_calibration",
                    details={"region_key": key, "season": row.season.value},
                ) from e

        logger.info(
            "calibration_recomputed",
            region_key=key,
            provider=provider.value,
            validations=len(validations),
            seasons_written=[r.season.value for r in written],
        )
        return written

    async def lookup(
        self,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
        season: Optional[Season] = None,
    ) -> Optional[RegionalCalibration]:
        """Exact (cell, provider, season) match; season defaults to today's."""
        key = region_key(latitude, longitude)
        season = season or season_for(date.today())
        try:
            return await self._repository.get_calibration(key, provider, season)
        except Exception as e:
            logger.warning(
                "calibration_lookup_failed",
                region_key=key,
                provider=provider.value,
                season=season.value,
                error=str(e),
            )
            return None

    async def for_region(self, latitude: float, longitude: float) -> List[RegionalCalibration]:
        key = region_key(latitude, longitude)
        try:
            return await self._repository.calibrations_for_region(key)
        except Exception as e:
            logger.warning("region_calibrations_unavailable", region_key=key, error=str(e))
            return []

    async def correct(
        self,
        api_eto: float,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
        on: Optional[date] = None,
        method: CorrectionMethod = CorrectionMethod.MULTIPLICATIVE,
    ) -> CorrectedEstimate:
        """
        Apply the matching calibration to a provider estimate.

        Only calibrations with confidence above `min_apply_confidence` are
        applied. Otherwise the estimate passes through unchanged, carrying
        the confidence of the calibration that was held back (zero when
        there is none).
        """
        season = season_for(on or date.today())
        key = region_key(latitude, longitude)
        calibration = await self.lookup(latitude, longitude, provider, season)

        if calibration is None or calibration.confidence <= self.min_apply_confidence:
            if calibration is not None:
                logger.debug(
                    "calibration_below_confidence",
                    region_key=key,
                    provider=provider.value,
                    season=season.value,
                    confidence=calibration.confidence,
                    required=self.min_apply_confidence,
                )
            return CorrectedEstimate(
                original_eto=api_eto,
                corrected_eto=round(api_eto, 2),
                applied=False,
                method=method,
                confidence=calibration.confidence if calibration is not None else 0.0,
                region_key=key,
                season=season,
            )

        corrected = apply_calibration(api_eto, calibration, method)
        return CorrectedEstimate(
            original_eto=api_eto,
            corrected_eto=corrected,
            applied=True,
            method=method,
            correction=(
                calibration.correction_factor
                if method == CorrectionMethod.MULTIPLICATIVE
                else calibration.bias
            ),
            confidence=calibration.confidence,
            region_key=key,
            season=season,
        )
