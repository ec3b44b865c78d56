"""
Provider Performance Tracker.

Ranks weather providers per 0.5° cell by how closely their ETo matched
ground truth, and turns the ranking into ensemble weights.

Accuracy score: max(0, 1 - rmse / 5). A provider averaging 5 mm/day RMSE
or worse scores zero.
"""

import math
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

import structlog

from etocal.accuracy.calibration import region_key
from etocal.accuracy.constants import (
    COLD_START_WEIGHTS,
    UNRANKED_PROVIDER_WEIGHT,
    WeatherProvider,
)
from etocal.accuracy.repository import AccuracyRepository
from etocal.accuracy.schemas import (
    EnsembleContributor,
    EnsembleEstimate,
    ProviderPerformance,
    ValidationRecord,
)
from etocal.accuracy.statistics import accuracy_score, r_squared, validation_stats
from etocal.common.exceptions import PersistenceError, ValidationError
from etocal.core.config import settings

logger = structlog.get_logger(__name__)


def build_performance(
    key: str,
    provider: WeatherProvider,
    validations: Sequence[ValidationRecord],
    now: Optional[datetime] = None,
) -> Optional[ProviderPerformance]:
    """Aggregate a provider's validations in one cell; None when there are none."""
    if not validations:
        return None

    stats = validation_stats(validations)
    r2 = r_squared(validations)
    days = [v.day for v in validations]

    return ProviderPerformance(
        region_key=key,
        provider=provider,
        validation_count=stats.count,
        avg_error=stats.avg_error,
        avg_error_percent=stats.avg_error_percent,
        rmse=stats.rmse,
        mae=stats.mae,
        r_squared=round(r2, 3) if r2 is not None else None,
        accuracy_score=round(accuracy_score(stats.rmse, scale=settings.accuracy_rmse_scale), 3),
        period_start=min(days),
        period_end=max(days),
        last_updated=now or datetime.utcnow(),
    )


def blend(
    estimates: Mapping[WeatherProvider, float],
    weights: Mapping[WeatherProvider, float],
) -> EnsembleEstimate:
    """
    Weighted ensemble of per-provider ETo.

    Weights are normalised over the providers present. Confidence falls with
    the weighted spread relative to the weighted mean; the same ratio, as a
    percentage, is the estimated error.

    Raises:
        ValidationError: If no estimates are given.
    """
    if not estimates:
        raise ValidationError("At least one provider estimate is required", field="estimates")

    raw = {p: max(0.0, weights.get(p, UNRANKED_PROVIDER_WEIGHT)) for p in estimates}
    total = sum(raw.values())
    if total == 0:
        normalised = {p: 1 / len(raw) for p in raw}
    else:
        normalised = {p: w / total for p, w in raw.items()}

    mean = sum(estimates[p] * w for p, w in normalised.items())
    variance = sum(w * (estimates[p] - mean) ** 2 for p, w in normalised.items())
    spread = math.sqrt(variance)
    relative_spread = spread / mean if mean > 0 else 0.0

    return EnsembleEstimate(
        eto=round(mean, 2),
        confidence=round(max(0.0, 1 - relative_spread), 2) if mean > 0 else 0.0,
        contributors=[
            EnsembleContributor(provider=p, eto=estimates[p], weight=round(w, 3))
            for p, w in normalised.items()
        ],
        estimated_error_percent=round(relative_spread * 100, 1),
    )


class ProviderPerformanceTracker:
    """Maintains provider_performance rows and derives weights from them."""

    def __init__(self, repository: AccuracyRepository):
        self._repository = repository

    blend = staticmethod(blend)

    async def recompute(
        self,
        latitude: float,
        longitude: float,
        provider: WeatherProvider,
        validations: Sequence[ValidationRecord],
    ) -> Optional[ProviderPerformance]:
        """
        Replace the (cell, provider) row from the full validation set.

        Returns None without writing when there are no validations.

        Raises:
            PersistenceError: If the upsert fails.
        """
        key = region_key(latitude, longitude)
        performance = build_performance(key, provider, validations)
        if performance is None:
            return None

        try:
            stored = await self._repository.upsert_performance(performance)
        except Exception as e:
            logger.error(
                "provider_performance_upsert_failed",
                region_key=key,
                provider=provider.value,
                error=str(e),
            )
            raise PersistenceError("upsert_provider_performance", details={"region_key": key}) from e

        logger.info(
            "provider_performance_recomputed",
            region_key=key,
            provider=provider.value,
            validation_count=stored.validation_count,
            accuracy_score=stored.accuracy_score,
        )
        return stored

    async def ranked(self, latitude: float, longitude: float) -> List[ProviderPerformance]:
        """Providers in the cell, most accurate first."""
        key = region_key(latitude, longitude)
        try:
            rows = await self._repository.performance_for_region(key)
        except Exception as e:
            logger.warning("provider_ranking_unavailable", region_key=key, error=str(e))
            return []
        return sorted(
            rows,
            key=lambda p: p.accuracy_score if p.accuracy_score is not None else -1.0,
            reverse=True,
        )

    async def best(self, latitude: float, longitude: float) -> Optional[WeatherProvider]:
        """Top-ranked provider, or None when the cell has no data."""
        rows = await self.ranked(latitude, longitude)
        return rows[0].provider if rows else None

    async def weights(self, latitude: float, longitude: float) -> Dict[WeatherProvider, float]:
        """
        Ensemble weight for every known provider.

        The cold-start prior applies until the cell has performance data;
        after that ranked providers use their accuracy score and the rest
        get the neutral weight.
        """
        rows = await self.ranked(latitude, longitude)
        if not rows:
            return dict(COLD_START_WEIGHTS)

        scores = {
            p.provider: p.accuracy_score
            for p in rows
            if p.accuracy_score is not None
        }
        return {
            provider: scores.get(provider, UNRANKED_PROVIDER_WEIGHT)
            for provider in WeatherProvider
        }
