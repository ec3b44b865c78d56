"""
Validation Statistics.

Pure aggregate functions over validation records. Nothing here touches
storage; every caller passes the snapshot it fetched.
"""

import math
from typing import Optional, Sequence

from etocal.accuracy.schemas import (
    BiasReport,
    CropStressVerdict,
    ValidationRecord,
    ValidationStats,
)


def validation_stats(records: Sequence[ValidationRecord]) -> ValidationStats:
    """
    Error statistics for a set of validations.

    Records whose measured ETo is zero have no defined percent error and are
    left out of `avg_error_percent` only; they still count everywhere else.
    An empty input yields an all-zero result.
    """
    if not records:
        return ValidationStats()

    n = len(records)
    errors = [r.error for r in records]
    percents = [r.error_percent for r in records if r.error_percent is not None]

    avg_error = sum(errors) / n
    avg_error_percent = sum(percents) / len(percents) if percents else 0.0
    rmse = math.sqrt(sum(e * e for e in errors) / n)
    mae = sum(abs(e) for e in errors) / n

    return ValidationStats(
        count=n,
        avg_error=round(avg_error, 2),
        avg_error_percent=round(avg_error_percent, 1),
        rmse=round(rmse, 2),
        mae=round(mae, 2),
    )


def mean_ratio(records: Sequence[ValidationRecord]) -> float:
    """
    Mean of measured / provider ETo.

    Pairs with a zero provider estimate carry no ratio and are skipped;
    with none left the neutral factor 1.0 is returned.
    """
    ratios = [r.measured_eto / r.api_eto for r in records if r.api_eto > 0]
    if not ratios:
        return 1.0
    return sum(ratios) / len(ratios)


def mean_bias(records: Sequence[ValidationRecord]) -> float:
    """Mean signed error, provider minus measured."""
    if not records:
        return 0.0
    return sum(r.error for r in records) / len(records)


def calibration_confidence(
    sample_size: int,
    saturation: int = 30,
    cap: float = 0.95,
) -> float:
    """Confidence grows linearly with samples up to `cap`."""
    return min(cap, sample_size / saturation)


def r_squared(records: Sequence[ValidationRecord]) -> Optional[float]:
    """
    Coefficient of determination of provider estimates against measurements.

    Undefined (None) when the measured values have no variance.
    """
    if not records:
        return None

    measured_mean = sum(r.measured_eto for r in records) / len(records)
    ss_total = sum((r.measured_eto - measured_mean) ** 2 for r in records)
    if ss_total == 0:
        return None

    ss_residual = sum(r.error ** 2 for r in records)
    return 1 - ss_residual / ss_total


def accuracy_score(rmse: float, scale: float = 5.0) -> float:
    """Map RMSE onto [0, 1]; 0 mm/day scores 1, `scale` mm/day or worse scores 0."""
    return max(0.0, 1 - rmse / scale)


def detect_bias(
    records: Sequence[ValidationRecord],
    threshold: float = 0.5,
    min_samples: int = 3,
) -> BiasReport:
    """
    Check recent validations for a consistent over- or under-estimate.

    A mean error beyond `threshold` mm/day is significant; confidence falls
    as the errors scatter relative to their mean.
    """
    n = len(records)
    if n < min_samples:
        return BiasReport(has_bias=False, bias_amount=0.0, confidence=0.0, sample_size=n)

    errors = [r.error for r in records]
    avg = sum(errors) / n
    std_dev = math.sqrt(sum((e - avg) ** 2 for e in errors) / n)
    confidence = max(0.0, 1 - std_dev / (abs(avg) or 1))

    return BiasReport(
        has_bias=abs(avg) > threshold,
        bias_amount=round(avg, 2),
        confidence=round(confidence, 2),
        sample_size=n,
    )


# (max RMSE, min R², stars), best first
RATING_BANDS = (
    (0.5, 0.95, 5),
    (1.0, 0.90, 4),
    (1.5, 0.80, 3),
    (2.0, 0.70, 2),
)


def provider_rating(rmse: float, r2: Optional[float]) -> int:
    """Star rating (1-5) for a provider checked against station data."""
    if r2 is None:
        return 1
    for max_rmse, min_r2, stars in RATING_BANDS:
        if rmse < max_rmse and r2 > min_r2:
            return stars
    return 1


def validate_with_crop_stress(
    eto: float,
    expected_stress: float,
    actual_stress: float,
    tolerance: float = 0.15,
    correction_threshold: float = 0.2,
    correction_fraction: float = 0.1,
) -> CropStressVerdict:
    """
    Judge an ETo estimate by the crop stress seen after irrigating to it.

    Stress is on a 0-1 scale. More stress than expected means ETo was
    underestimated; less means it was overestimated. Beyond
    `correction_threshold` the estimate is moved by `correction_fraction`.
    """
    diff = actual_stress - expected_stress

    suggested = 0.0
    if abs(diff) > correction_threshold:
        suggested = eto * correction_fraction if diff > 0 else -eto * correction_fraction

    return CropStressVerdict(
        is_accurate=abs(diff) < tolerance,
        stress_difference=round(diff, 3),
        suggested_correction=round(suggested, 2),
    )
