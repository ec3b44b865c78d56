"""
Accuracy Domain Schemas.

Pydantic models passed between the calibration components, the repository
layer and the API.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from etocal.accuracy.constants import (
    AccuracyLevel,
    CorrectionMethod,
    Season,
    SensorSource,
    ValidationSource,
    WeatherProvider,
)


# ============================================================================
# WEATHER INPUTS
# ============================================================================


class DailyWeatherInputs(BaseModel):
    """Daily weather variables for one location, as fed to the ETo estimator."""

    day: date
    tmax: float = Field(ge=-60, le=60, description="Maximum air temperature (°C)")
    tmin: float = Field(ge=-60, le=60, description="Minimum air temperature (°C)")
    rh_max: Optional[float] = Field(default=None, ge=0, le=100)
    rh_min: Optional[float] = Field(default=None, ge=0, le=100)
    rh_mean: Optional[float] = Field(default=None, ge=0, le=100)
    wind_speed: Optional[float] = Field(
        default=None,
        ge=0,
        le=60,
        description="Wind speed at 2 m (m/s)",
    )
    solar_radiation: float = Field(ge=0, le=50, description="Shortwave sum (MJ/m²/day)")
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    elevation: float = Field(default=0.0, ge=-500, le=9000)


class ProviderDay(BaseModel):
    """One day of weather from a provider, optionally with its own ETo."""

    provider: WeatherProvider
    day: date
    tmax: float = Field(ge=-60, le=60)
    tmin: float = Field(ge=-60, le=60)
    rh_max: Optional[float] = Field(default=None, ge=0, le=100)
    rh_min: Optional[float] = Field(default=None, ge=0, le=100)
    rh_mean: Optional[float] = Field(default=None, ge=0, le=100)
    wind_speed: Optional[float] = Field(default=None, ge=0, le=60)
    solar_radiation: float = Field(ge=0, le=50)
    eto: Optional[float] = Field(default=None, ge=0, description="Provider-computed ETo")
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    elevation: float = Field(default=0.0, ge=-500, le=9000)

    def weather_inputs(self) -> DailyWeatherInputs:
        return DailyWeatherInputs(
            day=self.day,
            tmax=self.tmax,
            tmin=self.tmin,
            rh_max=self.rh_max,
            rh_min=self.rh_min,
            rh_mean=self.rh_mean,
            wind_speed=self.wind_speed,
            solar_radiation=self.solar_radiation,
            latitude=self.latitude,
            longitude=self.longitude,
            elevation=self.elevation,
        )


class AppliedCorrection(BaseModel):
    """A single substitution made while refining an estimate."""

    type: str
    adjustment: float
    reason: str


class RefinedEstimate(BaseModel):
    """ETo recomputed with local sensor values."""

    eto: float
    provider: WeatherProvider
    provider_eto: Optional[float] = None
    corrections: List[AppliedCorrection] = Field(default_factory=list)


# ============================================================================
# SENSOR READINGS
# ============================================================================


class SensorReading(BaseModel):
    """A manual, IoT or station observation for one farm and date."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    farm_id: int
    user_id: Optional[str] = None
    day: date
    temperature_max: Optional[float] = None
    temperature_min: Optional[float] = None
    temperature_current: Optional[float] = None
    humidity: Optional[float] = Field(default=None, ge=0, le=100)
    wind_speed: Optional[float] = Field(default=None, ge=0)
    solar_radiation: Optional[float] = Field(default=None, ge=0)
    rainfall: Optional[float] = Field(default=None, ge=0)
    soil_moisture: Optional[float] = Field(default=None, ge=0, le=1)
    source: SensorSource = SensorSource.MANUAL
    device_id: Optional[str] = None
    quality_checked: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


# ============================================================================
# VALIDATIONS
# ============================================================================


class ValidationContext(BaseModel):
    """Optional context stored alongside a validation."""

    weather_conditions: Optional[Dict[str, Any]] = None
    crop_type: Optional[str] = None
    irrigation_status: Optional[str] = None
    notes: Optional[str] = None


class ValidationRecord(BaseModel):
    """
    An immutable comparison of a provider estimate with a measured value.

    Error figures are derived on access so a corrected upstream value
    never leaves a stale error behind.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: Optional[int] = None
    farm_id: int
    user_id: str
    day: date
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    provider: WeatherProvider
    api_eto: float = Field(ge=0)
    measured_eto: float = Field(ge=0)
    validation_source: ValidationSource
    confidence: float = Field(default=0.7, ge=0, le=1)
    weather_conditions: Optional[Dict[str, Any]] = None
    crop_type: Optional[str] = None
    irrigation_status: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @computed_field
    @property
    def error(self) -> float:
        """Signed error, provider minus measured (mm/day)."""
        return self.api_eto - self.measured_eto

    @computed_field
    @property
    def error_percent(self) -> Optional[float]:
        """Error relative to the measured value; undefined when it is zero."""
        if self.measured_eto == 0:
            return None
        return (self.api_eto - self.measured_eto) / self.measured_eto * 100


class ValidationStats(BaseModel):
    """Aggregate error statistics over a set of validations."""

    count: int = 0
    avg_error: float = 0.0
    avg_error_percent: float = 0.0
    rmse: float = 0.0
    mae: float = 0.0


class StationDay(BaseModel):
    """A station-measured reference ETo for one day."""

    day: date
    reference_eto: float = Field(ge=0)
    source: str = "station"


class BiasReport(BaseModel):
    """Result of checking recent validations for systematic bias."""

    has_bias: bool
    bias_amount: float
    confidence: float
    sample_size: int


# ============================================================================
# CALIBRATION
# ============================================================================


class RegionalCalibration(BaseModel):
    """Correction parameters for one (region, provider, season)."""

    model_config = ConfigDict(from_attributes=True)

    region_key: str
    provider: WeatherProvider
    season: Season
    correction_factor: float
    bias: float
    sample_size: int
    confidence: float = Field(ge=0, le=1)
    rmse: Optional[float] = None
    mae: Optional[float] = None
    last_updated: datetime


class CorrectedEstimate(BaseModel):
    """A provider estimate after regional calibration."""

    original_eto: float
    corrected_eto: float
    applied: bool
    method: CorrectionMethod
    correction: float = 0.0
    confidence: float = 0.0
    region_key: str
    season: Season


# ============================================================================
# PROVIDER PERFORMANCE
# ============================================================================


class ProviderPerformance(BaseModel):
    """Aggregate accuracy of one provider within one region."""

    model_config = ConfigDict(from_attributes=True)

    region_key: str
    provider: WeatherProvider
    validation_count: int
    avg_error: Optional[float] = None
    avg_error_percent: Optional[float] = None
    rmse: Optional[float] = None
    mae: Optional[float] = None
    r_squared: Optional[float] = None
    accuracy_score: Optional[float] = Field(default=None, ge=0, le=1)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    last_updated: datetime


class EnsembleContributor(BaseModel):
    provider: WeatherProvider
    eto: float
    weight: float


class EnsembleEstimate(BaseModel):
    """Weighted blend of several providers' estimates."""

    eto: float
    confidence: float
    contributors: List[EnsembleContributor]
    estimated_error_percent: float


# ============================================================================
# ACCURACY LEVEL
# ============================================================================


class AccuracyLevelResult(BaseModel):
    """A farm's calibration maturity, derived on demand."""

    level: AccuracyLevel
    validation_count: int
    has_sensor_data: bool
    estimated_error_percent: int = Field(
        description="Published heuristic for the tier, not a measured error",
    )
    progress_to_next: float = Field(ge=0, le=100)


# ============================================================================
# SERVICE RESULTS
# ============================================================================


class RecordedValidation(BaseModel):
    """
    A stored validation and the recomputation it triggered.

    `recompute_pending` is set when the validation was stored but its
    cell's derived rows could not be refreshed; the next recorded
    validation for the same cell and provider catches them up.
    """

    record: ValidationRecord
    calibrations: List[RegionalCalibration] = Field(default_factory=list)
    performance: Optional[ProviderPerformance] = None
    recompute_pending: bool = False


class ProviderValidationReport(BaseModel):
    """Outcome of checking one provider against station days."""

    provider: WeatherProvider
    requested_days: int
    compared_days: int
    stats: ValidationStats
    r_squared: Optional[float] = None
    rating: int = Field(default=1, ge=1, le=5, description="Star rating from RMSE and R²")
    recompute_pending: bool = False


class ProviderComparison(BaseModel):
    """Several providers checked against the same station days."""

    reports: List[ProviderValidationReport]
    best_provider: Optional[WeatherProvider] = None
    recommendations: List[str] = Field(default_factory=list)


class CropStressVerdict(BaseModel):
    """Whether observed crop stress agrees with what an ETo estimate predicted."""

    is_accurate: bool
    stress_difference: float
    suggested_correction: float = Field(description="mm/day to add to the estimate")
