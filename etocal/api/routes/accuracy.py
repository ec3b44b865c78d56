"""Accuracy API Routes.

Endpoints:
- POST /accuracy/validations - Record a validation and recompute its cell
- GET  /accuracy/farms/{farm_id}/validations - Validation history
- GET  /accuracy/farms/{farm_id}/stats - Error statistics
- GET  /accuracy/farms/{farm_id}/bias - Systematic bias in recent validations
- PUT  /accuracy/farms/{farm_id}/sensors - Upsert a day's sensor reading
- GET  /accuracy/farms/{farm_id}/sensors/{day} - Sensor reading for a day
- GET  /accuracy/farms/{farm_id}/level - Accuracy level and progress
- GET  /accuracy/calibration - Calibration for a point, provider and season
- GET  /accuracy/providers/ranking - Providers ranked for a cell
- GET  /accuracy/providers/weights - Ensemble weights for a cell
- POST /accuracy/estimate - Calibrated per-provider and blended ETo
- POST /accuracy/crop-stress - Judge an ETo estimate by observed crop stress

Write endpoints take the actor from X-API-Key.
"""

from datetime import date
from typing import Annotated, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from etocal.accuracy.constants import (
    CorrectionMethod,
    Season,
    SensorSource,
    ValidationSource,
    WeatherProvider,
)
from etocal.accuracy.schemas import (
    AccuracyLevelResult,
    BiasReport,
    CorrectedEstimate,
    CropStressVerdict,
    EnsembleEstimate,
    ProviderPerformance,
    RecordedValidation,
    RegionalCalibration,
    SensorReading,
    ValidationContext,
    ValidationRecord,
    ValidationStats,
)
from etocal.accuracy.service import AccuracyService
from etocal.common.exceptions import NotFoundError
from etocal.core.auth import Actor, get_optional_actor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/accuracy", tags=["Accuracy"])


def get_accuracy_service(request: Request) -> AccuracyService:
    return request.app.state.accuracy_service


ServiceDep = Annotated[AccuracyService, Depends(get_accuracy_service)]
ActorDep = Annotated[Optional[Actor], Depends(get_optional_actor)]
Latitude = Annotated[float, Query(ge=-90, le=90)]
Longitude = Annotated[float, Query(ge=-180, le=180)]


# ============================================================================
# SCHEMAS
# ============================================================================


class RecordValidationRequest(BaseModel):
    """A provider estimate and its ground truth."""

    farm_id: int
    provider: WeatherProvider
    api_eto: float = Field(ge=0, le=30, description="Provider ETo (mm/day)")
    measured_eto: float = Field(ge=0, le=30, description="Measured ETo (mm/day)")
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    day: date
    source: ValidationSource
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    context: Optional[ValidationContext] = None


class SensorReadingRequest(BaseModel):
    """A day's local observations for a farm."""

    day: date
    temperature_max: Optional[float] = Field(default=None, ge=-60, le=60)
    temperature_min: Optional[float] = Field(default=None, ge=-60, le=60)
    temperature_current: Optional[float] = Field(default=None, ge=-60, le=60)
    humidity: Optional[float] = Field(default=None, ge=0, le=100)
    wind_speed: Optional[float] = Field(default=None, ge=0, le=60)
    solar_radiation: Optional[float] = Field(default=None, ge=0, le=50)
    rainfall: Optional[float] = Field(default=None, ge=0)
    soil_moisture: Optional[float] = Field(default=None, ge=0, le=1)
    source: SensorSource = SensorSource.MANUAL
    device_id: Optional[str] = None
    quality_checked: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)


class EstimateRequest(BaseModel):
    """Provider estimates for one point and day."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    day: Optional[date] = None
    estimates: Dict[WeatherProvider, float] = Field(min_length=1)
    method: CorrectionMethod = CorrectionMethod.MULTIPLICATIVE


class EstimateResponse(BaseModel):
    corrected: List[CorrectedEstimate]
    ensemble: EnsembleEstimate


class CropStressRequest(BaseModel):
    """Stress on a 0-1 scale after irrigating to `eto`."""

    eto: float = Field(ge=0, le=30)
    expected_stress: float = Field(ge=0, le=1)
    actual_stress: float = Field(ge=0, le=1)


class ProviderWeightsResponse(BaseModel):
    region_key: str
    weights: Dict[WeatherProvider, float]
    best_provider: Optional[WeatherProvider] = None


# ============================================================================
# VALIDATIONS
# ============================================================================


@router.post(
    "/validations",
    response_model=RecordedValidation,
    status_code=201,
    summary="Record a validation",
)
async def record_validation(
    body: RecordValidationRequest,
    service: ServiceDep,
    actor: ActorDep,
) -> RecordedValidation:
    return await service.record_validation(
        actor,
        farm_id=body.farm_id,
        provider=body.provider,
        api_eto=body.api_eto,
        measured_eto=body.measured_eto,
        latitude=body.latitude,
        longitude=body.longitude,
        day=body.day,
        source=body.source,
        confidence=body.confidence,
        context=body.context,
    )


@router.get("/farms/{farm_id}/validations", response_model=List[ValidationRecord])
async def validation_history(
    farm_id: int,
    service: ServiceDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    provider: Optional[WeatherProvider] = None,
) -> List[ValidationRecord]:
    return await service.validation_history(farm_id, limit=limit, provider=provider)


@router.get("/farms/{farm_id}/stats", response_model=ValidationStats)
async def validation_stats(
    farm_id: int,
    service: ServiceDep,
    provider: Optional[WeatherProvider] = None,
) -> ValidationStats:
    return await service.validation_stats(farm_id, provider=provider)


@router.get("/farms/{farm_id}/bias", response_model=BiasReport)
async def detect_bias(
    farm_id: int,
    service: ServiceDep,
    provider: Optional[WeatherProvider] = None,
    window: Annotated[int, Query(ge=3, le=90)] = 7,
) -> BiasReport:
    return await service.detect_bias(farm_id, provider=provider, window=window)


# ============================================================================
# SENSORS
# ============================================================================


@router.put("/farms/{farm_id}/sensors", response_model=SensorReading)
async def save_sensor_reading(
    farm_id: int,
    body: SensorReadingRequest,
    service: ServiceDep,
    actor: ActorDep,
) -> SensorReading:
    reading = SensorReading(farm_id=farm_id, **body.model_dump())
    return await service.save_sensor_reading(actor, reading)


@router.get("/farms/{farm_id}/sensors/{day}", response_model=SensorReading)
async def get_sensor_reading(
    farm_id: int,
    day: date,
    service: ServiceDep,
) -> SensorReading:
    reading = await service.get_sensor_reading(farm_id, day)
    if reading is None:
        raise NotFoundError("SensorReading", f"{farm_id}/{day.isoformat()}")
    return reading


# ============================================================================
# LEVEL
# ============================================================================


@router.get("/farms/{farm_id}/level", response_model=AccuracyLevelResult)
async def accuracy_level(farm_id: int, service: ServiceDep) -> AccuracyLevelResult:
    return await service.accuracy_level(farm_id)


# ============================================================================
# CALIBRATION & PROVIDERS
# ============================================================================


@router.get("/calibration", response_model=RegionalCalibration)
async def lookup_calibration(
    latitude: Latitude,
    longitude: Longitude,
    provider: WeatherProvider,
    service: ServiceDep,
    season: Optional[Season] = None,
) -> RegionalCalibration:
    calibration = await service.lookup_calibration(latitude, longitude, provider, season)
    if calibration is None:
        key = service.calibration.region_key(latitude, longitude)
        raise NotFoundError(
            "RegionalCalibration",
            f"{key}/{provider.value}/{season.value if season else 'current'}",
        )
    return calibration


@router.get("/providers/ranking", response_model=List[ProviderPerformance])
async def provider_ranking(
    latitude: Latitude,
    longitude: Longitude,
    service: ServiceDep,
) -> List[ProviderPerformance]:
    return await service.provider_ranking(latitude, longitude)


@router.get("/providers/weights", response_model=ProviderWeightsResponse)
async def provider_weights(
    latitude: Latitude,
    longitude: Longitude,
    service: ServiceDep,
) -> ProviderWeightsResponse:
    return ProviderWeightsResponse(
        region_key=service.calibration.region_key(latitude, longitude),
        weights=await service.provider_weights(latitude, longitude),
        best_provider=await service.best_provider(latitude, longitude),
    )


@router.post("/estimate", response_model=EstimateResponse)
async def calibrated_estimate(body: EstimateRequest, service: ServiceDep) -> EstimateResponse:
    corrected, ensemble = await service.calibrated_ensemble(
        body.latitude,
        body.longitude,
        body.estimates,
        on=body.day,
        method=body.method,
    )
    return EstimateResponse(corrected=corrected, ensemble=ensemble)


@router.post("/crop-stress", response_model=CropStressVerdict)
async def crop_stress(body: CropStressRequest, service: ServiceDep) -> CropStressVerdict:
    return service.validate_with_crop_stress(body.eto, body.expected_stress, body.actual_stress)
