"""
Accuracy Database Models.

SQLAlchemy models for the calibration data.

Tables:
- sensor_readings: Local weather observations, one per farm and date
- eto_validations: Provider ETo paired with a measured value (append-only)
- regional_calibrations: Correction factors per region, provider and season
- provider_performance: Aggregate provider accuracy per region
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from etocal.core.database import Base


class SensorReadingModel(Base):
    """
    Local sensor observation for a farm.

    At most one row per (farm_id, date); later writes for the same day
    update the existing row.
    """
    __tablename__ = "sensor_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    farm_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    temperature_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_current: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    humidity: Mapped[Optional[float]] = mapped_column(Float, nullable=True, doc="Relative humidity %")
    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True, doc="m/s")
    solar_radiation: Mapped[Optional[float]] = mapped_column(Float, nullable=True, doc="MJ/m²/day")
    rainfall: Mapped[Optional[float]] = mapped_column(Float, nullable=True, doc="mm")
    soil_moisture: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        doc="Volumetric water content (0-1)",
    )

    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    device_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quality_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("farm_id", "date", name="uq_sensor_readings_farm_date"),
        Index("ix_sensor_readings_farm_date", "farm_id", "date"),
    )


class EToValidationModel(Base):
    """
    Provider ETo compared with a ground-truth value.

    Rows are never updated. Error columns are deliberately absent; errors
    are derived from api_eto and measured_eto when read.
    """
    __tablename__ = "eto_validations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    farm_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    date: Mapped[date] = mapped_column(Date, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    api_eto: Mapped[float] = mapped_column(Float, nullable=False, doc="mm/day from provider")
    measured_eto: Mapped[float] = mapped_column(Float, nullable=False, doc="mm/day ground truth")
    validation_source: Mapped[str] = mapped_column(String(30), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.7)

    weather_conditions: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    crop_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    irrigation_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_eto_validations_farm", "farm_id", "date"),
        Index("ix_eto_validations_provider", "provider", "date"),
        Index("ix_eto_validations_location", "latitude", "longitude"),
    )


class RegionalCalibrationModel(Base):
    """Correction factor and bias for a 0.5° cell, provider and season."""
    __tablename__ = "regional_calibrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_key: Mapped[str] = mapped_column(String(40), nullable=False, doc="e.g. '19,72.5'")
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    season: Mapped[str] = mapped_column(String(20), nullable=False)

    correction_factor: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    bias: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sample_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rmse: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    mae: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "region_key", "provider", "season",
            name="uq_regional_calibrations_key",
        ),
    )


class ProviderPerformanceModel(Base):
    """Provider accuracy aggregated over a region's validations."""
    __tablename__ = "provider_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    region_key: Mapped[str] = mapped_column(String(40), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)

    validation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_error: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_error_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rmse: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    mae: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    r_squared: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    accuracy_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True, doc="0-1, higher is better")

    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("region_key", "provider", name="uq_provider_performance_key"),
        Index("ix_provider_performance_region_score", "region_key", "accuracy_score"),
    )
