"""ETo accuracy calibration tables.

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create sensor, validation, calibration and performance tables."""
    op.create_table(
        "sensor_readings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("farm_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("temperature_max", sa.Float(), nullable=True),
        sa.Column("temperature_min", sa.Float(), nullable=True),
        sa.Column("temperature_current", sa.Float(), nullable=True),
        sa.Column("humidity", sa.Float(), nullable=True),
        sa.Column("wind_speed", sa.Float(), nullable=True),
        sa.Column("solar_radiation", sa.Float(), nullable=True),
        sa.Column("rainfall", sa.Float(), nullable=True),
        sa.Column("soil_moisture", sa.Float(), nullable=True),
        sa.Column("source", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("device_id", sa.String(100), nullable=True),
        sa.Column("quality_checked", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("farm_id", "date", name="uq_sensor_readings_farm_date"),
        sa.CheckConstraint("humidity IS NULL OR (humidity >= 0 AND humidity <= 100)", name="ck_sensor_readings_humidity"),
    )
    op.create_index("ix_sensor_readings_farm_id", "sensor_readings", ["farm_id"])
    op.create_index("ix_sensor_readings_farm_date", "sensor_readings", ["farm_id", "date"])

    op.create_table(
        "eto_validations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("farm_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("api_eto", sa.Float(), nullable=False),
        sa.Column("measured_eto", sa.Float(), nullable=False),
        sa.Column("validation_source", sa.String(30), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0.7"),
        sa.Column("weather_conditions", postgresql.JSON(), nullable=True),
        sa.Column("crop_type", sa.String(50), nullable=True),
        sa.Column("irrigation_status", sa.String(30), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_eto_validations_confidence"),
    )
    op.create_index("ix_eto_validations_farm", "eto_validations", ["farm_id", "date"])
    op.create_index("ix_eto_validations_provider", "eto_validations", ["provider", "date"])
    op.create_index("ix_eto_validations_location", "eto_validations", ["latitude", "longitude"])

    op.create_table(
        "regional_calibrations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("region_key", sa.String(40), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("season", sa.String(20), nullable=False),
        sa.Column("correction_factor", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("bias", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("sample_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0.0"),
        sa.Column("rmse", sa.Float(), nullable=True),
        sa.Column("mae", sa.Float(), nullable=True),
        sa.Column("last_updated", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("region_key", "provider", "season", name="uq_regional_calibrations_key"),
    )

    op.create_table(
        "provider_performance",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("region_key", sa.String(40), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("validation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_error", sa.Float(), nullable=True),
        sa.Column("avg_error_percent", sa.Float(), nullable=True),
        sa.Column("rmse", sa.Float(), nullable=True),
        sa.Column("mae", sa.Float(), nullable=True),
        sa.Column("r_squared", sa.Float(), nullable=True),
        sa.Column("accuracy_score", sa.Float(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("last_updated", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("region_key", "provider", name="uq_provider_performance_key"),
    )
    op.create_index(
        "ix_provider_performance_region_score",
        "provider_performance",
        ["region_key", "accuracy_score"],
    )


def downgrade() -> None:
    """Drop the calibration tables."""
    op.drop_index("ix_provider_performance_region_score", table_name="provider_performance")
    op.drop_table("provider_performance")
    op.drop_table("regional_calibrations")
    op.drop_index("ix_eto_validations_location", table_name="eto_validations")
    op.drop_index("ix_eto_validations_provider", table_name="eto_validations")
    op.drop_index("ix_eto_validations_farm", table_name="eto_validations")
    op.drop_table("eto_validations")
    op.drop_index("ix_sensor_readings_farm_date", table_name="sensor_readings")
    op.drop_index("ix_sensor_readings_farm_id", table_name="sensor_readings")
    op.drop_table("sensor_readings")
