"""Accuracy Constants.

Closed enumerations and fixed lookup tables shared by the calibration
components.
"""

from datetime import date
from enum import Enum
from typing import Dict


class WeatherProvider(str, Enum):
    """Weather providers whose ETo estimates are calibrated."""

    OPEN_METEO = "open-meteo"
    VISUAL_CROSSING = "visual-crossing"
    WEATHERBIT = "weatherbit"
    TOMORROW_IO = "tomorrow-io"


class Season(str, Enum):
    """Agro-climatic seasons used to stratify calibration."""

    WINTER = "winter"
    SUMMER = "summer"
    MONSOON = "monsoon"
    POST_MONSOON = "post-monsoon"


class ValidationSource(str, Enum):
    """Where a ground-truth ETo value came from."""

    WEATHER_STATION = "weather_station"
    SENSOR_CALCULATION = "sensor_calculation"
    CROP_STRESS = "crop_stress"
    EXPERT_ESTIMATE = "expert_estimate"


class SensorSource(str, Enum):
    """How a sensor reading was captured."""

    MANUAL = "manual"
    IOT = "iot"
    STATION = "station"


class AccuracyLevel(str, Enum):
    """Calibration maturity tiers, lowest first."""

    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"
    PROFESSIONAL = "professional"


class CorrectionMethod(str, Enum):
    """How a calibration is applied to a provider estimate."""

    MULTIPLICATIVE = "multiplicative"
    ADDITIVE = "additive"


# Calendar month -> season. Static, not user-configurable.
SEASON_BY_MONTH: Dict[int, Season] = {
    1: Season.WINTER,
    2: Season.WINTER,
    3: Season.SUMMER,
    4: Season.SUMMER,
    5: Season.SUMMER,
    6: Season.MONSOON,
    7: Season.MONSOON,
    8: Season.MONSOON,
    9: Season.MONSOON,
    10: Season.POST_MONSOON,
    11: Season.POST_MONSOON,
    12: Season.WINTER,
}


def season_for(day: date) -> Season:
    """Map a date onto its agro-climatic season."""
    return SEASON_BY_MONTH[day.month]


# Ensemble weights used before a region has any performance data.
# A prior chosen by hand, not derived from validations.
COLD_START_WEIGHTS: Dict[WeatherProvider, float] = {
    WeatherProvider.OPEN_METEO: 1.0,
    WeatherProvider.TOMORROW_IO: 0.9,
    WeatherProvider.WEATHERBIT: 0.7,
    WeatherProvider.VISUAL_CROSSING: 0.5,
}

# Weight for a provider with no ranking in a region that has data.
UNRANKED_PROVIDER_WEIGHT = 0.5

# Heuristic ETo error (%) shown to users per tier. Published estimates,
# not measured from the farm's own RMSE.
HEURISTIC_ERROR_PERCENT: Dict[AccuracyLevel, int] = {
    AccuracyLevel.BASIC: 18,
    AccuracyLevel.GOOD: 10,
    AccuracyLevel.EXCELLENT: 6,
    AccuracyLevel.PROFESSIONAL: 4,
}

# Validation counts gating each tier
GOOD_THRESHOLD = 5
EXCELLENT_THRESHOLD = 10
PROFESSIONAL_THRESHOLD = 20

# Grid resolution of a region key, in degrees
REGION_CELL_DEGREES = 0.5
