"""
Reference Evapotranspiration (ETo) Estimator.

FAO-56 Penman-Monteith grass-reference equation for daily time steps:

    ETo = (0.408 Δ (Rn - G) + γ (900 / (T + 273)) u2 (es - ea))
          / (Δ + γ (1 + 0.34 u2))

All functions are pure. Units: temperatures in °C, wind in m/s at 2 m,
shortwave radiation in MJ/m²/day, elevation in m, result in mm/day.
"""

import math
from typing import List, Optional

import structlog

from etocal.accuracy.schemas import (
    AppliedCorrection,
    DailyWeatherInputs,
    ProviderDay,
    RefinedEstimate,
    SensorReading,
)
from etocal.common.exceptions import ValidationError

logger = structlog.get_logger(__name__)


# FAO-56 recommends 2 m/s when no wind data is available.
DEFAULT_WIND_SPEED = 2.0

SOLAR_CONSTANT = 0.0820  # MJ/m²/min
STEFAN_BOLTZMANN = 4.903e-9  # MJ/K⁴/m²/day
ALBEDO = 0.23


def saturation_vapour_pressure(temperature: float) -> float:
    """e°(T) in kPa."""
    return 0.6108 * math.exp(17.27 * temperature / (temperature + 237.3))


def atmospheric_pressure(elevation: float) -> float:
    """Mean pressure (kPa) at an elevation."""
    return 101.3 * ((293.0 - 0.0065 * elevation) / 293.0) ** 5.26


def psychrometric_constant(elevation: float) -> float:
    return 0.000665 * atmospheric_pressure(elevation)


def wind_speed_at_2m(speed: float, height: float) -> float:
    """Convert wind measured at `height` metres to the 2 m reference height."""
    if height <= 0:
        raise ValidationError("Measurement height must be positive", field="height")
    if height == 2.0:
        return speed
    return speed * 4.87 / math.log(67.8 * height - 5.42)


def extraterrestrial_radiation(latitude: float, day_of_year: int) -> float:
    """Ra (MJ/m²/day) for a latitude in degrees."""
    phi = math.radians(latitude)
    inverse_distance = 1 + 0.033 * math.cos(2 * math.pi * day_of_year / 365)
    declination = 0.409 * math.sin(2 * math.pi * day_of_year / 365 - 1.39)
    # Clamp for polar day/night
    cos_omega = max(-1.0, min(1.0, -math.tan(phi) * math.tan(declination)))
    sunset_angle = math.acos(cos_omega)

    return (
        24 * 60 / math.pi
        * SOLAR_CONSTANT
        * inverse_distance
        * (
            sunset_angle * math.sin(phi) * math.sin(declination)
            + math.cos(phi) * math.cos(declination) * math.sin(sunset_angle)
        )
    )


def actual_vapour_pressure(inputs: DailyWeatherInputs) -> float:
    """
    ea (kPa) from the best humidity data available.

    Uses RHmax/RHmin when both are present, RHmean otherwise, and falls back
    to the Tmin-as-dewpoint approximation when no humidity was reported.
    """
    e_tmax = saturation_vapour_pressure(inputs.tmax)
    e_tmin = saturation_vapour_pressure(inputs.tmin)

    if inputs.rh_max is not None and inputs.rh_min is not None:
        return (e_tmin * inputs.rh_max / 100 + e_tmax * inputs.rh_min / 100) / 2
    if inputs.rh_mean is not None:
        return inputs.rh_mean / 100 * (e_tmax + e_tmin) / 2
    return e_tmin


def net_radiation(inputs: DailyWeatherInputs, ea: float) -> float:
    """Rn (MJ/m²/day): net shortwave minus net longwave."""
    ra = extraterrestrial_radiation(inputs.latitude, inputs.day.timetuple().tm_yday)
    rso = (0.75 + 2e-5 * inputs.elevation) * ra
    rs = inputs.solar_radiation

    # Rs/Rso bounded to [0.3, 1.0] (ASCE-EWRI) so the cloudiness factor stays positive
    relative_shortwave = max(0.3, min(rs / rso, 1.0)) if rso > 0 else 0.5
    rns = (1 - ALBEDO) * rs

    tmax_k = inputs.tmax + 273.16
    tmin_k = inputs.tmin + 273.16
    rnl = (
        STEFAN_BOLTZMANN
        * (tmax_k ** 4 + tmin_k ** 4) / 2
        * (0.34 - 0.14 * math.sqrt(ea))
        * (1.35 * relative_shortwave - 0.35)
    )
    return rns - rnl


def estimate_eto(
    inputs: DailyWeatherInputs,
    default_wind_speed: float = DEFAULT_WIND_SPEED,
) -> float:
    """
    Compute daily grass-reference ETo (mm/day).

    Missing wind speed is replaced by `default_wind_speed` so the aerodynamic
    term never collapses to zero. The result is never negative.

    Raises:
        ValidationError: If Tmax is below Tmin.
    """
    if inputs.tmax < inputs.tmin:
        raise ValidationError(
            "Maximum temperature must not be below minimum temperature",
            field="tmax",
            details={"tmax": inputs.tmax, "tmin": inputs.tmin},
        )

    wind = inputs.wind_speed if inputs.wind_speed is not None else default_wind_speed

    tmean = (inputs.tmax + inputs.tmin) / 2
    es = (saturation_vapour_pressure(inputs.tmax) + saturation_vapour_pressure(inputs.tmin)) / 2
    ea = min(actual_vapour_pressure(inputs), es)
    delta = 4098 * saturation_vapour_pressure(tmean) / (tmean + 237.3) ** 2
    gamma = psychrometric_constant(inputs.elevation)
    rn = net_radiation(inputs, ea)
    soil_heat_flux = 0.0  # negligible for daily steps

    numerator = (
        0.408 * delta * (rn - soil_heat_flux)
        + gamma * 900 / (tmean + 273) * wind * (es - ea)
    )
    denominator = delta + gamma * (1 + 0.34 * wind)

    return max(0.0, numerator / denominator)


# ============================================================================
# SENSOR FUSION
# ============================================================================


def refine_with_sensors(
    provider_day: ProviderDay,
    reading: SensorReading,
    default_wind_speed: float = DEFAULT_WIND_SPEED,
) -> RefinedEstimate:
    """
    Recompute a provider's ETo with local sensor values substituted in.

    Local temperature, humidity and wind replace the gridded values;
    radiation always comes from the provider.
    """
    tmax, tmin = provider_day.tmax, provider_day.tmin
    rh_max, rh_min, rh_mean = provider_day.rh_max, provider_day.rh_min, provider_day.rh_mean
    wind = provider_day.wind_speed
    corrections: List[AppliedCorrection] = []

    if reading.temperature_max is not None and reading.temperature_min is not None:
        shift = (
            (reading.temperature_max + reading.temperature_min) / 2
            - (tmax + tmin) / 2
        )
        tmax, tmin = reading.temperature_max, reading.temperature_min
        corrections.append(AppliedCorrection(
            type="temperature",
            adjustment=round(shift, 2),
            reason="Local sensor temperature replaces gridded provider value",
        ))

    if reading.humidity is not None:
        previous: Optional[float] = rh_mean
        if previous is None and rh_max is not None and rh_min is not None:
            previous = (rh_max + rh_min) / 2
        rh_max = rh_min = None
        rh_mean = reading.humidity
        corrections.append(AppliedCorrection(
            type="humidity",
            adjustment=round(reading.humidity - previous, 2) if previous is not None else 0.0,
            reason="Local sensor humidity replaces provider humidity",
        ))

    if reading.wind_speed is not None:
        corrections.append(AppliedCorrection(
            type="wind",
            adjustment=round(reading.wind_speed - wind, 2) if wind is not None else 0.0,
            reason="Local wind speed replaces provider wind speed",
        ))
        wind = reading.wind_speed

    refined = estimate_eto(
        DailyWeatherInputs(
            day=provider_day.day,
            tmax=tmax,
            tmin=tmin,
            rh_max=rh_max,
            rh_min=rh_min,
            rh_mean=rh_mean,
            wind_speed=wind,
            solar_radiation=provider_day.solar_radiation,
            latitude=provider_day.latitude,
            longitude=provider_day.longitude,
            elevation=provider_day.elevation,
        ),
        default_wind_speed=default_wind_speed,
    )

    logger.debug(
        "eto_refined_with_sensors",
        provider=provider_day.provider.value,
        provider_eto=provider_day.eto,
        refined_eto=round(refined, 2),
        corrections=len(corrections),
    )

    return RefinedEstimate(
        eto=round(refined, 2),
        provider=provider_day.provider,
        provider_eto=provider_day.eto,
        corrections=corrections,
    )
