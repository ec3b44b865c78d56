"""ETo accuracy calibration.

Components:
- eto: FAO-56 Penman-Monteith estimator and sensor refinement
- ledger: Append-only validation records
- calibration: Regional-seasonal correction factors
- performance: Provider ranking and ensemble weights
- classifier: Farm accuracy levels
- service: Facade used by the API
"""

from etocal.accuracy.constants import AccuracyLevel, CorrectionMethod, Season, WeatherProvider
from etocal.accuracy.repository import (
    AccuracyRepository,
    InMemoryAccuracyRepository,
    SqlAlchemyAccuracyRepository,
)
from etocal.accuracy.service import AccuracyService, WeatherProviderManager

__all__ = [
    "AccuracyLevel",
    "AccuracyRepository",
    "AccuracyService",
    "CorrectionMethod",
    "InMemoryAccuracyRepository",
    "Season",
    "SqlAlchemyAccuracyRepository",
    "WeatherProvider",
    "WeatherProviderManager",
]
