"""
Simulation utilities for generating synthetic RSSI surveys.

Modules:
    rssi_survey: Readings around a known emitter with a fraction of outliers
"""

from radiosource.sim.rssi_survey import (
    Survey,
    SurveyConfig,
    generate_survey,
)

__all__ = [
    "Survey",
    "SurveyConfig",
    "generate_survey",
]
