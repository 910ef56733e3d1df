"""Elevation fusion: barometer + GPS Kalman filtering and grade."""

from __future__ import annotations

from ruckfusion.elevation.engine import (
    ELEVATION_PRESETS,
    ElevationFusionEngine,
    elevation_preset,
)
from ruckfusion.elevation.grade import GradeTracker, calculate_grade, haversine_distance
from ruckfusion.elevation.kalman import AltitudeKalmanFilter

__all__ = [
    "ELEVATION_PRESETS",
    "AltitudeKalmanFilter",
    "ElevationFusionEngine",
    "GradeTracker",
    "calculate_grade",
    "elevation_preset",
    "haversine_distance",
]
