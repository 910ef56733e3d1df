"""Sensor fusion and energy estimation for weighted foot-marches.

Components:
- ElevationFusionEngine: barometer + GPS Kalman filter, grade
- MotionPatternAnalyzer: accelerometer/gyroscope feature extraction
- TerrainClassifier: motion, location and manual terrain detection
- AdaptiveSamplingController: GPS cadence from movement and battery
- CalorieEngine: load-carriage metabolic rate and running total
"""

from __future__ import annotations

from ruckfusion.calories import CalorieEngine, CalorieParameters, CalorieResult
from ruckfusion.elevation import ElevationFusionEngine
from ruckfusion.models import (
    AltitudeSample,
    DetectionMethod,
    ElevationEstimate,
    LocationFix,
    LocationHint,
    MotionFeatures,
    MotionSample,
    TerrainObservation,
    TerrainType,
    WeatherConditions,
)
from ruckfusion.motion import MotionPatternAnalyzer
from ruckfusion.power import AdaptiveSamplingController
from ruckfusion.terrain import TerrainClassifier

__version__ = "0.1.0"

__all__ = [
    "AdaptiveSamplingController",
    "AltitudeSample",
    "CalorieEngine",
    "CalorieParameters",
    "CalorieResult",
    "DetectionMethod",
    "ElevationEstimate",
    "ElevationFusionEngine",
    "LocationFix",
    "LocationHint",
    "MotionFeatures",
    "MotionPatternAnalyzer",
    "MotionSample",
    "TerrainClassifier",
    "TerrainObservation",
    "TerrainType",
    "WeatherConditions",
]
