"""Value types shared across the estimation engines."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def is_finite(*values: Optional[float]) -> bool:
    """True when every non-None value is a finite number."""
    return all(v is None or math.isfinite(v) for v in values)


class TerrainType(str, Enum):
    """Surface underfoot."""

    PAVED_ROAD = "paved_road"
    TRAIL = "trail"
    GRAVEL = "gravel"
    SAND = "sand"
    MUD = "mud"
    SNOW = "snow"
    STAIRS = "stairs"
    GRASS = "grass"

    @property
    def factor(self) -> float:
        """Energy cost multiplier relative to paved road."""
        return TERRAIN_FACTORS[self]

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


# Energy cost multipliers relative to a paved surface
TERRAIN_FACTORS: dict[TerrainType, float] = {
    TerrainType.PAVED_ROAD: 1.0,
    TerrainType.TRAIL: 1.2,
    TerrainType.GRASS: 1.2,
    TerrainType.GRAVEL: 1.3,
    TerrainType.MUD: 1.8,
    TerrainType.STAIRS: 2.0,
    TerrainType.SAND: 2.1,
    TerrainType.SNOW: 2.5,
}


class DetectionMethod(str, Enum):
    """How a terrain observation was produced."""

    MOTION = "motion"
    LOCATION = "location"
    MAPKIT = "mapkit"
    FUSION = "fusion"
    MANUAL = "manual"


@dataclass(frozen=True)
class TerrainObservation:
    """A single terrain classification."""

    terrain_type: TerrainType
    confidence: float
    method: DetectionMethod
    timestamp: datetime

    @property
    def factor(self) -> float:
        return self.terrain_type.factor


@dataclass(frozen=True)
class TerrainFactorUpdate:
    """Live terrain feed payload."""

    factor: float
    confidence: float
    terrain_type: TerrainType


@dataclass(frozen=True)
class AltitudeSample:
    """One altitude sensor callback.

    Attributes:
        timestamp: Sample time
        barometric_altitude: Altimeter altitude relative to session start (m)
        gps_altitude: GPS altitude above sea level (m)
        gps_vertical_accuracy: Reported GPS vertical accuracy (m), <= 0 means invalid
        pressure_kpa: Raw barometric pressure, when the altimeter reports it
    """

    timestamp: datetime
    barometric_altitude: Optional[float] = None
    gps_altitude: Optional[float] = None
    gps_vertical_accuracy: float = -1.0
    pressure_kpa: Optional[float] = None


@dataclass(frozen=True)
class ElevationEstimate:
    """Immutable snapshot of the fused elevation state."""

    altitude: float
    vertical_velocity: float
    uncertainty: float  # 1-sigma altitude error (m)
    confidence: float
    grade: float
    timestamp: datetime
    gps_altitude: Optional[float] = None
    barometric_altitude: Optional[float] = None
    degraded: bool = False

    def meets_accuracy_target(self, threshold_m: float = 1.0) -> bool:
        """Uncertainty within ``threshold_m`` metres and confidence above 0.7."""
        return self.uncertainty <= threshold_m and self.confidence > 0.7


@dataclass(frozen=True)
class MotionSample:
    """Accelerometer (g) and gyroscope (rad/s) reading."""

    timestamp: datetime
    acceleration: tuple[float, float, float]
    rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)

    @property
    def is_finite(self) -> bool:
        return is_finite(*self.acceleration, *self.rotation)


@dataclass(frozen=True)
class MotionFeatures:
    """Features extracted from the motion window."""

    step_frequency: float  # Hz
    acceleration_variance: float
    dominant_axis: str  # "x", "y" or "z"
    vertical_component: float
    step_regularity: float  # 0-1, higher is more regular
    gyroscope_variance: float
    impact_intensity: float
    frequency_profile: tuple[float, float, float, float]  # 0.5-2, 2-4, 4-8, 8-15 Hz
    sample_count: int
    timestamp: datetime


@dataclass(frozen=True)
class LocationFix:
    """A raw location fix."""

    latitude: float
    longitude: float
    altitude: float = 0.0
    speed: float = -1.0  # m/s, negative when unknown
    course: float = -1.0
    horizontal_accuracy: float = 5.0
    vertical_accuracy: float = 5.0
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class LocationHint:
    """Reverse-geocode or road-surface text describing the current location."""

    keywords: tuple[str, ...]
    horizontal_accuracy: float = 10.0
    source: str = "geocode"  # "geocode" or "map"


@dataclass(frozen=True)
class WeatherConditions:
    """Ambient weather."""

    temperature_c: float = 20.0
    humidity: float = 50.0  # percent
    wind_speed_mps: float = 0.0
    wind_direction_deg: float = 0.0
    precipitation_mm_per_hr: float = 0.0
    pressure_hpa: float = 1013.25

    @property
    def apparent_temperature_c(self) -> float:
        """Wind chill below 10 °C with wind, heat index above 27 °C, else air temperature."""
        t = self.temperature_c
        wind_kmh = self.wind_speed_mps * 3.6
        if t <= 10.0 and wind_kmh > 4.8:
            v = wind_kmh**0.16
            return 13.12 + 0.6215 * t - 11.37 * v + 0.3965 * t * v
        if t >= 27.0 and self.humidity >= 40.0:
            rh = self.humidity
            return (
                -8.784695
                + 1.61139411 * t
                + 2.338549 * rh
                - 0.14611605 * t * rh
                - 0.012308094 * t * t
                - 0.016424828 * rh * rh
                + 0.002211732 * t * t * rh
                + 0.00072546 * t * rh * rh
                - 0.000003582 * t * t * rh * rh
            )
        return t

    @property
    def is_harsh(self) -> bool:
        return (
            self.temperature_c < -10.0
            or self.temperature_c > 35.0
            or self.wind_speed_mps > 15.0
            or self.precipitation_mm_per_hr > 10.0
        )
