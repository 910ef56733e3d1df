"""Typed error families raised or recorded by the estimation engines."""

from __future__ import annotations


class RuckFusionError(Exception):
    """Base class for all ruckfusion errors."""


# Elevation


class ElevationError(RuckFusionError):
    """Barometric altitude capability failure."""


class AltimeterNotAvailableError(ElevationError):
    def __init__(self) -> None:
        super().__init__("Barometric altimeter is not available on this device")


class AuthorizationDeniedError(ElevationError):
    def __init__(self) -> None:
        super().__init__("Motion and fitness authorization was denied")


# Terrain


class TerrainDetectionError(RuckFusionError):
    """Terrain detection failure; recorded, never raised to callers."""


class LowConfidenceError(TerrainDetectionError):
    def __init__(self, score: float) -> None:
        self.score = score
        super().__init__(f"Terrain detection confidence too low: {score * 100:.1f}%")


class SensorFailureError(TerrainDetectionError):
    def __init__(self, sensor: str) -> None:
        self.sensor = sensor
        super().__init__(f"Sensor failure: {sensor}")


class LocationUnavailableError(TerrainDetectionError):
    def __init__(self) -> None:
        super().__init__("Location data unavailable for terrain detection")


class MotionDataInsufficientError(TerrainDetectionError):
    def __init__(self) -> None:
        super().__init__("Insufficient motion data for terrain analysis")


class AnalysisTimeoutError(TerrainDetectionError):
    def __init__(self) -> None:
        super().__init__("Terrain analysis timed out")


# Calories


class CalorieCalculationError(RuckFusionError, ValueError):
    """Invalid calorie calculation input. Fatal to the single call only."""

    field_name = "value"
    unit = ""
    valid_range: tuple[float, float] = (0.0, 0.0)

    def __init__(self, value: float) -> None:
        self.value = value
        low, high = self.valid_range
        super().__init__(
            f"Invalid {self.field_name}: {value}{self.unit} "
            f"(must be between {low:g} and {high:g}{self.unit})"
        )


class InvalidBodyWeightError(CalorieCalculationError):
    field_name = "body weight"
    unit = "kg"
    valid_range = (30.0, 200.0)


class InvalidLoadWeightError(CalorieCalculationError):
    field_name = "load weight"
    unit = "kg"
    valid_range = (0.0, 100.0)


class InvalidSpeedError(CalorieCalculationError):
    field_name = "speed"
    unit = "m/s"
    valid_range = (0.0, 3.0)
