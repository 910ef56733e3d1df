"""GPS sampling tiers, movement patterns and battery state."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class SamplingTier(str, Enum):
    """GPS sampling tiers, ordered from most to least power hungry."""

    HIGH_PERFORMANCE = "high_performance"
    BALANCED = "balanced"
    BATTERY_SAVER = "battery_saver"
    CRITICAL = "critical"
    ULTRA_LOW_POWER = "ultra_low_power"

    @property
    def rank(self) -> int:
        return list(SamplingTier).index(self)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class AccuracyLevel(str, Enum):
    """Requested location accuracy, ordered from finest to coarsest."""

    BEST_FOR_NAVIGATION = "best_for_navigation"
    BEST = "best"
    TEN_METERS = "ten_meters"
    HUNDRED_METERS = "hundred_meters"
    KILOMETER = "kilometer"

    @property
    def rank(self) -> int:
        return list(AccuracyLevel).index(self)


class MovementPattern(str, Enum):
    UNKNOWN = "unknown"
    STATIONARY = "stationary"  # < 0.5 m/s
    WALKING = "walking"  # 0.5-2.0 m/s
    JOGGING = "jogging"  # 2.0-3.0 m/s
    RUNNING = "running"  # > 3.0 m/s


class ChargingState(str, Enum):
    UNKNOWN = "unknown"
    UNPLUGGED = "unplugged"
    CHARGING = "charging"
    FULL = "full"


class PowerState(str, Enum):
    NORMAL = "normal"
    LOW_POWER_MODE = "low_power_mode"
    CRITICAL = "critical"


@dataclass(frozen=True)
class GPSConfiguration:
    """Recommended location sampling settings."""

    tier: SamplingTier
    accuracy: AccuracyLevel
    distance_filter_m: float
    update_interval_s: float

    @property
    def update_frequency_hz(self) -> float:
        return 1.0 / self.update_interval_s if self.update_interval_s > 0 else 0.0

    def degraded_to(self, floor: "GPSConfiguration") -> "GPSConfiguration":
        """Component-wise worst of this configuration and ``floor``; never an upgrade."""
        return replace(
            self,
            tier=max(self.tier, floor.tier, key=lambda t: t.rank),
            accuracy=max(self.accuracy, floor.accuracy, key=lambda a: a.rank),
            distance_filter_m=max(self.distance_filter_m, floor.distance_filter_m),
            update_interval_s=max(self.update_interval_s, floor.update_interval_s),
        )


TIER_CONFIGURATIONS: dict[SamplingTier, GPSConfiguration] = {
    SamplingTier.HIGH_PERFORMANCE: GPSConfiguration(
        SamplingTier.HIGH_PERFORMANCE, AccuracyLevel.BEST_FOR_NAVIGATION, 5.0, 0.1
    ),
    SamplingTier.BALANCED: GPSConfiguration(SamplingTier.BALANCED, AccuracyLevel.BEST, 7.0, 0.5),
    SamplingTier.BATTERY_SAVER: GPSConfiguration(
        SamplingTier.BATTERY_SAVER, AccuracyLevel.TEN_METERS, 10.0, 1.0
    ),
    SamplingTier.CRITICAL: GPSConfiguration(
        SamplingTier.CRITICAL, AccuracyLevel.HUNDRED_METERS, 15.0, 2.0
    ),
    SamplingTier.ULTRA_LOW_POWER: GPSConfiguration(
        SamplingTier.ULTRA_LOW_POWER, AccuracyLevel.HUNDRED_METERS, 50.0, 10.0
    ),
}

BASELINE_TIERS: dict[MovementPattern, SamplingTier] = {
    MovementPattern.UNKNOWN: SamplingTier.BALANCED,
    MovementPattern.STATIONARY: SamplingTier.BATTERY_SAVER,
    MovementPattern.WALKING: SamplingTier.BALANCED,
    MovementPattern.JOGGING: SamplingTier.HIGH_PERFORMANCE,
    MovementPattern.RUNNING: SamplingTier.HIGH_PERFORMANCE,
}

# Battery drain, percent per hour
BATTERY_USAGE_BANDS: dict[SamplingTier, tuple[float, float]] = {
    SamplingTier.HIGH_PERFORMANCE: (15.0, 18.0),
    SamplingTier.BALANCED: (8.0, 12.0),
    SamplingTier.BATTERY_SAVER: (4.0, 7.0),
    SamplingTier.CRITICAL: (2.0, 4.0),
    SamplingTier.ULTRA_LOW_POWER: (1.0, 3.0),
}

STATIONARY_MAX_SPEED = 0.5
WALKING_MAX_SPEED = 2.0
JOGGING_MAX_SPEED = 3.0


def classify_movement(speed: Optional[float]) -> MovementPattern:
    """Movement pattern for a (smoothed) speed in m/s."""
    if speed is None or not math.isfinite(speed) or speed < 0:
        return MovementPattern.UNKNOWN
    if speed < STATIONARY_MAX_SPEED:
        return MovementPattern.STATIONARY
    if speed < WALKING_MAX_SPEED:
        return MovementPattern.WALKING
    if speed <= JOGGING_MAX_SPEED:
        return MovementPattern.JOGGING
    return MovementPattern.RUNNING


@dataclass(frozen=True)
class BatteryStatus:
    """Battery level in [0, 1] (negative when unknown), charging state and OS low-power flag."""

    level: float
    charging_state: ChargingState = ChargingState.UNPLUGGED
    low_power_mode: bool = False

    @property
    def is_charging(self) -> bool:
        return self.charging_state in (ChargingState.CHARGING, ChargingState.FULL)


@dataclass(frozen=True)
class BatteryUsageEstimate:
    """Estimated drain for the active tier."""

    percent_per_hour: float
    band: tuple[float, float]
    tier: SamplingTier


@dataclass(frozen=True)
class BatteryAlert:
    should_alert: bool
    message: Optional[str] = None
