"""Adaptive GPS sampling and battery management."""

from __future__ import annotations

from ruckfusion.power.controller import AdaptiveSamplingController, power_state_for
from ruckfusion.power.models import (
    BATTERY_USAGE_BANDS,
    TIER_CONFIGURATIONS,
    AccuracyLevel,
    BatteryAlert,
    BatteryStatus,
    BatteryUsageEstimate,
    ChargingState,
    GPSConfiguration,
    MovementPattern,
    PowerState,
    SamplingTier,
    classify_movement,
)

__all__ = [
    "BATTERY_USAGE_BANDS",
    "TIER_CONFIGURATIONS",
    "AccuracyLevel",
    "AdaptiveSamplingController",
    "BatteryAlert",
    "BatteryStatus",
    "BatteryUsageEstimate",
    "ChargingState",
    "GPSConfiguration",
    "MovementPattern",
    "PowerState",
    "SamplingTier",
    "classify_movement",
    "power_state_for",
]
