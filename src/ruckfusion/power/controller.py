"""Adaptive GPS sampling driven by movement and battery state.

The movement pattern picks a baseline tier. Battery state and session
length then degrade it component-wise, never upgrade it:

- low-power mode or level below 20%: at least battery-saver settings
- level below 10% while not charging: critical settings
- session longer than two hours: ultra-low-power settings
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from datetime import datetime
from typing import Callable, Optional

import numpy as np
import structlog

from ruckfusion.config import SamplingConfig
from ruckfusion.models import LocationFix
from ruckfusion.power.models import (
    BASELINE_TIERS,
    BATTERY_USAGE_BANDS,
    TIER_CONFIGURATIONS,
    BatteryAlert,
    BatteryStatus,
    BatteryUsageEstimate,
    GPSConfiguration,
    MovementPattern,
    PowerState,
    SamplingTier,
    classify_movement,
)

logger = structlog.get_logger(__name__)

UPDATE_INTERVAL_BUFFER = 10
TARGET_BATTERY_USAGE = 10.0  # percent per hour

LOW_POWER_MESSAGE = "Low Power Mode: GPS accuracy reduced to preserve battery"
LOW_BATTERY_MESSAGE = "Low battery: GPS sampling reduced to extend tracking"
CRITICAL_BATTERY_MESSAGE = "Critical battery: GPS switched to minimal accuracy mode"


def power_state_for(
    status: Optional[BatteryStatus],
    low_level: float = 0.20,
    critical_level: float = 0.10,
) -> PowerState:
    """
    Derive the power state from a battery reading.

    An unknown (negative) level only counts through the low-power flag.
    """
    if status is None:
        return PowerState.NORMAL
    level = status.level
    known = math.isfinite(level) and level >= 0
    if known and level < critical_level and not status.is_charging:
        return PowerState.CRITICAL
    if status.low_power_mode or (known and level < low_level):
        return PowerState.LOW_POWER_MODE
    return PowerState.NORMAL


class AdaptiveSamplingController:
    """
    Recommends GPS sampling settings for the data-acquisition layer.

    Args:
        config: Thresholds and switches
        clock: Monotonic seconds, used for session duration
    """

    def __init__(
        self,
        config: Optional[SamplingConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SamplingConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

        self._speeds: deque[float] = deque(maxlen=self.config.speed_buffer_size)
        self._update_intervals: deque[float] = deque(maxlen=UPDATE_INTERVAL_BUFFER)
        self._last_fix_at: Optional[datetime] = None
        self._battery: Optional[BatteryStatus] = None
        self._session_started: Optional[float] = None
        self._adaptive_enabled = self.config.adaptive_enabled
        self._battery_optimization = self.config.battery_optimization_enabled
        self._last_tier: Optional[SamplingTier] = None

    # Inputs

    async def record_speed(self, speed: float) -> MovementPattern:
        """Add a speed reading (m/s); negative or non-finite values are ignored."""
        async with self._lock:
            if math.isfinite(speed) and speed >= 0:
                self._speeds.append(speed)
            return self._movement()

    async def analyze_location(self, fix: LocationFix) -> GPSConfiguration:
        """Record a location fix and return the configuration to apply next."""
        async with self._lock:
            if math.isfinite(fix.speed) and fix.speed >= 0:
                self._speeds.append(fix.speed)
            if self._last_fix_at is not None:
                interval = (fix.timestamp - self._last_fix_at).total_seconds()
                if interval > 0:
                    self._update_intervals.append(interval)
            self._last_fix_at = fix.timestamp
            return self._recommend()

    async def update_battery(self, status: BatteryStatus) -> GPSConfiguration:
        async with self._lock:
            previous = power_state_for(self._battery, *self._battery_levels())
            self._battery = status
            current = power_state_for(status, *self._battery_levels())
            if current != previous:
                logger.info(
                    "power_state_changed",
                    previous=previous.value,
                    current=current.value,
                    level=status.level,
                )
            return self._recommend()

    async def start_session(self) -> None:
        async with self._lock:
            self._session_started = self._clock()
            self._speeds.clear()
            self._update_intervals.clear()
            self._last_fix_at = None

    async def end_session(self) -> None:
        async with self._lock:
            self._session_started = None

    async def set_adaptive_enabled(self, enabled: bool) -> None:
        """When disabled, the movement pattern no longer changes the baseline (balanced)."""
        async with self._lock:
            self._adaptive_enabled = enabled

    async def set_battery_optimization(self, enabled: bool) -> None:
        """When disabled, long sessions no longer force ultra-low-power."""
        async with self._lock:
            self._battery_optimization = enabled

    # Derived state

    def _battery_levels(self) -> tuple[float, float]:
        return self.config.low_battery_level, self.config.critical_battery_level

    def _movement(self) -> MovementPattern:
        if not self._speeds:
            return MovementPattern.UNKNOWN
        return classify_movement(float(np.mean(self._speeds)))

    def _session_duration(self) -> float:
        if self._session_started is None:
            return 0.0
        return max(0.0, self._clock() - self._session_started)

    def _recommend(self) -> GPSConfiguration:
        pattern = self._movement()
        baseline = BASELINE_TIERS[pattern] if self._adaptive_enabled else SamplingTier.BALANCED
        configuration = TIER_CONFIGURATIONS[baseline]

        state = power_state_for(self._battery, *self._battery_levels())
        if state is PowerState.LOW_POWER_MODE:
            configuration = configuration.degraded_to(TIER_CONFIGURATIONS[SamplingTier.BATTERY_SAVER])
        elif state is PowerState.CRITICAL:
            configuration = configuration.degraded_to(TIER_CONFIGURATIONS[SamplingTier.CRITICAL])

        if self._battery_optimization and self._session_duration() > self.config.long_session_s:
            configuration = configuration.degraded_to(
                TIER_CONFIGURATIONS[SamplingTier.ULTRA_LOW_POWER]
            )

        if configuration.tier != self._last_tier:
            logger.info(
                "sampling_tier_changed",
                tier=configuration.tier.value,
                movement=pattern.value,
                power_state=state.value,
            )
            self._last_tier = configuration.tier
        return configuration

    # Queries

    async def movement_pattern(self) -> MovementPattern:
        async with self._lock:
            return self._movement()

    async def power_state(self) -> PowerState:
        async with self._lock:
            return power_state_for(self._battery, *self._battery_levels())

    async def recommended_configuration(self) -> GPSConfiguration:
        async with self._lock:
            return self._recommend()

    async def session_duration(self) -> float:
        async with self._lock:
            return self._session_duration()

    async def battery_usage_estimate(self) -> BatteryUsageEstimate:
        """Drain estimate (percent/hour) for the tier currently recommended."""
        async with self._lock:
            tier = self._recommend().tier
            low, high = BATTERY_USAGE_BANDS[tier]
            return BatteryUsageEstimate(percent_per_hour=(low + high) / 2, band=(low, high), tier=tier)

    async def battery_alert(self) -> BatteryAlert:
        async with self._lock:
            state = power_state_for(self._battery, *self._battery_levels())
            if state is PowerState.CRITICAL:
                return BatteryAlert(True, CRITICAL_BATTERY_MESSAGE)
            if state is PowerState.LOW_POWER_MODE:
                if self._battery is not None and self._battery.low_power_mode:
                    return BatteryAlert(True, LOW_POWER_MESSAGE)
                return BatteryAlert(True, LOW_BATTERY_MESSAGE)
            return BatteryAlert(False)

    async def average_update_interval(self) -> Optional[float]:
        """Mean seconds between recent location fixes, None before two fixes."""
        async with self._lock:
            if not self._update_intervals:
                return None
            return float(np.mean(self._update_intervals))

    async def recommendations(self) -> list[str]:
        """Suggestions for reducing battery drain."""
        async with self._lock:
            configuration = self._recommend()
            low, high = BATTERY_USAGE_BANDS[configuration.tier]
            usage = (low + high) / 2
            tips: list[str] = []
            if usage <= TARGET_BATTERY_USAGE:
                return tips
            if self._movement() is MovementPattern.STATIONARY:
                tips.append("Enable significant location changes for stationary periods")
            if configuration.tier is SamplingTier.HIGH_PERFORMANCE:
                tips.append("Switch to Balanced mode to reduce battery usage")
            elif configuration.tier is SamplingTier.BALANCED and usage > 12.0:
                tips.append("Switch to Battery Saver mode")
            if self._session_duration() > self.config.long_session_s and not self._battery_optimization:
                tips.append("Enable Ultra Low Power mode for long sessions")
            return tips

    async def describe(self) -> str:
        """Human-readable diagnostic summary."""
        estimate = await self.battery_usage_estimate()
        async with self._lock:
            configuration = self._recommend()
            battery = self._battery
            lines = [
                "Adaptive GPS",
                f"- Movement: {self._movement().value}",
                f"- Tier: {configuration.tier.display_name}",
                f"- Accuracy: {configuration.accuracy.value}",
                f"- Distance filter: {configuration.distance_filter_m:.0f} m",
                f"- Update interval: {configuration.update_interval_s:.1f} s "
                f"({configuration.update_frequency_hz:.1f} Hz)",
                f"- Battery usage: {estimate.percent_per_hour:.1f}%/h "
                f"({estimate.band[0]:.0f}-{estimate.band[1]:.0f})",
                f"- Session: {self._session_duration() / 60:.1f} min",
            ]
            if battery is not None:
                lines.append(
                    f"- Battery: {battery.level * 100:.0f}% {battery.charging_state.value}"
                    f"{' (low power mode)' if battery.low_power_mode else ''}"
                )
            return "\n".join(lines)
