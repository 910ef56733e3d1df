"""Barometer + GPS elevation fusion.

The engine owns an AltitudeKalmanFilter and feeds it two kinds of
measurement:

- Barometric relative altitude, converted to absolute altitude through a
  one-time calibration baseline anchored to a GPS fix (or an explicit
  known elevation). Its variance is the configured measurement noise,
  inflated during fast pressure swings and relaxed while output is stable.
- GPS altitude, with variance equal to the reported vertical accuracy².

Without a usable altimeter the engine keeps running on GPS alone and
reports every estimate as degraded, at reduced confidence.
"""

from __future__ import annotations

import asyncio
import math
from collections import deque
from datetime import datetime
from typing import Optional

import numpy as np
import structlog

from ruckfusion.config import ElevationConfig
from ruckfusion.elevation.grade import GradeTracker, calculate_grade, clamp_grade
from ruckfusion.elevation.kalman import AltitudeKalmanFilter
from ruckfusion.errors import (
    AltimeterNotAvailableError,
    AuthorizationDeniedError,
    ElevationError,
)
from ruckfusion.feeds import Broadcaster, Subscription
from ruckfusion.models import AltitudeSample, ElevationEstimate, is_finite

logger = structlog.get_logger(__name__)

# (process_noise, measurement_noise)
ELEVATION_PRESETS: dict[str, tuple[float, float]] = {
    "precise": (0.01, 0.1),
    "balanced": (0.05, 0.2),
    "battery_saver": (0.1, 0.5),
}

DEGRADED_CONFIDENCE_SCALE = 0.6
GPS_DISAGREEMENT_SCALE = 20.0  # metres of baro/GPS disagreement that zeroes agreement
STABILITY_WINDOW = 5
STABILITY_SCALE = 5.0  # metres of std that zeroes stability
MIN_BAROMETRIC_VARIANCE = 0.01
CALIBRATED_VARIANCE = 1.0


def elevation_preset(name: str) -> ElevationConfig:
    """
    Build an ElevationConfig from a named noise preset.

    Args:
        name: "precise", "balanced" or "battery_saver"

    Raises:
        ValueError: If the preset name is unknown
    """
    if name not in ELEVATION_PRESETS:
        raise ValueError(
            f"Unknown elevation preset '{name}'. Choose from {sorted(ELEVATION_PRESETS)}"
        )
    process_noise, measurement_noise = ELEVATION_PRESETS[name]
    return ElevationConfig(process_noise=process_noise, measurement_noise=measurement_noise)


class ElevationFusionEngine:
    """
    Fuses barometric and GPS altitude into a single elevation estimate.

    All public operations are coroutines serialized through one lock.

    Args:
        config: Noise and calibration parameters
        altimeter_available: Whether the device has a barometric altimeter
        authorization_granted: Whether motion/fitness access was granted
    """

    def __init__(
        self,
        config: Optional[ElevationConfig] = None,
        altimeter_available: bool = True,
        authorization_granted: bool = True,
    ) -> None:
        self.config = config or ElevationConfig()
        self.altimeter_available = altimeter_available
        self.authorization_granted = authorization_granted

        self._lock = asyncio.Lock()
        self._filter = AltitudeKalmanFilter(process_noise=self.config.process_noise)
        self._grade_tracker = GradeTracker()
        self._feed: Broadcaster[ElevationEstimate] = Broadcaster("elevation")
        self._calibrated = asyncio.Event()

        self._barometer_active = False
        self._baseline: Optional[float] = None
        self._last_barometric: Optional[float] = None
        self._last_pressure: Optional[float] = None
        self._last_timestamp: Optional[datetime] = None
        self._last_gps_at: Optional[datetime] = None
        self._previous_altitude: Optional[float] = None
        self._grade = 0.0
        self._gps_agreement = 1.0
        self._recent_altitudes: deque = deque(maxlen=10)
        self._latest: Optional[ElevationEstimate] = None
        self._samples_processed = 0

        self.last_error: Optional[ElevationError] = None

    # Lifecycle

    def _capability_error(self) -> Optional[ElevationError]:
        if not self.altimeter_available:
            return AltimeterNotAvailableError()
        if not self.authorization_granted:
            return AuthorizationDeniedError()
        return None

    async def start(self) -> bool:
        """
        Begin barometric updates.

        Returns:
            True if the barometer is active, False if the engine fell back to
            GPS-only degraded mode (the cause is stored in ``last_error``).
        """
        async with self._lock:
            error = self._capability_error()
            if error is not None:
                self.last_error = error
                self._barometer_active = False
                logger.warning("barometer_unavailable", error=str(error), mode="gps_only")
                return False
            self._barometer_active = True
            logger.info("barometer_started")
            return True

    def require_barometer(self) -> None:
        """
        Raise the typed capability error if barometric updates cannot run.

        Raises:
            AltimeterNotAvailableError: No altimeter on this device
            AuthorizationDeniedError: Motion access was denied
        """
        error = self._capability_error()
        if error is not None:
            raise error

    async def stop(self) -> None:
        """Stop updates and close every elevation subscription."""
        async with self._lock:
            self._barometer_active = False
            self._feed.close()

    async def reset(self) -> None:
        """Forget all fused state, including calibration."""
        async with self._lock:
            self._filter.reset()
            self._grade_tracker.reset()
            self._calibrated.clear()
            self._baseline = None
            self._last_barometric = None
            self._last_pressure = None
            self._last_timestamp = None
            self._last_gps_at = None
            self._previous_altitude = None
            self._grade = 0.0
            self._gps_agreement = 1.0
            self._recent_altitudes.clear()
            self._latest = None
            self._samples_processed = 0
            self.last_error = None

    # Calibration

    async def calibrate(
        self, known_elevation: float, barometric_altitude: Optional[float] = None
    ) -> None:
        """
        Anchor barometric readings to a known absolute elevation.

        Args:
            known_elevation: Absolute elevation at the current position (m)
            barometric_altitude: Altimeter reading at this position; defaults
                to the latest reading, or 0 before any reading arrived
        """
        if not math.isfinite(known_elevation):
            raise ValueError(f"known_elevation must be finite, got {known_elevation}")
        async with self._lock:
            relative = barometric_altitude
            if relative is None or not math.isfinite(relative):
                relative = self._last_barometric if self._last_barometric is not None else 0.0
            self._baseline = known_elevation - relative
            self._filter.seed(known_elevation, CALIBRATED_VARIANCE)
            self._previous_altitude = known_elevation
            self._calibrated.set()
            logger.info("elevation_calibrated", elevation=known_elevation, baseline=self._baseline)

    async def wait_for_calibration(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the barometer baseline to be anchored.

        Args:
            timeout: Seconds to wait; defaults to ``config.calibration_timeout_s``

        Returns:
            True once calibrated. False on timeout, in which case the engine
            keeps fusing GPS alone until a qualifying fix arrives.
        """
        if timeout is None:
            timeout = self.config.calibration_timeout_s
        try:
            await asyncio.wait_for(self._calibrated.wait(), timeout)
        except asyncio.TimeoutError:
            logger.info("calibration_timeout", timeout=timeout, fallback="gps_only")
            return False
        return True

    @property
    def is_calibrated(self) -> bool:
        return self._baseline is not None

    @property
    def degraded(self) -> bool:
        return not self._barometer_active

    # Sample processing

    async def process_sample(
        self, sample: AltitudeSample, distance: Optional[float] = None
    ) -> Optional[ElevationEstimate]:
        """
        Fuse one altitude sensor callback.

        Args:
            sample: Barometric and/or GPS altitude reading
            distance: Horizontal metres covered since the previous sample;
                when given, the grade over that segment is recomputed

        Returns:
            The new estimate, or None if the sample had nothing usable.
        """
        async with self._lock:
            estimate = self._process(sample, distance)
        if estimate is not None:
            self._feed.publish(estimate)
        return estimate

    def _process(
        self, sample: AltitudeSample, distance: Optional[float]
    ) -> Optional[ElevationEstimate]:
        barometric = None
        if self._barometer_active and sample.barometric_altitude is not None:
            if is_finite(sample.barometric_altitude):
                barometric = sample.barometric_altitude

        gps = None
        accuracy = sample.gps_vertical_accuracy
        if sample.gps_altitude is not None and is_finite(sample.gps_altitude, accuracy):
            if accuracy > 0:
                gps = sample.gps_altitude

        if barometric is None and gps is None:
            return None

        dt = 0.0
        if self._last_timestamp is not None:
            dt = (sample.timestamp - self._last_timestamp).total_seconds()
        if self._last_timestamp is None or dt > 0:
            self._last_timestamp = sample.timestamp
        self._filter.predict(dt)

        if barometric is not None and self._baseline is None and gps is not None:
            if accuracy <= self.config.calibration_accuracy_m:
                self._baseline = gps - barometric
                self._calibrated.set()
                logger.info("elevation_auto_calibrated", gps_altitude=gps, accuracy=accuracy)

        was_initialized = self._filter.initialized
        barometric_absolute = None
        if barometric is not None:
            variance = self._barometric_variance(sample.pressure_kpa)
            self._last_barometric = barometric
            if self._baseline is not None:
                barometric_absolute = self._baseline + barometric
                self._filter.update(barometric_absolute, variance)

        if gps is not None:
            gps_variance = max(accuracy * accuracy, self.config.min_gps_variance)
            self._filter.update(gps, gps_variance)
            self._last_gps_at = sample.timestamp
            if barometric_absolute is not None:
                diff = abs(barometric_absolute - gps)
                self._gps_agreement = max(0.0, 1.0 - diff / GPS_DISAGREEMENT_SCALE)

        if not self._filter.initialized:
            # Relative barometer reading with no anchor yet
            logger.debug("elevation_awaiting_anchor", barometric_altitude=barometric)
            return None
        if not was_initialized:
            self._previous_altitude = None

        altitude = self._filter.altitude
        self._recent_altitudes.append(altitude)
        self._samples_processed += 1

        if distance is not None and self._previous_altitude is not None:
            self._grade = calculate_grade(self._previous_altitude, altitude, distance)
            self._grade_tracker.add_segment(altitude, distance, self._grade)
        self._previous_altitude = altitude

        self._latest = ElevationEstimate(
            altitude=altitude,
            vertical_velocity=self._filter.vertical_velocity,
            uncertainty=self._filter.uncertainty,
            confidence=self._confidence(),
            grade=clamp_grade(self._grade),
            timestamp=sample.timestamp,
            gps_altitude=gps,
            barometric_altitude=barometric,
            degraded=self.degraded,
        )
        return self._latest

    def _barometric_variance(self, pressure_kpa: Optional[float]) -> float:
        variance = self.config.measurement_noise

        if pressure_kpa is not None and is_finite(pressure_kpa):
            if self._last_pressure is not None:
                change = abs(pressure_kpa - self._last_pressure)
                if change > self.config.pressure_stability_threshold_kpa:
                    variance *= 1.0 + change
                    logger.debug("pressure_unstable", change_kpa=change)
            self._last_pressure = pressure_kpa

        stability = self._stability()
        if stability > 0.8:
            variance *= 2.0 - stability

        return max(variance, MIN_BAROMETRIC_VARIANCE)

    def _stability(self) -> float:
        if len(self._recent_altitudes) < STABILITY_WINDOW:
            return 0.5
        recent = np.array(list(self._recent_altitudes)[-STABILITY_WINDOW:])
        return float(np.clip(1.0 - recent.std() / STABILITY_SCALE, 0.0, 1.0))

    def _confidence(self) -> float:
        trace = self._filter.trace
        if not math.isfinite(trace):
            return 0.0
        confidence = (1.0 / (1.0 + trace)) * (0.7 + 0.3 * self._gps_agreement)
        if self.degraded:
            confidence *= DEGRADED_CONFIDENCE_SCALE
        return float(np.clip(confidence, 0.0, 1.0))

    # Queries

    async def latest_estimate(self) -> Optional[ElevationEstimate]:
        async with self._lock:
            return self._latest

    async def current_grade(self) -> float:
        async with self._lock:
            return clamp_grade(self._grade)

    async def smoothed_grade(self) -> float:
        async with self._lock:
            return self._grade_tracker.smoothed_grade

    async def meets_accuracy_target(self) -> bool:
        """True when uncertainty is within the accuracy threshold and confidence > 0.7."""
        async with self._lock:
            if self._latest is None:
                return False
            return self._latest.meets_accuracy_target(self.config.accuracy_threshold_m)

    async def elevation_summary(self) -> dict:
        """Return accumulated gain/loss as a dictionary."""
        async with self._lock:
            return {
                "elevation_gain": self._grade_tracker.elevation_gain,
                "elevation_loss": self._grade_tracker.elevation_loss,
                "net_change": self._grade_tracker.net_change,
            }

    def _quality(self, now: Optional[datetime]) -> float:
        stability = self._stability()
        uncertainty_factor = max(0.0, 1.0 - self._filter.uncertainty / 10.0)
        recency = 0.0
        if now is not None and self._last_gps_at is not None:
            age = (now - self._last_gps_at).total_seconds()
            recency = max(0.0, 1.0 - age / 30.0)
        return (
            (0.5 + 0.5 * stability)
            * (0.7 + 0.3 * self._gps_agreement)
            * (0.6 + 0.4 * uncertainty_factor)
            * (0.8 + 0.2 * recency)
        )

    async def fusion_quality(self) -> float:
        """Overall fusion quality in [0, 1] from stability, agreement, uncertainty, GPS recency."""
        async with self._lock:
            now = self._latest.timestamp if self._latest else None
            return float(np.clip(self._quality(now), 0.0, 1.0))

    def subscribe(self) -> Subscription[ElevationEstimate]:
        """Subscribe to every new fused estimate."""
        return self._feed.subscribe()

    async def describe(self) -> str:
        """Human-readable diagnostic summary."""
        async with self._lock:
            latest = self._latest
            now = latest.timestamp if latest else None
            lines = [
                "Elevation Fusion",
                f"- Mode: {'GPS only (degraded)' if self.degraded else 'barometer + GPS'}",
                f"- Calibrated: {'yes' if self.is_calibrated else 'no'}",
                f"- Samples: {self._samples_processed}",
            ]
            if latest is not None:
                lines += [
                    f"- Altitude: {latest.altitude:.2f} m ± {latest.uncertainty:.2f} m",
                    f"- Vertical velocity: {latest.vertical_velocity:.2f} m/s",
                    f"- Grade: {latest.grade:.1f}%",
                    f"- Confidence: {latest.confidence * 100:.1f}%",
                ]
            lines += [
                f"- Stability: {self._stability() * 100:.1f}%",
                f"- GPS agreement: {self._gps_agreement * 100:.1f}%",
                f"- Fusion quality: {self._quality(now) * 100:.1f}%",
                f"- Gain/loss: +{self._grade_tracker.elevation_gain:.1f} m "
                f"/ -{self._grade_tracker.elevation_loss:.1f} m",
            ]
            if self.last_error is not None:
                lines.append(f"- Last error: {self.last_error}")
            return "\n".join(lines)
