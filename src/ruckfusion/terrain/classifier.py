"""Terrain classification from motion, location and manual input.

Precedence, highest first:

1. Manual override (confidence 1.0, applied immediately)
2. Motion and location together: the more confident one wins, motion on ties
3. Motion only
4. Location / map hint only
5. Fallback: keep the last accepted terrain, else trail at confidence 0

A detection below ``min_confidence`` is a failure. Failures never raise:
the cause is stored in ``last_error`` and the fallback is applied.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime
from typing import Awaitable, Callable, Mapping, Optional

import structlog

from ruckfusion.config import TerrainConfig
from ruckfusion.errors import (
    AnalysisTimeoutError,
    LocationUnavailableError,
    LowConfidenceError,
    MotionDataInsufficientError,
    SensorFailureError,
    TerrainDetectionError,
)
from ruckfusion.feeds import Broadcaster, Subscription
from ruckfusion.models import (
    DetectionMethod,
    LocationHint,
    MotionFeatures,
    TerrainFactorUpdate,
    TerrainObservation,
    TerrainType,
    utcnow,
)
from ruckfusion.motion import MotionPatternAnalyzer
from ruckfusion.terrain.location import classify_location
from ruckfusion.terrain.signatures import DEFAULT_SIGNATURES, TerrainSignature, best_match

logger = structlog.get_logger(__name__)

HintProvider = Callable[[], Awaitable[Optional[LocationHint]]]

FALLBACK_TERRAIN = TerrainType.TRAIL
BATTERY_INTERVAL_MULTIPLIER = 2.0  # battery mode halves the detection rate
MAX_GRADE_BONUS = 0.02  # enhanced factor never exceeds base by more than 2%


def enhanced_terrain_factor(base_factor: float, grade: float) -> float:
    """
    Terrain factor with a small uphill compensation.

    Adds 0.1% of the base factor per percent of positive grade, up to the
    20% grade clamp. Level and downhill grades return the base factor.
    """
    if not grade > 0:
        return base_factor
    bonus = min(grade / 100.0 * 0.1, MAX_GRADE_BONUS)
    return base_factor * (1.0 + bonus)


class TerrainClassifier:
    """
    Owns the current terrain, its history and the live factor feed.

    Args:
        config: Thresholds, timeout and history size
        motion_analyzer: Source of motion features when ``detect`` is not
            given any
        signatures: Motion signature table; defaults to DEFAULT_SIGNATURES
        motion_available: Whether motion sensors can be used at all
        clock: Timestamp source for observations
    """

    def __init__(
        self,
        config: Optional[TerrainConfig] = None,
        motion_analyzer: Optional[MotionPatternAnalyzer] = None,
        signatures: Optional[Mapping[TerrainType, TerrainSignature]] = None,
        motion_available: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or TerrainConfig()
        self.motion_analyzer = motion_analyzer
        self.signatures = dict(signatures) if signatures is not None else dict(DEFAULT_SIGNATURES)
        self.motion_available = motion_available
        self._clock = clock

        self._lock = asyncio.Lock()
        self._history: deque[TerrainObservation] = deque(maxlen=self.config.history_size)
        self._feed: Broadcaster[TerrainFactorUpdate] = Broadcaster("terrain")
        self._current: Optional[TerrainObservation] = None
        self._manual: Optional[TerrainObservation] = None
        self._motion_confidence = 0.0
        self._battery_optimized = False
        self._task: Optional[asyncio.Task] = None

        self.last_error: Optional[TerrainDetectionError] = None

    # Manual override

    async def set_manual_terrain(self, terrain_type: TerrainType) -> TerrainObservation:
        """Force a terrain type until cleared."""
        async with self._lock:
            observation = TerrainObservation(
                terrain_type=terrain_type,
                confidence=1.0,
                method=DetectionMethod.MANUAL,
                timestamp=self._clock(),
            )
            self._manual = observation
            self._accept(observation)
            logger.info("terrain_manual_override", terrain=terrain_type.value)
            return observation

    async def clear_manual_override(self) -> None:
        """Return to automatic detection, keeping the manual terrain until the next detection."""
        async with self._lock:
            if self._manual is None:
                return
            self._manual = None
            if self._current is not None:
                self._current = TerrainObservation(
                    terrain_type=self._current.terrain_type,
                    confidence=self.config.min_confidence,
                    method=DetectionMethod.FUSION,
                    timestamp=self._clock(),
                )
                self._publish(self._current)

    @property
    def is_manual_override_active(self) -> bool:
        return self._manual is not None

    # Detection

    def _classify_motion(self, features: MotionFeatures) -> tuple[TerrainType, float]:
        return best_match(features, self.signatures)

    async def classify_motion(self, features: MotionFeatures) -> tuple[TerrainType, float]:
        """Match motion features against the signature table without changing state."""
        return self._classify_motion(features)

    async def detect(
        self,
        features: Optional[MotionFeatures] = None,
        location_hint: Optional[LocationHint] = None,
        timeout: Optional[float] = None,
    ) -> TerrainObservation:
        """
        Run one detection cycle.

        Args:
            features: Motion features; pulled from the motion analyzer when omitted
            location_hint: Geocode / road-surface hint, if any
            timeout: Bound on motion analysis; defaults to ``detection_timeout_s``

        Returns:
            The terrain now in effect. This is the fallback observation when
            detection failed.
        """
        if timeout is None:
            timeout = self.config.detection_timeout_s

        async with self._lock:
            if self._manual is not None:
                return self._manual

            error: Optional[TerrainDetectionError] = None

            if not self.motion_available:
                features = None
                error = SensorFailureError("motion")
            elif features is None and self.motion_analyzer is not None:
                try:
                    features = await asyncio.wait_for(self.motion_analyzer.analyze(), timeout)
                except asyncio.TimeoutError:
                    error = AnalysisTimeoutError()
                if features is None and error is None:
                    error = MotionDataInsufficientError()

            motion = None
            if features is not None:
                motion = self._classify_motion(features)
                self._motion_confidence = motion[1]

            location = None
            if location_hint is not None:
                location = classify_location(location_hint, self.config.poor_accuracy_m)

            if motion is not None and location is not None:
                if location[1] > motion[1]:
                    candidate = (location[0], location[1], DetectionMethod.FUSION)
                else:
                    candidate = (motion[0], motion[1], DetectionMethod.FUSION)
            elif motion is not None:
                candidate = (motion[0], motion[1], DetectionMethod.MOTION)
            elif location is not None:
                candidate = location
            else:
                return self._fallback(error or LocationUnavailableError())

            terrain_type, confidence, method = candidate
            confidence = min(1.0, max(0.0, confidence))
            if confidence < self.config.min_confidence:
                return self._fallback(LowConfidenceError(confidence))

            observation = TerrainObservation(
                terrain_type=terrain_type,
                confidence=confidence,
                method=method,
                timestamp=self._clock(),
            )
            self._accept(observation)
            self.last_error = None
            logger.debug(
                "terrain_detected",
                terrain=terrain_type.value,
                confidence=round(confidence, 3),
                method=method.value,
            )
            return observation

    def _accept(self, observation: TerrainObservation) -> None:
        self._current = observation
        self._history.append(observation)
        self._publish(observation)

    def _fallback(self, error: TerrainDetectionError) -> TerrainObservation:
        self.last_error = error
        if self._current is not None:
            logger.warning("terrain_detection_failed", error=str(error), kept=self._current.terrain_type.value)
            return self._current
        logger.warning("terrain_detection_failed", error=str(error), fallback=FALLBACK_TERRAIN.value)
        fallback = TerrainObservation(
            terrain_type=FALLBACK_TERRAIN,
            confidence=0.0,
            method=DetectionMethod.FUSION,
            timestamp=self._clock(),
        )
        self._accept(fallback)
        return fallback

    def _publish(self, observation: TerrainObservation) -> None:
        self._feed.publish(
            TerrainFactorUpdate(
                factor=observation.factor,
                confidence=observation.confidence,
                terrain_type=observation.terrain_type,
            )
        )

    # Periodic detection

    def set_battery_optimized_mode(self, enabled: bool) -> None:
        """Lengthen the periodic detection interval while enabled."""
        self._battery_optimized = enabled
        logger.info("terrain_battery_mode", enabled=enabled, interval=self.detection_interval)

    @property
    def is_battery_optimized(self) -> bool:
        return self._battery_optimized

    @property
    def detection_interval(self) -> float:
        """Seconds between periodic detections for the current power mode."""
        interval = self.config.detection_interval_s
        if self._battery_optimized:
            interval *= BATTERY_INTERVAL_MULTIPLIER
        return interval

    @property
    def is_detecting(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_detection(
        self,
        interval: Optional[float] = None,
        hint_provider: Optional[HintProvider] = None,
    ) -> None:
        """
        Run ``detect`` in the background until stopped.

        Restarts the loop if one is already running.

        Args:
            interval: Fixed seconds between detections. When omitted the
                interval follows ``detection_interval``, so toggling battery
                mode takes effect on the next cycle.
            hint_provider: Async source of location hints, polled each cycle
        """
        await self.stop_detection()
        self._task = asyncio.create_task(self._run_detection(interval, hint_provider))
        logger.info("terrain_detection_started", interval=interval or self.detection_interval)

    async def stop_detection(self) -> None:
        """Cancel the detection loop. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("terrain_detection_stopped")

    async def _run_detection(
        self, interval: Optional[float], hint_provider: Optional[HintProvider]
    ) -> None:
        while True:
            hint = None
            if hint_provider is not None:
                try:
                    hint = await hint_provider()
                except Exception as e:
                    logger.warning("terrain_hint_failed", error=str(e))
                    self.last_error = SensorFailureError("location")
            try:
                await self.detect(location_hint=hint)
            except Exception as e:
                logger.exception("terrain_detection_cycle_failed", error=str(e))
                self.last_error = TerrainDetectionError(str(e))
            await asyncio.sleep(interval if interval is not None else self.detection_interval)

    # Queries

    async def motion_confidence(self) -> float:
        """
        Confidence of motion-based terrain matching.

        The signature match score of the last detection that had motion
        features, scaled by how fresh the analyzer's window is. Without an
        analyzer the last match score is returned as is.
        """
        async with self._lock:
            score = self._motion_confidence
        if self.motion_analyzer is None:
            return score
        return score * await self.motion_analyzer.analysis_confidence()

    async def current(self) -> TerrainObservation:
        """The terrain in effect; trail at confidence 0 before any detection."""
        async with self._lock:
            if self._current is None:
                return TerrainObservation(FALLBACK_TERRAIN, 0.0, DetectionMethod.FUSION, self._clock())
            return self._current

    async def terrain_factor(self) -> float:
        async with self._lock:
            current = self._current.terrain_type if self._current else FALLBACK_TERRAIN
            return current.factor

    async def enhanced_factor(self, grade: float) -> float:
        """Current factor with uphill compensation, capped at +2%."""
        async with self._lock:
            current = self._current.terrain_type if self._current else FALLBACK_TERRAIN
            return enhanced_terrain_factor(current.factor, grade)

    async def has_high_confidence(self) -> bool:
        async with self._lock:
            return self._current is not None and self._current.confidence >= self.config.high_confidence

    async def history(self) -> list[TerrainObservation]:
        async with self._lock:
            return list(self._history)

    async def changes_since(self, since: datetime) -> list[TerrainObservation]:
        """Observations at or after ``since`` where the terrain type changed."""
        async with self._lock:
            changes = []
            previous: Optional[TerrainType] = None
            for observation in self._history:
                if observation.terrain_type != previous and observation.timestamp >= since:
                    changes.append(observation)
                previous = observation.terrain_type
            return changes

    def subscribe(self) -> Subscription[TerrainFactorUpdate]:
        """Live (factor, confidence, terrain_type) feed, one update per state change."""
        return self._feed.subscribe()

    async def reset(self) -> None:
        """Clear history, override and errors; publishes the fallback terrain."""
        async with self._lock:
            self._history.clear()
            self._manual = None
            self._current = None
            self.last_error = None
            self._motion_confidence = 0.0
            self._feed.publish(TerrainFactorUpdate(FALLBACK_TERRAIN.factor, 0.0, FALLBACK_TERRAIN))

    async def close(self) -> None:
        """Stop periodic detection and close every feed subscription."""
        await self.stop_detection()
        self._feed.close()

    async def describe(self) -> str:
        """Human-readable diagnostic summary."""
        current = await self.current()
        periodic = f"every {self.detection_interval:.0f} s" if self.is_detecting else "stopped"
        async with self._lock:
            lines = [
                "Terrain Detection",
                f"- Current: {current.terrain_type.display_name} ({current.factor:.1f}x)",
                f"- Confidence: {current.confidence * 100:.1f}%",
                f"- Method: {current.method.value}",
                f"- Manual override: {'yes' if self._manual else 'no'}",
                f"- Motion sensors: {'available' if self.motion_available else 'unavailable'}",
                f"- Periodic detection: {periodic}",
                f"- Battery optimized: {'yes' if self._battery_optimized else 'no'}",
                f"- History: {len(self._history)}/{self.config.history_size}",
            ]
            if self.last_error is not None:
                lines.append(f"- Last error: {self.last_error}")
            return "\n".join(lines)
