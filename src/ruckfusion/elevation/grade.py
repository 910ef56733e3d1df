"""Grade calculation and elevation gain/loss tracking."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

MAX_GRADE = 20.0  # percent
MIN_GRADE_DISTANCE = 0.5  # metres; shorter segments report level ground
ELEVATION_NOISE_THRESHOLD = 1.0  # metres of change before gain/loss counts
SMOOTHING_WINDOW = 5

EARTH_RADIUS_M = 6_371_000.0


def clamp_grade(grade: float) -> float:
    """Clamp a grade (percent) to [-20, 20]; non-finite grades become 0."""
    if not math.isfinite(grade):
        return 0.0
    return max(-MAX_GRADE, min(MAX_GRADE, grade))


def calculate_grade(start_altitude: float, end_altitude: float, distance: float) -> float:
    """
    Grade between two fused altitude points.

    Args:
        start_altitude: Altitude at the segment start (m)
        end_altitude: Altitude at the segment end (m)
        distance: Horizontal distance covered (m)

    Returns:
        Grade in percent, clamped to [-20, 20]. Zero, negative or non-finite
        distances yield 0.
    """
    if not math.isfinite(distance) or distance < MIN_GRADE_DISTANCE:
        return 0.0
    return clamp_grade(100.0 * (end_altitude - start_altitude) / distance)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS84 points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


@dataclass
class GradeTracker:
    """
    Accumulates elevation gain/loss and a smoothed grade across segments.

    Altitude changes smaller than ``noise_threshold`` are held back until
    they add up, so sensor jitter is not counted as climbing.
    """

    noise_threshold: float = ELEVATION_NOISE_THRESHOLD
    elevation_gain: float = 0.0
    elevation_loss: float = 0.0
    _reference_altitude: Optional[float] = field(default=None, init=False, repr=False)
    _recent: deque = field(
        default_factory=lambda: deque(maxlen=SMOOTHING_WINDOW), init=False, repr=False
    )

    def add_segment(self, altitude: float, distance: float, grade: float) -> None:
        """Record the end of a segment."""
        if not math.isfinite(altitude):
            return
        if self._reference_altitude is None:
            self._reference_altitude = altitude
        else:
            delta = altitude - self._reference_altitude
            if abs(delta) >= self.noise_threshold:
                if delta > 0:
                    self.elevation_gain += delta
                else:
                    self.elevation_loss += -delta
                self._reference_altitude = altitude

        if math.isfinite(distance) and distance >= MIN_GRADE_DISTANCE:
            self._recent.append(clamp_grade(grade))

    @property
    def smoothed_grade(self) -> float:
        if not self._recent:
            return 0.0
        return clamp_grade(sum(self._recent) / len(self._recent))

    @property
    def net_change(self) -> float:
        return self.elevation_gain - self.elevation_loss

    def reset(self) -> None:
        self.elevation_gain = 0.0
        self.elevation_loss = 0.0
        self._reference_altitude = None
        self._recent.clear()
