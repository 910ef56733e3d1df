"""Kalman filter over altitude and vertical velocity.

The state is a 2-vector [altitude (m), vertical velocity (m/s)] with a
constant-velocity process model driven by white acceleration noise:

    x_k = F x_{k-1},  F = [[1, dt], [0, 1]]
    Q   = q * [[dt³/3, dt²/2], [dt²/2, dt]]

Every measurement (barometric or GPS) observes altitude only, H = [1, 0],
and carries its own variance R. Barometric and GPS readings arriving in the
same callback are applied as two sequential scalar updates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

# Initial altitude variance before any measurement (m²)
INITIAL_VARIANCE = 1000.0

# Initial vertical velocity variance (m²/s²)
INITIAL_VELOCITY_VARIANCE = 1.0

# Longest prediction gap honoured in one step; longer gaps are treated as this
MAX_PREDICT_DT = 60.0

_H = np.array([1.0, 0.0])


@dataclass
class AltitudeKalmanFilter:
    """
    Constant-velocity Kalman filter for fused altitude.

    Attributes:
        process_noise: White acceleration spectral density q (m²/s³)
        state: [altitude, vertical_velocity]
        covariance: 2x2 error covariance
        initialized: False until the first measurement seeds the state
    """

    process_noise: float = 0.05
    state: np.ndarray = field(default_factory=lambda: np.zeros(2))
    covariance: np.ndarray = field(
        default_factory=lambda: np.diag([INITIAL_VARIANCE, INITIAL_VELOCITY_VARIANCE])
    )
    initialized: bool = False

    @property
    def altitude(self) -> float:
        return float(self.state[0])

    @property
    def vertical_velocity(self) -> float:
        return float(self.state[1])

    @property
    def altitude_variance(self) -> float:
        return float(self.covariance[0, 0])

    @property
    def uncertainty(self) -> float:
        """1-sigma altitude error (m)."""
        return math.sqrt(max(self.altitude_variance, 0.0))

    @property
    def trace(self) -> float:
        return float(np.trace(self.covariance))

    def seed(self, altitude: float, variance: float) -> None:
        """Initialise the state from a first measurement."""
        self.state = np.array([altitude, 0.0])
        self.covariance = np.diag([variance, INITIAL_VELOCITY_VARIANCE])
        self.initialized = True

    def predict(self, dt: float) -> None:
        """
        Predict step: extrapolate altitude by velocity and grow uncertainty.

        Args:
            dt: Seconds since the last step. Non-positive gaps are a no-op.
        """
        if not self.initialized or not math.isfinite(dt) or dt <= 0:
            return
        dt = min(dt, MAX_PREDICT_DT)

        f = np.array([[1.0, dt], [0.0, 1.0]])
        q = self.process_noise * np.array(
            [[dt**3 / 3.0, dt**2 / 2.0], [dt**2 / 2.0, dt]]
        )
        self.state = f @ self.state
        self.covariance = f @ self.covariance @ f.T + q

    def update(self, measurement: float, variance: float) -> Optional[float]:
        """
        Update step with an altitude measurement.

        Args:
            measurement: Observed altitude (m)
            variance: Measurement variance R (m²)

        Returns:
            Innovation (measurement - predicted altitude), or None if the
            measurement was rejected as non-finite.
        """
        if not math.isfinite(measurement) or not math.isfinite(variance) or variance <= 0:
            return None
        if not self.initialized:
            self.seed(measurement, variance)
            return 0.0

        innovation = measurement - float(_H @ self.state)
        s = float(_H @ self.covariance @ _H) + variance
        gain = (self.covariance @ _H) / s

        self.state = self.state + gain * innovation
        # Joseph form keeps the covariance symmetric positive semi-definite
        i_kh = np.eye(2) - np.outer(gain, _H)
        self.covariance = i_kh @ self.covariance @ i_kh.T + variance * np.outer(gain, gain)

        return innovation

    def reset(self) -> None:
        self.state = np.zeros(2)
        self.covariance = np.diag([INITIAL_VARIANCE, INITIAL_VELOCITY_VARIANCE])
        self.initialized = False

    def get_state(self) -> dict:
        """Return current filter state as dictionary."""
        return {
            "altitude": self.altitude,
            "vertical_velocity": self.vertical_velocity,
            "altitude_std": self.uncertainty,
            "trace": self.trace,
        }
