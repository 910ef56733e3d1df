"""Motion feature extraction over a sliding accelerometer/gyroscope window.

Features are computed from at most ``window_size`` samples (150 ≈ 5 s at
30 Hz). Step frequency comes from the autocorrelation of the detrended
vertical acceleration: the strongest autocorrelation peak at a lag that
corresponds to 0.5–3.0 steps per second gives the step period. When the
autocorrelation shows no usable peak, threshold peak counting over the
raw signal is used instead.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Iterable, Optional

import numpy as np
import structlog
from scipy.signal import find_peaks

from ruckfusion.config import MotionConfig
from ruckfusion.models import MotionFeatures, MotionSample

logger = structlog.get_logger(__name__)

MIN_STEP_FREQUENCY = 0.5  # Hz
MAX_STEP_FREQUENCY = 3.0  # Hz
MIN_AUTOCORRELATION_PEAK = 0.1
FREQUENCY_BANDS = ((0.5, 2.0), (2.0, 4.0), (4.0, 8.0), (8.0, 15.0))
AXES = ("x", "y", "z")
CONFIDENCE_DECAY_S = 5.0


def estimate_sample_rate(timestamps: np.ndarray, default: float) -> float:
    """Sample rate from the median spacing of epoch-second timestamps."""
    if len(timestamps) < 2:
        return default
    spacing = np.diff(timestamps)
    spacing = spacing[spacing > 0]
    if len(spacing) == 0:
        return default
    rate = 1.0 / float(np.median(spacing))
    return rate if np.isfinite(rate) and rate > 0 else default


def step_frequency(vertical: np.ndarray, sample_rate: float) -> float:
    """
    Dominant step frequency of a vertical acceleration signal.

    Args:
        vertical: Vertical acceleration samples (g)
        sample_rate: Samples per second

    Returns:
        Step frequency in Hz, clamped to [0.5, 3.0]
    """
    signal = vertical - vertical.mean()
    n = len(signal)

    autocorr = np.correlate(signal, signal, mode="full")[n - 1 :]
    if autocorr[0] > 1e-12:
        autocorr = autocorr / autocorr[0]
        min_lag = max(1, int(np.floor(sample_rate / MAX_STEP_FREQUENCY)))
        max_lag = min(n - 1, int(np.ceil(sample_rate / MIN_STEP_FREQUENCY)))
        if max_lag > min_lag:
            window = autocorr[min_lag : max_lag + 1]
            peaks, props = find_peaks(window, height=MIN_AUTOCORRELATION_PEAK)
            if len(peaks) > 0:
                best = peaks[int(np.argmax(props["peak_heights"]))]
                lag = best + min_lag
                return float(np.clip(sample_rate / lag, MIN_STEP_FREQUENCY, MAX_STEP_FREQUENCY))

    return _peak_count_frequency(signal, sample_rate)


def _peak_count_frequency(signal: np.ndarray, sample_rate: float) -> float:
    threshold = 0.5 * float(signal.std())
    if threshold <= 0:
        return MIN_STEP_FREQUENCY
    min_distance = max(1, int(sample_rate / MAX_STEP_FREQUENCY))
    peaks, _ = find_peaks(signal, height=threshold, distance=min_distance)
    duration = len(signal) / sample_rate
    frequency = len(peaks) / duration if duration > 0 else MIN_STEP_FREQUENCY
    return float(np.clip(frequency, MIN_STEP_FREQUENCY, MAX_STEP_FREQUENCY))


def step_regularity(vertical: np.ndarray, sample_rate: float) -> float:
    """1 / (1 + coefficient of variation) of peak-to-peak intervals; 0 with < 3 peaks."""
    signal = vertical - vertical.mean()
    threshold = 0.5 * float(signal.std())
    if threshold <= 0:
        return 0.0
    min_distance = max(1, int(sample_rate / MAX_STEP_FREQUENCY))
    peaks, _ = find_peaks(signal, height=threshold, distance=min_distance)
    if len(peaks) < 3:
        return 0.0
    intervals = np.diff(peaks).astype(float)
    cv = intervals.std() / intervals.mean()
    return float(1.0 / (1.0 + cv))


def frequency_profile(magnitude: np.ndarray, sample_rate: float) -> tuple[float, float, float, float]:
    """Share of spectral power in each of the four motion bands."""
    signal = magnitude - magnitude.mean()
    power = np.abs(np.fft.rfft(signal)) ** 2
    freqs = np.fft.rfftfreq(len(signal), d=1.0 / sample_rate)
    bands = [float(power[(freqs >= lo) & (freqs < hi)].sum()) for lo, hi in FREQUENCY_BANDS]
    total = sum(bands)
    if total <= 0:
        return (0.0, 0.0, 0.0, 0.0)
    return tuple(b / total for b in bands)  # type: ignore[return-value]


def extract_features(
    samples: list[MotionSample], default_sample_rate: float = 30.0
) -> MotionFeatures:
    """
    Compute motion features from a time-ordered list of finite samples.

    Args:
        samples: At least two samples, sorted by timestamp
        default_sample_rate: Used when timestamps cannot give a rate

    Returns:
        MotionFeatures for the window
    """
    timestamps = np.array([s.timestamp.timestamp() for s in samples])
    acc = np.array([s.acceleration for s in samples], dtype=float)
    gyro = np.array([s.rotation for s in samples], dtype=float)
    rate = estimate_sample_rate(timestamps, default_sample_rate)

    magnitude = np.linalg.norm(acc, axis=1)
    vertical = acc[:, 2]

    return MotionFeatures(
        step_frequency=step_frequency(vertical, rate),
        acceleration_variance=float(magnitude.var(ddof=1)),
        dominant_axis=AXES[int(np.argmax(acc.var(axis=0)))],
        vertical_component=float(np.abs(vertical).mean()),
        step_regularity=step_regularity(vertical, rate),
        gyroscope_variance=float(np.linalg.norm(gyro, axis=1).var(ddof=1)),
        impact_intensity=float(np.linalg.norm(np.diff(acc, axis=0), axis=1).mean()),
        frequency_profile=frequency_profile(magnitude, rate),
        sample_count=len(samples),
        timestamp=samples[-1].timestamp,
    )


class MotionPatternAnalyzer:
    """
    Owns the motion window and computes features on demand.

    Non-finite samples are dropped on arrival. Results are cached for
    ``cache_ttl_s`` seconds until a new sample arrives.
    """

    def __init__(self, config: Optional[MotionConfig] = None, clock=time.monotonic) -> None:
        self.config = config or MotionConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._window: deque[MotionSample] = deque(maxlen=self.config.window_size)
        self._dropped = 0
        self._cached: Optional[MotionFeatures] = None
        self._cached_at: Optional[float] = None
        self._last: Optional[MotionFeatures] = None

    @property
    def window_duration(self) -> float:
        """Seconds of motion the window is meant to cover."""
        return self.config.window_size / self.config.sample_rate_hz

    async def add_sample(self, sample: MotionSample) -> bool:
        """
        Add one sample to the window.

        Returns:
            False if the sample was dropped for carrying NaN/Infinite values.
        """
        async with self._lock:
            return self._add(sample)

    async def add_samples(self, samples: Iterable[MotionSample]) -> int:
        """Add many samples; returns how many were accepted."""
        async with self._lock:
            return sum(1 for s in samples if self._add(s))

    def _add(self, sample: MotionSample) -> bool:
        if not sample.is_finite:
            self._dropped += 1
            logger.debug("motion_sample_dropped", reason="non_finite")
            return False
        self._window.append(sample)
        self._cached = None
        return True

    async def analyze(self) -> Optional[MotionFeatures]:
        """
        Extract features from the current window.

        Returns:
            MotionFeatures, or None while fewer than ``min_samples`` recent
            samples are available.
        """
        async with self._lock:
            now = self._clock()
            if (
                self._cached is not None
                and self._cached_at is not None
                and now - self._cached_at < self.config.cache_ttl_s
            ):
                return self._cached

            samples = sorted(self._window, key=lambda s: s.timestamp)
            if samples:
                newest = samples[-1].timestamp
                samples = [
                    s
                    for s in samples
                    if (newest - s.timestamp).total_seconds() <= self.window_duration
                ]
            if len(samples) < max(self.config.min_samples, 2):
                return None

            self._cached = extract_features(samples, self.config.sample_rate_hz)
            self._cached_at = now
            self._last = self._cached
            return self._cached

    async def analysis_confidence(self) -> float:
        """
        Trust in the most recent analysis.

        Window coverage of the analysed features (samples over
        ``window_size``), decaying linearly to zero over 5 seconds since the
        analysis ran. 0.0 before any analysis.
        """
        async with self._lock:
            if self._last is None or self._cached_at is None:
                return 0.0
            coverage = min(1.0, self._last.sample_count / self.config.window_size)
            age = max(0.0, self._clock() - self._cached_at)
            return coverage * max(0.0, 1.0 - age / CONFIDENCE_DECAY_S)

    async def sample_count(self) -> int:
        async with self._lock:
            return len(self._window)

    @property
    def dropped_count(self) -> int:
        return self._dropped

    async def reset(self) -> None:
        async with self._lock:
            self._window.clear()
            self._cached = None
            self._cached_at = None
            self._last = None
            self._dropped = 0

    async def describe(self) -> str:
        """Human-readable diagnostic summary."""
        features = await self.analyze()
        lines = [
            "Motion Analysis",
            f"- Window: {await self.sample_count()}/{self.config.window_size} samples",
            f"- Dropped (non-finite): {self._dropped}",
        ]
        if features is None:
            lines.append(f"- Features: need {self.config.min_samples} samples")
        else:
            lines.append(f"- Analysis confidence: {await self.analysis_confidence() * 100:.0f}%")
            lines += [
                f"- Step frequency: {features.step_frequency:.2f} Hz",
                f"- Acceleration variance: {features.acceleration_variance:.4f}",
                f"- Dominant axis: {features.dominant_axis}",
                f"- Step regularity: {features.step_regularity:.2f}",
                f"- Impact intensity: {features.impact_intensity:.3f}",
            ]
        return "\n".join(lines)
