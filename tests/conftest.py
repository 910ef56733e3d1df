"""Pytest fixtures for ruckfusion tests."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np
import pytest

from ruckfusion.models import MotionFeatures, MotionSample


@pytest.fixture
def start_time() -> datetime:
    """Fixed session start for synthetic traces."""
    return datetime(2026, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def walking_samples(start_time):
    """Factory for accelerometer traces with a sinusoidal vertical step signal."""

    def _walking_samples(
        count: int = 150,
        step_frequency: float = 1.8,
        amplitude: float = 0.3,
        sample_rate: float = 30.0,
        noise: float = 0.0,
        seed: int = 7,
        start: Optional[datetime] = None,
    ) -> list[MotionSample]:
        origin = start or start_time
        rng = np.random.default_rng(seed)
        samples = []
        for i in range(count):
            t = i / sample_rate
            z = 1.0 + amplitude * math.sin(2 * math.pi * step_frequency * t)
            samples.append(
                MotionSample(
                    timestamp=origin + timedelta(seconds=t),
                    acceleration=(
                        0.05 * math.sin(2 * math.pi * step_frequency * t / 2)
                        + rng.normal(0, noise),
                        0.02 + rng.normal(0, noise),
                        z + rng.normal(0, noise),
                    ),
                    rotation=(0.1 * math.sin(2 * math.pi * t), 0.05, 0.0),
                )
            )
        return samples

    return _walking_samples


@pytest.fixture
def make_features(start_time):
    """Factory for MotionFeatures at the paved-road signature centre, with overrides."""

    def _make_features(**overrides) -> MotionFeatures:
        values = dict(
            step_frequency=1.8,
            acceleration_variance=0.05,
            dominant_axis="z",
            vertical_component=0.3,
            step_regularity=0.9,
            gyroscope_variance=0.2,
            impact_intensity=0.2,
            frequency_profile=(0.2, 0.6, 0.2, 0.05),
            sample_count=150,
            timestamp=start_time,
        )
        values.update(overrides)
        return MotionFeatures(**values)

    return _make_features


@pytest.fixture
def paved_features(make_features) -> MotionFeatures:
    """Features scoring 1.0 against the paved-road signature."""
    return make_features()


@pytest.fixture
def far_features(make_features) -> MotionFeatures:
    """Features that match no signature well."""
    return make_features(
        step_frequency=3.0,
        acceleration_variance=5.0,
        vertical_component=5.0,
        step_regularity=0.0,
        gyroscope_variance=5.0,
        impact_intensity=5.0,
        frequency_profile=(0.0, 0.0, 0.0, 1.0),
    )


@pytest.fixture
def config_file(tmp_path):
    """Path for a temporary config.yaml."""
    return tmp_path / "config.yaml"
