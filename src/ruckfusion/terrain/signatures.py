"""Motion signatures per terrain type.

Each signature is a set of expected ranges for the motion features. A
feature inside its range scores between 0.5 (at a bound) and 1.0 (at the
centre); outside, the score falls linearly from 0.5 to 0 over one range
width. Feature scores are combined with fixed weights.

The ranges are starting points, not calibrated truth: pass a custom table
to TerrainClassifier to tune them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from ruckfusion.models import MotionFeatures, TerrainType

Range = tuple[float, float]

# Step freq, variance, vertical, regularity, gyro, impact, frequency profile
FEATURE_WEIGHTS = (0.25, 0.2, 0.15, 0.15, 0.1, 0.1, 0.05)


@dataclass(frozen=True)
class TerrainSignature:
    """Expected motion feature ranges on one surface."""

    step_frequency: Range
    acceleration_variance: Range
    vertical_component: Range
    step_regularity: Range
    gyroscope_variance: Range
    impact_intensity: Range
    frequency_profile: tuple[Range, Range, Range, Range]


DEFAULT_SIGNATURES: dict[TerrainType, TerrainSignature] = {
    TerrainType.PAVED_ROAD: TerrainSignature(
        step_frequency=(1.6, 2.0),
        acceleration_variance=(0.02, 0.08),
        vertical_component=(0.2, 0.4),
        step_regularity=(0.8, 1.0),
        gyroscope_variance=(0.1, 0.3),
        impact_intensity=(0.1, 0.3),
        frequency_profile=((0.1, 0.3), (0.4, 0.8), (0.1, 0.3), (0.0, 0.1)),
    ),
    TerrainType.TRAIL: TerrainSignature(
        step_frequency=(1.4, 1.8),
        acceleration_variance=(0.08, 0.25),
        vertical_component=(0.3, 0.7),
        step_regularity=(0.6, 0.8),
        gyroscope_variance=(0.2, 0.5),
        impact_intensity=(0.2, 0.5),
        frequency_profile=((0.2, 0.4), (0.3, 0.6), (0.2, 0.4), (0.1, 0.2)),
    ),
    TerrainType.GRAVEL: TerrainSignature(
        step_frequency=(1.3, 1.7),
        acceleration_variance=(0.15, 0.35),
        vertical_component=(0.4, 0.8),
        step_regularity=(0.5, 0.7),
        gyroscope_variance=(0.3, 0.6),
        impact_intensity=(0.3, 0.6),
        frequency_profile=((0.1, 0.3), (0.2, 0.5), (0.3, 0.6), (0.2, 0.4)),
    ),
    TerrainType.SAND: TerrainSignature(
        step_frequency=(1.0, 1.4),
        acceleration_variance=(0.25, 0.55),
        vertical_component=(0.6, 1.2),
        step_regularity=(0.3, 0.5),
        gyroscope_variance=(0.4, 0.8),
        impact_intensity=(0.1, 0.4),  # damped
        frequency_profile=((0.3, 0.6), (0.2, 0.4), (0.1, 0.3), (0.0, 0.2)),
    ),
    TerrainType.MUD: TerrainSignature(
        step_frequency=(0.8, 1.2),
        acceleration_variance=(0.3, 0.7),
        vertical_component=(0.5, 1.0),
        step_regularity=(0.2, 0.4),
        gyroscope_variance=(0.5, 0.9),
        impact_intensity=(0.0, 0.3),
        frequency_profile=((0.4, 0.7), (0.2, 0.4), (0.1, 0.2), (0.0, 0.1)),
    ),
    TerrainType.SNOW: TerrainSignature(
        step_frequency=(1.1, 1.5),
        acceleration_variance=(0.2, 0.4),
        vertical_component=(0.4, 0.8),
        step_regularity=(0.4, 0.6),
        gyroscope_variance=(0.3, 0.6),
        impact_intensity=(0.0, 0.2),
        frequency_profile=((0.2, 0.5), (0.3, 0.5), (0.1, 0.3), (0.0, 0.1)),
    ),
    TerrainType.STAIRS: TerrainSignature(
        step_frequency=(0.5, 1.0),
        acceleration_variance=(0.4, 0.8),
        vertical_component=(0.8, 1.5),
        step_regularity=(0.2, 0.4),
        gyroscope_variance=(0.6, 1.2),
        impact_intensity=(0.4, 0.8),
        frequency_profile=((0.1, 0.2), (0.2, 0.4), (0.3, 0.6), (0.2, 0.5)),
    ),
    TerrainType.GRASS: TerrainSignature(
        step_frequency=(1.5, 1.9),
        acceleration_variance=(0.06, 0.18),
        vertical_component=(0.25, 0.5),
        step_regularity=(0.7, 0.9),
        gyroscope_variance=(0.15, 0.4),
        impact_intensity=(0.15, 0.4),
        frequency_profile=((0.15, 0.35), (0.35, 0.7), (0.15, 0.35), (0.05, 0.15)),
    ),
}


def range_score(value: float, bounds: Range) -> float:
    """Score in [0, 1] for how well a value fits an expected range."""
    low, high = bounds
    width = high - low
    if width <= 0:
        return 1.0 if value == low else 0.0
    if low <= value <= high:
        center = (low + high) / 2
        return 1.0 - 0.5 * abs(value - center) / (width / 2)
    distance = min(abs(value - low), abs(value - high))
    return max(0.0, 0.5 * (1.0 - distance / width))


def match_score(features: MotionFeatures, signature: TerrainSignature) -> float:
    """Weighted signature match in [0, 1]."""
    profile_score = sum(
        range_score(value, bounds)
        for value, bounds in zip(features.frequency_profile, signature.frequency_profile)
    ) / len(signature.frequency_profile)

    scores = (
        range_score(features.step_frequency, signature.step_frequency),
        range_score(features.acceleration_variance, signature.acceleration_variance),
        range_score(features.vertical_component, signature.vertical_component),
        range_score(features.step_regularity, signature.step_regularity),
        range_score(features.gyroscope_variance, signature.gyroscope_variance),
        range_score(features.impact_intensity, signature.impact_intensity),
        profile_score,
    )
    return sum(w * s for w, s in zip(FEATURE_WEIGHTS, scores))


def best_match(
    features: MotionFeatures,
    signatures: Optional[Mapping[TerrainType, TerrainSignature]] = None,
) -> tuple[TerrainType, float]:
    """
    Terrain whose signature best matches the features.

    Returns:
        (terrain_type, score). Trail with score 0 if no signature is given.
    """
    if signatures is None:
        signatures = DEFAULT_SIGNATURES
    best_type, best_score = TerrainType.TRAIL, 0.0
    for terrain_type in TerrainType:
        signature = signatures.get(terrain_type)
        if signature is None:
            continue
        score = match_score(features, signature)
        if score > best_score:
            best_type, best_score = terrain_type, score
    return best_type, min(1.0, max(0.0, best_score))
