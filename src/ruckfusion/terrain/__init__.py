"""Terrain classification and difficulty factors."""

from __future__ import annotations

from ruckfusion.terrain.classifier import TerrainClassifier, enhanced_terrain_factor
from ruckfusion.terrain.location import classify_location, match_keywords
from ruckfusion.terrain.signatures import (
    DEFAULT_SIGNATURES,
    TerrainSignature,
    best_match,
    match_score,
)

__all__ = [
    "DEFAULT_SIGNATURES",
    "TerrainClassifier",
    "TerrainSignature",
    "best_match",
    "classify_location",
    "enhanced_terrain_factor",
    "match_keywords",
    "match_score",
]
