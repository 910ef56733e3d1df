"""Keyword classification of reverse-geocode and road-surface hints."""

from __future__ import annotations

import math
import re
from typing import Optional

from ruckfusion.models import DetectionMethod, LocationHint, TerrainType

# Checked in order; the first terrain with a matching keyword wins
TERRAIN_KEYWORDS: list[tuple[TerrainType, tuple[str, ...]]] = [
    (TerrainType.STAIRS, ("stairs", "staircase", "stairway", "steps")),
    (TerrainType.SAND, ("beach", "sand", "sandy", "dune", "dunes")),
    (TerrainType.SNOW, ("snow", "glacier", "ski")),
    (TerrainType.MUD, ("mud", "muddy", "marsh", "swamp", "bog", "wetland")),
    (TerrainType.GRAVEL, ("gravel", "unpaved", "dirt road", "fire road", "quarry")),
    (TerrainType.GRASS, ("grass", "meadow", "field", "lawn", "pasture")),
    (TerrainType.TRAIL, ("trail", "path", "footpath", "park", "forest", "woods", "track")),
    (
        TerrainType.PAVED_ROAD,
        ("street", "avenue", "road", "boulevard", "highway", "lane", "drive", "paved", "asphalt"),
    ),
]

KEYWORD_CONFIDENCE = 0.7
MAP_KEYWORD_CONFIDENCE = 0.8
NO_MATCH_CONFIDENCE = 0.3
POOR_ACCURACY_CONFIDENCE = 0.3

_PATTERNS = [
    (terrain, re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b"))
    for terrain, keywords in TERRAIN_KEYWORDS
]


def match_keywords(text: str) -> Optional[TerrainType]:
    """First terrain whose keywords appear as whole words in the text."""
    lowered = text.lower()
    for terrain, pattern in _PATTERNS:
        if pattern.search(lowered):
            return terrain
    return None


def classify_location(
    hint: LocationHint, poor_accuracy_m: float = 100.0
) -> tuple[TerrainType, float, DetectionMethod]:
    """
    Classify terrain from location text.

    Args:
        hint: Geocode or road-surface fragments plus horizontal accuracy
        poor_accuracy_m: Accuracy (m) beyond which confidence is capped at 0.3

    Returns:
        (terrain_type, confidence, method). No keyword match gives trail at
        low confidence.
    """
    method = DetectionMethod.MAPKIT if hint.source == "map" else DetectionMethod.LOCATION

    terrain = None
    for fragment in hint.keywords:
        if fragment:
            terrain = match_keywords(fragment)
            if terrain is not None:
                break

    if terrain is None:
        terrain, confidence = TerrainType.TRAIL, NO_MATCH_CONFIDENCE
    elif method is DetectionMethod.MAPKIT:
        confidence = MAP_KEYWORD_CONFIDENCE
    else:
        confidence = KEYWORD_CONFIDENCE

    accuracy = hint.horizontal_accuracy
    if not math.isfinite(accuracy) or accuracy < 0 or accuracy > poor_accuracy_m:
        confidence = min(confidence, POOR_ACCURACY_CONFIDENCE)

    return terrain, confidence, method
