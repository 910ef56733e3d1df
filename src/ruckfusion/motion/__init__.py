"""Motion pattern analysis."""

from __future__ import annotations

from ruckfusion.motion.analyzer import (
    MotionPatternAnalyzer,
    extract_features,
    step_frequency,
)

__all__ = [
    "MotionPatternAnalyzer",
    "extract_features",
    "step_frequency",
]
