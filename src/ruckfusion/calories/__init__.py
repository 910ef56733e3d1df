"""Load-carriage calorie estimation."""

from __future__ import annotations

from ruckfusion.calories.engine import CalorieEngine
from ruckfusion.calories.model import (
    GRADE_TABLE,
    CalorieParameters,
    CalorieResult,
    altitude_factor,
    base_metabolic_rate,
    environmental_factor,
    grade_adjustment_factor,
    metabolic_rate,
    temperature_factor,
    wind_factor,
)

__all__ = [
    "GRADE_TABLE",
    "CalorieEngine",
    "CalorieParameters",
    "CalorieResult",
    "altitude_factor",
    "base_metabolic_rate",
    "environmental_factor",
    "grade_adjustment_factor",
    "metabolic_rate",
    "temperature_factor",
    "wind_factor",
]
