"""Load-carriage energy expenditure model.

The base rate is the Pandolf et al. (1977) load-carriage equation on level,
firm ground (terrain coefficient 1, grade 0):

    M = 1.5·W + 2.0·(W + L)·(L / W)² + 1.5·(W + L)·V²    [watts]

with W body mass (kg), L load mass (kg) and V speed (m/s). The result is
converted to kcal/min and then scaled by three independent multipliers:

    rate = base × grade_factor × environmental_factor × terrain_factor

Grade uses an empirical table interpolated linearly between 5% steps.
The environmental factor is temperature × wind × altitude.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from ruckfusion.errors import InvalidBodyWeightError, InvalidLoadWeightError, InvalidSpeedError
from ruckfusion.models import utcnow

WATTS_TO_KCAL_PER_MIN = 0.01434

BODY_WEIGHT_RANGE = (30.0, 200.0)  # kg
LOAD_WEIGHT_RANGE = (0.0, 100.0)  # kg
SPEED_RANGE = (0.0, 3.0)  # m/s

CONFIDENCE_MARGIN = 0.10  # ±10%

# Grade (%) -> metabolic multiplier
GRADE_TABLE: list[tuple[float, float]] = [
    (-20.0, 0.85),
    (-15.0, 0.89),
    (-10.0, 0.92),
    (-5.0, 0.96),
    (0.0, 1.00),
    (5.0, 1.20),
    (10.0, 1.45),
    (15.0, 1.75),
    (20.0, 2.10),
]
_GRADES = np.array([g for g, _ in GRADE_TABLE])
_GRADE_FACTORS = np.array([f for _, f in GRADE_TABLE])

# Temperature comfort band (°C) and cost per degree outside it
COMFORT_MIN_C = 15.0
COMFORT_MAX_C = 25.0
COLD_COST_PER_DEGREE = 0.01
HEAT_COST_PER_DEGREE = 0.015
MAX_TEMPERATURE_FACTOR = 1.30

WIND_COEFFICIENT = 0.0005  # per (m/s)²
MAX_WIND_FACTOR = 1.30

ALTITUDE_COST_PER_KM = 0.10
MAX_MODELED_ALTITUDE_M = 9000.0


@dataclass(frozen=True)
class CalorieParameters:
    """Inputs for one calorie calculation."""

    body_weight_kg: float
    load_weight_kg: float
    speed_mps: float
    grade_percent: float = 0.0
    temperature_c: float = 20.0
    altitude_m: float = 0.0
    wind_speed_mps: float = 0.0
    terrain_multiplier: float = 1.0
    timestamp: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        """
        Check body weight, load and speed against the modelled ranges.

        Raises:
            InvalidBodyWeightError: Body weight outside [30, 200] kg
            InvalidLoadWeightError: Load outside [0, 100] kg
            InvalidSpeedError: Speed outside [0, 3] m/s
        """
        if not _within(self.body_weight_kg, BODY_WEIGHT_RANGE):
            raise InvalidBodyWeightError(self.body_weight_kg)
        if not _within(self.load_weight_kg, LOAD_WEIGHT_RANGE):
            raise InvalidLoadWeightError(self.load_weight_kg)
        if not _within(self.speed_mps, SPEED_RANGE):
            raise InvalidSpeedError(self.speed_mps)


@dataclass(frozen=True)
class CalorieResult:
    """Outcome of one calorie calculation."""

    metabolic_rate: float  # kcal/min
    confidence_interval: tuple[float, float]
    total_calories: float
    grade_adjustment_factor: float
    environmental_factor: float
    terrain_factor: float
    timestamp: datetime


def _within(value: float, bounds: tuple[float, float]) -> bool:
    return math.isfinite(value) and bounds[0] <= value <= bounds[1]


def _finite_or(value: float, default: float) -> float:
    return value if math.isfinite(value) else default


def base_metabolic_rate(body_weight_kg: float, load_weight_kg: float, speed_mps: float) -> float:
    """Pandolf level-ground rate in kcal/min."""
    w, l, v = body_weight_kg, load_weight_kg, speed_mps
    watts = 1.5 * w + 2.0 * (w + l) * (l / w) ** 2 + 1.5 * (w + l) * v**2
    return watts * WATTS_TO_KCAL_PER_MIN


def grade_adjustment_factor(grade_percent: float) -> float:
    """Interpolated grade multiplier; grade is clamped to ±20% first."""
    grade = float(np.clip(_finite_or(grade_percent, 0.0), _GRADES[0], _GRADES[-1]))
    return float(np.interp(grade, _GRADES, _GRADE_FACTORS))


def temperature_factor(temperature_c: float) -> float:
    """1.0 inside 15-25 °C, rising with cold and heat, capped at 1.3."""
    t = _finite_or(temperature_c, (COMFORT_MIN_C + COMFORT_MAX_C) / 2)
    if t < COMFORT_MIN_C:
        factor = 1.0 + (COMFORT_MIN_C - t) * COLD_COST_PER_DEGREE
    elif t > COMFORT_MAX_C:
        factor = 1.0 + (t - COMFORT_MAX_C) * HEAT_COST_PER_DEGREE
    else:
        factor = 1.0
    return min(factor, MAX_TEMPERATURE_FACTOR)


def wind_factor(wind_speed_mps: float) -> float:
    """Wind resistance, quadratic in wind speed, capped at 1.3."""
    v = max(0.0, _finite_or(wind_speed_mps, 0.0))
    return min(1.0 + WIND_COEFFICIENT * v * v, MAX_WIND_FACTOR)


def altitude_factor(altitude_m: float) -> float:
    """+10% per 1000 m above sea level."""
    altitude = float(np.clip(_finite_or(altitude_m, 0.0), 0.0, MAX_MODELED_ALTITUDE_M))
    return 1.0 + altitude / 1000.0 * ALTITUDE_COST_PER_KM


def environmental_factor(temperature_c: float, wind_speed_mps: float, altitude_m: float) -> float:
    return temperature_factor(temperature_c) * wind_factor(wind_speed_mps) * altitude_factor(altitude_m)


def sanitize_terrain_factor(terrain_multiplier: float) -> float:
    """Terrain multiplier, with non-positive or non-finite values replaced by 1.0."""
    if not math.isfinite(terrain_multiplier) or terrain_multiplier <= 0:
        return 1.0
    return terrain_multiplier


def metabolic_rate(params: CalorieParameters) -> tuple[float, float, float, float]:
    """
    Validate parameters and compute the adjusted metabolic rate.

    Returns:
        Tuple of (rate_kcal_per_min, grade_factor, environmental_factor,
        terrain_factor)

    Raises:
        CalorieCalculationError: On out-of-range body weight, load or speed
    """
    params.validate()
    base = base_metabolic_rate(params.body_weight_kg, params.load_weight_kg, params.speed_mps)
    grade = grade_adjustment_factor(params.grade_percent)
    environment = environmental_factor(
        params.temperature_c, params.wind_speed_mps, params.altitude_m
    )
    terrain = sanitize_terrain_factor(params.terrain_multiplier)
    return base * grade * environment * terrain, grade, environment, terrain


def confidence_interval(rate: float) -> tuple[float, float]:
    return rate * (1.0 - CONFIDENCE_MARGIN), rate * (1.0 + CONFIDENCE_MARGIN)
