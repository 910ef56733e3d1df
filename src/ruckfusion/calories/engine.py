"""Calorie accumulation, one-shot and continuous.

CalorieEngine owns the running total and a bounded calculation history.
Each accepted calculation adds ``rate × Δt`` where Δt is the time in
minutes since the previous accepted calculation. The first calculation
contributes nothing, and a timestamp earlier than the previous one
contributes nothing without moving the clock back.
"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

import structlog

from ruckfusion.calories.model import (
    CalorieParameters,
    CalorieResult,
    base_metabolic_rate,
    confidence_interval,
    environmental_factor,
    grade_adjustment_factor,
    metabolic_rate,
    sanitize_terrain_factor,
)
from ruckfusion.config import CalorieConfig
from ruckfusion.errors import CalorieCalculationError
from ruckfusion.feeds import Broadcaster, Subscription
from ruckfusion.models import LocationFix, TerrainFactorUpdate, WeatherConditions, utcnow

logger = structlog.get_logger(__name__)

LocationProvider = Callable[[], Awaitable[Optional[LocationFix]]]
GradeProvider = Callable[[], Awaitable[Optional[float]]]
TerrainProvider = Callable[[], Awaitable[Optional[float]]]
WeatherProvider = Callable[[], Awaitable[Optional[WeatherConditions]]]


class CalorieEngine:
    """
    Running calorie estimate for one session.

    Args:
        config: Update interval and history size
        clock: Timestamp source for continuous-mode calculations
    """

    def __init__(
        self,
        config: Optional[CalorieConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or CalorieConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._feed: Broadcaster[CalorieResult] = Broadcaster("calories")

        self._total = 0.0
        self._history: deque[CalorieResult] = deque(maxlen=self.config.history_size)
        self._last_timestamp: Optional[datetime] = None
        self._terrain_factor = 1.0

        self._task: Optional[asyncio.Task] = None
        self._terrain_task: Optional[asyncio.Task] = None
        self._terrain_subscription: Optional[Subscription[TerrainFactorUpdate]] = None

        self.last_error: Optional[Exception] = None

    # One-shot calculation

    async def calculate_calories(self, params: CalorieParameters) -> CalorieResult:
        """
        Compute the current rate and add it to the running total.

        Args:
            params: Body, load, movement and environment inputs

        Returns:
            CalorieResult with the rate, ±10% interval and updated total

        Raises:
            CalorieCalculationError: On out-of-range body weight, load or
                speed; totals and history are left untouched
        """
        try:
            rate, grade, environment, terrain = metabolic_rate(params)
        except CalorieCalculationError as e:
            logger.warning("calorie_input_rejected", error=str(e))
            raise

        async with self._lock:
            minutes = 0.0
            if self._last_timestamp is None:
                self._last_timestamp = params.timestamp
            else:
                elapsed = (params.timestamp - self._last_timestamp).total_seconds() / 60.0
                if elapsed > 0:
                    minutes = elapsed
                    self._last_timestamp = params.timestamp
            self._total += rate * minutes

            result = CalorieResult(
                metabolic_rate=rate,
                confidence_interval=confidence_interval(rate),
                total_calories=self._total,
                grade_adjustment_factor=grade,
                environmental_factor=environment,
                terrain_factor=terrain,
                timestamp=params.timestamp,
            )
            self._history.append(result)

        self._feed.publish(result)
        return result

    # State

    async def total_calories(self) -> float:
        async with self._lock:
            return self._total

    async def history(self) -> list[CalorieResult]:
        async with self._lock:
            return list(self._history)

    async def average_metabolic_rate(self, last_minutes: float = 5.0) -> float:
        """Mean rate (kcal/min) over results within ``last_minutes`` of the newest one."""
        async with self._lock:
            if not self._history:
                return 0.0
            cutoff = self._history[-1].timestamp - timedelta(minutes=last_minutes)
            recent = [r.metabolic_rate for r in self._history if r.timestamp >= cutoff]
            return sum(recent) / len(recent)

    async def reset(self) -> None:
        """Zero the total and clear history. The terrain factor is kept."""
        async with self._lock:
            self._total = 0.0
            self._history.clear()
            self._last_timestamp = None
            self.last_error = None

    async def terrain_factor(self) -> float:
        async with self._lock:
            return self._terrain_factor

    async def update_terrain_factor(self, factor: float) -> None:
        """Hot-swap the terrain factor used by continuous mode; accumulation continues."""
        async with self._lock:
            self._terrain_factor = sanitize_terrain_factor(factor)

    def subscribe(self) -> Subscription[CalorieResult]:
        """Feed of every calculation result."""
        return self._feed.subscribe()

    # Continuous mode

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start_continuous(
        self,
        body_weight_kg: float,
        load_weight_kg: float,
        location_provider: LocationProvider,
        grade_provider: Optional[GradeProvider] = None,
        terrain_provider: Optional[TerrainProvider] = None,
        weather_provider: Optional[WeatherProvider] = None,
        interval: Optional[float] = None,
    ) -> None:
        """
        Start periodic calculation from pluggable async providers.

        A tick with no location fix, or no known speed, is skipped. Invalid
        inputs and provider failures are logged and stored in
        ``last_error``; the loop keeps running.
        """
        await self.stop_continuous()
        if interval is None:
            interval = self.config.update_interval_s
        self._task = asyncio.create_task(
            self._run(
                body_weight_kg,
                load_weight_kg,
                location_provider,
                grade_provider,
                terrain_provider,
                weather_provider,
                interval,
            )
        )
        logger.info("calorie_tracking_started", interval=interval)

    async def attach_terrain_feed(self, subscription: Subscription[TerrainFactorUpdate]) -> None:
        """Consume a terrain feed in the background, hot-updating the factor."""
        await self._stop_terrain_feed()
        self._terrain_subscription = subscription
        self._terrain_task = asyncio.create_task(self._consume_terrain(subscription))

    async def stop_continuous(self) -> None:
        """Cancel the calculation loop and terrain consumer. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("calorie_tracking_stopped")
        await self._stop_terrain_feed()

    async def _stop_terrain_feed(self) -> None:
        task, self._terrain_task = self._terrain_task, None
        subscription, self._terrain_subscription = self._terrain_subscription, None
        if subscription is not None:
            subscription.close()
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _consume_terrain(self, subscription: Subscription[TerrainFactorUpdate]) -> None:
        async for update in subscription:
            await self.update_terrain_factor(update.factor)

    async def _run(
        self,
        body_weight_kg: float,
        load_weight_kg: float,
        location_provider: LocationProvider,
        grade_provider: Optional[GradeProvider],
        terrain_provider: Optional[TerrainProvider],
        weather_provider: Optional[WeatherProvider],
        interval: float,
    ) -> None:
        while True:
            try:
                await self._tick(
                    body_weight_kg,
                    load_weight_kg,
                    location_provider,
                    grade_provider,
                    terrain_provider,
                    weather_provider,
                )
            except CalorieCalculationError as e:
                self.last_error = e
            except Exception as e:
                self.last_error = e
                logger.exception("calorie_tick_failed", error=str(e))
            await asyncio.sleep(interval)

    async def _tick(
        self,
        body_weight_kg: float,
        load_weight_kg: float,
        location_provider: LocationProvider,
        grade_provider: Optional[GradeProvider],
        terrain_provider: Optional[TerrainProvider],
        weather_provider: Optional[WeatherProvider],
    ) -> Optional[CalorieResult]:
        fix = await location_provider()
        if fix is None or fix.speed < 0:
            return None

        grade = 0.0
        if grade_provider is not None:
            grade = await grade_provider() or 0.0

        if terrain_provider is not None:
            factor = await terrain_provider()
            if factor is not None:
                await self.update_terrain_factor(factor)

        weather = None
        if weather_provider is not None:
            weather = await weather_provider()
        if weather is None:
            weather = WeatherConditions()

        params = CalorieParameters(
            body_weight_kg=body_weight_kg,
            load_weight_kg=load_weight_kg,
            speed_mps=fix.speed,
            grade_percent=grade,
            temperature_c=weather.temperature_c,
            altitude_m=fix.altitude,
            wind_speed_mps=weather.wind_speed_mps,
            terrain_multiplier=await self.terrain_factor(),
            timestamp=self._clock(),
        )
        return await self.calculate_calories(params)

    # Diagnostics

    async def validate_against_research(self) -> dict[str, bool]:
        """Check the model against published load-carriage reference points."""
        level = base_metabolic_rate(70.0, 0.0, 1.34)
        loaded = base_metabolic_rate(70.0, 20.0, 1.34)
        return {
            "unloaded_walk_in_range": 3.5 <= level <= 6.0,
            "load_increases_cost": loaded > level,
            "uphill_10_percent": abs(grade_adjustment_factor(10.0) - 1.45) < 1e-9,
            "downhill_never_below_floor": grade_adjustment_factor(-50.0) >= 0.85,
            "altitude_1000m": abs(environmental_factor(20.0, 0.0, 1000.0) - 1.10) < 1e-9,
            "comfort_band_neutral": environmental_factor(20.0, 0.0, 0.0) == 1.0,
        }

    async def describe(self) -> str:
        """Human-readable diagnostic summary."""
        async with self._lock:
            latest = self._history[-1] if self._history else None
            lines = [
                "Calorie Engine",
                f"- Total: {self._total:.1f} kcal",
                f"- Calculations: {len(self._history)}/{self.config.history_size}",
                f"- Terrain factor: {self._terrain_factor:.2f}",
                f"- Continuous mode: {'running' if self.is_running else 'stopped'}",
            ]
            if latest is not None:
                low, high = latest.confidence_interval
                lines += [
                    f"- Rate: {latest.metabolic_rate:.2f} kcal/min ({low:.2f}-{high:.2f})",
                    f"- Grade factor: {latest.grade_adjustment_factor:.2f}",
                    f"- Environmental factor: {latest.environmental_factor:.2f}",
                ]
            if self.last_error is not None:
                lines.append(f"- Last error: {self.last_error}")
            return "\n".join(lines)
