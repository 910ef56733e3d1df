"""Tests for CalorieEngine accumulation and continuous mode."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from ruckfusion.calories import CalorieEngine, CalorieParameters
from ruckfusion.config import CalorieConfig
from ruckfusion.errors import InvalidBodyWeightError
from ruckfusion.models import LocationFix, TerrainType, WeatherConditions
from ruckfusion.terrain import TerrainClassifier


def params(timestamp, **overrides) -> CalorieParameters:
    """70 kg walker with a 15 kg load at 1.34 m/s, with overrides."""
    values = dict(body_weight_kg=70.0, load_weight_kg=15.0, speed_mps=1.34, timestamp=timestamp)
    values.update(overrides)
    return CalorieParameters(**values)


class TestAccumulation:
    """Tests for the running total."""

    @pytest.mark.asyncio
    async def test_first_calculation_adds_nothing(self, start_time) -> None:
        """The first calculation should set the rate but add no calories."""
        engine = CalorieEngine()
        result = await engine.calculate_calories(params(start_time))
        assert result.total_calories == 0.0
        assert 4.0 < result.metabolic_rate < 6.0

    @pytest.mark.asyncio
    async def test_accumulates_rate_times_minutes(self, start_time) -> None:
        """Total should grow by metabolic rate times elapsed minutes."""
        engine = CalorieEngine()
        first = await engine.calculate_calories(params(start_time))
        second = await engine.calculate_calories(params(start_time + timedelta(minutes=2)))
        assert second.total_calories == pytest.approx(first.metabolic_rate * 2)

    @pytest.mark.asyncio
    async def test_total_is_monotonic(self, start_time) -> None:
        """Total should never decrease across mixed grades."""
        engine = CalorieEngine()
        totals = []
        for i in range(20):
            result = await engine.calculate_calories(
                params(start_time + timedelta(seconds=30 * i), grade_percent=(i % 5) * 4 - 8)
            )
            totals.append(result.total_calories)
        assert totals == sorted(totals)
        assert totals[-1] > 0

    @pytest.mark.asyncio
    async def test_out_of_order_timestamp_adds_nothing(self, start_time) -> None:
        """An older timestamp should add nothing and not rewind the clock."""
        engine = CalorieEngine()
        await engine.calculate_calories(params(start_time))
        later = await engine.calculate_calories(params(start_time + timedelta(minutes=1)))
        earlier = await engine.calculate_calories(params(start_time + timedelta(seconds=10)))
        assert earlier.total_calories == later.total_calories

        # Clock did not move back: the next minute counts from +1 min
        after = await engine.calculate_calories(params(start_time + timedelta(minutes=2)))
        assert after.total_calories == pytest.approx(later.total_calories + after.metabolic_rate)

    @pytest.mark.asyncio
    async def test_confidence_interval_ten_percent(self, start_time) -> None:
        """Confidence interval should be the rate plus or minus 10%."""
        engine = CalorieEngine()
        result = await engine.calculate_calories(params(start_time))
        low, high = result.confidence_interval
        assert low == pytest.approx(result.metabolic_rate * 0.9)
        assert high == pytest.approx(result.metabolic_rate * 1.1)

    @pytest.mark.asyncio
    async def test_reset_zeroes_total_and_history(self, start_time) -> None:
        """Reset should zero the total and clear history."""
        engine = CalorieEngine()
        await engine.calculate_calories(params(start_time))
        await engine.calculate_calories(params(start_time + timedelta(minutes=5)))
        assert await engine.total_calories() > 0

        await engine.reset()
        assert await engine.total_calories() == 0.0
        assert await engine.history() == []

    @pytest.mark.asyncio
    async def test_history_bounded(self, start_time) -> None:
        """History should keep only the newest 1000 results."""
        engine = CalorieEngine(CalorieConfig(history_size=1000))
        for i in range(1005):
            await engine.calculate_calories(params(start_time + timedelta(seconds=i)))
        assert len(await engine.history()) == 1000

    @pytest.mark.asyncio
    async def test_average_rate_over_window(self, start_time) -> None:
        """Average rate should cover results inside the window and be 0 when empty."""
        engine = CalorieEngine()
        level = await engine.calculate_calories(params(start_time))
        await engine.calculate_calories(params(start_time + timedelta(minutes=1)))
        assert await engine.average_metabolic_rate(5) == pytest.approx(level.metabolic_rate)
        assert await CalorieEngine().average_metabolic_rate() == 0.0


class TestValidationFailures:
    """Invalid input fails the call and leaves state alone."""

    @pytest.mark.asyncio
    async def test_invalid_body_weight_leaves_state(self, start_time) -> None:
        """An invalid body weight should raise and leave total and history alone."""
        engine = CalorieEngine()
        await engine.calculate_calories(params(start_time))
        await engine.calculate_calories(params(start_time + timedelta(minutes=1)))
        total = await engine.total_calories()
        history = await engine.history()

        with pytest.raises(InvalidBodyWeightError):
            await engine.calculate_calories(
                params(start_time + timedelta(minutes=2), body_weight_kg=250.0)
            )

        assert await engine.total_calories() == total
        assert await engine.history() == history


class TestTerrainFactor:
    """Tests for terrain factor hot updates."""

    @pytest.mark.asyncio
    async def test_update_sanitizes(self) -> None:
        """Non-positive terrain factors should be replaced by 1.0."""
        engine = CalorieEngine()
        await engine.update_terrain_factor(2.1)
        assert await engine.terrain_factor() == 2.1
        await engine.update_terrain_factor(0.0)
        assert await engine.terrain_factor() == 1.0


class TestContinuousMode:
    """Tests for the periodic calculation loop."""

    @pytest.mark.asyncio
    async def test_accumulates_and_stops(self, start_time) -> None:
        """Continuous mode should accumulate calories and stop idempotently."""
        ticks = {"n": 0}

        def clock():
            ticks["n"] += 1
            return start_time + timedelta(seconds=ticks["n"])

        async def location():
            return LocationFix(latitude=0.0, longitude=0.0, altitude=0.0, speed=1.34)

        engine = CalorieEngine(clock=clock)
        await engine.start_continuous(70.0, 15.0, location, interval=0.01)
        assert engine.is_running

        for _ in range(200):
            if len(await engine.history()) >= 3:
                break
            await asyncio.sleep(0.01)

        await engine.stop_continuous()
        assert not engine.is_running
        assert await engine.total_calories() > 0

        # Idempotent
        await engine.stop_continuous()

    @pytest.mark.asyncio
    async def test_terrain_change_mid_run_keeps_total(self, start_time) -> None:
        """A terrain factor change during a run should apply without resetting the total."""
        ticks = {"n": 0}

        def clock():
            ticks["n"] += 1
            return start_time + timedelta(seconds=ticks["n"])

        async def location():
            return LocationFix(latitude=0.0, longitude=0.0, altitude=0.0, speed=1.34)

        async def wait_for_history(count: int) -> None:
            for _ in range(200):
                if len(await engine.history()) >= count:
                    return
                await asyncio.sleep(0.01)

        engine = CalorieEngine(clock=clock)
        await engine.start_continuous(70.0, 15.0, location, interval=0.01)
        await wait_for_history(3)
        before = await engine.total_calories()
        paved_rate = (await engine.history())[-1].metabolic_rate

        await engine.update_terrain_factor(TerrainType.SAND.factor)
        await wait_for_history(len(await engine.history()) + 3)
        await engine.stop_continuous()

        history = await engine.history()
        totals = [r.total_calories for r in history]
        assert history[-1].terrain_factor == pytest.approx(2.1)
        assert history[-1].metabolic_rate > paved_rate
        assert history[-1].total_calories > before
        assert totals == sorted(totals)

    @pytest.mark.asyncio
    async def test_missing_fix_skips_tick(self) -> None:
        """Ticks without a location fix should be skipped silently."""
        async def no_location():
            return None

        engine = CalorieEngine()
        await engine.start_continuous(70.0, 15.0, no_location, interval=0.01)
        await asyncio.sleep(0.05)
        await engine.stop_continuous()
        assert await engine.history() == []
        assert engine.last_error is None

    @pytest.mark.asyncio
    async def test_invalid_input_recorded_not_raised(self) -> None:
        """Invalid input should be recorded in last_error while the loop keeps running."""
        async def location():
            return LocationFix(latitude=0.0, longitude=0.0, speed=1.34)

        engine = CalorieEngine()
        await engine.start_continuous(250.0, 15.0, location, interval=0.01)
        await asyncio.sleep(0.05)
        assert engine.is_running
        await engine.stop_continuous()
        assert isinstance(engine.last_error, InvalidBodyWeightError)

    @pytest.mark.asyncio
    async def test_providers_feed_calculation(self) -> None:
        """Grade, terrain and weather providers should feed each calculation."""
        async def location():
            return LocationFix(latitude=0.0, longitude=0.0, altitude=1000.0, speed=1.34)

        async def grade():
            return 10.0

        async def terrain():
            return TerrainType.SAND.factor

        async def weather():
            return WeatherConditions(temperature_c=20.0, wind_speed_mps=0.0)

        engine = CalorieEngine()
        await engine.start_continuous(70.0, 15.0, location, grade, terrain, weather, interval=0.01)
        for _ in range(200):
            if await engine.history():
                break
            await asyncio.sleep(0.01)
        await engine.stop_continuous()

        result = (await engine.history())[0]
        assert result.grade_adjustment_factor == pytest.approx(1.45)
        assert result.environmental_factor == pytest.approx(1.10)
        assert result.terrain_factor == pytest.approx(2.1)

    @pytest.mark.asyncio
    async def test_terrain_feed_hot_updates_factor(self) -> None:
        """A terrain feed should hot-update the factor and detach on stop."""
        classifier = TerrainClassifier()
        engine = CalorieEngine()
        await engine.attach_terrain_feed(classifier.subscribe())

        await classifier.set_manual_terrain(TerrainType.SNOW)
        for _ in range(100):
            if await engine.terrain_factor() == 2.5:
                break
            await asyncio.sleep(0.01)
        assert await engine.terrain_factor() == 2.5

        await engine.stop_continuous()
        assert classifier._feed.subscriber_count == 0


class TestDiagnostics:
    """Tests for the research self-check and summary text."""

    @pytest.mark.asyncio
    async def test_research_checks_pass(self) -> None:
        """The built-in research checks should all pass."""
        checks = await CalorieEngine().validate_against_research()
        assert all(checks.values()), checks

    @pytest.mark.asyncio
    async def test_describe(self, start_time) -> None:
        """Describe should report the engine state and rate."""
        engine = CalorieEngine()
        await engine.calculate_calories(params(start_time))
        text = await engine.describe()
        assert "Calorie Engine" in text
        assert "kcal/min" in text
        assert "stopped" in text
