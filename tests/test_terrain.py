"""Tests for terrain signatures, location keywords and TerrainClassifier."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from ruckfusion.config import TerrainConfig
from ruckfusion.errors import (
    AnalysisTimeoutError,
    LocationUnavailableError,
    LowConfidenceError,
    MotionDataInsufficientError,
    SensorFailureError,
    TerrainDetectionError,
)
from ruckfusion.models import (
    TERRAIN_FACTORS,
    DetectionMethod,
    LocationHint,
    TerrainType,
)
from ruckfusion.motion import MotionPatternAnalyzer
from ruckfusion.terrain import (
    DEFAULT_SIGNATURES,
    TerrainClassifier,
    TerrainSignature,
    best_match,
    classify_location,
    enhanced_terrain_factor,
    match_keywords,
)
from ruckfusion.terrain.signatures import range_score


def main_street():
    return LocationHint(keywords=("Main Street",), source="map")


class TestTerrainFactors:
    """Tests for the fixed difficulty table."""

    def test_factor_table(self) -> None:
        """Every terrain should carry its published difficulty factor."""
        expected = {
            "paved_road": 1.0,
            "trail": 1.2,
            "grass": 1.2,
            "gravel": 1.3,
            "mud": 1.8,
            "stairs": 2.0,
            "sand": 2.1,
            "snow": 2.5,
        }
        assert {t.value: t.factor for t in TerrainType} == expected

    def test_display_name(self) -> None:
        """Display names should be title-cased words."""
        assert TerrainType.PAVED_ROAD.display_name == "Paved Road"

    @pytest.mark.asyncio
    async def test_classifier_reports_table_factor(self) -> None:
        """The classifier factor should match the table for every terrain."""
        classifier = TerrainClassifier()
        for terrain_type in TerrainType:
            await classifier.set_manual_terrain(terrain_type)
            assert await classifier.terrain_factor() == TERRAIN_FACTORS[terrain_type]


class TestSignatures:
    """Tests for motion signature matching."""

    def test_range_score(self) -> None:
        """Range score should be 1 at the centre and fall off outside the range."""
        assert range_score(1.5, (1.0, 2.0)) == pytest.approx(1.0)
        assert range_score(1.0, (1.0, 2.0)) == pytest.approx(0.5)
        assert range_score(2.5, (1.0, 2.0)) == pytest.approx(0.25)
        assert range_score(10.0, (1.0, 2.0)) == 0.0

    def test_signature_centre_matches_its_terrain(self, make_features) -> None:
        """Each signature centre should match its own terrain with score 1.0."""
        for terrain_type, signature in DEFAULT_SIGNATURES.items():
            centre = make_features(
                step_frequency=sum(signature.step_frequency) / 2,
                acceleration_variance=sum(signature.acceleration_variance) / 2,
                vertical_component=sum(signature.vertical_component) / 2,
                step_regularity=sum(signature.step_regularity) / 2,
                gyroscope_variance=sum(signature.gyroscope_variance) / 2,
                impact_intensity=sum(signature.impact_intensity) / 2,
                frequency_profile=tuple(sum(b) / 2 for b in signature.frequency_profile),
            )
            matched, score = best_match(centre)
            assert matched == terrain_type
            assert score == pytest.approx(1.0)

    def test_custom_signature_table(self, paved_features) -> None:
        """A custom table should restrict matching to its own terrains."""
        only_snow = {TerrainType.SNOW: DEFAULT_SIGNATURES[TerrainType.SNOW]}
        matched, score = best_match(paved_features, only_snow)
        assert matched == TerrainType.SNOW
        assert 0.0 <= score < 1.0

    def test_empty_table_is_trail(self, paved_features) -> None:
        """An empty table should give trail at score 0."""
        assert best_match(paved_features, {}) == (TerrainType.TRAIL, 0.0)


class TestLocationClassification:
    """Tests for geocode keyword classification."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Main Street", TerrainType.PAVED_ROAD),
            ("5th Avenue", TerrainType.PAVED_ROAD),
            ("Appalachian Trail", TerrainType.TRAIL),
            ("Muir Woods", TerrainType.TRAIL),
            ("Venice Beach", TerrainType.SAND),
            ("Old Gravel Road", TerrainType.GRAVEL),
            ("Courthouse Steps", TerrainType.STAIRS),
            ("Sheep Meadow", TerrainType.GRASS),
            ("Snow Basin", TerrainType.SNOW),
            ("Great Salt Marsh", TerrainType.MUD),
        ],
    )
    def test_keywords(self, text, expected) -> None:
        """Place names should map to the terrain their keywords suggest."""
        assert match_keywords(text) == expected

    def test_whole_words_only(self) -> None:
        """Keywords embedded in longer words should not match."""
        assert match_keywords("Railroaded Pathology Center") is None

    def test_no_match_is_low_confidence_trail(self) -> None:
        """An unknown place should give trail at confidence 0.3."""
        terrain, confidence, method = classify_location(LocationHint(keywords=("Somewhere",)))
        assert terrain == TerrainType.TRAIL
        assert confidence == pytest.approx(0.3)
        assert method == DetectionMethod.LOCATION

    def test_map_source_method(self) -> None:
        """Map hints should be tagged mapkit with confidence 0.8."""
        _, confidence, method = classify_location(
            LocationHint(keywords=("asphalt",), source="map")
        )
        assert method == DetectionMethod.MAPKIT
        assert confidence == pytest.approx(0.8)

    def test_poor_accuracy_caps_confidence(self) -> None:
        """Accuracy worse than 100 m should cap confidence at 0.3."""
        _, confidence, _ = classify_location(
            LocationHint(keywords=("Main Street",), horizontal_accuracy=150.0)
        )
        assert confidence <= 0.3


class TestEnhancedFactor:
    """Tests for grade compensation."""

    def test_uphill_bonus_capped(self) -> None:
        """Uphill bonus should grow with grade and stop at +2%."""
        assert enhanced_terrain_factor(1.2, 10.0) == pytest.approx(1.2 * 1.01)
        assert enhanced_terrain_factor(1.2, 20.0) == pytest.approx(1.2 * 1.02)
        assert enhanced_terrain_factor(1.2, 500.0) == pytest.approx(1.2 * 1.02)

    def test_downhill_never_reduces(self) -> None:
        """Level, downhill and NaN grades should leave the factor unchanged."""
        assert enhanced_terrain_factor(2.1, -15.0) == 2.1
        assert enhanced_terrain_factor(2.1, 0.0) == 2.1
        assert enhanced_terrain_factor(2.1, float("nan")) == 2.1

    @pytest.mark.asyncio
    async def test_classifier_enhanced_factor(self) -> None:
        """The classifier should apply the capped bonus to the current terrain."""
        classifier = TerrainClassifier()
        await classifier.set_manual_terrain(TerrainType.SAND)
        assert await classifier.enhanced_factor(20.0) <= 2.1 * 1.02 + 1e-12
        assert await classifier.enhanced_factor(-5.0) == 2.1


class TestManualOverride:
    """Tests for manual terrain selection."""

    @pytest.mark.asyncio
    async def test_manual_is_immediate_and_certain(self, paved_features) -> None:
        """Manual terrain should apply at once with confidence 1.0 and beat detection."""
        classifier = TerrainClassifier()
        observation = await classifier.set_manual_terrain(TerrainType.MUD)
        assert observation.confidence == 1.0
        assert observation.method == DetectionMethod.MANUAL
        assert await classifier.terrain_factor() == 1.8

        # Detection does not override the manual choice
        detected = await classifier.detect(features=paved_features)
        assert detected.terrain_type == TerrainType.MUD
        assert detected.method == DetectionMethod.MANUAL

    @pytest.mark.asyncio
    async def test_parallel_readers_agree(self) -> None:
        """Concurrent readers should all see the same factor."""
        classifier = TerrainClassifier()
        await classifier.set_manual_terrain(TerrainType.SNOW)
        factors = await asyncio.gather(*(classifier.terrain_factor() for _ in range(25)))
        assert set(factors) == {2.5}

    @pytest.mark.asyncio
    async def test_clear_override_resumes_detection(self, paved_features) -> None:
        """Clearing the override should let the next detection win."""
        classifier = TerrainClassifier()
        await classifier.set_manual_terrain(TerrainType.MUD)
        await classifier.clear_manual_override()
        assert not classifier.is_manual_override_active

        detected = await classifier.detect(features=paved_features)
        assert detected.terrain_type == TerrainType.PAVED_ROAD
        assert detected.method == DetectionMethod.MOTION


class TestDetection:
    """Tests for detection precedence and failure handling."""

    @pytest.mark.asyncio
    async def test_motion_only(self, paved_features) -> None:
        """Motion features alone should classify with the motion method."""
        classifier = TerrainClassifier()
        observation = await classifier.detect(features=paved_features)
        assert observation.terrain_type == TerrainType.PAVED_ROAD
        assert observation.method == DetectionMethod.MOTION
        assert observation.confidence > 0.6
        assert classifier.last_error is None

    @pytest.mark.asyncio
    async def test_location_only(self) -> None:
        """A location hint alone should classify with the location method."""
        classifier = TerrainClassifier()
        observation = await classifier.detect(
            location_hint=LocationHint(keywords=("Venice Beach",))
        )
        assert observation.terrain_type == TerrainType.SAND
        assert observation.method == DetectionMethod.LOCATION

    @pytest.mark.asyncio
    async def test_combined_prefers_higher_confidence(self, paved_features) -> None:
        """Fusion should keep the motion result when it is more confident."""
        classifier = TerrainClassifier()
        observation = await classifier.detect(
            features=paved_features,
            location_hint=LocationHint(keywords=("Venice Beach",)),
        )
        # Motion scores 1.0 at the paved signature centre, beach keywords 0.7
        assert observation.terrain_type == TerrainType.PAVED_ROAD
        assert observation.method == DetectionMethod.FUSION

    @pytest.mark.asyncio
    async def test_combined_location_wins_when_motion_weak(self, paved_features) -> None:
        """Fusion should take the location result when motion matches poorly."""
        weak = {TerrainType.MUD: TerrainSignature(
            step_frequency=(0.6, 0.7),
            acceleration_variance=(0.9, 1.0),
            vertical_component=(1.4, 1.5),
            step_regularity=(0.0, 0.1),
            gyroscope_variance=(1.4, 1.5),
            impact_intensity=(0.9, 1.0),
            frequency_profile=((0.9, 1.0), (0.9, 1.0), (0.9, 1.0), (0.9, 1.0)),
        )}
        classifier = TerrainClassifier(signatures=weak)
        observation = await classifier.detect(
            features=paved_features,
            location_hint=main_street(),
        )
        assert observation.terrain_type == TerrainType.PAVED_ROAD
        assert observation.method == DetectionMethod.FUSION
        assert observation.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_low_confidence_falls_back_to_trail(self, far_features) -> None:
        """A poor match with no prior terrain should fall back to trail at 0."""
        classifier = TerrainClassifier()
        observation = await classifier.detect(features=far_features)
        assert observation.terrain_type == TerrainType.TRAIL
        assert observation.confidence == 0.0
        assert isinstance(classifier.last_error, LowConfidenceError)
        assert 0.0 <= classifier.last_error.score < 0.6

    @pytest.mark.asyncio
    async def test_failure_keeps_accepted_terrain(self, paved_features, far_features) -> None:
        """A failed detection should keep the last accepted terrain."""
        classifier = TerrainClassifier()
        await classifier.detect(features=paved_features)
        observation = await classifier.detect(features=far_features)
        assert observation.terrain_type == TerrainType.PAVED_ROAD
        assert isinstance(classifier.last_error, LowConfidenceError)

    @pytest.mark.asyncio
    async def test_no_inputs_location_unavailable(self) -> None:
        """Detection with no inputs should record a location-unavailable error."""
        classifier = TerrainClassifier()
        observation = await classifier.detect()
        assert observation.terrain_type == TerrainType.TRAIL
        assert isinstance(classifier.last_error, LocationUnavailableError)

    @pytest.mark.asyncio
    async def test_motion_sensor_unavailable(self, paved_features) -> None:
        """Without motion sensors features should be ignored and location still used."""
        classifier = TerrainClassifier(motion_available=False)
        await classifier.detect(features=paved_features)
        assert isinstance(classifier.last_error, SensorFailureError)

        observation = await classifier.detect(
            location_hint=LocationHint(keywords=("Forest Trail",))
        )
        assert observation.terrain_type == TerrainType.TRAIL
        assert observation.method == DetectionMethod.LOCATION

    @pytest.mark.asyncio
    async def test_insufficient_motion_data(self) -> None:
        """An empty analyzer should record insufficient motion data."""
        classifier = TerrainClassifier(motion_analyzer=MotionPatternAnalyzer())
        await classifier.detect()
        assert isinstance(classifier.last_error, MotionDataInsufficientError)

    @pytest.mark.asyncio
    async def test_pulls_features_from_analyzer(self, walking_samples) -> None:
        """Detection should pull features from the analyzer when none are given."""
        analyzer = MotionPatternAnalyzer()
        await analyzer.add_samples(walking_samples())
        classifier = TerrainClassifier(motion_analyzer=analyzer)
        observation = await classifier.detect()
        assert observation.terrain_type in set(TerrainType)
        assert 0.0 <= observation.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_analysis_timeout(self) -> None:
        """A slow analyzer should time out into the fallback."""
        class SlowAnalyzer(MotionPatternAnalyzer):
            async def analyze(self):
                await asyncio.sleep(1.0)

        classifier = TerrainClassifier(motion_analyzer=SlowAnalyzer())
        observation = await classifier.detect(timeout=0.01)
        assert observation.terrain_type == TerrainType.TRAIL
        assert isinstance(classifier.last_error, AnalysisTimeoutError)


class TestMotionConfidence:
    """Tests for the motion match confidence."""

    @pytest.mark.asyncio
    async def test_zero_before_motion(self) -> None:
        """Motion confidence should be 0.0 before any motion-based detection."""
        classifier = TerrainClassifier()
        assert await classifier.motion_confidence() == 0.0
        await classifier.detect(location_hint=main_street())
        assert await classifier.motion_confidence() == 0.0

    @pytest.mark.asyncio
    async def test_match_score_without_analyzer(self, paved_features) -> None:
        """Without an analyzer the last match score should be reported as is."""
        classifier = TerrainClassifier()
        await classifier.detect(features=paved_features)
        assert await classifier.motion_confidence() == pytest.approx(1.0)

        await classifier.reset()
        assert await classifier.motion_confidence() == 0.0

    @pytest.mark.asyncio
    async def test_decays_with_analysis_age(self, walking_samples) -> None:
        """Motion confidence should follow the analyzer's 5 s decay."""
        now = [0.0]
        analyzer = MotionPatternAnalyzer(clock=lambda: now[0])
        await analyzer.add_samples(walking_samples())
        classifier = TerrainClassifier(motion_analyzer=analyzer)
        await classifier.detect()
        _, score = await classifier.classify_motion(await analyzer.analyze())

        assert await classifier.motion_confidence() == pytest.approx(score)
        now[0] = 2.5
        assert await classifier.motion_confidence() == pytest.approx(score * 0.5)
        now[0] = 10.0
        assert await classifier.motion_confidence() == 0.0


class TestPeriodicDetection:
    """Tests for the background detection loop and battery mode."""

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self) -> None:
        """The loop should detect repeatedly and stop cleanly."""
        calls = []

        async def hints():
            calls.append(1)
            return main_street()

        classifier = TerrainClassifier()
        await classifier.start_detection(interval=0.01, hint_provider=hints)
        assert classifier.is_detecting

        for _ in range(200):
            if len(calls) >= 3:
                break
            await asyncio.sleep(0.01)
        assert len(calls) >= 3
        assert (await classifier.current()).terrain_type == TerrainType.PAVED_ROAD

        await classifier.stop_detection()
        assert not classifier.is_detecting
        stopped_at = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == stopped_at

        # Idempotent
        await classifier.stop_detection()

    @pytest.mark.asyncio
    async def test_restart_replaces_loop(self) -> None:
        """Starting again should cancel the running loop and leave one task."""
        classifier = TerrainClassifier()
        await classifier.start_detection(interval=0.01)
        first = classifier._task
        await classifier.start_detection(interval=0.01)
        assert first.cancelled()
        assert classifier.is_detecting
        await classifier.stop_detection()

    @pytest.mark.asyncio
    async def test_hint_failure_keeps_loop_alive(self) -> None:
        """A failing hint provider should be recorded and the loop keep running."""
        calls = []

        async def broken():
            calls.append(1)
            raise RuntimeError("geocoder offline")

        classifier = TerrainClassifier()
        await classifier.start_detection(interval=0.01, hint_provider=broken)
        for _ in range(200):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        assert classifier.is_detecting
        await classifier.stop_detection()
        assert len(calls) >= 2
        assert isinstance(classifier.last_error, TerrainDetectionError)

    @pytest.mark.asyncio
    async def test_close_stops_loop(self) -> None:
        """Closing the classifier should stop periodic detection."""
        classifier = TerrainClassifier()
        await classifier.start_detection(interval=0.01)
        await classifier.close()
        assert not classifier.is_detecting

    def test_battery_mode_doubles_interval(self) -> None:
        """Battery-optimized mode should double the detection interval."""
        classifier = TerrainClassifier(TerrainConfig(detection_interval_s=4.0))
        assert classifier.detection_interval == 4.0
        assert not classifier.is_battery_optimized

        classifier.set_battery_optimized_mode(True)
        assert classifier.is_battery_optimized
        assert classifier.detection_interval == 8.0

        classifier.set_battery_optimized_mode(False)
        assert classifier.detection_interval == 4.0

    @pytest.mark.asyncio
    async def test_default_interval_ten_seconds(self) -> None:
        """An unconfigured loop should run every 10 s, 20 s in battery mode."""
        classifier = TerrainClassifier()
        await classifier.start_detection()
        assert "every 10 s" in await classifier.describe()

        classifier.set_battery_optimized_mode(True)
        text = await classifier.describe()
        assert "every 20 s" in text
        assert "Battery optimized: yes" in text

        await classifier.stop_detection()
        assert "Periodic detection: stopped" in await classifier.describe()


class TestHistoryAndFeed:
    """Tests for history bounds, change log and the live feed."""

    @pytest.mark.asyncio
    async def test_history_bounded(self) -> None:
        """History should keep only the newest 100 observations."""
        classifier = TerrainClassifier(TerrainConfig(history_size=100))
        types = list(TerrainType)
        for i in range(130):
            await classifier.set_manual_terrain(types[i % len(types)])
        assert len(await classifier.history()) == 100

    @pytest.mark.asyncio
    async def test_changes_since(self, start_time) -> None:
        """Change log should list only terrain transitions after the cutoff."""
        times = iter(start_time + timedelta(seconds=i) for i in range(100))
        classifier = TerrainClassifier(clock=lambda: next(times))
        for terrain_type in (
            TerrainType.TRAIL,
            TerrainType.TRAIL,
            TerrainType.SAND,
            TerrainType.SAND,
            TerrainType.SNOW,
        ):
            await classifier.set_manual_terrain(terrain_type)

        changes = await classifier.changes_since(start_time + timedelta(seconds=1))
        assert [c.terrain_type for c in changes] == [TerrainType.SAND, TerrainType.SNOW]

    @pytest.mark.asyncio
    async def test_high_confidence(self, paved_features) -> None:
        """A signature-centre match should count as high confidence."""
        classifier = TerrainClassifier()
        assert not await classifier.has_high_confidence()
        await classifier.detect(features=paved_features)
        assert await classifier.has_high_confidence()

    @pytest.mark.asyncio
    async def test_feed_emits_on_state_change(self) -> None:
        """The feed should emit on override and on reset."""
        classifier = TerrainClassifier()
        subscription = classifier.subscribe()

        await classifier.set_manual_terrain(TerrainType.GRAVEL)
        update = await subscription.get(timeout=1.0)
        assert update.factor == 1.3
        assert update.confidence == 1.0
        assert update.terrain_type == TerrainType.GRAVEL

        await classifier.reset()
        update = await subscription.get(timeout=1.0)
        assert update.terrain_type == TerrainType.TRAIL
        assert update.confidence == 0.0

        subscription.close()
        assert subscription.closed

    @pytest.mark.asyncio
    async def test_cancelled_subscription_stops_iteration(self) -> None:
        """Closing the classifier should end iteration for consumers."""
        classifier = TerrainClassifier()
        subscription = classifier.subscribe()
        received = []

        async def consume():
            async for update in subscription:
                received.append(update)

        task = asyncio.create_task(consume())
        await classifier.set_manual_terrain(TerrainType.GRASS)
        await asyncio.sleep(0.01)
        await classifier.close()
        await asyncio.wait_for(task, timeout=1.0)
        assert [u.terrain_type for u in received] == [TerrainType.GRASS]

    @pytest.mark.asyncio
    async def test_describe(self) -> None:
        """Describe should report the terrain, sensor state and last error."""
        classifier = TerrainClassifier(motion_available=False)
        await classifier.detect()
        text = await classifier.describe()
        assert "Trail" in text
        assert "unavailable" in text
        assert "Last error" in text
