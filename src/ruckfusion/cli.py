"""CLI interface using Typer."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from pathlib import Path
from typing import Optional

import numpy as np
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ruckfusion.calories import CalorieEngine, CalorieParameters
from ruckfusion.calories.model import metabolic_rate
from ruckfusion.config import Settings, get_settings, reload_settings
from ruckfusion.elevation import ELEVATION_PRESETS, ElevationFusionEngine, calculate_grade
from ruckfusion.errors import CalorieCalculationError
from ruckfusion.logging_config import setup_logging
from ruckfusion.models import (
    TERRAIN_FACTORS,
    AltitudeSample,
    LocationHint,
    TerrainType,
    utcnow,
)
from ruckfusion.power import (
    AdaptiveSamplingController,
    BatteryStatus,
    ChargingState,
)
from ruckfusion.terrain import TerrainClassifier, classify_location

app = typer.Typer(
    help="Sensor fusion and calorie estimation for rucking",
    no_args_is_help=True,
)
console = Console()

calories_app = typer.Typer(help="Load-carriage calorie estimates")
terrain_app = typer.Typer(help="Terrain types and classification")
gps_app = typer.Typer(help="Adaptive GPS sampling")
elevation_app = typer.Typer(help="Elevation and grade")
config_app = typer.Typer(help="Manage configuration")

app.add_typer(calories_app, name="calories")
app.add_typer(terrain_app, name="terrain")
app.add_typer(gps_app, name="gps")
app.add_typer(elevation_app, name="elevation")
app.add_typer(config_app, name="config")


# ============================================================================
# Helpers
# ============================================================================


def output_json(response: dict) -> None:
    """Output JSON response to stdout."""
    print(json.dumps(response, indent=2))


def parse_terrain(value: str) -> TerrainType:
    """Parse a terrain name, accepting "paved_road", "paved-road" or "Paved Road"."""
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return TerrainType(key)
    except ValueError:
        valid = ", ".join(t.value for t in TerrainType)
        console.print(f"[red]Unknown terrain '{value}'. Valid: {valid}[/red]")
        raise typer.Exit(1)


@app.callback()
def main(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to config.yaml (default ~/.ruckfusion/config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """Load settings and configure logging."""
    settings = reload_settings(config_path) if config_path else get_settings()
    level = "DEBUG" if verbose else settings.logging.level
    setup_logging(level, settings.logging.format)


# ============================================================================
# Calories
# ============================================================================


@calories_app.command("estimate")
def calories_estimate(
    body: float = typer.Option(..., "--body", "-b", help="Body weight (kg)"),
    load: float = typer.Option(0.0, "--load", "-l", help="Load weight (kg)"),
    speed: float = typer.Option(1.34, "--speed", "-s", help="Speed (m/s)"),
    grade: float = typer.Option(0.0, "--grade", "-g", help="Grade (%)"),
    temperature: float = typer.Option(20.0, "--temp", help="Air temperature (°C)"),
    altitude: float = typer.Option(0.0, "--altitude", help="Altitude (m)"),
    wind: float = typer.Option(0.0, "--wind", help="Wind speed (m/s)"),
    terrain: str = typer.Option("paved_road", "--terrain", "-t", help="Terrain type"),
    minutes: float = typer.Option(60.0, "--minutes", "-m", help="Duration for the total"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Estimate metabolic rate and total calories for steady conditions."""
    terrain_type = parse_terrain(terrain)
    params = CalorieParameters(
        body_weight_kg=body,
        load_weight_kg=load,
        speed_mps=speed,
        grade_percent=grade,
        temperature_c=temperature,
        altitude_m=altitude,
        wind_speed_mps=wind,
        terrain_multiplier=terrain_type.factor,
    )

    try:
        rate, grade_factor, env_factor, terrain_factor = metabolic_rate(params)
    except CalorieCalculationError as e:
        if json_output:
            output_json({"success": False, "command": "calories estimate", "error": str(e)})
        else:
            console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    total = rate * minutes

    if json_output:
        output_json({
            "success": True,
            "command": "calories estimate",
            "data": {
                "metabolic_rate_kcal_per_min": round(rate, 3),
                "confidence_interval": [round(rate * 0.9, 3), round(rate * 1.1, 3)],
                "grade_factor": round(grade_factor, 3),
                "environmental_factor": round(env_factor, 3),
                "terrain_factor": terrain_factor,
                "terrain": terrain_type.value,
                "minutes": minutes,
                "total_calories": round(total, 1),
            },
            "human_summary": f"{rate:.2f} kcal/min, {total:.0f} kcal over {minutes:g} min",
        })
        return

    table = Table(title="Calorie Estimate")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Metabolic rate", f"{rate:.2f} kcal/min")
    table.add_row("Confidence interval", f"{rate * 0.9:.2f} - {rate * 1.1:.2f} kcal/min")
    table.add_row("Grade factor", f"{grade_factor:.2f}x")
    table.add_row("Environmental factor", f"{env_factor:.2f}x")
    table.add_row("Terrain", f"{terrain_type.display_name} ({terrain_factor:.1f}x)")
    table.add_row(f"Total ({minutes:g} min)", f"[green]{total:.0f} kcal[/green]")
    console.print(table)


# ============================================================================
# Terrain
# ============================================================================


@terrain_app.command("factors")
def terrain_factors(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List terrain types and their difficulty factors."""
    ordered = sorted(TERRAIN_FACTORS.items(), key=lambda kv: kv[1])
    if json_output:
        output_json({
            "success": True,
            "command": "terrain factors",
            "data": {t.value: factor for t, factor in ordered},
        })
        return

    table = Table(title="Terrain Difficulty Factors")
    table.add_column("Terrain", style="cyan")
    table.add_column("Key", style="dim")
    table.add_column("Factor", justify="right", style="green")
    for terrain_type, factor in ordered:
        table.add_row(terrain_type.display_name, terrain_type.value, f"{factor:.1f}x")
    console.print(table)


@terrain_app.command("classify")
def terrain_classify(
    text: list[str] = typer.Argument(..., help="Place names or road-surface descriptions"),
    accuracy: float = typer.Option(10.0, "--accuracy", "-a", help="Horizontal accuracy (m)"),
    map_source: bool = typer.Option(False, "--map", help="Treat text as map road-surface data"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Classify terrain from location text."""
    hint = LocationHint(
        keywords=tuple(text),
        horizontal_accuracy=accuracy,
        source="map" if map_source else "geocode",
    )
    terrain_type, confidence, method = classify_location(
        hint, get_settings().terrain.poor_accuracy_m
    )

    if json_output:
        output_json({
            "success": True,
            "command": "terrain classify",
            "data": {
                "terrain": terrain_type.value,
                "confidence": confidence,
                "method": method.value,
                "factor": terrain_type.factor,
            },
        })
        return

    console.print(
        Panel(
            f"[bold]{terrain_type.display_name}[/bold] ({terrain_type.factor:.1f}x)\n"
            f"Confidence: {confidence * 100:.0f}%\n"
            f"Method: {method.value}",
            title="Terrain",
        )
    )


# ============================================================================
# GPS
# ============================================================================


@gps_app.command("recommend")
def gps_recommend(
    speed: float = typer.Option(1.3, "--speed", "-s", help="Current speed (m/s)"),
    battery: float = typer.Option(1.0, "--battery", help="Battery level (0-1)"),
    charging: bool = typer.Option(False, "--charging", help="Device is charging"),
    low_power: bool = typer.Option(False, "--low-power", help="OS low-power mode is on"),
    session_minutes: float = typer.Option(0.0, "--session-minutes", help="Elapsed session time"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Recommend a GPS configuration for the given movement and battery state."""

    async def run():
        clock_start = 0.0
        now = [clock_start]
        controller = AdaptiveSamplingController(get_settings().sampling, clock=lambda: now[0])
        await controller.start_session()
        now[0] = clock_start + session_minutes * 60.0
        await controller.record_speed(speed)
        await controller.update_battery(
            BatteryStatus(
                level=battery,
                charging_state=ChargingState.CHARGING if charging else ChargingState.UNPLUGGED,
                low_power_mode=low_power,
            )
        )
        return (
            await controller.recommended_configuration(),
            await controller.movement_pattern(),
            await controller.power_state(),
            await controller.battery_usage_estimate(),
            await controller.battery_alert(),
        )

    configuration, movement, power, usage, alert = asyncio.run(run())

    if json_output:
        output_json({
            "success": True,
            "command": "gps recommend",
            "data": {
                "tier": configuration.tier.value,
                "accuracy": configuration.accuracy.value,
                "distance_filter_m": configuration.distance_filter_m,
                "update_interval_s": configuration.update_interval_s,
                "movement": movement.value,
                "power_state": power.value,
                "battery_usage_percent_per_hour": usage.percent_per_hour,
                "alert": alert.message,
            },
        })
        return

    table = Table(title="Recommended GPS Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Movement", movement.value)
    table.add_row("Power state", power.value)
    table.add_row("Tier", configuration.tier.display_name)
    table.add_row("Accuracy", configuration.accuracy.value)
    table.add_row("Distance filter", f"{configuration.distance_filter_m:.0f} m")
    table.add_row("Update interval", f"{configuration.update_interval_s:.1f} s")
    table.add_row(
        "Battery usage",
        f"{usage.percent_per_hour:.1f}%/h ({usage.band[0]:.0f}-{usage.band[1]:.0f})",
    )
    console.print(table)
    if alert.should_alert:
        console.print(f"[yellow]{alert.message}[/yellow]")


# ============================================================================
# Elevation
# ============================================================================


@elevation_app.command("grade")
def elevation_grade(
    start: float = typer.Option(..., "--start", help="Start altitude (m)"),
    end: float = typer.Option(..., "--end", help="End altitude (m)"),
    distance: float = typer.Option(..., "--distance", "-d", help="Horizontal distance (m)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Grade between two altitudes, clamped to ±20%."""
    grade = calculate_grade(start, end, distance)
    if json_output:
        output_json({"success": True, "command": "elevation grade", "data": {"grade": grade}})
        return
    console.print(f"Grade: [bold]{grade:.1f}%[/bold]")


@elevation_app.command("presets")
def elevation_presets() -> None:
    """Show the Kalman noise presets."""
    table = Table(title="Elevation Fusion Presets")
    table.add_column("Preset", style="cyan")
    table.add_column("Process noise", justify="right")
    table.add_column("Measurement noise", justify="right")
    for name, (process_noise, measurement_noise) in ELEVATION_PRESETS.items():
        table.add_row(name, f"{process_noise:g}", f"{measurement_noise:g}")
    console.print(table)


# ============================================================================
# Simulation
# ============================================================================


async def _simulate(
    settings: Settings,
    body: float,
    load: float,
    speed: float,
    grade: float,
    minutes: float,
    terrain_type: Optional[TerrainType],
    place: Optional[str],
    seed: int,
) -> dict:
    rng = np.random.default_rng(seed)
    elevation = ElevationFusionEngine(settings.elevation)
    classifier = TerrainClassifier(settings.terrain)
    calories = CalorieEngine(settings.calories)

    await elevation.start()
    if terrain_type is not None:
        await classifier.set_manual_terrain(terrain_type)
    elif place:
        await classifier.detect(location_hint=LocationHint(keywords=(place,)))

    start_time = utcnow()
    start_altitude = 100.0
    for second in range(int(minutes * 60) + 1):
        true_altitude = start_altitude + grade / 100.0 * speed * second
        estimate = await elevation.process_sample(
            AltitudeSample(
                timestamp=start_time + timedelta(seconds=second),
                barometric_altitude=true_altitude - start_altitude + rng.normal(0, 0.3),
                gps_altitude=true_altitude + rng.normal(0, 3.0),
                gps_vertical_accuracy=5.0,
            ),
            distance=speed if second > 0 else None,
        )
        await calories.calculate_calories(
            CalorieParameters(
                body_weight_kg=body,
                load_weight_kg=load,
                speed_mps=speed,
                grade_percent=await elevation.smoothed_grade(),
                altitude_m=estimate.altitude if estimate else 0.0,
                terrain_multiplier=await classifier.terrain_factor(),
                timestamp=start_time + timedelta(seconds=second),
            )
        )

    terrain = await classifier.current()
    summary = await elevation.elevation_summary()
    return {
        "total_calories": await calories.total_calories(),
        "average_rate": await calories.average_metabolic_rate(minutes),
        "elevation_gain": summary["elevation_gain"],
        "elevation_loss": summary["elevation_loss"],
        "final_grade": await elevation.smoothed_grade(),
        "terrain": terrain.terrain_type.value,
        "terrain_confidence": terrain.confidence,
        "diagnostics": [
            await elevation.describe(),
            await classifier.describe(),
            await calories.describe(),
        ],
    }


@app.command()
def simulate(
    body: float = typer.Option(80.0, "--body", "-b", help="Body weight (kg)"),
    load: float = typer.Option(20.0, "--load", "-l", help="Load weight (kg)"),
    speed: float = typer.Option(1.4, "--speed", "-s", help="Speed (m/s)"),
    grade: float = typer.Option(0.0, "--grade", "-g", help="Constant grade (%)"),
    minutes: float = typer.Option(10.0, "--minutes", "-m", help="Duration (min)"),
    terrain: Optional[str] = typer.Option(None, "--terrain", "-t", help="Manual terrain"),
    place: Optional[str] = typer.Option(None, "--place", help="Place name for terrain"),
    seed: int = typer.Option(42, "--seed", help="Random seed for sensor noise"),
    show_diagnostics: bool = typer.Option(False, "--diagnostics", help="Show engine state"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Run a synthetic march through elevation, terrain and calorie engines."""
    terrain_type = parse_terrain(terrain) if terrain else None
    try:
        result = asyncio.run(
            _simulate(
                get_settings(), body, load, speed, grade, minutes, terrain_type, place, seed
            )
        )
    except CalorieCalculationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if json_output:
        data = {k: v for k, v in result.items() if k != "diagnostics"}
        output_json({
            "success": True,
            "command": "simulate",
            "data": data,
            "human_summary": f"{result['total_calories']:.0f} kcal over {minutes:g} min",
        })
        return

    table = Table(title=f"Simulated March ({minutes:g} min)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total calories", f"[green]{result['total_calories']:.0f} kcal[/green]")
    table.add_row("Average rate", f"{result['average_rate']:.2f} kcal/min")
    table.add_row("Elevation gain", f"{result['elevation_gain']:.1f} m")
    table.add_row("Elevation loss", f"{result['elevation_loss']:.1f} m")
    table.add_row("Grade", f"{result['final_grade']:.1f}%")
    table.add_row(
        "Terrain", f"{result['terrain']} ({result['terrain_confidence'] * 100:.0f}%)"
    )
    console.print(table)

    if show_diagnostics:
        for block in result["diagnostics"]:
            console.print(Panel(block))


# ============================================================================
# Config
# ============================================================================


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""
    output_json(get_settings().to_dict())


@config_app.command("init")
def config_init(
    path: Optional[Path] = typer.Option(None, "--path", help="Where to write config.yaml"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a default config.yaml."""
    target = path or Path.home() / ".ruckfusion" / "config.yaml"
    if target.exists() and not force:
        console.print(f"[yellow]{target} already exists (use --force to overwrite)[/yellow]")
        raise typer.Exit(1)
    Settings().save(target)
    console.print(f"[green]Wrote {target}[/green]")


if __name__ == "__main__":
    app()
