"""Configuration loading for ruckfusion."""

from __future__ import annotations

from ruckfusion.config.settings import (
    CalorieConfig,
    ElevationConfig,
    LoggingConfig,
    MotionConfig,
    SamplingConfig,
    Settings,
    TerrainConfig,
    get_settings,
    reload_settings,
)

__all__ = [
    "CalorieConfig",
    "ElevationConfig",
    "LoggingConfig",
    "MotionConfig",
    "SamplingConfig",
    "Settings",
    "TerrainConfig",
    "get_settings",
    "reload_settings",
]
