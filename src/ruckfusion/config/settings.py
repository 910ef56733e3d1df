"""Application settings and configuration management."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml


def _default_config_dir() -> Path:
    """Return the default configuration directory."""
    return Path.home() / ".ruckfusion"


@dataclass
class ElevationConfig:
    """Barometer + GPS fusion configuration."""

    process_noise: float = 0.05
    measurement_noise: float = 0.2
    accuracy_threshold_m: float = 1.0
    pressure_stability_threshold_kpa: float = 0.5
    calibration_accuracy_m: float = 10.0
    calibration_timeout_s: float = 30.0
    min_gps_variance: float = 0.25


@dataclass
class MotionConfig:
    """Motion window configuration."""

    sample_rate_hz: float = 30.0
    window_size: int = 150
    min_samples: int = 30
    cache_ttl_s: float = 1.0


@dataclass
class TerrainConfig:
    """Terrain detection configuration."""

    min_confidence: float = 0.6
    high_confidence: float = 0.85
    detection_timeout_s: float = 2.0
    history_size: int = 100
    poor_accuracy_m: float = 100.0
    detection_interval_s: float = 10.0


@dataclass
class SamplingConfig:
    """Adaptive GPS sampling configuration."""

    speed_buffer_size: int = 20
    long_session_s: float = 7200.0
    low_battery_level: float = 0.20
    critical_battery_level: float = 0.10
    adaptive_enabled: bool = True
    battery_optimization_enabled: bool = True


@dataclass
class CalorieConfig:
    """Calorie engine configuration."""

    update_interval_s: float = 1.0
    history_size: int = 1000
    default_body_weight_kg: float = 70.0


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: str = "WARNING"
    format: str = "console"  # "console" or "json"


@dataclass
class Settings:
    """Main application settings."""

    elevation: ElevationConfig = field(default_factory=ElevationConfig)
    motion: MotionConfig = field(default_factory=MotionConfig)
    terrain: TerrainConfig = field(default_factory=TerrainConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    calories: CalorieConfig = field(default_factory=CalorieConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from YAML file or return defaults.

        Unknown keys are ignored; values are coerced to the type of the
        default they replace.

        Args:
            config_path: Path to config.yaml. If None, uses ~/.ruckfusion/config.yaml

        Returns:
            Settings instance
        """
        if config_path is None:
            config_path = _default_config_dir() / "config.yaml"

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        settings = cls()

        for section_name, section_data in data.items():
            section = getattr(settings, section_name, None)
            if section is None or not isinstance(section_data, dict):
                continue
            for key, value in section_data.items():
                if not hasattr(section, key) or value is None:
                    continue
                current = getattr(section, key)
                if isinstance(current, bool):
                    setattr(section, key, bool(value))
                elif isinstance(current, int):
                    setattr(section, key, int(value))
                elif isinstance(current, float):
                    setattr(section, key, float(value))
                else:
                    setattr(section, key, str(value))

        return settings

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save current settings to YAML file.

        Args:
            config_path: Path to save config.yaml. If None, uses ~/.ruckfusion/config.yaml
        """
        if config_path is None:
            config_path = _default_config_dir() / "config.yaml"

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict:
        """Return settings as a nested dictionary."""
        return asdict(self)


# Global settings instance (lazy loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance, loading from disk if needed."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reload_settings(config_path: Optional[Path] = None) -> Settings:
    """Force reload settings from disk."""
    global _settings
    _settings = Settings.load(config_path)
    return _settings
