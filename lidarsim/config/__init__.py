"""Configuration loading utilities for lidarsim."""

from .schema import (
    ConfigError,
    LidarConfig,
    ScenarioConfig,
    load_config,
)

__all__ = ["ConfigError", "LidarConfig", "ScenarioConfig", "load_config"]
