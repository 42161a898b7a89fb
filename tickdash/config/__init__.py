"""Configuration loading."""

from .settings import DashboardConfig, KagiSettings, load_config

__all__ = ["DashboardConfig", "KagiSettings", "load_config"]
