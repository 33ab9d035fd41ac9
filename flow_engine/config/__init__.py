"""Configuration management."""

from flow_engine.config.settings import Environment, Settings, get_settings

__all__ = ["Environment", "Settings", "get_settings"]
